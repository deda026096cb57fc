#!/usr/bin/env python3
"""
DocRoom management CLI -- administrative tasks against the configured databases.

Usage:
  python main.py create-user ada@example.com --name Ada
  python main.py create-team "Acme" --owner ada@example.com --plan pro
  python main.py set-plan <team_id> business+drtrial
  python main.py enable-flag <team_id> slack
  python main.py limits <team_id>
  python main.py purge-expired

The password for create-user is read from the DOCROOM_PASSWORD environment
variable, or prompted for when it is unset. Commands read the same settings
as the server (.env, DATABASE_URL, ...). Background work such as the welcome
email runs inline.
"""

import argparse
import getpass
import os
import sys
from types import SimpleNamespace

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.feature_flags import FEATURE_FLAGS
from core.limits import PLAN_LIMITS, TRIAL_SUFFIX, base_plan
from services.registry import build_services
from tasks.jobs import purge_expired, welcome_email
from tasks.queue import TaskQueue
from teams.invitations import team_limit_flags
from teams.models import Team, TeamMember
from teams.store import TeamStore


def _open_state() -> SimpleNamespace:
    """Build the same objects the server keeps on app.state, with eager tasks."""
    settings = get_settings()
    if settings.database_url:
        users, teams = UserStore(settings.database_url), TeamStore(settings.database_url)
    else:
        users, teams = UserStore(), TeamStore()
    return SimpleNamespace(
        user_store=users,
        team_store=teams,
        services=build_services(settings),
        tasks=TaskQueue(max_attempts=settings.task_max_attempts, eager=True),
    )


def _close_state(state: SimpleNamespace) -> None:
    state.services.close()
    state.team_store.close()
    state.user_store.close()


def _cmd_create_user(state: SimpleNamespace, args: argparse.Namespace) -> int:
    password = os.environ.get("DOCROOM_PASSWORD") or getpass.getpass("Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    try:
        user = User(email=args.email, name=args.name, hashed_password=hash_password(password))
        uid = state.user_store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user with email {args.email} already exists.")
        return 1
    print(f"  Created user {uid} ({args.email.lower()})")
    if args.welcome:
        state.tasks.enqueue("welcome-email", welcome_email, state, {"email": args.email, "name": args.name})
    return 0


def _valid_plan(plan: str) -> bool:
    return base_plan(plan) in PLAN_LIMITS and (plan == base_plan(plan) or plan.endswith(TRIAL_SUFFIX))


def _cmd_create_team(state: SimpleNamespace, args: argparse.Namespace) -> int:
    owner = state.user_store.get_by_email(args.owner)
    if owner is None:
        print(f"  [!] No user with email {args.owner}.")
        return 1
    if not _valid_plan(args.plan):
        print(f"  [!] Unknown plan '{args.plan}'. Known plans: {', '.join(PLAN_LIMITS)}")
        return 1
    team_id = state.team_store.create_team(Team(name=args.name, plan=args.plan))
    state.team_store.add_member(TeamMember(team_id=team_id, user_id=owner.id, role="ADMIN"))
    print(f"  Created team {team_id} ({args.name}, plan={args.plan}) owned by {owner.email}")
    return 0


def _cmd_set_plan(state: SimpleNamespace, args: argparse.Namespace) -> int:
    if not _valid_plan(args.plan):
        print(f"  [!] Unknown plan '{args.plan}'. Known plans: {', '.join(PLAN_LIMITS)}")
        return 1
    if not state.team_store.update_plan(args.team_id, args.plan):
        print(f"  [!] No team {args.team_id}.")
        return 1
    print(f"  Team {args.team_id} is now on {args.plan}")
    return 0


def _cmd_enable_flag(state: SimpleNamespace, args: argparse.Namespace) -> int:
    if args.flag not in FEATURE_FLAGS:
        print(f"  [!] Unknown flag '{args.flag}'. Known flags: {', '.join(FEATURE_FLAGS)}")
        return 1
    if state.team_store.get_team(args.team_id) is None:
        print(f"  [!] No team {args.team_id}.")
        return 1
    state.team_store.enable_feature(args.team_id, args.flag)
    print(f"  Enabled {args.flag} for team {args.team_id}")
    return 0


def _cmd_limits(state: SimpleNamespace, args: argparse.Namespace) -> int:
    team = state.team_store.get_team(args.team_id)
    if team is None:
        print(f"  [!] No team {args.team_id}.")
        return 1
    usage = state.team_store.get_usage(team.id)
    flags = team_limit_flags(state.team_store, team, get_settings().is_self_hosted)
    print(f"  {team.name} ({team.plan})")
    print(f"    documents  {usage.documents:>5}   can add: {flags.can_add_documents}")
    print(f"    links      {usage.links:>5}   can add: {flags.can_add_links}")
    print(f"    users      {usage.users:>5}   can add: {flags.can_add_users}")
    print(f"    upgrade prompt: {flags.show_upgrade_plan_modal}")
    return 0


def _cmd_purge_expired(state: SimpleNamespace, args: argparse.Namespace) -> int:
    print(f"  Removed {purge_expired(state)} expired row(s)")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="docroom",
        description="DocRoom management commands.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-user", help="Create a password user")
    p.add_argument("email")
    p.add_argument("--name", default=None)
    p.add_argument("--welcome", action="store_true", help="Send the welcome email")
    p.set_defaults(func=_cmd_create_user)

    p = sub.add_parser("create-team", help="Create a team with an admin owner")
    p.add_argument("name")
    p.add_argument("--owner", required=True, metavar="EMAIL")
    p.add_argument("--plan", default="free")
    p.set_defaults(func=_cmd_create_team)

    p = sub.add_parser("set-plan", help="Change a team's plan")
    p.add_argument("team_id")
    p.add_argument("plan")
    p.set_defaults(func=_cmd_set_plan)

    p = sub.add_parser("enable-flag", help="Turn a feature flag on for a team")
    p.add_argument("team_id")
    p.add_argument("flag")
    p.set_defaults(func=_cmd_enable_flag)

    p = sub.add_parser("limits", help="Show a team's usage and capability flags")
    p.add_argument("team_id")
    p.set_defaults(func=_cmd_limits)

    p = sub.add_parser("purge-expired", help="Delete expired tokens and temp entries")
    p.set_defaults(func=_cmd_purge_expired)

    args = parser.parse_args()
    state = _open_state()
    try:
        code = args.func(state, args)
    finally:
        _close_state(state)
    sys.exit(code)


if __name__ == "__main__":
    main()
