"""
teams/invitations.py -- Invite someone to a team by email and accept the invite.

Invite:
  1. The team must have a free seat (can_add_users), unless self-hosted.
  2. A fresh token is stored hashed with identifier invite:<team_id>:<email>
     and a 24 h expiry. Re-inviting the same address replaces the old token.
  3. The accept URL is wrapped in /verify/invitation with an HMAC checksum
     so the link cannot be edited to point at another team or address.
  4. The invitation email is enqueued. On a self-hosted instance without
     email the URL is logged instead (see emails/send.py).

Accept (accept_invitation):
  token missing or expired        -> NOT_FOUND
  signed-in user has another email -> WRONG_ACCOUNT
  team already full               -> LIMIT_REACHED
  already a member                -> ALREADY_MEMBER (token consumed)
  otherwise the user is added     -> ACCEPTED (token consumed)
"""

from __future__ import annotations

import enum
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable
from urllib.parse import quote, urlencode

from sqlalchemy.exc import IntegrityError

from auth.models import User, VerificationToken
from auth.store import UserStore
from auth.tokens import generate_checksum, generate_verification_token, hash_token
from core.limits import evaluate_limits, is_free_plan, is_trial_plan, resolve_plan_limits
from core.models import LimitFlags
from teams.models import Team, TeamMember
from teams.store import TeamStore

logger = logging.getLogger("docroom.teams.invitations")

INVITE_EXPIRE_HOURS = 24


class InvitationOutcome(enum.Enum):
    NOT_FOUND = "not_found"
    WRONG_ACCOUNT = "wrong_account"
    LIMIT_REACHED = "limit_reached"
    ALREADY_MEMBER = "already_member"
    ACCEPTED = "accepted"


def invite_identifier(team_id: str, email: str) -> str:
    return f"invite:{team_id}:{email.strip().lower()}"


def team_limit_flags(teams: TeamStore, team: Team, self_hosted: bool) -> LimitFlags:
    return evaluate_limits(
        resolve_plan_limits(team.plan, team.limits),
        teams.get_usage(team.id),
        is_free=is_free_plan(team.plan),
        is_trial=is_trial_plan(team.plan),
        self_hosted=self_hosted,
    )


def build_invitation_url(base_url: str, team_id: str, email: str, raw_token: str) -> str:
    """Return the checksummed /verify/invitation link for an invite."""
    base = base_url.rstrip("/")
    accept_url = f"{base}/invitations/accept?" + urlencode({"team": team_id, "email": email, "token": raw_token})
    checksum = generate_checksum(accept_url)
    return f"{base}/verify/invitation?verification_url={quote(accept_url, safe='')}&checksum={checksum}"


def create_invitation(
    users: UserStore,
    team: Team,
    email: str,
    base_url: str,
    send: Callable[[str], None],
) -> str:
    """Store the invite token and hand the URL to send. Returns the URL."""
    raw = generate_verification_token()
    users.create_verification_token(
        VerificationToken(
            token=hash_token(raw),
            identifier=invite_identifier(team.id, email),
            expires=datetime.now(timezone.utc) + timedelta(hours=INVITE_EXPIRE_HOURS),
        )
    )
    url = build_invitation_url(base_url, team.id, email, raw)
    send(url)
    logger.info("Invitation to team %s created", team.id)
    return url


def accept_invitation(
    users: UserStore,
    teams: TeamStore,
    team_id: str,
    email: str,
    raw_token: str,
    user: User,
    self_hosted: bool = False,
) -> InvitationOutcome:
    found = users.get_verification_token(hash_token(raw_token))
    if (
        found is None
        or found.identifier != invite_identifier(team_id, email)
        or found.is_expired(datetime.now(timezone.utc))
    ):
        return InvitationOutcome.NOT_FOUND

    team = teams.get_team(team_id)
    if team is None:
        return InvitationOutcome.NOT_FOUND

    if user.email != email.strip().lower():
        return InvitationOutcome.WRONG_ACCOUNT

    if teams.get_member(team_id, user.id) is not None:
        users.delete_verification_token(found.token)
        return InvitationOutcome.ALREADY_MEMBER

    if not team_limit_flags(teams, team, self_hosted).can_add_users:
        return InvitationOutcome.LIMIT_REACHED

    try:
        teams.add_member(TeamMember(team_id=team_id, user_id=user.id))
    except IntegrityError:
        users.delete_verification_token(found.token)
        return InvitationOutcome.ALREADY_MEMBER
    users.delete_verification_token(found.token)
    logger.info("User %s joined team %s", user.id, team_id)
    return InvitationOutcome.ACCEPTED
