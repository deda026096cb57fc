"""Tests for the management commands in main.py, run against the api_env stores."""

from argparse import Namespace
from types import SimpleNamespace

import pytest

import main
from tasks.queue import TaskQueue


@pytest.fixture
def state(api_env):
    return SimpleNamespace(
        user_store=api_env.users,
        team_store=api_env.teams,
        services=api_env.services,
        tasks=TaskQueue(max_attempts=1, eager=True),
    )


def test_create_user_reads_password_from_env(state, api_env, monkeypatch, capsys):
    monkeypatch.setenv("DOCROOM_PASSWORD", "long-enough-pw")
    email = api_env.new_email("cli")
    assert main._cmd_create_user(state, Namespace(email=email, name="Cli", welcome=False)) == 0
    assert api_env.users.get_by_email(email).name == "Cli"
    assert "Created user" in capsys.readouterr().out


def test_create_user_rejects_short_password_and_duplicates(state, api_env, monkeypatch):
    monkeypatch.setenv("DOCROOM_PASSWORD", "short")
    assert main._cmd_create_user(state, Namespace(email=api_env.new_email(), name=None, welcome=False)) == 1
    monkeypatch.setenv("DOCROOM_PASSWORD", "long-enough-pw")
    assert main._cmd_create_user(state, Namespace(email=api_env.user.email, name=None, welcome=False)) == 1


def test_create_user_with_welcome_sends_email(state, api_env, monkeypatch):
    monkeypatch.setenv("DOCROOM_PASSWORD", "long-enough-pw")
    api_env.services.email.reset_mock()
    email = api_env.new_email("welcome")
    main._cmd_create_user(state, Namespace(email=email, name="W", welcome=True))
    assert api_env.services.email.send.call_args.args[0] == email


def test_create_team_and_set_plan(state, api_env, capsys):
    assert main._cmd_create_team(state, Namespace(name="Acme", owner=api_env.user.email, plan="pro")) == 0
    team_id = capsys.readouterr().out.split("Created team ", 1)[1].split(" ", 1)[0]
    team = api_env.teams.get_team(team_id)
    assert team.plan == "pro"
    assert api_env.teams.get_member(team_id, api_env.user.id).role == "ADMIN"

    assert main._cmd_set_plan(state, Namespace(team_id=team_id, plan="business+drtrial")) == 0
    assert api_env.teams.get_team(team_id).plan == "business+drtrial"


@pytest.mark.parametrize("plan", ["gold", "free+drtrial+x", "pro-ish"])
def test_unknown_plans_are_rejected(state, api_env, plan):
    assert main._cmd_create_team(state, Namespace(name="X", owner=api_env.user.email, plan=plan)) == 1


def test_create_team_unknown_owner(state):
    assert main._cmd_create_team(state, Namespace(name="X", owner="ghost@example.com", plan="free")) == 1


def test_enable_flag(state, api_env):
    team = api_env.create_team()
    assert main._cmd_enable_flag(state, Namespace(team_id=team.id, flag="slack")) == 0
    assert "slack" in api_env.teams.get_enabled_features(team.id)
    assert main._cmd_enable_flag(state, Namespace(team_id=team.id, flag="teleport")) == 1
    assert main._cmd_enable_flag(state, Namespace(team_id="missing", flag="slack")) == 1


def test_limits_output(state, api_env, capsys):
    team = api_env.create_team(plan="free")
    assert main._cmd_limits(state, Namespace(team_id=team.id)) == 0
    out = capsys.readouterr().out
    assert "(free)" in out
    assert "upgrade prompt: True" in out
    assert main._cmd_limits(state, Namespace(team_id="missing")) == 1
