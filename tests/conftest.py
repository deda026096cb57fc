"""
tests/conftest.py -- Shared test fixtures for DocRoom integration tests.

This module provides:
  - make_test_stores(): isolated in-memory DBs for users, teams and temp state
  - make_services(): a Services bundle with mocked outbound providers
  - _patch_lifespan(): wires test objects into app.state, bypassing real startup
  - api_env: TestClient plus stores and a signed-in user for API tests
  - web_env: the same with follow_redirects=False for web route tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any auth/core import:
  DEBUG=true         -- get_settings() auto-generates SECRET_KEY
  BASE_URL           -- TestClient sends Host: testserver, which the
                        TrustedHostMiddleware only accepts as the BASE_URL host
  TASKS_EAGER=true   -- background tasks run inside enqueue()
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BASE_URL", "http://testserver")
os.environ.setdefault("TASKS_EAGER", "true")
os.environ.setdefault("ENVIRONMENT", "development")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.models import User
from auth.passkeys import DisabledPasskeys
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from integrations.slack.client import SlackClient
from integrations.slack.events import SlackEventManager
from services.email import EmailSender
from services.kv import SQLiteTempStore, TempStore
from services.mailing_list import MailingList
from services.queue import DisabledQueue, QStashReceiver
from services.ratelimit import RateLimits
from services.registry import Services
from tasks.queue import TaskQueue
from teams.models import Team, TeamMember
from teams.store import TeamStore

TEST_PASSWORD = "correct-horse-battery"
QSTASH_TEST_KEY = "sig_test_current_key_0123456789abcdef"
SLACK_INTEGRATION_ID = "slack-test"

# Hashing once keeps bcrypt out of every fixture.
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


# ---------------------------------------------------------------------------
# Store and service helpers
# ---------------------------------------------------------------------------


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def make_test_stores(db_suffix: str) -> tuple[UserStore, TeamStore, SQLiteTempStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB names so test modules
                   don't share state (e.g. 'api', 'web').
    """
    return (
        UserStore(db_url=_memory_url(f"test_auth_{db_suffix}")),
        TeamStore(db_url=_memory_url(f"test_teams_{db_suffix}")),
        SQLiteTempStore(_memory_url(f"test_temp_{db_suffix}")),
    )


def make_slack_client() -> MagicMock:
    client = MagicMock(spec=SlackClient)
    client.integration_id = SLACK_INTEGRATION_ID
    return client


def make_services(temp_store: TempStore, **overrides) -> Services:
    """Services with mocked email, mailing list and Slack; memory rate limits."""
    email = MagicMock(spec=EmailSender)
    email.available = True
    mailing_list = MagicMock(spec=MailingList)
    mailing_list.available = True
    values = dict(
        temp_store=temp_store,
        rate_limits=RateLimits("memory://"),
        queue=DisabledQueue(),
        receiver=QStashReceiver(QSTASH_TEST_KEY, ""),
        email=email,
        mailing_list=mailing_list,
        passkeys=DisabledPasskeys(),
        slack_client=make_slack_client(),
    )
    values.update(overrides)
    return Services(**values)


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


def _patch_lifespan(user_store: UserStore, team_store: TeamStore, services: Services):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.team_store = team_store
        app.state.services = services
        app.state.tasks = TaskQueue(max_attempts=2, eager=True)
        app.state.slack_events = SlackEventManager(services.slack_client, team_store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Test environment
# ---------------------------------------------------------------------------


@dataclass
class AppEnv:
    """Everything a route test needs: client, stores, mocks and one user."""

    client: TestClient
    users: UserStore
    teams: TeamStore
    temp_store: SQLiteTempStore
    services: Services
    user: User
    token: str
    qstash_key: str = QSTASH_TEST_KEY

    @property
    def tasks(self) -> TaskQueue:
        return self.client.app.state.tasks

    @staticmethod
    def new_email(prefix: str = "user") -> str:
        return unique_email(prefix)

    def auth(self, token: str | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token or self.token}"}

    def create_user(self, email: str | None = None, name: str | None = None) -> tuple[User, str]:
        """Insert a user with TEST_PASSWORD and return (user, jwt)."""
        uid = self.users.create_user(
            User(email=email or unique_email(), name=name, hashed_password=_PASSWORD_HASH)
        )
        user = self.users.get_by_id(uid)
        return user, create_access_token(user.id, user.email, expire_seconds=3600)

    def create_team(
        self, owner: User | None = None, plan: str = "free", limits: dict | None = None, role: str = "ADMIN"
    ) -> Team:
        team_id = self.teams.create_team(Team(name=f"Team {uuid.uuid4().hex[:6]}", plan=plan, limits=limits))
        self.teams.add_member(TeamMember(team_id=team_id, user_id=(owner or self.user).id, role=role))
        return self.teams.get_team(team_id)


def _start_env(db_suffix: str, **client_kwargs) -> Generator[AppEnv, None, None]:
    user_store, team_store, temp_store = make_test_stores(db_suffix)
    services = make_services(temp_store)

    uid = user_store.create_user(
        User(email=f"owner-{db_suffix}@example.com", name="Owner", hashed_password=_PASSWORD_HASH)
    )
    user = user_store.get_by_id(uid)
    token = create_access_token(user.id, user.email, expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(user_store, team_store, services)

    with TestClient(app, raise_server_exceptions=True, **client_kwargs) as client:
        yield AppEnv(
            client=client,
            users=user_store,
            teams=team_store,
            temp_store=temp_store,
            services=services,
            user=user,
            token=token,
        )

    temp_store.close()
    team_store.close()
    user_store.close()


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_env(request) -> Generator[AppEnv, None, None]:
    """Yield an AppEnv for API integration tests, isolated per test module."""
    yield from _start_env(f"api_{request.module.__name__.rsplit('.', 1)[-1]}")


@pytest.fixture(scope="module")
def web_env(request) -> Generator[AppEnv, None, None]:
    """Yield an AppEnv whose client does not follow redirects.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations* (e.g. 302 to /login), which are invisible once
    the client follows the redirect and returns the final 200 response.
    """
    yield from _start_env(f"web_{request.module.__name__.rsplit('.', 1)[-1]}", follow_redirects=False)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Clear the per-IP slowapi counters so one test cannot throttle the next."""
    limiter.reset()
    yield
