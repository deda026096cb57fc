"""Tests for the email-change flow: auth/email_change.py and its two endpoints.

Unit tests drive request_email_change()/confirm_email_change() against real
in-memory stores with mocked email and mailing-list adapters. The web tests
go through POST /api/v1/account/email-change and then open the emailed
confirmation link, GET /auth/confirm-email-change/{token}.

Covers:
- request: token stored hashed, pending request stored, email to new address
- request refusals: same address, taken address, no temporary store
- confirm order: unknown token -> login required -> unavailable -> missing request
- confirm success: email updated, cleanup, re-subscribe, notice to old address
- a second confirmation with the same link is NOT_FOUND
- a lost race for the new address is EMAIL_TAKEN
- per-user rate limit on the request endpoint
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from auth.email_change import (
    REQUEST_TTL_SECONDS,
    EmailChangeDeps,
    EmailChangeError,
    EmailChangeOutcome,
    confirm_email_change,
    request_email_change,
    request_key,
)
from auth.models import User, VerificationToken
from auth.store import UserStore
from auth.tokens import hash_token
from services.email import EmailSender
from services.kv import DisabledTempStore, SQLiteTempStore
from services.mailing_list import MailingList
from tasks.queue import TaskQueue

BASE_URL = "http://testserver"


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def deps():
    name = uuid.uuid4().hex
    users = UserStore(db_url=f"sqlite:///file:ec_auth_{name}?mode=memory&cache=shared&uri=true")
    temp = SQLiteTempStore(f"sqlite:///file:ec_temp_{name}?mode=memory&cache=shared&uri=true")
    d = EmailChangeDeps(
        users=users,
        temp_store=temp,
        mailing_list=MagicMock(spec=MailingList),
        email=MagicMock(spec=EmailSender),
        tasks=TaskQueue(eager=True),
    )
    yield d
    temp.close()
    users.close()


def _user(deps, email="old@example.com") -> User:
    uid = deps.users.create_user(User(email=email, hashed_password="x"))
    return deps.users.get_by_id(uid)


def _raw_token_from_email(email_mock) -> str:
    html = email_mock.send.call_args.args[2]
    match = re.search(r"/auth/confirm-email-change/([A-Za-z0-9_\-]+)", html)
    assert match, "confirmation link missing from email body"
    return match.group(1)


# ---------------------------------------------------------------------------
# request_email_change
# ---------------------------------------------------------------------------


def test_request_stores_hashed_token_and_pending_request(deps):
    user = _user(deps)
    expires = request_email_change(user, "New@Example.com", BASE_URL, deps)

    assert expires > datetime.now(timezone.utc)
    raw = _raw_token_from_email(deps.email)
    stored = deps.users.get_verification_token(hash_token(raw))
    assert stored is not None and stored.identifier == str(user.id)
    assert deps.users.get_verification_token(raw) is None  # never stored in clear

    assert deps.temp_store.get(request_key(user.id)) == {"email": "old@example.com", "newEmail": "new@example.com"}


def test_request_sends_verification_to_new_address(deps):
    user = _user(deps)
    request_email_change(user, "new@example.com", BASE_URL, deps)

    call = deps.email.send.call_args
    assert call.args[0] == "new@example.com"
    assert call.kwargs["system"] is True
    assert call.kwargs["idempotency_key"].startswith("email-change-verification/")


def test_request_rejects_same_email(deps):
    user = _user(deps)
    with pytest.raises(EmailChangeError) as exc:
        request_email_change(user, " OLD@example.com ", BASE_URL, deps)
    assert exc.value.code == "same_email"


def test_request_rejects_taken_email(deps):
    user = _user(deps)
    _user(deps, "taken@example.com")
    with pytest.raises(EmailChangeError) as exc:
        request_email_change(user, "taken@example.com", BASE_URL, deps)
    assert exc.value.code == "email_taken"
    deps.email.send.assert_not_called()


def test_request_without_temp_store_is_unavailable(deps):
    deps.temp_store = DisabledTempStore()
    user = _user(deps)
    with pytest.raises(EmailChangeError) as exc:
        request_email_change(user, "new@example.com", BASE_URL, deps)
    assert exc.value.code == "feature_unavailable"


def test_rerequest_invalidates_previous_link(deps):
    user = _user(deps)
    request_email_change(user, "first@example.com", BASE_URL, deps)
    first = _raw_token_from_email(deps.email)
    request_email_change(user, "second@example.com", BASE_URL, deps)

    assert deps.users.get_verification_token(hash_token(first)) is None
    assert deps.temp_store.get(request_key(user.id))["newEmail"] == "second@example.com"


# ---------------------------------------------------------------------------
# confirm_email_change
# ---------------------------------------------------------------------------


def test_confirm_unknown_token_is_not_found(deps):
    assert confirm_email_change("nope", _user(deps), deps) is EmailChangeOutcome.NOT_FOUND


def test_confirm_expired_token_is_not_found(deps):
    user = _user(deps)
    deps.users.create_verification_token(
        VerificationToken(
            token=hash_token("expired"),
            identifier=str(user.id),
            expires=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
    )
    assert confirm_email_change("expired", user, deps) is EmailChangeOutcome.NOT_FOUND


def test_confirm_without_session_requires_login(deps):
    user = _user(deps)
    request_email_change(user, "new@example.com", BASE_URL, deps)
    raw = _raw_token_from_email(deps.email)
    assert confirm_email_change(raw, None, deps) is EmailChangeOutcome.LOGIN_REQUIRED


def test_confirm_without_temp_store_is_unavailable(deps):
    user = _user(deps)
    request_email_change(user, "new@example.com", BASE_URL, deps)
    raw = _raw_token_from_email(deps.email)
    deps.temp_store = DisabledTempStore()
    assert confirm_email_change(raw, user, deps) is EmailChangeOutcome.UNAVAILABLE


def test_confirm_as_other_user_finds_no_request(deps):
    user = _user(deps)
    other = _user(deps, "other@example.com")
    request_email_change(user, "new@example.com", BASE_URL, deps)
    raw = _raw_token_from_email(deps.email)

    assert confirm_email_change(raw, other, deps) is EmailChangeOutcome.NOT_FOUND
    assert deps.users.get_by_id(user.id).email == "old@example.com"


def test_confirm_applies_change_and_cleans_up(deps):
    user = _user(deps)
    request_email_change(user, "new@example.com", BASE_URL, deps)
    raw = _raw_token_from_email(deps.email)
    deps.email.reset_mock()

    assert confirm_email_change(raw, user, deps) is EmailChangeOutcome.CONFIRMED

    assert deps.users.get_by_id(user.id).email == "new@example.com"
    assert deps.users.get_verification_token(hash_token(raw)) is None
    assert deps.temp_store.get(request_key(user.id)) is None
    deps.mailing_list.unsubscribe.assert_called_once_with("old@example.com")
    deps.mailing_list.subscribe.assert_called_once_with("new@example.com")
    notice = deps.email.send.call_args
    assert notice.args[0] == "old@example.com"
    assert "new@example.com" in notice.args[2]


def test_second_confirmation_is_not_found(deps):
    user = _user(deps)
    request_email_change(user, "new@example.com", BASE_URL, deps)
    raw = _raw_token_from_email(deps.email)
    confirm_email_change(raw, user, deps)

    moved = deps.users.get_by_id(user.id)
    assert confirm_email_change(raw, moved, deps) is EmailChangeOutcome.NOT_FOUND


def test_confirm_lost_race_reports_email_taken(deps):
    user = _user(deps)
    request_email_change(user, "new@example.com", BASE_URL, deps)
    raw = _raw_token_from_email(deps.email)
    _user(deps, "new@example.com")  # someone signed up with the address meanwhile

    assert confirm_email_change(raw, user, deps) is EmailChangeOutcome.EMAIL_TAKEN
    assert deps.users.get_by_id(user.id).email == "old@example.com"
    assert deps.users.get_verification_token(hash_token(raw)) is None
    assert deps.temp_store.get(request_key(user.id)) is None
    deps.mailing_list.subscribe.assert_called_once_with("old@example.com")


def test_pending_request_uses_ttl(deps):
    user = _user(deps)
    deps.temp_store = MagicMock(wraps=deps.temp_store)
    deps.temp_store.available = True
    request_email_change(user, "new@example.com", BASE_URL, deps)
    assert deps.temp_store.set.call_args.kwargs["ex"] == REQUEST_TTL_SECONDS


# ---------------------------------------------------------------------------
# End to end through the API and the web page
# ---------------------------------------------------------------------------


def test_request_endpoint_requires_auth(web_env):
    resp = web_env.client.post("/api/v1/account/email-change", json={"new_email": "x@example.com"})
    assert resp.status_code == 401


def test_request_endpoint_rejects_bad_address(web_env):
    resp = web_env.client.post(
        "/api/v1/account/email-change", json={"new_email": "not-an-email"}, headers=web_env.auth()
    )
    assert resp.status_code == 422


def test_request_endpoint_taken_address_is_409(web_env):
    user, token = web_env.create_user()
    other, _ = web_env.create_user()
    resp = web_env.client.post(
        "/api/v1/account/email-change", json={"new_email": other.email}, headers=web_env.auth(token)
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "email_taken"


def test_full_flow_through_link(web_env):
    user, token = web_env.create_user()
    new_email = web_env.new_email("moved")
    web_env.services.email.reset_mock()

    resp = web_env.client.post(
        "/api/v1/account/email-change", json={"new_email": new_email}, headers=web_env.auth(token)
    )
    assert resp.status_code == 202
    assert "expires_at" in resp.json()
    raw = _raw_token_from_email(web_env.services.email)
    path = f"/auth/confirm-email-change/{raw}"

    # Not signed in: redirected to login, coming back to the same link.
    resp = web_env.client.get(path)
    assert resp.status_code == 302
    assert resp.headers["location"] == f"/login?next={path}"

    web_env.client.cookies.set("access_token", token)
    try:
        resp = web_env.client.get(path)
        assert resp.status_code == 200
        assert "Email address updated" in resp.text
        assert web_env.users.get_by_id(user.id).email == new_email

        # The link is single-use.
        resp = web_env.client.get(path)
        assert resp.status_code == 404
    finally:
        web_env.client.cookies.clear()


def test_unknown_link_is_404_page(web_env):
    resp = web_env.client.get("/auth/confirm-email-change/does-not-exist")
    assert resp.status_code == 404
    assert "text/html" in resp.headers["content-type"]


def test_request_endpoint_is_rate_limited_per_user(web_env):
    user, token = web_env.create_user()
    codes = []
    for i in range(4):
        resp = web_env.client.post(
            "/api/v1/account/email-change",
            json={"new_email": web_env.new_email(f"try{i}")},
            headers=web_env.auth(token),
        )
        codes.append(resp.status_code)
    assert codes == [202, 202, 202, 429]
    assert int(resp.headers["Retry-After"]) >= 1
    assert resp.json()["error"]["code"] == "rate_limited"
