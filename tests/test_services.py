"""Tests for the optional provider adapters in services/ and their selection.

HTTP-backed adapters get a MagicMock in place of their requests.Session, so
the tests check the request each adapter would send without any network.

Covers:
- build_services(): disabled fallbacks, SQLite temp store, Upstash/Resend selection
- SQLiteTempStore: set/get/delete, expiry on read, purge_expired
- UpstashRedisStore: command encoding and error bodies
- ResendEmailSender: sender address, test recipient, idempotency header
- UnsendMailingList: subscribe/unsubscribe upserts
- DisabledEmailSender / DisabledPasskeys raise; SlackClient requires credentials
"""

import time
import uuid
from unittest.mock import MagicMock, patch

import pytest

from auth.passkeys import DisabledPasskeys, PasskeysNotConfigured
from core.config import get_settings
from integrations.slack.client import SlackClient, SlackNotConfigured
from services.email import RESEND_TEST_RECIPIENT, DisabledEmailSender, EmailNotConfigured, ResendEmailSender
from services.kv import DisabledTempStore, SQLiteTempStore, UpstashRedisStore
from services.mailing_list import DisabledMailingList, UnsendMailingList
from services.queue import DisabledQueue, QStashQueue
from services.registry import build_services


def _settings(**overrides):
    return get_settings().model_copy(update=overrides)


def _mock_session(json_body=None):
    session = MagicMock()
    session.post.return_value.json.return_value = json_body if json_body is not None else {}
    return session


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_build_services_defaults_to_disabled_adapters():
    services = build_services(
        _settings(
            ratelimit_storage_uri="",
            temp_store_url="",
            upstash_redis_rest_url="",
            qstash_token="",
            resend_api_key="",
            slack_client_id="",
            hanko_api_key="",
        )
    )
    try:
        assert isinstance(services.temp_store, DisabledTempStore)
        assert isinstance(services.queue, DisabledQueue)
        assert isinstance(services.email, DisabledEmailSender)
        assert isinstance(services.mailing_list, DisabledMailingList)
        assert isinstance(services.passkeys, DisabledPasskeys)
        assert services.slack_client is None
        assert set(services.components().values()) == {"disabled"}
    finally:
        services.close()


def test_build_services_picks_configured_providers():
    services = build_services(
        _settings(
            temp_store_url=f"sqlite:///file:svc_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true",
            ratelimit_storage_uri="memory://",
            qstash_token="qstash-token",
            resend_api_key="re_test",
            slack_client_id="cid",
            slack_client_secret="secret",
            slack_integration_id="slack",
        )
    )
    try:
        assert isinstance(services.temp_store, SQLiteTempStore)
        assert isinstance(services.queue, QStashQueue)
        assert isinstance(services.email, ResendEmailSender)
        assert isinstance(services.slack_client, SlackClient)
        components = services.components()
        assert components["temp_store"] == "enabled"
        assert components["rate_limits"] == "enabled"
        assert components["slack"] == "enabled"
        assert components["passkeys"] == "disabled"
    finally:
        services.close()


def test_upstash_wins_over_sqlite_temp_store():
    services = build_services(
        _settings(
            upstash_redis_rest_url="https://redis.example",
            upstash_redis_rest_token="tok",
            temp_store_url="sqlite:///ignored.db",
        )
    )
    try:
        assert isinstance(services.temp_store, UpstashRedisStore)
    finally:
        services.close()


# ---------------------------------------------------------------------------
# Temporary stores
# ---------------------------------------------------------------------------


@pytest.fixture
def sqlite_store():
    store = SQLiteTempStore(f"sqlite:///file:kv_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield store
    store.close()


def test_sqlite_store_set_get_delete(sqlite_store):
    sqlite_store.set("k", {"email": "a@example.com"}, ex=60)
    assert sqlite_store.get("k") == {"email": "a@example.com"}
    sqlite_store.set("k", {"email": "b@example.com"})
    assert sqlite_store.get("k") == {"email": "b@example.com"}
    sqlite_store.delete("k")
    assert sqlite_store.get("k") is None
    sqlite_store.delete("k")  # idempotent


def test_sqlite_store_expires_on_read(sqlite_store):
    sqlite_store.set("k", {"x": 1}, ex=60)
    with patch("services.kv.time.time", return_value=time.time() + 61):
        assert sqlite_store.get("k") is None
    assert sqlite_store.get("k") is None  # row was dropped


def test_sqlite_store_purge_expired(sqlite_store):
    sqlite_store.set("old", {"x": 1}, ex=1)
    sqlite_store.set("forever", {"x": 2})
    with patch("services.kv.time.time", return_value=time.time() + 5):
        assert sqlite_store.purge_expired() == 1
    assert sqlite_store.get("forever") == {"x": 2}


def test_disabled_temp_store_drops_writes():
    store = DisabledTempStore()
    store.set("k", {"x": 1})
    assert store.available is False
    assert store.get("k") is None


def test_upstash_commands():
    store = UpstashRedisStore("https://redis.example/", "tok")
    store._session = _mock_session({"result": "OK"})

    store.set("k", {"x": 1}, ex=900)
    assert store._session.post.call_args.kwargs["json"] == ["SET", "k", '{"x": 1}', "EX", 900]
    assert store._session.post.call_args.args[0] == "https://redis.example"

    store._session.post.return_value.json.return_value = {"result": '{"x": 1}'}
    assert store.get("k") == {"x": 1}

    store._session.post.return_value.json.return_value = {"result": None}
    assert store.get("missing") is None

    store.delete("k")
    assert store._session.post.call_args.kwargs["json"] == ["DEL", "k"]


def test_upstash_error_body_raises():
    store = UpstashRedisStore("https://redis.example", "tok")
    store._session = _mock_session({"error": "WRONGPASS"})
    with pytest.raises(RuntimeError):
        store.get("k")


# ---------------------------------------------------------------------------
# Email and mailing list
# ---------------------------------------------------------------------------


def _resend():
    sender = ResendEmailSender("re_test", from_system="sys@x.io", from_marketing="hello@x.io", min_interval=0)
    sender._session = _mock_session({"id": "email_1"})
    return sender


def test_resend_system_mail_with_idempotency_key():
    sender = _resend()
    assert sender.send("a@example.com", "Hi", "<p>x</p>", system=True, idempotency_key="k1") == "email_1"
    kwargs = sender._session.post.call_args.kwargs
    assert kwargs["json"]["from"] == "sys@x.io"
    assert kwargs["json"]["to"] == ["a@example.com"]
    assert kwargs["headers"] == {"Idempotency-Key": "k1"}


def test_resend_test_mode_uses_sandbox_recipient():
    sender = _resend()
    sender.send("a@example.com", "Hi", "<p>x</p>", test=True)
    payload = sender._session.post.call_args.kwargs["json"]
    assert payload["to"] == [RESEND_TEST_RECIPIENT]
    assert payload["from"] == "hello@x.io"


def test_disabled_email_sender_raises():
    with pytest.raises(EmailNotConfigured):
        DisabledEmailSender().send("a@example.com", "s", "h")


def test_unsend_subscribe_and_unsubscribe_upsert():
    mailing_list = UnsendMailingList("key", "book1", "https://unsend.example/")
    mailing_list._session = _mock_session()

    mailing_list.subscribe("a@example.com")
    mailing_list.unsubscribe("a@example.com")

    calls = mailing_list._session.post.call_args_list
    assert calls[0].args[0] == "https://unsend.example/api/v1/contactBooks/book1/contacts"
    assert [c.kwargs["json"]["subscribed"] for c in calls] == [True, False]


# ---------------------------------------------------------------------------
# Passkeys and Slack
# ---------------------------------------------------------------------------


def test_disabled_passkeys_raise():
    passkeys = DisabledPasskeys()
    assert passkeys.is_configured() is False
    with pytest.raises(PasskeysNotConfigured):
        passkeys.login_initialize()


def test_slack_client_requires_credentials():
    with pytest.raises(SlackNotConfigured):
        SlackClient(_settings(slack_client_id="", slack_client_secret="", slack_integration_id=""))


def test_slack_authorize_url_and_code_exchange():
    client = SlackClient(
        _settings(slack_client_id="cid", slack_client_secret="secret", slack_integration_id="slack")
    )
    url = client.authorize_url("state-1")
    assert url.startswith("https://slack.com/oauth/v2/authorize?")
    assert "client_id=cid" in url and "state=state-1" in url

    web = MagicMock()
    web.oauth_v2_access.return_value = {
        "access_token": "xoxb-1",
        "team": {"id": "T1", "name": "Acme"},
        "bot_user_id": "B1",
    }
    with patch.object(client, "_web_client", return_value=web):
        credentials = client.exchange_code("code-1")
    assert credentials == {"accessToken": "xoxb-1", "teamId": "T1", "teamName": "Acme", "botUserId": "B1"}
    assert web.oauth_v2_access.call_args.kwargs["redirect_uri"] == client.redirect_uri
