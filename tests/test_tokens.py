"""Unit tests for auth/tokens.py -- passwords, JWTs, verification tokens, checksums."""

from unittest.mock import MagicMock

from auth.models import User
from auth.tokens import (
    authenticate_user,
    create_access_token,
    decode_access_token,
    generate_checksum,
    generate_verification_token,
    hash_password,
    hash_token,
    verify_checksum,
    verify_password,
)


def test_password_round_trip():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)


def test_verify_password_with_malformed_hash_is_false():
    assert verify_password("anything", "not-a-bcrypt-hash") is False


def test_access_token_carries_identity():
    payload = decode_access_token(create_access_token(7, "ada@example.com"))
    assert payload["user_id"] == 7
    assert payload["sub"] == "ada@example.com"


def test_tampered_access_token_is_rejected():
    token = create_access_token(7, "ada@example.com")
    assert decode_access_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB")) is None
    assert decode_access_token("garbage") is None


def test_verification_tokens_are_unique_and_url_safe():
    tokens = {generate_verification_token() for _ in range(20)}
    assert len(tokens) == 20
    assert all(t.replace("-", "").replace("_", "").isalnum() for t in tokens)


def test_hash_token_is_deterministic_hex():
    assert hash_token("abc") == hash_token("abc")
    assert hash_token("abc") != hash_token("abd")
    assert len(hash_token("abc")) == 64


def test_checksum_round_trip():
    url = "http://testserver/invitations/accept?team=t&email=a%40b.c&token=x"
    checksum = generate_checksum(url)
    assert verify_checksum(url, checksum)
    assert not verify_checksum(url + "&team=other", checksum)
    assert not verify_checksum(url, "0" * 64)


# ---------------------------------------------------------------------------
# authenticate_user
# ---------------------------------------------------------------------------


def _store(user):
    store = MagicMock()
    store.get_by_email.return_value = user
    return store


def test_authenticate_user_success():
    user = User(id=1, email="ada@example.com", hashed_password=hash_password("pw-12345"))
    assert authenticate_user(_store(user), "ada@example.com", "pw-12345") is user


def test_authenticate_user_wrong_password():
    user = User(id=1, email="ada@example.com", hashed_password=hash_password("pw-12345"))
    assert authenticate_user(_store(user), "ada@example.com", "nope") is None


def test_authenticate_unknown_and_passkey_only_users():
    assert authenticate_user(_store(None), "ghost@example.com", "pw") is None
    passkey_only = User(id=2, email="pk@example.com", hashed_password=None)
    assert authenticate_user(_store(passkey_only), "pk@example.com", "pw") is None


def test_authenticate_inactive_user():
    user = User(id=1, email="ada@example.com", hashed_password=hash_password("pw-12345"), is_active=False)
    assert authenticate_user(_store(user), "ada@example.com", "pw-12345") is None
