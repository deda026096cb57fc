"""
auth/passkeys.py -- Passkey (WebAuthn) login through a Hanko Passkey API tenant.

The browser does the WebAuthn ceremony; Hanko verifies the credential and
returns a short-lived JWT whose `sub` is our user id. We verify that JWT
against the tenant's JWKS with python-jose before issuing our own session
cookie -- the Hanko token is never used as a session itself.

Endpoints used (relative to <HANKO_API_URL>/<tenant_id>):
  POST /registration/initialize   {userId, username} -> creation options
  POST /registration/finalize     <credential>       -> {token}
  POST /login/initialize                             -> request options
  POST /login/finalize            <credential>       -> {token}
  GET  /.well-known/jwks.json                        -> signing keys

Without HANKO_API_KEY and HANKO_TENANT_ID the DisabledPasskeys object is used
and the passkey routes answer 501.
"""

from __future__ import annotations

import logging
from typing import Any

import requests
from jose import JWTError, jwt

logger = logging.getLogger("docroom.auth.passkeys")


class PasskeysNotConfigured(Exception):
    """Raised when a passkey operation is attempted without a Hanko tenant."""


class Passkeys:
    def is_configured(self) -> bool:
        raise NotImplementedError

    def registration_initialize(self, user_id: str, username: str) -> dict[str, Any]:
        raise NotImplementedError

    def registration_finalize(self, credential: dict[str, Any]) -> str:
        raise NotImplementedError

    def login_initialize(self) -> dict[str, Any]:
        raise NotImplementedError

    def login_finalize(self, credential: dict[str, Any]) -> str:
        raise NotImplementedError

    def verify_token(self, token: str) -> str:
        raise NotImplementedError

    def close(self) -> None:
        pass


class HankoPasskeys(Passkeys):
    def __init__(self, api_url: str, tenant_id: str, api_key: str, timeout: float = 10.0) -> None:
        self._base = f"{api_url.rstrip('/')}/{tenant_id}"
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers["apikey"] = api_key
        self._jwks: dict[str, Any] | None = None

    def is_configured(self) -> bool:
        return True

    def _post(self, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        resp = self._session.post(f"{self._base}{path}", json=body or {}, timeout=self._timeout)
        resp.raise_for_status()
        return resp.json()

    def registration_initialize(self, user_id: str, username: str) -> dict[str, Any]:
        return self._post("/registration/initialize", {"userId": user_id, "username": username})

    def registration_finalize(self, credential: dict[str, Any]) -> str:
        return self._post("/registration/finalize", credential)["token"]

    def login_initialize(self) -> dict[str, Any]:
        return self._post("/login/initialize")

    def login_finalize(self, credential: dict[str, Any]) -> str:
        return self._post("/login/finalize", credential)["token"]

    def _get_jwks(self, refresh: bool = False) -> dict[str, Any]:
        if self._jwks is None or refresh:
            resp = self._session.get(f"{self._base}/.well-known/jwks.json", timeout=self._timeout)
            resp.raise_for_status()
            self._jwks = resp.json()
        return self._jwks

    def verify_token(self, token: str) -> str:
        """Verify a Hanko-issued JWT and return its subject (our user id).

        Refetches the JWKS once on failure so a tenant key rotation does not
        lock everyone out until restart.

        Raises ValueError if the token cannot be verified.
        """
        for refresh in (False, True):
            try:
                claims = jwt.decode(
                    token,
                    self._get_jwks(refresh=refresh),
                    algorithms=["RS256"],
                    options={"verify_aud": False},
                )
            except JWTError as e:
                logger.info("Passkey token rejected (refresh=%s): %s", refresh, e)
                continue
            subject = claims.get("sub")
            if not subject:
                raise ValueError("Passkey token has no subject")
            return str(subject)
        raise ValueError("Passkey token could not be verified")

    def close(self) -> None:
        self._session.close()


class DisabledPasskeys(Passkeys):
    def is_configured(self) -> bool:
        return False

    def _unavailable(self, *args: Any, **kwargs: Any):
        raise PasskeysNotConfigured("Passkeys require HANKO_API_KEY and HANKO_TENANT_ID")

    registration_initialize = _unavailable
    registration_finalize = _unavailable
    login_initialize = _unavailable
    login_finalize = _unavailable
    verify_token = _unavailable
