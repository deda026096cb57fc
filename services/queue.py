"""
services/queue.py -- QStash job queue: publishing and signature verification.

QStash delivers a JSON job to one of our own endpoints (POST /api/v1/jobs/...)
at least once, optionally after a delay. Publishing is an outbound HTTP call;
receiving is an inbound request whose Upstash-Signature header must be
checked before the job body is trusted.

Signature format: a JWT (HS256) signed with the current or the next signing
key. Claims: iss="Upstash", sub=<destination url>, exp/nbf, and body =
base64url(sha256(raw body)). Both keys are tried so that key rotation does not
drop in-flight messages.

Without QSTASH_TOKEN the DisabledQueue is used: publishing logs a warning and
returns a stub message id, so callers never branch on configuration.
"""

import base64
import hashlib
import json
import logging
from typing import Any, Optional

import requests
from jose import JWTError, jwt

logger = logging.getLogger("docroom.queue")


class JobQueue:
    """Capability interface for publishing JSON jobs."""

    available = True

    def publish_json(self, url: str, body: dict[str, Any], delay: Optional[str] = None) -> dict[str, Any]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class QStashQueue(JobQueue):
    def __init__(self, token: str, base_url: str = "https://qstash.upstash.io", timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"Bearer {token}"

    def publish_json(self, url: str, body: dict[str, Any], delay: Optional[str] = None) -> dict[str, Any]:
        """Publish body to be POSTed to url. delay uses QStash notation ("10s", "5m").

        Raises requests.RequestException on transport or HTTP errors -- a job
        that was never accepted must not be reported as queued.
        """
        headers = {"Content-Type": "application/json"}
        if delay:
            headers["Upstash-Delay"] = delay
        resp = self._session.post(
            f"{self._base_url}/v2/publish/{url}",
            data=json.dumps(body),
            headers=headers,
            timeout=self._timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def close(self) -> None:
        self._session.close()


class DisabledQueue(JobQueue):
    available = False

    def publish_json(self, url: str, body: dict[str, Any], delay: Optional[str] = None) -> dict[str, Any]:
        logger.warning("[QStash] Skipping job for %s - QSTASH_TOKEN not configured", url)
        return {"messageId": "stub"}


# ---------------------------------------------------------------------------
# Receiver
# ---------------------------------------------------------------------------


def _body_hash(body: bytes) -> str:
    digest = hashlib.sha256(body).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


class QStashReceiver:
    """Verifies Upstash-Signature headers on inbound job requests."""

    def __init__(self, current_signing_key: str, next_signing_key: str) -> None:
        self._keys = [k for k in (current_signing_key, next_signing_key) if k]

    @property
    def configured(self) -> bool:
        return bool(self._keys)

    def verify(self, signature: str, body: bytes, url: Optional[str] = None) -> bool:
        """Return True if signature is valid for body (and url, when given).

        Never raises. With no signing keys configured every signature is
        rejected: an unverifiable job must not run.
        """
        if not signature or not self._keys:
            return False
        for key in self._keys:
            try:
                claims = jwt.decode(
                    signature,
                    key,
                    algorithms=["HS256"],
                    issuer="Upstash",
                    options={"verify_aud": False},
                )
            except JWTError:
                continue
            if url is not None and claims.get("sub") != url:
                logger.warning("QStash signature subject mismatch: %s", claims.get("sub"))
                return False
            if str(claims.get("body", "")).rstrip("=") != _body_hash(body):
                logger.warning("QStash signature body hash mismatch")
                return False
            return True
        return False
