"""
services/email.py -- Transactional email through the Resend HTTP API.

Two sender addresses exist: the system address for account mail (password,
email change, invitations) and the marketing address for everything else.
system=True picks the former.

test=True sends to Resend's sandbox recipient instead of the real address so
development instances never mail real users.

Resend allows 10 requests per second per key. ResendEmailSender spaces sends
at least 100 ms apart; the background task worker is the only caller, so the
lock is uncontended in practice.

Without RESEND_API_KEY the DisabledEmailSender raises EmailNotConfigured on
every send. Callers decide whether that is fatal (see emails/).
"""

import logging
import threading
import time
from typing import Optional

import requests

logger = logging.getLogger("docroom.email")

RESEND_API = "https://api.resend.com/emails"
RESEND_TEST_RECIPIENT = "delivered@resend.dev"


class EmailNotConfigured(Exception):
    """Raised when an email is sent but no email provider is configured."""


class EmailSender:
    """Capability interface for sending one email."""

    available = True

    def send(
        self,
        to: str,
        subject: str,
        html: str,
        *,
        text: Optional[str] = None,
        system: bool = False,
        test: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> Optional[str]:
        """Send the message and return the provider's message id."""
        raise NotImplementedError

    def close(self) -> None:
        pass


class _Throttle:
    """Blocks until min_interval seconds have passed since the previous call."""

    def __init__(self, min_interval: float) -> None:
        self._min_interval = min_interval
        self._last = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            delay = self._last + self._min_interval - time.monotonic()
            if delay > 0:
                time.sleep(delay)
            self._last = time.monotonic()


class ResendEmailSender(EmailSender):
    def __init__(
        self,
        api_key: str,
        from_system: str,
        from_marketing: str,
        min_interval: float = 0.1,
        timeout: float = 10.0,
    ) -> None:
        self._from_system = from_system
        self._from_marketing = from_marketing
        self._timeout = timeout
        self._throttle = _Throttle(min_interval)
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"Bearer {api_key}"

    def send(
        self,
        to: str,
        subject: str,
        html: str,
        *,
        text: Optional[str] = None,
        system: bool = False,
        test: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> Optional[str]:
        """POST the message to Resend.

        idempotency_key makes retried deliveries of the same task collapse
        into one email on Resend's side.

        Raises requests.RequestException on transport or HTTP errors.
        """
        payload: dict = {
            "from": self._from_system if system else self._from_marketing,
            "to": [RESEND_TEST_RECIPIENT if test else to],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        headers = {}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        self._throttle.wait()
        resp = self._session.post(RESEND_API, json=payload, headers=headers, timeout=self._timeout)
        resp.raise_for_status()
        message_id = resp.json().get("id")
        logger.info("Email sent (subject=%r, id=%s)", subject, message_id)
        return message_id

    def close(self) -> None:
        self._session.close()


class DisabledEmailSender(EmailSender):
    available = False

    def send(
        self,
        to: str,
        subject: str,
        html: str,
        *,
        text: Optional[str] = None,
        system: bool = False,
        test: bool = False,
        idempotency_key: Optional[str] = None,
    ) -> Optional[str]:
        raise EmailNotConfigured("RESEND_API_KEY is not configured")
