"""
services/mailing_list.py -- Product-update mailing list (Unsend contact book).

Unsend upserts contacts by email when one is created, so both subscribe and
unsubscribe are the same call with a different `subscribed` flag. That makes
both operations idempotent and safe to retry.
"""

import logging

import requests

logger = logging.getLogger("docroom.mailing_list")


class MailingList:
    available = True

    def subscribe(self, email: str) -> None:
        raise NotImplementedError

    def unsubscribe(self, email: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class UnsendMailingList(MailingList):
    def __init__(self, api_key: str, contact_book_id: str, base_url: str, timeout: float = 10.0) -> None:
        self._endpoint = f"{base_url.rstrip('/')}/api/v1/contactBooks/{contact_book_id}/contacts"
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"Bearer {api_key}"

    def _upsert(self, email: str, subscribed: bool) -> None:
        resp = self._session.post(
            self._endpoint,
            json={"email": email, "subscribed": subscribed},
            timeout=self._timeout,
        )
        resp.raise_for_status()

    def subscribe(self, email: str) -> None:
        self._upsert(email, True)

    def unsubscribe(self, email: str) -> None:
        self._upsert(email, False)

    def close(self) -> None:
        self._session.close()


class DisabledMailingList(MailingList):
    available = False

    def subscribe(self, email: str) -> None:
        logger.debug("Mailing list not configured -- skipping subscribe")

    def unsubscribe(self, email: str) -> None:
        logger.debug("Mailing list not configured -- skipping unsubscribe")
