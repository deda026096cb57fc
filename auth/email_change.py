"""
auth/email_change.py -- Request and confirm a change of a user's email address.

Request (request_email_change):
  1. Refuse if the new address already belongs to an account.
  2. Store hash_token(raw) as a VerificationToken for the user, 15 min expiry.
  3. Store {email, newEmail} under email-change-request:user:<id> in the
     temporary store, 900 s TTL.
  4. Enqueue the verification email to the NEW address. The raw token only
     exists inside that link.

Confirm (confirm_email_change), in this order:
  1. Token lookup by hash; missing or expired       -> NOT_FOUND
  2. No session                                      -> LOGIN_REQUIRED
  3. Temporary store disabled                        -> UNAVAILABLE
     Pending request missing                         -> NOT_FOUND
  4. Unsubscribe the old address, update the user's email, then enqueue
     the cleanup (token + pending request), the new subscription and the
     "email updated" notice to the OLD address      -> CONFIRMED

The NOT_FOUND cases deliberately look the same to the caller so the page
does not reveal which check failed. A second confirmation with the same link
stops at step 1 because cleanup deleted the token.

The pending request is looked up by the *session* user, not by the token's
identifier: a link opened while logged in as someone else finds no request.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.models import User, VerificationToken
from auth.store import UserStore
from auth.tokens import generate_verification_token, hash_token
from emails.send import send_email_change_verification, send_email_updated
from services.email import EmailSender
from services.kv import TempStore
from services.mailing_list import MailingList
from tasks.queue import TaskQueue

logger = logging.getLogger("docroom.auth.email_change")

TOKEN_EXPIRE_MINUTES = 15
REQUEST_TTL_SECONDS = 900


def request_key(user_id: int | str) -> str:
    return f"email-change-request:user:{user_id}"


class EmailChangeOutcome(enum.Enum):
    NOT_FOUND = "not_found"
    LOGIN_REQUIRED = "login_required"
    UNAVAILABLE = "unavailable"
    EMAIL_TAKEN = "email_taken"
    CONFIRMED = "confirmed"


class EmailChangeError(Exception):
    """Raised by request_email_change. code matches the API error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class EmailChangeDeps:
    users: UserStore
    temp_store: TempStore
    mailing_list: MailingList
    email: EmailSender
    tasks: TaskQueue


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


def request_email_change(user: User, new_email: str, base_url: str, deps: EmailChangeDeps) -> datetime:
    """Start an email change for user. Returns the token expiry.

    Raises EmailChangeError("feature_unavailable") without a temporary store,
    EmailChangeError("email_taken") when new_email belongs to an account and
    EmailChangeError("same_email") when nothing would change.
    """
    new_email = new_email.strip().lower()
    if not deps.temp_store.available:
        raise EmailChangeError("feature_unavailable", "Email change requires a temporary store.")
    if new_email == user.email:
        raise EmailChangeError("same_email", "That is already your email address.")
    if deps.users.get_by_email(new_email) is not None:
        raise EmailChangeError("email_taken", "That email address is already in use.")

    raw = generate_verification_token()
    expires = datetime.now(timezone.utc) + timedelta(minutes=TOKEN_EXPIRE_MINUTES)
    deps.users.create_verification_token(
        VerificationToken(token=hash_token(raw), identifier=str(user.id), expires=expires)
    )
    deps.temp_store.set(request_key(user.id), {"email": user.email, "newEmail": new_email}, ex=REQUEST_TTL_SECONDS)

    url = f"{base_url.rstrip('/')}/auth/confirm-email-change/{raw}"
    deps.tasks.enqueue(
        "email-change-verification",
        send_email_change_verification,
        deps.email,
        to=new_email,
        url=url,
        expires_minutes=TOKEN_EXPIRE_MINUTES,
        idempotency_key=f"email-change-verification/{hash_token(raw)}",
    )
    logger.info("Email change requested for user %s", user.id)
    return expires


# ---------------------------------------------------------------------------
# Confirm
# ---------------------------------------------------------------------------


def _delete_request(users: UserStore, temp_store: TempStore, token: VerificationToken) -> None:
    users.delete_verification_token(token.token)
    if temp_store.available:
        temp_store.delete(request_key(token.identifier))


def confirm_email_change(token: str, current_user: User | None, deps: EmailChangeDeps) -> EmailChangeOutcome:
    found = deps.users.get_verification_token(hash_token(token))
    if found is None or found.is_expired(datetime.now(timezone.utc)):
        return EmailChangeOutcome.NOT_FOUND

    if current_user is None:
        return EmailChangeOutcome.LOGIN_REQUIRED

    if not deps.temp_store.available:
        return EmailChangeOutcome.UNAVAILABLE

    data = deps.temp_store.get(request_key(current_user.id))
    if not data:
        return EmailChangeOutcome.NOT_FOUND

    old_email, new_email = data["email"], data["newEmail"]

    deps.mailing_list.unsubscribe(old_email)
    try:
        deps.users.update_email(current_user.id, new_email)
    except IntegrityError:
        logger.warning("Email change for user %s lost the race for %s", current_user.id, new_email)
        deps.tasks.enqueue("email-change-cleanup", _delete_request, deps.users, deps.temp_store, found)
        deps.tasks.enqueue("mailing-list-subscribe", deps.mailing_list.subscribe, old_email)
        return EmailChangeOutcome.EMAIL_TAKEN

    deps.tasks.enqueue("email-change-cleanup", _delete_request, deps.users, deps.temp_store, found)
    deps.tasks.enqueue("mailing-list-subscribe", deps.mailing_list.subscribe, new_email)
    deps.tasks.enqueue(
        "email-updated-notice",
        send_email_updated,
        deps.email,
        old_email=old_email,
        new_email=new_email,
        idempotency_key=f"email-updated/{found.token}",
    )
    logger.info("Email changed for user %s", current_user.id)
    return EmailChangeOutcome.CONFIRMED
