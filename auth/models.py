"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (plain data containers). Mirrors the approach
in core/models.py and teams/models.py -- dataclasses own domain shape; stores
and routes do the work.

Layer rule: no imports from api/, web/, services/, integrations/ or teams/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """Represents an authenticated identity in DocRoom.

    email is the login identifier and the address every transactional email
    goes to. It changes only through the confirmed email-change flow.

    hashed_password is None for passkey-only users.
    """

    email: str
    id: int | None = None
    name: str | None = None
    hashed_password: str | None = None  # None = passkey-only user
    created_at: str | None = None
    is_active: bool = True


@dataclass
class VerificationToken:
    """A single-use confirmation token.

    token holds hash_token(raw) -- the raw value only ever exists in the link
    sent by email. identifier is the id of the user who requested the change,
    stored as a string so other flows can key tokens by email instead.
    """

    token: str
    identifier: str
    expires: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires < now
