"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as teams/store.py).
UserStore is the repository; _row_to_user / _row_to_token are the mappers.
Route and flow code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Verification tokens are stored hashed (see auth/tokens.hash_token); the
  store never sees a raw token.

DB path: auth/docroom_auth.db unless DATABASE_URL is set.

Layer rule: no imports from api/, web/, services/, integrations/ or teams/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import User, VerificationToken

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'docroom_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255)),
    Column("hashed_password", Text),  # NULL for passkey-only users
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_verification_tokens = Table(
    "verification_tokens",
    _metadata,
    Column("token", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("identifier", String(255), nullable=False),
    Column("expires", String(32), nullable=False),  # ISO 8601 UTC
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode per connection (PRAGMAs are not inherited)."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and VerificationToken entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(email="ada@example.com", hashed_password=hash_password("secret")))
        user = store.get_by_email("ada@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email is already registered.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=_normalize_email(user.email),
                    name=user.name,
                    hashed_password=user.hashed_password,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_email(self, user_id: int, new_email: str) -> bool:
        """Replace a user's email. Returns True if a row was updated.

        Raises sqlalchemy.exc.IntegrityError if another account already owns
        new_email.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(email=_normalize_email(new_email))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Verification tokens
    # ------------------------------------------------------------------

    def create_verification_token(self, token: VerificationToken) -> None:
        """Store a hashed verification token, replacing any older token for
        the same identifier so only the latest emailed link works."""
        with self.engine.connect() as conn:
            conn.execute(_verification_tokens.delete().where(_verification_tokens.c.identifier == token.identifier))
            conn.execute(
                _verification_tokens.insert().values(
                    token=token.token,
                    identifier=token.identifier,
                    expires=token.expires.isoformat(),
                )
            )
            conn.commit()

    def get_verification_token(self, hashed_token: str) -> VerificationToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _verification_tokens.select().where(_verification_tokens.c.token == hashed_token)
            ).fetchone()
        return _row_to_token(row) if row is not None else None

    def delete_verification_token(self, hashed_token: str) -> bool:
        """Delete a token. Idempotent: returns False if it was already gone."""
        with self.engine.connect() as conn:
            result = conn.execute(_verification_tokens.delete().where(_verification_tokens.c.token == hashed_token))
            conn.commit()
        return result.rowcount > 0

    def purge_expired_tokens(self) -> int:
        """Delete every token past its expiry. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_verification_tokens.delete().where(_verification_tokens.c.expires < _now_iso()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )


def _row_to_token(row) -> VerificationToken:
    return VerificationToken(
        token=row.token,
        identifier=row.identifier,
        expires=datetime.fromisoformat(row.expires),
    )
