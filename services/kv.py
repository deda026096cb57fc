"""
services/kv.py -- Temporary key/value store with expiry.

Holds short-lived pending state between two requests (e.g. the old and new
address of a pending email change). Values are JSON-serializable dicts.

Implementations:
  UpstashRedisStore -- Upstash Redis over its REST API (hosted deployments).
  SQLiteTempStore   -- SQLAlchemy table with an expires_at column, for
                       single-node self-hosted installs and tests.
  DisabledTempStore -- no store configured. available is False and callers
                       must answer "feature unavailable" instead of writing.

Usage:
    store.set("email-change-request:user:7", {"email": a, "newEmail": b}, ex=900)
    data = store.get("email-change-request:user:7")   # dict or None
    store.delete("email-change-request:user:7")
"""

import json
import logging
import time
from typing import Any, Optional

import requests
from sqlalchemy import Column, Float, MetaData, String, Table, Text, create_engine, delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

logger = logging.getLogger("docroom.kv")


class TempStore:
    """Capability interface. Subclasses implement get/set/delete."""

    available = True

    def get(self, key: str) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def set(self, key: str, value: dict[str, Any], ex: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Upstash Redis (REST)
# ---------------------------------------------------------------------------


class UpstashRedisStore(TempStore):
    """Upstash Redis accessed through its REST endpoint.

    Each command is POSTed as a JSON array (["SET", key, value, "EX", 900]);
    the response body is {"result": ...} or {"error": "..."}.
    """

    def __init__(self, url: str, token: str, timeout: float = 5.0) -> None:
        self._url = url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers["Authorization"] = f"Bearer {token}"

    def _command(self, *args: Any) -> Any:
        resp = self._session.post(self._url, json=list(args), timeout=self._timeout)
        resp.raise_for_status()
        body = resp.json()
        if "error" in body:
            raise RuntimeError(f"Upstash error: {body['error']}")
        return body.get("result")

    def get(self, key: str) -> Optional[dict[str, Any]]:
        raw = self._command("GET", key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: dict[str, Any], ex: Optional[int] = None) -> None:
        args: list[Any] = ["SET", key, json.dumps(value)]
        if ex:
            args += ["EX", ex]
        self._command(*args)

    def delete(self, key: str) -> None:
        self._command("DEL", key)

    def close(self) -> None:
        self._session.close()


# ---------------------------------------------------------------------------
# SQLite (single node)
# ---------------------------------------------------------------------------

_metadata = MetaData()

_entries = Table(
    "temp_store",
    _metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
    Column("expires_at", Float),  # epoch seconds, NULL = no expiry
)


class SQLiteTempStore(TempStore):
    """Expiring key/value rows in SQLite. Expired rows are dropped on read."""

    def __init__(self, db_url: str) -> None:
        self.engine = create_engine(db_url, connect_args={"check_same_thread": False})
        _metadata.create_all(self.engine)

    def get(self, key: str) -> Optional[dict[str, Any]]:
        with self.engine.connect() as conn:
            row = conn.execute(select(_entries.c.value, _entries.c.expires_at).where(_entries.c.key == key)).fetchone()
        if row is None:
            return None
        value, expires_at = row
        if expires_at is not None and time.time() > expires_at:
            self.delete(key)
            return None
        return json.loads(value)

    def set(self, key: str, value: dict[str, Any], ex: Optional[int] = None) -> None:
        expires_at = time.time() + ex if ex else None
        stmt = sqlite_insert(_entries).values(key=key, value=json.dumps(value), expires_at=expires_at)
        stmt = stmt.on_conflict_do_update(
            index_elements=[_entries.c.key],
            set_={"value": stmt.excluded.value, "expires_at": stmt.excluded.expires_at},
        )
        with self.engine.connect() as conn:
            conn.execute(stmt)
            conn.commit()

    def delete(self, key: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(delete(_entries).where(_entries.c.key == key))
            conn.commit()

    def purge_expired(self) -> int:
        """Delete all expired rows. Returns number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(delete(_entries).where(_entries.c.expires_at < time.time()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Disabled
# ---------------------------------------------------------------------------


class DisabledTempStore(TempStore):
    """Placeholder used when no temporary store is configured."""

    available = False

    def get(self, key: str) -> Optional[dict[str, Any]]:
        return None

    def set(self, key: str, value: dict[str, Any], ex: Optional[int] = None) -> None:
        logger.warning("Temporary store not configured -- dropping write for %s", key)

    def delete(self, key: str) -> None:
        pass
