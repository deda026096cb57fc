"""
teams/store.py -- SQLAlchemy-backed persistence for teams and their content.

Uses SQLAlchemy Core (not ORM) so the dataclasses in teams/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. TeamStore is the repository; the _row_to_*
functions are the mappers. Route handlers never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = TeamStore()
    team_id = store.create_team(Team(name="Acme"))
    store.add_member(TeamMember(team_id=team_id, user_id=1, role="ADMIN"))
    usage = store.get_usage(team_id)
    store.close()
"""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from core.models import Usage
from teams.models import Dataroom, Document, InstalledIntegration, Link, Team, TeamMember, View

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'docroom_teams.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_teams = Table(
    "teams",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("plan", String(50), nullable=False, server_default="free"),
    Column("limits", Text),  # JSON object, NULL = plan defaults
    Column("created_at", String(32), nullable=False),
)

_members = Table(
    "team_members",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("team_id", String(32), nullable=False),
    Column("user_id", Integer, nullable=False),
    Column("role", String(20), nullable=False, server_default="MEMBER"),
    UniqueConstraint("team_id", "user_id", name="uq_team_user"),
)

_documents = Table(
    "documents",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("team_id", String(32), nullable=False),
    Column("name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_datarooms = Table(
    "datarooms",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("team_id", String(32), nullable=False),
    Column("name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_links = Table(
    "links",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("team_id", String(32), nullable=False),
    Column("document_id", String(32)),
    Column("dataroom_id", String(32)),
    Column("created_at", String(32), nullable=False),
)

_views = Table(
    "views",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("link_id", String(32), nullable=False),
    Column("viewer_email", String(255)),
    Column("kind", String(20), nullable=False, server_default="view"),
    Column("viewed_at", String(32), nullable=False),
)

_integrations = Table(
    "installed_integrations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("team_id", String(32), nullable=False),
    Column("integration_id", String(100), nullable=False),
    Column("enabled", Integer, nullable=False, server_default="1"),
    Column("credentials", Text),  # JSON
    Column("configuration", Text),  # JSON
    UniqueConstraint("team_id", "integration_id", name="uq_team_integration"),
)

_feature_flags = Table(
    "feature_flags",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("team_id", String(32), nullable=False),
    UniqueConstraint("name", "team_id", name="uq_flag_team"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TeamStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    # ------------------------------------------------------------------
    # Teams and members
    # ------------------------------------------------------------------

    def create_team(self, team: Team) -> str:
        team_id = team.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _teams.insert().values(
                    id=team_id,
                    name=team.name,
                    plan=team.plan,
                    limits=json.dumps(team.limits) if team.limits is not None else None,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return team_id

    def get_team(self, team_id: str) -> Optional[Team]:
        with self.engine.connect() as conn:
            row = conn.execute(_teams.select().where(_teams.c.id == team_id)).fetchone()
        return _row_to_team(row) if row is not None else None

    def update_plan(self, team_id: str, plan: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_teams.update().where(_teams.c.id == team_id).values(plan=plan))
            conn.commit()
        return result.rowcount > 0

    def add_member(self, member: TeamMember) -> None:
        """Add a user to a team. Raises IntegrityError if already a member."""
        with self.engine.connect() as conn:
            conn.execute(_members.insert().values(team_id=member.team_id, user_id=member.user_id, role=member.role))
            conn.commit()

    def get_member(self, team_id: str, user_id: int) -> Optional[TeamMember]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _members.select().where((_members.c.team_id == team_id) & (_members.c.user_id == user_id))
            ).fetchone()
        if row is None:
            return None
        return TeamMember(team_id=row.team_id, user_id=row.user_id, role=row.role)

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def get_usage(self, team_id: str) -> Usage:
        """Count the team's documents, links and members.

        Three separate counts, not one snapshot: the numbers may be off by a
        concurrent insert, which the limit evaluator tolerates.
        """
        with self.engine.connect() as conn:
            documents = conn.execute(
                select(func.count()).select_from(_documents).where(_documents.c.team_id == team_id)
            ).scalar()
            links = conn.execute(select(func.count()).select_from(_links).where(_links.c.team_id == team_id)).scalar()
            users = conn.execute(
                select(func.count()).select_from(_members).where(_members.c.team_id == team_id)
            ).scalar()
        return Usage(documents=documents or 0, links=links or 0, users=users or 0)

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def create_document(self, document: Document) -> str:
        doc_id = document.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _documents.insert().values(id=doc_id, team_id=document.team_id, name=document.name, created_at=_now_iso())
            )
            conn.commit()
        return doc_id

    def get_document(self, document_id: str) -> Optional[Document]:
        with self.engine.connect() as conn:
            row = conn.execute(_documents.select().where(_documents.c.id == document_id)).fetchone()
        if row is None:
            return None
        return Document(id=row.id, team_id=row.team_id, name=row.name, created_at=row.created_at)

    def create_dataroom(self, dataroom: Dataroom) -> str:
        room_id = dataroom.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _datarooms.insert().values(id=room_id, team_id=dataroom.team_id, name=dataroom.name, created_at=_now_iso())
            )
            conn.commit()
        return room_id

    def get_dataroom(self, dataroom_id: str) -> Optional[Dataroom]:
        with self.engine.connect() as conn:
            row = conn.execute(_datarooms.select().where(_datarooms.c.id == dataroom_id)).fetchone()
        if row is None:
            return None
        return Dataroom(id=row.id, team_id=row.team_id, name=row.name, created_at=row.created_at)

    def create_link(self, link: Link) -> str:
        link_id = link.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _links.insert().values(
                    id=link_id,
                    team_id=link.team_id,
                    document_id=link.document_id,
                    dataroom_id=link.dataroom_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return link_id

    def get_link(self, link_id: str) -> Optional[Link]:
        with self.engine.connect() as conn:
            row = conn.execute(_links.select().where(_links.c.id == link_id)).fetchone()
        if row is None:
            return None
        return Link(
            id=row.id,
            team_id=row.team_id,
            document_id=row.document_id,
            dataroom_id=row.dataroom_id,
            created_at=row.created_at,
        )

    def record_view(self, view: View) -> str:
        view_id = view.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _views.insert().values(
                    id=view_id,
                    link_id=view.link_id,
                    viewer_email=view.viewer_email,
                    kind=view.kind,
                    viewed_at=_now_iso(),
                )
            )
            conn.commit()
        return view_id

    def count_views(self, link_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_views).where(_views.c.link_id == link_id)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Installed integrations
    # ------------------------------------------------------------------

    def get_installed_integration(self, team_id: str, integration_id: str) -> Optional[InstalledIntegration]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _integrations.select().where(
                    (_integrations.c.team_id == team_id) & (_integrations.c.integration_id == integration_id)
                )
            ).fetchone()
        return _row_to_integration(row) if row is not None else None

    def save_installed_integration(self, integration: InstalledIntegration) -> None:
        """Insert or replace the (team, integration) row."""
        values = dict(
            enabled=1 if integration.enabled else 0,
            credentials=json.dumps(integration.credentials),
            configuration=json.dumps(integration.configuration),
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                _integrations.update()
                .where(
                    (_integrations.c.team_id == integration.team_id)
                    & (_integrations.c.integration_id == integration.integration_id)
                )
                .values(**values)
            )
            if result.rowcount == 0:
                conn.execute(
                    _integrations.insert().values(
                        team_id=integration.team_id, integration_id=integration.integration_id, **values
                    )
                )
            conn.commit()

    # ------------------------------------------------------------------
    # Feature flags
    # ------------------------------------------------------------------

    def enable_feature(self, team_id: str, name: str) -> None:
        """Turn a flag on for a team. Idempotent."""
        with self.engine.connect() as conn:
            exists = conn.execute(
                select(_feature_flags.c.id).where((_feature_flags.c.team_id == team_id) & (_feature_flags.c.name == name))
            ).fetchone()
            if exists is None:
                conn.execute(_feature_flags.insert().values(team_id=team_id, name=name))
                conn.commit()

    def get_enabled_features(self, team_id: str) -> list[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_feature_flags.c.name).where(_feature_flags.c.team_id == team_id)).fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_team(row) -> Team:
    return Team(
        id=row.id,
        name=row.name,
        plan=row.plan,
        limits=json.loads(row.limits) if row.limits else None,
        created_at=row.created_at,
    )


def _row_to_integration(row) -> InstalledIntegration:
    return InstalledIntegration(
        id=row.id,
        team_id=row.team_id,
        integration_id=row.integration_id,
        enabled=bool(row.enabled),
        credentials=json.loads(row.credentials) if row.credentials else {},
        configuration=json.loads(row.configuration) if row.configuration else {},
    )
