"""
teams/models.py -- Domain dataclasses for teams and their content.

Plain data containers. Plan and limit logic lives in core/limits.py; queries
live in teams/store.py.

Ids are 32-char hex strings (uuid4) except user ids, which come from the auth
store's integer primary key.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Team:
    """A workspace that owns documents and links.

    plan is a catalogue name from core/limits.PLAN_LIMITS, optionally with the
    "+drtrial" suffix. limits is a per-team override of the plan defaults
    (stored as JSON), None when the team uses the plan as-is.
    """

    name: str
    plan: str = "free"
    id: Optional[str] = None
    limits: Optional[dict[str, Any]] = None
    created_at: str = ""


@dataclass
class TeamMember:
    team_id: str
    user_id: int
    role: str = "MEMBER"  # "ADMIN" | "MANAGER" | "MEMBER"


@dataclass
class Document:
    team_id: str
    name: str
    id: Optional[str] = None
    created_at: str = ""


@dataclass
class Dataroom:
    team_id: str
    name: str
    id: Optional[str] = None
    created_at: str = ""


@dataclass
class Link:
    """A shareable link to either a document or a data room."""

    team_id: str
    document_id: Optional[str] = None
    dataroom_id: Optional[str] = None
    id: Optional[str] = None
    created_at: str = ""


@dataclass
class View:
    link_id: str
    viewer_email: Optional[str] = None
    kind: str = "view"  # "view" | "download"
    id: Optional[str] = None
    viewed_at: str = ""


@dataclass
class InstalledIntegration:
    """A third-party app installed on a team.

    credentials and configuration are provider-specific JSON. For Slack:
      credentials   = {"accessToken": "xoxb-...", "teamId": ..., "botUserId": ...}
      configuration = {"enabledChannels": {"C123": {"id": "C123", "name": "deals",
                        "enabled": true, "notificationTypes": ["document_view"]}}}
    """

    team_id: str
    integration_id: str
    enabled: bool = True
    credentials: dict[str, Any] = field(default_factory=dict)
    configuration: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
