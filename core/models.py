from dataclasses import dataclass, field
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Slack notification event types. Channel configurations store these strings
# in their notificationTypes list, so the values are a persisted contract.
EVENT_DOCUMENT_VIEW = "document_view"
EVENT_DATAROOM_ACCESS = "dataroom_access"
EVENT_DOCUMENT_DOWNLOAD = "document_download"

EVENT_TYPES = (EVENT_DOCUMENT_VIEW, EVENT_DATAROOM_ACCESS, EVENT_DOCUMENT_DOWNLOAD)

# Limit metrics that have a usage counter.
LIMIT_METRICS = ("documents", "links", "users")


@dataclass
class SlackEventData:
    """A single notification-worthy action. Built per request, never persisted."""

    team_id: str
    event_type: str = ""  # one of EVENT_TYPES; set by the notify_* helpers
    document_id: Optional[str] = None
    document_name: Optional[str] = None
    dataroom_id: Optional[str] = None
    dataroom_name: Optional[str] = None
    link_id: Optional[str] = None
    viewer_email: Optional[str] = None
    viewer_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PlanLimits:
    # None means unlimited.
    documents: Optional[int] = None
    links: Optional[int] = None
    users: Optional[int] = None
    domains: Optional[int] = None
    datarooms: Optional[int] = None
    dataroom_upload: bool = False


@dataclass
class Usage:
    documents: int = 0
    links: int = 0
    users: int = 0


@dataclass(frozen=True)
class LimitFlags:
    can_add_documents: bool
    can_add_links: bool
    can_add_users: bool
    show_upgrade_plan_modal: bool
