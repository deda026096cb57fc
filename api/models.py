"""
API request and response models for DocRoom REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/, auth/ and
teams/, which own the internal domain representation. Route handlers map
between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.models import EVENT_TYPES

# Deliberately loose: the confirmation email is the real validation.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _normalize_email(value: str) -> str:
    return str(value).strip().lower()


# ---------------------------------------------------------------------------
# Common
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=1024)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return _normalize_email(value)


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=1024)
    name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return _normalize_email(value)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user_id: int
    email: str


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    name: Optional[str] = None


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


class EmailChangeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    new_email: str = Field(pattern=EMAIL_PATTERN, max_length=255)

    @field_validator("new_email")
    @classmethod
    def lower_new_email(cls, value: str) -> str:
        return _normalize_email(value)


class EmailChangeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    expires_at: str


# ---------------------------------------------------------------------------
# Teams, limits, content
# ---------------------------------------------------------------------------


class PlanLimitsModel(BaseModel):
    """Merged plan limits. None means unlimited."""

    model_config = ConfigDict(frozen=True)

    documents: Optional[int] = None
    links: Optional[int] = None
    users: Optional[int] = None
    domains: Optional[int] = None
    datarooms: Optional[int] = None
    dataroom_upload: bool = False


class UsageModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    documents: int = 0
    links: int = 0
    users: int = 0


class LimitsResponse(BaseModel):
    """Response for GET /api/v1/teams/{team_id}/limits."""

    model_config = ConfigDict(frozen=True)

    plan: str
    limits: PlanLimitsModel
    usage: UsageModel
    can_add_documents: bool
    can_add_links: bool
    can_add_users: bool
    show_upgrade_plan_modal: bool


class DocumentCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class DocumentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    team_id: str
    name: str


class LinkCreate(BaseModel):
    """Exactly one of document_id / dataroom_id must be given."""

    document_id: Optional[str] = Field(default=None, max_length=32)
    dataroom_id: Optional[str] = Field(default=None, max_length=32)


class LinkResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    team_id: str
    document_id: Optional[str] = None
    dataroom_id: Optional[str] = None


class InviteRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return _normalize_email(value)


class InviteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    email: str


class ViewKindEnum(str, Enum):
    view = "view"
    download = "download"


class ViewCreate(BaseModel):
    """Request body for POST /api/v1/links/{link_id}/views."""

    model_config = ConfigDict(str_strip_whitespace=True)

    viewer_email: Optional[str] = Field(default=None, max_length=255)
    kind: ViewKindEnum = ViewKindEnum.view
    country: Optional[str] = Field(default=None, max_length=64)


class ViewResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    link_id: str
    kind: ViewKindEnum


# ---------------------------------------------------------------------------
# Slack integration
# ---------------------------------------------------------------------------


class SlackChannelConfig(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    name: Optional[str] = Field(default=None, max_length=255)
    enabled: bool = True
    notificationTypes: list[str] = Field(default_factory=list)

    @field_validator("notificationTypes")
    @classmethod
    def known_event_types(cls, values: list[str]) -> list[str]:
        unknown = [v for v in values if v not in EVENT_TYPES]
        if unknown:
            raise ValueError(f"Unknown notification types: {', '.join(unknown)}")
        return values


class SlackIntegrationUpdate(BaseModel):
    """Request body for PUT /api/v1/teams/{team_id}/integrations/slack."""

    enabled: Optional[bool] = None
    channels: Optional[list[SlackChannelConfig]] = None


class SlackIntegrationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    team_id: str
    enabled: bool
    enabledChannels: dict[str, dict[str, Any]] = Field(default_factory=dict)


class SlackInstallResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    authorize_url: str


# ---------------------------------------------------------------------------
# Passkeys
# ---------------------------------------------------------------------------


class PasskeyFinalizeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user_id: Optional[int] = None
