"""
api/routes/v1/teams.py -- Team limits, content creation and invitations.

Routes:
  GET  /api/v1/teams/{team_id}/limits     -- plan limits, usage and capability flags
  POST /api/v1/teams/{team_id}/documents  -- create a document (403 limit_reached when full)
  POST /api/v1/teams/{team_id}/links      -- create a link (403 limit_reached when full)
  POST /api/v1/teams/{team_id}/invites    -- invite a teammate by email (admin/manager)

Every route requires auth and team membership. A team the caller does not
belong to answers 404, same as a team that does not exist.

The limit check and the insert are two statements: two concurrent creates
can both pass the check. Limits are a billing nudge, not a hard quota.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import (
    DocumentCreate,
    DocumentResponse,
    InviteRequest,
    InviteResponse,
    LimitsResponse,
    LinkCreate,
    LinkResponse,
    PlanLimitsModel,
    UsageModel,
)
from auth.dependencies import get_current_user
from auth.models import User
from core.config import get_settings
from core.limits import evaluate_limits, is_free_plan, is_trial_plan, resolve_plan_limits
from emails.send import send_teammate_invite_email
from teams.invitations import create_invitation, team_limit_flags
from teams.models import Document, Link, Team
from teams.store import TeamStore

logger = logging.getLogger("docroom.api.teams")

router = APIRouter()

MANAGER_ROLES = ("ADMIN", "MANAGER")


def get_member_team(request: Request, team_id: str, user: User, roles: Optional[tuple[str, ...]] = None) -> Team:
    """Return the team if user belongs to it (with one of roles, when given).

    Raises 404 for unknown teams and non-members, 403 for a member whose role
    is not allowed.
    """
    store: TeamStore = request.app.state.team_store
    team = store.get_team(team_id)
    member = store.get_member(team_id, user.id) if team is not None else None
    if team is None or member is None:
        raise HTTPException(status_code=404, detail={"code": "team_not_found", "message": "Team not found."})
    if roles is not None and member.role not in roles:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You do not have permission to do this."},
        )
    return team


def _limit_reached(metric: str) -> HTTPException:
    return HTTPException(
        status_code=403,
        detail={"code": "limit_reached", "message": f"You have reached the {metric} limit of your plan."},
    )


@router.get("/teams/{team_id}/limits", response_model=LimitsResponse)
def get_limits(team_id: str, request: Request, user: User = Depends(get_current_user)) -> LimitsResponse:
    team = get_member_team(request, team_id, user)
    limits = resolve_plan_limits(team.plan, team.limits)
    usage = request.app.state.team_store.get_usage(team_id)
    flags = evaluate_limits(
        limits,
        usage,
        is_free=is_free_plan(team.plan),
        is_trial=is_trial_plan(team.plan),
        self_hosted=get_settings().is_self_hosted,
    )
    return LimitsResponse(
        plan=team.plan,
        limits=PlanLimitsModel(**vars(limits)),
        usage=UsageModel(**vars(usage)),
        can_add_documents=flags.can_add_documents,
        can_add_links=flags.can_add_links,
        can_add_users=flags.can_add_users,
        show_upgrade_plan_modal=flags.show_upgrade_plan_modal,
    )


@router.post("/teams/{team_id}/documents", response_model=DocumentResponse, status_code=201)
def create_document(
    team_id: str, body: DocumentCreate, request: Request, user: User = Depends(get_current_user)
) -> DocumentResponse:
    team = get_member_team(request, team_id, user)
    store: TeamStore = request.app.state.team_store
    if not team_limit_flags(store, team, get_settings().is_self_hosted).can_add_documents:
        raise _limit_reached("document")
    doc_id = store.create_document(Document(team_id=team_id, name=body.name))
    return DocumentResponse(id=doc_id, team_id=team_id, name=body.name)


@router.post("/teams/{team_id}/links", response_model=LinkResponse, status_code=201)
def create_link(
    team_id: str, body: LinkCreate, request: Request, user: User = Depends(get_current_user)
) -> LinkResponse:
    team = get_member_team(request, team_id, user)
    store: TeamStore = request.app.state.team_store
    if bool(body.document_id) == bool(body.dataroom_id):
        raise HTTPException(
            status_code=422,
            detail={"code": "validation_error", "message": "Provide exactly one of document_id or dataroom_id."},
        )
    target = store.get_document(body.document_id) if body.document_id else store.get_dataroom(body.dataroom_id)
    if target is None or target.team_id != team_id:
        raise HTTPException(
            status_code=404, detail={"code": "not_found", "message": "Document or data room not found."}
        )
    if not team_limit_flags(store, team, get_settings().is_self_hosted).can_add_links:
        raise _limit_reached("link")
    link_id = store.create_link(Link(team_id=team_id, document_id=body.document_id, dataroom_id=body.dataroom_id))
    return LinkResponse(id=link_id, team_id=team_id, document_id=body.document_id, dataroom_id=body.dataroom_id)


@router.post("/teams/{team_id}/invites", response_model=InviteResponse, status_code=201)
def invite_teammate(
    team_id: str, body: InviteRequest, request: Request, user: User = Depends(get_current_user)
) -> InviteResponse:
    team = get_member_team(request, team_id, user, roles=MANAGER_ROLES)
    settings = get_settings()
    store: TeamStore = request.app.state.team_store
    if not team_limit_flags(store, team, settings.is_self_hosted).can_add_users:
        raise _limit_reached("user")

    invitee = request.app.state.user_store.get_by_email(body.email)
    if invitee is not None and store.get_member(team_id, invitee.id) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "already_member", "message": "This person is already a member of the team."},
        )

    tasks = request.app.state.tasks
    sender = request.app.state.services.email

    def send(url: str) -> None:
        tasks.enqueue(
            "teammate-invite",
            send_teammate_invite_email,
            sender,
            sender_name=user.name or user.email,
            sender_email=user.email,
            team_name=team.name,
            to=body.email,
            url=url,
        )

    create_invitation(request.app.state.user_store, team, body.email, settings.base_url, send)
    return InviteResponse(message="Invitation sent.", email=body.email)
