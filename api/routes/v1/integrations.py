"""
api/routes/v1/integrations.py -- Install and configure the Slack app for a team.

Routes:
  GET  /api/v1/teams/{team_id}/integrations/slack          -- current config (member)
  PUT  /api/v1/teams/{team_id}/integrations/slack          -- enable/disable, channels (admin/manager)
  GET  /api/v1/teams/{team_id}/integrations/slack/install  -- Slack authorize URL (admin/manager)
  GET  /api/v1/integrations/slack/oauth/callback           -- Slack redirects here after consent

OAuth state is "<team_id>.<user_id>.<checksum>", the checksum being the URL
HMAC from auth/tokens.py over "<team_id>.<user_id>". The callback only
accepts it from the same signed-in user, so a forged or replayed state
cannot attach a workspace to someone else's team.

All routes answer 501 slack_not_configured when the Slack app credentials
are missing.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from slack_sdk.errors import SlackApiError

from api.models import SlackInstallResponse, SlackIntegrationResponse, SlackIntegrationUpdate
from api.routes.v1.teams import MANAGER_ROLES, get_member_team
from auth.dependencies import get_current_user
from auth.models import User
from auth.tokens import generate_checksum
from integrations.slack.client import SlackClient
from teams.models import InstalledIntegration
from teams.store import TeamStore

logger = logging.getLogger("docroom.api.integrations")

router = APIRouter()


def _slack_client(request: Request) -> SlackClient:
    client = request.app.state.services.slack_client
    if client is None:
        raise HTTPException(
            status_code=501,
            detail={"code": "slack_not_configured", "message": "The Slack integration is not configured."},
        )
    return client


def _response(integration: InstalledIntegration) -> SlackIntegrationResponse:
    return SlackIntegrationResponse(
        team_id=integration.team_id,
        enabled=integration.enabled,
        enabledChannels=(integration.configuration or {}).get("enabledChannels") or {},
    )


def _not_installed() -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "integration_not_found", "message": "Slack is not installed for this team."},
    )


def make_state(team_id: str, user_id: int) -> str:
    payload = f"{team_id}.{user_id}"
    return f"{payload}.{generate_checksum(payload)}"


def parse_state(state: str) -> tuple[str, int] | None:
    parts = state.split(".")
    if len(parts) != 3 or not parts[1].isdigit():
        return None
    team_id, user_id, checksum = parts
    if not hmac.compare_digest(generate_checksum(f"{team_id}.{user_id}"), checksum):
        return None
    return team_id, int(user_id)


@router.get("/teams/{team_id}/integrations/slack", response_model=SlackIntegrationResponse)
def get_slack_integration(
    team_id: str, request: Request, user: User = Depends(get_current_user)
) -> SlackIntegrationResponse:
    client = _slack_client(request)
    get_member_team(request, team_id, user)
    integration = request.app.state.team_store.get_installed_integration(team_id, client.integration_id)
    if integration is None:
        raise _not_installed()
    return _response(integration)


@router.put("/teams/{team_id}/integrations/slack", response_model=SlackIntegrationResponse)
def update_slack_integration(
    team_id: str,
    body: SlackIntegrationUpdate,
    request: Request,
    user: User = Depends(get_current_user),
) -> SlackIntegrationResponse:
    """Replace the channel configuration and/or toggle the integration.

    channels, when given, replaces the whole enabledChannels map.
    """
    client = _slack_client(request)
    get_member_team(request, team_id, user, roles=MANAGER_ROLES)
    store: TeamStore = request.app.state.team_store
    integration = store.get_installed_integration(team_id, client.integration_id)
    if integration is None:
        raise _not_installed()

    if body.enabled is not None:
        integration.enabled = body.enabled
    if body.channels is not None:
        integration.configuration = {
            **(integration.configuration or {}),
            "enabledChannels": {c.id: c.model_dump() for c in body.channels},
        }
    store.save_installed_integration(integration)
    logger.info("Slack integration updated for team %s by user %s", team_id, user.id)
    return _response(integration)


@router.get("/teams/{team_id}/integrations/slack/install", response_model=SlackInstallResponse)
def install_slack(team_id: str, request: Request, user: User = Depends(get_current_user)) -> SlackInstallResponse:
    client = _slack_client(request)
    get_member_team(request, team_id, user, roles=MANAGER_ROLES)
    return SlackInstallResponse(authorize_url=client.authorize_url(make_state(team_id, user.id)))


@router.get("/integrations/slack/oauth/callback", response_model=SlackIntegrationResponse)
def slack_oauth_callback(
    request: Request,
    code: str = "",
    state: str = "",
    error: str = "",
    user: User = Depends(get_current_user),
) -> SlackIntegrationResponse:
    client = _slack_client(request)
    if error or not code:
        raise HTTPException(
            status_code=400,
            detail={"code": "slack_oauth_denied", "message": "Slack authorization was cancelled."},
        )
    parsed = parse_state(state)
    if parsed is None or parsed[1] != user.id:
        raise HTTPException(status_code=400, detail={"code": "invalid_state", "message": "Invalid OAuth state."})
    team_id = parsed[0]
    get_member_team(request, team_id, user, roles=MANAGER_ROLES)

    try:
        credentials = client.exchange_code(code)
    except SlackApiError as e:
        logger.warning("Slack OAuth exchange failed for team %s: %s", team_id, e)
        raise HTTPException(
            status_code=502,
            detail={"code": "slack_oauth_failed", "message": "Could not complete the Slack installation."},
        )

    store: TeamStore = request.app.state.team_store
    existing = store.get_installed_integration(team_id, client.integration_id)
    integration = InstalledIntegration(
        team_id=team_id,
        integration_id=client.integration_id,
        enabled=True,
        credentials=credentials,
        configuration=existing.configuration if existing else {"enabledChannels": {}},
    )
    store.save_installed_integration(integration)
    logger.info("Slack installed for team %s (workspace %s)", team_id, credentials.get("teamName"))
    return _response(integration)
