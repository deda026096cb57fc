"""
integrations/slack/client.py -- Thin wrapper over slack_sdk's WebClient.

The app-level credentials (client id/secret, integration id) come from
Settings. Each team's bot token is stored on its installed integration row
and passed per call, so one SlackClient serves every team.

SlackClient() raises SlackNotConfigured when the app credentials are missing.
services/registry.py catches that once at startup and hands the event manager
None instead, which turns every notification into a no-op.
"""

import logging
from typing import Any
from urllib.parse import urlencode

from slack_sdk import WebClient

from core.config import Settings

logger = logging.getLogger("docroom.slack")

SLACK_AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"
BOT_SCOPES = ("chat:write", "chat:write.public", "channels:read", "groups:read")


class SlackNotConfigured(Exception):
    """Raised when the Slack app credentials are not set."""


class SlackClient:
    def __init__(self, settings: Settings) -> None:
        if not settings.slack_configured:
            raise SlackNotConfigured(
                "Slack integration not configured (missing SLACK_CLIENT_ID, SLACK_CLIENT_SECRET "
                "or SLACK_INTEGRATION_ID)"
            )
        self.client_id = settings.slack_client_id
        self._client_secret = settings.slack_client_secret
        self.integration_id = settings.slack_integration_id
        self.redirect_uri = f"{settings.base_url.rstrip('/')}/api/v1/integrations/slack/oauth/callback"

    def _web_client(self, access_token: str | None = None) -> WebClient:
        return WebClient(token=access_token)

    def send_message(self, access_token: str, message: dict[str, Any]) -> None:
        """Post message (channel, text, blocks) with the team's bot token.

        Raises slack_sdk.errors.SlackApiError on any API failure.
        """
        self._web_client(access_token).chat_postMessage(**message)

    def list_channels(self, access_token: str) -> list[dict[str, Any]]:
        """Return the public and private channels the bot can see."""
        resp = self._web_client(access_token).conversations_list(
            types="public_channel,private_channel", exclude_archived=True, limit=200
        )
        return [{"id": c["id"], "name": c["name"]} for c in resp.get("channels", [])]

    def authorize_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "scope": ",".join(BOT_SCOPES),
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        return f"{SLACK_AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> dict[str, Any]:
        """Trade an OAuth code for the team's bot credentials.

        Returns {"accessToken", "teamId", "teamName", "botUserId"}.
        """
        resp = self._web_client().oauth_v2_access(
            client_id=self.client_id,
            client_secret=self._client_secret,
            code=code,
            redirect_uri=self.redirect_uri,
        )
        team = resp.get("team") or {}
        return {
            "accessToken": resp["access_token"],
            "teamId": team.get("id"),
            "teamName": team.get("name"),
            "botUserId": resp.get("bot_user_id"),
        }
