"""
integrations/slack/events.py -- Fan a domain event out to a team's Slack channels.

Flow for one event:
  1. No Slack app configured (client is None)      -> return
  2. Team has no Slack integration row, or it is off -> return
  3. Select channels with enabled == True whose notificationTypes include the
     event type
  4. Deliver to each channel independently. A failed channel is logged and
     the loop moves on; nothing is rolled back or retried here.

process_event() never raises. It runs on the background task queue after the
viewer's response is sent, so a Slack outage must not surface anywhere else.
"""

import logging
from dataclasses import replace
from typing import Any, Optional, Protocol

from core.models import (
    EVENT_DATAROOM_ACCESS,
    EVENT_DOCUMENT_DOWNLOAD,
    EVENT_DOCUMENT_VIEW,
    SlackEventData,
)
from integrations.slack.client import SlackClient
from integrations.slack.templates import create_slack_message
from teams.models import InstalledIntegration

logger = logging.getLogger("docroom.slack.events")


class IntegrationLookup(Protocol):
    def get_installed_integration(self, team_id: str, integration_id: str) -> Optional[InstalledIntegration]: ...


def select_channels(integration: InstalledIntegration, event_type: str) -> list[dict[str, Any]]:
    """Return the channel configs that should receive event_type.

    A channel qualifies iff it is enabled and lists the event type. The
    channel id falls back to its key in enabledChannels when the stored
    config omits it.
    """
    enabled_channels = (integration.configuration or {}).get("enabledChannels") or {}
    selected = []
    for channel_id, channel in enabled_channels.items():
        if not isinstance(channel, dict) or channel.get("enabled") is not True:
            continue
        if event_type not in (channel.get("notificationTypes") or []):
            continue
        selected.append({**channel, "id": channel.get("id") or channel_id})
    return selected


class SlackEventManager:
    def __init__(self, client: Optional[SlackClient], integrations: IntegrationLookup) -> None:
        self.client = client
        self.integrations = integrations

    def process_event(self, event: SlackEventData) -> None:
        if self.client is None:
            return

        try:
            integration = self.integrations.get_installed_integration(event.team_id, self.client.integration_id)
            if integration is None or not integration.enabled:
                return
            self._send_notification(event, integration)
        except Exception:
            logger.exception("Error processing Slack event for team %s", event.team_id)

    def _send_notification(self, event: SlackEventData, integration: InstalledIntegration) -> int:
        """Deliver to every selected channel. Returns the number of successful sends."""
        client = self.client
        if client is None:
            return 0
        channels = select_channels(integration, event.event_type)
        if not channels:
            return 0

        access_token = (integration.credentials or {}).get("accessToken")
        sent = 0
        for channel in channels:
            try:
                message = create_slack_message(event)
                if message is None:
                    continue
                client.send_message(access_token, {**message, "channel": channel["id"]})
                sent += 1
            except Exception as e:
                logger.error("Error sending to channel %s: %s", channel.get("name") or channel["id"], e)
        return sent


# ---------------------------------------------------------------------------
# Convenience entry points
# ---------------------------------------------------------------------------


def notify_document_view(manager: Optional[SlackEventManager], data: SlackEventData) -> None:
    if manager is None:
        return
    manager.process_event(replace(data, event_type=EVENT_DOCUMENT_VIEW))


def notify_dataroom_access(manager: Optional[SlackEventManager], data: SlackEventData) -> None:
    if manager is None:
        return
    manager.process_event(replace(data, event_type=EVENT_DATAROOM_ACCESS))


def notify_document_download(manager: Optional[SlackEventManager], data: SlackEventData) -> None:
    if manager is None:
        return
    manager.process_event(replace(data, event_type=EVENT_DOCUMENT_DOWNLOAD))
