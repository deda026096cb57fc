"""
integrations/slack/templates.py -- Block Kit messages for each event type.

create_slack_message() returns {"text", "blocks"} without a channel; the
dispatcher adds the channel id per delivery. `text` is the plain fallback
Slack shows in notifications and screen readers.
"""

from typing import Any, Optional

from core.config import get_settings
from core.models import (
    EVENT_DATAROOM_ACCESS,
    EVENT_DOCUMENT_DOWNLOAD,
    EVENT_DOCUMENT_VIEW,
    SlackEventData,
)


def _viewer(event: SlackEventData) -> str:
    return event.viewer_email or "Someone"


def _section(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _button(label: str, url: str) -> dict[str, Any]:
    return {
        "type": "actions",
        "elements": [{"type": "button", "text": {"type": "plain_text", "text": label}, "url": url}],
    }


def _context(event: SlackEventData) -> dict[str, Any]:
    parts = []
    if event.link_id:
        parts.append(f"Link: `{event.link_id}`")
    if event.metadata.get("country"):
        parts.append(f"Location: {event.metadata['country']}")
    if not parts:
        parts.append(get_settings().app_name)
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": " | ".join(parts)}]}


def _document_url(event: SlackEventData) -> str:
    return f"{get_settings().base_url.rstrip('/')}/documents/{event.document_id}"


def _dataroom_url(event: SlackEventData) -> str:
    return f"{get_settings().base_url.rstrip('/')}/datarooms/{event.dataroom_id}"


def create_slack_message(event: SlackEventData) -> Optional[dict[str, Any]]:
    """Build the message for event, or None for an event type with no template."""
    viewer = _viewer(event)

    if event.event_type == EVENT_DOCUMENT_VIEW:
        name = event.document_name or "a document"
        text = f"{viewer} viewed {name}"
        blocks = [_section(f":eyes: *{viewer}* viewed *{name}*"), _context(event)]
        if event.document_id:
            blocks.append(_button("View document", _document_url(event)))
        return {"text": text, "blocks": blocks}

    if event.event_type == EVENT_DOCUMENT_DOWNLOAD:
        name = event.document_name or "a document"
        text = f"{viewer} downloaded {name}"
        blocks = [_section(f":arrow_down: *{viewer}* downloaded *{name}*"), _context(event)]
        if event.document_id:
            blocks.append(_button("View document", _document_url(event)))
        return {"text": text, "blocks": blocks}

    if event.event_type == EVENT_DATAROOM_ACCESS:
        name = event.dataroom_name or "a data room"
        text = f"{viewer} accessed {name}"
        blocks = [_section(f":file_folder: *{viewer}* accessed data room *{name}*"), _context(event)]
        if event.dataroom_id:
            blocks.append(_button("Open data room", _dataroom_url(event)))
        return {"text": text, "blocks": blocks}

    return None
