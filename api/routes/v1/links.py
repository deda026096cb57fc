"""
api/routes/v1/links.py -- Record visits to a shared link.

Routes:
  POST /api/v1/links/{link_id}/views -- public; records a view or download

The viewer's response does not wait for Slack. The matching notification is
enqueued on the task queue:
  document link, kind=view     -> document_view
  document link, kind=download -> document_download
  data room link               -> dataroom_access
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from api.limiter import limiter
from api.models import ViewCreate, ViewKindEnum, ViewResponse
from core.models import SlackEventData
from integrations.slack.events import notify_dataroom_access, notify_document_download, notify_document_view
from teams.models import Link, View
from teams.store import TeamStore

logger = logging.getLogger("docroom.api.links")

router = APIRouter()


def _event_for(store: TeamStore, link: Link, body: ViewCreate) -> SlackEventData:
    data = SlackEventData(
        team_id=link.team_id,
        link_id=link.id,
        viewer_email=body.viewer_email,
        metadata={"country": body.country} if body.country else {},
    )
    if link.document_id:
        document = store.get_document(link.document_id)
        data.document_id = link.document_id
        data.document_name = document.name if document else None
    if link.dataroom_id:
        dataroom = store.get_dataroom(link.dataroom_id)
        data.dataroom_id = link.dataroom_id
        data.dataroom_name = dataroom.name if dataroom else None
    return data


@router.post("/links/{link_id}/views", response_model=ViewResponse, status_code=201)
@limiter.limit("60/minute")
def record_view(link_id: str, body: ViewCreate, request: Request) -> ViewResponse:
    store: TeamStore = request.app.state.team_store
    link = store.get_link(link_id)
    if link is None:
        raise HTTPException(status_code=404, detail={"code": "link_not_found", "message": "Link not found."})

    view_id = store.record_view(View(link_id=link_id, viewer_email=body.viewer_email, kind=body.kind.value))

    event = _event_for(store, link, body)
    if link.dataroom_id:
        notify = notify_dataroom_access
    elif body.kind == ViewKindEnum.download:
        notify = notify_document_download
    else:
        notify = notify_document_view
    request.app.state.tasks.enqueue(f"slack-{notify.__name__}", notify, request.app.state.slack_events, event)

    return ViewResponse(id=view_id, link_id=link_id, kind=body.kind)
