"""
api/routes/feature_flags.py -- Feature flag lookup for the frontend.

Routes:
  GET /api/feature-flags?teamId=<id> -- {flag_name: bool} for every known flag

Unversioned and public: the frontend calls it before it knows whether the
visitor is signed in, and the answer only says which features exist for a
team id. Errors answer 500 {"error": "Failed to fetch feature flags"}, the
shape the frontend already handles.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.feature_flags import get_feature_flags

logger = logging.getLogger("docroom.api.feature_flags")

router = APIRouter()


@router.get("/feature-flags")
def feature_flags(request: Request, team_id: Optional[str] = Query(default=None, alias="teamId")) -> JSONResponse:
    try:
        flags = get_feature_flags(
            team_id,
            request.app.state.team_store.get_enabled_features,
            self_hosted=get_settings().is_self_hosted,
        )
    except Exception:
        logger.exception("Error fetching feature flags for team %s", team_id)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch feature flags"})
    return JSONResponse(content=flags)
