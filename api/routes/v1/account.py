"""
api/routes/v1/account.py -- Self-service account changes.

Routes:
  POST /api/v1/account/email-change -- start an email change (requires auth)

The change is only applied when the user opens the link mailed to the new
address (GET /auth/confirm-email-change/{token}, served by web/routes.py).

Rate limit: 3 requests per hour per user through the shared sliding-window
limiter. Keyed by user id, not IP, since the endpoint sends mail to an
address of the caller's choosing.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import EmailChangeRequest, EmailChangeResponse
from auth.dependencies import get_current_user
from auth.email_change import EmailChangeDeps, EmailChangeError, request_email_change
from auth.models import User
from core.config import get_settings

router = APIRouter()

_STATUS_FOR_CODE = {
    "feature_unavailable": 503,
    "email_taken": 409,
    "same_email": 400,
}


def email_change_deps(request: Request) -> EmailChangeDeps:
    services = request.app.state.services
    return EmailChangeDeps(
        users=request.app.state.user_store,
        temp_store=services.temp_store,
        mailing_list=services.mailing_list,
        email=services.email,
        tasks=request.app.state.tasks,
    )


@router.post("/account/email-change", response_model=EmailChangeResponse, status_code=202)
def start_email_change(
    request: Request,
    body: EmailChangeRequest,
    current_user: User = Depends(get_current_user),
) -> EmailChangeResponse:
    limiter = request.app.state.services.rate_limits.ratelimit(3, "1 h")
    if limiter is not None:
        result = limiter.hit(f"email-change:{current_user.id}")
        if not result.success:
            raise HTTPException(
                status_code=429,
                detail={"code": "rate_limited", "message": "Too many email change requests. Try again later."},
                headers={"Retry-After": str(limiter.retry_after(result))},
            )

    try:
        expires = request_email_change(
            current_user, body.new_email, get_settings().base_url, email_change_deps(request)
        )
    except EmailChangeError as e:
        raise HTTPException(
            status_code=_STATUS_FOR_CODE.get(e.code, 400),
            detail={"code": e.code, "message": e.message},
        )

    return EmailChangeResponse(
        message=f"Check {body.new_email} for a confirmation link.",
        expires_at=expires.isoformat(),
    )
