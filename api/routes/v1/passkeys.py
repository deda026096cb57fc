"""
api/routes/v1/passkeys.py -- Passkey registration and login through Hanko.

Routes:
  POST /api/v1/passkeys/registration/initialize -- creation options (requires auth)
  POST /api/v1/passkeys/registration/finalize   -- store the new credential (requires auth)
  POST /api/v1/passkeys/login/initialize        -- request options (public)
  POST /api/v1/passkeys/login/finalize          -- verify assertion; sets JWT cookie (public)

The request body of both finalize routes is the WebAuthn credential JSON from
the browser, passed through to Hanko untouched.

Errors:
  501 passkeys_not_configured -- no Hanko tenant configured
  502 passkeys_unavailable    -- Hanko did not answer or refused the request
  401 passkey_invalid         -- the token Hanko returned does not verify
"""

import logging
from typing import Any

import requests
from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import PasskeyFinalizeResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.passkeys import Passkeys, PasskeysNotConfigured
from auth.tokens import create_access_token, set_auth_cookie

logger = logging.getLogger("docroom.api.passkeys")

router = APIRouter()


def _call(request: Request, operation: str, *args: Any) -> Any:
    """Invoke a Passkeys method and map adapter failures to HTTP errors."""
    passkeys: Passkeys = request.app.state.services.passkeys
    try:
        return getattr(passkeys, operation)(*args)
    except PasskeysNotConfigured:
        raise HTTPException(
            status_code=501,
            detail={"code": "passkeys_not_configured", "message": "Passkeys are not configured."},
        )
    except requests.RequestException as e:
        logger.warning("Hanko %s failed: %s", operation, e)
        raise HTTPException(
            status_code=502,
            detail={"code": "passkeys_unavailable", "message": "The passkey service did not respond."},
        )
    except ValueError as e:
        logger.info("Passkey rejected during %s: %s", operation, e)
        raise HTTPException(
            status_code=401,
            detail={"code": "passkey_invalid", "message": "The passkey could not be verified."},
        )


@router.post("/passkeys/registration/initialize")
def registration_initialize(request: Request, user: User = Depends(get_current_user)) -> dict:
    return _call(request, "registration_initialize", str(user.id), user.email)


@router.post("/passkeys/registration/finalize", response_model=PasskeyFinalizeResponse)
def registration_finalize(
    request: Request,
    credential: dict = Body(...),
    user: User = Depends(get_current_user),
) -> PasskeyFinalizeResponse:
    token = _call(request, "registration_finalize", credential)
    subject = _call(request, "verify_token", token)
    if subject != str(user.id):
        logger.warning("Passkey registered for %s while signed in as %s", subject, user.id)
        raise HTTPException(
            status_code=401,
            detail={"code": "passkey_invalid", "message": "The passkey could not be verified."},
        )
    logger.info("Passkey registered for user %s", user.id)
    return PasskeyFinalizeResponse(message="Passkey registered.", user_id=user.id)


@router.post("/passkeys/login/initialize")
def login_initialize(request: Request) -> dict:
    return _call(request, "login_initialize")


@router.post("/passkeys/login/finalize", response_model=PasskeyFinalizeResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
def login_finalize(request: Request, credential: dict = Body(...)) -> JSONResponse:
    token = _call(request, "login_finalize", credential)
    subject = _call(request, "verify_token", token)

    user = request.app.state.user_store.get_by_id(int(subject)) if subject.isdigit() else None
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=401,
            detail={"code": "passkey_invalid", "message": "The passkey could not be verified."},
        )

    access_token = create_access_token(user.id, user.email)
    resp = JSONResponse(content=PasskeyFinalizeResponse(message="Signed in.", user_id=user.id).model_dump())
    set_auth_cookie(resp, access_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp
