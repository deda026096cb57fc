"""
api/routes/v1/auth.py -- Password authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup   -- create an account; sets JWT cookie; welcome email
  POST /api/v1/auth/login    -- password login; sets JWT cookie
  POST /api/v1/auth/logout   -- clears cookie; 200
  GET  /api/v1/auth/me       -- current user info (requires auth)

Security:
  [H2] POST /login and /signup are rate-limited per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on responses that carry a token.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import LoginRequest, LoginResponse, MeResponse, SignupRequest
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, hash_password, set_auth_cookie
from core.config import get_settings
from tasks.jobs import schedule_job

logger = logging.getLogger("docroom.api.auth")

router = APIRouter()


def _token_response(user: User, status_code: int = 200) -> JSONResponse:
    settings = get_settings()
    token = create_access_token(user.id, user.email)
    resp = JSONResponse(
        status_code=status_code,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=settings.token_expire_seconds,
            user_id=user.id,
            email=user.email,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/signup", response_model=LoginResponse, status_code=201)
@limiter.limit("5/minute")  # below @router so the registered endpoint is the rate-limited wrapper
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    user_store: UserStore = request.app.state.user_store
    if user_store.get_by_email(body.email) is not None:
        raise HTTPException(
            status_code=409,
            detail={"code": "email_taken", "message": "An account with this email already exists."},
        )
    try:
        uid = user_store.create_user(
            User(email=body.email, name=body.name, hashed_password=hash_password(body.password))
        )
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail={"code": "email_taken", "message": "An account with this email already exists."},
        )
    user = user_store.get_by_id(uid)
    logger.info("User %s signed up", uid)

    services = request.app.state.services
    schedule_job(request.app.state, "welcome-email", {"email": user.email, "name": user.name})
    request.app.state.tasks.enqueue("mailing-list-subscribe", services.mailing_list.subscribe, user.email)
    return _token_response(user, status_code=201)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(LOGIN_RATE_LIMIT)  # [H2] brute-force mitigation
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    Returns the same generic error for an unknown email and a wrong password
    ("bad_credentials") so the endpoint does not reveal which accounts exist.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp
    return _token_response(user)


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(user_id=current_user.id, email=current_user.email, name=current_user.name)
