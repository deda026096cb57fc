"""
web/routes.py -- Jinja2 template routes for the DocRoom web pages.

These routes serve server-rendered HTML for the links people open from
emails. They share app.state with the API routes (same stores, services and
task queue) but return HTML instead of JSON.

Routes:
  GET  /                                   -- account overview (auth required)
  GET  /login                              -- login form
  POST /login                              -- handle password login
  POST /logout                             -- clear cookie, redirect /login
  GET  /auth/confirm-email-change/{token}  -- apply a pending email change
  GET  /verify/invitation                  -- check an invite link's checksum, then forward
  GET  /invitations/accept                 -- join the team (auth required)

Unauthenticated visitors are redirected to /login?next=<path>; the login
form sends them back afterwards. Only relative next targets are honoured.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import try_get_current_user
from auth.email_change import EmailChangeDeps, EmailChangeOutcome, confirm_email_change
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, set_auth_cookie, verify_checksum
from core.config import get_settings
from teams.invitations import InvitationOutcome, accept_invitation

logger = logging.getLogger("docroom.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
# Expose try_get_current_user as a Jinja2 global so layout.html can show the
# signed-in user without every handler passing it in.
templates.env.globals["try_get_current_user"] = try_get_current_user
templates.env.globals["app_name"] = get_settings().app_name
router = APIRouter()

# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /login [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Rejects absolute URLs and protocol-relative URLs ("//evil.example"),
    both of which would redirect off-site after login.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/"


def _login_redirect(request: Request) -> RedirectResponse:
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return RedirectResponse(f"/login?next={quote(target, safe='/')}", status_code=302)


def _not_found(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(request, "not_found.html", {}, status_code=404)


# ---------------------------------------------------------------------------
# GET / -- account overview
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request) -> HTMLResponse:
    user = try_get_current_user(request)
    if user is None:
        return _login_redirect(request)
    return templates.TemplateResponse(request, "home.html", {"user": user})


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    next_url = _safe_next(request.query_params.get("next"))
    if try_get_current_user(request) is not None:
        return RedirectResponse(next_url, status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)  # [M3]
    return templates.TemplateResponse(request, "login.html", {"error_msg": error_msg, "next_url": next_url})


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
    next: str = Form("/"),
) -> RedirectResponse:
    user_store: UserStore = request.app.state.user_store
    next_url = _safe_next(next)  # [C2]
    user = authenticate_user(user_store, email, password)  # [C1] timing equalization
    if user is None:
        return RedirectResponse(f"/login?error=bad_credentials&next={quote(next_url, safe='/')}", status_code=302)

    token = create_access_token(user.id, user.email)
    resp = RedirectResponse(next_url, status_code=302)
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/logout")
def logout() -> RedirectResponse:
    resp = RedirectResponse("/login", status_code=302)
    resp.delete_cookie("access_token")
    return resp


# ---------------------------------------------------------------------------
# Email change confirmation
# ---------------------------------------------------------------------------


@router.get("/auth/confirm-email-change/{token}", response_class=HTMLResponse)
def confirm_email_change_page(token: str, request: Request) -> HTMLResponse:
    services = request.app.state.services
    deps = EmailChangeDeps(
        users=request.app.state.user_store,
        temp_store=services.temp_store,
        mailing_list=services.mailing_list,
        email=services.email,
        tasks=request.app.state.tasks,
    )
    user = try_get_current_user(request)
    outcome = confirm_email_change(token, user, deps)

    if outcome is EmailChangeOutcome.NOT_FOUND:
        return _not_found(request)
    if outcome is EmailChangeOutcome.LOGIN_REQUIRED:
        return RedirectResponse(f"/login?next=/auth/confirm-email-change/{quote(token)}", status_code=302)
    if outcome is EmailChangeOutcome.UNAVAILABLE:
        return templates.TemplateResponse(
            request,
            "unavailable.html",
            {"message": "Email change confirmation requires a temporary store to be configured."},
            status_code=503,
        )
    if outcome is EmailChangeOutcome.EMAIL_TAKEN:
        return templates.TemplateResponse(
            request,
            "message.html",
            {"title": "Email address in use", "message": "That email address now belongs to another account."},
            status_code=409,
        )
    return templates.TemplateResponse(request, "email_changed.html", {})


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@router.get("/verify/invitation", response_class=HTMLResponse)
def verify_invitation(request: Request, verification_url: str = "", checksum: str = "") -> HTMLResponse:
    """Forward to the accept URL only if it carries our checksum and stays on-site."""
    base = get_settings().base_url.rstrip("/")
    if not verification_url or not checksum or not verification_url.startswith(f"{base}/"):
        return _not_found(request)
    if not verify_checksum(verification_url, checksum):
        logger.warning("Invitation link with a bad checksum")
        return _not_found(request)
    return RedirectResponse(verification_url, status_code=302)


_INVITATION_MESSAGES = {
    InvitationOutcome.WRONG_ACCOUNT: (
        "Wrong account",
        "This invitation was sent to a different email address. Sign in with that address to accept it.",
        403,
    ),
    InvitationOutcome.LIMIT_REACHED: (
        "Team is full",
        "This team has no free seats. Ask the person who invited you to upgrade their plan.",
        403,
    ),
    InvitationOutcome.ALREADY_MEMBER: ("Already a member", "You are already a member of this team.", 200),
    InvitationOutcome.ACCEPTED: ("Welcome aboard", "You have joined the team.", 200),
}


@router.get("/invitations/accept", response_class=HTMLResponse)
def accept_invitation_page(request: Request, team: str = "", email: str = "", token: str = "") -> HTMLResponse:
    if not (team and email and token):
        return _not_found(request)
    user = try_get_current_user(request)
    if user is None:
        return _login_redirect(request)

    outcome = accept_invitation(
        request.app.state.user_store,
        request.app.state.team_store,
        team,
        email,
        token,
        user,
        self_hosted=get_settings().is_self_hosted,
    )
    if outcome is InvitationOutcome.NOT_FOUND:
        return _not_found(request)
    title, message, status_code = _INVITATION_MESSAGES[outcome]
    return templates.TemplateResponse(
        request, "message.html", {"title": title, "message": message}, status_code=status_code
    )
