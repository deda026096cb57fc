"""
emails/send.py -- One function per transactional email.

Each helper renders its Jinja2 template and hands the result to the injected
EmailSender. They are written to be enqueued on the background task queue,
so they take plain values (no request, no ORM rows).

Failure policy differs per email:
  welcome               -- best effort: errors are logged and swallowed.
  teammate invitation   -- self-hosted without email: log the invite URL so an
                           admin can pass it on by hand; otherwise re-raise so
                           the task queue retries.
  email change / update -- re-raise; the task queue retries and logs.
"""

import logging
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings, get_settings
from services.email import EmailSender

logger = logging.getLogger("docroom.emails")

_env = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
)


def render(template: str, subject: str, settings: Optional[Settings] = None, **context) -> str:
    settings = settings or get_settings()
    return _env.get_template(template).render(
        subject=subject,
        app_name=settings.app_name,
        base_url=settings.base_url.rstrip("/"),
        **context,
    )


def _is_test(settings: Settings) -> bool:
    return settings.environment == "development"


def send_welcome_email(sender: EmailSender, email: str, name: Optional[str] = None) -> None:
    settings = get_settings()
    subject = f"Welcome to {settings.app_name}!"
    html = render("welcome.html", subject, settings, name=name, is_custom_app=settings.is_self_hosted)
    try:
        sender.send(email, subject, html, test=_is_test(settings), idempotency_key=f"welcome/{email}")
    except Exception as e:
        logger.error("Welcome email to %s failed: %s", email, e)


def send_teammate_invite_email(
    sender: EmailSender,
    *,
    sender_name: str,
    sender_email: str,
    team_name: str,
    to: str,
    url: str,
) -> None:
    settings = get_settings()
    subject = "You are invited to join team"
    html = render(
        "team_invitation.html",
        subject,
        settings,
        sender_name=sender_name,
        sender_email=sender_email,
        team_name=team_name,
        url=url,
    )
    try:
        sender.send(to, subject, html, system=True, test=_is_test(settings))
    except Exception:
        if settings.is_self_hosted:
            logger.info("=== TEAM INVITATION (Email not configured) ===")
            logger.info("To: %s", to)
            logger.info("Team: %s", team_name)
            logger.info("Invitation URL: %s", url)
            return
        raise


def send_email_change_verification(
    sender: EmailSender, *, to: str, url: str, expires_minutes: int, idempotency_key: str
) -> None:
    settings = get_settings()
    subject = "Confirm your new email address"
    html = render(
        "email_change_verification.html",
        subject,
        settings,
        new_email=to,
        url=url,
        expires_minutes=expires_minutes,
    )
    sender.send(to, subject, html, system=True, test=_is_test(settings), idempotency_key=idempotency_key)


def send_email_updated(sender: EmailSender, *, old_email: str, new_email: str, idempotency_key: str) -> None:
    """Tell the OLD address that the account moved, so a hijack is noticed."""
    settings = get_settings()
    subject = "Your email address has been changed"
    html = render("email_updated.html", subject, settings, old_email=old_email, new_email=new_email)
    sender.send(old_email, subject, html, system=True, test=_is_test(settings), idempotency_key=idempotency_key)
