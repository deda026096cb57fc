"""
tasks/jobs.py -- Named jobs that can run through QStash or the local task queue.

A job is a function (state, body) -> None where state is app.state and body is
the JSON payload. schedule_job() publishes it to QStash, which calls back
POST /api/v1/jobs/<name> (api/routes/v1/jobs.py) after an optional delay.
Without QStash, or when publishing fails, the job goes on the in-process
TaskQueue instead and the delay is dropped.

Jobs are delivered at least once by both transports and must be idempotent.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Optional

import requests

from core.config import get_settings
from emails.send import send_welcome_email
from services.kv import SQLiteTempStore

logger = logging.getLogger("docroom.tasks.jobs")

JobHandler = Callable[[Any, dict], None]


def purge_expired(state: Any, body: Optional[dict] = None) -> int:
    """Delete expired verification tokens and temp store rows."""
    removed = state.user_store.purge_expired_tokens()
    temp_store = state.services.temp_store
    if isinstance(temp_store, SQLiteTempStore):
        removed += temp_store.purge_expired()
    if removed:
        logger.info("Purged %d expired rows", removed)
    return removed


def welcome_email(state: Any, body: dict) -> None:
    send_welcome_email(state.services.email, body["email"], body.get("name"))


JOBS: dict[str, JobHandler] = {
    "purge-expired": purge_expired,
    "welcome-email": welcome_email,
}


def job_url(name: str) -> str:
    return f"{get_settings().base_url.rstrip('/')}/api/v1/jobs/{name}"


def schedule_job(state: Any, name: str, body: dict, delay: Optional[str] = None) -> str:
    """Queue job `name` with body. Returns "qstash" or "local".

    Raises KeyError for an unknown job name.
    """
    handler = JOBS[name]
    queue = state.services.queue
    if queue.available:
        try:
            queue.publish_json(job_url(name), body, delay=delay)
            return "qstash"
        except requests.RequestException as e:
            logger.warning("QStash publish for %s failed, running locally: %s", name, e)
    state.tasks.enqueue(f"job-{name}", handler, state, body)
    return "local"
