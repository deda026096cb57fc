"""
api/routes/v1/jobs.py -- Inbound QStash job callbacks.

Routes:
  POST /api/v1/jobs/{job} -- run a job from tasks/jobs.JOBS

The raw body is verified against the Upstash-Signature header before it is
parsed. The signature's subject must be this endpoint's public URL
(BASE_URL + path), not the URL the request arrived on, since a proxy may
rewrite the latter.

Errors:
  503 jobs_not_configured -- no QStash signing keys, nothing can be verified
  401 invalid_signature   -- missing, forged or tampered request
  404 job_not_found       -- unknown job name
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, HTTPException, Request

from services.queue import QStashReceiver
from tasks.jobs import JOBS, job_url

logger = logging.getLogger("docroom.api.jobs")

router = APIRouter()


@router.post("/jobs/{job}")
async def run_job(job: str, request: Request) -> dict:
    receiver: QStashReceiver = request.app.state.services.receiver
    if not receiver.configured:
        raise HTTPException(
            status_code=503,
            detail={"code": "jobs_not_configured", "message": "Job callbacks are not configured."},
        )

    raw = await request.body()
    if not receiver.verify(request.headers.get("Upstash-Signature", ""), raw, url=job_url(job)):
        raise HTTPException(status_code=401, detail={"code": "invalid_signature", "message": "Invalid signature."})

    handler = JOBS.get(job)
    if handler is None:
        raise HTTPException(status_code=404, detail={"code": "job_not_found", "message": f"Unknown job {job!r}."})

    try:
        body = json.loads(raw) if raw else {}
    except ValueError:
        raise HTTPException(status_code=400, detail={"code": "invalid_body", "message": "Body is not JSON."})

    # QStash redelivers until it sees a 2xx; the job itself runs on the task queue.
    request.app.state.tasks.enqueue(f"job-{job}", handler, request.app.state, body)
    logger.info("Job %s accepted", job)
    return {"ok": True, "job": job}
