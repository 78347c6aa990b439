from __future__ import annotations

import asyncio
import json
import queue
import time
from functools import lru_cache

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from api.schemas.deployment import (
    DeploymentCancelOut,
    DeploymentJobOut,
    DeploymentStartIn,
    DeploymentStartOut,
)
from services.deployment import DeploymentService
from services.deployment.errors import DeploymentSettingsError, JobNotFoundError
from services.deployment.settings import DeploymentSettings
from services.deployment.types import DeploymentJob, utc_iso

router = APIRouter(prefix="/deployments", tags=["deployments"])


@lru_cache(maxsize=1)
def _deployments() -> DeploymentService:
    """
    Lazy singleton to avoid side effects on import time (e.g. filesystem writes).
    """
    return DeploymentService()


@lru_cache(maxsize=1)
def _settings() -> DeploymentSettings:
    return DeploymentSettings()


def _job_out(job: DeploymentJob) -> DeploymentJobOut:
    return DeploymentJobOut(**job.to_dict())


def _get_job(job_id: str) -> DeploymentJob:
    try:
        return _deployments().get_job(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="job not found")


@router.post("", response_model=DeploymentStartOut)
def start_deployment(req: DeploymentStartIn) -> DeploymentStartOut:
    """
    Start a deployment job unless one is already running for the target.

    Only scripts listed in the deployment settings file are ever run; clients
    name a target, never a path.

    Returns immediately; poll GET /deployments/{job_id} for progress.
    """
    try:
        scripts = _settings().scripts_for(req.project, req.service)
    except DeploymentSettingsError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    if scripts is None:
        raise HTTPException(
            status_code=404,
            detail=f"no deployment configured for {req.project}/{req.service}",
        )

    started, job = _deployments().try_start_job(req.project, req.service, scripts)
    return DeploymentStartOut(started=started, job=_job_out(job))


@router.get("/{job_id}", response_model=DeploymentJobOut)
def get_deployment(job_id: str) -> DeploymentJobOut:
    return _job_out(_get_job(job_id))


@router.post("/{job_id}/cancel", response_model=DeploymentCancelOut)
def cancel_deployment(job_id: str) -> DeploymentCancelOut:
    try:
        ok = _deployments().cancel_job(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="job not found")
    return DeploymentCancelOut(ok=ok)


def _sse_event(event: str, data: str) -> str:
    lines = data.splitlines() if data else [""]
    payload = [f"event: {event}"]
    payload.extend(f"data: {line}" for line in lines)
    return "\n".join(payload) + "\n\n"


def _status_payload(job: DeploymentJob) -> str:
    return json.dumps(
        {
            "job_id": job.id,
            "status": job.status.value,
            "message": job.message,
            "started_at": job.started_at,
            "finished_at": job.finished_at,
            "timestamp": utc_iso(),
        },
        ensure_ascii=False,
    )


@router.get("/{job_id}/logs")
async def stream_logs(job_id: str, request: Request) -> StreamingResponse:
    """
    Stream deployment output via Server-Sent Events (SSE).

    Events:
      - status: job status or message changes
      - log:    stdout line
      - error:  stderr line
      - done:   terminal status
    """
    job = _get_job(job_id)
    svc = _deployments()
    q, replay = svc.subscribe_logs(job_id)

    def _log_event(line) -> str:
        return _sse_event("error" if line.stream == "stderr" else "log", line.text)

    async def event_stream():
        current = job
        last_seen = (current.status, current.message)
        terminal_since: float | None = None
        last_heartbeat = time.monotonic()

        yield _sse_event("status", _status_payload(current))

        try:
            for line in replay:
                yield _log_event(line)

            while True:
                if await request.is_disconnected():
                    break

                new_data = False
                while True:
                    try:
                        line = q.get_nowait()
                    except queue.Empty:
                        break
                    new_data = True
                    yield _log_event(line)

                current = svc.get_job(job_id)
                if (current.status, current.message) != last_seen:
                    last_seen = (current.status, current.message)
                    yield _sse_event("status", _status_payload(current))

                if current.status.is_terminal:
                    if terminal_since is None:
                        terminal_since = time.monotonic()
                    # let the last lines of the final step drain first
                    if not new_data and (time.monotonic() - terminal_since) >= 0.5:
                        yield _sse_event("done", _status_payload(current))
                        break
                else:
                    terminal_since = None

                if time.monotonic() - last_heartbeat >= 10:
                    last_heartbeat = time.monotonic()
                    yield ": keep-alive\n\n"

                await asyncio.sleep(0.2)
        finally:
            svc.unsubscribe_logs(job_id, q)

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=headers,
    )
