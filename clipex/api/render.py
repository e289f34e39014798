"""Render API endpoints.

Accepts render requests and reports job status.
"""

import secrets

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from loguru import logger

from clipex.config import settings
from clipex.models.template import RenderRequest


router = APIRouter(tags=["render"])

# Module-level references (set by main.py during startup)
_supervisor = None
_job_store = None


def set_render_supervisor(supervisor):
    global _supervisor
    _supervisor = supervisor


def set_job_store(store):
    global _job_store
    _job_store = store


def _get_supervisor():
    if _supervisor is None:
        raise HTTPException(status_code=503, detail="Render service not initialized")
    return _supervisor


def _get_job_store():
    if _job_store is None:
        raise HTTPException(status_code=503, detail="Render service not initialized")
    return _job_store


async def verify_render_secret(request: Request) -> None:
    """Reject requests without the shared secret, when one is configured."""
    expected = settings.render_secret
    if not expected:
        return
    provided = request.headers.get(settings.render_secret_header, "")
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        logger.warning(f"Rejected render request from {request.client.host if request.client else 'unknown'}")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/render", dependencies=[Depends(verify_render_secret)])
async def create_render(
    render_request: RenderRequest,
    background_tasks: BackgroundTasks,
):
    """Accept a render job; rendering continues in the background."""
    supervisor = _get_supervisor()
    job = supervisor.submit(render_request)
    background_tasks.add_task(supervisor.run, job.id, render_request)
    return {"jobId": job.id}


@router.get("/status/{job_id}")
async def get_status(job_id: str):
    """Get the status of a render job."""
    job = _get_job_store().get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_status()
