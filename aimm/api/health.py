"""Liveness and readiness endpoints."""

from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from aimm import __version__
from aimm.services.queue import JobQueue

router = APIRouter(tags=["health"])

_job_queue: Optional[JobQueue] = None


def set_job_queue(queue: JobQueue) -> None:
    """Set the job queue instance."""
    global _job_queue
    _job_queue = queue


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "queue": _job_queue.get_stats() if _job_queue else None,
    }


@router.get("/ready")
async def ready():
    """Ready once the queue workers are running."""
    if _job_queue is None or not _job_queue.is_running:
        return JSONResponse(status_code=503, content={"status": "starting"})
    return {"status": "ready"}
