"""API routers for AI Music Maker."""

from .tracks import (
    router as tracks_router,
    set_track_manager,
    set_job_manager,
    set_job_queue,
)
from .jobs import (
    router as jobs_router,
    set_job_manager as set_jobs_job_manager,
    set_track_manager as set_jobs_track_manager,
)
from .admin import router as admin_router, set_cleanup_service
from .health import router as health_router, set_job_queue as set_health_job_queue

__all__ = [
    "tracks_router",
    "jobs_router",
    "admin_router",
    "health_router",
    "set_track_manager",
    "set_job_manager",
    "set_job_queue",
    "set_jobs_job_manager",
    "set_jobs_track_manager",
    "set_cleanup_service",
    "set_health_job_queue",
]
