"""Job polling endpoints."""

from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from aimm.models.job import Job
from aimm.models.track import TrackVariant
from aimm.services.job_manager import JobManager
from aimm.services.track_manager import TrackManager

router = APIRouter(prefix="/jobs", tags=["jobs"])

_job_manager: Optional[JobManager] = None
_track_manager: Optional[TrackManager] = None


def set_job_manager(manager: JobManager) -> None:
    """Set the job manager instance."""
    global _job_manager
    _job_manager = manager


def set_track_manager(manager: TrackManager) -> None:
    """Set the track manager instance."""
    global _track_manager
    _track_manager = manager


class JobDetail(BaseModel):
    """Job state plus the variants of the batch it produced."""
    job: Job
    variants: List[TrackVariant] = []


@router.get("/{job_id}", response_model=JobDetail)
async def get_job(job_id: str):
    """Get a job's status and progress."""
    if _job_manager is None:
        raise HTTPException(status_code=503, detail="Job manager not initialized")

    job = _job_manager.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    variants: List[TrackVariant] = []
    batch_index = (job.result or {}).get("batch_index")
    if _track_manager and batch_index:
        variants = _track_manager.list_variants(job.track_id, batch_index=batch_index)

    return JobDetail(job=job, variants=variants)
