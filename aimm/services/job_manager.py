"""Job manager: persisted job state machine."""

import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from aimm.config import settings
from aimm.errors import ErrorCode, InvalidTransitionError, NotFoundError
from aimm.models.job import Job, JobStatus, JobType
from aimm.services.persistence import load_model, save_model


class JobManager:
    """Manages generation job lifecycle with JSON persistence.

    Progress only moves forward while a job is running, and a job in a
    terminal status is never mutated again except when the queue re-runs
    a failed task.
    """

    def __init__(self, jobs_dir: Optional[Path] = None):
        self.jobs_dir = Path(jobs_dir) if jobs_dir else settings.jobs_dir
        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        self.jobs: Dict[str, Job] = {}
        self._load_existing_jobs()

    def _load_existing_jobs(self) -> None:
        """Load existing jobs from disk on startup."""
        for job_dir in self.jobs_dir.iterdir():
            if not job_dir.is_dir():
                continue

            meta_path = job_dir / "meta.json"
            if not meta_path.exists():
                continue

            try:
                job = load_model(meta_path, Job)
                self.jobs[job.id] = job

                if not job.status.is_terminal:
                    logger.warning(
                        f"Found incomplete job {job.id} in status {job.status.value}"
                    )

            except Exception as e:
                logger.error(f"Failed to load job from {meta_path}: {e}")

        logger.info(f"Loaded {len(self.jobs)} existing jobs")

    def save_job(self, job: Job) -> None:
        """Save job state to disk."""
        job.updated_at = datetime.now()
        save_model(job.get_job_dir(self.jobs_dir) / "meta.json", job)

    def create_job(self, track_id: str, job_type: JobType = JobType.GENERATE) -> Job:
        """Create a new queued job."""
        job = Job(track_id=track_id, type=job_type)
        self.jobs[job.id] = job
        self.save_job(job)
        logger.info(f"Created {job_type.value} job {job.id} for track {track_id}")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        return self.jobs.get(job_id)

    def require_job(self, job_id: str) -> Job:
        job = self.jobs.get(job_id)
        if not job:
            raise NotFoundError("Job", job_id, ErrorCode.JOB_NOT_FOUND)
        return job

    def list_jobs(
        self,
        track_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
        limit: int = 100,
    ) -> List[Job]:
        """List jobs, newest first."""
        jobs = list(self.jobs.values())

        if track_id:
            jobs = [j for j in jobs if j.track_id == track_id]

        if status:
            jobs = [j for j in jobs if j.status == status]

        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def has_active_job(self, track_id: str) -> bool:
        """Whether the track has a queued or running job."""
        return any(
            j.track_id == track_id and not j.status.is_terminal
            for j in self.jobs.values()
        )

    # ========== State transitions ==========

    def mark_running(self, job_id: str) -> Job:
        """Move a job to running.

        A failed job is re-opened (progress reset) because the queue is
        re-delivering the same task. Succeeded jobs cannot be re-run.
        """
        job = self.require_job(job_id)

        if job.status == JobStatus.SUCCEEDED:
            raise InvalidTransitionError(f"Job {job_id} already succeeded")

        if job.status == JobStatus.FAILED:
            logger.info(f"Re-opening failed job {job_id} for retry")
            job.progress = 0
            job.current_step = None
            job.error_code = None
            job.error_msg = None
            job.completed_at = None

        job.status = JobStatus.RUNNING
        job.started_at = datetime.now()
        job.attempts += 1
        self.save_job(job)
        return job

    def update_progress(
        self,
        job_id: str,
        progress: int,
        current_step: Optional[str] = None,
    ) -> Job:
        """Update progress of a running job; never moves backwards."""
        job = self.require_job(job_id)

        if job.status.is_terminal:
            logger.warning(
                f"Ignoring progress update for job {job_id} in terminal status {job.status.value}"
            )
            return job

        progress = max(0, min(int(progress), 100))
        if progress < job.progress:
            logger.debug(f"Job {job_id}: keeping progress {job.progress} (got {progress})")
            progress = job.progress

        job.progress = progress
        if current_step is not None:
            job.current_step = current_step
        self.save_job(job)
        return job

    def mark_succeeded(self, job_id: str, result: Optional[Dict[str, Any]] = None) -> Job:
        """Finish a job successfully."""
        job = self.require_job(job_id)
        if job.status.is_terminal:
            raise InvalidTransitionError(
                f"Job {job_id} is already {job.status.value}"
            )

        job.status = JobStatus.SUCCEEDED
        job.progress = 100
        job.result = result
        job.completed_at = datetime.now()
        self.save_job(job)
        logger.info(f"Job {job_id} succeeded")
        return job

    def mark_failed(self, job_id: str, error_code: str, error_msg: str) -> Job:
        """Finish a job with an error. Progress is frozen where it stopped."""
        job = self.require_job(job_id)
        if job.status == JobStatus.SUCCEEDED:
            raise InvalidTransitionError(f"Job {job_id} already succeeded")

        job.status = JobStatus.FAILED
        job.error_code = error_code
        job.error_msg = error_msg or "Unknown error"
        job.completed_at = datetime.now()
        self.save_job(job)
        logger.error(f"Job {job_id} failed [{error_code}]: {job.error_msg}")
        return job

    # ========== Deletion ==========

    def delete_jobs_for_track(self, track_id: str) -> int:
        """Delete every job of a track (cascade from track hard delete)."""
        job_ids = [j.id for j in self.jobs.values() if j.track_id == track_id]
        for job_id in job_ids:
            job = self.jobs.pop(job_id)
            job_dir = job.get_job_dir(self.jobs_dir)
            if job_dir.exists():
                shutil.rmtree(job_dir)
        if job_ids:
            logger.info(f"Deleted {len(job_ids)} jobs of track {track_id}")
        return len(job_ids)

    def get_stats(self) -> Dict:
        """Get job statistics."""
        stats = {
            "total": len(self.jobs),
            "by_status": {},
        }

        for status in JobStatus:
            count = sum(1 for j in self.jobs.values() if j.status == status)
            if count > 0:
                stats["by_status"][status.value] = count

        return stats
