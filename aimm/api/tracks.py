"""Track API endpoints: tracks, input assets, generation and variants."""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from loguru import logger

from aimm.config import settings
from aimm.errors import ErrorCode, InvalidTransitionError, NotFoundError
from aimm.models.job import GenerateJobData, GenerateResponse, GenerateTrackRequest, JobType
from aimm.models.track import (
    Asset,
    AssetCreate,
    AssetStatus,
    SetPrimaryVariantRequest,
    Track,
    TrackBatch,
    TrackCreate,
    TrackDetail,
    TrackStatus,
    TrackVariant,
)
from aimm.services.job_manager import JobManager
from aimm.services.queue import JobQueue
from aimm.services.track_manager import TrackManager

router = APIRouter(prefix="/tracks", tags=["tracks"])

# Module-level dependencies (set via init functions)
_track_manager: Optional[TrackManager] = None
_job_manager: Optional[JobManager] = None
_job_queue: Optional[JobQueue] = None


def set_track_manager(manager: TrackManager) -> None:
    """Set the track manager instance."""
    global _track_manager
    _track_manager = manager


def set_job_manager(manager: JobManager) -> None:
    """Set the job manager instance."""
    global _job_manager
    _job_manager = manager


def set_job_queue(queue: JobQueue) -> None:
    """Set the job queue instance."""
    global _job_queue
    _job_queue = queue


def _get_manager() -> TrackManager:
    """Get the track manager, raising if not initialized."""
    if _track_manager is None:
        raise HTTPException(status_code=503, detail="Track manager not initialized")
    return _track_manager


def _get_job_manager() -> JobManager:
    if _job_manager is None:
        raise HTTPException(status_code=503, detail="Job manager not initialized")
    return _job_manager


def _get_queue() -> JobQueue:
    if _job_queue is None:
        raise HTTPException(status_code=503, detail="Job queue not initialized")
    return _job_queue


def _get_live_track(track_id: str) -> Track:
    track = _get_manager().get_track(track_id)
    if not track:
        raise HTTPException(status_code=404, detail="Track not found")
    return track


# ============ Tracks ============


@router.post("", response_model=Track)
async def create_track(request: TrackCreate):
    """Create a draft track."""
    return _get_manager().create_track(device_id=request.device_id, title=request.title)


@router.get("", response_model=List[Track])
async def list_tracks(
    device_id: Optional[str] = None,
    status: Optional[TrackStatus] = None,
):
    """List tracks, newest first."""
    return _get_manager().list_tracks(
        device_id=device_id,
        statuses=[status] if status else None,
    )


@router.get("/{track_id}", response_model=TrackDetail)
async def get_track(track_id: str):
    """Get a track with its variants."""
    track = _get_live_track(track_id)
    return TrackDetail(track=track, variants=_get_manager().list_variants(track_id))


@router.delete("/{track_id}")
async def delete_track(track_id: str):
    """Soft-delete a track; it is hard-deleted after the retention window."""
    manager = _get_manager()
    if not manager.get_track(track_id, include_deleted=True):
        raise HTTPException(status_code=404, detail="Track not found")
    try:
        track = manager.soft_delete(track_id)
    except InvalidTransitionError:
        raise HTTPException(status_code=400, detail="Track already deleted")
    return {
        "message": "Track deleted",
        "track_id": track_id,
        "scheduled_delete_at": track.scheduled_delete_at,
    }


# ============ Assets ============


@router.post("/{track_id}/assets", response_model=Asset)
async def register_asset(track_id: str, request: AssetCreate):
    """Register an uploaded input audio object for a track."""
    _get_live_track(track_id)
    return _get_manager().register_asset(
        track_id,
        key=request.key,
        content_type=request.content_type,
        duration_ms=request.duration_ms,
    )


# ============ Generation ============


@router.post("/{track_id}/generate", response_model=GenerateResponse)
async def generate_track(track_id: str, request: GenerateTrackRequest):
    """Queue a generation for a track."""
    manager = _get_manager()
    job_manager = _get_job_manager()
    queue = _get_queue()

    track = _get_live_track(track_id)
    if track.status == TrackStatus.GENERATING or job_manager.has_active_job(track_id):
        raise HTTPException(status_code=400, detail="Track is already generating")

    asset = manager.get_asset(request.input_asset_id)
    if not asset or asset.track_id != track_id:
        raise HTTPException(status_code=400, detail="Input audio not found")
    if asset.status != AssetStatus.READY:
        raise HTTPException(status_code=400, detail="Input audio is not ready")

    job = job_manager.create_job(track_id, JobType.GENERATE)
    payload = GenerateJobData(
        track_id=track_id,
        job_id=job.id,
        style=request.style,
        input_asset_key=asset.key,
        lyrics=request.lyrics,
        segment=request.segment,
        exclude_styles=request.exclude_styles,
        voice_type=request.voice_type,
        model=request.model,
        style_weight=request.style_weight,
        weirdness_constraint=request.weirdness_constraint,
        audio_weight=request.audio_weight,
    )

    try:
        await queue.add(
            "generate",
            payload,
            attempts=settings.generate_job_attempts,
            backoff=settings.generate_job_backoff,
        )
    except Exception as e:
        logger.error(f"Failed to enqueue generate job {job.id}: {e}")
        job_manager.mark_failed(job.id, ErrorCode.UNKNOWN.value, f"Failed to enqueue: {e}")
        raise HTTPException(status_code=503, detail="Failed to enqueue generation")

    logger.info(f"Queued generation {job.id} for track {track_id} (style={request.style})")
    return GenerateResponse(job_id=job.id, track_id=track_id, status=job.status)


# ============ Variants ============


@router.get("/{track_id}/variants", response_model=List[TrackVariant])
async def list_variants(
    track_id: str,
    batch_index: Optional[int] = Query(default=None, ge=1),
):
    """List a track's variants, newest batch first."""
    _get_live_track(track_id)
    return _get_manager().list_variants(track_id, batch_index=batch_index)


@router.get("/{track_id}/history", response_model=List[TrackBatch])
async def get_history(track_id: str):
    """Variants grouped by generation batch."""
    _get_live_track(track_id)
    return _get_manager().get_history(track_id)


@router.post("/{track_id}/primary", response_model=Track)
async def set_primary_variant(track_id: str, request: SetPrimaryVariantRequest):
    """Choose the primary variant of a track."""
    _get_live_track(track_id)
    try:
        return _get_manager().set_primary_variant(track_id, request.variant_id)
    except NotFoundError:
        raise HTTPException(status_code=400, detail="Variant does not belong to this track")
