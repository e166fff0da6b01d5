"""Job data model and queue payloads."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from aimm.models.track import VariantLabel


class JobStatus(str, Enum):
    """Job status enum.

    queued -> running -> succeeded | failed. Terminal jobs are frozen; a
    failed job is only re-opened when the queue retries the same task.
    """

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class JobType(str, Enum):
    GENERATE = "generate"


class WorkerStep(str, Enum):
    """Named steps of the generation pipeline."""

    AUDIO_CHECK = "audio_check"
    COMPOSE_PARAMS = "compose_params"
    MUSIC_GENERATE = "music_generate"
    AB_EVAL = "ab_eval"

    @property
    def progress(self) -> int:
        """Progress reported when the step starts."""
        return _STEP_PROGRESS[self]


_STEP_PROGRESS = {
    WorkerStep.AUDIO_CHECK: 10,
    WorkerStep.COMPOSE_PARAMS: 20,
    WorkerStep.MUSIC_GENERATE: 30,
    WorkerStep.AB_EVAL: 90,
}


class Job(BaseModel):
    """One generation attempt for a track."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    track_id: str
    type: JobType = JobType.GENERATE
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    current_step: Optional[str] = None
    error_code: Optional[str] = None
    error_msg: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    attempts: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.now)

    def get_job_dir(self, base_dir: Path) -> Path:
        """Get the job directory path."""
        return base_dir / self.id


# ============ Queue Payloads ============


class Segment(BaseModel):
    """Trim window of the input audio, in milliseconds."""
    start_ms: int = Field(..., ge=0)
    end_ms: int = Field(..., ge=0)

    @model_validator(mode="after")
    def check_order(self) -> "Segment":
        if self.end_ms <= self.start_ms:
            raise ValueError("segment end_ms must be greater than start_ms")
        return self


VoiceType = Literal["female", "male", "instrumental"]


class GenerateJobData(BaseModel):
    """Payload of a ``generate`` queue task."""
    track_id: str
    job_id: str
    style: str
    input_asset_key: str
    lyrics: Optional[str] = None
    segment: Optional[Segment] = None
    exclude_styles: List[str] = []
    voice_type: Optional[VoiceType] = None

    # Vendor tuning (passed through when set)
    model: Optional[str] = None
    style_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    weirdness_constraint: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    audio_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class DownloadJobData(BaseModel):
    """Payload of a ``download`` queue task."""
    variant_id: str
    source_url: str
    track_id: str
    variant: VariantLabel
    batch_index: int
    image_url: Optional[str] = None
    image_large_url: Optional[str] = None


# ============ API Request/Response Models ============


class GenerateTrackRequest(BaseModel):
    """Request to start a generation for a track."""
    style: str = Field(..., min_length=1, max_length=200)
    input_asset_id: str
    lyrics: Optional[str] = Field(default=None, max_length=5000)
    segment_start_ms: Optional[int] = Field(default=None, ge=0)
    segment_end_ms: Optional[int] = Field(default=None, ge=0)
    exclude_styles: List[str] = []
    voice_type: Optional[VoiceType] = None
    model: Optional[str] = None
    style_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    weirdness_constraint: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    audio_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_segment(self) -> "GenerateTrackRequest":
        start, end = self.segment_start_ms, self.segment_end_ms
        if (start is None) != (end is None):
            raise ValueError("segment_start_ms and segment_end_ms must be given together")
        if start is not None and end <= start:
            raise ValueError("segment_end_ms must be greater than segment_start_ms")
        return self

    @property
    def segment(self) -> Optional[Segment]:
        if self.segment_start_ms is None or self.segment_end_ms is None:
            return None
        return Segment(start_ms=self.segment_start_ms, end_ms=self.segment_end_ms)


class GenerateResponse(BaseModel):
    job_id: str
    track_id: str
    status: JobStatus = JobStatus.QUEUED
