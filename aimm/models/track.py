"""Track, variant and asset data models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


class TrackStatus(str, Enum):
    """Status of a track.

    draft -> generating -> ready | failed. A failed track may be retried and a
    ready track may start a new generation batch.
    """

    DRAFT = "draft"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


# Allowed status transitions (same-status updates are always accepted)
TRACK_TRANSITIONS = {
    TrackStatus.DRAFT: {TrackStatus.GENERATING, TrackStatus.FAILED},
    TrackStatus.GENERATING: {TrackStatus.READY, TrackStatus.FAILED},
    TrackStatus.READY: {TrackStatus.GENERATING},
    TrackStatus.FAILED: {TrackStatus.GENERATING},
}


class VariantLabel(str, Enum):
    """A/B label of a generated rendition."""
    A = "A"
    B = "B"


class DownloadStatus(str, Enum):
    """Archive status of a variant's media."""
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


class AssetType(str, Enum):
    INPUT_AUDIO = "input_audio"


class AssetStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class Track(BaseModel):
    """A user's music creation project."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    device_id: Optional[str] = None
    title: Optional[str] = None
    style: Optional[str] = None
    status: TrackStatus = TrackStatus.DRAFT
    primary_variant_id: Optional[str] = None
    # Highest batch index ever allocated; never decreases
    last_batch_index: int = 0
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    deleted_at: Optional[datetime] = None
    scheduled_delete_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def can_transition_to(self, status: TrackStatus) -> bool:
        """Check whether the state machine allows moving to ``status``."""
        if status == self.status:
            return True
        return status in TRACK_TRANSITIONS.get(self.status, set())


class TrackVariant(BaseModel):
    """One generated rendition (A or B) within a batch."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    track_id: str
    variant: VariantLabel
    batch_index: int

    # Remote media as returned by the provider
    audio_url: Optional[str] = None
    image_url: Optional[str] = None
    image_large_url: Optional[str] = None

    # Archived object-storage keys
    local_audio_key: Optional[str] = None
    local_image_key: Optional[str] = None
    local_image_large_key: Optional[str] = None

    # Audio and image downloads are tracked independently
    download_status: DownloadStatus = DownloadStatus.PENDING
    image_download_status: DownloadStatus = DownloadStatus.PENDING
    download_error: Optional[str] = None
    downloaded_at: Optional[datetime] = None

    duration: Optional[float] = None
    provider: Optional[str] = None
    input_similarity: Optional[float] = None
    audio_quality: Optional[float] = None
    created_at: datetime = Field(default_factory=datetime.now)

    def storage_keys(self) -> List[str]:
        """All archived object keys of this variant."""
        keys = [self.local_audio_key, self.local_image_key, self.local_image_large_key]
        return [k for k in keys if k]


class Asset(BaseModel):
    """Input audio uploaded for a track."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    track_id: str
    type: AssetType = AssetType.INPUT_AUDIO
    key: str
    content_type: str = "audio/mpeg"
    status: AssetStatus = AssetStatus.READY
    duration_ms: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.now)


class TrackBatch(BaseModel):
    """Variants produced by one generation run."""
    batch_index: int
    variants: List[TrackVariant]


# ============ API Request Models ============


class TrackCreate(BaseModel):
    """Request to create a track."""
    device_id: Optional[str] = None
    title: Optional[str] = Field(default=None, max_length=200)


class AssetCreate(BaseModel):
    """Request to register an uploaded input audio object."""
    key: str = Field(..., min_length=1)
    content_type: str = "audio/mpeg"
    duration_ms: Optional[int] = Field(default=None, ge=0)


class SetPrimaryVariantRequest(BaseModel):
    variant_id: str


class TrackDetail(BaseModel):
    """Track with its variants."""
    track: Track
    variants: List[TrackVariant]
