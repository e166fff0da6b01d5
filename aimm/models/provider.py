"""Music provider request/response models."""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel

from aimm.models.job import Segment
from aimm.models.track import VariantLabel


class ProviderTaskStatus(str, Enum):
    """Normalized status of a provider task."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_finished(self) -> bool:
        return self in (ProviderTaskStatus.COMPLETED, ProviderTaskStatus.FAILED)


class GenerateRequest(BaseModel):
    """What a provider needs to generate music from an input clip."""
    audio_url: str
    style: str
    lyrics: Optional[str] = None
    title: Optional[str] = None
    voice_gender: Optional[Literal["f", "m"]] = None
    make_instrumental: bool = False
    exclude_styles: List[str] = []
    segment: Optional[Segment] = None

    # Vendor tuning
    model: Optional[str] = None
    style_weight: Optional[float] = None
    weirdness_constraint: Optional[float] = None
    audio_weight: Optional[float] = None


class SubmitResult(BaseModel):
    task_id: str


class ChainSubmitResult(BaseModel):
    """Submission result plus the provider that accepted the task."""
    task_id: str
    provider: str


class VariantResult(BaseModel):
    """One rendition returned by a provider."""
    variant: VariantLabel
    audio_url: str
    image_url: Optional[str] = None
    image_large_url: Optional[str] = None
    duration: float = 0.0


class TaskResult(BaseModel):
    """Normalized provider task state."""
    task_id: str
    status: ProviderTaskStatus
    variants: List[VariantResult] = []
    error: Optional[str] = None
