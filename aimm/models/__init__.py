"""Data models."""

from aimm.models.job import (
    DownloadJobData,
    GenerateJobData,
    Job,
    JobStatus,
    JobType,
    Segment,
    WorkerStep,
)
from aimm.models.provider import (
    ChainSubmitResult,
    GenerateRequest,
    ProviderTaskStatus,
    SubmitResult,
    TaskResult,
    VariantResult,
)
from aimm.models.track import (
    Asset,
    AssetStatus,
    DownloadStatus,
    Track,
    TrackStatus,
    TrackVariant,
    VariantLabel,
)

__all__ = [
    "Asset",
    "AssetStatus",
    "ChainSubmitResult",
    "DownloadJobData",
    "DownloadStatus",
    "GenerateJobData",
    "GenerateRequest",
    "Job",
    "JobStatus",
    "JobType",
    "ProviderTaskStatus",
    "Segment",
    "SubmitResult",
    "TaskResult",
    "Track",
    "TrackStatus",
    "TrackVariant",
    "VariantLabel",
    "VariantResult",
    "WorkerStep",
]
