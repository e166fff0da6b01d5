"""Services for AI Music Maker."""

from .job_manager import JobManager
from .track_manager import TrackManager
from .queue import JobQueue
from .storage import ObjectStorage, S3ObjectStorage, LocalObjectStorage, create_storage
from .tracing import TracingService
from .cleanup import CleanupService

__all__ = [
    "JobManager",
    "TrackManager",
    "JobQueue",
    "ObjectStorage",
    "S3ObjectStorage",
    "LocalObjectStorage",
    "create_storage",
    "TracingService",
    "CleanupService",
]
