"""Queue workers for AI Music Maker."""

from .generate import GenerateWorker
from .download import DownloadWorker

__all__ = [
    "GenerateWorker",
    "DownloadWorker",
]
