"""Offline provider used when no vendor credential is configured."""

import time
from typing import Callable, Optional

from aimm.errors import ProviderError
from aimm.models.provider import (
    GenerateRequest,
    ProviderTaskStatus,
    SubmitResult,
    TaskResult,
    VariantResult,
)
from aimm.models.track import VariantLabel
from aimm.providers.base import MusicProvider

MOCK_PREFIX = "mock_"

# Simulated timeline, in milliseconds since submission
PENDING_MS = 3000
PROCESSING_MS = 6000

MOCK_VARIANTS = [
    VariantResult(
        variant=VariantLabel.A,
        audio_url="https://example.com/mock-audio-a.mp3",
        image_url="https://example.com/mock-image-a.jpg",
        image_large_url="https://example.com/mock-image-large-a.jpg",
        duration=180,
    ),
    VariantResult(
        variant=VariantLabel.B,
        audio_url="https://example.com/mock-audio-b.mp3",
        image_url="https://example.com/mock-image-b.jpg",
        image_large_url="https://example.com/mock-image-large-b.jpg",
        duration=175,
    ),
]


def _now_ms() -> int:
    return int(time.time() * 1000)


class MockProvider(MusicProvider):
    """Derives task state from the submission time embedded in the task id.

    ``pending`` for the first 3 s, ``processing`` until 6 s, then
    ``completed`` with two placeholder variants.
    """

    def __init__(self, name: str = "mock", clock: Optional[Callable[[], int]] = None):
        self.name = name
        self._clock = clock or _now_ms

    async def submit_generate(self, request: GenerateRequest) -> SubmitResult:
        return SubmitResult(task_id=f"{MOCK_PREFIX}{self._clock()}")

    async def query_task(self, task_id: str) -> TaskResult:
        if not task_id.startswith(MOCK_PREFIX):
            raise ProviderError(self.name, f"Not a mock task id: {task_id}")
        try:
            submitted_at = int(task_id[len(MOCK_PREFIX):])
        except ValueError:
            raise ProviderError(self.name, f"Malformed mock task id: {task_id}")

        elapsed = self._clock() - submitted_at
        if elapsed < PENDING_MS:
            return TaskResult(task_id=task_id, status=ProviderTaskStatus.PENDING)
        if elapsed < PROCESSING_MS:
            return TaskResult(task_id=task_id, status=ProviderTaskStatus.PROCESSING)

        return TaskResult(
            task_id=task_id,
            status=ProviderTaskStatus.COMPLETED,
            variants=[v.model_copy() for v in MOCK_VARIANTS],
        )
