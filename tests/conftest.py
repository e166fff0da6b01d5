"""Shared fixtures."""

import pytest

from aimm.services.job_manager import JobManager
from aimm.services.storage import LocalObjectStorage
from aimm.services.track_manager import TrackManager


class FakeClock:
    """Millisecond clock advanced by the fake sleep."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms
        self.sleeps = []

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def job_manager(tmp_path):
    """Create a job manager with temporary storage."""
    return JobManager(jobs_dir=tmp_path / "jobs")


@pytest.fixture
def track_manager(tmp_path, job_manager):
    """Create a track manager with temporary storage."""
    return TrackManager(
        tracks_dir=tmp_path / "tracks",
        retention_days=30,
        job_manager=job_manager,
    )


@pytest.fixture
def storage(tmp_path):
    """Local object storage rooted in a temp dir."""
    return LocalObjectStorage(
        root_dir=tmp_path / "storage",
        public_base_url="https://cdn.example.com",
    )
