"""Tests for the hard-delete cleanup sweep."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from aimm.models.provider import VariantResult
from aimm.models.track import VariantLabel
from aimm.services.cleanup import CleanupService, start_background_cleanup
from aimm.services.storage import DeleteResult


def expired_track(track_manager, storage_keys=()):
    """Create a track soft-deleted long enough ago to be due."""
    track = track_manager.create_track()
    batch = track_manager.create_batch(
        track.id,
        [VariantResult(variant=VariantLabel.A, audio_url="https://v/a.mp3")],
        "cqtai",
    )
    if storage_keys:
        track_manager.update_variant(batch.variants[0].id, local_audio_key=storage_keys[0])
    track_manager.soft_delete(track.id, now=datetime.now() - timedelta(days=31))
    return track


class TestCleanupService:
    """Tests for CleanupService.run."""

    @pytest.mark.asyncio
    async def test_deletes_objects_and_track(self, track_manager, job_manager, storage):
        """Test deleting a track's objects, documents and jobs."""
        await storage.put_object("tracks/t/a.mp3", b"audio", "audio/mpeg")
        track = expired_track(track_manager, ["tracks/t/a.mp3"])
        job = job_manager.create_job(track.id)

        stats = await CleanupService(track_manager, storage).run()

        assert stats["tracks_found"] == 1
        assert stats["tracks_deleted"] == 1
        assert stats["files_deleted"] == 1
        assert not storage.exists("tracks/t/a.mp3")
        assert track_manager.get_track(track.id, include_deleted=True) is None
        assert job_manager.get_job(job.id) is None

    @pytest.mark.asyncio
    async def test_missing_objects_are_not_errors(self, track_manager, storage):
        """Test that already missing objects are not reported."""
        track = expired_track(track_manager, ["tracks/t/never-uploaded.mp3"])

        stats = await CleanupService(track_manager, storage).run()

        assert stats["tracks_deleted"] == 1
        assert stats["errors"] == []
        assert track_manager.get_track(track.id, include_deleted=True) is None

    @pytest.mark.asyncio
    async def test_skips_live_and_recent_tracks(self, track_manager, storage):
        """Test that live and recently deleted tracks are kept."""
        live = track_manager.create_track()
        recent = track_manager.create_track()
        track_manager.soft_delete(recent.id)

        stats = await CleanupService(track_manager, storage).run()

        assert stats["tracks_found"] == 0
        assert track_manager.get_track(live.id) is not None
        assert track_manager.get_track(recent.id, include_deleted=True) is not None

    @pytest.mark.asyncio
    async def test_failure_isolated_per_track(self, track_manager, storage):
        """Test that one failing track does not stop the sweep."""
        first = expired_track(track_manager, ["tracks/first/a.mp3"])
        second = expired_track(track_manager, ["tracks/second/a.mp3"])

        calls = []

        async def flaky_delete(keys):
            calls.append(list(keys))
            if len(calls) == 1:
                raise RuntimeError("storage unavailable")
            return DeleteResult(deleted=len(keys))

        with patch.object(storage, "delete_objects", side_effect=flaky_delete):
            stats = await CleanupService(track_manager, storage).run()

        assert stats["tracks_found"] == 2
        assert stats["tracks_deleted"] == 1
        assert len(stats["errors"]) == 1
        remaining = [
            t for t in (first, second)
            if track_manager.get_track(t.id, include_deleted=True) is not None
        ]
        assert len(remaining) == 1

    @pytest.mark.asyncio
    async def test_storage_errors_do_not_block_delete(self, track_manager, storage):
        """Test that storage errors are reported but the track is removed."""
        track = expired_track(track_manager, ["tracks/t/a.mp3"])
        storage.delete_objects = AsyncMock(
            return_value=DeleteResult(deleted=0, errors=["tracks/t/a.mp3: denied"])
        )

        stats = await CleanupService(track_manager, storage).run()

        assert stats["tracks_deleted"] == 1
        assert stats["errors"] == ["tracks/t/a.mp3: denied"]
        assert track_manager.get_track(track.id, include_deleted=True) is None

    @pytest.mark.asyncio
    async def test_dry_run_keeps_everything(self, track_manager, storage):
        """Test a dry-run service."""
        track = expired_track(track_manager)

        stats = await CleanupService(track_manager, storage, dry_run=True).run()

        assert stats["tracks_found"] == 1
        assert stats["tracks_deleted"] == 0
        assert track_manager.get_track(track.id, include_deleted=True) is not None

    @pytest.mark.asyncio
    async def test_per_call_dry_run_leaves_service_default(self, track_manager, storage):
        """Test that a dry run passed to run() does not change the service setting."""
        track = expired_track(track_manager)
        service = CleanupService(track_manager, storage)

        dry = await service.run(dry_run=True)

        assert dry["tracks_deleted"] == 0
        assert service.dry_run is False
        assert track_manager.get_track(track.id, include_deleted=True) is not None

        real = await service.run()

        assert real["tracks_deleted"] == 1
        assert track_manager.get_track(track.id, include_deleted=True) is None

    @pytest.mark.asyncio
    async def test_per_call_override_of_dry_run_service(self, track_manager, storage):
        """Test that dry_run=False overrides a dry-run service for one call."""
        track = expired_track(track_manager)
        service = CleanupService(track_manager, storage, dry_run=True)

        stats = await service.run(dry_run=False)

        assert stats["tracks_deleted"] == 1
        assert service.dry_run is True
        assert track_manager.get_track(track.id, include_deleted=True) is None


class TestBackgroundCleanup:
    """Tests for the periodic task."""

    @pytest.mark.asyncio
    async def test_cancel_stops_loop(self, track_manager, storage):
        """Test cancelling the background task."""
        task = start_background_cleanup(CleanupService(track_manager, storage), interval_hours=1)
        await asyncio.sleep(0)

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert task.done()
