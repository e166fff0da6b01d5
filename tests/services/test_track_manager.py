"""Tests for TrackManager service."""

from datetime import datetime, timedelta

import pytest

from aimm.errors import InvalidTransitionError, NotFoundError
from aimm.models.provider import VariantResult
from aimm.models.track import TrackStatus, VariantLabel
from aimm.services.track_manager import TrackManager


def make_results(count: int = 2):
    labels = [VariantLabel.A, VariantLabel.B][:count]
    return [
        VariantResult(
            variant=label,
            audio_url=f"https://cdn.vendor.com/{label.value}.mp3",
            image_url=f"https://cdn.vendor.com/{label.value}.jpg",
            duration=120,
        )
        for label in labels
    ]


class TestTrackCreate:
    """Tests for creating and listing tracks."""

    def test_create_track(self, track_manager):
        """Test creating a new draft track."""
        track = track_manager.create_track(device_id="dev1", title="Song")

        assert track.status == TrackStatus.DRAFT
        assert track.device_id == "dev1"
        assert track_manager.get_track(track.id) is track

    def test_list_tracks_by_device(self, track_manager):
        """Test filtering tracks by device."""
        track_manager.create_track(device_id="dev1")
        track_manager.create_track(device_id="dev2")

        tracks = track_manager.list_tracks(device_id="dev1")

        assert len(tracks) == 1
        assert tracks[0].device_id == "dev1"

    def test_list_excludes_soft_deleted(self, track_manager):
        """Test that soft-deleted tracks are hidden."""
        track = track_manager.create_track(device_id="dev1")
        track_manager.soft_delete(track.id)

        assert track_manager.list_tracks(device_id="dev1") == []
        assert track_manager.get_track(track.id) is None
        assert track_manager.get_track(track.id, include_deleted=True) is not None

    def test_reload_from_disk(self, tmp_path, track_manager):
        """Test loading tracks, variants and assets from disk."""
        track = track_manager.create_track(title="Persisted")
        track_manager.create_batch(track.id, make_results(), "cqtai")
        asset = track_manager.register_asset(track.id, key="uploads/in.mp3")

        reloaded = TrackManager(tracks_dir=tmp_path / "tracks")

        assert reloaded.get_track(track.id).title == "Persisted"
        assert len(reloaded.list_variants(track.id)) == 2
        assert reloaded.get_asset(asset.id).key == "uploads/in.mp3"


class TestStatusTransitions:
    """Tests for the track state machine."""

    def test_forward_transitions(self, track_manager):
        """Test the normal status path."""
        track = track_manager.create_track()

        track_manager.update_status(track.id, TrackStatus.GENERATING)
        track_manager.update_status(track.id, TrackStatus.READY, style="Jazz")

        assert track.status == TrackStatus.READY
        assert track.style == "Jazz"

    def test_failed_can_retry(self, track_manager):
        """Test that a failed track can generate again."""
        track = track_manager.create_track()
        track_manager.update_status(track.id, TrackStatus.GENERATING)
        track_manager.update_status(track.id, TrackStatus.FAILED)

        track_manager.update_status(track.id, TrackStatus.GENERATING)

        assert track.status == TrackStatus.GENERATING

    def test_ready_cannot_go_back_to_draft(self, track_manager):
        """Test rejecting ready to draft."""
        track = track_manager.create_track()
        track_manager.update_status(track.id, TrackStatus.GENERATING)
        track_manager.update_status(track.id, TrackStatus.READY)

        with pytest.raises(InvalidTransitionError):
            track_manager.update_status(track.id, TrackStatus.DRAFT)

    def test_draft_cannot_jump_to_ready(self, track_manager):
        """Test rejecting draft to ready."""
        track = track_manager.create_track()

        with pytest.raises(InvalidTransitionError):
            track_manager.update_status(track.id, TrackStatus.READY)


class TestBatches:
    """Tests for variant batches and history."""

    def test_first_batch_index_is_one(self, track_manager):
        """Test the first batch index."""
        track = track_manager.create_track()

        batch = track_manager.create_batch(track.id, make_results(), "cqtai")

        assert batch.batch_index == 1
        assert [v.variant for v in batch.variants] == [VariantLabel.A, VariantLabel.B]
        assert all(v.provider == "cqtai" for v in batch.variants)

    def test_batch_index_strictly_increases(self, track_manager):
        """Test that batch indexes increase."""
        track = track_manager.create_track()

        indexes = [
            track_manager.create_batch(track.id, make_results(), "cqtai").batch_index
            for _ in range(3)
        ]

        assert indexes == [1, 2, 3]

    def test_batch_index_not_reused_after_empty_batch(self, track_manager):
        """Test that an empty batch still consumes its index."""
        track = track_manager.create_track()
        track_manager.create_batch(track.id, make_results(), "cqtai")
        track_manager.create_batch(track.id, [], "cqtai")

        batch = track_manager.create_batch(track.id, make_results(1), "cqtai")

        assert batch.batch_index == 3

    def test_scores_stored_on_variants(self, track_manager):
        """Test storing evaluation scores on variants."""
        track = track_manager.create_track()
        scores = {"A": {"input_similarity": 0.85, "audio_quality": 0.9}}

        batch = track_manager.create_batch(track.id, make_results(), "cqtai", scores=scores)

        assert batch.variants[0].input_similarity == 0.85
        assert batch.variants[0].audio_quality == 0.9
        assert batch.variants[1].input_similarity is None

    def test_history_newest_first(self, track_manager):
        """Test history ordering."""
        track = track_manager.create_track()
        track_manager.create_batch(track.id, make_results(), "cqtai")
        track_manager.create_batch(track.id, make_results(1), "suno")

        history = track_manager.get_history(track.id)

        assert [b.batch_index for b in history] == [2, 1]
        assert len(history[0].variants) == 1
        assert len(history[1].variants) == 2

    def test_update_variant_rejects_unknown_field(self, track_manager):
        """Test updating an unknown variant field."""
        track = track_manager.create_track()
        variant = track_manager.create_batch(track.id, make_results(1), "cqtai").variants[0]

        with pytest.raises(ValueError):
            track_manager.update_variant(variant.id, bogus=1)


class TestPrimaryVariant:
    """Tests for choosing the primary variant."""

    def test_set_primary_variant(self, track_manager):
        """Test choosing the primary variant."""
        track = track_manager.create_track()
        variant = track_manager.create_batch(track.id, make_results(), "cqtai").variants[1]

        track_manager.set_primary_variant(track.id, variant.id)

        assert track.primary_variant_id == variant.id

    def test_variant_of_other_track_rejected(self, track_manager):
        """Test rejecting another track's variant as primary."""
        track = track_manager.create_track()
        other = track_manager.create_track()
        foreign = track_manager.create_batch(other.id, make_results(), "cqtai").variants[0]

        with pytest.raises(NotFoundError):
            track_manager.set_primary_variant(track.id, foreign.id)
        assert track.primary_variant_id is None


class TestDeletion:
    """Tests for soft and hard delete."""

    def test_soft_delete_schedules_hard_delete(self, track_manager):
        """Test that soft delete schedules the hard delete."""
        track = track_manager.create_track()
        now = datetime(2026, 1, 1, 12, 0)

        track_manager.soft_delete(track.id, now=now)

        assert track.deleted_at == now
        assert track.scheduled_delete_at == now + timedelta(days=30)

    def test_second_soft_delete_rejected(self, track_manager):
        """Test deleting a track twice."""
        track = track_manager.create_track()
        track_manager.soft_delete(track.id)

        with pytest.raises(InvalidTransitionError):
            track_manager.soft_delete(track.id)

    def test_due_for_deletion(self, track_manager):
        """Test selecting tracks past retention."""
        due = track_manager.create_track()
        not_due = track_manager.create_track()
        live = track_manager.create_track()
        now = datetime.now()
        track_manager.soft_delete(due.id, now=now - timedelta(days=31))
        track_manager.soft_delete(not_due.id, now=now - timedelta(days=5))

        result = track_manager.list_due_for_deletion(now)

        assert [t.id for t in result] == [due.id]
        assert live.id not in [t.id for t in result]

    def test_collect_storage_keys(self, track_manager):
        """Test collecting variant and asset keys."""
        track = track_manager.create_track()
        variant = track_manager.create_batch(track.id, make_results(1), "cqtai").variants[0]
        track_manager.update_variant(
            variant.id,
            local_audio_key="tracks/a.mp3",
            local_image_key="tracks/a.jpg",
        )
        track_manager.register_asset(track.id, key="uploads/in.mp3")

        keys = track_manager.collect_storage_keys(track.id)

        assert sorted(keys) == ["tracks/a.jpg", "tracks/a.mp3", "uploads/in.mp3"]

    def test_hard_delete_cascades(self, track_manager, job_manager):
        """Test that hard delete removes files and jobs."""
        track = track_manager.create_track()
        variant = track_manager.create_batch(track.id, make_results(), "cqtai").variants[0]
        job = job_manager.create_job(track.id)

        assert track_manager.delete_track(track.id)

        assert track_manager.get_track(track.id, include_deleted=True) is None
        assert track_manager.get_variant(variant.id) is None
        assert job_manager.get_job(job.id) is None
        assert not track_manager.delete_track(track.id)
