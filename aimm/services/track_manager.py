"""Track Manager - tracks, variants and input assets with JSON persistence."""

import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from loguru import logger

from aimm.config import settings
from aimm.errors import ErrorCode, InvalidTransitionError, NotFoundError
from aimm.models.provider import VariantResult
from aimm.models.track import (
    Asset,
    Track,
    TrackBatch,
    TrackStatus,
    TrackVariant,
)
from aimm.services.persistence import load_model, load_models, save_model

if TYPE_CHECKING:
    from aimm.services.job_manager import JobManager


class TrackManager:
    """Manages tracks with JSON file persistence.

    Layout: ``<tracks_dir>/<track_id>/meta.json`` plus ``variants/`` and
    ``assets/`` sub-directories, so removing a track directory removes
    everything that belongs to it.
    """

    def __init__(
        self,
        tracks_dir: Optional[Path] = None,
        retention_days: Optional[int] = None,
        job_manager: Optional["JobManager"] = None,
    ):
        self._storage_dir = Path(tracks_dir) if tracks_dir else settings.tracks_dir
        self._storage_dir.mkdir(parents=True, exist_ok=True)
        self.retention_days = (
            retention_days if retention_days is not None else settings.track_retention_days
        )
        self.job_manager = job_manager
        self._tracks: Dict[str, Track] = {}
        self._variants: Dict[str, TrackVariant] = {}
        self._assets: Dict[str, Asset] = {}
        self._load_all()

    def set_job_manager(self, job_manager: "JobManager") -> None:
        """Attach the job manager used to cascade hard deletes."""
        self.job_manager = job_manager

    # ========== Persistence ==========

    def _load_all(self) -> None:
        """Load all track documents from disk."""
        for track_dir in self._storage_dir.iterdir():
            if not track_dir.is_dir():
                continue
            meta_path = track_dir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                track = load_model(meta_path, Track)
            except Exception as e:
                logger.error(f"Failed to load track from {meta_path}: {e}")
                continue
            self._tracks[track.id] = track
            for variant in load_models(track_dir / "variants", TrackVariant):
                self._variants[variant.id] = variant
            for asset in load_models(track_dir / "assets", Asset):
                self._assets[asset.id] = asset

        logger.info(
            f"Loaded {len(self._tracks)} tracks, {len(self._variants)} variants, "
            f"{len(self._assets)} assets"
        )

    def _track_dir(self, track_id: str) -> Path:
        """Get the directory for a track."""
        return self._storage_dir / track_id

    def _save_track(self, track: Track) -> None:
        track.updated_at = datetime.now()
        save_model(self._track_dir(track.id) / "meta.json", track)

    def _save_variant(self, variant: TrackVariant) -> None:
        save_model(self._track_dir(variant.track_id) / "variants" / f"{variant.id}.json", variant)

    def _save_asset(self, asset: Asset) -> None:
        save_model(self._track_dir(asset.track_id) / "assets" / f"{asset.id}.json", asset)

    # ========== Tracks ==========

    def create_track(
        self,
        device_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Track:
        """Create a new draft track."""
        track = Track(device_id=device_id, title=title)
        self._tracks[track.id] = track
        self._save_track(track)
        logger.info(f"Created track: {track.id} - {title or 'untitled'}")
        return track

    def get_track(self, track_id: str, include_deleted: bool = False) -> Optional[Track]:
        """Get a track by ID. Soft-deleted tracks are hidden by default."""
        track = self._tracks.get(track_id)
        if track and track.is_deleted and not include_deleted:
            return None
        return track

    def require_track(self, track_id: str, include_deleted: bool = True) -> Track:
        track = self.get_track(track_id, include_deleted=include_deleted)
        if not track:
            raise NotFoundError("Track", track_id, ErrorCode.TRACK_NOT_FOUND)
        return track

    def list_tracks(
        self,
        device_id: Optional[str] = None,
        statuses: Optional[Sequence[TrackStatus]] = None,
    ) -> List[Track]:
        """List live tracks sorted by created_at descending."""
        tracks = [t for t in self._tracks.values() if not t.is_deleted]
        if device_id:
            tracks = [t for t in tracks if t.device_id == device_id]
        if statuses:
            tracks = [t for t in tracks if t.status in statuses]
        return sorted(tracks, key=lambda t: t.created_at, reverse=True)

    def update_status(
        self,
        track_id: str,
        status: TrackStatus,
        style: Optional[str] = None,
    ) -> Track:
        """Move a track through its state machine."""
        track = self.require_track(track_id)
        if not track.can_transition_to(status):
            raise InvalidTransitionError(
                f"Track {track_id} cannot go from {track.status.value} to {status.value}"
            )
        track.status = status
        if style is not None:
            track.style = style
        self._save_track(track)
        return track

    def update_track(
        self,
        track_id: str,
        title: Optional[str] = None,
        style: Optional[str] = None,
    ) -> Track:
        """Update a track's descriptive fields."""
        track = self.require_track(track_id, include_deleted=False)
        if title is not None:
            track.title = title
        if style is not None:
            track.style = style
        self._save_track(track)
        return track

    def set_primary_variant(self, track_id: str, variant_id: str) -> Track:
        """Choose the canonical variant of a track."""
        track = self.require_track(track_id, include_deleted=False)
        variant = self._variants.get(variant_id)
        if not variant or variant.track_id != track_id:
            raise NotFoundError("Variant", variant_id, ErrorCode.VARIANT_NOT_FOUND)
        track.primary_variant_id = variant_id
        self._save_track(track)
        logger.info(f"Track {track_id}: primary variant set to {variant_id}")
        return track

    def soft_delete(self, track_id: str, now: Optional[datetime] = None) -> Track:
        """Mark a track deleted and schedule its hard delete."""
        track = self.require_track(track_id)
        if track.is_deleted:
            raise InvalidTransitionError(f"Track {track_id} already deleted")
        now = now or datetime.now()
        track.deleted_at = now
        track.scheduled_delete_at = now + timedelta(days=self.retention_days)
        self._save_track(track)
        logger.info(f"Soft-deleted track {track_id}, hard delete at {track.scheduled_delete_at}")
        return track

    def list_due_for_deletion(self, now: Optional[datetime] = None) -> List[Track]:
        """Soft-deleted tracks whose retention window has elapsed."""
        now = now or datetime.now()
        return [
            t for t in self._tracks.values()
            if t.deleted_at is not None
            and t.scheduled_delete_at is not None
            and t.scheduled_delete_at <= now
        ]

    def collect_storage_keys(self, track_id: str) -> List[str]:
        """Every object-storage key owned by a track (variants and assets)."""
        keys: List[str] = []
        for variant in self.list_variants(track_id):
            keys.extend(variant.storage_keys())
        for asset in self.list_assets(track_id):
            if asset.key:
                keys.append(asset.key)
        return keys

    def delete_track(self, track_id: str) -> bool:
        """Hard-delete a track with its variants, assets and jobs."""
        if track_id not in self._tracks:
            return False

        del self._tracks[track_id]
        for variant_id in [v.id for v in self._variants.values() if v.track_id == track_id]:
            del self._variants[variant_id]
        for asset_id in [a.id for a in self._assets.values() if a.track_id == track_id]:
            del self._assets[asset_id]

        track_dir = self._track_dir(track_id)
        if track_dir.exists():
            shutil.rmtree(track_dir)

        if self.job_manager:
            self.job_manager.delete_jobs_for_track(track_id)

        logger.info(f"Deleted track: {track_id}")
        return True

    # ========== Assets ==========

    def register_asset(
        self,
        track_id: str,
        key: str,
        content_type: str = "audio/mpeg",
        duration_ms: Optional[int] = None,
    ) -> Asset:
        """Record an uploaded input audio object for a track."""
        self.require_track(track_id, include_deleted=False)
        asset = Asset(
            track_id=track_id,
            key=key,
            content_type=content_type,
            duration_ms=duration_ms,
        )
        self._assets[asset.id] = asset
        self._save_asset(asset)
        logger.info(f"Registered asset {asset.id} ({key}) for track {track_id}")
        return asset

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        return self._assets.get(asset_id)

    def list_assets(self, track_id: str) -> List[Asset]:
        return [a for a in self._assets.values() if a.track_id == track_id]

    # ========== Variants ==========

    def create_batch(
        self,
        track_id: str,
        variants: Sequence[VariantResult],
        provider: str,
        scores: Optional[Dict[str, Dict[str, float]]] = None,
    ) -> TrackBatch:
        """Allocate the next batch index and create its variant rows.

        Runs without awaiting, so on the event loop the read of the
        current index and the write of the new one cannot interleave with
        another generation of the same track.
        """
        track = self.require_track(track_id)
        existing = [v.batch_index for v in self._variants.values() if v.track_id == track_id]
        batch_index = max([track.last_batch_index, *existing]) + 1
        track.last_batch_index = batch_index
        self._save_track(track)

        scores = scores or {}
        created: List[TrackVariant] = []
        for result in variants:
            variant_scores = scores.get(result.variant.value, {})
            variant = TrackVariant(
                track_id=track_id,
                variant=result.variant,
                batch_index=batch_index,
                audio_url=result.audio_url,
                image_url=result.image_url or None,
                image_large_url=result.image_large_url or None,
                duration=result.duration,
                provider=provider,
                input_similarity=variant_scores.get("input_similarity"),
                audio_quality=variant_scores.get("audio_quality"),
            )
            self._variants[variant.id] = variant
            self._save_variant(variant)
            created.append(variant)

        logger.info(
            f"Track {track_id}: created batch {batch_index} with {len(created)} variants"
        )
        return TrackBatch(batch_index=batch_index, variants=created)

    def get_variant(self, variant_id: str) -> Optional[TrackVariant]:
        return self._variants.get(variant_id)

    def list_variants(
        self,
        track_id: str,
        batch_index: Optional[int] = None,
    ) -> List[TrackVariant]:
        """Variants of a track, newest batch first, A before B."""
        variants = [v for v in self._variants.values() if v.track_id == track_id]
        if batch_index is not None:
            variants = [v for v in variants if v.batch_index == batch_index]
        return sorted(variants, key=lambda v: (-v.batch_index, v.variant.value))

    def get_history(self, track_id: str) -> List[TrackBatch]:
        """Variants grouped by generation batch, newest batch first."""
        batches: Dict[int, List[TrackVariant]] = {}
        for variant in self.list_variants(track_id):
            batches.setdefault(variant.batch_index, []).append(variant)
        return [
            TrackBatch(batch_index=index, variants=items)
            for index, items in sorted(batches.items(), reverse=True)
        ]

    def update_variant(self, variant_id: str, **fields) -> TrackVariant:
        """Update fields of a variant row."""
        variant = self._variants.get(variant_id)
        if not variant:
            raise NotFoundError("Variant", variant_id, ErrorCode.VARIANT_NOT_FOUND)
        for name, value in fields.items():
            if name not in TrackVariant.model_fields:
                raise ValueError(f"Unknown variant field: {name}")
            setattr(variant, name, value)
        self._save_variant(variant)
        return variant

    def get_stats(self) -> Dict:
        """Get track statistics."""
        stats = {
            "total": len(self._tracks),
            "deleted": sum(1 for t in self._tracks.values() if t.is_deleted),
            "by_status": {},
        }
        for status in TrackStatus:
            count = sum(1 for t in self._tracks.values() if t.status == status)
            if count > 0:
                stats["by_status"][status.value] = count
        return stats
