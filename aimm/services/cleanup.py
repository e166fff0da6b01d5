"""
Hard-delete sweep for soft-deleted tracks.

Tracks whose retention window has elapsed lose their archived objects and
then their documents (variants, assets and jobs cascade). One failing
track never blocks the rest of the sweep.
"""

import asyncio
from datetime import datetime
from typing import Optional

from loguru import logger

from aimm.services.storage import ObjectStorage
from aimm.services.track_manager import TrackManager


class CleanupService:
    """Service for hard-deleting expired tracks."""

    def __init__(
        self,
        track_manager: TrackManager,
        storage: ObjectStorage,
        dry_run: bool = False,
    ):
        """
        Initialize cleanup service.

        Args:
            track_manager: Source of tracks due for deletion
            storage: Object storage holding the archived media
            dry_run: If True, only log what would be deleted without actually deleting
        """
        self.track_manager = track_manager
        self.storage = storage
        self.dry_run = dry_run

    async def cleanup_track(self, track_id: str, dry_run: Optional[bool] = None) -> dict:
        """
        Remove one track's objects and documents.

        ``dry_run`` overrides the service default for this call only.

        Storage errors other than missing objects are logged but do not
        stop the hard delete.
        """
        stats = {"files_deleted": 0, "errors": []}

        if dry_run is None:
            dry_run = self.dry_run

        keys = self.track_manager.collect_storage_keys(track_id)
        if dry_run:
            logger.info(f"[DRY RUN] Would delete track {track_id} with {len(keys)} objects")
            return stats

        if keys:
            result = await self.storage.delete_objects(keys)
            stats["files_deleted"] = result.deleted
            if result.errors:
                logger.warning(
                    f"Track {track_id}: {len(result.errors)} objects could not be deleted"
                )
                stats["errors"].extend(result.errors)

        self.track_manager.delete_track(track_id)
        return stats

    async def run(
        self,
        now: Optional[datetime] = None,
        dry_run: Optional[bool] = None,
    ) -> dict:
        """
        Run the sweep once.

        ``dry_run`` overrides the service default for this call only, so a
        manual dry run never changes what the background sweep does.

        Returns dict with total cleanup stats.
        """
        if dry_run is None:
            dry_run = self.dry_run

        total_stats = {
            "tracks_found": 0,
            "tracks_deleted": 0,
            "files_deleted": 0,
            "errors": [],
        }

        tracks = self.track_manager.list_due_for_deletion(now)
        total_stats["tracks_found"] = len(tracks)
        if not tracks:
            logger.debug("Cleanup: no tracks due for deletion")
            return total_stats

        logger.info(f"Starting cleanup of {len(tracks)} expired tracks (dry run: {dry_run})")

        for track in tracks:
            try:
                stats = await self.cleanup_track(track.id, dry_run=dry_run)
            except Exception as e:
                logger.error(f"Failed to clean up track {track.id}: {e}")
                total_stats["errors"].append(f"{track.id}: {e}")
                continue

            if not dry_run:
                total_stats["tracks_deleted"] += 1
            total_stats["files_deleted"] += stats["files_deleted"]
            total_stats["errors"].extend(stats["errors"])

        logger.info(
            f"Cleanup complete: {total_stats['tracks_deleted']}/{total_stats['tracks_found']} tracks, "
            f"{total_stats['files_deleted']} files"
        )

        if total_stats["errors"]:
            logger.warning(f"Cleanup had {len(total_stats['errors'])} errors")

        return total_stats


def start_background_cleanup(
    service: CleanupService,
    interval_hours: float = 6,
) -> asyncio.Task:
    """
    Start a background task that periodically runs cleanup.

    Args:
        service: Cleanup service to run
        interval_hours: Hours between cleanup runs

    Returns the background task.
    """
    async def cleanup_loop():
        while True:
            try:
                await asyncio.sleep(interval_hours * 3600)  # Sleep first
                logger.info("Running scheduled background cleanup...")
                await service.run()
            except asyncio.CancelledError:
                logger.info("Background cleanup task cancelled")
                break
            except Exception as e:
                logger.error(f"Background cleanup failed: {e}")

    return asyncio.create_task(cleanup_loop())
