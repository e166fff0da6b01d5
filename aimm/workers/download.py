"""Download worker: archives a variant's vendor-hosted media into storage."""

from datetime import datetime
from typing import Any, Dict, Optional, Union

from loguru import logger

from aimm.config import settings
from aimm.models.job import DownloadJobData
from aimm.models.track import DownloadStatus
from aimm.services.storage import ObjectStorage
from aimm.services.track_manager import TrackManager


def build_storage_keys(data: DownloadJobData) -> Dict[str, str]:
    """Object keys for a variant's audio and cover images.

    Derived from the variant id rather than the clock, so a retried
    attempt overwrites its own objects instead of orphaning them.
    """
    base = f"tracks/{data.track_id}/batch{data.batch_index}_{data.variant.value}_{data.variant_id}"
    return {
        "audio": f"{base}.mp3",
        "image": f"{base}.jpg",
        "image_large": f"{base}_large.jpg",
    }


class DownloadWorker:
    """Worker for the ``download`` queue task.

    The audio leg is fatal: its failure is recorded on the variant and
    re-raised for the queue to retry. Each image leg is independent and
    only ever logged.
    """

    def __init__(
        self,
        track_manager: TrackManager,
        storage: ObjectStorage,
        audio_timeout: Optional[float] = None,
        image_timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
    ):
        self.track_manager = track_manager
        self.storage = storage
        self.audio_timeout = audio_timeout or settings.audio_download_timeout
        self.image_timeout = image_timeout or settings.image_download_timeout
        self.max_bytes = max_bytes or settings.max_download_bytes

    async def _download_image(self, url: Optional[str], key: str, label: str, variant_id: str) -> bool:
        if not url:
            return False
        try:
            await self.storage.upload_from_url(
                url,
                key,
                content_type="image/jpeg",
                timeout=self.image_timeout,
                max_bytes=self.max_bytes,
            )
            return True
        except Exception as e:
            logger.warning(f"Variant {variant_id}: {label} download failed: {e}")
            return False

    async def handle(self, payload: Union[DownloadJobData, Dict[str, Any]]) -> Dict[str, Any]:
        """Run one download job."""
        data = (
            payload if isinstance(payload, DownloadJobData)
            else DownloadJobData.model_validate(payload)
        )
        variant_id = data.variant_id

        variant = self.track_manager.get_variant(variant_id)
        if variant is None:
            logger.warning(f"Variant {variant_id} no longer exists, skipping download")
            return {"skipped": True}
        if variant.download_status == DownloadStatus.COMPLETED:
            logger.info(f"Variant {variant_id} already downloaded, skipping duplicate delivery")
            return {"skipped": True, "audio_key": variant.local_audio_key}

        logger.info(f"Starting download for variant {variant_id}")
        keys = build_storage_keys(data)

        try:
            self.track_manager.update_variant(
                variant_id,
                download_status=DownloadStatus.DOWNLOADING,
                image_download_status=DownloadStatus.DOWNLOADING,
            )

            audio = await self.storage.upload_from_url(
                data.source_url,
                keys["audio"],
                content_type="audio/mpeg",
                timeout=self.audio_timeout,
                max_bytes=self.max_bytes,
            )
        except Exception as e:
            error_msg = str(e) or type(e).__name__
            logger.error(f"Download failed for variant {variant_id}: {error_msg}")
            if self.track_manager.get_variant(variant_id):
                self.track_manager.update_variant(
                    variant_id,
                    download_status=DownloadStatus.FAILED,
                    image_download_status=DownloadStatus.FAILED,
                    download_error=error_msg,
                )
            raise

        image_ok = await self._download_image(data.image_url, keys["image"], "image", variant_id)
        image_large_ok = await self._download_image(
            data.image_large_url, keys["image_large"], "large image", variant_id
        )

        if self.track_manager.get_variant(variant_id) is None:
            # Track hard-deleted while we were downloading
            logger.warning(f"Variant {variant_id} deleted during download")
            return {"skipped": True}

        self.track_manager.update_variant(
            variant_id,
            local_audio_key=keys["audio"],
            local_image_key=keys["image"] if image_ok else None,
            local_image_large_key=keys["image_large"] if image_large_ok else None,
            download_status=DownloadStatus.COMPLETED,
            image_download_status=(
                DownloadStatus.COMPLETED if (image_ok or image_large_ok) else DownloadStatus.FAILED
            ),
            download_error=None,
            downloaded_at=datetime.now(),
        )

        logger.info(
            f"Download completed for variant {variant_id}: audio={audio.size} bytes, "
            f"image={image_ok}, image_large={image_large_ok}"
        )
        return {
            "audio_key": keys["audio"],
            "image_key": keys["image"] if image_ok else None,
            "image_large_key": keys["image_large"] if image_large_ok else None,
        }
