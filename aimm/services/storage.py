"""Object storage for archived media (S3/R2/MinIO or the local filesystem)."""

import asyncio
from abc import ABC, abstractmethod
from functools import partial
from pathlib import Path
from typing import List, Optional, Sequence

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from pydantic import BaseModel

from aimm.config import Settings, settings as default_settings
from aimm.errors import DownloadError

# S3 DeleteObjects accepts at most 1000 keys per request
_DELETE_BATCH_SIZE = 1000

_MISSING_OBJECT_CODES = {"NoSuchKey", "404", "NotFound"}


class UploadResult(BaseModel):
    key: str
    size: int


class DeleteResult(BaseModel):
    deleted: int = 0
    errors: List[str] = []


def build_public_url(
    key: str,
    public_base_url: str = "",
    endpoint: str = "",
    bucket: str = "",
) -> str:
    """Externally reachable URL of an object.

    A public CDN base wins; otherwise the URL is built from the storage
    endpoint and bucket.
    """
    key = key.lstrip("/")
    if public_base_url:
        return f"{public_base_url.rstrip('/')}/{key}"
    return f"{endpoint.rstrip('/')}/{bucket}/{key}"


class ObjectStorage(ABC):
    """Durable object storage used by the download and cleanup handlers.

    Deleting a missing object is always a success.
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self._client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client used to fetch remote media."""
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @abstractmethod
    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        ...

    @abstractmethod
    async def delete_object(self, key: str) -> None:
        ...

    @abstractmethod
    def public_url(self, key: str) -> str:
        ...

    async def delete_objects(self, keys: Sequence[str]) -> DeleteResult:
        """Delete several objects, collecting per-key errors."""
        result = DeleteResult()
        for key in keys:
            try:
                await self.delete_object(key)
                result.deleted += 1
            except Exception as e:
                logger.warning(f"Failed to delete object {key}: {e}")
                result.errors.append(f"{key}: {e}")
        return result

    async def _fetch(self, source_url: str, max_bytes: int) -> bytes:
        client = await self._get_client()
        async with client.stream("GET", source_url) as response:
            if response.status_code >= 400:
                raise DownloadError(
                    f"GET {source_url} returned HTTP {response.status_code}"
                )

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > max_bytes:
                raise DownloadError(
                    f"{source_url} is {declared} bytes, limit is {max_bytes}"
                )

            buffer = bytearray()
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > max_bytes:
                    raise DownloadError(
                        f"{source_url} exceeded the {max_bytes} byte limit"
                    )
            return bytes(buffer)

    async def upload_from_url(
        self,
        source_url: str,
        key: str,
        content_type: str,
        timeout: float,
        max_bytes: int = 50 * 1024 * 1024,
    ) -> UploadResult:
        """Download a remote file and store it under ``key``.

        Args:
            source_url: Remote URL to fetch
            key: Destination object key
            content_type: Content type recorded on the object
            timeout: Wall-clock limit for the whole transfer, in seconds
            max_bytes: Maximum accepted size

        Raises:
            DownloadError: on HTTP errors, timeouts or oversized bodies
        """
        try:
            data = await asyncio.wait_for(self._fetch(source_url, max_bytes), timeout)
        except asyncio.TimeoutError:
            raise DownloadError(f"Download of {source_url} timed out after {timeout}s")
        except httpx.HTTPError as e:
            raise DownloadError(f"Download of {source_url} failed: {e}") from e

        await self.put_object(key, data, content_type)
        logger.debug(f"Stored {source_url} as {key} ({len(data)} bytes)")
        return UploadResult(key=key, size=len(data))


class S3ObjectStorage(ObjectStorage):
    """S3-compatible storage (AWS S3, Cloudflare R2, MinIO) via boto3.

    boto3 is blocking, so every call runs in the default executor.
    """

    def __init__(
        self,
        bucket: str,
        endpoint: str,
        access_key: str,
        secret_key: str,
        region: str = "auto",
        public_base_url: str = "",
        s3_client=None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(http_client)
        self.bucket = bucket
        self.endpoint = endpoint
        self.public_base_url = public_base_url
        self._s3 = s3_client or boto3.client(
            service_name="s3",
            endpoint_url=endpoint,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=Config(signature_version="s3v4"),
        )

    async def _run(self, func, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, **kwargs))

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        await self._run(
            self._s3.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )

    async def delete_object(self, key: str) -> None:
        try:
            await self._run(self._s3.delete_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _MISSING_OBJECT_CODES:
                logger.debug(f"Object already gone: {key}")
                return
            raise

    async def delete_objects(self, keys: Sequence[str]) -> DeleteResult:
        result = DeleteResult()
        keys = list(keys)
        for start in range(0, len(keys), _DELETE_BATCH_SIZE):
            batch = keys[start:start + _DELETE_BATCH_SIZE]
            try:
                response = await self._run(
                    self._s3.delete_objects,
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as e:
                logger.warning(f"Batch delete of {len(batch)} objects failed: {e}")
                result.errors.extend(f"{k}: {e}" for k in batch)
                continue

            failed = 0
            for error in response.get("Errors", []):
                if error.get("Code") in _MISSING_OBJECT_CODES:
                    continue
                failed += 1
                result.errors.append(f"{error.get('Key')}: {error.get('Message')}")
            result.deleted += len(batch) - failed

        return result

    def public_url(self, key: str) -> str:
        return build_public_url(key, self.public_base_url, self.endpoint, self.bucket)


class LocalObjectStorage(ObjectStorage):
    """Filesystem-backed storage for development and tests."""

    def __init__(
        self,
        root_dir: Path,
        public_base_url: str = "",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(http_client)
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url

    def _path(self, key: str) -> Path:
        path = (self.root_dir / key.lstrip("/")).resolve()
        if self.root_dir.resolve() not in path.parents:
            raise ValueError(f"Invalid object key: {key}")
        return path

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    async def put_object(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def delete_object(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return build_public_url(key, self.public_base_url)
        return self._path(key).as_uri()


def create_storage(config: Optional[Settings] = None) -> ObjectStorage:
    """Build the storage backend selected by ``storage_backend``."""
    config = config or default_settings
    backend = config.storage_backend.lower()

    if backend == "s3":
        logger.info(f"Using S3 storage: {config.s3_endpoint}/{config.s3_bucket}")
        return S3ObjectStorage(
            bucket=config.s3_bucket,
            endpoint=config.s3_endpoint,
            access_key=config.s3_access_key,
            secret_key=config.s3_secret_key,
            region=config.s3_region,
            public_base_url=config.storage_public_url,
        )

    if backend == "local":
        logger.info(f"Using local storage: {config.storage_dir}")
        return LocalObjectStorage(
            root_dir=config.storage_dir,
            public_base_url=config.storage_public_url,
        )

    raise ValueError(f"Unknown storage backend: {config.storage_backend}")
