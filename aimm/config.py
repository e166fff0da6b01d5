"""Configuration settings for AI Music Maker.

Generation pipeline: provider submission, polling, media archiving and cleanup.
"""

import json
from pathlib import Path
from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Paths
    data_dir: Path = Path("data")

    @property
    def tracks_dir(self) -> Path:
        """Path to track documents (variants and assets live inside)."""
        return self.data_dir / "tracks"

    @property
    def jobs_dir(self) -> Path:
        """Path to job documents."""
        return self.data_dir / "jobs"

    @property
    def queue_dir(self) -> Path:
        """Path to persisted queue tasks."""
        return self.data_dir / "queue"

    @property
    def storage_dir(self) -> Path:
        """Path used by the local object storage backend."""
        return self.data_dir / "storage"

    # Provider settings
    # An empty API key switches that provider to mock mode
    cqtai_api_key: str = ""
    cqtai_api_base_url: str = "https://api.cqtai.com"
    suno_api_key: str = ""
    suno_api_base_url: str = "https://api.suno.ai"
    provider_fallback_enabled: bool = False
    provider_max_retries: int = 2
    provider_retry_delay: float = 2.0  # seconds, multiplied by attempt number
    provider_timeout: float = 30.0

    # Polling settings
    poll_interval: float = 5.0
    poll_max_attempts: int = 60  # ~5 minutes at the default interval

    # Object storage settings
    storage_backend: str = "local"  # "local" or "s3"
    s3_endpoint: str = "http://localhost:9000"
    s3_bucket: str = "aimm-assets"
    s3_region: str = "auto"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    storage_public_url: str = ""  # Public CDN base, preferred when set

    # Download settings
    audio_download_timeout: float = 120.0
    image_download_timeout: float = 60.0
    max_download_bytes: int = 50 * 1024 * 1024

    # Queue settings
    max_concurrent_jobs: int = 2
    generate_job_attempts: int = 3
    generate_job_backoff: float = 5.0
    download_job_attempts: int = 5
    download_job_backoff: float = 10.0

    # Retention / cleanup settings
    track_retention_days: int = 30
    cleanup_enabled: bool = True
    cleanup_interval_hours: int = 6

    # Langfuse tracing (disabled when keys are empty)
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""
    langfuse_host: str = "https://cloud.langfuse.com"
    environment: str = "dev"

    @property
    def tracing_enabled(self) -> bool:
        """Check if Langfuse credentials are configured."""
        return bool(self.langfuse_public_key and self.langfuse_secret_key)

    # Server settings
    host: str = "0.0.0.0"
    port: int = 3001
    debug: bool = False

    # Frontend settings
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse CORS origins from JSON string or list."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not valid JSON, treat as comma-separated list
                return [origin.strip() for origin in v.split(",")]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
