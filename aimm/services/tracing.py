"""Langfuse tracing for the generation pipeline.

Every call is best-effort: an unconfigured or failing Langfuse never
raises into the caller.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from langfuse import Langfuse
from loguru import logger
from pydantic import BaseModel, Field

from aimm import __version__
from aimm.config import Settings, settings as default_settings


class SpanData(BaseModel):
    """A timed pipeline step."""
    name: str
    input: Optional[Dict[str, Any]] = None
    output: Optional[Dict[str, Any]] = None
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    level: Optional[str] = None  # "ERROR" for failure spans


class ScoreData(BaseModel):
    name: str
    value: float
    comment: Optional[str] = None


class TracingService:
    """Thin wrapper over the Langfuse client."""

    def __init__(
        self,
        public_key: str = "",
        secret_key: str = "",
        host: str = "https://cloud.langfuse.com",
        environment: str = "dev",
        client: Optional[Langfuse] = None,
    ):
        self.environment = environment
        self._client: Optional[Langfuse] = client
        if self._client is None and public_key and secret_key:
            try:
                self._client = Langfuse(
                    public_key=public_key,
                    secret_key=secret_key,
                    host=host,
                )
                logger.info(f"Langfuse tracing enabled ({host})")
            except Exception as e:
                logger.warning(f"Failed to initialize Langfuse: {e}")
                self._client = None

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "TracingService":
        config = config or default_settings
        return cls(
            public_key=config.langfuse_public_key,
            secret_key=config.langfuse_secret_key,
            host=config.langfuse_host,
            environment=config.environment,
        )

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def create_trace(
        self,
        trace_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        name: str = "music_generate",
    ) -> None:
        if not self._client:
            return
        full_metadata = {
            "product": "ai_music_maker",
            "environment": self.environment,
            "platform": "web",
            "device": "desktop",
            "agent_version": __version__,
            "app_version": __version__,
            **(metadata or {}),
        }
        try:
            self._client.trace(id=trace_id, name=name, metadata=full_metadata)
        except Exception as e:
            logger.warning(f"Langfuse trace {trace_id} failed: {e}")

    def create_span(self, trace_id: str, span: SpanData) -> None:
        if not self._client:
            return
        try:
            kwargs: Dict[str, Any] = {
                "trace_id": trace_id,
                "name": span.name,
                "input": span.input,
                "output": span.output,
                "start_time": span.start_time,
                "end_time": span.end_time or datetime.now(),
            }
            if span.level:
                kwargs["level"] = span.level
            self._client.span(**kwargs)
        except Exception as e:
            logger.warning(f"Langfuse span {span.name} failed: {e}")

    def create_score(self, trace_id: str, score: ScoreData) -> None:
        if not self._client:
            return
        try:
            self._client.score(
                trace_id=trace_id,
                name=score.name,
                value=score.value,
                comment=score.comment,
            )
        except Exception as e:
            logger.warning(f"Langfuse score {score.name} failed: {e}")

    def create_scores(self, trace_id: str, scores: List[ScoreData]) -> None:
        for score in scores:
            self.create_score(trace_id, score)

    async def flush(self) -> None:
        """Send buffered events without blocking the event loop."""
        if not self._client:
            return
        try:
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(None, self._client.flush)
        except Exception as e:
            logger.warning(f"Langfuse flush failed: {e}")

    def shutdown(self) -> None:
        if not self._client:
            return
        try:
            self._client.shutdown()
        except Exception as e:
            logger.warning(f"Langfuse shutdown failed: {e}")
