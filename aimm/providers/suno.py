"""Suno provider (legacy vendor)."""

from typing import Any, Dict, Optional

import httpx

from aimm.errors import ProviderError
from aimm.models.provider import (
    GenerateRequest,
    ProviderTaskStatus,
    SubmitResult,
    TaskResult,
    VariantResult,
)
from aimm.models.track import VariantLabel
from aimm.providers.base import HTTPMusicProvider

_STATUS_MAP = {
    "pending": ProviderTaskStatus.PENDING,
    "processing": ProviderTaskStatus.PROCESSING,
    "complete": ProviderTaskStatus.COMPLETED,
    "completed": ProviderTaskStatus.COMPLETED,
    "failed": ProviderTaskStatus.FAILED,
}


class SunoProvider(HTTPMusicProvider):
    """Direct Suno API. Returns audio only, no cover images."""

    name = "suno"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.suno.ai",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, base_url, timeout, client)

    async def submit_generate(self, request: GenerateRequest) -> SubmitResult:
        payload: Dict[str, Any] = {
            "audio_url": request.audio_url,
            "style": request.style,
        }
        if request.segment:
            payload["segment_start_ms"] = request.segment.start_ms
            payload["segment_end_ms"] = request.segment.end_ms

        body = await self._request("POST", "/v1/generate", json=payload)
        task_id = body.get("id")
        if not task_id:
            raise ProviderError(self.name, "Suno API error: missing task id")
        return SubmitResult(task_id=str(task_id))

    async def query_task(self, task_id: str) -> TaskResult:
        body = await self._request("GET", f"/v1/tasks/{task_id}")

        status = _STATUS_MAP.get(body.get("status"), ProviderTaskStatus.PENDING)
        result = TaskResult(task_id=body.get("id") or task_id, status=status)

        if status == ProviderTaskStatus.COMPLETED and body.get("audio_url"):
            duration = body.get("duration") or 0
            result.variants.append(VariantResult(
                variant=VariantLabel.A, audio_url=body["audio_url"], duration=duration,
            ))
            if body.get("audio_url_b"):
                result.variants.append(VariantResult(
                    variant=VariantLabel.B, audio_url=body["audio_url_b"], duration=duration,
                ))

        if body.get("error"):
            result.error = body["error"]
        return result
