"""CQTAI provider (primary vendor, Suno models behind the CQTAI gateway)."""

from typing import Any, Dict, List, Optional

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

DEFAULT_MODEL = "v50"
DEFAULT_WEIGHT = 0.65
DEFAULT_PROMPT = "根据音频生成音乐"
DEFAULT_TAGS = "Pop"
DEFAULT_TITLE = "未命名作品"

_STATUS_MAP = {
    "complete": ProviderTaskStatus.COMPLETED,
    "succeeded": ProviderTaskStatus.COMPLETED,
    "failed": ProviderTaskStatus.FAILED,
    "processing": ProviderTaskStatus.PROCESSING,
}


def _weight(value: Optional[float]) -> float:
    return DEFAULT_WEIGHT if value is None else value


class CQTAIProvider(HTTPMusicProvider):
    """Cover generation from an uploaded clip (``upload_cover`` task)."""

    name = "cqtai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.cqtai.com",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(api_key, base_url, timeout, client)

    def _check_code(self, body: Dict[str, Any]) -> None:
        if body.get("code") != 200:
            raise ProviderError(self.name, f"CQTAI API error: {body.get('msg') or 'unknown error'}")

    def build_payload(self, request: GenerateRequest) -> Dict[str, Any]:
        """Translate a generate request into the CQTAI body."""
        payload: Dict[str, Any] = {
            "task": "upload_cover",
            "model": request.model or DEFAULT_MODEL,
            "audioUrl": request.audio_url,
            "customMode": False,
            "makeInstrumental": request.make_instrumental,
            "prompt": request.lyrics or DEFAULT_PROMPT,
            "tags": request.style or DEFAULT_TAGS,
            "title": request.title or DEFAULT_TITLE,
            "styleWeight": _weight(request.style_weight),
            "weirdnessConstraint": _weight(request.weirdness_constraint),
            "audioWeight": _weight(request.audio_weight),
        }
        if not request.make_instrumental:
            payload["vocalGender"] = request.voice_gender or "f"
        if request.exclude_styles:
            payload["negativeTags"] = ", ".join(request.exclude_styles)
        return payload

    async def submit_generate(self, request: GenerateRequest) -> SubmitResult:
        body = await self._request(
            "POST", "/api/cqt/generator/suno", json=self.build_payload(request)
        )
        self._check_code(body)

        task_id = body.get("data")
        if not task_id:
            raise ProviderError(self.name, "CQTAI API error: missing task id")
        return SubmitResult(task_id=str(task_id))

    def _parse_variants(self, items: List[Dict[str, Any]]) -> List[VariantResult]:
        variants = []
        # Vendor order maps to A then B; extra results are ignored
        for label, item in zip((VariantLabel.A, VariantLabel.B), items):
            metadata = item.get("metadata") or {}
            variants.append(VariantResult(
                variant=label,
                audio_url=item.get("audio_url") or "",
                image_url=item.get("image_url") or None,
                image_large_url=item.get("image_large_url") or None,
                duration=metadata.get("duration") or item.get("duration") or 0,
            ))
        return variants

    async def query_task(self, task_id: str) -> TaskResult:
        body = await self._request("GET", "/api/cqt/v2/sunoinfo", params={"id": task_id})
        self._check_code(body)

        data = body.get("data") or {}
        status = _STATUS_MAP.get(data.get("status"), ProviderTaskStatus.PENDING)

        result = TaskResult(task_id=data.get("id") or task_id, status=status)
        if status == ProviderTaskStatus.COMPLETED and data.get("result"):
            result.variants = self._parse_variants(data["result"])
        if data.get("errorMsg"):
            result.error = data["errorMsg"]
        return result
