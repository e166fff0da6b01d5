"""Music provider interface and shared HTTP plumbing."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from aimm.errors import ProviderError
from aimm.models.provider import GenerateRequest, SubmitResult, TaskResult


class MusicProvider(ABC):
    """A music-generation vendor: submit a task, then poll it."""

    name: str = "base"

    @abstractmethod
    async def submit_generate(self, request: GenerateRequest) -> SubmitResult:
        """Submit a generation task and return the vendor task id."""

    @abstractmethod
    async def query_task(self, task_id: str) -> TaskResult:
        """Fetch the normalized state of a task."""

    async def close(self) -> None:
        """Release network resources."""


class HTTPMusicProvider(MusicProvider):
    """Base for vendors reached with bearer-token JSON over HTTP."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send a request and return the decoded JSON body.

        Raises:
            ProviderError: on transport errors, non-2xx responses or a
                body that is not a JSON object
        """
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await client.request(method, url, json=json, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"{self.name} request failed: {e}") from e

        if not response.is_success:
            logger.warning(f"{self.name} {method} {path} -> HTTP {response.status_code}")
            raise ProviderError(
                self.name,
                f"{self.name} API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(
                self.name,
                f"{self.name} returned invalid JSON",
                status_code=response.status_code,
            ) from e

        if not isinstance(body, dict):
            raise ProviderError(
                self.name,
                f"{self.name} returned an unexpected response body",
                status_code=response.status_code,
            )
        return body
