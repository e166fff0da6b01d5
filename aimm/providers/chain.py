"""Provider chain: per-provider retry with ordered fallback."""

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence

from loguru import logger

from aimm.errors import ProviderChainError, ProviderError
from aimm.models.provider import ChainSubmitResult, GenerateRequest, TaskResult
from aimm.providers.base import MusicProvider


class ProviderChain:
    """
    Tries providers in order, each up to ``max_retries`` times.

    The provider that accepted a task is returned with the task id, since a
    task id from one vendor means nothing to another; ``query_task`` routes
    back to it by name.
    """

    def __init__(
        self,
        providers: Sequence[MusicProvider],
        max_retries: int = 2,
        retry_delay: float = 2.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if not providers:
            raise ValueError("ProviderChain needs at least one provider")
        self.providers: List[MusicProvider] = list(providers)
        self.max_retries = max(max_retries, 1)
        self.retry_delay = retry_delay
        self._sleep = sleep or asyncio.sleep

    @property
    def name(self) -> str:
        return "chain(" + ",".join(p.name for p in self.providers) + ")"

    async def submit_generate(self, request: GenerateRequest) -> ChainSubmitResult:
        last_error: Optional[Exception] = None

        for provider in self.providers:
            for attempt in range(self.max_retries):
                try:
                    logger.info(
                        f"Trying provider {provider.name} "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    result = await provider.submit_generate(request)
                    logger.info(f"Provider {provider.name} accepted task {result.task_id}")
                    return ChainSubmitResult(task_id=result.task_id, provider=provider.name)
                except Exception as e:
                    last_error = e
                    logger.error(
                        f"Provider {provider.name} failed "
                        f"(attempt {attempt + 1}/{self.max_retries}): {e}"
                    )
                    if attempt < self.max_retries - 1:
                        await self._sleep(self.retry_delay * (attempt + 1))

            logger.warning(f"Provider {provider.name} exhausted, trying next")

        raise ProviderChainError(last_error)

    def get_provider(self, name: str) -> Optional[MusicProvider]:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    async def query_task(self, task_id: str, provider_name: str) -> TaskResult:
        provider = self.get_provider(provider_name)
        if provider is None:
            raise ProviderError(provider_name, f"Provider not found: {provider_name}")
        return await provider.query_task(task_id)

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()
