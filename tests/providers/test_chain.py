"""Tests for provider retry and fallback."""

from unittest.mock import AsyncMock

import pytest

from aimm.errors import ProviderChainError, ProviderError
from aimm.models.provider import GenerateRequest, ProviderTaskStatus, SubmitResult, TaskResult
from aimm.providers.base import MusicProvider
from aimm.providers.chain import ProviderChain


class StubProvider(MusicProvider):
    """Provider that fails a fixed number of submissions before succeeding."""

    def __init__(self, name, failures=0, task_id="task-1"):
        self.name = name
        self.failures = failures
        self.task_id = task_id
        self.submit_calls = 0
        self.queried = []

    async def submit_generate(self, request):
        self.submit_calls += 1
        if self.submit_calls <= self.failures:
            raise ProviderError(self.name, f"{self.name} API error: 503 - busy", status_code=503)
        return SubmitResult(task_id=self.task_id)

    async def query_task(self, task_id):
        self.queried.append(task_id)
        return TaskResult(task_id=task_id, status=ProviderTaskStatus.PROCESSING)


@pytest.fixture
def request_():
    return GenerateRequest(audio_url="https://cdn.example.com/in.mp3", style="Jazz")


@pytest.fixture
def sleep():
    return AsyncMock()


class TestSubmit:
    """Tests for ProviderChain.submit_generate."""

    @pytest.mark.asyncio
    async def test_first_provider_succeeds(self, request_, sleep):
        """Test that the first provider's task is returned without fallback."""
        primary = StubProvider("cqtai", task_id="cq-1")
        secondary = StubProvider("suno")
        chain = ProviderChain([primary, secondary], sleep=sleep)

        result = await chain.submit_generate(request_)

        assert result.task_id == "cq-1"
        assert result.provider == "cqtai"
        assert secondary.submit_calls == 0
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, request_, sleep):
        """Test retrying the same provider after a transient failure."""
        primary = StubProvider("cqtai", failures=1)
        chain = ProviderChain([primary], max_retries=2, retry_delay=2.0, sleep=sleep)

        result = await chain.submit_generate(request_)

        assert result.provider == "cqtai"
        assert primary.submit_calls == 2
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_falls_back_after_exhausting_retries(self, request_, sleep):
        """Test falling back to the next provider once retries run out."""
        primary = StubProvider("cqtai", failures=10)
        secondary = StubProvider("suno", task_id="suno-1")
        chain = ProviderChain([primary, secondary], max_retries=3, retry_delay=1.0, sleep=sleep)

        result = await chain.submit_generate(request_)

        assert result.task_id == "suno-1"
        assert result.provider == "suno"
        assert primary.submit_calls == 3
        # Linear backoff between attempts, none after the last one
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_all_fail(self, request_, sleep):
        """Test the chain error when every provider is exhausted."""
        chain = ProviderChain(
            [StubProvider("cqtai", failures=10), StubProvider("suno", failures=10)],
            max_retries=2,
            sleep=sleep,
        )

        with pytest.raises(ProviderChainError) as exc_info:
            await chain.submit_generate(request_)

        assert str(exc_info.value).startswith("All providers failed. Last error: suno API error")

    def test_requires_providers(self):
        """Test that an empty chain is rejected."""
        with pytest.raises(ValueError):
            ProviderChain([])


class TestQuery:
    """Tests for routing queries to the accepting provider."""

    @pytest.mark.asyncio
    async def test_routes_by_name(self):
        """Test that queries go to the provider that accepted the task."""
        primary = StubProvider("cqtai")
        secondary = StubProvider("suno")
        chain = ProviderChain([primary, secondary])

        await chain.query_task("suno-1", "suno")

        assert secondary.queried == ["suno-1"]
        assert primary.queried == []

    @pytest.mark.asyncio
    async def test_unknown_provider(self):
        """Test querying a provider that is not in the chain."""
        chain = ProviderChain([StubProvider("cqtai")])

        with pytest.raises(ProviderError, match="Provider not found"):
            await chain.query_task("x", "udio")

    def test_name_lists_members(self):
        """Test the chain name."""
        chain = ProviderChain([StubProvider("cqtai"), StubProvider("suno")])

        assert chain.name == "chain(cqtai,suno)"
