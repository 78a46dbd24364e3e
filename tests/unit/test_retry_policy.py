"""
Unit Tests for the Retry / Backoff Layer
"""

import pytest

from socratic_assessment.errors import RateLimitError
from socratic_assessment.generation_client import GenerationFailed, GenerationRateLimited
from socratic_assessment.retry_policy import RetryingGenerator, RetryPolicy

from conftest import FakeGenerationClient, RecordingSleep


class TestRetryPolicy:

    def test_uses_provider_hint(self):
        policy = RetryPolicy()
        assert policy.delay_for(GenerationRateLimited("quota", retry_after=12)) == 12

    def test_falls_back_without_hint(self):
        policy = RetryPolicy(fallback_delay_seconds=60)
        assert policy.delay_for(GenerationRateLimited("quota")) == 60

    def test_delay_is_capped(self):
        policy = RetryPolicy(max_delay_seconds=30)
        assert policy.delay_for(GenerationRateLimited("quota", retry_after=500)) == 30


class TestRetryingGenerator:

    @pytest.fixture
    def sleep(self):
        return RecordingSleep()

    @pytest.mark.asyncio
    async def test_success_on_first_attempt_does_not_sleep(self, sleep):
        client = FakeGenerationClient(["hello"])
        generator = RetryingGenerator(client, RetryPolicy(), sleep=sleep)

        assert await generator.generate("prompt") == "hello"
        assert client.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_once_after_rate_limit(self, sleep):
        client = FakeGenerationClient([GenerationRateLimited("slow down", retry_after=7), "hello"])
        generator = RetryingGenerator(client, RetryPolicy(), sleep=sleep)

        assert await generator.generate("prompt") == "hello"
        assert client.call_count == 2
        assert sleep.delays == [7]

    @pytest.mark.asyncio
    async def test_rate_limit_twice_surfaces_typed_error(self, sleep):
        client = FakeGenerationClient([
            GenerationRateLimited("slow down"),
            GenerationRateLimited("slow down", retry_after=20),
        ])
        generator = RetryingGenerator(client, RetryPolicy(fallback_delay_seconds=60), sleep=sleep)

        with pytest.raises(RateLimitError) as exc_info:
            await generator.generate("prompt")

        assert exc_info.value.code == "RATE_LIMIT"
        assert exc_info.value.retry_after_seconds == 20
        assert client.call_count == 2
        assert sleep.delays == [60]

    @pytest.mark.asyncio
    async def test_other_failures_are_not_retried(self, sleep):
        client = FakeGenerationClient([GenerationFailed("boom"), "never"])
        generator = RetryingGenerator(client, RetryPolicy(), sleep=sleep)

        with pytest.raises(GenerationFailed):
            await generator.generate("prompt")
        assert client.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_max_attempts_is_configurable(self, sleep):
        client = FakeGenerationClient([GenerationRateLimited("x", retry_after=1)] * 3 + ["ok"])
        generator = RetryingGenerator(client, RetryPolicy(max_attempts=4), sleep=sleep)

        assert await generator.generate("prompt") == "ok"
        assert sleep.delays == [1, 1, 1]
