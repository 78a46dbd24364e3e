"""
Retry / Backoff Layer

Wraps generation calls with a bounded retry policy. Only rate-limit
failures are retried; every other failure propagates on the first attempt.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from socratic_assessment.errors import RateLimitError
from socratic_assessment.generation_client import GenerationClient, GenerationRateLimited

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry policy for rate-limited generation calls.

    max_attempts counts the first call, so the default of 2 means exactly
    one retry.
    """
    max_attempts: int = 2
    fallback_delay_seconds: float = 60.0
    max_delay_seconds: float = 120.0

    def delay_for(self, error: GenerationRateLimited) -> float:
        """Wait suggested by the provider, or the fallback, capped."""
        delay = error.retry_after if error.retry_after and error.retry_after > 0 else self.fallback_delay_seconds
        return min(float(delay), self.max_delay_seconds)


class RetryingGenerator:
    """Generation client decorator applying a RetryPolicy."""

    def __init__(
        self,
        client: GenerationClient,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self.client = client
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep

    async def generate(self, prompt: str, history: Optional[List[Dict[str, str]]] = None) -> str:
        """
        Call the generation service, sleeping and retrying on rate limits.

        Raises:
            RateLimitError: still throttled after the last permitted attempt
            GenerationFailed: any other generation failure (not retried)
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.client.generate(prompt, history)
            except GenerationRateLimited as e:
                delay = self.policy.delay_for(e)
                if attempt >= self.policy.max_attempts:
                    logger.warning(f"❌ [RetryingGenerator] Rate limited after {attempt} attempts")
                    raise RateLimitError(
                        "Rate limit reached, please try again shortly",
                        retry_after_seconds=int(delay),
                        details=e.detail,
                    ) from e
                logger.info(f"⏳ [RetryingGenerator] Rate limited, retrying in {delay:.0f}s (attempt {attempt}/{self.policy.max_attempts})")
                await self._sleep(delay)
