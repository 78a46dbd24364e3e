"""
Generation Client

Boundary adapter for the text-generation service. Classifies provider
failures into typed errors so the rest of the engine never inspects error
messages:

- GenerationRateLimited: quota / throttling, with the suggested wait if the
  provider sent one
- GenerationTimedOut: the provider did not answer in time
- GenerationFailed: anything else
"""

import logging
import math
import re
from typing import Dict, List, Optional, Protocol

import openai
from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

# "Please retry in 12.5s", "Please try again in 20s", "try again in 350ms"
_RETRY_HINT = re.compile(r"(?:retry|try again)\s+in\s+([\d.]+)\s*(ms|s)\b", re.IGNORECASE)


class GenerationFailed(Exception):
    """Generation service call failed for a reason other than throttling."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class GenerationTimedOut(GenerationFailed):
    """Generation service did not respond within the client timeout."""


class GenerationRateLimited(Exception):
    """Generation service refused the call because of quota or throttling."""

    def __init__(self, detail: str, retry_after: Optional[float] = None):
        super().__init__(detail)
        self.detail = detail
        self.retry_after = retry_after


class GenerationClient(Protocol):
    async def generate(self, prompt: str, history: Optional[List[Dict[str, str]]] = None) -> str:
        ...


def parse_retry_after(text: Optional[str]) -> Optional[float]:
    """
    Extract a suggested wait (seconds) from a provider message.

    Returns:
        Seconds rounded up, or None when the message carries no hint
    """
    if not text:
        return None
    match = _RETRY_HINT.search(text)
    if not match:
        return None
    try:
        value = float(match.group(1))
    except ValueError:
        return None
    if match.group(2).lower() == "ms":
        value = value / 1000.0
    return float(math.ceil(value))


def _retry_after_from_headers(headers) -> Optional[float]:
    if not headers:
        return None
    retry_ms = headers.get("retry-after-ms")
    if retry_ms:
        try:
            return float(math.ceil(float(retry_ms) / 1000.0))
        except ValueError:
            pass
    retry_s = headers.get("retry-after")
    if retry_s:
        try:
            return float(math.ceil(float(retry_s)))
        except ValueError:
            # HTTP-date form is not worth parsing; the fallback delay applies
            return None
    return None


class OpenAIGenerationClient:
    """
    Generation client backed by the OpenAI chat completions API.

    Any OpenAI-compatible endpoint works through `base_url`.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        llm_client: Optional[AsyncOpenAI] = None,
    ):
        if llm_client is None:
            if not api_key:
                raise ValueError("OPENAI_API_KEY not found in environment variables")
            # Retries are owned by the backoff layer, not the SDK
            llm_client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)
        self.llm_client = llm_client
        self.model = model

    async def generate(
        self,
        prompt: str,
        history: Optional[List[Dict[str, str]]] = None,
        temperature: float = 0.7,
    ) -> str:
        """
        Generate text for a prompt, optionally continuing a conversation.

        Args:
            prompt: User prompt
            history: Prior messages as [{"role": ..., "content": ...}]
            temperature: Sampling temperature

        Returns:
            Generated text, stripped

        Raises:
            GenerationRateLimited, GenerationTimedOut, GenerationFailed
        """
        messages = list(history or []) + [{"role": "user", "content": prompt}]
        try:
            completion = await self.llm_client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
            )
        except openai.RateLimitError as e:
            retry_after = _retry_after_from_headers(getattr(e.response, "headers", None))
            if retry_after is None:
                retry_after = parse_retry_after(str(e))
            logger.warning(f"⚠️ [GenerationClient] Rate limited (suggested wait: {retry_after}s)")
            raise GenerationRateLimited(str(e), retry_after) from e
        except openai.APITimeoutError as e:
            raise GenerationTimedOut(f"Generation request timed out: {e}") from e
        except openai.APIError as e:
            raise GenerationFailed(f"Generation request failed: {e}") from e

        if not completion.choices:
            raise GenerationFailed("Generation service returned no choices")
        content = completion.choices[0].message.content
        if not content or not content.strip():
            raise GenerationFailed("Generation service returned an empty response")
        return content.strip()
