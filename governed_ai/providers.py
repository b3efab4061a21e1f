"""
Provider adapter base class.

Adapters implement ``_complete_once`` for a single vendor call. Model
validation, per-attempt timeouts and retry with exponential backoff are
shared here so every vendor behaves the same way.
"""

import asyncio
import logging
import math
import random
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from .exceptions import (
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
    UnsupportedModelError,
    classify_error,
)
from .models import CompletionRequest, CompletionResponse, ProviderConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (input, output) in cents per million tokens
PRICING: Dict[str, Tuple[int, int]] = {
    "claude-3-opus": (1500, 7500),
    "claude-3-sonnet": (300, 1500),
    "claude-3-haiku": (25, 125),
    "gpt-4-turbo": (1000, 3000),
    "gpt-4": (3000, 6000),
    "gpt-3.5-turbo": (50, 150),
}

JITTER_RATIO = 0.1


def estimate_tokens(text: str) -> int:
    """Rough token count, one token per four characters."""
    return math.ceil(len(text) / 4)


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> int:
    """Cost in cents, rounded up. Unpriced models cost nothing."""
    rates = PRICING.get(model)
    if not rates:
        return 0
    input_rate, output_rate = rates
    return math.ceil((prompt_tokens * input_rate + completion_tokens * output_rate) / 1_000_000)


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based), jitter included."""
    delay = base_delay * (2 ** (attempt - 1))
    return delay + random.uniform(0, delay * JITTER_RATIO)


class BaseLLMProvider:
    """Uniform interface over one model vendor."""

    provider_id: str = "base"
    supported_models: List[str] = []

    def __init__(self, config: Optional[ProviderConfig] = None):
        self.config = config or ProviderConfig()

    def supports_model(self, model: str) -> bool:
        return model in self.supported_models

    def is_available(self) -> bool:
        return bool(self.config.api_key)

    async def validate_credentials(self) -> bool:
        raise NotImplementedError

    async def _complete_once(self, request: CompletionRequest) -> CompletionResponse:
        raise NotImplementedError

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        if not self.supports_model(request.model):
            raise UnsupportedModelError(self.provider_id, request.model)

        overrides = request.config
        max_retries = self.config.max_retries
        base_delay = self.config.retry_base_delay
        timeout = self.config.timeout
        if overrides:
            if overrides.max_retries is not None:
                max_retries = overrides.max_retries
            if overrides.retry_base_delay is not None:
                base_delay = overrides.retry_base_delay
            if overrides.timeout is not None:
                timeout = overrides.timeout

        start = time.monotonic()
        response = await self._execute_with_retry(
            lambda: self._complete_once(request), max_retries, base_delay, timeout
        )
        if not response.processing_time_ms:
            response = response.model_copy(update={"processing_time_ms": (time.monotonic() - start) * 1000})
        return response

    async def _execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int,
        base_delay: float,
        timeout: Optional[float] = None,
    ) -> T:
        """
        Run ``operation``, retrying retryable failures up to ``max_retries``
        additional times. Each attempt is bounded by ``timeout``; the whole
        sequence is not.
        """
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(operation(), timeout)
            except asyncio.TimeoutError as exc:
                error = ProviderTimeoutError(self.provider_id, timeout or 0.0)
                cause = exc
            except ProviderError as exc:
                error = exc
                cause = None
            except Exception as exc:
                error = classify_error(exc, self.provider_id)
                cause = exc

            if not error.retryable or attempt >= max_retries:
                if cause is None:
                    raise error
                raise error from cause

            attempt += 1
            delay = backoff_delay(attempt, base_delay)
            if isinstance(error, RateLimitError) and error.retry_after:
                delay = max(delay, error.retry_after)
            logger.warning(
                f"{self.provider_id} attempt {attempt} failed ({error.code}), retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)


def create_provider(provider_id: str, config: Optional[ProviderConfig] = None, **kwargs) -> BaseLLMProvider:
    """
    Factory function to create a provider adapter by id.

    Args:
        provider_id: "anthropic", "openai" or "console"
        config: credentials and retry defaults
    """
    from .console import ConsoleProvider
    from .vendors import AnthropicProvider, OpenAIProvider

    registry = {
        AnthropicProvider.provider_id: AnthropicProvider,
        OpenAIProvider.provider_id: OpenAIProvider,
        ConsoleProvider.provider_id: ConsoleProvider,
    }
    if provider_id not in registry:
        raise ValueError(f"Unknown provider: {provider_id}")
    return registry[provider_id](config, **kwargs)
