"""Exceptions for the governed AI pipeline."""

import asyncio
from typing import Any, Optional

import httpx


# Substrings that mark an untyped vendor failure as transient.
TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "rate limit",
    "503",
    "429",
    "connection reset",
    "econnreset",
    "overloaded",
)


class GovernedAIError(Exception):
    """Base exception for governed AI errors."""
    pass


class ProviderError(GovernedAIError):
    """A provider call failed. Fallback bucket for vendor errors."""
    def __init__(self, message: str, code: str = "PROVIDER_ERROR", provider: str = "unknown", retryable: bool = False):
        super().__init__(message)
        self.code = code
        self.provider = provider
        self.retryable = retryable


class RateLimitError(ProviderError):
    """Vendor rejected the call with a rate limit."""
    def __init__(self, provider: str, retry_after: Optional[float] = None):
        message = f"Rate limit exceeded for provider {provider}"
        if retry_after is not None:
            message += f" (retry after {retry_after}s)"
        super().__init__(message, "RATE_LIMITED", provider, retryable=True)
        self.retry_after = retry_after


class ProviderTimeoutError(ProviderError):
    """A single vendor call attempt timed out."""
    def __init__(self, provider: str, timeout: float):
        super().__init__(f"Request to {provider} timed out after {timeout}s", "TIMEOUT", provider, retryable=True)
        self.timeout = timeout


class AuthenticationError(ProviderError):
    """Vendor rejected the credentials."""
    def __init__(self, provider: str, message: Optional[str] = None):
        super().__init__(message or f"Authentication failed for provider {provider}", "AUTHENTICATION_FAILED", provider)


class ContentFilteredError(ProviderError):
    """Vendor refused the content."""
    def __init__(self, provider: str, reason: str):
        super().__init__(f"Content filtered by {provider}: {reason}", "CONTENT_FILTERED", provider)
        self.reason = reason


class BudgetExceededError(ProviderError):
    """A daily spend limit was reached before the call was made."""
    def __init__(self, provider: str, scope: str, limit: int, current: int):
        super().__init__(
            f"Daily {scope} budget exceeded: {current} of {limit} used",
            "BUDGET_EXCEEDED",
            provider,
        )
        self.scope = scope
        self.limit = limit
        self.current = current


class UnsupportedModelError(ProviderError):
    """The adapter does not serve the requested model. Caller error."""
    def __init__(self, provider: str, model: str):
        super().__init__(f"Model {model} is not supported by provider {provider}", "UNSUPPORTED_MODEL", provider)
        self.model = model


class ProviderNotConfiguredError(GovernedAIError):
    """No configured provider can serve the request."""
    code = "PROVIDER_NOT_CONFIGURED"


class PolicyBlockedError(GovernedAIError):
    """Model output was blocked by the policy gate."""
    code = "POLICY_BLOCKED"

    def __init__(self, message: str, check_result: Any = None, agent_run_id: Optional[str] = None):
        super().__init__(message)
        self.check_result = check_result
        self.agent_run_id = agent_run_id


class RunNotFoundError(GovernedAIError, KeyError):
    """No agent run exists with the given id."""
    code = "RUN_NOT_FOUND"


class InvalidRunTransitionError(GovernedAIError):
    """An agent run was mutated after reaching a terminal state."""
    code = "INVALID_RUN_TRANSITION"

    def __init__(self, run_id: str, current: str, attempted: str):
        super().__init__(f"Cannot transition run {run_id} from {current} to {attempted}")
        self.run_id = run_id
        self.current = current
        self.attempted = attempted


def is_transient_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in TRANSIENT_MARKERS)


def classify_error(exc: BaseException, provider: str) -> ProviderError:
    """
    Map any exception raised during a vendor call onto the provider taxonomy.

    Typed errors pass through unchanged. Untyped errors are marked retryable
    when their message contains a transient-failure marker; this heuristic can
    misjudge vendors that phrase errors differently.
    """
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ProviderTimeoutError(provider, getattr(exc, "timeout", 0.0) or 0.0)
    message = str(exc) or exc.__class__.__name__
    retryable = is_transient_message(message) or isinstance(exc, httpx.TransportError)
    return ProviderError(message, "PROVIDER_ERROR", provider, retryable=retryable)
