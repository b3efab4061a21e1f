"""Governed AI SDK - redacted, policy-gated and audited model completions."""

from .audit import AgentRunService, JsonlAuditTrail
from .client import AIClient, AIClientConfig, create_ai_client
from .exceptions import (
    AuthenticationError,
    BudgetExceededError,
    ContentFilteredError,
    GovernedAIError,
    InvalidRunTransitionError,
    PolicyBlockedError,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderTimeoutError,
    RateLimitError,
    RunNotFoundError,
    UnsupportedModelError,
)
from .models import (
    AgentRun,
    BudgetConfig,
    CompletionConfig,
    CompletionContext,
    CompletionRequest,
    CompletionResponse,
    CompletionResult,
    Message,
    ProviderConfig,
    RedactionConfig,
    RunStatus,
)
from .policy import gate_output
from .redactor import Redactor

__version__ = "1.0.0"
__all__ = [
    "AIClient", "AIClientConfig", "create_ai_client",
    "AgentRunService", "JsonlAuditTrail", "Redactor", "gate_output",
    "AgentRun", "BudgetConfig", "CompletionConfig", "CompletionContext", "CompletionRequest",
    "CompletionResponse", "CompletionResult", "Message", "ProviderConfig", "RedactionConfig", "RunStatus",
    "GovernedAIError", "ProviderError", "RateLimitError", "ProviderTimeoutError", "AuthenticationError",
    "ContentFilteredError", "BudgetExceededError", "UnsupportedModelError", "ProviderNotConfiguredError",
    "PolicyBlockedError", "RunNotFoundError", "InvalidRunTransitionError",
]
