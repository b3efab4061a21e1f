import logging
from typing import Optional

from .exceptions import ProviderError
from .models import CompletionRequest, CompletionResponse, FinishReason, ProviderConfig, TokenUsage
from .providers import PRICING, BaseLLMProvider, calculate_cost, estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_MOCK_RESPONSE = "This is a mock response from the console provider."


class ConsoleProvider(BaseLLMProvider):
    """
    Deterministic provider for development and tests. Never touches the
    network; token usage is estimated from text length.
    """

    provider_id = "console"
    supported_models = list(PRICING)

    def __init__(self, config: Optional[ProviderConfig] = None):
        super().__init__(config)
        self.mock_response = DEFAULT_MOCK_RESPONSE
        self.should_fail = False
        self.fail_message = "Mock provider failure"
        self.fail_error: Optional[Exception] = None
        self.call_count = 0

    def is_available(self) -> bool:
        return True

    async def validate_credentials(self) -> bool:
        return True

    def set_mock_response(self, content: str):
        self.mock_response = content

    def set_should_fail(self, should_fail: bool, message: Optional[str] = None, error: Optional[Exception] = None):
        """Make every call fail, with ``error`` if given or a ProviderError built from ``message``."""
        self.should_fail = should_fail
        if message:
            self.fail_message = message
        self.fail_error = error

    def clear(self):
        self.mock_response = DEFAULT_MOCK_RESPONSE
        self.should_fail = False
        self.fail_message = "Mock provider failure"
        self.fail_error = None
        self.call_count = 0

    async def _complete_once(self, request: CompletionRequest) -> CompletionResponse:
        self.call_count += 1
        logger.debug(f"Console completion #{self.call_count} for {request.model} ({len(request.messages)} messages)")
        if self.should_fail:
            if self.fail_error is not None:
                raise self.fail_error
            raise ProviderError(self.fail_message, "MOCK_FAILURE", self.provider_id)

        prompt_tokens = sum(estimate_tokens(m.content) for m in request.messages)
        completion_tokens = estimate_tokens(self.mock_response)
        return CompletionResponse(
            content=self.mock_response,
            model=request.model,
            provider=self.provider_id,
            tokens_used=TokenUsage.of(prompt_tokens, completion_tokens),
            cost=calculate_cost(request.model, prompt_tokens, completion_tokens),
            provider_request_id=f"console_{self.call_count}",
            finish_reason=FinishReason.stop,
        )
