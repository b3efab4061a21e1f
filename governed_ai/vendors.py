"""Vendor HTTP adapters for Anthropic and OpenAI."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .exceptions import (
    AuthenticationError,
    ContentFilteredError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
)
from .models import (
    CompletionRequest,
    CompletionResponse,
    FinishReason,
    ProviderConfig,
    Role,
    TokenUsage,
)
from .providers import BaseLLMProvider, calculate_cost

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 1024


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def map_http_error(provider: str, response: httpx.Response, timeout: float = 0.0) -> ProviderError:
    """Translate a non-2xx vendor response into the provider error taxonomy."""
    status = response.status_code
    body = response.text[:500]
    if status == 429:
        return RateLimitError(provider, _retry_after(response))
    if status in (401, 403):
        return AuthenticationError(provider, f"{provider} rejected credentials ({status})")
    if status in (408, 504):
        return ProviderTimeoutError(provider, timeout)
    if status == 400 and ("content_policy" in body or "content_filter" in body):
        return ContentFilteredError(provider, body)
    if status >= 500:
        return ProviderError(f"{provider} returned {status}: {body}", "PROVIDER_UNAVAILABLE", provider, retryable=True)
    return ProviderError(f"{provider} returned {status}: {body}", "PROVIDER_ERROR", provider)


class HTTPProvider(BaseLLMProvider):
    """Adapter base for vendors reached over HTTPS with httpx."""

    default_base_url = ""

    def __init__(self, config: Optional[ProviderConfig] = None, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self.base_url = (self.config.base_url or self.default_base_url).rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(timeout=self.config.timeout)

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.http_client.post(f"{self.base_url}{path}", json=body, headers=self._headers())
        logger.debug(f"{self.provider_id} POST {path} -> {response.status_code}")
        if response.status_code >= 400:
            raise map_http_error(self.provider_id, response, self.config.timeout)
        return response.json()

    async def validate_credentials(self) -> bool:
        """Cheap authenticated call; False only for rejected credentials."""
        if not self.is_available():
            return False
        response = await self.http_client.get(f"{self.base_url}/v1/models", headers=self._headers())
        if response.status_code in (401, 403):
            return False
        if response.status_code >= 400:
            raise map_http_error(self.provider_id, response, self.config.timeout)
        return True

    async def aclose(self):
        await self.http_client.aclose()


class AnthropicProvider(HTTPProvider):
    provider_id = "anthropic"
    default_base_url = "https://api.anthropic.com"
    api_version = "2023-06-01"
    supported_models = ["claude-3-opus", "claude-3-sonnet", "claude-3-haiku"]

    # vendor model ids for the short names above
    MODEL_IDS = {
        "claude-3-opus": "claude-3-opus-20240229",
        "claude-3-sonnet": "claude-3-sonnet-20240229",
        "claude-3-haiku": "claude-3-haiku-20240307",
    }

    STOP_REASONS = {
        "end_turn": FinishReason.stop,
        "stop_sequence": FinishReason.stop,
        "max_tokens": FinishReason.length,
    }

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    def _build_body(self, request: CompletionRequest) -> Dict[str, Any]:
        system_parts = [m.content for m in request.messages if m.role == Role.system]
        messages = [
            {"role": m.role.value, "content": m.content}
            for m in request.messages if m.role != Role.system
        ]
        cfg = request.config
        body: Dict[str, Any] = {
            "model": self.MODEL_IDS.get(request.model, request.model),
            "messages": messages,
            "max_tokens": (cfg.max_tokens if cfg and cfg.max_tokens else DEFAULT_MAX_TOKENS),
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)
        if cfg and cfg.temperature is not None:
            body["temperature"] = cfg.temperature
        return body

    async def _complete_once(self, request: CompletionRequest) -> CompletionResponse:
        data = await self._post("/v1/messages", self._build_body(request))
        text = "".join(block.get("text", "") for block in data.get("content", []) if block.get("type") == "text")
        usage = data.get("usage", {})
        prompt_tokens = usage.get("input_tokens", 0)
        completion_tokens = usage.get("output_tokens", 0)
        return CompletionResponse(
            content=text,
            model=request.model,
            provider=self.provider_id,
            tokens_used=TokenUsage.of(prompt_tokens, completion_tokens),
            cost=calculate_cost(request.model, prompt_tokens, completion_tokens),
            provider_request_id=data.get("id"),
            finish_reason=self.STOP_REASONS.get(data.get("stop_reason"), FinishReason.stop),
        )


class OpenAIProvider(HTTPProvider):
    provider_id = "openai"
    default_base_url = "https://api.openai.com"
    supported_models = ["gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"]

    FINISH_REASONS = {
        "stop": FinishReason.stop,
        "length": FinishReason.length,
        "content_filter": FinishReason.content_filter,
    }

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "content-type": "application/json",
        }

    def _build_body(self, request: CompletionRequest) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": request.model,
            "messages": [{"role": m.role.value, "content": m.content} for m in request.messages],
        }
        cfg = request.config
        if cfg and cfg.max_tokens:
            body["max_tokens"] = cfg.max_tokens
        if cfg and cfg.temperature is not None:
            body["temperature"] = cfg.temperature
        return body

    def _first_choice(self, data: Dict[str, Any]) -> Tuple[str, Optional[str]]:
        choices: List[Dict[str, Any]] = data.get("choices") or []
        if not choices:
            return "", None
        choice = choices[0]
        return (choice.get("message") or {}).get("content") or "", choice.get("finish_reason")

    async def _complete_once(self, request: CompletionRequest) -> CompletionResponse:
        data = await self._post("/v1/chat/completions", self._build_body(request))
        text, finish = self._first_choice(data)
        usage = data.get("usage") or {}
        prompt_tokens = usage.get("prompt_tokens", 0)
        completion_tokens = usage.get("completion_tokens", 0)
        return CompletionResponse(
            content=text,
            model=request.model,
            provider=self.provider_id,
            tokens_used=TokenUsage.of(prompt_tokens, completion_tokens),
            cost=calculate_cost(request.model, prompt_tokens, completion_tokens),
            provider_request_id=data.get("id"),
            finish_reason=self.FINISH_REASONS.get(finish, FinishReason.stop),
        )
