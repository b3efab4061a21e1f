"""Governed completion client: the only path to a model completion."""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from .audit import AgentRunService, JsonlAuditTrail, enforce_budget
from .config import Settings, settings as default_settings
from .exceptions import PolicyBlockedError, ProviderError, ProviderNotConfiguredError
from .jurisdictions import JurisdictionRegistry
from .models import (
    AgentRun,
    BudgetConfig,
    CompletionConfig,
    CompletionContext,
    CompletionRequest,
    CompletionResponse,
    CompletionResult,
    ProviderConfig,
    RedactionConfig,
)
from .policy import gate_output
from .providers import BaseLLMProvider, create_provider
from .redactor import Redactor
from .run_store import create_run_store

logger = logging.getLogger(__name__)


@dataclass
class AIClientConfig:
    """Configuration for AIClient."""
    providers: Dict[str, ProviderConfig] = field(default_factory=lambda: {"console": ProviderConfig()})
    default_provider: str = "console"
    fallback_provider: Optional[str] = None
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    redaction: RedactionConfig = field(default_factory=RedactionConfig)
    enable_policy_gate: bool = True
    hard_block: bool = False

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None):
        """Create config from environment-backed settings."""
        s = s or default_settings
        providers = {
            "console": ProviderConfig(max_retries=s.max_retries, retry_base_delay=s.retry_base_delay),
        }
        if s.anthropic_api_key:
            providers["anthropic"] = ProviderConfig(
                api_key=s.anthropic_api_key,
                base_url=s.anthropic_base_url,
                timeout=s.anthropic_timeout,
                max_retries=s.max_retries,
                retry_base_delay=s.retry_base_delay,
            )
        if s.openai_api_key:
            providers["openai"] = ProviderConfig(
                api_key=s.openai_api_key,
                base_url=s.openai_base_url,
                timeout=s.openai_timeout,
                max_retries=s.max_retries,
                retry_base_delay=s.retry_base_delay,
            )
        return cls(
            providers=providers,
            default_provider=s.default_provider,
            fallback_provider=s.fallback_provider,
            budget=BudgetConfig(
                per_user_daily_limit=s.budget_user_daily_limit or None,
                per_org_daily_limit=s.budget_org_daily_limit or None,
                global_daily_limit=s.budget_global_daily_limit or None,
            ),
            enable_policy_gate=s.policy_gate_enabled,
            hard_block=s.hard_block,
        )


class AIClient:
    """
    Composes budget check, prompt redaction, the provider call (with
    fallback), output redaction and the policy gate, recording every step
    on the audit ledger.

    Usage:
        client = create_ai_client()
        result = await client.complete(CompletionRequest(
            model="claude-3-haiku",
            messages=[Message(role="user", content="...")],
            context=CompletionContext(user_id="u1", jurisdiction_id="nyc"),
        ))
        run = await client.get_run(result.agent_run_id)
    """

    def __init__(
        self,
        config: Optional[AIClientConfig] = None,
        providers: Optional[Dict[str, BaseLLMProvider]] = None,
        redactor: Optional[Redactor] = None,
        runs: Optional[AgentRunService] = None,
        jurisdictions: Optional[JurisdictionRegistry] = None,
    ):
        self.config = config or AIClientConfig()
        if providers is None:
            providers = {pid: create_provider(pid, pcfg) for pid, pcfg in self.config.providers.items()}
        self.providers: Dict[str, BaseLLMProvider] = dict(providers)
        self.redactor = redactor or Redactor(self.config.redaction)
        self.runs = runs or AgentRunService()
        self.jurisdictions = jurisdictions or JurisdictionRegistry()

    # -- provider pass-throughs ---------------------------------------------

    def get_provider(self, provider_id: str) -> Optional[BaseLLMProvider]:
        return self.providers.get(provider_id)

    def add_provider(self, provider: BaseLLMProvider):
        self.providers[provider.provider_id] = provider

    def set_default_provider(self, provider_id: str):
        if provider_id not in self.providers:
            raise ProviderNotConfiguredError(f"Provider {provider_id} is not configured")
        self.config.default_provider = provider_id

    def is_provider_available(self, provider_id: str) -> bool:
        provider = self.providers.get(provider_id)
        return bool(provider and provider.is_available())

    async def validate_provider_credentials(self, provider_id: str) -> bool:
        provider = self.providers.get(provider_id)
        if provider is None:
            return False
        return await provider.validate_credentials()

    async def get_run(self, run_id: str) -> Optional[AgentRun]:
        return await self.runs.get_run(run_id)

    async def aclose(self):
        """Close the HTTP clients held by registered providers."""
        for provider in self.providers.values():
            close = getattr(provider, "aclose", None)
            if close is not None:
                await close()

    # -- completion ---------------------------------------------------------

    def _resolve_provider(self, model: str) -> BaseLLMProvider:
        default = self.providers.get(self.config.default_provider)
        if default and default.supports_model(model):
            return default
        for provider in self.providers.values():
            if provider.supports_model(model):
                return provider
        raise ProviderNotConfiguredError(f"No configured provider supports model {model}")

    def _fallback_for(self, primary: BaseLLMProvider, model: str, error: ProviderError) -> Optional[BaseLLMProvider]:
        if not error.retryable or not self.config.fallback_provider:
            return None
        fallback = self.providers.get(self.config.fallback_provider)
        if fallback is None or fallback is primary or fallback.provider_id == primary.provider_id:
            return None
        if not fallback.supports_model(model) or not fallback.is_available():
            return None
        return fallback

    async def _call_with_fallback(self, provider: BaseLLMProvider, request: CompletionRequest) -> CompletionResponse:
        try:
            return await provider.complete(request)
        except ProviderError as exc:
            fallback = self._fallback_for(provider, request.model, exc)
            if fallback is None:
                raise
            logger.warning(f"{provider.provider_id} failed with {exc.code}, falling back to {fallback.provider_id}")
            single_attempt = (request.config or CompletionConfig()).model_copy(update={"max_retries": 0})
            return await fallback.complete(request.model_copy(update={"config": single_attempt}))

    async def _record_failure(self, run_id: str, exc: Exception):
        code = getattr(exc, "code", None) or "UNEXPECTED_ERROR"
        try:
            run = await self.runs.get_run(run_id)
            if run is None or run.status.is_terminal:
                return
            await self.runs.record_failure(run_id, code, str(exc) or exc.__class__.__name__)
        except Exception as e:
            logger.error(f"Failed to record failure for run {run_id}: {e}")

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        provider = self._resolve_provider(request.model)
        ctx = request.context or CompletionContext()

        usage = await self.runs.get_budget_usage(ctx.user_id, ctx.organization_id)
        enforce_budget(usage, self.config.budget, provider.provider_id, ctx.user_id, ctx.organization_id)

        redacted_messages, prompt_reports = self.redactor.redact_messages(request.messages)
        run = await self.runs.start_run(
            model=request.model,
            provider=provider.provider_id,
            messages=redacted_messages,
            context=ctx,
            request_config=request.config,
            request_id=request.request_id,
        )
        run_id = run.id

        try:
            if prompt_reports:
                await self.runs.record_prompt_redaction(run_id, prompt_reports)
            await self.runs.mark_processing(run_id)

            response = await self._call_with_fallback(
                provider, request.model_copy(update={"messages": redacted_messages})
            )
            output, output_report = self.redactor.redact(response.content)

            if self.config.enable_policy_gate and ctx.jurisdiction_id:
                gate = gate_output(output, ctx.jurisdiction_id, ctx.application_stage, self.jurisdictions)
                if not gate.allowed and self.config.hard_block:
                    await self.runs.record_policy_check(
                        run_id, gate.check_result, blocked=True, reason=gate.blocked_reason
                    )
                    raise PolicyBlockedError(gate.blocked_reason, gate.check_result, run_id)
                await self.runs.record_policy_check(run_id, gate.check_result)
                if not gate.allowed and gate.sanitized_output is not None:
                    logger.warning(f"Agent run {run_id}: output sanitized by policy gate")
                    output = gate.sanitized_output

            response = response.model_copy(update={"content": output})
            await self.runs.record_completion(run_id, response, output_report)
        except PolicyBlockedError:
            raise
        except Exception as exc:
            await self._record_failure(run_id, exc)
            raise

        return CompletionResult(**response.model_dump(), agent_run_id=run_id)


def create_ai_client(s: Optional[Settings] = None) -> AIClient:
    """Build a fully wired client from settings."""
    s = s or default_settings
    store = create_run_store(
        s.run_store_backend,
        redis_url=s.redis_url,
        encryption_key=os.getenv(s.encryption_key_env),
    )
    persistence = JsonlAuditTrail(s.audit_path) if s.audit_path else None
    return AIClient(
        AIClientConfig.from_settings(s),
        runs=AgentRunService(store, persistence),
        jurisdictions=JurisdictionRegistry(s.jurisdictions_path),
    )
