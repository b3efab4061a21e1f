"""
Tests for AIClient: the end-to-end governed completion path.
"""

import os
from unittest.mock import AsyncMock

import httpx
import pytest

from governed_ai.audit import POLICY_BLOCKED, AgentRunService
from governed_ai.client import AIClient, AIClientConfig, create_ai_client
from governed_ai.config import Settings
from governed_ai.console import ConsoleProvider
from governed_ai.exceptions import (
    AuthenticationError,
    BudgetExceededError,
    PolicyBlockedError,
    ProviderNotConfiguredError,
    RateLimitError,
)
from governed_ai.models import BudgetConfig, BudgetUsage, ProviderConfig, RunStatus, ViolationCode
from governed_ai.policy import REMEDIATION
from governed_ai.vendors import AnthropicProvider, OpenAIProvider

BROKER_FEE_OUTPUT = "Happy to help. The tenant must pay the broker fee at signing."


def _client(*providers, runs=None, **config):
    cfg = AIClientConfig(providers={}, **config)
    return AIClient(cfg, providers={p.provider_id: p for p in providers}, runs=runs)


def _failing_anthropic(error, max_retries=1):
    provider = AnthropicProvider(ProviderConfig(api_key="k", max_retries=max_retries, retry_base_delay=0))
    provider._complete_once = AsyncMock(side_effect=error)
    return provider


class TestCompletion:
    """Test the successful completion path."""

    @pytest.mark.asyncio
    async def test_prompt_redacted_before_provider(self, make_request):
        console = ConsoleProvider()
        console._complete_once = AsyncMock(wraps=console._complete_once)
        client = _client(console)

        result = await client.complete(make_request("Email me at jane@example.com", user_id="u1"))

        sent = console._complete_once.await_args.args[0]
        assert sent.messages[0].content == "Email me at [EMAIL_REDACTED]"
        assert result.provider == "console"
        assert result.tokens_used.total == result.tokens_used.prompt + result.tokens_used.completion

        run = await client.get_run(result.agent_run_id)
        assert run.status == RunStatus.completed
        assert run.user_id == "u1"
        assert "jane@example.com" not in run.model_dump_json()
        assert run.prompt_messages[0].content == "Email me at [EMAIL_REDACTED]"
        assert len(run.prompt_redactions) == 1
        assert run.tokens_total == result.tokens_used.total
        assert run.cost == result.cost

    @pytest.mark.asyncio
    async def test_output_redacted(self, make_request):
        console = ConsoleProvider()
        console.set_mock_response("Reach the agent at agent@example.com")
        client = _client(console)

        result = await client.complete(make_request())
        assert result.content == "Reach the agent at [EMAIL_REDACTED]"
        run = await client.get_run(result.agent_run_id)
        assert run.output == result.content
        assert run.output_redaction.total_redactions == 1

    @pytest.mark.asyncio
    async def test_no_prompt_reports_without_pii(self, make_request):
        client = _client(ConsoleProvider())
        result = await client.complete(make_request("Nothing to hide"))
        assert (await client.get_run(result.agent_run_id)).prompt_redactions == []


class TestBudget:
    """Test budget enforcement before any provider call."""

    @pytest.mark.asyncio
    async def test_budget_exceeded_blocks_call(self, make_request):
        console = ConsoleProvider()
        console._complete_once = AsyncMock()
        runs = AgentRunService(usage_source=AsyncMock(return_value=BudgetUsage(user_daily=12000)))
        client = _client(console, runs=runs, budget=BudgetConfig(per_user_daily_limit=10000))

        with pytest.raises(BudgetExceededError) as exc:
            await client.complete(make_request(user_id="u1"))

        assert exc.value.scope == "user"
        assert exc.value.limit == 10000
        assert exc.value.current == 12000
        console._complete_once.assert_not_called()
        assert await runs.list_runs() == []

    @pytest.mark.asyncio
    async def test_ledger_usage_counts(self, make_request):
        console = ConsoleProvider()
        client = _client(console, budget=BudgetConfig(global_daily_limit=1))
        # console pricing for gpt-4 makes one call cost at least one cent
        await client.complete(make_request("x" * 400, model="gpt-4"))
        with pytest.raises(BudgetExceededError) as exc:
            await client.complete(make_request(model="gpt-4"))
        assert exc.value.scope == "global"

    @pytest.mark.asyncio
    async def test_anonymous_caller_skips_user_scope(self, make_request):
        runs = AgentRunService(usage_source=AsyncMock(return_value=BudgetUsage(user_daily=50, org_daily=50)))
        client = _client(
            ConsoleProvider(), runs=runs,
            budget=BudgetConfig(per_user_daily_limit=10, per_org_daily_limit=10),
        )
        result = await client.complete(make_request())
        assert (await client.get_run(result.agent_run_id)).status == RunStatus.completed


class TestFallback:
    """Test fallback after retryable primary failures."""

    @pytest.mark.asyncio
    async def test_fallback_on_retryable_error(self, make_request):
        primary = _failing_anthropic(RateLimitError("anthropic"))
        fallback = ConsoleProvider()
        client = _client(primary, fallback, default_provider="anthropic", fallback_provider="console")

        result = await client.complete(make_request(model="claude-3-haiku"))

        assert result.provider == "console"
        assert primary._complete_once.await_count == 2
        assert fallback.call_count == 1
        run = await client.get_run(result.agent_run_id)
        assert run.status == RunStatus.completed
        assert run.provider == "console"

    @pytest.mark.asyncio
    async def test_fallback_gets_single_attempt(self, make_request):
        primary = _failing_anthropic(RateLimitError("anthropic"))
        fallback = ConsoleProvider()
        fallback.set_should_fail(True, error=RateLimitError("console"))
        client = _client(primary, fallback, default_provider="anthropic", fallback_provider="console")

        with pytest.raises(RateLimitError):
            await client.complete(make_request(model="claude-3-haiku"))
        assert fallback.call_count == 1

        [run] = await client.runs.list_runs()
        assert run.status == RunStatus.failed
        assert run.error_code == "RATE_LIMITED"

    @pytest.mark.asyncio
    async def test_no_fallback_on_permanent_error(self, make_request):
        primary = _failing_anthropic(AuthenticationError("anthropic"))
        fallback = ConsoleProvider()
        client = _client(primary, fallback, default_provider="anthropic", fallback_provider="console")

        with pytest.raises(AuthenticationError):
            await client.complete(make_request(model="claude-3-haiku"))
        assert fallback.call_count == 0
        assert primary._complete_once.await_count == 1

    @pytest.mark.asyncio
    async def test_no_fallback_when_unsupported(self, make_request):
        primary = _failing_anthropic(RateLimitError("anthropic"), max_retries=0)
        fallback = OpenAIProvider(ProviderConfig(api_key="k"))
        fallback._complete_once = AsyncMock()
        client = _client(primary, fallback, default_provider="anthropic", fallback_provider="openai")

        with pytest.raises(RateLimitError):
            await client.complete(make_request(model="claude-3-haiku"))
        fallback._complete_once.assert_not_called()


class TestPolicyGate:
    """Test gating of model output."""

    @pytest.mark.asyncio
    async def test_hard_block(self, make_request):
        console = ConsoleProvider()
        console.set_mock_response(BROKER_FEE_OUTPUT)
        client = _client(console, hard_block=True)

        with pytest.raises(PolicyBlockedError) as exc:
            await client.complete(make_request(jurisdiction_id="nyc"))

        run = await client.get_run(exc.value.agent_run_id)
        assert run.status == RunStatus.blocked
        assert run.error_code == POLICY_BLOCKED
        assert not run.policy_check.passed
        assert exc.value.check_result.violations[0].code == ViolationCode.illegal_broker_fee

    @pytest.mark.asyncio
    async def test_sanitize_without_hard_block(self, make_request):
        console = ConsoleProvider()
        console.set_mock_response(BROKER_FEE_OUTPUT)
        client = _client(console)

        result = await client.complete(make_request(jurisdiction_id="nyc"))

        assert "tenant must pay the broker fee" not in result.content
        assert REMEDIATION[ViolationCode.illegal_broker_fee] in result.content
        run = await client.get_run(result.agent_run_id)
        assert run.status == RunStatus.completed
        assert run.output == result.content
        assert not run.policy_check.passed

    @pytest.mark.asyncio
    async def test_passing_check_recorded(self, make_request):
        client = _client(ConsoleProvider())
        result = await client.complete(make_request(jurisdiction_id="nyc"))
        assert (await client.get_run(result.agent_run_id)).policy_check.passed

    @pytest.mark.asyncio
    async def test_stage_passed_to_gate(self, make_request):
        console = ConsoleProvider()
        console.set_mock_response("We should run a background check on the applicant.")
        client = _client(console, hard_block=True)
        with pytest.raises(PolicyBlockedError):
            await client.complete(make_request(jurisdiction_id="nyc", application_stage="initial_inquiry"))

    @pytest.mark.asyncio
    async def test_skipped_without_jurisdiction(self, make_request):
        console = ConsoleProvider()
        console.set_mock_response(BROKER_FEE_OUTPUT)
        client = _client(console, hard_block=True)
        result = await client.complete(make_request(user_id="u1"))
        assert result.content == BROKER_FEE_OUTPUT
        assert (await client.get_run(result.agent_run_id)).policy_check is None

    @pytest.mark.asyncio
    async def test_skipped_when_disabled(self, make_request):
        console = ConsoleProvider()
        console.set_mock_response(BROKER_FEE_OUTPUT)
        client = _client(console, hard_block=True, enable_policy_gate=False)
        result = await client.complete(make_request(jurisdiction_id="nyc"))
        assert result.content == BROKER_FEE_OUTPUT


class TestFailureRecording:
    """Test that every run ends with an explicit outcome."""

    @pytest.mark.asyncio
    async def test_provider_error_recorded(self, make_request):
        console = ConsoleProvider()
        console.set_should_fail(True, error=AuthenticationError("console"))
        client = _client(console)

        with pytest.raises(AuthenticationError):
            await client.complete(make_request())

        [run] = await client.runs.list_runs()
        assert run.status == RunStatus.failed
        assert run.error_code == "AUTHENTICATION_FAILED"
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_unexpected_error_recorded(self, make_request):
        client = _client(ConsoleProvider())
        client.runs.record_completion = AsyncMock(side_effect=RuntimeError("disk full"))

        with pytest.raises(RuntimeError):
            await client.complete(make_request())

        [run] = await client.runs.list_runs()
        assert run.status == RunStatus.failed
        assert run.error_code == "UNEXPECTED_ERROR"
        assert run.error_message == "disk full"

    @pytest.mark.asyncio
    async def test_store_error_keeps_original_exception(self, make_request):
        console = ConsoleProvider()
        console.set_should_fail(True, error=AuthenticationError("console"))
        client = _client(console)
        client.runs.get_run = AsyncMock(side_effect=ConnectionError("redis down"))

        with pytest.raises(AuthenticationError):
            await client.complete(make_request())


class TestProviders:
    """Test provider resolution and pass-throughs."""

    @pytest.mark.asyncio
    async def test_resolves_first_supporting_provider(self, make_request):
        openai = OpenAIProvider(ProviderConfig(api_key="k"))
        openai._complete_once = AsyncMock(wraps=ConsoleProvider()._complete_once)
        client = _client(openai, default_provider="anthropic")
        await client.complete(make_request(model="gpt-4"))
        openai._complete_once.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unconfigured_model(self, make_request):
        client = _client(OpenAIProvider(ProviderConfig(api_key="k")))
        with pytest.raises(ProviderNotConfiguredError):
            await client.complete(make_request(model="claude-3-haiku"))
        assert await client.runs.list_runs() == []

    @pytest.mark.asyncio
    async def test_pass_throughs(self):
        client = _client(ConsoleProvider())
        assert client.get_provider("console") is not None
        assert client.get_provider("openai") is None

        client.add_provider(OpenAIProvider(ProviderConfig()))
        assert not client.is_provider_available("openai")
        assert client.is_provider_available("console")
        assert not client.is_provider_available("missing")

        client.set_default_provider("openai")
        assert client.config.default_provider == "openai"
        with pytest.raises(ProviderNotConfiguredError):
            client.set_default_provider("missing")

        assert await client.validate_provider_credentials("console")
        assert not await client.validate_provider_credentials("missing")
        assert await client.get_run("run_missing") is None

    @pytest.mark.asyncio
    async def test_aclose_closes_http_clients(self):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        anthropic = AnthropicProvider(ProviderConfig(api_key="k"), http_client=http_client)
        client = _client(ConsoleProvider(), anthropic)
        await client.aclose()
        assert http_client.is_closed


class TestComposition:
    """Test settings-driven construction."""

    def _settings(self, **kwargs):
        base = dict(
            default_provider="console",
            fallback_provider=None,
            anthropic_api_key="",
            openai_api_key="",
            budget_user_daily_limit=0,
            budget_org_daily_limit=0,
            budget_global_daily_limit=0,
            run_store_backend="memory",
            audit_path="",
            jurisdictions_path=None,
            hard_block=False,
        )
        base.update(kwargs)
        return Settings(**base)

    def test_config_from_settings(self):
        cfg = AIClientConfig.from_settings(self._settings(anthropic_api_key="k", budget_user_daily_limit=500))
        assert set(cfg.providers) == {"console", "anthropic"}
        assert cfg.budget.per_user_daily_limit == 500
        assert cfg.budget.per_org_daily_limit is None

    @pytest.mark.asyncio
    async def test_create_ai_client_with_audit_trail(self, tmp_path, make_request):
        path = str(tmp_path / "audit.jsonl")
        client = create_ai_client(self._settings(audit_path=path))
        result = await client.complete(make_request("call 555-123-4567"))
        assert result.agent_run_id
        assert os.path.exists(path)
        with open(path, encoding="utf-8") as f:
            assert "555-123-4567" not in f.read()
