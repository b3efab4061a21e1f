"""
Audit ledger for completion requests.

Every completion attempt is tracked as one AgentRun that moves through
``pending -> processing -> completed | failed | blocked``. Each state change
goes through a single update path which also drives the optional durable
persistence callback.
"""

import json
import logging
import os
import time
from collections import Counter
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from .exceptions import BudgetExceededError, InvalidRunTransitionError, RunNotFoundError
from .models import (
    AgentRun,
    BudgetConfig,
    BudgetUsage,
    CompletionConfig,
    CompletionContext,
    CompletionResponse,
    Message,
    PolicyCheckResult,
    RedactionReport,
    RunStatus,
    utcnow,
)
from .run_store import InMemoryRunStore, RunStore

logger = logging.getLogger(__name__)

POLICY_BLOCKED = "POLICY_BLOCKED"

UsageSource = Callable[[Optional[str], Optional[str], date], Awaitable[BudgetUsage]]


class RunPersistence(Protocol):
    """Durable sink for agent run mutations."""
    async def persist(self, run: Dict[str, Any]) -> None: ...
    async def update(self, run_id: str, patch: Dict[str, Any]) -> None: ...


class JsonlAuditTrail:
    """Append-only JSONL trail of agent run mutations."""

    def __init__(self, path: str):
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def write(self, record: Dict[str, Any]):
        line = json.dumps(record, separators=(",", ":"), ensure_ascii=False)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    async def persist(self, run: Dict[str, Any]) -> None:
        self.write({"ts": time.time(), "event": "run_created", "run_id": run["id"], "data": run})

    async def update(self, run_id: str, patch: Dict[str, Any]) -> None:
        self.write({"ts": time.time(), "event": "run_updated", "run_id": run_id, "data": patch})

    def query(self, q: str = None, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent records first, optionally filtered by substring."""
        results = []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line in reversed(f.readlines()):
                    if len(results) >= limit:
                        break
                    if not q or q.lower() in line.lower():
                        results.append(json.loads(line))
        except FileNotFoundError:
            pass
        return results


def scrub_report(report: RedactionReport) -> RedactionReport:
    """Copy of a report with the original substrings dropped."""
    return RedactionReport.model_validate(report.model_dump())


def enforce_budget(
    usage: BudgetUsage,
    budget: BudgetConfig,
    provider: str,
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
):
    """
    Raise BudgetExceededError for the first scope at or above its limit.

    The user and org scopes apply only when the caller carries that id.
    """
    for scope, limit, current, applies in (
        ("user", budget.per_user_daily_limit, usage.user_daily, user_id is not None),
        ("org", budget.per_org_daily_limit, usage.org_daily, organization_id is not None),
        ("global", budget.global_daily_limit, usage.global_daily, True),
    ):
        if applies and limit is not None and current >= limit:
            raise BudgetExceededError(provider, scope, limit, current)


class AgentRunService:
    """
    Owns every AgentRun. Callers hold only run ids.

    Args:
        store: backing run store, in-memory when omitted
        persistence: optional durable sink called on every mutation
        usage_source: optional coroutine ``(user_id, organization_id, day)``
            returning BudgetUsage; usage is summed from the store otherwise
    """

    def __init__(
        self,
        store: Optional[RunStore] = None,
        persistence: Optional[RunPersistence] = None,
        usage_source: Optional[UsageSource] = None,
    ):
        self.store = store if store is not None else InMemoryRunStore()
        self.persistence = persistence
        self.usage_source = usage_source

    async def start_run(
        self,
        model: str,
        provider: str,
        messages: Sequence[Message],
        context: Optional[CompletionContext] = None,
        request_config: Optional[CompletionConfig] = None,
        request_id: Optional[str] = None,
    ) -> AgentRun:
        """Create a pending run. ``messages`` must already be redacted."""
        ctx = context or CompletionContext()
        run = AgentRun(
            request_id=request_id,
            user_id=ctx.user_id,
            organization_id=ctx.organization_id,
            conversation_id=ctx.conversation_id,
            entity_type=ctx.entity_type,
            entity_id=ctx.entity_id,
            jurisdiction_id=ctx.jurisdiction_id,
            model=model,
            provider=provider,
            request_config=request_config,
            prompt_messages=list(messages),
        )
        await self.store.put(run)
        if self.persistence:
            try:
                await self.persistence.persist(run.model_dump(mode="json"))
            except Exception as e:
                logger.error(f"Failed to persist run {run.id}: {e}")
        logger.info(f"Agent run {run.id} started (model={model}, provider={provider})")
        return run

    async def _update(self, run_id: str, patch: Dict[str, Any], attempted: RunStatus) -> AgentRun:
        run = await self.store.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if run.status.is_terminal:
            raise InvalidRunTransitionError(run_id, run.status.value, attempted.value)

        updated = await self.store.update(run_id, patch)
        if self.persistence:
            try:
                await self.persistence.update(run_id, updated.model_dump(mode="json", include=set(patch)))
            except Exception as e:
                logger.error(f"Failed to persist update for run {run_id}: {e}")
        return updated

    async def mark_processing(self, run_id: str) -> AgentRun:
        return await self._update(run_id, {"status": RunStatus.processing}, RunStatus.processing)

    async def record_prompt_redaction(self, run_id: str, reports: Sequence[RedactionReport]) -> AgentRun:
        current = await self.store.get(run_id)
        status = current.status if current else RunStatus.pending
        return await self._update(
            run_id,
            {"prompt_redactions": [scrub_report(r) for r in reports]},
            status,
        )

    async def record_policy_check(
        self,
        run_id: str,
        result: PolicyCheckResult,
        blocked: bool = False,
        reason: Optional[str] = None,
    ) -> AgentRun:
        """Store the gate result; ``blocked`` ends the run in ``blocked``."""
        if not blocked:
            current = await self.store.get(run_id)
            status = current.status if current else RunStatus.processing
            return await self._update(run_id, {"policy_check": result}, status)

        run = await self._update(
            run_id,
            {
                "policy_check": result,
                "status": RunStatus.blocked,
                "error_code": POLICY_BLOCKED,
                "error_message": reason,
                "completed_at": utcnow(),
            },
            RunStatus.blocked,
        )
        logger.info(f"Agent run {run_id} blocked by policy ({len(result.violations)} violations)")
        return run

    async def record_completion(
        self,
        run_id: str,
        response: CompletionResponse,
        output_redaction: Optional[RedactionReport] = None,
    ) -> AgentRun:
        run = await self._update(
            run_id,
            {
                "status": RunStatus.completed,
                "output": response.content,
                "output_redaction": scrub_report(output_redaction) if output_redaction else None,
                "provider": response.provider,
                "tokens_prompt": response.tokens_used.prompt,
                "tokens_completion": response.tokens_used.completion,
                "tokens_total": response.tokens_used.total,
                "cost": response.cost,
                "processing_time_ms": response.processing_time_ms,
                "provider_request_id": response.provider_request_id,
                "completed_at": utcnow(),
            },
            RunStatus.completed,
        )
        logger.info(
            f"Agent run {run_id} completed ({response.tokens_used.total} tokens, cost={response.cost})"
        )
        return run

    async def record_failure(self, run_id: str, error_code: str, error_message: str) -> AgentRun:
        run = await self._update(
            run_id,
            {
                "status": RunStatus.failed,
                "error_code": error_code,
                "error_message": error_message,
                "completed_at": utcnow(),
            },
            RunStatus.failed,
        )
        logger.info(f"Agent run {run_id} failed with {error_code}")
        return run

    async def get_run(self, run_id: str) -> Optional[AgentRun]:
        return await self.store.get(run_id)

    async def list_runs(
        self,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        status: Optional[RunStatus] = None,
        limit: int = 100,
    ) -> List[AgentRun]:
        """Newest first."""
        runs = [
            r for r in await self.store.list()
            if (user_id is None or r.user_id == user_id)
            and (organization_id is None or r.organization_id == organization_id)
            and (status is None or r.status == status)
        ]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs[:limit]

    async def get_budget_usage(
        self,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        day: Optional[date] = None,
    ) -> BudgetUsage:
        """Cost accumulated today (UTC), recomputed on every call."""
        day = day or utcnow().date()
        if self.usage_source:
            return await self.usage_source(user_id, organization_id, day)

        usage = BudgetUsage()
        for run in await self.store.list():
            if _day_of(run.started_at) != day:
                continue
            usage.global_daily += run.cost
            if user_id and run.user_id == user_id:
                usage.user_daily += run.cost
            if organization_id and run.organization_id == organization_id:
                usage.org_daily += run.cost
        return usage

    async def get_usage_summary(
        self,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        day: Optional[date] = None,
    ) -> Dict[str, Any]:
        runs = await self.list_runs(user_id, organization_id, limit=None)
        if day:
            runs = [r for r in runs if _day_of(r.started_at) == day]
        statuses = Counter(r.status.value for r in runs)
        return {
            "runs": len(runs),
            "tokens_prompt": sum(r.tokens_prompt for r in runs),
            "tokens_completion": sum(r.tokens_completion for r in runs),
            "tokens_total": sum(r.tokens_total for r in runs),
            "cost": sum(r.cost for r in runs),
            "by_status": {s.value: statuses.get(s.value, 0) for s in RunStatus},
        }


def _day_of(ts: datetime) -> date:
    return ts.date()
