from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class Role(str, Enum):
    system = "system"
    user = "user"
    assistant = "assistant"


class FinishReason(str, Enum):
    stop = "stop"
    length = "length"
    content_filter = "content_filter"
    error = "error"


class PIIType(str, Enum):
    email = "email"
    phone = "phone"
    ssn = "ssn"
    address = "address"
    credit_card = "credit_card"
    bank_account = "bank_account"
    date_of_birth = "date_of_birth"


class Severity(str, Enum):
    info = "info"
    warning = "warning"
    violation = "violation"
    critical = "critical"


class ViolationCode(str, Enum):
    illegal_broker_fee = "AI_SUGGESTED_ILLEGAL_BROKER_FEE"
    excessive_security_deposit = "AI_SUGGESTED_EXCESSIVE_SECURITY_DEPOSIT"
    premature_background_check = "AI_SUGGESTED_PREMATURE_BACKGROUND_CHECK"


class RunStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    blocked = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.completed, RunStatus.failed, RunStatus.blocked)


# ---------------------------------------------------------------------------
# Completion requests and responses
# ---------------------------------------------------------------------------

class Message(BaseModel):
    model_config = {"frozen": True}

    role: Role
    content: str


class CompletionConfig(BaseModel):
    """Per-request overrides. Unset fields fall back to the provider defaults."""
    timeout: Optional[float] = None
    max_retries: Optional[int] = Field(default=None, ge=0)
    retry_base_delay: Optional[float] = Field(default=None, ge=0)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)


class CompletionContext(BaseModel):
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    conversation_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    jurisdiction_id: Optional[str] = None
    # only consulted by the policy gate
    application_stage: Optional[str] = None


class CompletionRequest(BaseModel):
    model: str
    messages: List[Message]
    config: Optional[CompletionConfig] = None
    context: Optional[CompletionContext] = None
    request_id: Optional[str] = None

    @field_validator("messages")
    @classmethod
    def _non_empty(cls, v: List[Message]) -> List[Message]:
        if not v:
            raise ValueError("messages must not be empty")
        return v


class TokenUsage(BaseModel):
    prompt: int = Field(default=0, ge=0)
    completion: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_total(self) -> "TokenUsage":
        if self.total != self.prompt + self.completion:
            raise ValueError("total must equal prompt + completion")
        return self

    @classmethod
    def of(cls, prompt: int, completion: int) -> "TokenUsage":
        return cls(prompt=prompt, completion=completion, total=prompt + completion)


class CompletionResponse(BaseModel):
    content: str
    model: str
    provider: str
    tokens_used: TokenUsage
    cost: int = Field(ge=0, description="Minor currency units (cents), rounded up")
    processing_time_ms: float = Field(default=0.0, ge=0)
    provider_request_id: Optional[str] = None
    finish_reason: FinishReason = FinishReason.stop


class CompletionResult(CompletionResponse):
    agent_run_id: str


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------

class RedactionEntry(BaseModel):
    type: str
    # held only for the duration of the call, excluded from serialization
    original: str = Field(default="", exclude=True, repr=False)
    placeholder: str
    start: int
    end: int
    confidence: float = Field(ge=0, le=1)


class RedactionReport(BaseModel):
    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: new_id("rr"))
    original_hash: str
    redacted_content: str
    entries: List[RedactionEntry] = []
    total_redactions: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class RedactionConfig(BaseModel):
    enable_email_redaction: bool = True
    enable_phone_redaction: bool = True
    enable_ssn_redaction: bool = True
    enable_address_redaction: bool = True
    enable_credit_card_redaction: bool = True
    enable_bank_account_redaction: bool = True
    enable_date_of_birth_redaction: bool = True
    custom_patterns: Dict[str, str] = {}

    def enabled_types(self) -> List[PIIType]:
        return [t for t in PIIType if getattr(self, f"enable_{t.value}_redaction")]


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class FairChanceRules(BaseModel):
    enabled: bool = False
    prohibited_before_conditional_offer: List[str] = []
    stages: List[str] = [
        "initial_inquiry",
        "application_submitted",
        "application_review",
        "conditional_offer",
        "background_check",
        "lease_signing",
    ]

    def pre_offer_stages(self) -> List[str]:
        if "conditional_offer" not in self.stages:
            return []
        return self.stages[: self.stages.index("conditional_offer")]


class JurisdictionRules(BaseModel):
    id: str
    name: str
    broker_fee_tenant_prohibited: bool = False
    max_security_deposit_months: Optional[float] = None
    fair_chance: FairChanceRules = FairChanceRules()


class Violation(BaseModel):
    code: ViolationCode
    severity: Severity
    message: str
    matched_text: Optional[str] = None
    rule_reference: str
    evidence: Dict[str, Any] = {}


class RecommendedFix(BaseModel):
    violation_code: ViolationCode
    description: str
    replacement_text: str


class PolicyCheckResult(BaseModel):
    passed: bool
    violations: List[Violation] = []
    fixes: List[RecommendedFix] = []
    rules: JurisdictionRules
    checked_at: datetime = Field(default_factory=utcnow)


class GateResult(BaseModel):
    allowed: bool
    check_result: PolicyCheckResult
    sanitized_output: Optional[str] = None
    blocked_reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class AgentRun(BaseModel):
    id: str = Field(default_factory=lambda: new_id("run"))
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    conversation_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    jurisdiction_id: Optional[str] = None
    model: str
    provider: str
    request_config: Optional[CompletionConfig] = None
    prompt_messages: List[Message] = []
    output: Optional[str] = None
    prompt_redactions: List[RedactionReport] = []
    output_redaction: Optional[RedactionReport] = None
    policy_check: Optional[PolicyCheckResult] = None
    tokens_prompt: int = 0
    tokens_completion: int = 0
    tokens_total: int = 0
    cost: int = 0
    processing_time_ms: Optional[float] = None
    provider_request_id: Optional[str] = None
    status: RunStatus = RunStatus.pending
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


class BudgetUsage(BaseModel):
    user_daily: int = 0
    org_daily: int = 0
    global_daily: int = 0


class BudgetConfig(BaseModel):
    """Daily limits in minor currency units. None disables a limit."""
    per_user_daily_limit: Optional[int] = None
    per_org_daily_limit: Optional[int] = None
    global_daily_limit: Optional[int] = None


class ProviderConfig(BaseModel):
    api_key: str = ""
    base_url: Optional[str] = None
    timeout: float = 60.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
