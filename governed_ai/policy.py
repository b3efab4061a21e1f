"""
Housing-law policy gate for model output.

Detects fee-structure and Fair-Chance (background check timing) violations
with pattern heuristics and proposes a sanitized rewrite of blocked text.
"""

import logging
import re
from typing import Dict, List, Optional

from .jurisdictions import JurisdictionRegistry, get_jurisdiction_rules
from .models import (
    GateResult,
    JurisdictionRules,
    PolicyCheckResult,
    RecommendedFix,
    Severity,
    Violation,
    ViolationCode,
)

logger = logging.getLogger(__name__)

_BROKER_FEE = r"broker(?:'s|age)?\s+fees?"

# Ordered; only the first hit is reported.
TENANT_BROKER_FEE_PATTERNS = [
    rf"\btenants?\s+(?:(?:must|should|will|shall|needs?\s+to|has\s+to|have\s+to|(?:is|are)\s+required\s+to)\s+)?(?:pays?|covers?|owes?)\s+(?:the\s+|a\s+|any\s+)?{_BROKER_FEE}",
    rf"\btenants?\s+(?:is|are|will\s+be)\s+(?:responsible|liable)\s+for\s+(?:paying\s+|covering\s+)?(?:the\s+|a\s+|any\s+)?{_BROKER_FEE}",
    rf"\b{_BROKER_FEE}\s+(?:is\s+|are\s+|will\s+be\s+|must\s+be\s+|should\s+be\s+)?(?:paid|payable|covered|owed)\s+by\s+(?:the\s+)?tenants?\b",
    rf"\bcharge\s+(?:the\s+)?tenants?\s+(?:a\s+|the\s+)?{_BROKER_FEE}",
]

_MONTHS = r"(\d+(?:\.\d+)?|one|two|three|four|five|six)"

DEPOSIT_PATTERNS = [
    rf"\b(?:security\s+)?deposit\s+(?:is|of|equals?|equal\s+to|will\s+be|would\s+be|should\s+be|must\s+be|totals?|amounts?\s+to)\s+(?:equal\s+to\s+)?(?:up\s+to\s+)?{_MONTHS}\s+months?\b",
    rf"\b{_MONTHS}\s+months?(?:'s?|’s?)?\s+(?:of\s+)?(?:rent\s+)?(?:as|for)\s+(?:a\s+|the\s+)?(?:security\s+)?deposit\b",
]

NUMBER_WORDS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6}

CHECK_TYPE_PATTERNS: Dict[str, str] = {
    "criminal_history": r"\bcriminal\s+(?:background|history|record)s?(?:\s+checks?)?|\bbackground\s+(?:checks?|screening)|\bcriminal\s+checks?",
    "credit": r"\bcredit\s+(?:checks?|reports?|history|screening|score)",
    "eviction": r"\beviction\s+(?:history|records?|checks?|search|reports?|screening)",
}

ACTION_PATTERN = re.compile(
    r"\b(?:we|you|i|they|the\s+landlord|landlords?|management)\s+"
    r"(?:will|should|must|shall|can|could|need\s+to|needs\s+to|have\s+to|has\s+to|"
    r"are\s+going\s+to|is\s+going\s+to|plan\s+to|want\s+to|ought\s+to)\s+"
    r"(?:now\s+|also\s+|first\s+|then\s+|immediately\s+)?"
    r"(?:run|conduct|perform|do|order|pull|obtain|request|initiate|complete|process|check|screen)\b"
    r"|\blet(?:'s|\s+us)\s+(?:run|pull|conduct|order|check)\b"
    r"|^\s*(?:please\s+)?(?:run|pull|conduct|order)\b",
    re.IGNORECASE,
)

SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")

REMEDIATION: Dict[ViolationCode, str] = {
    ViolationCode.illegal_broker_fee: (
        "In this jurisdiction the broker fee cannot be charged to the tenant; "
        "it is paid by the party who hired the broker"
    ),
    ViolationCode.excessive_security_deposit: (
        "the security deposit cannot exceed the legal limit for this jurisdiction"
    ),
    ViolationCode.premature_background_check: (
        "Screening checks can only be run after a conditional offer has been made."
    ),
}

_compiled_broker = [re.compile(p, re.IGNORECASE) for p in TENANT_BROKER_FEE_PATTERNS]
_compiled_deposit = [re.compile(p, re.IGNORECASE) for p in DEPOSIT_PATTERNS]
_compiled_checks = {k: re.compile(p, re.IGNORECASE) for k, p in CHECK_TYPE_PATTERNS.items()}


def _months(raw: str) -> float:
    raw = raw.lower()
    return float(NUMBER_WORDS[raw]) if raw in NUMBER_WORDS else float(raw)


def _result(violations: List[Violation], fixes: List[RecommendedFix], rules: JurisdictionRules) -> PolicyCheckResult:
    return PolicyCheckResult(
        passed=not any(v.severity == Severity.critical for v in violations),
        violations=violations,
        fixes=fixes,
        rules=rules,
    )


def _fix(code: ViolationCode, description: str) -> RecommendedFix:
    return RecommendedFix(violation_code=code, description=description, replacement_text=REMEDIATION[code])


def check_fee_structures(content: str, rules: JurisdictionRules) -> PolicyCheckResult:
    """Flag tenant-paid broker fees and deposits above the month cap."""
    violations: List[Violation] = []
    fixes: List[RecommendedFix] = []

    if rules.broker_fee_tenant_prohibited:
        for pattern in _compiled_broker:
            m = pattern.search(content)
            if m:
                violations.append(Violation(
                    code=ViolationCode.illegal_broker_fee,
                    severity=Severity.critical,
                    message=f"Tenant-paid broker fees are prohibited in {rules.name}",
                    matched_text=m.group(0),
                    rule_reference=f"{rules.id}:broker_fee_tenant_prohibited",
                    evidence={"pattern": pattern.pattern},
                ))
                fixes.append(_fix(ViolationCode.illegal_broker_fee, "Remove any statement that the tenant pays the broker fee"))
                break

    limit = rules.max_security_deposit_months
    if limit is not None:
        found = None
        for pattern in _compiled_deposit:
            for m in pattern.finditer(content):
                months = _months(m.group(1))
                if months > limit:
                    found = (m, months)
                    break
            if found:
                break
        if found:
            m, months = found
            violations.append(Violation(
                code=ViolationCode.excessive_security_deposit,
                severity=Severity.critical,
                message=f"Security deposit of {months:g} months exceeds the {limit:g} month limit in {rules.name}",
                matched_text=m.group(0),
                rule_reference=f"{rules.id}:max_security_deposit_months",
                evidence={"months": months, "limit": limit},
            ))
            fixes.append(_fix(
                ViolationCode.excessive_security_deposit,
                f"Limit the security deposit to {limit:g} month(s) of rent",
            ))

    return _result(violations, fixes, rules)


def check_fair_chance(content: str, rules: JurisdictionRules, application_stage: Optional[str] = None) -> PolicyCheckResult:
    """
    Flag text that proposes a forbidden screening check before the
    conditional offer. A sentence violates only if it names a forbidden
    check type and uses action phrasing, so purely informational mentions
    pass.
    """
    fc = rules.fair_chance
    if not fc.enabled or not application_stage or application_stage not in fc.pre_offer_stages():
        return _result([], [], rules)

    for sentence in SENTENCE_SPLIT.split(content):
        if not sentence.strip() or not ACTION_PATTERN.search(sentence):
            continue
        for check_type in fc.prohibited_before_conditional_offer:
            pattern = _compiled_checks.get(check_type)
            if pattern and pattern.search(sentence):
                violation = Violation(
                    code=ViolationCode.premature_background_check,
                    severity=Severity.critical,
                    message=(
                        f"A {check_type.replace('_', ' ')} check cannot be run at stage "
                        f"'{application_stage}' in {rules.name}; wait for a conditional offer"
                    ),
                    matched_text=sentence.strip(),
                    rule_reference=f"{rules.id}:fair_chance",
                    evidence={"check_type": check_type, "application_stage": application_stage},
                )
                fix = _fix(ViolationCode.premature_background_check, "Defer screening until after a conditional offer")
                return _result([violation], [fix], rules)

    return _result([], [], rules)


def check_all_policy_rules(content: str, rules: JurisdictionRules, application_stage: Optional[str] = None) -> PolicyCheckResult:
    fee = check_fee_structures(content, rules)
    fc = check_fair_chance(content, rules, application_stage)
    return _result(fee.violations + fc.violations, fee.fixes + fc.fixes, rules)


def sanitize_output(content: str, result: PolicyCheckResult) -> str:
    """
    Replace each violation's matched text with its remediation phrase.

    This is plain first-occurrence substitution: if the matched text also
    appears earlier for an unrelated reason, that earlier occurrence is the
    one replaced.
    """
    sanitized = content
    for v in result.violations:
        if v.matched_text:
            sanitized = sanitized.replace(v.matched_text, REMEDIATION[v.code], 1)
    return sanitized


def gate_output(
    content: str,
    jurisdiction_id: Optional[str],
    application_stage: Optional[str] = None,
    registry: Optional[JurisdictionRegistry] = None,
) -> GateResult:
    """Evaluate redacted model output for a jurisdiction."""
    rules = registry.get(jurisdiction_id) if registry else get_jurisdiction_rules(jurisdiction_id)
    result = check_all_policy_rules(content, rules, application_stage)
    if result.passed:
        return GateResult(allowed=True, check_result=result)

    critical = [v for v in result.violations if v.severity == Severity.critical]
    reason = "; ".join(v.message for v in critical)
    logger.warning(f"Policy gate rejected output for {rules.id}: {[v.code.value for v in critical]}")
    return GateResult(
        allowed=False,
        check_result=result,
        sanitized_output=sanitize_output(content, result),
        blocked_reason=reason,
    )
