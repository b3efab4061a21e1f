import regex
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from .models import PIIType

STREET_SUFFIXES = [
    "Street", "St", "Avenue", "Ave", "Road", "Rd", "Boulevard", "Blvd",
    "Drive", "Dr", "Lane", "Ln", "Court", "Ct", "Place", "Pl", "Way",
    "Terrace", "Parkway", "Pkwy", "Circle", "Highway", "Hwy",
]


def luhn_check(card_number: str) -> bool:
    """
    Validate credit card number using Luhn algorithm.
    Returns True if valid, False otherwise.
    """
    card_number = card_number.replace(" ", "").replace("-", "")
    if not card_number.isdigit():
        return False

    total = 0
    for i, digit in enumerate(reversed(card_number)):
        n = int(digit)
        if i % 2 == 1:  # Every second digit from right
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return total % 10 == 0


def validate_ssn(ssn: str) -> bool:
    """
    Validate SSN structure, dashed or not.
    Area (first 3) != 000, 666 or 900-999; group != 00; serial != 0000.
    """
    digits = ssn.replace("-", "").replace(" ", "")
    if len(digits) != 9 or not digits.isdigit():
        return False
    area, group, serial = int(digits[:3]), int(digits[3:5]), int(digits[5:])
    if area == 0 or area == 666 or area >= 900:
        return False
    return group != 0 and serial != 0


@dataclass(frozen=True)
class PIIPattern:
    """Detection strategy for one PII type."""
    type: str
    pattern: "regex.Pattern"
    confidence: float
    placeholder: str
    validator: Optional[Callable[[str], bool]] = None
    group: int = 0


@dataclass(frozen=True)
class PIIMatch:
    type: str
    value: str
    start: int
    end: int
    confidence: float
    placeholder: str


BUILTIN_PATTERNS: Dict[PIIType, List[PIIPattern]] = {
    PIIType.email: [
        PIIPattern("email", regex.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), 0.95, "[EMAIL_REDACTED]"),
    ],
    PIIType.phone: [
        PIIPattern(
            "phone",
            regex.compile(r"(?<![\w+])(?:\+?1[-.\s]?)?(?:\(\d{3}\)\s?|\d{3}[-.\s]?)\d{3}[-.\s]?\d{4}\b"),
            0.85,
            "[PHONE_REDACTED]",
        ),
    ],
    PIIType.ssn: [
        PIIPattern("ssn", regex.compile(r"\b\d{3}-\d{2}-\d{4}\b"), 0.9, "[SSN_REDACTED]", validate_ssn),
        PIIPattern("ssn", regex.compile(r"\b\d{9}\b"), 0.6, "[SSN_REDACTED]", validate_ssn),
    ],
    PIIType.address: [
        PIIPattern(
            "address",
            regex.compile(
                r"\b\d{1,6}\s+(?:[A-Z][a-z]+\s+){1,4}(?:" + "|".join(STREET_SUFFIXES) + r")\b"
            ),
            0.7,
            "[ADDRESS_REDACTED]",
        ),
    ],
    PIIType.credit_card: [
        PIIPattern("credit_card", regex.compile(r"\b(?:\d{4}[\s-]?){3}\d{4}\b"), 0.95, "[CREDIT_CARD_REDACTED]", luhn_check),
        # Amex 4-6-5 grouping
        PIIPattern("credit_card", regex.compile(r"\b3[47]\d{2}[\s-]?\d{6}[\s-]?\d{5}\b"), 0.95, "[CREDIT_CARD_REDACTED]", luhn_check),
    ],
    PIIType.bank_account: [
        PIIPattern(
            "bank_account",
            regex.compile(r"(?i)\b(?:account|acct)\.?\s*(?:number|num|no\.?|#)?\s*[:#]?\s*(\d{8,17})\b"),
            0.8,
            "[BANK_ACCOUNT_REDACTED]",
            group=1,
        ),
    ],
    PIIType.date_of_birth: [
        PIIPattern(
            "date_of_birth",
            regex.compile(r"\b(?:0?[1-9]|1[0-2])[-/](?:0?[1-9]|[12]\d|3[01])[-/](?:19|20)\d{2}\b"),
            0.75,
            "[DOB_REDACTED]",
        ),
    ],
}


def custom_pattern(name: str, expression: str, confidence: float = 0.8) -> PIIPattern:
    return PIIPattern(
        type=name,
        pattern=regex.compile(expression),
        confidence=confidence,
        placeholder=f"[{name.upper()}_REDACTED]",
    )


def build_patterns(types: Iterable[PIIType], custom: Optional[Dict[str, str]] = None) -> List[PIIPattern]:
    patterns: List[PIIPattern] = []
    for t in types:
        patterns.extend(BUILTIN_PATTERNS[PIIType(t)])
    for name, expression in (custom or {}).items():
        patterns.append(custom_pattern(name, expression))
    return patterns


def resolve_overlaps(matches: List[PIIMatch]) -> List[PIIMatch]:
    """
    Greedy single pass over matches sorted by start offset. An overlapping
    later match replaces the kept one only with strictly higher confidence.
    """
    ordered = sorted(matches, key=lambda m: (m.start, -m.confidence, -(m.end - m.start)))
    merged: List[PIIMatch] = []
    for m in ordered:
        if merged and m.start < merged[-1].end:
            if m.confidence > merged[-1].confidence:
                merged[-1] = m
            continue
        merged.append(m)
    return merged


def find_matches(text: str, patterns: List[PIIPattern]) -> List[PIIMatch]:
    """
    Run every pattern over the text, drop matches failing their validator
    and return non-overlapping matches ordered by position.
    """
    found: List[PIIMatch] = []
    for p in patterns:
        for m in p.pattern.finditer(text):
            value = m.group(p.group)
            if p.validator and not p.validator(value):
                continue
            found.append(PIIMatch(
                type=p.type,
                value=value,
                start=m.start(p.group),
                end=m.end(p.group),
                confidence=p.confidence,
                placeholder=p.placeholder,
            ))
    return resolve_overlaps(found)


class PIIDetector:
    """Pattern-based PII detector over a fixed set of strategies."""

    def __init__(self, types: Optional[Iterable[PIIType]] = None, custom_patterns: Optional[Dict[str, str]] = None):
        self.patterns = build_patterns(types if types is not None else list(PIIType), custom_patterns)

    def detect(self, text: str) -> List[PIIMatch]:
        if not text:
            return []
        return find_matches(text, self.patterns)
