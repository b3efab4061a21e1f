"""
PII redaction with hash-anchored reports.

The report keeps a SHA-256 of the original text so an audited run can be
checked against a later disclosure without the ledger ever holding PII.
"""

import hashlib
import logging
from typing import List, Optional, Sequence, Tuple

from .detectors import PIIDetector, PIIMatch
from .models import Message, RedactionConfig, RedactionEntry, RedactionReport

logger = logging.getLogger(__name__)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class Redactor:
    def __init__(self, config: Optional[RedactionConfig] = None):
        self.config = config or RedactionConfig()
        self.detector = PIIDetector(self.config.enabled_types(), self.config.custom_patterns)

    def detect(self, text: str) -> List[PIIMatch]:
        return self.detector.detect(text)

    def redact(self, text: str) -> Tuple[str, RedactionReport]:
        """
        Replace every detected match with its placeholder.

        Entry offsets point into the redacted output. A report is returned
        even when nothing was found.
        """
        matches = self.detect(text)
        out: List[str] = []
        entries: List[RedactionEntry] = []
        last = 0
        shift = 0
        for m in matches:
            out.append(text[last:m.start])
            out.append(m.placeholder)
            start = m.start + shift
            entries.append(RedactionEntry(
                type=m.type,
                original=m.value,
                placeholder=m.placeholder,
                start=start,
                end=start + len(m.placeholder),
                confidence=m.confidence,
            ))
            shift += len(m.placeholder) - (m.end - m.start)
            last = m.end
        out.append(text[last:])
        redacted = "".join(out)

        report = RedactionReport(
            original_hash=sha256_hex(text),
            redacted_content=redacted,
            entries=entries,
            total_redactions=len(entries),
        )
        if entries:
            logger.debug(f"Redacted {len(entries)} PII matches (report {report.id})")
        return redacted, report

    def redact_messages(self, messages: Sequence[Message]) -> Tuple[List[Message], List[RedactionReport]]:
        """
        Redact each message, keeping order and role. Only reports for
        messages with at least one redaction are returned.
        """
        redacted_messages: List[Message] = []
        reports: List[RedactionReport] = []
        for msg in messages:
            content, report = self.redact(msg.content)
            redacted_messages.append(Message(role=msg.role, content=content))
            if report.total_redactions > 0:
                reports.append(report)
        return redacted_messages, reports
