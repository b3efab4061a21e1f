import os

import pytest

from governed_ai.jurisdictions import JurisdictionRegistry
from governed_ai.models import CompletionContext, CompletionRequest, Message, Role

SAMPLE_JURISDICTIONS = os.path.join(
    os.path.dirname(__file__), "..", "governed_ai", "sample_jurisdictions", "markets.yaml"
)


@pytest.fixture
def sample_registry():
    """Registry with the shipped sample markets layered on the built-ins."""
    return JurisdictionRegistry(SAMPLE_JURISDICTIONS)


@pytest.fixture
def make_request():
    def _make(content="Hello", model="claude-3-haiku", **context):
        return CompletionRequest(
            model=model,
            messages=[Message(role=Role.user, content=content)],
            context=CompletionContext(**context) if context else None,
        )
    return _make
