"""
Shared fixtures
"""
from types import SimpleNamespace

import pytest
from src.mention_resolution.core.entities import Mention, MentionType
from src.mention_resolution.core.entity_normalizer import normalize_mention_text
from src.mention_resolution.core.identity_matcher import IdentityRegistry

REGISTRY_RECORDS = [
    {
        "id": "ofac-maduro",
        "canonical_name": "Nicolás Maduro Moros",
        "entity_type": "PERSON",
        "aliases": ["Nicolas Maduro"],
        "sanction_programs": ["VENEZUELA"],
        "source_authority": "OFAC",
    },
    {
        "id": "ofac-pdvsa",
        "canonical_name": "Petróleos de Venezuela S.A.",
        "entity_type": "ORGANIZATION",
        "aliases": ["PDVSA"],
        "sanction_programs": ["VENEZUELA-EO13850"],
        "source_authority": "OFAC",
    },
]


class FakeMessages:
    """Stands in for the Anthropic messages resource"""

    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(text=self.reply)])


class FakeLLMClient:
    def __init__(self, reply="", error=None):
        self.messages = FakeMessages(reply, error)


@pytest.fixture
def registry():
    return IdentityRegistry.from_records(REGISTRY_RECORDS)


@pytest.fixture
def fake_llm():
    """Factory for a fake LLM client returning a fixed reply"""
    return FakeLLMClient


@pytest.fixture
def make_mention():
    """Factory for mentions with predictable ids"""

    def factory(raw_text, mention_type=MentionType.PERSON, mention_id=None,
                article_id="article-1", confidence=0.65):
        return Mention(
            id=mention_id or f"m-{normalize_mention_text(raw_text).lower().replace(' ', '-')}",
            source_article_id=article_id,
            type=mention_type,
            raw_text=raw_text,
            normalized_text=normalize_mention_text(raw_text),
            extraction_confidence=confidence,
        )

    return factory
