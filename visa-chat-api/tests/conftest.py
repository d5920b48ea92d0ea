from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from visa_chat.answer import AnswerOrchestrator
from visa_chat.kb import KbEntry, KnowledgeBase
from visa_chat.providers import ProviderError


class FakeEmbedder:
    """Returns canned vectors per text; records every call."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None,
                 default: Optional[List[float]] = None, fail_on: Tuple[str, ...] = ()):
        self.vectors = vectors or {}
        self.default = default if default is not None else [1.0, 0.0, 0.0]
        self.fail_on = set(fail_on)
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if text in self.fail_on:
            raise ProviderError(f"embedding failed for {text!r}")
        return list(self.vectors.get(text, self.default))


class FakeGenerator:
    def __init__(self, reply: str = "generated answer", fail: bool = False):
        self.reply = reply
        self.fail = fail
        self.calls: List[Tuple[str, str]] = []

    async def generate(self, system_instruction: str, user_turn: str) -> str:
        self.calls.append((system_instruction, user_turn))
        if self.fail:
            raise ProviderError("rate limit exceeded")
        return self.reply


VISA_ENTRIES = [
    KbEntry(id="application-fees", text="Fee is $160."),
    KbEntry(id="processing-time", text="Processing takes 3 to 5 weeks."),
    KbEntry(id="required-documents", text="Bring your passport and DS-160 confirmation."),
]

VISA_VECTORS = {
    "Fee is $160.": [1.0, 0.0, 0.0],
    "Processing takes 3 to 5 weeks.": [0.0, 1.0, 0.0],
    "Bring your passport and DS-160 confirmation.": [0.0, 0.0, 1.0],
}


@pytest.fixture
def kb() -> KnowledgeBase:
    return KnowledgeBase(VISA_ENTRIES)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder(VISA_VECTORS)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def orchestrator(kb, embedder, generator) -> AnswerOrchestrator:
    return AnswerOrchestrator(kb, embedder, generator)


@pytest_asyncio.fixture
async def ready_orchestrator(orchestrator, embedder) -> AnswerOrchestrator:
    await orchestrator.initialize()
    assert orchestrator.is_ready()
    embedder.calls.clear()
    return orchestrator
