import logging
from typing import Dict, Literal, Optional, Union
from pydantic import BaseModel

from .config import Settings, settings as default_settings
from .kb import KbEntry, KnowledgeBase
from .providers import EmbeddingProvider, GenerationProvider, get_embedder, get_generator
from .rag import DEFAULT_TOP_K, BuildResult, EmbeddingCache, ReadinessState

logger = logging.getLogger(__name__)

FALLBACK_ANSWER = (
    "I'm sorry, I don't have that information. "
    "Please contact a consultant for further assistance."
)

SYSTEM_INSTRUCTION = f"""
You are an AI visa assistant. Follow these rules:
1. Answer concisely in plain language.
2. Only use information from the provided context.
3. If the question cannot be answered from the context, politely say:
   "{FALLBACK_ANSWER}"
4. If the user's question is unclear, ask politely for clarification.
5. Format answers in short paragraphs or bullet points when helpful.
""".strip()


class KbFound(BaseModel):
    kind: Literal["found"] = "found"
    entry: KbEntry

    @property
    def text(self) -> str:
        return self.entry.text


class KbNotFound(BaseModel):
    kind: Literal["not_found"] = "not_found"


class ChatAnswer(BaseModel):
    kind: Literal["answer"] = "answer"
    text: str


class ChatNotReady(BaseModel):
    kind: Literal["not_ready"] = "not_ready"


class ChatBadInput(BaseModel):
    kind: Literal["bad_input"] = "bad_input"


class ChatUpstreamError(BaseModel):
    kind: Literal["upstream_error"] = "upstream_error"
    detail: str


KbLookupResult = Union[KbFound, KbNotFound]
ChatResult = Union[ChatAnswer, ChatNotReady, ChatBadInput, ChatUpstreamError]


def build_user_turn(context: str, query: str) -> str:
    return f"Context:\n{context}\n\nQuestion: {query}"


class AnswerOrchestrator:
    """Lexical KB lookup first, embedding retrieval plus generation as fallback."""

    def __init__(
        self,
        kb: KnowledgeBase,
        embedder: EmbeddingProvider,
        generator: GenerationProvider,
        top_k: int = DEFAULT_TOP_K,
        readiness: Optional[ReadinessState] = None,
    ):
        self.kb = kb
        self.embedder = embedder
        self.generator = generator
        self.top_k = top_k
        self.readiness = readiness or ReadinessState()
        self.cache = EmbeddingCache(self.readiness)

    def is_ready(self) -> bool:
        return self.cache.is_ready()

    async def initialize(self) -> BuildResult:
        """Build the embedding cache; later calls return the first build's result."""
        if self.cache.result is not None:
            return self.cache.result
        return await self.cache.build_all(self.kb, self.embedder)

    def resolve_kb(self, query: Optional[str]) -> KbLookupResult:
        query = (query or "").strip()
        if not query:
            return KbNotFound()
        match = self.kb.find_match(query)
        if match is None:
            return KbNotFound()
        return KbFound(entry=match)

    async def resolve_chat(self, query: Optional[str]) -> ChatResult:
        if not self.is_ready():
            return ChatNotReady()
        if not query or not query.strip():
            return ChatBadInput()

        try:
            query_embedding = await self.embedder.embed(query)
            matches = self.cache.rank(query_embedding, self.top_k)
        except Exception as e:
            logger.error("Query embedding failed: %s", e)
            return ChatUpstreamError(detail=str(e) or type(e).__name__)

        context = "\n".join(m.entry.text for m in matches)
        try:
            answer = await self.generator.generate(SYSTEM_INSTRUCTION, build_user_turn(context, query))
        except Exception as e:
            logger.error("Generation failed: %s", e)
            return ChatUpstreamError(detail=str(e) or type(e).__name__)
        return ChatAnswer(text=answer)

    async def answer(self, query: Optional[str]) -> Union[KbFound, ChatResult]:
        found = self.resolve_kb(query)
        if isinstance(found, KbFound):
            return found
        return await self.resolve_chat(query)


_orchestrator_cache: Dict[str, AnswerOrchestrator] = {}
def get_orchestrator(settings: Settings = default_settings) -> AnswerOrchestrator:
    if settings.kb_path not in _orchestrator_cache:
        _orchestrator_cache[settings.kb_path] = AnswerOrchestrator(
            KnowledgeBase.from_file(settings.kb_path),
            get_embedder(settings),
            get_generator(settings),
            top_k=settings.top_k,
        )
    return _orchestrator_cache[settings.kb_path]
