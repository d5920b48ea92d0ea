import logging
import numpy as np
from typing import Iterable, List, Optional, Sequence, Tuple, Union
from pydantic import BaseModel, ConfigDict

from .kb import KbEntry
from .providers import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 3


class EmbeddedKbEntry(KbEntry):
    embedding: Tuple[float, ...]


class RankedMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    entry: EmbeddedKbEntry
    score: float


class BuildSuccess(BaseModel):
    entries: Tuple[EmbeddedKbEntry, ...]


class BuildFailure(BaseModel):
    reason: str
    entry_id: Optional[str] = None


BuildResult = Union[BuildSuccess, BuildFailure]


class ReadinessState:
    """Flips from not-ready to ready once; there is no way back."""

    def __init__(self):
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    def mark_ready(self):
        self._ready = True


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        raise ValueError(f"dimension mismatch: {va.shape} vs {vb.shape}")
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


class EmbeddingCache:
    def __init__(self, readiness: Optional[ReadinessState] = None):
        self.readiness = readiness or ReadinessState()
        self._entries: Tuple[EmbeddedKbEntry, ...] = ()
        self._matrix: Optional[np.ndarray] = None
        self._norms: Optional[np.ndarray] = None
        self._started = False
        self._result: Optional[BuildResult] = None

    @property
    def entries(self) -> Tuple[EmbeddedKbEntry, ...]:
        return self._entries

    @property
    def started(self) -> bool:
        return self._started

    @property
    def result(self) -> Optional[BuildResult]:
        """Outcome of the build, None until it has finished."""
        return self._result

    def is_ready(self) -> bool:
        # an empty cache is never ready, whatever the injected state says
        return bool(self._entries) and self.readiness.is_ready()

    async def build_all(self, entries: Iterable[KbEntry], embedder: EmbeddingProvider) -> BuildResult:
        """Embed every KB entry in order and publish them all, or nothing.

        The first failing entry aborts the build; readiness then stays false
        for the lifetime of this cache.
        """
        if self._started:
            raise RuntimeError("embedding cache build already started")
        self._started = True
        self._result = await self._build(entries, embedder)
        return self._result

    async def _build(self, entries: Iterable[KbEntry], embedder: EmbeddingProvider) -> BuildResult:
        built: List[EmbeddedKbEntry] = []
        entries = list(entries)
        logger.info("Building KB embeddings for %d entries", len(entries))
        for entry in entries:
            try:
                vector = await embedder.embed(entry.text)
            except Exception as e:
                logger.error("Failed to build KB embeddings at entry %r: %s", entry.id, e)
                return BuildFailure(reason=str(e) or type(e).__name__, entry_id=entry.id)
            built.append(EmbeddedKbEntry(id=entry.id, text=entry.text, embedding=tuple(vector)))

        if not built:
            logger.error("Failed to build KB embeddings: no entries")
            return BuildFailure(reason="no entries to embed")
        try:
            matrix = np.asarray([e.embedding for e in built], dtype=float)
        except ValueError as e:
            logger.error("Failed to build KB embeddings: inconsistent dimensions (%s)", e)
            return BuildFailure(reason=f"inconsistent embedding dimensions: {e}")
        if matrix.ndim != 2:
            logger.error("Failed to build KB embeddings: inconsistent dimensions")
            return BuildFailure(reason="inconsistent embedding dimensions")

        self._matrix = matrix
        self._norms = np.linalg.norm(matrix, axis=1)
        self._entries = tuple(built)
        self.readiness.mark_ready()
        logger.info("KB embeddings ready (%d entries, %d dims)", matrix.shape[0], matrix.shape[1])
        return BuildSuccess(entries=self._entries)

    def rank(self, query_embedding: Sequence[float], k: int = DEFAULT_TOP_K) -> List[RankedMatch]:
        if k <= 0 or not self._entries:
            return []
        q = np.asarray(query_embedding, dtype=float)
        if q.ndim != 1 or q.shape[0] != self._matrix.shape[1]:
            raise ValueError(
                f"query embedding has shape {q.shape}, expected ({self._matrix.shape[1]},)"
            )
        dots = self._matrix @ q
        denom = self._norms * np.linalg.norm(q)
        scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
        order = np.argsort(-scores, kind="stable")[:k]
        return [RankedMatch(entry=self._entries[i], score=float(scores[i])) for i in order]
