import json
import logging
import re
from typing import Iterable, Iterator, Optional, Tuple
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


class KnowledgeBaseError(Exception):
    """Raised when the KB source is missing or malformed."""


class KbEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str

    @field_validator("id", "text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class KnowledgeBase:
    """Immutable, ordered collection of KB entries loaded once at startup."""

    def __init__(self, entries: Iterable[KbEntry]):
        self._entries: Tuple[KbEntry, ...] = tuple(entries)
        if not self._entries:
            raise KnowledgeBaseError("knowledge base is empty")
        seen = set()
        for entry in self._entries:
            key = entry.id.lower()
            if key in seen:
                raise KnowledgeBaseError(f"duplicate knowledge base id: {entry.id!r}")
            seen.add(key)

    @classmethod
    def from_file(cls, path: str) -> "KnowledgeBase":
        try:
            with open(path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except FileNotFoundError as e:
            raise KnowledgeBaseError(f"knowledge base not found: {path}") from e
        except json.JSONDecodeError as e:
            raise KnowledgeBaseError(f"knowledge base is not valid JSON: {e}") from e
        if not isinstance(raw, list):
            raise KnowledgeBaseError("knowledge base must be a JSON array of {id, text} records")
        try:
            entries = [KbEntry.model_validate(item) for item in raw]
        except ValidationError as e:
            raise KnowledgeBaseError(f"malformed knowledge base record: {e}") from e
        kb = cls(entries)
        logger.info("Loaded %d knowledge base entries from %s", len(kb), path)
        return kb

    @property
    def entries(self) -> Tuple[KbEntry, ...]:
        return self._entries

    def __iter__(self) -> Iterator[KbEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def find_match(self, query: str) -> Optional[KbEntry]:
        return find_match(query, self._entries)


def slugify(value: str) -> str:
    return _NON_ALNUM.sub("-", value.lower()).strip("-")


def find_match(query: str, entries: Iterable[KbEntry]) -> Optional[KbEntry]:
    """Lexical KB lookup, first stage to hit wins.

    Stages, each resolved in KB order: exact slug, id containing the slug,
    slug containing the id, text containing the lowercased query.
    NOTE: the slug-contains-id stage lets very short ids match almost
    anything; kept as is.
    """
    entries = tuple(entries)
    slug = slugify(query)
    lower = query.lower()

    if slug:
        ids = [entry.id.lower() for entry in entries]
        for entry, entry_id in zip(entries, ids):
            if entry_id == slug:
                return entry
        for entry, entry_id in zip(entries, ids):
            if slug in entry_id:
                return entry
        for entry, entry_id in zip(entries, ids):
            if entry_id in slug:
                return entry
    if lower:
        for entry in entries:
            if lower in entry.text.lower():
                return entry
    return None
