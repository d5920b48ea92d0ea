"""Embedding and generation providers.

Both kinds are consumed as opaque async services: ``embed(text)`` returns a
vector, ``generate(system_instruction, user_turn)`` returns text. Any
client-side failure surfaces as ``ProviderError``.
"""

import asyncio
import logging
from typing import List, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from .config import Settings

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """An embedding or generation call failed."""


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> List[float]: ...


class GenerationProvider(Protocol):
    async def generate(self, system_instruction: str, user_turn: str) -> str: ...


class _OpenAIClientMixin:
    def __init__(self, api_key: str, base_url: str, client: Optional[AsyncOpenAI] = None):
        self._api_key = api_key
        self._base_url = base_url
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ProviderError("OPENAI_API_KEY missing")
            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client


class OpenAIEmbedder(_OpenAIClientMixin):
    def __init__(self, api_key: str, base_url: str, model: str = "text-embedding-3-small",
                 client: Optional[AsyncOpenAI] = None):
        super().__init__(api_key, base_url, client)
        self.model = model

    async def embed(self, text: str) -> List[float]:
        client = self._get_client()
        try:
            response = await client.embeddings.create(model=self.model, input=text)
        except OpenAIError as e:
            raise ProviderError(str(e)) from e
        if not response.data:
            raise ProviderError("embedding response contained no data")
        return list(response.data[0].embedding)


class OpenAIGenerator(_OpenAIClientMixin):
    def __init__(self, api_key: str, base_url: str, model: str = "gpt-4.1-mini",
                 client: Optional[AsyncOpenAI] = None):
        super().__init__(api_key, base_url, client)
        self.model = model

    async def generate(self, system_instruction: str, user_turn: str) -> str:
        client = self._get_client()
        try:
            completion = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_instruction},
                    {"role": "user", "content": user_turn},
                ],
            )
        except OpenAIError as e:
            raise ProviderError(str(e)) from e
        content = completion.choices[0].message.content if completion.choices else None
        if content is None:
            raise ProviderError("completion response contained no content")
        return content


class SentenceTransformerEmbedder:
    """Local embeddings via sentence-transformers; the model loads on first use."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None

    def _encode(self, text: str) -> List[float]:
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            logger.info("Loading local embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model.encode(text).tolist()

    async def embed(self, text: str) -> List[float]:
        try:
            return await asyncio.to_thread(self._encode, text)
        except (OSError, RuntimeError, ValueError) as e:
            raise ProviderError(f"local embedding failed: {e}") from e


def get_embedder(settings: Settings) -> EmbeddingProvider:
    if settings.embedding_backend == "local":
        return SentenceTransformerEmbedder(settings.local_embedding_model)
    if settings.embedding_backend != "openai":
        raise ValueError(f"unknown EMBEDDING_BACKEND: {settings.embedding_backend!r}")
    return OpenAIEmbedder(settings.openai_api_key, settings.openai_api_base, settings.embedding_model)


def get_generator(settings: Settings) -> GenerationProvider:
    return OpenAIGenerator(settings.openai_api_key, settings.openai_api_base, settings.model)
