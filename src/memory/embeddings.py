"""Embedding provider backed by the OpenAI embeddings API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import openai

from src.config import settings
from src.memory.errors import ProviderError

if TYPE_CHECKING:
    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class OpenAIEmbeddingProvider:
    """Computes embeddings with ``text-embedding-3-small`` (by default).

    The client is created lazily so importing this module never requires
    an API key.
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        dimensions: int | None = None,
    ) -> None:
        self._client = client
        self._model = model or settings.embedding_model
        self._dimensions = dimensions or settings.embedding_dimensions

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not settings.openai_api_key:
                raise ProviderError("OPENAI_API_KEY not configured")
            self._client = openai.AsyncOpenAI(api_key=settings.openai_api_key)
        return self._client

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for *text*.

        Raises:
            ProviderError: The API call failed or returned malformed data.
        """
        client = self._get_client()
        try:
            response = await client.embeddings.create(
                model=self._model,
                input=text,
                dimensions=self._dimensions,
            )
        except openai.OpenAIError as exc:
            raise ProviderError(f"Embedding request failed: {exc}") from exc

        data = getattr(response, "data", None) or []
        vector = getattr(data[0], "embedding", None) if data else None
        if not vector or not all(isinstance(x, int | float) for x in vector):
            raise ProviderError("Embedding response contained no vector")
        if len(vector) != self._dimensions:
            raise ProviderError(
                f"Embedding has {len(vector)} dimensions, expected {self._dimensions}"
            )
        logger.debug("Embedded %d chars with %s", len(text), self._model)
        return [float(x) for x in vector]
