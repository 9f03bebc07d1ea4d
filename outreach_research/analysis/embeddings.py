"""Embedding client used for relevance scoring (OpenAI embeddings API)."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)

# Maximum time (seconds) to wait for a single embedding call
_EMBED_TIMEOUT = 30


class EmbeddingError(Exception):
    """Raised when an embedding cannot be produced."""


class EmbeddingClient:
    """Embeds text with a fixed model; the vector size is fixed per model."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        timeout: float = _EMBED_TIMEOUT,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI

            if not self.api_key:
                raise EmbeddingError("OPENAI_API_KEY is not set")
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def embed(self, text: str) -> list[float]:
        if not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        client = self._get_client()
        try:
            response = await asyncio.wait_for(
                client.embeddings.create(model=self.model, input=text),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingError(f"Embedding call timed out after {self.timeout:.0f}s") from e
        except Exception as e:
            raise EmbeddingError(f"Embedding call failed: {e}") from e
        return list(response.data[0].embedding)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
