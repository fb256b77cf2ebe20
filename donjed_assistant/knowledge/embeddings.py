"""Embedding generation for the optional semantic search mode.

Uses the OpenAI-compatible embedding endpoint of the configured LLM provider
(text-embedding-004 by default).
"""

import logging
from typing import TYPE_CHECKING, Optional, Protocol

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that turns text into a vector."""

    async def embed(self, text: str) -> "NDArray[np.float32]":
        ...


class OpenAICompatibleEmbedder:
    """Embedding client for an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        model: str = "text-embedding-004",
        client: "AsyncOpenAI | None" = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self.model = model
        self._client = client

    def _get_client(self) -> "AsyncOpenAI":
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client

    async def embed(self, text: str) -> "NDArray[np.float32]":
        """Generate an embedding for a single text.

        Returns an empty array when no API key is configured.
        """
        if not self._api_key:
            return np.array([], dtype=np.float32)

        response = await self._get_client().embeddings.create(
            model=self.model,
            input=text,
        )
        return np.array(response.data[0].embedding, dtype=np.float32)


class EmbeddingCache:
    """Chunk embeddings keyed by chunk id.

    Kept outside the chunk records so the loaded knowledge base stays
    immutable. Entries are advisory and never persisted.
    """

    def __init__(self) -> None:
        self._vectors: dict[str, "NDArray[np.float32]"] = {}

    def get(self, chunk_id: str) -> "NDArray[np.float32] | None":
        return self._vectors.get(chunk_id)

    def set(self, chunk_id: str, vector: "NDArray[np.float32]") -> None:
        self._vectors[chunk_id] = vector

    def __contains__(self, chunk_id: str) -> bool:
        return chunk_id in self._vectors

    def __len__(self) -> int:
        return len(self._vectors)

    def clear(self) -> None:
        self._vectors.clear()


def cosine_similarity(a: "NDArray[np.float32]", b: "NDArray[np.float32]") -> float:
    """Cosine similarity of two vectors; 0.0 for mismatched or zero vectors."""
    if a.shape != b.shape or a.size == 0:
        return 0.0

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))
