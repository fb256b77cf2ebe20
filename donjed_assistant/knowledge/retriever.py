"""Keyword knowledge retriever for RAG.

Scores chunks of the in-memory knowledge base by term frequency with an
exact-phrase bonus. The corpus is small and static, so this is enough and
cheap; it is intentionally not TF-IDF or BM25. A semantic mode based on
embeddings exists but is off by default.
"""

import logging
import re
import time
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

from donjed_assistant.knowledge.classifier import is_document_query
from donjed_assistant.knowledge.embeddings import (
    EmbeddingCache,
    Embedder,
    OpenAICompatibleEmbedder,
    cosine_similarity,
)
from donjed_assistant.knowledge.loader import load_knowledge_base
from donjed_assistant.knowledge.models import (
    DocumentChunk,
    KnowledgeBase,
    RetrievedContext,
    SearchResult,
)
from donjed_assistant.observability import get_metrics_backend

logger = logging.getLogger(__name__)

# Global retriever instance
_retriever_instance: "KnowledgeRetriever | None" = None

DEFAULT_TOP_K = 3
MIN_TERM_LENGTH = 3
EXACT_PHRASE_BONUS = 10

SOURCE_SEPARATOR = "\n\n---\n\n"

RETRIEVAL_MODES = ("keyword", "semantic")


def tokenize_query(query: str) -> list[str]:
    """Lowercase, split on whitespace and drop terms shorter than 3 characters."""
    return [term for term in query.lower().split() if len(term) >= MIN_TERM_LENGTH]


def score_chunk(query: str, terms: Sequence[str], chunk: DocumentChunk) -> int:
    """Count term occurrences in a chunk, plus a bonus for the exact query."""
    chunk_text = chunk.text.lower()
    score = 0

    for term in terms:
        try:
            score += len(re.findall(re.escape(term), chunk_text))
        except re.error:
            logger.debug("Ignoring unusable search term %r", term)

    if query.lower() in chunk_text:
        score += EXACT_PHRASE_BONUS

    return score


def keyword_search(
    query: str,
    chunks: Sequence[DocumentChunk],
    top_k: int = DEFAULT_TOP_K,
) -> list[SearchResult]:
    """Rank chunks by keyword frequency.

    Args:
        query: User query text.
        chunks: Corpus to search.
        top_k: Maximum number of results to return.

    Returns:
        Results with a positive score, highest first. Ties keep corpus order.
    """
    terms = tokenize_query(query)

    scored = [
        SearchResult(chunk=chunk, score=score)
        for chunk in chunks
        if (score := score_chunk(query, terms, chunk)) > 0
    ]

    # sorted() is stable, so equal scores stay in corpus order
    return sorted(scored, key=lambda result: result.score, reverse=True)[:top_k]


def build_context(results: Sequence[SearchResult]) -> str:
    """Format search results as the context block for the system prompt."""
    if not results:
        return ""

    return SOURCE_SEPARATOR.join(
        f"[Source {index}: {result.chunk.source}]\n{result.chunk.text}"
        for index, result in enumerate(results, 1)
    )


class KnowledgeRetriever:
    """Retriever over the loaded knowledge base.

    Keyword search by default; semantic search when configured with
    ``mode="semantic"`` and an embedder.
    """

    def __init__(
        self,
        knowledge_base: KnowledgeBase | None = None,
        mode: str = "keyword",
        embedder: Embedder | None = None,
    ) -> None:
        if mode not in RETRIEVAL_MODES:
            raise ValueError(f"Unsupported retrieval mode: {mode}")

        self.knowledge_base = knowledge_base
        self.mode = mode
        self._embedder = embedder
        self._embedding_cache = EmbeddingCache()

    @property
    def is_initialized(self) -> bool:
        """Check if a knowledge base is loaded."""
        return self.knowledge_base is not None

    @property
    def chunks(self) -> tuple[DocumentChunk, ...]:
        if self.knowledge_base is None:
            return ()
        return self.knowledge_base.documents

    @property
    def chunk_count(self) -> int:
        """Number of loaded chunks."""
        return len(self.chunks)

    @property
    def embedding_cache(self) -> EmbeddingCache:
        return self._embedding_cache

    def initialize(self, path: Path) -> None:
        """Load the knowledge base artifact from disk.

        A missing file leaves the retriever empty; an invalid file raises.
        """
        if not path.exists():
            logger.warning(
                f"Knowledge base not found at {path}. "
                "Retrieval is disabled. Run scripts/build_knowledge_base.py to create it."
            )
            self.knowledge_base = None
            return

        self.knowledge_base = load_knowledge_base(path)
        self._embedding_cache.clear()

        logger.info(
            f"Knowledge retriever initialized: {self.knowledge_base.total_documents} documents, "
            f"{self.chunk_count} chunks, mode={self.mode}"
        )

    async def search(self, query: str, top_k: int = DEFAULT_TOP_K) -> list[SearchResult]:
        """Search for relevant document chunks.

        Args:
            query: Search query text.
            top_k: Maximum number of results to return.

        Returns:
            List of SearchResult sorted by relevance (highest first).
        """
        start = time.perf_counter()

        if self.mode == "semantic" and self._embedder is not None:
            results = await self._semantic_search(query, top_k)
        else:
            results = keyword_search(query, self.chunks, top_k)

        duration_ms = (time.perf_counter() - start) * 1000
        get_metrics_backend().observe_retrieval(self.mode, len(results), duration_ms)
        logger.debug(
            f"Retrieved {len(results)} chunks in {duration_ms:.2f}ms for query: {query[:50]}"
        )
        return results

    async def _semantic_search(self, query: str, top_k: int) -> list[SearchResult]:
        """Rank chunks by embedding similarity, falling back to keywords."""
        try:
            query_embedding = await self._embedder.embed(query)

            if query_embedding.size == 0:
                logger.warning(
                    "Failed to generate query embedding, falling back to keyword search"
                )
                return keyword_search(query, self.chunks, top_k)

            scored: list[SearchResult] = []
            for chunk in self.chunks:
                chunk_embedding = await self._chunk_embedding(chunk)
                if chunk_embedding.size == 0:
                    continue
                scored.append(
                    SearchResult(
                        chunk=chunk,
                        score=cosine_similarity(query_embedding, chunk_embedding),
                    )
                )

            return sorted(scored, key=lambda result: result.score, reverse=True)[:top_k]

        except Exception as e:
            logger.error(f"Semantic search failed, falling back to keyword search: {e}")
            return keyword_search(query, self.chunks, top_k)

    async def _chunk_embedding(self, chunk: DocumentChunk) -> np.ndarray:
        cached = self._embedding_cache.get(chunk.id)
        if cached is not None:
            return cached

        if chunk.embedding:
            vector = np.array(chunk.embedding, dtype=np.float32)
        else:
            vector = await self._embedder.embed(chunk.text)

        if vector.size > 0:
            self._embedding_cache.set(chunk.id, vector)
        return vector


async def retrieve_context(
    query: str,
    retriever: KnowledgeRetriever | None,
    top_k: int = DEFAULT_TOP_K,
) -> RetrievedContext:
    """Classify the query, search the knowledge base and assemble context."""
    if retriever is None or not is_document_query(query):
        return RetrievedContext()

    results = await retriever.search(query, top_k=top_k)

    return RetrievedContext(
        context=build_context(results),
        has_context=bool(results) and results[0].score > 0,
        results=results,
    )


def initialize_knowledge_retriever(
    path: Path | None = None,
    mode: str | None = None,
    embedder: Embedder | None = None,
) -> KnowledgeRetriever:
    """Initialize the global knowledge retriever.

    Should be called during application startup.

    Args:
        path: Knowledge base JSON file (defaults to settings).
        mode: Retrieval mode (defaults to settings).
        embedder: Embedder for semantic mode (built from settings if omitted).
    """
    global _retriever_instance

    from donjed_assistant.core.config import get_settings

    settings = get_settings()
    path = path or settings.knowledge_base_path
    mode = mode or settings.retrieval_mode

    if mode == "semantic" and embedder is None:
        embedder = OpenAICompatibleEmbedder(
            api_key=settings.llm_api_key if settings.has_llm_credentials else None,
            base_url=settings.llm_base_url,
            model=settings.embedding_model,
        )

    _retriever_instance = KnowledgeRetriever(mode=mode, embedder=embedder)
    _retriever_instance.initialize(path)
    return _retriever_instance


def get_knowledge_retriever() -> Optional[KnowledgeRetriever]:
    """Get the global knowledge retriever instance.

    Returns:
        The initialized retriever, or None if not initialized.
    """
    return _retriever_instance
