"""Data models for knowledge base documents and retrieval results."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChunkMetadata(BaseModel):
    """Provenance of a chunk. Not used for scoring."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    file_name: str = Field(..., alias="fileName", description="Source file name without extension")
    total_pages: int = Field(0, alias="totalPages", ge=0)
    chunk_index: int = Field(..., alias="chunkIndex", ge=0)


class DocumentChunk(BaseModel):
    """A single chunk of a document.

    Represents a paragraph-aligned fragment of a knowledge base document
    that can be independently scored and retrieved.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Unique identifier (e.g., 'pricing_chunk_3')")
    text: str = Field(..., description="Chunk text content")
    source: str = Field(..., description="Source document name")
    metadata: ChunkMetadata
    embedding: Optional[list[float]] = Field(
        default=None,
        description="Precomputed embedding shipped with the artifact, if any",
    )


class KnowledgeBase(BaseModel):
    """Immutable snapshot of the pre-chunked document corpus."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = "1.0"
    generated_at: str = Field(..., alias="generatedAt")
    total_documents: int = Field(..., alias="totalDocuments", ge=0)
    total_chunks: int = Field(..., alias="totalChunks", ge=0)
    documents: tuple[DocumentChunk, ...] = ()

    @model_validator(mode="after")
    def _check_chunk_ids(self) -> "KnowledgeBase":
        # chunk indexes are zero-based and contiguous per source
        expected: dict[str, int] = {}
        for chunk in self.documents:
            index = expected.get(chunk.source, 0)
            if chunk.metadata.chunk_index != index:
                raise ValueError(
                    f"Chunk {chunk.id!r} has index {chunk.metadata.chunk_index}, "
                    f"expected {index} for source {chunk.source!r}"
                )
            if chunk.id != f"{chunk.source}_chunk_{index}":
                raise ValueError(
                    f"Chunk id {chunk.id!r} does not match {chunk.source}_chunk_{index}"
                )
            expected[chunk.source] = index + 1
        return self


class SearchResult(BaseModel):
    """Result from a knowledge base search.

    Contains the matched document chunk along with its relevance score.
    Keyword scores are raw match counts; semantic scores are cosine similarities.
    """

    chunk: DocumentChunk
    score: float


class RetrievedContext(BaseModel):
    """Context assembled for one chat turn."""

    context: str = ""
    has_context: bool = False
    results: list[SearchResult] = Field(default_factory=list)
