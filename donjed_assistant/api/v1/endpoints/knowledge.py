"""Knowledge base status and search diagnostics."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from donjed_assistant.knowledge.classifier import is_document_query
from donjed_assistant.knowledge.models import SearchResult
from donjed_assistant.knowledge.retriever import (
    KnowledgeRetriever,
    build_context,
    get_knowledge_retriever,
)

router = APIRouter()


class KnowledgeStatusResponse(BaseModel):
    """Loaded knowledge base summary."""

    initialized: bool
    mode: Optional[str] = None
    version: Optional[str] = None
    generated_at: Optional[str] = None
    total_documents: int = 0
    total_chunks: int = 0


class KnowledgeSearchResponse(BaseModel):
    """Search results and the context they would inject."""

    query: str
    is_document_query: bool
    results: list[SearchResult]
    context: str


@router.get("/status", response_model=KnowledgeStatusResponse)
async def knowledge_status(
    retriever: Optional[KnowledgeRetriever] = Depends(get_knowledge_retriever),
) -> KnowledgeStatusResponse:
    """Report which knowledge base is loaded."""
    if retriever is None or retriever.knowledge_base is None:
        return KnowledgeStatusResponse(
            initialized=False,
            mode=retriever.mode if retriever else None,
        )

    knowledge_base = retriever.knowledge_base
    return KnowledgeStatusResponse(
        initialized=True,
        mode=retriever.mode,
        version=knowledge_base.version,
        generated_at=knowledge_base.generated_at,
        total_documents=knowledge_base.total_documents,
        total_chunks=retriever.chunk_count,
    )


@router.get("/search", response_model=KnowledgeSearchResponse)
async def knowledge_search(
    q: str = Query(..., min_length=1),
    top_k: int = Query(3, ge=1, le=20),
    retriever: Optional[KnowledgeRetriever] = Depends(get_knowledge_retriever),
) -> KnowledgeSearchResponse:
    """Run a search without the classifier gate, for debugging retrieval."""
    results = await retriever.search(q, top_k=top_k) if retriever else []
    return KnowledgeSearchResponse(
        query=q,
        is_document_query=is_document_query(q),
        results=results,
        context=build_context(results),
    )
