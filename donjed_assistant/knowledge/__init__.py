"""Knowledge base module for RAG-based document retrieval.

This module provides functionality to load, search and format the
pre-chunked DonJed documentation so chat replies can be grounded in it.
"""

from donjed_assistant.knowledge.classifier import is_document_query
from donjed_assistant.knowledge.models import DocumentChunk, KnowledgeBase, SearchResult
from donjed_assistant.knowledge.retriever import (
    build_context,
    get_knowledge_retriever,
    initialize_knowledge_retriever,
    keyword_search,
    KnowledgeRetriever,
    retrieve_context,
)

__all__ = [
    "DocumentChunk",
    "KnowledgeBase",
    "SearchResult",
    "KnowledgeRetriever",
    "build_context",
    "get_knowledge_retriever",
    "initialize_knowledge_retriever",
    "is_document_query",
    "keyword_search",
    "retrieve_context",
]
