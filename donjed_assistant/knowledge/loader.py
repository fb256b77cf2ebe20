"""Knowledge base artifact loading and the offline chunk builder.

The artifact is a JSON document produced once from the source documents
and loaded wholesale into memory at process start.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, NamedTuple

from donjed_assistant.knowledge.models import ChunkMetadata, DocumentChunk, KnowledgeBase

logger = logging.getLogger(__name__)

# Default chunk configuration
DEFAULT_CHUNK_SIZE = 1000  # characters
KNOWLEDGE_BASE_VERSION = "1.0"

PARAGRAPH_SEPARATOR = "\n\n"


class SourceDocument(NamedTuple):
    """Extracted text of one source document."""

    name: str
    text: str
    total_pages: int = 0


def load_knowledge_base(path: Path) -> KnowledgeBase:
    """Load the knowledge base artifact from disk.

    Args:
        path: Path to the knowledge base JSON file.

    Returns:
        The validated KnowledgeBase.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not a valid knowledge base.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    knowledge_base = KnowledgeBase.model_validate(data)

    if knowledge_base.total_chunks != len(knowledge_base.documents):
        logger.warning(
            "Knowledge base %s declares %d chunks but contains %d",
            path,
            knowledge_base.total_chunks,
            len(knowledge_base.documents),
        )

    return knowledge_base


def save_knowledge_base(knowledge_base: KnowledgeBase, path: Path) -> None:
    """Write the knowledge base artifact as JSON with camelCase keys."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = knowledge_base.model_dump(by_alias=True, exclude_none=True, mode="json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def build_knowledge_base(documents: Iterable[SourceDocument]) -> KnowledgeBase:
    """Chunk source documents into a fresh knowledge base snapshot."""
    chunks: list[DocumentChunk] = []
    total_documents = 0

    for document in documents:
        total_documents += 1
        document_chunks = build_document_chunks(
            document.name, document.text, total_pages=document.total_pages
        )
        logger.info("Chunked %s into %d chunks", document.name, len(document_chunks))
        chunks.extend(document_chunks)

    return KnowledgeBase(
        version=KNOWLEDGE_BASE_VERSION,
        generated_at=datetime.now(timezone.utc).isoformat(),
        total_documents=total_documents,
        total_chunks=len(chunks),
        documents=tuple(chunks),
    )


def build_document_chunks(
    source: str,
    text: str,
    total_pages: int = 0,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> list[DocumentChunk]:
    """Split one document into chunks with stable ids.

    Args:
        source: Document name without extension.
        text: Extracted document text.
        total_pages: Page count of the source document.
        chunk_size: Maximum characters per chunk.

    Returns:
        Chunks with ids ``{source}_chunk_{index}``.
    """
    return [
        DocumentChunk(
            id=f"{source}_chunk_{index}",
            text=chunk,
            source=source,
            metadata=ChunkMetadata(
                file_name=source,
                total_pages=total_pages,
                chunk_index=index,
            ),
        )
        for index, chunk in enumerate(chunk_text(text, chunk_size))
    ]


def chunk_text(text: str, max_chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Split text into paragraph-aligned chunks.

    Paragraphs (separated by blank lines) are packed greedily into chunks of
    at most ``max_chunk_size`` characters joined by a blank line. A paragraph
    longer than the limit is split on sentence boundaries.

    Args:
        text: Text to split.
        max_chunk_size: Maximum characters per chunk.

    Returns:
        List of text chunks.
    """
    chunks: list[str] = []
    current = ""

    for para in re.split(r"\n\n+", text):
        para = para.strip()
        if not para:
            continue

        if len(para) > max_chunk_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_split_long_paragraph(para, max_chunk_size))
            continue

        if current and len(current) + len(PARAGRAPH_SEPARATOR) + len(para) > max_chunk_size:
            chunks.append(current)
            current = para
        else:
            current = f"{current}{PARAGRAPH_SEPARATOR}{para}" if current else para

    if current:
        chunks.append(current)

    return chunks


def _split_long_paragraph(para: str, max_chunk_size: int) -> list[str]:
    """Split an oversized paragraph by sentences, hard-slicing if needed."""
    pieces: list[str] = []
    current = ""

    for sentence in re.split(r"(?<=[.!?])\s+", para):
        while len(sentence) > max_chunk_size:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(sentence[:max_chunk_size])
            sentence = sentence[max_chunk_size:]

        if current and len(current) + 1 + len(sentence) > max_chunk_size:
            pieces.append(current)
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence

    if current:
        pieces.append(current)

    return pieces


def read_source_documents(documents_dir: Path) -> list[SourceDocument]:
    """Read plain-text and markdown documents from a directory.

    Files starting with ``_`` and ``README.md`` are skipped.
    """
    if not documents_dir.exists():
        return []

    documents: list[SourceDocument] = []
    for file_path in sorted(documents_dir.iterdir()):
        if file_path.suffix not in (".txt", ".md"):
            continue
        if file_path.name.startswith("_") or file_path.name == "README.md":
            continue
        documents.append(
            SourceDocument(
                name=file_path.stem,
                text=file_path.read_text(encoding="utf-8"),
            )
        )

    return documents
