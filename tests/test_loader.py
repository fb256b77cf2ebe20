"""Tests for knowledge base chunking and persistence."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from donjed_assistant.knowledge.loader import (
    SourceDocument,
    build_document_chunks,
    build_knowledge_base,
    chunk_text,
    load_knowledge_base,
    read_source_documents,
    save_knowledge_base,
)
from donjed_assistant.knowledge.models import KnowledgeBase
from tests.helpers import make_chunk


class TestChunkText:
    """Tests for paragraph-aligned chunking."""

    def test_small_paragraphs_are_packed(self):
        """Test paragraphs share a chunk while they fit."""
        text = "First paragraph.\n\nSecond paragraph.\n\n\n\nThird paragraph."
        assert chunk_text(text, max_chunk_size=1000) == [
            "First paragraph.\n\nSecond paragraph.\n\nThird paragraph."
        ]

    def test_chunks_respect_size_limit(self):
        """Test no chunk exceeds the limit, separators included."""
        paragraphs = [f"Paragraph number {i} about inverters." for i in range(40)]
        chunks = chunk_text("\n\n".join(paragraphs), max_chunk_size=120)

        assert len(chunks) > 1
        assert all(len(chunk) <= 120 for chunk in chunks)
        # Every paragraph survives in order
        rejoined = "\n\n".join(chunks).split("\n\n")
        assert rejoined == paragraphs

    def test_long_paragraph_split_on_sentences(self):
        """Test an oversized paragraph is split at sentence ends."""
        sentence = "Solar panels convert sunlight into electricity."
        paragraph = " ".join([sentence] * 10)

        chunks = chunk_text(paragraph, max_chunk_size=100)

        assert all(len(chunk) <= 100 for chunk in chunks)
        assert all(chunk.endswith(".") for chunk in chunks)
        assert " ".join(chunks) == paragraph

    def test_unbroken_text_is_hard_sliced(self):
        """Test text without sentence breaks is cut at the limit."""
        chunks = chunk_text("x" * 250, max_chunk_size=100)
        assert [len(chunk) for chunk in chunks] == [100, 100, 50]

    def test_blank_text(self):
        """Test whitespace-only text yields no chunks."""
        assert chunk_text("  \n\n \n\n") == []


class TestBuildKnowledgeBase:
    """Tests for building the artifact."""

    def test_chunk_ids_and_metadata(self):
        """Test ids follow source_chunk_index with contiguous indexes."""
        chunks = build_document_chunks(
            "solar_faq", "One.\n\nTwo.\n\nThree.", total_pages=2, chunk_size=6
        )

        assert [chunk.id for chunk in chunks] == [
            "solar_faq_chunk_0",
            "solar_faq_chunk_1",
            "solar_faq_chunk_2",
        ]
        assert all(chunk.source == "solar_faq" for chunk in chunks)
        assert chunks[1].metadata.chunk_index == 1
        assert chunks[1].metadata.total_pages == 2
        assert chunks[1].metadata.file_name == "solar_faq"

    def test_counts(self):
        """Test document and chunk totals match the contents."""
        knowledge_base = build_knowledge_base(
            [
                SourceDocument("price_list", "5kVA: NGN 4,200,000."),
                SourceDocument("solar_faq", "Panels work when cloudy."),
            ]
        )

        assert knowledge_base.total_documents == 2
        assert knowledge_base.total_chunks == len(knowledge_base.documents) == 2
        assert knowledge_base.generated_at

    def test_save_and_load(self, tmp_path: Path):
        """Test the artifact is written with camelCase keys and reloads."""
        knowledge_base = build_knowledge_base([SourceDocument("faq", "Battery care.", 3)])
        path = tmp_path / "data" / "knowledge-base.json"

        save_knowledge_base(knowledge_base, path)
        raw = json.loads(path.read_text(encoding="utf-8"))

        assert raw["totalChunks"] == 1
        assert raw["documents"][0]["metadata"] == {
            "fileName": "faq",
            "totalPages": 3,
            "chunkIndex": 0,
        }
        assert "embedding" not in raw["documents"][0]
        assert load_knowledge_base(path) == knowledge_base

    def test_rejects_gaps_in_chunk_indexes(self):
        """Test a source skipping an index is invalid."""
        with pytest.raises(ValidationError):
            KnowledgeBase(
                generated_at="2026-10-01T00:00:00Z",
                total_documents=1,
                total_chunks=2,
                documents=(make_chunk("a", index=0), make_chunk("b", index=2)),
            )

    def test_rejects_mismatched_id(self):
        """Test the id must be derived from source and index."""
        chunk = make_chunk("a").model_copy(update={"id": "other_chunk_0"})
        with pytest.raises(ValidationError):
            KnowledgeBase(
                generated_at="2026-10-01T00:00:00Z",
                total_documents=1,
                total_chunks=1,
                documents=(chunk,),
            )

    def test_load_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_knowledge_base(tmp_path / "nope.json")

    def test_bundled_artifact_is_valid(self):
        """Test the knowledge base shipped in data/ loads."""
        path = Path(__file__).resolve().parents[1] / "data" / "knowledge-base.json"
        knowledge_base = load_knowledge_base(path)
        assert knowledge_base.total_chunks == len(knowledge_base.documents)


class TestReadSourceDocuments:
    def test_reads_text_and_markdown(self, tmp_path: Path):
        """Test supported files are read, helper files skipped."""
        (tmp_path / "price_list.md").write_text("# Prices", encoding="utf-8")
        (tmp_path / "faq.txt").write_text("Q and A", encoding="utf-8")
        (tmp_path / "README.md").write_text("ignored", encoding="utf-8")
        (tmp_path / "_draft.md").write_text("ignored", encoding="utf-8")
        (tmp_path / "brochure.pdf").write_bytes(b"%PDF")

        documents = read_source_documents(tmp_path)

        assert [document.name for document in documents] == ["faq", "price_list"]
        assert documents[1].text == "# Prices"

    def test_missing_directory(self, tmp_path: Path):
        assert read_source_documents(tmp_path / "missing") == []
