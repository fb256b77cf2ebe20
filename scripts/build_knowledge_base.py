#!/usr/bin/env python3
"""Build the knowledge base artifact from text documents.

This script loads .txt and .md documents from a directory, splits them
into paragraph-aligned chunks and writes the knowledge base JSON that the
chat service loads at startup.

Usage:
    python scripts/build_knowledge_base.py [DOCS_DIR] [OUTPUT_FILE]

Defaults:
    DOCS_DIR: docs/
    OUTPUT_FILE: data/knowledge-base.json (or KNOWLEDGE_BASE_PATH)
"""

import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from donjed_assistant.knowledge.loader import (
    build_knowledge_base,
    read_source_documents,
    save_knowledge_base,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

project_dir = Path(__file__).parent.parent


def main() -> None:
    """Build the knowledge base artifact."""
    env_path = project_dir / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.info(f"Loaded environment from: {env_path}")

    documents_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else project_dir / "docs"
    output_path = (
        Path(sys.argv[2])
        if len(sys.argv) > 2
        else Path(os.environ.get("KNOWLEDGE_BASE_PATH", project_dir / "data" / "knowledge-base.json"))
    )

    logger.info(f"Loading documents from: {documents_dir}")
    documents = read_source_documents(documents_dir)

    if not documents:
        logger.error(f"No .txt or .md documents found in {documents_dir}")
        sys.exit(1)

    logger.info(f"Found {len(documents)} documents")

    knowledge_base = build_knowledge_base(documents)
    save_knowledge_base(knowledge_base, output_path)

    logger.info("Knowledge base created successfully!")
    logger.info(f"Total chunks: {knowledge_base.total_chunks}")
    logger.info(f"Output: {output_path}")


if __name__ == "__main__":
    main()
