"""Offline knowledge base builder.

Reads a folder of documents, chunks the text, embeds each chunk, and
saves the result as a knowledge base JSON file.

Usage:
    python -m echonext.knowledge.builder <input-folder> <output-name> <language> [chunk-size] [chunk-overlap]

Example:
    python -m echonext.knowledge.builder knowledge-data/physics physics-rag ja 500 50
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from echonext.core.config import BACKEND_DIR, get_settings
from echonext.core.exceptions import EmbeddingServiceError
from echonext.knowledge.chunker import chunk_text
from echonext.knowledge.embeddings import EmbeddingClient
from echonext.knowledge.loader import read_knowledge_data
from echonext.knowledge.models import Chunk, KnowledgeBase, Language
from echonext.knowledge.store import build_knowledge_base, save_knowledge_base
from echonext.observability import MetricsBackend, get_metrics_backend

logger = logging.getLogger(__name__)


class KnowledgeBaseBuilder:
    """Chunks and embeds document text into a knowledge base."""

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        language: Language | str = Language.JA,
        chunk_size: int = 500,
        chunk_overlap: int = 50,
        rate_limit_seconds: float = 1.1,
        metrics: MetricsBackend | None = None,
    ):
        self.embedding_client = embedding_client
        self.language = Language(language)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.rate_limit_seconds = rate_limit_seconds
        self.metrics = metrics or get_metrics_backend()

    async def embed_chunks(self, texts: Sequence[str]) -> list[Chunk]:
        """Embed chunk texts one at a time, skipping chunks that fail."""
        chunks: list[Chunk] = []
        total = len(texts)

        for i, text in enumerate(texts):
            if i > 0 and self.rate_limit_seconds > 0:
                await asyncio.sleep(self.rate_limit_seconds)

            try:
                embedding = await self.embedding_client.embed(text)
            except EmbeddingServiceError as e:
                logger.error(f"Error processing chunk {i + 1}/{total}: {e}")
                self.metrics.observe_build_chunk(success=False)
                continue

            chunks.append(Chunk(text=text, embedding=embedding))
            self.metrics.observe_build_chunk(success=True)
            if len(chunks) % 10 == 0:
                logger.info(f"Processed {len(chunks)}/{total} chunks...")

        logger.info(f"Successfully processed {len(chunks)} of {total} chunks")
        return chunks

    async def build(self, raw_text: str, model_name: str) -> KnowledgeBase:
        """Chunk and embed raw text into a knowledge base."""
        texts = chunk_text(
            raw_text,
            language=self.language,
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )
        logger.info(f"Created {len(texts)} chunks")

        chunks = await self.embed_chunks(texts)
        return build_knowledge_base(
            chunks,
            model_name=model_name,
            language=self.language,
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m echonext.knowledge.builder",
        description="Build a RAG knowledge base from a folder of documents.",
    )
    parser.add_argument("input_folder", help="Folder of .txt/.tex/.pdf/.docx files")
    parser.add_argument("output_name", help="Knowledge base name (output file stem)")
    parser.add_argument("language", choices=[lang.value for lang in Language])
    parser.add_argument("chunk_size", nargs="?", type=int, default=None)
    parser.add_argument("chunk_overlap", nargs="?", type=int, default=None)
    return parser.parse_args(argv)


def _resolve_input(folder: str) -> Path:
    path = Path(folder)
    return path if path.is_absolute() else BACKEND_DIR / path


async def run(
    args: argparse.Namespace,
    embedding_client: EmbeddingClient | None = None,
    output_dir: Path | None = None,
) -> int:
    """Run a build from parsed CLI arguments and return the exit code."""
    settings = get_settings()
    chunk_size = args.chunk_size or settings.default_chunk_size
    chunk_overlap = args.chunk_overlap if args.chunk_overlap is not None else settings.default_chunk_overlap
    input_path = _resolve_input(args.input_folder)
    output_path = (output_dir or settings.knowledge_base_dir) / f"{args.output_name}.json"

    logger.info("=== RAG Knowledge Base Builder ===")
    logger.info(f"Input folder: {input_path}")
    logger.info(f"Output: {output_path}")
    logger.info(f"Language: {args.language}, chunk size: {chunk_size}, overlap: {chunk_overlap}")

    if not input_path.is_dir():
        logger.error(f"Input folder not found: {input_path}")
        return 1

    logger.info("[1/4] Reading knowledge data...")
    raw_text = await asyncio.to_thread(read_knowledge_data, input_path)
    if not raw_text.strip():
        logger.error("No text data found in input folder")
        return 1
    logger.info(f"Total characters: {len(raw_text)}")

    builder = KnowledgeBaseBuilder(
        embedding_client or EmbeddingClient(),
        language=args.language,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        rate_limit_seconds=settings.embedding_rate_limit_seconds,
    )

    logger.info("[2/4] Chunking text...")
    logger.info("[3/4] Creating embeddings (this may take a while)...")
    knowledge_base = await builder.build(raw_text, args.output_name)
    if not knowledge_base.chunks:
        logger.error("No chunks were embedded; knowledge base not saved")
        return 1

    logger.info("[4/4] Saving knowledge base...")
    save_knowledge_base(knowledge_base, output_path)

    size_mb = output_path.stat().st_size / 1024 / 1024
    logger.info(f"=== Build Complete === {output_path} ({size_mb:.2f} MB)")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stdout,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        args = _parse_args(argv)
    except SystemExit as e:
        # argparse exits with 2 on usage errors
        return 1 if e.code else 0

    try:
        return asyncio.run(run(args))
    except Exception as e:
        logger.exception(f"Build failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
