"""Knowledge base persistence and the active-knowledge-base handle.

A knowledge base is built once, saved as a single JSON file, and loaded
wholesale. ``KnowledgeStore`` holds at most one active knowledge base and
is owned by the serving application rather than living in module state.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

from pydantic import ValidationError

from echonext.core.exceptions import (
    DimensionMismatchError,
    KnowledgeBaseNotFoundError,
    KnowledgeBaseParseError,
)
from echonext.knowledge.models import (
    Chunk,
    KnowledgeBase,
    KnowledgeBaseInfo,
    KnowledgeBaseStats,
    KnowledgeBaseStatus,
    Language,
)
from echonext.knowledge.search import embedding_matrix

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_SUFFIX = ".json"


def compute_stats(chunks: Sequence[Chunk]) -> KnowledgeBaseStats:
    """Compute chunk count and mean chunk text length (0 when empty)."""
    if not chunks:
        return KnowledgeBaseStats(total_chunks=0, avg_chunk_length=0.0)
    total_length = sum(len(chunk.text) for chunk in chunks)
    return KnowledgeBaseStats(
        total_chunks=len(chunks),
        avg_chunk_length=total_length / len(chunks),
    )


def _check_dimensions(chunks: Sequence[Chunk]) -> None:
    if not chunks:
        return
    expected = len(chunks[0].embedding)
    for chunk in chunks[1:]:
        if len(chunk.embedding) != expected:
            raise DimensionMismatchError(expected=expected, actual=len(chunk.embedding))


def build_knowledge_base(
    chunks: Sequence[Chunk],
    *,
    model_name: str,
    language: Language | str,
    chunk_size: int,
    chunk_overlap: int,
    created_at: datetime | None = None,
) -> KnowledgeBase:
    """Assemble a knowledge base from embedded chunks.

    Args:
        chunks: Embedded chunks in insertion order.
        model_name: Name of the knowledge base.
        language: Source language.
        chunk_size: Chunk size used by the builder.
        chunk_overlap: Chunk overlap used by the builder.
        created_at: Creation time, defaults to now (UTC).

    Returns:
        KnowledgeBase with computed stats.

    Raises:
        DimensionMismatchError: If chunk embeddings differ in length.
    """
    chunk_list = list(chunks)
    _check_dimensions(chunk_list)
    return KnowledgeBase(
        model_name=model_name,
        language=Language(language),
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        created_at=created_at or datetime.now(timezone.utc),
        chunks=chunk_list,
        stats=compute_stats(chunk_list),
    )


def save_knowledge_base(knowledge_base: KnowledgeBase, path: Path) -> None:
    """Serialize a knowledge base to a JSON file, creating parent folders."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = knowledge_base.model_dump(mode="json", by_alias=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)

    stats = knowledge_base.stats
    logger.info(f"Knowledge base saved to: {path}")
    logger.info(
        f"Total chunks: {stats.total_chunks}, "
        f"average chunk length: {stats.avg_chunk_length:.0f} chars"
    )


def _read_json(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise KnowledgeBaseNotFoundError(f"Knowledge base not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise KnowledgeBaseParseError(f"Invalid knowledge base file {path.name}: {e}") from e

    if not isinstance(data, dict):
        raise KnowledgeBaseParseError(f"Knowledge base {path.name} is not a JSON object")
    return data


def load_knowledge_base(path: Path) -> KnowledgeBase:
    """Deserialize a knowledge base file.

    Missing ``chunks`` default to an empty list and stats are recomputed
    from the chunks rather than trusted from the file.

    Args:
        path: Path to the knowledge base JSON file.

    Returns:
        Loaded KnowledgeBase.

    Raises:
        KnowledgeBaseNotFoundError: If the file does not exist.
        KnowledgeBaseParseError: If the content is malformed or chunk
            embeddings differ in dimensionality.
    """
    path = Path(path)
    data = _read_json(path)

    data.setdefault("chunks", [])
    data.setdefault("modelName", path.stem)
    data.setdefault("createdAt", datetime.fromtimestamp(path.stat().st_mtime, timezone.utc).isoformat())
    data.pop("stats", None)

    try:
        knowledge_base = KnowledgeBase.model_validate(data)
    except ValidationError as e:
        raise KnowledgeBaseParseError(f"Invalid knowledge base {path.name}: {e}") from e

    try:
        _check_dimensions(knowledge_base.chunks)
    except DimensionMismatchError as e:
        raise KnowledgeBaseParseError(
            f"Inconsistent embedding dimensions in {path.name}: {e}"
        ) from e

    knowledge_base.stats = compute_stats(knowledge_base.chunks)
    return knowledge_base


def read_knowledge_base_info(path: Path) -> KnowledgeBaseInfo:
    """Read listing metadata from a knowledge base file without validating chunks."""
    path = Path(path)
    data = _read_json(path)
    file_stat = path.stat()
    stats = data.get("stats")
    if not isinstance(stats, dict):
        stats = {}

    return KnowledgeBaseInfo(
        filename=path.name,
        name=data.get("modelName") or path.stem,
        language=data.get("language") or "unknown",
        total_chunks=stats.get("totalChunks") or 0,
        avg_chunk_length=stats.get("avgChunkLength") or 0,
        created_at=data.get("createdAt")
        or datetime.fromtimestamp(file_stat.st_mtime, timezone.utc).isoformat(),
        size_kb=f"{file_stat.st_size / 1024:.2f}",
    )


def list_knowledge_bases(directory: Path) -> list[KnowledgeBaseInfo]:
    """List knowledge base files in a directory, skipping unreadable ones."""
    directory = Path(directory)
    if not directory.is_dir():
        return []

    infos: list[KnowledgeBaseInfo] = []
    for path in sorted(directory.glob(f"*{KNOWLEDGE_BASE_SUFFIX}")):
        try:
            infos.append(read_knowledge_base_info(path))
        except (KnowledgeBaseParseError, ValidationError) as e:
            logger.warning(f"Skipping unreadable knowledge base {path.name}: {e}")
    return infos


def list_source_folders(directory: Path) -> list[dict[str, str]]:
    """List document folders available for building knowledge bases."""
    directory = Path(directory)
    if not directory.is_dir():
        return []

    return [
        {"name": entry.name, "path": f"{directory.name}/{entry.name}"}
        for entry in sorted(directory.iterdir())
        if entry.is_dir()
    ]


def _load_indexed(path: Path) -> KnowledgeBase:
    knowledge_base = load_knowledge_base(path)
    embedding_matrix(knowledge_base)
    return knowledge_base


class KnowledgeStore:
    """Holds the single active knowledge base of a serving process.

    Reads are lock-free snapshots. Load and unload wait for in-flight
    readers (searches inside ``reading()``) to drain. A waiting writer
    holds off new readers, so steady prediction traffic cannot starve it.
    """

    def __init__(self) -> None:
        self._active: KnowledgeBase | None = None
        self._condition = asyncio.Condition()
        self._readers = 0
        self._writers_waiting = 0
        self._writing = False

    @property
    def active(self) -> KnowledgeBase | None:
        return self._active

    @property
    def is_loaded(self) -> bool:
        """Whether a knowledge base is currently active."""
        return self._active is not None

    def snapshot(self) -> KnowledgeBase | None:
        """Current knowledge base reference; treat it as read-only."""
        return self._active

    def status(self) -> KnowledgeBaseStatus:
        """Describe the active knowledge base."""
        kb = self._active
        if kb is None:
            return KnowledgeBaseStatus(loaded=False)
        return KnowledgeBaseStatus(
            loaded=True,
            model_name=kb.model_name,
            language=kb.language.value,
            total_chunks=len(kb.chunks),
            dimension=kb.dimension,
        )

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[KnowledgeBase | None]:
        """Hold off load/unload for the duration of a read."""
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._writing and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield self._active
        finally:
            async with self._condition:
                self._readers -= 1
                self._condition.notify_all()

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        async with self._condition:
            self._writers_waiting += 1
            try:
                await self._condition.wait_for(
                    lambda: not self._writing and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
                self._condition.notify_all()
            self._writing = True
        try:
            yield
        finally:
            async with self._condition:
                self._writing = False
                self._condition.notify_all()

    async def load(self, path: Path) -> KnowledgeBase:
        """Load a knowledge base file and make it active.

        Replaces any previously active knowledge base. On failure the
        previously active knowledge base stays active.

        Raises:
            KnowledgeBaseNotFoundError: If the file does not exist.
            KnowledgeBaseParseError: If the file is malformed.
        """
        logger.info(f"Loading knowledge base from: {path}")
        knowledge_base = await asyncio.to_thread(_load_indexed, Path(path))
        async with self._exclusive():
            self._active = knowledge_base

        logger.info(
            f"Knowledge base loaded: name={knowledge_base.model_name} "
            f"language={knowledge_base.language.value} "
            f"chunks={len(knowledge_base.chunks)} dim={knowledge_base.dimension}"
        )
        return knowledge_base

    async def unload(self) -> None:
        """Clear the active knowledge base. Safe to call when nothing is loaded."""
        async with self._exclusive():
            self._active = None
        logger.info("Knowledge base unloaded")
