"""Tests for knowledge base persistence and the knowledge store."""

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from echonext.core.exceptions import (
    DimensionMismatchError,
    KnowledgeBaseNotFoundError,
    KnowledgeBaseParseError,
)
from echonext.knowledge.models import Chunk, Language
from echonext.knowledge.store import (
    KnowledgeStore,
    build_knowledge_base,
    list_knowledge_bases,
    list_source_folders,
    load_knowledge_base,
    save_knowledge_base,
)
from tests.fakes import make_knowledge_base, write_json


@pytest.fixture
def sample_kb():
    return make_knowledge_base(
        [
            ("量子力学の基礎", [0.1, -0.2345678901234, 1e-10]),
            ("相対性理論", [0.333333333333, 0.5, -0.75]),
        ],
        model_name="physics",
    )


async def _snapshot_via_reading(store: KnowledgeStore):
    async with store.reading() as kb:
        return kb


class TestBuildKnowledgeBase:
    """Tests for build_knowledge_base."""

    def test_stats(self, sample_kb):
        assert sample_kb.stats.total_chunks == 2
        assert sample_kb.stats.avg_chunk_length == pytest.approx((7 + 5) / 2)
        assert sample_kb.dimension == 3

    def test_empty_chunks(self):
        kb = build_knowledge_base(
            [],
            model_name="empty",
            language="en",
            chunk_size=500,
            chunk_overlap=50,
        )

        assert kb.stats.total_chunks == 0
        assert kb.stats.avg_chunk_length == 0.0
        assert kb.dimension is None
        assert kb.language == Language.EN

    def test_rejects_mixed_dimensions(self):
        with pytest.raises(DimensionMismatchError):
            build_knowledge_base(
                [Chunk(text="a", embedding=[1.0, 0.0]), Chunk(text="b", embedding=[1.0])],
                model_name="bad",
                language="ja",
                chunk_size=500,
                chunk_overlap=50,
            )


class TestPersistence:
    """Tests for save/load."""

    def test_round_trip(self, sample_kb, tmp_path: Path):
        path = tmp_path / "out" / "physics.json"

        save_knowledge_base(sample_kb, path)
        loaded = load_knowledge_base(path)

        assert loaded.chunks == sample_kb.chunks
        assert loaded.stats.total_chunks == len(sample_kb.chunks)
        assert loaded.model_name == "physics"
        assert loaded.created_at == sample_kb.created_at

    def test_saved_file_uses_camel_case_keys(self, sample_kb, tmp_path: Path):
        path = tmp_path / "physics.json"
        save_knowledge_base(sample_kb, path)

        data = json.loads(path.read_text(encoding="utf-8"))

        assert set(data) == {
            "modelName",
            "language",
            "chunkSize",
            "chunkOverlap",
            "createdAt",
            "chunks",
            "stats",
        }
        assert data["stats"] == {"totalChunks": 2, "avgChunkLength": 6.0}
        assert data["chunks"][0]["text"] == "量子力学の基礎"
        assert "量子力学" in path.read_text(encoding="utf-8")

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(KnowledgeBaseNotFoundError):
            load_knowledge_base(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(KnowledgeBaseParseError):
            load_knowledge_base(path)

    def test_invalid_shape(self, tmp_path: Path):
        path = write_json(tmp_path / "bad.json", {"modelName": "x", "chunks": [{"text": "a"}]})

        with pytest.raises(KnowledgeBaseParseError):
            load_knowledge_base(path)

    def test_missing_chunks_defaults_to_empty(self, tmp_path: Path):
        path = write_json(
            tmp_path / "empty.json",
            {"modelName": "empty", "language": "en", "createdAt": "2025-01-01T00:00:00Z"},
        )

        kb = load_knowledge_base(path)

        assert kb.chunks == []
        assert kb.stats.total_chunks == 0

    def test_stats_are_recomputed(self, tmp_path: Path):
        path = write_json(
            tmp_path / "stale.json",
            {
                "modelName": "stale",
                "language": "ja",
                "createdAt": "2025-01-01T00:00:00Z",
                "chunks": [{"text": "abcd", "embedding": [1.0, 0.0]}],
                "stats": {"totalChunks": 99, "avgChunkLength": 1234},
            },
        )

        kb = load_knowledge_base(path)

        assert kb.stats.total_chunks == 1
        assert kb.stats.avg_chunk_length == 4.0

    def test_mixed_dimensions_rejected(self, tmp_path: Path):
        path = write_json(
            tmp_path / "mixed.json",
            {
                "modelName": "mixed",
                "language": "ja",
                "createdAt": "2025-01-01T00:00:00Z",
                "chunks": [
                    {"text": "a", "embedding": [1.0, 0.0]},
                    {"text": "b", "embedding": [1.0, 0.0, 0.0]},
                ],
            },
        )

        with pytest.raises(KnowledgeBaseParseError):
            load_knowledge_base(path)


class TestListing:
    """Tests for directory listings."""

    def test_list_knowledge_bases(self, sample_kb, tmp_path: Path):
        save_knowledge_base(sample_kb, tmp_path / "physics.json")
        (tmp_path / "broken.json").write_text("oops", encoding="utf-8")
        (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

        infos = list_knowledge_bases(tmp_path)

        assert [info.filename for info in infos] == ["physics.json"]
        info = infos[0]
        assert info.name == "physics"
        assert info.language == "ja"
        assert info.total_chunks == 2
        assert float(info.size_kb) > 0
        assert info.model_dump(by_alias=True)["sizeKB"] == info.size_kb

    @pytest.mark.parametrize("stats", ["corrupt", [1, 2], 7])
    def test_list_tolerates_malformed_stats(self, tmp_path: Path, stats):
        write_json(
            tmp_path / "odd.json",
            {"modelName": "odd", "language": "en", "stats": stats, "chunks": []},
        )

        infos = list_knowledge_bases(tmp_path)

        assert [info.name for info in infos] == ["odd"]
        assert infos[0].total_chunks == 0
        assert infos[0].avg_chunk_length == 0

    def test_list_missing_directory(self, tmp_path: Path):
        assert list_knowledge_bases(tmp_path / "nope") == []
        assert list_source_folders(tmp_path / "nope") == []

    def test_list_source_folders(self, tmp_path: Path):
        data_dir = tmp_path / "knowledge-data"
        (data_dir / "physics").mkdir(parents=True)
        (data_dir / "history").mkdir()
        (data_dir / "readme.txt").write_text("x", encoding="utf-8")

        folders = list_source_folders(data_dir)

        assert folders == [
            {"name": "history", "path": "knowledge-data/history"},
            {"name": "physics", "path": "knowledge-data/physics"},
        ]


class TestKnowledgeStore:
    """Tests for the active knowledge base handle."""

    async def test_starts_unloaded(self, store: KnowledgeStore):
        assert store.is_loaded is False
        assert store.snapshot() is None
        assert store.status().loaded is False

    async def test_load_and_status(self, store: KnowledgeStore, sample_kb, tmp_path: Path):
        path = tmp_path / "physics.json"
        save_knowledge_base(sample_kb, path)

        kb = await store.load(path)

        assert store.is_loaded
        assert store.active is kb
        status = store.status()
        assert status.loaded is True
        assert status.model_name == "physics"
        assert status.total_chunks == 2
        assert status.dimension == 3
        assert status.model_dump(by_alias=True)["modelName"] == "physics"

    async def test_failed_load_keeps_active_knowledge_base(
        self, store: KnowledgeStore, sample_kb, tmp_path: Path
    ):
        path = tmp_path / "physics.json"
        save_knowledge_base(sample_kb, path)
        active = await store.load(path)
        (tmp_path / "broken.json").write_text("{", encoding="utf-8")

        with pytest.raises(KnowledgeBaseNotFoundError):
            await store.load(tmp_path / "typo.json")
        with pytest.raises(KnowledgeBaseParseError):
            await store.load(tmp_path / "broken.json")

        assert store.is_loaded
        assert store.active is active
        assert store.status().model_name == "physics"

    async def test_unload_is_idempotent(self, store: KnowledgeStore):
        await store.unload()
        await store.unload()
        assert store.is_loaded is False

    async def test_unload_waits_for_readers(
        self, store: KnowledgeStore, sample_kb, tmp_path: Path
    ):
        path = tmp_path / "physics.json"
        save_knowledge_base(sample_kb, path)
        await store.load(path)

        async with store.reading() as kb:
            unload_task = asyncio.create_task(store.unload())
            for _ in range(3):
                await asyncio.sleep(0)

            assert not unload_task.done()
            assert kb is not None
            assert store.is_loaded

        await unload_task
        assert store.is_loaded is False

    async def test_unload_completes_under_steady_reader_traffic(
        self, store: KnowledgeStore, sample_kb, tmp_path: Path
    ):
        path = tmp_path / "physics.json"
        save_knowledge_base(sample_kb, path)
        await store.load(path)

        async def read_once():
            async with store.reading():
                await asyncio.sleep(0.02)

        stop = asyncio.Event()

        async def traffic():
            readers = []
            while not stop.is_set():
                readers.append(asyncio.create_task(read_once()))
                await asyncio.sleep(0.01)
            await asyncio.gather(*readers)

        traffic_task = asyncio.create_task(traffic())
        await asyncio.sleep(0.05)
        try:
            await asyncio.wait_for(store.unload(), timeout=1.0)
        finally:
            stop.set()
            await traffic_task

        assert store.is_loaded is False

    async def test_readers_resume_after_unload(
        self, store: KnowledgeStore, sample_kb, tmp_path: Path
    ):
        path = tmp_path / "physics.json"
        save_knowledge_base(sample_kb, path)
        await store.load(path)

        async with store.reading():
            unload_task = asyncio.create_task(store.unload())
            await asyncio.sleep(0)
            late_reader = asyncio.create_task(_snapshot_via_reading(store))
            for _ in range(3):
                await asyncio.sleep(0)
            assert not late_reader.done()

        await unload_task
        assert await late_reader is None
