"""Tests for on-disk chunk checkpoints."""

from __future__ import annotations

from pathlib import Path

import pytest

from footnoter.exceptions import CacheError
from footnoter.state.chunk_cache import ChunkCache
from footnoter.utils.files import atomic_write_text


class TestChunkCache:
    def test_write_then_read(self, tmp_path: Path):
        cache = ChunkCache(tmp_path / "chunks")
        cache.ensure()
        path = cache.write(3, "annotated")
        assert path.name == "0003.md"
        assert cache.has(3)
        assert cache.read(3) == "annotated"

    def test_empty_checkpoint_is_not_a_hit(self, tmp_path: Path):
        cache = ChunkCache(tmp_path)
        cache.path_for(1).write_text("", encoding="utf-8")
        assert not cache.has(1)

    def test_missing_checkpoint_raises_with_path(self, tmp_path: Path):
        cache = ChunkCache(tmp_path)
        with pytest.raises(CacheError, match="Missing cached chunk") as exc_info:
            cache.read(7)
        assert exc_info.value.path == tmp_path / "0007.md"

    def test_unwritable_directory(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        cache = ChunkCache(blocker / "chunks")
        with pytest.raises(CacheError, match="Cannot create cache directory"):
            cache.ensure()

    def test_record_failure(self, tmp_path: Path):
        cache = ChunkCache(tmp_path / "chunks")
        path = cache.record_failure(2, "try1", "bad output", "tag_missing")
        assert path == tmp_path / "chunks" / "failed" / "0002_try1.md"
        assert path.read_text(encoding="utf-8") == "<!-- tag_missing -->\n\nbad output"

    def test_record_failure_skips_empty_content(self, tmp_path: Path):
        cache = ChunkCache(tmp_path / "chunks")
        assert cache.record_failure(2, "try1", "", "source_mismatch") is None
        assert not cache.failed_dir.exists()

    def test_remove(self, tmp_path: Path):
        cache = ChunkCache(tmp_path / "chunks")
        cache.write(1, "x")
        cache.remove()
        assert not cache.directory.exists()
        cache.remove()


class TestAtomicWrite:
    def test_creates_parents_and_replaces(self, tmp_path: Path):
        target = tmp_path / "a" / "b.txt"
        atomic_write_text(target, "one")
        atomic_write_text(target, "two")
        assert target.read_text(encoding="utf-8") == "two"
        assert [p.name for p in target.parent.iterdir()] == ["b.txt"]
