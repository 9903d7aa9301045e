"""Per-chunk checkpoints on disk.

Layout under the chunk directory::

    0001.md               validated, chunk-locally numbered annotation
    0002.md
    failed/0003_try1.md   rejected candidate, first line records the reason

Checkpoints are written once, atomically, after validation succeeds. A
present non-empty checkpoint means the chunk is done.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from footnoter.exceptions import CacheError
from footnoter.utils.files import atomic_write_text

logger = logging.getLogger(__name__)

INDEX_WIDTH = 4


class ChunkCache:
    """Checkpoint directory for one manuscript."""

    def __init__(self, directory: Path):
        self._dir = directory

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def failed_dir(self) -> Path:
        return self._dir / "failed"

    def ensure(self) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"Cannot create cache directory ({e.strerror})", self._dir) from e

    def path_for(self, index: int) -> Path:
        return self._dir / f"{index:0{INDEX_WIDTH}d}.md"

    def has(self, index: int) -> bool:
        path = self.path_for(index)
        return path.is_file() and path.stat().st_size > 0

    def read(self, index: int) -> str:
        path = self.path_for(index)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise CacheError("Missing cached chunk", path) from e
        except OSError as e:
            raise CacheError(f"Cannot read cached chunk ({e.strerror})", path) from e

    def write(self, index: int, text: str) -> Path:
        path = self.path_for(index)
        try:
            atomic_write_text(path, text)
        except OSError as e:
            raise CacheError(f"Cannot write cached chunk ({e.strerror})", path) from e
        return path

    def record_failure(self, index: int, label: str, content: str, reason: str) -> Path | None:
        """Archive a rejected candidate for later inspection."""
        if not content:
            return None
        path = self.failed_dir / f"{index:0{INDEX_WIDTH}d}_{label or 'attempt'}.md"
        try:
            atomic_write_text(path, f"<!-- {reason} -->\n\n{content}")
        except OSError as e:
            logger.warning("Could not write failed response %s: %s", path, e)
            return None
        logger.warning("Saved failed response for chunk %d (%s) to %s", index, label, path)
        return path

    def remove(self) -> None:
        try:
            shutil.rmtree(self._dir)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning("Could not remove cache directory %s: %s", self._dir, e)
            return
        logger.info("Removed cache directory: %s", self._dir)
