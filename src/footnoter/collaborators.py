"""Interfaces of the external collaborators the orchestrator hands off to.

Container packaging (e.g. building an e-book from the annotated text)
lives outside this package; callers plug an implementation in.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class Packager(Protocol):
    """Turns an annotated text file into a distributable artifact."""

    def package(self, annotated_path: Path) -> Path:
        """Build the artifact and return its path."""
        ...
