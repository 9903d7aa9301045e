"""Abstract streaming-caller interface.

The orchestrator only needs one thing from the network layer: send a
serialized request and get the assembled output text back (or an
exception from ``footnoter.exceptions``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class StreamingCaller(ABC):
    """One network call per ``call()``, consuming an event-stream response."""

    @abstractmethod
    async def call(self, payload: bytes) -> str:
        """Send ``payload`` and return the fully assembled text output."""
        ...

    @property
    @abstractmethod
    def model(self) -> str:
        """Model identifier requests are built for."""
        ...

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None
