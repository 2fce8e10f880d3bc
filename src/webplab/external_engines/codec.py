"""Codec service boundary.

The optimizer never looks inside the codec.  It writes named buffers into a
scratch space owned by the codec, issues argument lists, and reads named
outputs back.  Any class implementing :class:`CodecService` can stand in,
which is how the test-suite swaps FFmpeg for an in-memory fake.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from ..error_handling import WebpLabError

logger = logging.getLogger(__name__)

__all__ = [
    "CodecService",
    "ScratchSpace",
]


class ScratchSpace:
    """Names written into a codec's scratch area during one scoped operation."""

    def __init__(self, codec: CodecService, names: tuple[str, ...] = ()) -> None:
        self.codec = codec
        self.names: list[str] = list(names)

    def track(self, name: str) -> str:
        """Register *name* for removal when the scope exits and return it."""
        if name not in self.names:
            self.names.append(name)
        return name

    def write(self, name: str, data: bytes) -> str:
        self.track(name)
        self.codec.write_file(name, data)
        return name

    def release(self) -> None:
        for name in self.names:
            try:
                self.codec.delete_file(name)
            except (OSError, WebpLabError) as e:
                logger.debug(f"Ignoring scratch cleanup failure for {name}: {e}")
        self.names.clear()


class CodecService(ABC):
    """Opaque encoder/decoder operating on a virtual scratch file space."""

    @abstractmethod
    def write_file(self, name: str, data: bytes) -> None:
        """Store *data* under *name* in the scratch space."""

    @abstractmethod
    def read_file(self, name: str) -> bytes:
        """Return the buffer stored under *name*.

        Raises:
            EngineError: If *name* does not exist
        """

    @abstractmethod
    def delete_file(self, name: str) -> None:
        """Remove *name*; removing a missing name is not an error."""

    @abstractmethod
    def exec(self, args: list[str]) -> dict[str, Any]:
        """Run one codec invocation.

        Raises:
            EngineError: If the invocation fails
        """

    @contextmanager
    def scratch(self, *names: str) -> Iterator[ScratchSpace]:
        """Scope the lifetime of scratch files.

        Every name passed in or tracked on the yielded :class:`ScratchSpace`
        is deleted on exit, whether the body returned, raised or was
        cancelled.
        """
        space = ScratchSpace(self, names)
        try:
            yield space
        finally:
            space.release()
