"""
In-memory bounded pipe between a producer task and a consumer task.

Used for remote-to-remote transfers: one task downloads from the source server
into the pipe while another uploads from the pipe to the destination server. The
blob never needs to fit in memory or touch local disk.

Contract:
- write() waits while admitting the data would exceed capacity; data larger
  than capacity is admitted in capacity-sized slices
- read() waits while the pipe is empty and writing is not complete; returns
  b"" once writing is complete and everything has been read
- fail() sets a terminal error; every blocked or later read/write raises
  PipeFailedError chained to it. A terminal error wins over buffered data.
- Bytes leave in exactly the order they entered.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING

from modelsync.config import DEFAULT_MAX_BUFFER_BYTES
from modelsync.errors import ErrorKind, TransferError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class PipeFailedError(TransferError):
    """Raised by pipe operations after fail(); ``__cause__`` is the original error."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Pipe failed: {cause}", digest=getattr(cause, "digest", None))
        self.cause = cause
        self.kind = cause.kind if isinstance(cause, TransferError) else ErrorKind.TRANSFER_IO


class BoundedPipe:
    """Bounded FIFO byte queue with backpressure.

    A single asyncio.Condition guards every mutation. Writers wait on it while
    the pipe is full, readers while it is empty; completion and failure wake
    both sides.
    """

    def __init__(self, max_buffered_bytes: int = DEFAULT_MAX_BUFFER_BYTES) -> None:
        if max_buffered_bytes <= 0:
            raise ValueError(f"max_buffered_bytes must be > 0, got {max_buffered_bytes}")
        self._max = max_buffered_bytes
        self._chunks: deque[bytes] = deque()
        self._buffered = 0
        self._peak_buffered = 0
        self._total_written = 0
        self._total_read = 0
        self._write_completed = False
        self._error: BaseException | None = None
        self._cond = asyncio.Condition()

    # =========================================================================
    # State
    # =========================================================================

    @property
    def max_buffered_bytes(self) -> int:
        return self._max

    @property
    def buffered_bytes(self) -> int:
        return self._buffered

    @property
    def peak_buffered_bytes(self) -> int:
        """Highest buffered_bytes observed after any admitted write."""
        return self._peak_buffered

    @property
    def total_written(self) -> int:
        return self._total_written

    @property
    def total_read(self) -> int:
        return self._total_read

    @property
    def write_completed(self) -> bool:
        return self._write_completed

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def failed(self) -> bool:
        return self._error is not None

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise PipeFailedError(self._error) from self._error

    # =========================================================================
    # Producer side
    # =========================================================================

    async def write(self, data: bytes) -> None:
        """Enqueue data, waiting for space.

        Raises:
            PipeFailedError: If the pipe failed before or while waiting.
            RuntimeError: If called after complete_writing().
        """
        self._raise_if_failed()
        if self._write_completed:
            raise RuntimeError("write() after complete_writing()")

        offset = 0
        while offset < len(data):
            piece = bytes(data[offset : offset + self._max])
            async with self._cond:
                await self._cond.wait_for(
                    lambda n=len(piece): self._error is not None or self._buffered + n <= self._max
                )
                self._raise_if_failed()
                self._chunks.append(piece)
                self._buffered += len(piece)
                self._total_written += len(piece)
                self._peak_buffered = max(self._peak_buffered, self._buffered)
                self._cond.notify_all()
            offset += len(piece)

    async def complete_writing(self) -> None:
        """Mark end of stream. Idempotent."""
        async with self._cond:
            if self._write_completed:
                return
            self._write_completed = True
            self._cond.notify_all()

    async def fail(self, error: BaseException) -> None:
        """Set the terminal error and wake every waiter. The first error wins."""
        async with self._cond:
            if self._error is not None:
                return
            self._error = error
            self._cond.notify_all()
        logger.debug(
            "Pipe failed",
            extra={"error": str(error), "buffered_bytes": self._buffered},
        )

    # =========================================================================
    # Consumer side
    # =========================================================================

    async def read(self, n: int = -1) -> bytes:
        """Dequeue up to n bytes (all buffered bytes if n < 0).

        Returns b"" once writing is complete and the queue is drained.

        Raises:
            PipeFailedError: If the pipe failed, even with data still buffered.
        """
        if n == 0:
            self._raise_if_failed()
            return b""

        async with self._cond:
            await self._cond.wait_for(
                lambda: self._error is not None or bool(self._chunks) or self._write_completed
            )
            self._raise_if_failed()
            if not self._chunks:
                return b""

            wanted = self._buffered if n < 0 else n
            parts: list[bytes] = []
            taken = 0
            while self._chunks and taken < wanted:
                head = self._chunks[0]
                remaining = wanted - taken
                if len(head) <= remaining:
                    parts.append(self._chunks.popleft())
                    taken += len(head)
                else:
                    parts.append(head[:remaining])
                    self._chunks[0] = head[remaining:]
                    taken += remaining

            self._buffered -= taken
            self._total_read += taken
            self._cond.notify_all()
        return b"".join(parts)

    async def iter_chunks(self, chunk_size: int) -> AsyncIterator[bytes]:
        """Yield chunks until end of stream."""
        while True:
            chunk = await self.read(chunk_size)
            if not chunk:
                return
            yield chunk
