"""Reader protocol shared by the stream wrappers."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol


class AsyncReader(Protocol):
    """Anything with ``async read(n) -> bytes`` returning b"" at end of stream.

    aiohttp.StreamReader, BoundedPipe and the wrappers in this package all qualify.
    """

    async def read(self, n: int = -1) -> bytes: ...


async def iter_chunks(reader: AsyncReader, chunk_size: int) -> AsyncIterator[bytes]:
    """Yield chunks of at most chunk_size bytes until the reader is exhausted."""
    while True:
        chunk = await reader.read(chunk_size)
        if not chunk:
            return
        yield chunk
