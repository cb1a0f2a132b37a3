"""
Bandwidth throttling for async readers.

ThrottledStream keeps the average rate since the first read at or below a
ceiling. A read that would push the average over the ceiling is delayed just
long enough to bring it back to target; nothing is buffered beyond the chunk the
caller asked for.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from modelsync.streams.base import AsyncReader


class ThrottledStream:
    """Async reader wrapper that caps average throughput.

    Args:
        source: Underlying reader.
        bytes_per_second: Ceiling in bytes/s. 0 disables throttling.
        _time_fn: Monotonic clock (for testing).
        _sleep_fn: Sleep coroutine (for testing).
    """

    def __init__(
        self,
        source: AsyncReader,
        bytes_per_second: int = 0,
        *,
        _time_fn: Callable[[], float] | None = None,
        _sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if bytes_per_second < 0:
            raise ValueError(f"bytes_per_second must be >= 0, got {bytes_per_second}")
        self._source = source
        self._rate = bytes_per_second
        self._time_fn = _time_fn or time.monotonic
        self._sleep_fn = _sleep_fn or asyncio.sleep
        self._start: float | None = None
        self._bytes_read = 0
        self._total_delay_s = 0.0

    @property
    def bytes_per_second(self) -> int:
        return self._rate

    @property
    def bytes_read(self) -> int:
        return self._bytes_read

    @property
    def total_delay_s(self) -> float:
        """Total time spent sleeping to honor the ceiling."""
        return self._total_delay_s

    async def read(self, n: int = -1) -> bytes:
        if self._start is None:
            self._start = self._time_fn()

        data = await self._source.read(n)
        if not data:
            return data

        self._bytes_read += len(data)
        if self._rate > 0:
            target_elapsed = self._bytes_read / self._rate
            elapsed = self._time_fn() - self._start
            delay = target_elapsed - elapsed
            if delay > 0:
                self._total_delay_s += delay
                await self._sleep_fn(delay)
        return data
