"""Progress reporting for async readers."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modelsync.streams.base import AsyncReader

# (bytes_so_far, total, elapsed_s); total is 0 when unknown
ProgressCallback = Callable[[int, int, float], None]


class ProgressReporter:
    """Reader wrapper that counts bytes and reports them at a bounded rate.

    The data passes through unchanged. ``bytes_so_far`` can be sampled at any
    time; the callback, if given, fires at most once per ``interval_s`` plus once
    more at end of stream.

    Args:
        source: Underlying reader.
        total: Expected size in bytes, 0 if unknown.
        callback: Called with (bytes_so_far, total, elapsed_s).
        interval_s: Minimum seconds between callbacks (0 = every read).
        _time_fn: Monotonic clock (for testing).
    """

    def __init__(
        self,
        source: AsyncReader,
        total: int = 0,
        callback: ProgressCallback | None = None,
        *,
        interval_s: float = 0.5,
        _time_fn: Callable[[], float] | None = None,
    ) -> None:
        self._source = source
        self._total = total
        self._callback = callback
        self._interval_s = interval_s
        self._time_fn = _time_fn or time.monotonic
        self._start = self._time_fn()
        self._last_report: float | None = None
        self._bytes_so_far = 0
        self._finished = False

    @property
    def bytes_so_far(self) -> int:
        return self._bytes_so_far

    @property
    def total(self) -> int:
        return self._total

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def elapsed_s(self) -> float:
        return self._time_fn() - self._start

    async def read(self, n: int = -1) -> bytes:
        data = await self._source.read(n)
        if data:
            self._bytes_so_far += len(data)
            now = self._time_fn()
            if self._last_report is None or now - self._last_report >= self._interval_s:
                self._report(now)
        elif not self._finished:
            self._finished = True
            self._report(self._time_fn())
        return data

    def _report(self, now: float) -> None:
        self._last_report = now
        if self._callback is not None:
            self._callback(self._bytes_so_far, self._total, now - self._start)
