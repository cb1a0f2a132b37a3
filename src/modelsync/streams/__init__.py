"""Stream building blocks: throttling, bounded pipe, progress, local files."""

from modelsync.streams.base import AsyncReader, iter_chunks
from modelsync.streams.files import LocalBlobReader, StagedBlobWriter
from modelsync.streams.pipe import BoundedPipe, PipeFailedError
from modelsync.streams.progress import ProgressCallback, ProgressReporter
from modelsync.streams.throttle import ThrottledStream

__all__ = [
    "AsyncReader",
    "BoundedPipe",
    "LocalBlobReader",
    "PipeFailedError",
    "ProgressCallback",
    "ProgressReporter",
    "StagedBlobWriter",
    "ThrottledStream",
    "iter_chunks",
]
