"""
Async access to local blob files.

File I/O runs in worker threads (asyncio.to_thread) so a multi-gigabyte read or
write never blocks the event loop.

StagedBlobWriter writes a download to ``<blob>.partial`` and only renames it to
the addressable ``sha256-<hex>`` path after the content hashed to the expected
digest. On any failure or cancellation the staged file is removed, so a
partially valid blob is never left where the store would find it.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from typing import TYPE_CHECKING, BinaryIO

from modelsync.errors import DigestMismatchError, TransferIOError

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

logger = logging.getLogger(__name__)


def _cleanup_partial_file(path: Path) -> None:
    """Remove a staged partial file if present."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to remove partial file", extra={"path": str(path), "error": str(e)})


class LocalBlobReader:
    """Async reader over a local blob file.

    Usage:
        async with LocalBlobReader(path) as reader:
            chunk = await reader.read(65536)
    """

    def __init__(self, path: Path, *, digest: str | None = None) -> None:
        self._path = path
        self._digest = digest
        self._fh: BinaryIO | None = None

    @property
    def path(self) -> Path:
        return self._path

    async def open(self) -> None:
        if self._fh is not None:
            return
        try:
            self._fh = await asyncio.to_thread(self._path.open, "rb")
        except OSError as e:
            raise TransferIOError(
                f"Cannot open local blob {self._path}: {e}", digest=self._digest
            ) from e

    async def read(self, n: int = -1) -> bytes:
        if self._fh is None:
            await self.open()
        assert self._fh is not None
        try:
            return await asyncio.to_thread(self._fh.read, n)
        except OSError as e:
            raise TransferIOError(
                f"Read failed on local blob {self._path}: {e}", digest=self._digest
            ) from e

    async def close(self) -> None:
        if self._fh is not None:
            fh, self._fh = self._fh, None
            await asyncio.to_thread(fh.close)

    async def __aenter__(self) -> LocalBlobReader:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


class StagedBlobWriter:
    """Writes a blob to a staging path and commits it atomically.

    Args:
        final_path: Addressable blob path (``blobs/sha256-<hex>``).
        staging_path: Temporary path in the same directory.
        digest: Expected ``sha256:<hex>`` digest.
        verify: Reject content whose sha256 differs from the digest.

    Usage:
        async with StagedBlobWriter(final, staged, digest) as writer:
            await writer.write(chunk)
            ...
            await writer.commit()

    Leaving the block without commit() (exception, cancellation, early return)
    deletes the staged file.
    """

    def __init__(
        self,
        final_path: Path,
        staging_path: Path,
        digest: str,
        *,
        verify: bool = True,
    ) -> None:
        self._final_path = final_path
        self._staging_path = staging_path
        self._digest = digest
        self._verify = verify and digest.startswith("sha256:")
        self._hasher = hashlib.sha256()
        self._fh: BinaryIO | None = None
        self._bytes_written = 0
        self._committed = False

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    @property
    def committed(self) -> bool:
        return self._committed

    async def __aenter__(self) -> StagedBlobWriter:
        try:
            await asyncio.to_thread(self._staging_path.parent.mkdir, parents=True, exist_ok=True)
            self._fh = await asyncio.to_thread(self._staging_path.open, "wb")
        except OSError as e:
            raise TransferIOError(
                f"Cannot create staging file {self._staging_path}: {e}", digest=self._digest
            ) from e
        return self

    async def write(self, data: bytes) -> None:
        if self._fh is None:
            raise RuntimeError("StagedBlobWriter used outside its context")
        try:
            await asyncio.to_thread(self._fh.write, data)
        except OSError as e:
            raise TransferIOError(
                f"Write failed on {self._staging_path}: {e}", digest=self._digest
            ) from e
        if self._verify:
            self._hasher.update(data)
        self._bytes_written += len(data)

    async def commit(self) -> None:
        """Verify the digest and move the staged file into place.

        Raises:
            DigestMismatchError: If the content does not hash to the digest.
            TransferIOError: If closing or renaming fails.
        """
        await self._close()
        if self._verify:
            actual = f"sha256:{self._hasher.hexdigest()}"
            if actual != self._digest:
                raise DigestMismatchError(
                    f"Downloaded content hashes to {actual}, expected {self._digest}",
                    digest=self._digest,
                )
        try:
            await asyncio.to_thread(os.replace, self._staging_path, self._final_path)
        except OSError as e:
            raise TransferIOError(
                f"Cannot move {self._staging_path} into place: {e}", digest=self._digest
            ) from e
        self._committed = True

    async def _close(self) -> None:
        if self._fh is not None:
            fh, self._fh = self._fh, None
            try:
                await asyncio.to_thread(fh.close)
            except OSError as e:
                raise TransferIOError(
                    f"Close failed on {self._staging_path}: {e}", digest=self._digest
                ) from e

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._committed:
            return
        if self._fh is not None:
            fh, self._fh = self._fh, None
            fh.close()
        _cleanup_partial_file(self._staging_path)
        if exc_type is not None:
            logger.info(
                "Removed partial download",
                extra={"digest": self._digest, "bytes_written": self._bytes_written},
            )
