"""
Blob endpoint client.

    HEAD /api/blobs/{digest}   200 present, 404 absent
    GET  /api/blobs/{digest}   streamed bytes
    POST /api/blobs/{digest}   upload; 400 means the server rejected the digest

Bodies are streamed in both directions; no blob is ever held whole in memory.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import aiohttp

from modelsync.errors import BlobCheckError, DigestMismatchError, TransferIOError
from modelsync.remote.server import error_message
from modelsync.streams.base import iter_chunks

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from modelsync.remote.server import ServerHandle
    from modelsync.streams.base import AsyncReader

logger = logging.getLogger(__name__)

_NETWORK_ERRORS = (aiohttp.ClientError, TimeoutError)


@dataclass
class BlobDownload:
    """Open GET response body for one blob.

    Attributes:
        digest: Blob digest.
        size: Content-Length, 0 if the server did not send one.
    """

    digest: str
    size: int
    _content: aiohttp.StreamReader

    async def read(self, n: int = -1) -> bytes:
        try:
            return await self._content.read(n)
        except _NETWORK_ERRORS as e:
            raise TransferIOError(
                f"Download of {self.digest} interrupted: {e or type(e).__name__}",
                digest=self.digest,
            ) from e


class RemoteBlobClient:
    """HEAD/GET/POST against one server's blob endpoint."""

    def __init__(self, server: ServerHandle, *, chunk_size: int = 80 * 1024) -> None:
        self._server = server
        self._chunk_size = chunk_size

    @property
    def server(self) -> ServerHandle:
        return self._server

    def _blob_url(self, digest: str) -> str:
        return self._server.url(f"api/blobs/{digest}")

    async def exists(self, digest: str) -> bool:
        """Check whether the server already holds the blob.

        Raises:
            BlobCheckError: If the server answers anything but 200 or 404.
            TransferIOError: On network failure.
        """
        session = await self._server.get_session()
        try:
            async with session.head(self._blob_url(digest)) as resp:
                status = resp.status
        except _NETWORK_ERRORS as e:
            raise TransferIOError(
                f"Blob check against {self._server.base_url} failed: {e or type(e).__name__}",
                digest=digest,
            ) from e

        if status == 200:
            return True
        if status == 404:
            return False
        raise BlobCheckError(
            f"Unexpected status {status} checking blob on {self._server.base_url}",
            digest=digest,
            status=status,
        )

    @contextlib.asynccontextmanager
    async def download(self, digest: str) -> AsyncIterator[BlobDownload]:
        """Open a streamed GET for a blob.

        Completes as soon as headers arrive; the body is read through the
        yielded BlobDownload.

        Raises:
            TransferIOError: On non-2xx status or network failure.
        """
        session = await self._server.get_session()
        try:
            async with session.get(self._blob_url(digest)) as resp:
                if not 200 <= resp.status < 300:
                    body = await resp.read()
                    raise TransferIOError(
                        f"Download of {digest} from {self._server.base_url} failed "
                        f"(status {resp.status}): {error_message(body)}",
                        digest=digest,
                        status=resp.status,
                    )
                size = resp.content_length or 0
                logger.debug(
                    "Blob download started",
                    extra={"digest": digest, "size": size, "base_url": self._server.base_url},
                )
                yield BlobDownload(digest=digest, size=size, _content=resp.content)
        except _NETWORK_ERRORS as e:
            raise TransferIOError(
                f"Download of {digest} from {self._server.base_url} failed: "
                f"{e or type(e).__name__}",
                digest=digest,
            ) from e

    async def upload(self, digest: str, source: AsyncReader, size: int = 0) -> None:
        """POST a blob, streaming it from source.

        Args:
            digest: Blob digest (the server verifies content against it).
            source: Reader producing the blob bytes.
            size: Content-Length to announce; 0 sends a chunked body.

        Raises:
            DigestMismatchError: Server answered 400. Never retried.
            TransferIOError: Other non-2xx status or network failure.
            Any error raised by ``source`` is re-raised unchanged.
        """
        source_errors: list[BaseException] = []

        async def body() -> AsyncIterator[bytes]:
            try:
                async for chunk in iter_chunks(source, self._chunk_size):
                    yield chunk
            except Exception as e:
                source_errors.append(e)
                raise

        headers = {"Content-Type": "application/octet-stream"}
        if size > 0:
            headers["Content-Length"] = str(size)

        session = await self._server.get_session()
        try:
            async with session.post(self._blob_url(digest), data=body(), headers=headers) as resp:
                status = resp.status
                response_body = await resp.read()
        except _NETWORK_ERRORS as e:
            if source_errors:
                raise source_errors[0]
            raise TransferIOError(
                f"Upload of {digest} to {self._server.base_url} failed: {e or type(e).__name__}",
                digest=digest,
            ) from e

        if source_errors:
            raise source_errors[0]
        if 200 <= status < 300:
            return
        if status == 400:
            raise DigestMismatchError(
                f"Server {self._server.base_url} rejected blob {digest}: invalid digest, "
                f"check both servers run the same version ({error_message(response_body)})",
                digest=digest,
            )
        raise TransferIOError(
            f"Upload of {digest} to {self._server.base_url} failed "
            f"(status {status}): {error_message(response_body)}",
            digest=digest,
            status=status,
        )
