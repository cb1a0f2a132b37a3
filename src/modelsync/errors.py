"""
Error taxonomy for the transfer engine.

Every failure a copy can hit maps to exactly one ErrorKind. Components raise the
specific subclass at the seam that detects the problem; the orchestrator turns
whatever bubbles up into a single CopyResult for the whole copy.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Kind of copy failure."""

    MANIFEST_UNAVAILABLE = "MANIFEST_UNAVAILABLE"
    BLOB_CHECK = "BLOB_CHECK"
    TRANSFER_IO = "TRANSFER_IO"
    DIGEST_MISMATCH = "DIGEST_MISMATCH"
    CREATE_FAILURE = "CREATE_FAILURE"
    CANCELLED = "CANCELLED"
    SERVER_UNAVAILABLE = "SERVER_UNAVAILABLE"
    INVALID_REQUEST = "INVALID_REQUEST"


class TransferError(Exception):
    """Base class for all transfer engine errors."""

    kind: ErrorKind = ErrorKind.TRANSFER_IO

    def __init__(self, message: str, *, digest: str | None = None) -> None:
        super().__init__(message)
        self.digest = digest


class ManifestUnavailableError(TransferError):
    """Manifest missing, unparseable, or the remote show call failed."""

    kind = ErrorKind.MANIFEST_UNAVAILABLE


class BlobCheckError(TransferError):
    """HEAD answered neither 200 nor 404; skip-vs-upload cannot be decided."""

    kind = ErrorKind.BLOB_CHECK

    def __init__(self, message: str, *, digest: str | None = None, status: int = 0) -> None:
        super().__init__(message, digest=digest)
        self.status = status


class TransferIOError(TransferError):
    """Network or file failure while moving blob bytes."""

    kind = ErrorKind.TRANSFER_IO

    def __init__(self, message: str, *, digest: str | None = None, status: int | None = None) -> None:
        super().__init__(message, digest=digest)
        self.status = status


class DigestMismatchError(TransferError):
    """Destination rejected the blob digest (HTTP 400) or downloaded bytes hash differently.

    Usually means the two servers run incompatible versions. Never retried.
    """

    kind = ErrorKind.DIGEST_MISMATCH


class CreateFailureError(TransferError):
    """Create endpoint answered non-2xx or finished with a status other than success."""

    kind = ErrorKind.CREATE_FAILURE

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        last_status: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.last_status = last_status


class TransferCancelledError(TransferError):
    """The copy's cancellation token fired."""

    kind = ErrorKind.CANCELLED


class ServerUnavailableError(TransferError):
    """Version probe against a server failed."""

    kind = ErrorKind.SERVER_UNAVAILABLE


class InvalidCopyRequestError(TransferError):
    """Copy request cannot be executed by this engine (e.g. local to local)."""

    kind = ErrorKind.INVALID_REQUEST
