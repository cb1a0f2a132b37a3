"""Transfer endpoints and tasks.

A model reference is either a local model name (``llama3:8b``) or a URL naming a
server and a model (``http://10.0.0.5:11434/llama3:8b``).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import urlsplit

from modelsync.config import normalize_server_url
from modelsync.errors import InvalidCopyRequestError
from modelsync.store.layout import DEFAULT_TAG, has_tag
from modelsync.store.types import validate_digest


@dataclass(frozen=True)
class LocalLocation:
    """The local content-addressed store."""

    models_dir: Path

    is_local = True

    def __str__(self) -> str:
        return f"local:{self.models_dir}"


@dataclass(frozen=True)
class RemoteLocation:
    """A server reachable over HTTP."""

    base_url: str

    is_local = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", normalize_server_url(self.base_url))

    def __str__(self) -> str:
        return self.base_url


Location = LocalLocation | RemoteLocation


class Topology(str, Enum):
    """Direction of a blob transfer. Values double as metric labels."""

    UPLOAD = "upload"  # local -> remote
    DOWNLOAD = "download"  # remote -> local
    RELAY = "relay"  # remote -> remote


def topology_of(source: Location, destination: Location) -> Topology:
    """Pick the transfer strategy for a source/destination pair.

    Raises:
        InvalidCopyRequestError: Both ends are local.
    """
    if source.is_local and destination.is_local:
        raise InvalidCopyRequestError(
            "Local to local copies are handled by the inference server itself"
        )
    if source.is_local:
        return Topology.UPLOAD
    if destination.is_local:
        return Topology.DOWNLOAD
    return Topology.RELAY


@dataclass(frozen=True)
class TransferTask:
    """Move one blob from source to destination. Never retried automatically."""

    digest: str
    size: int
    source: Location
    destination: Location

    def __post_init__(self) -> None:
        validate_digest(self.digest)
        if self.size < 0:
            raise ValueError(f"size must be >= 0, got {self.size}")
        topology_of(self.source, self.destination)

    @property
    def topology(self) -> Topology:
        return topology_of(self.source, self.destination)


def with_default_tag(name: str) -> str:
    """Append ``:latest`` to an untagged model name."""
    return name if has_tag(name) else f"{name}:{DEFAULT_TAG}"


def parse_model_ref(
    ref: str,
    models_dir: Path,
    *,
    default_model: str | None = None,
) -> tuple[Location, str]:
    """Split a model reference into (location, model name).

    Args:
        ref: ``model[:tag]`` or ``http(s)://host[:port]/[namespace/]model[:tag]``.
        models_dir: Store used for local references.
        default_model: Model name for a remote reference that only names a server.

    Raises:
        ValueError: Empty reference, or a remote reference without a model and
            no default_model.
    """
    ref = ref.strip()
    if not ref:
        raise ValueError("Empty model reference")

    if ref.lower().startswith(("http://", "https://")):
        parts = urlsplit(ref)
        if not parts.hostname:
            raise ValueError(f"Invalid server URL in {ref!r}")
        model = parts.path.strip("/")
        if not model:
            if default_model is None:
                raise ValueError(f"No model name in remote reference {ref!r}")
            model = default_model
        return RemoteLocation(f"{parts.scheme}://{parts.netloc}"), model

    return LocalLocation(Path(models_dir)), ref
