"""
Local content-addressed model store.

Layout under models_dir:
    manifests/<host>/<namespace>/<model>/<tag>   JSON manifest per tag
    blobs/sha256-<hex>                           one file per digest

Name resolution:
    model[:tag]           -> manifests/registry.ollama.ai/library/model/tag
    ns/model[:tag]        -> manifests/registry.ollama.ai/ns/model/tag
    hub/...               -> manifests/hub/...
    host.tld/ns/model     -> manifests/host.tld/ns/model/tag

The engine only ever writes blob files. Manifests are registered by the local
server's create endpoint.
"""

from __future__ import annotations

from pathlib import Path

from modelsync.store.types import digest_to_filename


DEFAULT_REGISTRY_HOST = "registry.ollama.ai"
DEFAULT_NAMESPACE = "library"
DEFAULT_TAG = "latest"
PARTIAL_SUFFIX = ".partial"


def split_tag(name: str) -> tuple[str, str | None]:
    """Split ``model:tag`` into (model, tag); the tag is None when absent.

    Only a colon after the last slash counts, so ``host:5000/ns/model`` has no tag.
    """
    slash = name.rfind("/")
    colon = name.rfind(":")
    if colon > slash:
        return name[:colon], name[colon + 1 :] or None
    return name, None


def has_tag(name: str) -> bool:
    return split_tag(name)[1] is not None


def _is_host(segment: str) -> bool:
    return "." in segment or ":" in segment


class LocalStore:
    """Paths into a local model store."""

    def __init__(self, models_dir: Path | str) -> None:
        self._root = Path(models_dir)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def manifests_dir(self) -> Path:
        return self._root / "manifests"

    @property
    def blobs_dir(self) -> Path:
        return self._root / "blobs"

    def manifest_path(self, name: str) -> Path:
        """Resolve a model name to its manifest file.

        An untagged name resolves to the model directory itself, which callers
        treat as missing and retry with ``:latest``.

        Raises:
            ValueError: If the name is empty or contains path traversal.
        """
        model, tag = split_tag(name.strip())
        parts = [p for p in model.split("/") if p]
        if not parts:
            raise ValueError(f"Empty model name: {name!r}")
        if any(p in (".", "..") for p in parts):
            raise ValueError(f"Invalid model name: {name!r}")
        if tag in (".", ".."):
            raise ValueError(f"Invalid model tag: {name!r}")

        if parts[0] == "hub" or _is_host(parts[0]):
            relative = parts
        elif len(parts) == 1:
            relative = [DEFAULT_REGISTRY_HOST, DEFAULT_NAMESPACE, *parts]
        else:
            relative = [DEFAULT_REGISTRY_HOST, *parts]

        path = self.manifests_dir.joinpath(*relative)
        return path / tag if tag else path

    def blob_path(self, digest: str) -> Path:
        return self.blobs_dir / digest_to_filename(digest)

    def staging_path(self, digest: str) -> Path:
        """Temporary path a download is written to before it becomes addressable."""
        blob = self.blob_path(digest)
        return blob.with_name(blob.name + PARTIAL_SUFFIX)

    def has_blob(self, digest: str) -> bool:
        return self.blob_path(digest).is_file()

    def blob_size(self, digest: str) -> int:
        return self.blob_path(digest).stat().st_size
