"""
Manifest resolution for local and remote models.

Local models are read from the on-disk manifest tree; their template, system
prompt and parameters live in small metadata blobs referenced by the manifest.
Remote models are described by the server's show endpoint, whose rendered model
definition names the blob digests.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import orjson

from modelsync.errors import ManifestUnavailableError, TransferError
from modelsync.manifest.modelfile import extract_blob_layers, parts_from_show
from modelsync.store.layout import DEFAULT_TAG, has_tag
from modelsync.store.types import (
    MEDIA_TYPE_PARAMS,
    MEDIA_TYPE_SYSTEM,
    MEDIA_TYPE_TEMPLATE,
    Manifest,
    ModelParameters,
)

if TYPE_CHECKING:
    from modelsync.remote.server import ServerHandle
    from modelsync.store.layout import LocalStore

logger = logging.getLogger(__name__)


class ManifestResolver:
    """Loads manifests and model metadata.

    Args:
        store: Local store used by the local_* methods.
    """

    def __init__(self, store: LocalStore | None = None) -> None:
        self._store = store

    def _require_store(self) -> LocalStore:
        if self._store is None:
            raise ManifestUnavailableError("No local model store configured")
        return self._store

    # =========================================================================
    # Local
    # =========================================================================

    def local_manifest(self, name: str) -> Manifest:
        """Read the on-disk manifest for a local model.

        An untagged name that has no manifest of its own is retried once as
        ``name:latest``.

        Raises:
            ManifestUnavailableError: Manifest missing or malformed.
        """
        store = self._require_store()
        candidates = [name] if has_tag(name) else [name, f"{name}:{DEFAULT_TAG}"]

        for candidate in candidates:
            try:
                path = store.manifest_path(candidate)
            except ValueError as e:
                raise ManifestUnavailableError(str(e)) from e
            if not path.is_file():
                continue
            try:
                data = path.read_bytes()
            except OSError as e:
                raise ManifestUnavailableError(f"Cannot read manifest {path}: {e}") from e
            try:
                manifest = Manifest.from_json(data, name=candidate)
            except ValueError as e:
                raise ManifestUnavailableError(f"Malformed manifest {path}: {e}") from e
            logger.debug(
                "Local manifest loaded",
                extra={"model": candidate, "layers": len(manifest.layers)},
            )
            return manifest

        raise ManifestUnavailableError(f"Model {name!r} not found in {store.manifests_dir}")

    def local_metadata(
        self, manifest: Manifest
    ) -> tuple[str | None, str | None, ModelParameters]:
        """Read (template, system, parameters) from a local manifest's metadata layers.

        Raises:
            ManifestUnavailableError: A referenced metadata blob is missing or unreadable.
        """
        store = self._require_store()

        def read_blob(media_type: str) -> bytes | None:
            layer = manifest.layer_for(media_type)
            if layer is None:
                return None
            path = store.blob_path(layer.digest)
            try:
                return path.read_bytes()
            except OSError as e:
                raise ManifestUnavailableError(
                    f"Metadata blob {layer.digest} of {manifest.name!r} unreadable: {e}",
                    digest=layer.digest,
                ) from e

        template_raw = read_blob(MEDIA_TYPE_TEMPLATE)
        system_raw = read_blob(MEDIA_TYPE_SYSTEM)
        params_raw = read_blob(MEDIA_TYPE_PARAMS)

        parameters = ModelParameters()
        if params_raw:
            try:
                parameters = ModelParameters.from_any(orjson.loads(params_raw))
            except (orjson.JSONDecodeError, ValueError) as e:
                raise ManifestUnavailableError(
                    f"Parameters blob of {manifest.name!r} is not a JSON object"
                ) from e

        try:
            template = template_raw.decode("utf-8") if template_raw else None
            system = system_raw.decode("utf-8") if system_raw else None
        except UnicodeDecodeError as e:
            raise ManifestUnavailableError(
                f"Template or system blob of {manifest.name!r} is not valid UTF-8"
            ) from e
        return template, system, parameters

    def local_manifest_with_metadata(self, name: str) -> Manifest:
        manifest = self.local_manifest(name)
        template, system, parameters = self.local_metadata(manifest)
        return manifest.with_metadata(template=template, system=system, parameters=parameters)

    # =========================================================================
    # Remote
    # =========================================================================

    async def remote_modelfile(self, server: ServerHandle, name: str) -> str:
        """Fetch the rendered model definition via POST /api/show.

        Raises:
            ManifestUnavailableError: Show failed or returned no definition.
        """
        data = await server.show(name)
        modelfile = data.get("modelfile")
        if not isinstance(modelfile, str) or not modelfile:
            raise ManifestUnavailableError(
                f"Server {server.base_url} returned no model definition for {name!r}"
            )
        return modelfile

    async def remote_modelfile_parts(
        self, server: ServerHandle, name: str
    ) -> tuple[str | None, str | None, ModelParameters]:
        """Best-effort (template, system, parameters) of a remote model.

        Failures are logged and yield empty parts; they never abort a copy.
        """
        try:
            data = await server.show(name)
        except TransferError as e:
            logger.warning(
                "Could not read model metadata",
                extra={"model": name, "base_url": server.base_url, "error": str(e)},
            )
            return None, None, ModelParameters()
        return parts_from_show(data)

    async def remote_manifest(self, server: ServerHandle, name: str) -> Manifest:
        """Build a Manifest for a remote model from a single show call.

        Raises:
            ManifestUnavailableError: Show failed or the definition references no blobs.
        """
        data = await server.show(name)
        modelfile = data.get("modelfile")
        layers = extract_blob_layers(modelfile) if isinstance(modelfile, str) else []
        if not layers:
            raise ManifestUnavailableError(
                f"No blob references found in the definition of {name!r} on {server.base_url}"
            )
        template, system, parameters = parts_from_show(data)
        return Manifest(
            name=name,
            layers=tuple(layers),
            template=template,
            system=system,
            parameters=parameters,
        )
