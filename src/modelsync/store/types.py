"""Model store types.

A Manifest lists the content-addressed layers of one named/tagged model. Layers
and manifests are frozen pydantic models: once read they are never mutated.

On-disk manifest format:
    {
        "schemaVersion": 2,
        "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
        "config": {"mediaType": "...", "digest": "sha256:...", "size": 485},
        "layers": [
            {"mediaType": "application/vnd.ollama.image.model", "digest": "sha256:...", "size": 4661211424},
            ...
        ]
    }
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

MEDIA_TYPE_PREFIX = "application/vnd.ollama.image."
MEDIA_TYPE_MODEL = MEDIA_TYPE_PREFIX + "model"
MEDIA_TYPE_PROJECTOR = MEDIA_TYPE_PREFIX + "projector"
MEDIA_TYPE_ADAPTER = MEDIA_TYPE_PREFIX + "adapter"
MEDIA_TYPE_TEMPLATE = MEDIA_TYPE_PREFIX + "template"
MEDIA_TYPE_SYSTEM = MEDIA_TYPE_PREFIX + "system"
MEDIA_TYPE_PARAMS = MEDIA_TYPE_PREFIX + "params"

_DIGEST_PATTERN = re.compile(r"^[a-z0-9]+:[a-f0-9]+$")


def validate_digest(digest: str) -> str:
    """Return the digest if it has the ``<algo>:<hex>`` shape, else raise ValueError."""
    if not _DIGEST_PATTERN.match(digest):
        raise ValueError(f"Invalid digest {digest!r} (expected '<algo>:<hex>')")
    return digest


def digest_to_filename(digest: str) -> str:
    """``sha256:<hex>`` -> ``sha256-<hex>`` (blob file name)."""
    return validate_digest(digest).replace(":", "-", 1)


def filename_to_digest(filename: str) -> str:
    """``sha256-<hex>`` -> ``sha256:<hex>``."""
    return validate_digest(filename.replace("-", ":", 1))


class LayerKind(str, Enum):
    """Role of a layer in a model."""

    MODEL = "model"
    PROJECTOR = "projector"
    ADAPTER = "adapter"
    OTHER = "other"

    @classmethod
    def from_media_type(cls, media_type: str) -> LayerKind:
        """Classify a raw mediaType by prefix.

        Suffixed variants (e.g. ``application/vnd.ollama.image.model+q4``) keep
        their base kind.
        """
        for kind, prefix in (
            (cls.PROJECTOR, MEDIA_TYPE_PROJECTOR),
            (cls.ADAPTER, MEDIA_TYPE_ADAPTER),
            (cls.MODEL, MEDIA_TYPE_MODEL),
        ):
            if media_type.startswith(prefix):
                return kind
        return cls.OTHER

    @property
    def is_blob(self) -> bool:
        """Whether layers of this kind are transferred as blob files."""
        return self is not LayerKind.OTHER


class Layer(BaseModel):
    """One content-addressed component of a model."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    digest: str = Field(description="Content id, '<algo>:<hex>'")
    media_type: str = Field(default="", description="Raw mediaType from the manifest")
    kind: LayerKind = Field(default=LayerKind.OTHER)
    size: int = Field(default=0, ge=0, description="Size in bytes, 0 if unknown")

    @field_validator("digest")
    @classmethod
    def check_digest(cls, v: str) -> str:
        """Digest must be '<algo>:<hex>'."""
        return validate_digest(v)

    @classmethod
    def from_media_type(cls, digest: str, media_type: str, size: int = 0) -> Layer:
        """Build a layer, deriving its kind from the mediaType."""
        return cls(
            digest=digest,
            media_type=media_type,
            kind=LayerKind.from_media_type(media_type),
            size=size,
        )

    @property
    def filename(self) -> str:
        return digest_to_filename(self.digest)


class ModelParameters(BaseModel):
    """Ordered (name, value) runtime parameters of a model.

    Values are kept as the raw text the server rendered (``0.7``,
    ``"<|im_end|>"``). Repeated names (several ``stop`` entries) are kept as
    separate pairs in order.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    items: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_text(cls, text: str) -> ModelParameters:
        """Parse ``name value`` lines, split once on whitespace.

        Blank lines and lines without a value are skipped.
        """
        pairs: list[tuple[str, str]] = []
        for line in text.splitlines():
            parts = line.strip().split(None, 1)
            if len(parts) != 2:
                continue
            name, value = parts
            pairs.append((name, value.strip()))
        return cls(items=tuple(pairs))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ModelParameters:
        """Enumerate a JSON object; list values become one pair per element."""
        pairs: list[tuple[str, str]] = []
        for name, value in data.items():
            values = value if isinstance(value, list) else [value]
            for item in values:
                pairs.append((name, orjson.dumps(item).decode()))
        return cls(items=tuple(pairs))

    @classmethod
    def from_any(cls, data: Any) -> ModelParameters:
        """Normalize text, a JSON object, or nothing into parameters."""
        if data is None:
            return cls()
        if isinstance(data, str):
            return cls.from_text(data)
        if isinstance(data, Mapping):
            return cls.from_mapping(data)
        raise ValueError(f"Unsupported parameters type: {type(data).__name__}")

    def to_lines(self) -> str:
        return "\n".join(f"{name} {value}" for name, value in self.items)

    def to_request(self) -> dict[str, Any]:
        """Object form accepted by the create endpoint.

        JSON-decodable values are decoded, other values stay strings. Repeated
        names collapse into lists and ``stop`` is always a list.
        """
        result: dict[str, Any] = {}
        collapsed: set[str] = set()
        for name, raw in self.items:
            try:
                value = orjson.loads(raw)
            except orjson.JSONDecodeError:
                value = raw
            if name in collapsed:
                result[name].append(value)
            elif name in result:
                result[name] = [result[name], value]
                collapsed.add(name)
            elif name == "stop":
                result[name] = [value]
                collapsed.add(name)
            else:
                result[name] = value
        return result

    def __bool__(self) -> bool:
        return bool(self.items)

    def __len__(self) -> int:
        return len(self.items)


class Manifest(BaseModel):
    """Layer list plus optional metadata for one model."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = ""
    layers: tuple[Layer, ...] = ()
    template: str | None = None
    system: str | None = None
    parameters: ModelParameters = Field(default_factory=ModelParameters)

    @classmethod
    def from_json(cls, data: bytes | str, *, name: str = "") -> Manifest:
        """Parse an on-disk manifest document.

        Raises:
            ValueError: If the document is not JSON or its layers are malformed.
        """
        try:
            doc = orjson.loads(data)
        except orjson.JSONDecodeError as e:
            raise ValueError(f"Manifest is not valid JSON: {e}") from e
        if not isinstance(doc, dict) or not isinstance(doc.get("layers"), list):
            raise ValueError("Manifest has no 'layers' list")

        layers: list[Layer] = []
        for entry in doc["layers"]:
            if not isinstance(entry, dict) or "digest" not in entry:
                raise ValueError(f"Malformed layer entry: {entry!r}")
            try:
                layers.append(
                    Layer.from_media_type(
                        entry["digest"],
                        str(entry.get("mediaType", "")),
                        int(entry.get("size") or 0),
                    )
                )
            except (ValidationError, TypeError) as e:
                raise ValueError(f"Malformed layer entry: {entry!r}") from e
        return cls(name=name, layers=tuple(layers))

    @property
    def blob_layers(self) -> tuple[Layer, ...]:
        """Layers moved as blob files (model, projector, adapter), in manifest order."""
        return tuple(layer for layer in self.layers if layer.kind.is_blob)

    def layer_for(self, media_type: str) -> Layer | None:
        """First layer with exactly this mediaType."""
        for layer in self.layers:
            if layer.media_type == media_type:
                return layer
        return None

    def with_metadata(
        self,
        *,
        template: str | None,
        system: str | None,
        parameters: ModelParameters,
    ) -> Manifest:
        return self.model_copy(
            update={"template": template, "system": system, "parameters": parameters}
        )


def iter_digests(layers: Iterable[Layer]) -> list[str]:
    """Digests of the given layers, de-duplicated, first appearance kept."""
    seen: set[str] = set()
    result: list[str] = []
    for layer in layers:
        if layer.digest not in seen:
            seen.add(layer.digest)
            result.append(layer.digest)
    return result
