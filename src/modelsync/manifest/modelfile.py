"""Parsing of rendered model definitions (the ``modelfile`` field of /api/show).

A rendered definition references blobs by their path on the source host:

    FROM /usr/share/ollama/.ollama/models/blobs/sha256-6a0746a1ec1a...
    ADAPTER /usr/share/ollama/.ollama/models/blobs/sha256-9f2c41e0...
    TEMPLATE "{{ .Prompt }}"
    PARAMETER stop "<|im_end|>"

Only the digest embedded in the path matters; the path itself is meaningless on
any other host.
"""

from __future__ import annotations

import re
from typing import Any

from modelsync.store.types import (
    MEDIA_TYPE_ADAPTER,
    MEDIA_TYPE_MODEL,
    Layer,
    LayerKind,
    ModelParameters,
)

BLOB_REF_PATTERN = re.compile(r"sha256-([a-f0-9]{64})")

_INSTRUCTION_KINDS: dict[str, LayerKind] = {
    "FROM": LayerKind.MODEL,
    "ADAPTER": LayerKind.ADAPTER,
}
_KIND_MEDIA_TYPES: dict[LayerKind, str] = {
    LayerKind.MODEL: MEDIA_TYPE_MODEL,
    LayerKind.ADAPTER: MEDIA_TYPE_ADAPTER,
}


def _iter_blob_refs(text: str) -> list[tuple[str, LayerKind]]:
    refs: list[tuple[str, LayerKind]] = []
    seen: set[str] = set()
    for line in text.splitlines():
        parts = line.strip().split(None, 1)
        if len(parts) != 2:
            continue
        kind = _INSTRUCTION_KINDS.get(parts[0].upper())
        if kind is None:
            continue
        for hexdigest in BLOB_REF_PATTERN.findall(parts[1]):
            digest = f"sha256:{hexdigest}"
            if digest not in seen:
                seen.add(digest)
                refs.append((digest, kind))
    return refs


def extract_blob_digests(text: str) -> list[str]:
    """Digests referenced by FROM/ADAPTER lines, de-duplicated, in order of first appearance.

    Args:
        text: Rendered model definition.

    Returns:
        Canonical ``sha256:<hex>`` digests.
    """
    return [digest for digest, _ in _iter_blob_refs(text)]


def extract_blob_layers(text: str) -> list[Layer]:
    """Like extract_blob_digests, but classified: FROM blobs are model layers,
    ADAPTER blobs adapter layers. Sizes are unknown (0)."""
    return [
        Layer(digest=digest, media_type=_KIND_MEDIA_TYPES[kind], kind=kind)
        for digest, kind in _iter_blob_refs(text)
    ]


def parts_from_show(data: dict[str, Any]) -> tuple[str | None, str | None, ModelParameters]:
    """Pull (template, system, parameters) out of a show response.

    ``parameters`` may be free text or a JSON object; both normalize to
    ModelParameters. Anything unusable becomes empty.
    """
    template = data.get("template")
    system = data.get("system")
    try:
        parameters = ModelParameters.from_any(data.get("parameters"))
    except ValueError:
        parameters = ModelParameters()
    return (
        template if isinstance(template, str) and template else None,
        system if isinstance(system, str) and system else None,
        parameters,
    )
