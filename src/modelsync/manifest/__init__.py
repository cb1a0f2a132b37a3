"""Manifest resolution and model definition parsing."""

from modelsync.manifest.modelfile import (
    extract_blob_digests,
    extract_blob_layers,
    parts_from_show,
)
from modelsync.manifest.resolver import ManifestResolver

__all__ = [
    "ManifestResolver",
    "extract_blob_digests",
    "extract_blob_layers",
    "parts_from_show",
]
