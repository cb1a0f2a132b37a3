"""Local model store: manifest/blob layout and model types."""

from modelsync.store.layout import LocalStore, has_tag, split_tag
from modelsync.store.types import (
    Layer,
    LayerKind,
    Manifest,
    ModelParameters,
    digest_to_filename,
    filename_to_digest,
    validate_digest,
)

__all__ = [
    "Layer",
    "LayerKind",
    "LocalStore",
    "Manifest",
    "ModelParameters",
    "digest_to_filename",
    "filename_to_digest",
    "has_tag",
    "split_tag",
    "validate_digest",
]
