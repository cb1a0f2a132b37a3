"""Copy orchestration: locations, strategies, metrics."""

from modelsync.transfer.location import (
    LocalLocation,
    Location,
    RemoteLocation,
    Topology,
    TransferTask,
    parse_model_ref,
    topology_of,
    with_default_tag,
)
from modelsync.transfer.metrics import TransferMetrics
from modelsync.transfer.orchestrator import (
    CopyRequest,
    CopyResult,
    CopyState,
    TransferOrchestrator,
    build_file_map,
)

__all__ = [
    "CopyRequest",
    "CopyResult",
    "CopyState",
    "LocalLocation",
    "Location",
    "RemoteLocation",
    "Topology",
    "TransferMetrics",
    "TransferOrchestrator",
    "TransferTask",
    "build_file_map",
    "parse_model_ref",
    "topology_of",
    "with_default_tag",
]
