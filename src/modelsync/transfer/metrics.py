"""
Prometheus metrics for blob transfers.

Low-cardinality labels only: ``direction`` (upload/download/relay) and ``kind``
(error kind). Never label by digest, model name or server address.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from modelsync.errors import ErrorKind
    from modelsync.transfer.location import Topology

# Forbidden labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset({"digest", "model", "server", "base_url", "url", "path"})


class TransferMetrics:
    """
    Prometheus metrics for the transfer engine.

    Metric names:
    - modelsync_blobs_transferred_total{direction}
    - modelsync_blobs_skipped_total
    - modelsync_bytes_transferred_total{direction}
    - modelsync_copy_failures_total{kind}
    - modelsync_copies_completed_total
    - modelsync_pipe_buffered_bytes

    Usage:
        registry = CollectorRegistry()
        metrics = TransferMetrics(registry=registry)
        # generate_latest(registry) -> bytes for a /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Initialize metrics.

        Args:
            registry: Prometheus CollectorRegistry. If None, a private registry is used.
        """
        self._registry = registry or CollectorRegistry()

        # === Blob metrics ===
        self._blobs_transferred = Counter(
            "modelsync_blobs_transferred",
            "Blobs moved to a destination",
            ["direction"],
            registry=self._registry,
        )
        self._blobs_skipped = Counter(
            "modelsync_blobs_skipped",
            "Blobs skipped because the destination already had them",
            registry=self._registry,
        )
        self._bytes_transferred = Counter(
            "modelsync_bytes_transferred",
            "Blob bytes moved to a destination",
            ["direction"],
            registry=self._registry,
        )

        # === Copy metrics ===
        self._copy_failures = Counter(
            "modelsync_copy_failures",
            "Copies that ended in FAILED, by error kind",
            ["kind"],
            registry=self._registry,
        )
        self._copies_completed = Counter(
            "modelsync_copies_completed",
            "Copies that ended in DONE",
            registry=self._registry,
        )

        # === Pipe metrics ===
        self._pipe_buffered_bytes = Gauge(
            "modelsync_pipe_buffered_bytes",
            "Bytes buffered in the active remote-to-remote pipe (sampled)",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_transfer(self, direction: Topology, nbytes: int) -> None:
        self._blobs_transferred.labels(direction=direction.value).inc()
        self._bytes_transferred.labels(direction=direction.value).inc(nbytes)

    def record_skip(self) -> None:
        self._blobs_skipped.inc()

    def record_failure(self, kind: ErrorKind) -> None:
        self._copy_failures.labels(kind=kind.value).inc()

    def record_completed(self) -> None:
        self._copies_completed.inc()

    def set_pipe_buffered(self, nbytes: int) -> None:
        self._pipe_buffered_bytes.set(nbytes)
