"""
Copy orchestration.

A copy moves every blob layer of a model from a source to a destination and then
registers the model on the destination through its create endpoint:

    IDLE -> RESOLVING_MANIFEST -> per layer {CHECKING -> SKIPPING | TRANSFERRING}
         -> CREATING_MODEL -> DONE | FAILED

Layers run one after another. Strategy per layer depends on locality:
- local -> remote: local file -> throttle -> progress -> POST
- remote -> local: GET -> throttle -> progress -> staged file (removed on failure)
- remote -> remote: GET -> throttle -> BoundedPipe -> progress -> POST, with the
  download and upload running as two concurrent tasks; a failure on either side
  fails the pipe so the other side stops promptly

Re-running a copy is always safe: blobs the destination already has are skipped,
and the model only becomes visible once create reports success.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from modelsync.config import EngineConfig
from modelsync.errors import (
    ErrorKind,
    InvalidCopyRequestError,
    TransferCancelledError,
    TransferError,
)
from modelsync.manifest.resolver import ManifestResolver
from modelsync.remote.blob_client import RemoteBlobClient
from modelsync.remote.create import CreateRequest, ModelCreateStreamer
from modelsync.remote.server import ServerHandle
from modelsync.store.layout import LocalStore
from modelsync.store.types import LayerKind
from modelsync.streams.base import iter_chunks
from modelsync.streams.files import LocalBlobReader, StagedBlobWriter
from modelsync.streams.pipe import BoundedPipe
from modelsync.streams.progress import ProgressReporter
from modelsync.streams.throttle import ThrottledStream
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

if TYPE_CHECKING:
    from collections.abc import Coroutine, Iterable
    from pathlib import Path

    import aiohttp

    from modelsync.store.types import Layer, Manifest
    from modelsync.streams.base import AsyncReader

logger = logging.getLogger(__name__)

# (digest, leg, bytes_so_far, total, elapsed_s); leg is "download" or "upload"
ProgressListener = Callable[[str, str, int, int, float], None]


class CopyState(str, Enum):
    """Orchestrator state."""

    IDLE = "IDLE"
    RESOLVING_MANIFEST = "RESOLVING_MANIFEST"
    CHECKING = "CHECKING"
    SKIPPING = "SKIPPING"
    TRANSFERRING = "TRANSFERRING"
    CREATING_MODEL = "CREATING_MODEL"
    DONE = "DONE"
    FAILED = "FAILED"


_FILENAME_STEMS: dict[LayerKind, str] = {
    LayerKind.MODEL: "model",
    LayerKind.PROJECTOR: "projector",
    LayerKind.ADAPTER: "adapter",
}


def build_file_map(layers: Iterable[Layer]) -> dict[str, str]:
    """Map positional file names to digests for the create request.

    Per kind, the first layer is ``<kind>.gguf`` and later ones
    ``<kind>_1.gguf``, ``<kind>_2.gguf``, ... Layers of other kinds are skipped.
    """
    counts: dict[LayerKind, int] = {}
    files: dict[str, str] = {}
    for layer in layers:
        stem = _FILENAME_STEMS.get(layer.kind)
        if stem is None:
            continue
        index = counts.get(layer.kind, 0)
        counts[layer.kind] = index + 1
        filename = f"{stem}.gguf" if index == 0 else f"{stem}_{index}.gguf"
        files[filename] = layer.digest
    return files


@dataclass(frozen=True)
class CopyRequest:
    """Copy ``source_model`` at ``source`` to ``destination_model`` at ``destination``."""

    source: Location
    source_model: str
    destination: Location
    destination_model: str

    @classmethod
    def from_refs(cls, source_ref: str, destination_ref: str, models_dir: Path) -> CopyRequest:
        """Build a request from two model references.

        A destination that only names a server keeps the source model name.
        The destination name always carries a tag.
        """
        source, source_model = parse_model_ref(source_ref, models_dir)
        destination, destination_model = parse_model_ref(
            destination_ref, models_dir, default_model=source_model
        )
        return cls(source, source_model, destination, with_default_tag(destination_model))

    @property
    def topology(self) -> Topology:
        return topology_of(self.source, self.destination)


@dataclass
class CopyResult:
    """Outcome of one copy. FAILED results carry the error kind and message."""

    ok: bool
    state: CopyState
    source_model: str
    destination_model: str
    error_kind: ErrorKind | None = None
    error: str | None = None
    skipped: list[str] = field(default_factory=list)
    transferred: list[str] = field(default_factory=list)
    bytes_transferred: int = 0
    final_status: str = ""
    duration_s: float = 0.0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "state": self.state.value,
            "source_model": self.source_model,
            "destination_model": self.destination_model,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "skipped": list(self.skipped),
            "transferred": list(self.transferred),
            "bytes_transferred": self.bytes_transferred,
            "final_status": self.final_status,
            "duration_s": round(self.duration_s, 3),
        }


@dataclass
class _CopyRun:
    """Mutable bookkeeping for one copy in flight."""

    request: CopyRequest
    started: float
    state: CopyState = CopyState.IDLE
    skipped: list[str] = field(default_factory=list)
    transferred: list[str] = field(default_factory=list)
    bytes_transferred: int = 0
    final_status: str = ""
    active_pipe: BoundedPipe | None = None


class TransferOrchestrator:
    """Drives copies between local and remote model stores.

    Args:
        config: Store location, local server address and transfer settings.
        metrics: Prometheus metrics (a private registry if omitted).
        session: Shared aiohttp session for every server handle. When omitted,
            each copy opens and closes its own sessions.
        on_state: Called with (state, digest or None) on every transition.
        on_progress: Called with (digest, leg, bytes_so_far, total, elapsed_s).
        on_create_status: Called with each create status line.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        metrics: TransferMetrics | None = None,
        session: aiohttp.ClientSession | None = None,
        on_state: Callable[[CopyState, str | None], None] | None = None,
        on_progress: ProgressListener | None = None,
        on_create_status: Callable[[str], None] | None = None,
        _time_fn: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._metrics = metrics or TransferMetrics()
        self._session = session
        self._on_state = on_state
        self._on_progress = on_progress
        self._on_create_status = on_create_status
        self._time_fn = _time_fn or time.monotonic
        self._store = LocalStore(self._config.models_dir)
        self._resolver = ManifestResolver(self._store)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def metrics(self) -> TransferMetrics:
        return self._metrics

    @property
    def store(self) -> LocalStore:
        return self._store

    # =========================================================================
    # Public API
    # =========================================================================

    async def copy(
        self,
        request: CopyRequest,
        *,
        cancel_event: asyncio.Event | None = None,
        probe_servers: bool = False,
    ) -> CopyResult:
        """Run one copy to completion.

        Args:
            request: Source and destination model.
            cancel_event: Setting it aborts the copy with a CANCELLED result.
            probe_servers: Check every remote server's version endpoint first.

        Returns:
            CopyResult; never raises for transfer failures.

        Raises:
            asyncio.CancelledError: The calling task was cancelled. Partial
                files are removed and the active pipe failed before re-raising.
        """
        run = _CopyRun(request=request, started=self._time_fn())
        logger.info(
            "Copy started",
            extra={
                "source": str(request.source),
                "source_model": request.source_model,
                "destination": str(request.destination),
                "destination_model": request.destination_model,
            },
        )
        try:
            topology_of(request.source, request.destination)
            await self._run_with_token(self._execute(run, probe_servers), cancel_event, run)
        except TransferError as e:
            return self._failed(run, e)
        except asyncio.CancelledError:
            self._set_state(run, CopyState.FAILED)
            self._metrics.record_failure(ErrorKind.CANCELLED)
            logger.warning("Copy task cancelled", extra={"model": request.source_model})
            raise

        self._set_state(run, CopyState.DONE)
        self._metrics.record_completed()
        result = self._result(run, ok=True)
        logger.info(
            "Copy finished",
            extra={
                "model": request.destination_model,
                "transferred": len(result.transferred),
                "skipped": len(result.skipped),
                "bytes": result.bytes_transferred,
                "duration_s": round(result.duration_s, 3),
            },
        )
        return result

    async def copy_refs(
        self,
        source_ref: str,
        destination_ref: str,
        *,
        cancel_event: asyncio.Event | None = None,
        probe_servers: bool = False,
    ) -> CopyResult:
        """Copy between two model references (see parse_model_ref).

        A malformed reference yields a FAILED result with INVALID_REQUEST.
        """
        try:
            request = CopyRequest.from_refs(source_ref, destination_ref, self._config.models_dir)
        except ValueError as e:
            error = InvalidCopyRequestError(f"Invalid model reference: {e}")
            self._metrics.record_failure(error.kind)
            logger.error(
                "Copy rejected",
                extra={"source": source_ref, "destination": destination_ref, "error": str(error)},
            )
            return CopyResult(
                ok=False,
                state=CopyState.FAILED,
                source_model=source_ref,
                destination_model=destination_ref,
                error_kind=error.kind,
                error=str(error),
            )
        return await self.copy(request, cancel_event=cancel_event, probe_servers=probe_servers)

    # =========================================================================
    # State and results
    # =========================================================================

    def _set_state(self, run: _CopyRun, state: CopyState, digest: str | None = None) -> None:
        run.state = state
        if self._on_state is not None:
            self._on_state(state, digest)

    def _result(self, run: _CopyRun, *, ok: bool, error: TransferError | None = None) -> CopyResult:
        return CopyResult(
            ok=ok,
            state=run.state,
            source_model=run.request.source_model,
            destination_model=run.request.destination_model,
            error_kind=error.kind if error is not None else None,
            error=str(error) if error is not None else None,
            skipped=list(run.skipped),
            transferred=list(run.transferred),
            bytes_transferred=run.bytes_transferred,
            final_status=run.final_status,
            duration_s=self._time_fn() - run.started,
        )

    def _failed(self, run: _CopyRun, error: TransferError) -> CopyResult:
        failed_in = run.state
        self._set_state(run, CopyState.FAILED, error.digest)
        self._metrics.record_failure(error.kind)
        logger.error(
            "Copy failed",
            extra={
                "model": run.request.source_model,
                "error_kind": error.kind.value,
                "failed_in": failed_in.value,
                "digest": error.digest,
                "error": str(error),
            },
        )
        return self._result(run, ok=False, error=error)

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def _run_with_token(
        self,
        work_coro: Coroutine[Any, Any, None],
        cancel_event: asyncio.Event | None,
        run: _CopyRun,
    ) -> None:
        """Run the copy, aborting it when cancel_event is set.

        On cancellation the active pipe (if any) is failed with
        TransferCancelledError first, so both relay legs observe the terminal
        error, then the work task is cancelled to unblock network waits and
        remove partial files.
        """
        if cancel_event is None:
            await work_coro
            return
        if cancel_event.is_set():
            work_coro.close()
            raise TransferCancelledError("Copy cancelled before start")

        work = asyncio.ensure_future(work_coro)
        watcher = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
            if work.done():
                work.result()
                return

            cancelled = TransferCancelledError("Copy cancelled")
            if run.active_pipe is not None:
                await run.active_pipe.fail(cancelled)
            work.cancel()
            (outcome,) = await asyncio.gather(work, return_exceptions=True)
            if outcome is None:
                return
            if outcome is cancelled or isinstance(outcome, asyncio.CancelledError):
                raise cancelled
            raise cancelled from outcome
        except asyncio.CancelledError:
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            raise
        finally:
            watcher.cancel()

    # =========================================================================
    # Copy steps
    # =========================================================================

    async def _execute(self, run: _CopyRun, probe_servers: bool) -> None:
        request = run.request
        async with AsyncExitStack() as stack:
            handles: dict[str, ServerHandle] = {}

            def handle_for(base_url: str) -> ServerHandle:
                if base_url not in handles:
                    handle = ServerHandle(
                        base_url, session=self._session, config=self._config.transfer
                    )
                    stack.push_async_callback(handle.close)
                    handles[base_url] = handle
                return handles[base_url]

            if probe_servers:
                for location in (request.source, request.destination):
                    if isinstance(location, RemoteLocation):
                        await handle_for(location.base_url).ensure_available()

            self._set_state(run, CopyState.RESOLVING_MANIFEST)
            manifest = await self._resolve(request, handle_for)

            source_client = (
                RemoteBlobClient(handle_for(request.source.base_url), chunk_size=self._chunk_size)
                if isinstance(request.source, RemoteLocation)
                else None
            )
            destination_client = (
                RemoteBlobClient(
                    handle_for(request.destination.base_url), chunk_size=self._chunk_size
                )
                if isinstance(request.destination, RemoteLocation)
                else None
            )

            seen: set[str] = set()
            layers: list[Layer] = []
            for layer in manifest.blob_layers:
                if layer.digest in seen:
                    continue
                seen.add(layer.digest)
                layers.append(layer)
                await self._process_layer(run, layer, source_client, destination_client)

            self._set_state(run, CopyState.CREATING_MODEL)
            create_server = (
                destination_client.server
                if destination_client is not None
                else handle_for(self._config.local_server_url)
            )
            create_request = CreateRequest(
                model=request.destination_model,
                files=build_file_map(layers),
                template=manifest.template,
                system=manifest.system,
                parameters=manifest.parameters.to_request() or None,
            )
            run.final_status = await ModelCreateStreamer(create_server).create(
                create_request, on_status=self._on_create_status
            )

    @property
    def _chunk_size(self) -> int:
        return self._config.transfer.chunk_size

    async def _resolve(
        self, request: CopyRequest, handle_for: Callable[[str], ServerHandle]
    ) -> Manifest:
        if isinstance(request.source, LocalLocation):
            manifest = await asyncio.to_thread(
                self._resolver.local_manifest_with_metadata, request.source_model
            )
        else:
            manifest = await self._resolver.remote_manifest(
                handle_for(request.source.base_url), request.source_model
            )
        logger.info(
            "Manifest resolved",
            extra={
                "model": request.source_model,
                "layers": len(manifest.blob_layers),
                "parameters": len(manifest.parameters),
            },
        )
        return manifest

    async def _process_layer(
        self,
        run: _CopyRun,
        layer: Layer,
        source_client: RemoteBlobClient | None,
        destination_client: RemoteBlobClient | None,
    ) -> None:
        digest = layer.digest
        self._set_state(run, CopyState.CHECKING, digest)
        if destination_client is not None:
            present = await destination_client.exists(digest)
        else:
            present = await asyncio.to_thread(self._store.has_blob, digest)

        if present:
            self._set_state(run, CopyState.SKIPPING, digest)
            run.skipped.append(digest)
            self._metrics.record_skip()
            logger.info("Blob already present, skipping", extra={"digest": digest})
            return

        self._set_state(run, CopyState.TRANSFERRING, digest)
        task = TransferTask(
            digest=digest,
            size=layer.size,
            source=run.request.source,
            destination=run.request.destination,
        )
        logger.info(
            "Transferring blob",
            extra={"digest": digest, "size": layer.size, "direction": task.topology.value},
        )

        nbytes: int
        if task.topology is Topology.UPLOAD:
            assert destination_client is not None
            nbytes = await self._upload_local(task, destination_client)
        elif task.topology is Topology.DOWNLOAD:
            assert source_client is not None
            nbytes = await self._download_to_local(task, source_client)
        else:
            assert source_client is not None and destination_client is not None
            nbytes = await self._relay(run, task, source_client, destination_client)

        run.transferred.append(digest)
        run.bytes_transferred += nbytes
        self._metrics.record_transfer(task.topology, nbytes)
        logger.info(
            "Blob transferred",
            extra={"digest": digest, "bytes": nbytes, "direction": task.topology.value},
        )

    def _progress(self, source: AsyncReader, digest: str, leg: str, total: int) -> ProgressReporter:
        callback = None
        if self._on_progress is not None:
            listener = self._on_progress

            def callback(done: int, size: int, elapsed: float) -> None:
                listener(digest, leg, done, size, elapsed)

        return ProgressReporter(
            source,
            total,
            callback,
            interval_s=self._config.transfer.progress_interval_s,
        )

    def _throttle(self, source: AsyncReader) -> ThrottledStream:
        return ThrottledStream(source, self._config.transfer.bandwidth_limit)

    # =========================================================================
    # Strategies
    # =========================================================================

    async def _upload_local(self, task: TransferTask, destination: RemoteBlobClient) -> int:
        """local -> remote: file -> throttle -> progress -> POST."""
        path = self._store.blob_path(task.digest)
        size = task.size or await asyncio.to_thread(_file_size, path)
        async with LocalBlobReader(path, digest=task.digest) as reader:
            progress = self._progress(self._throttle(reader), task.digest, "upload", size)
            await destination.upload(task.digest, progress, size)
        return progress.bytes_so_far

    async def _download_to_local(self, task: TransferTask, source: RemoteBlobClient) -> int:
        """remote -> local: GET -> throttle -> progress -> staged file -> rename."""
        async with source.download(task.digest) as download:
            total = download.size or task.size
            progress = self._progress(self._throttle(download), task.digest, "download", total)
            async with StagedBlobWriter(
                self._store.blob_path(task.digest),
                self._store.staging_path(task.digest),
                task.digest,
                verify=self._config.transfer.verify_downloads,
            ) as writer:
                async for chunk in iter_chunks(progress, self._chunk_size):
                    await writer.write(chunk)
                await writer.commit()
        return progress.bytes_so_far

    async def _relay(
        self,
        run: _CopyRun,
        task: TransferTask,
        source: RemoteBlobClient,
        destination: RemoteBlobClient,
    ) -> int:
        """remote -> remote through a BoundedPipe, download and upload concurrently."""
        pipe = BoundedPipe(self._config.transfer.max_buffer_bytes)
        run.active_pipe = pipe
        loop = asyncio.get_running_loop()
        size_known: asyncio.Future[int] = loop.create_future()
        digest = task.digest

        async def download_leg() -> None:
            try:
                async with source.download(digest) as download:
                    size_known.set_result(download.size or task.size)
                    progress = self._progress(
                        self._throttle(download), digest, "download", download.size
                    )
                    async for chunk in iter_chunks(progress, self._chunk_size):
                        await pipe.write(chunk)
                        self._metrics.set_pipe_buffered(pipe.buffered_bytes)
                await pipe.complete_writing()
            except asyncio.CancelledError:
                await pipe.fail(TransferCancelledError("Download cancelled", digest=digest))
                raise
            except Exception as e:
                await pipe.fail(e)
                raise

        async def upload_leg(size: int) -> int:
            progress = self._progress(pipe, digest, "upload", size)
            try:
                await destination.upload(digest, progress, size)
            except asyncio.CancelledError:
                await pipe.fail(TransferCancelledError("Upload cancelled", digest=digest))
                raise
            except Exception as e:
                await pipe.fail(e)
                raise
            return progress.bytes_so_far

        download_task = asyncio.create_task(download_leg())
        upload_task: asyncio.Task[int] | None = None
        try:
            await asyncio.wait({download_task, size_known}, return_when=asyncio.FIRST_COMPLETED)
            if size_known.done() and not pipe.failed:
                upload_task = asyncio.create_task(upload_leg(size_known.result()))
            legs = [t for t in (download_task, upload_task) if t is not None]
            _, pending = await asyncio.wait(legs, return_when=asyncio.FIRST_EXCEPTION)
            # The surviving leg may be blocked on network I/O, not on the pipe
            for t in pending:
                t.cancel()
            # Both legs can fail before the wait returns; collect every outcome
            await asyncio.gather(*legs, return_exceptions=True)
        except asyncio.CancelledError:
            await pipe.fail(TransferCancelledError("Relay cancelled", digest=digest))
            started = [t for t in (download_task, upload_task) if t is not None]
            for t in started:
                t.cancel()
            await asyncio.gather(*started, return_exceptions=True)
            raise
        finally:
            run.active_pipe = None
            self._metrics.set_pipe_buffered(0)

        if pipe.error is not None:
            # The first failure on either leg is the root cause
            if isinstance(pipe.error, Exception):
                raise pipe.error
            raise TransferCancelledError("Relay cancelled", digest=digest)
        download_task.result()
        assert upload_task is not None
        return upload_task.result()


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0
