"""End-to-end copy tests against in-process fake servers."""

from __future__ import annotations

import asyncio
import gc
from pathlib import Path
from typing import Any

import pytest
from aiohttp.test_utils import TestServer

from modelsync.config import EngineConfig, TransferConfig
from modelsync.errors import ErrorKind, TransferError
from modelsync.store.types import Layer, LayerKind
from modelsync.transfer.location import LocalLocation, RemoteLocation, Topology
from modelsync.transfer.orchestrator import (
    CopyRequest,
    CopyResult,
    CopyState,
    TransferOrchestrator,
    build_file_map,
)

from tests.fake_server import FakeInferenceServer, server_url, sha256_digest, write_local_model


def _hex_digest(i: int) -> str:
    return f"sha256:{i:064x}"


def _blob_files(models_dir: Path) -> list[str]:
    blobs = models_dir / "blobs"
    return sorted(p.name for p in blobs.iterdir()) if blobs.exists() else []


class TestBuildFileMap:
    """Positional file names for the create request."""

    def test_names_per_kind(self) -> None:
        layers = [
            Layer(digest=_hex_digest(1), kind=LayerKind.MODEL),
            Layer(digest=_hex_digest(2), kind=LayerKind.MODEL),
            Layer(digest=_hex_digest(3), kind=LayerKind.PROJECTOR),
            Layer(digest=_hex_digest(4), kind=LayerKind.ADAPTER),
            Layer(digest=_hex_digest(5), kind=LayerKind.OTHER),
            Layer(digest=_hex_digest(6), kind=LayerKind.MODEL),
        ]
        assert build_file_map(layers) == {
            "model.gguf": _hex_digest(1),
            "model_1.gguf": _hex_digest(2),
            "projector.gguf": _hex_digest(3),
            "adapter.gguf": _hex_digest(4),
            "model_2.gguf": _hex_digest(6),
        }

    def test_empty(self) -> None:
        assert build_file_map([]) == {}


class TestCopyRequest:
    """Requests built from model references."""

    def test_destination_server_only(self, tmp_path: Path) -> None:
        """A bare server destination keeps the source model name, tagged."""
        request = CopyRequest.from_refs("llama3", "http://10.0.0.5:11434", tmp_path)
        assert request.source == LocalLocation(tmp_path)
        assert request.source_model == "llama3"
        assert request.destination == RemoteLocation("http://10.0.0.5:11434")
        assert request.destination_model == "llama3:latest"
        assert request.topology is Topology.UPLOAD

    def test_remote_to_local(self, tmp_path: Path) -> None:
        request = CopyRequest.from_refs("http://a:11434/llava:13b", "my-llava", tmp_path)
        assert request.topology is Topology.DOWNLOAD
        assert request.destination_model == "my-llava:latest"

    def test_result_to_dict(self) -> None:
        result = CopyResult(
            ok=False,
            state=CopyState.FAILED,
            source_model="a",
            destination_model="b:latest",
            error_kind=ErrorKind.TRANSFER_IO,
            error="boom",
            duration_s=1.23456,
        )
        data = result.to_dict()
        assert data["state"] == "FAILED"
        assert data["error_kind"] == "TRANSFER_IO"
        assert data["duration_s"] == 1.235
        assert result.exit_code == 1


class TestUpload:
    """local -> remote."""

    @pytest.mark.asyncio
    async def test_copy_then_rerun_is_idempotent(
        self, models_dir: Path, fake_server: FakeInferenceServer
    ) -> None:
        """The second copy skips every blob and still creates the model."""
        data = b"weights" * 10_000
        digests = write_local_model(
            models_dir,
            "llama3",
            "latest",
            [data],
            template="{{ .Prompt }}",
            system="be brief",
            params={"stop": ["<|eot_id|>"], "temperature": 0.5},
        )
        states: list[CopyState] = []
        orchestrator = TransferOrchestrator(
            EngineConfig(models_dir=models_dir),
            on_state=lambda state, digest: states.append(state),
        )

        async with TestServer(fake_server.app()) as server:
            destination = f"{server_url(server)}/llama3-copy"
            first = await orchestrator.copy_refs("llama3", destination)
            assert first.ok, first.error
            assert first.transferred == digests
            assert first.skipped == []
            assert first.bytes_transferred == len(data)
            assert first.final_status == "success"
            assert fake_server.calls["HEAD"] == 1
            assert fake_server.calls["POST"] == 1
            assert fake_server.calls["GET"] == 0
            assert fake_server.calls["CREATE"] == 1

            second = await orchestrator.copy_refs("llama3", destination)

        assert second.ok, second.error
        assert second.transferred == []
        assert second.skipped == digests
        assert fake_server.calls["HEAD"] == 2
        assert fake_server.calls["POST"] == 1
        assert fake_server.calls["CREATE"] == 2

        assert fake_server.blobs[digests[0]] == data
        assert fake_server.created[0] == {
            "model": "llama3-copy:latest",
            "files": {"model.gguf": digests[0]},
            "template": "{{ .Prompt }}",
            "system": "be brief",
            "parameters": {"stop": ["<|eot_id|>"], "temperature": 0.5},
        }
        assert states[:5] == [
            CopyState.RESOLVING_MANIFEST,
            CopyState.CHECKING,
            CopyState.TRANSFERRING,
            CopyState.CREATING_MODEL,
            CopyState.DONE,
        ]
        assert states[5:] == [
            CopyState.RESOLVING_MANIFEST,
            CopyState.CHECKING,
            CopyState.SKIPPING,
            CopyState.CREATING_MODEL,
            CopyState.DONE,
        ]

        registry = orchestrator.metrics.registry
        assert registry.get_sample_value(
            "modelsync_blobs_transferred_total", {"direction": "upload"}
        ) == 1
        assert registry.get_sample_value("modelsync_blobs_skipped_total") == 1
        assert registry.get_sample_value("modelsync_copies_completed_total") == 2

    @pytest.mark.asyncio
    async def test_progress_reported(
        self, models_dir: Path, fake_server: FakeInferenceServer
    ) -> None:
        data = b"p" * 50_000
        (digest,) = write_local_model(models_dir, "m", "latest", [data])
        events: list[tuple[str, str, int, int]] = []
        orchestrator = TransferOrchestrator(
            EngineConfig(models_dir=models_dir),
            on_progress=lambda d, leg, done, total, elapsed: events.append((d, leg, done, total)),
        )
        async with TestServer(fake_server.app()) as server:
            result = await orchestrator.copy_refs("m:latest", server_url(server))
        assert result.ok, result.error
        assert events[-1] == (digest, "upload", len(data), len(data))

    @pytest.mark.asyncio
    async def test_missing_local_model(
        self, models_dir: Path, fake_server: FakeInferenceServer
    ) -> None:
        orchestrator = TransferOrchestrator(EngineConfig(models_dir=models_dir))
        async with TestServer(fake_server.app()) as server:
            result = await orchestrator.copy_refs("ghost", server_url(server))
        assert not result.ok
        assert result.error_kind is ErrorKind.MANIFEST_UNAVAILABLE
        assert result.state is CopyState.FAILED
        assert fake_server.calls["HEAD"] == 0

    @pytest.mark.asyncio
    async def test_blob_check_failure(
        self, models_dir: Path, fake_server: FakeInferenceServer
    ) -> None:
        write_local_model(models_dir, "m", "latest", [b"w"])
        fake_server.head_status = 500
        orchestrator = TransferOrchestrator(EngineConfig(models_dir=models_dir))
        async with TestServer(fake_server.app()) as server:
            result = await orchestrator.copy_refs("m", server_url(server))
        assert result.error_kind is ErrorKind.BLOB_CHECK
        assert fake_server.calls["POST"] == 0
        assert fake_server.calls["CREATE"] == 0

    @pytest.mark.asyncio
    async def test_create_failure(
        self, models_dir: Path, fake_server: FakeInferenceServer
    ) -> None:
        """Blobs stay uploaded, but the copy fails when create reports an error."""
        (digest,) = write_local_model(models_dir, "m", "latest", [b"w" * 100])
        fake_server.create_statuses = [
            {"status": "parsing GGUF"},
            {"error": "unsupported model architecture"},
        ]
        orchestrator = TransferOrchestrator(EngineConfig(models_dir=models_dir))
        async with TestServer(fake_server.app()) as server:
            result = await orchestrator.copy_refs("m", server_url(server))
        assert result.error_kind is ErrorKind.CREATE_FAILURE
        assert "unsupported model architecture" in (result.error or "")
        assert result.transferred == [digest]
        assert digest in fake_server.blobs
        assert orchestrator.metrics.registry.get_sample_value(
            "modelsync_copy_failures_total", {"kind": "CREATE_FAILURE"}
        ) == 1

    @pytest.mark.asyncio
    async def test_probe_unavailable_server(
        self, models_dir: Path, fake_server: FakeInferenceServer
    ) -> None:
        write_local_model(models_dir, "m", "latest", [b"w"])
        fake_server.version_status = 503
        orchestrator = TransferOrchestrator(EngineConfig(models_dir=models_dir))
        async with TestServer(fake_server.app()) as server:
            result = await orchestrator.copy_refs("m", server_url(server), probe_servers=True)
        assert result.error_kind is ErrorKind.SERVER_UNAVAILABLE
        assert fake_server.calls["HEAD"] == 0

    @pytest.mark.asyncio
    async def test_local_to_local_rejected(self, models_dir: Path) -> None:
        orchestrator = TransferOrchestrator(EngineConfig(models_dir=models_dir))
        result = await orchestrator.copy_refs("a", "b")
        assert not result.ok
        assert result.error_kind is ErrorKind.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_malformed_reference_rejected(self, models_dir: Path) -> None:
        """A server reference without a model name yields a result, not an exception."""
        orchestrator = TransferOrchestrator(EngineConfig(models_dir=models_dir))
        result = await orchestrator.copy_refs("http://10.0.0.5:11434", "copy")
        assert not result.ok
        assert result.state is CopyState.FAILED
        assert result.error_kind is ErrorKind.INVALID_REQUEST
        assert "No model name" in (result.error or "")
        assert result.exit_code == 1
        assert orchestrator.metrics.registry.get_sample_value(
            "modelsync_copy_failures_total", {"kind": "INVALID_REQUEST"}
        ) == 1

    @pytest.mark.asyncio
    async def test_undecodable_template_fails_copy(
        self, models_dir: Path, fake_server: FakeInferenceServer
    ) -> None:
        write_local_model(models_dir, "m", "latest", [b"w"], template="tpl")
        template_blob = models_dir / "blobs" / sha256_digest(b"tpl").replace(":", "-")
        template_blob.write_bytes(b"\xff\xfe")
        orchestrator = TransferOrchestrator(EngineConfig(models_dir=models_dir))
        async with TestServer(fake_server.app()) as server:
            result = await orchestrator.copy_refs("m", server_url(server))
        assert result.state is CopyState.FAILED
        assert result.error_kind is ErrorKind.MANIFEST_UNAVAILABLE
        assert fake_server.calls["HEAD"] == 0
        assert fake_server.calls["CREATE"] == 0


class TestDownload:
    """remote -> local."""

    @pytest.mark.asyncio
    async def test_download_and_create_locally(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        """Blobs land in the local store; the local server registers the model."""
        weights, projector = b"w" * 30_000, b"p" * 5_000
        digests = fake_server.add_model("llava:latest", [weights, projector], system="look")
        second_server.require_blobs_for_create = False

        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as local,
        ):
            config = EngineConfig(models_dir=models_dir, local_server_url=server_url(local))
            result = await TransferOrchestrator(config).copy_refs(
                f"{server_url(source)}/llava:latest", "llava-local"
            )

        assert result.ok, result.error
        assert result.transferred == digests
        assert _blob_files(models_dir) == sorted(d.replace(":", "-") for d in digests)
        assert (models_dir / "blobs" / digests[0].replace(":", "-")).read_bytes() == weights
        assert second_server.created == [
            {
                "model": "llava-local:latest",
                "files": {"model.gguf": digests[0], "model_1.gguf": digests[1]},
                "system": "look",
            }
        ]

    @pytest.mark.asyncio
    async def test_present_blob_skipped(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        (digest,) = fake_server.add_model("m:latest", [b"have it"])
        (models_dir / "blobs").mkdir()
        (models_dir / "blobs" / digest.replace(":", "-")).write_bytes(b"have it")
        second_server.require_blobs_for_create = False

        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as local,
        ):
            config = EngineConfig(models_dir=models_dir, local_server_url=server_url(local))
            result = await TransferOrchestrator(config).copy_refs(
                f"{server_url(source)}/m:latest", "m"
            )
        assert result.ok, result.error
        assert result.skipped == [digest]
        assert fake_server.calls["GET"] == 0

    @pytest.mark.asyncio
    async def test_interrupted_download_leaves_no_partial(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        fake_server.add_model("m:latest", [b"x" * 20_000])
        fake_server.fail_download_after = 4096

        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as local,
        ):
            config = EngineConfig(models_dir=models_dir, local_server_url=server_url(local))
            result = await TransferOrchestrator(config).copy_refs(
                f"{server_url(source)}/m:latest", "m"
            )
        assert result.error_kind is ErrorKind.TRANSFER_IO
        assert _blob_files(models_dir) == []
        assert second_server.calls["CREATE"] == 0

    @pytest.mark.asyncio
    async def test_cancel_removes_partial(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        """Cancelling mid-download yields CANCELLED and no staged file."""
        fake_server.add_model("m:latest", [b"y" * 20_000])
        fake_server.stall_download_after = 4096
        cancel = asyncio.Event()
        partial_seen = asyncio.Event()

        def on_progress(digest: str, leg: str, done: int, total: int, elapsed: float) -> None:
            if done >= 4096:
                partial_seen.set()

        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as local,
        ):
            config = EngineConfig(
                models_dir=models_dir,
                local_server_url=server_url(local),
                transfer=TransferConfig(chunk_size=1024, progress_interval_s=0),
            )
            orchestrator = TransferOrchestrator(config, on_progress=on_progress)
            try:
                copy = asyncio.create_task(
                    orchestrator.copy_refs(
                        f"{server_url(source)}/m:latest", "m", cancel_event=cancel
                    )
                )
                await asyncio.wait_for(partial_seen.wait(), timeout=5)
                assert any(name.endswith(".partial") for name in _blob_files(models_dir))
                cancel.set()
                result = await asyncio.wait_for(copy, timeout=5)
            finally:
                fake_server.stall_release.set()

        assert result.error_kind is ErrorKind.CANCELLED
        assert _blob_files(models_dir) == []
        assert second_server.calls["CREATE"] == 0


class TestRelay:
    """remote -> remote through the bounded pipe."""

    @pytest.mark.asyncio
    async def test_relay_with_small_buffer(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        """A blob many times the buffer size streams through intact."""
        weights = bytes(range(256)) * 1200
        adapter = b"lora" * 3000
        digests = fake_server.add_model(
            "base:latest",
            [weights],
            adapter_blobs=[adapter],
            parameters='stop "<|end|>"\ntemperature 0.3',
        )
        config = EngineConfig(
            models_dir=models_dir,
            transfer=TransferConfig(max_buffer_bytes=16 * 1024, chunk_size=4096),
        )
        orchestrator = TransferOrchestrator(config)

        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as destination,
        ):
            result = await orchestrator.copy_refs(
                f"{server_url(source)}/base:latest", f"{server_url(destination)}/copy:v1"
            )

        assert result.ok, result.error
        assert second_server.blobs[digests[0]] == weights
        assert second_server.blobs[digests[1]] == adapter
        assert result.bytes_transferred == len(weights) + len(adapter)
        assert second_server.created == [
            {
                "model": "copy:v1",
                "files": {"model.gguf": digests[0], "adapter.gguf": digests[1]},
                "parameters": {"stop": ["<|end|>"], "temperature": 0.3},
            }
        ]
        assert _blob_files(models_dir) == []
        registry = orchestrator.metrics.registry
        assert registry.get_sample_value(
            "modelsync_bytes_transferred_total", {"direction": "relay"}
        ) == len(weights) + len(adapter)
        assert registry.get_sample_value("modelsync_pipe_buffered_bytes") == 0

    @pytest.mark.asyncio
    async def test_copy_then_rerun_is_idempotent(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        """The second relay only checks the destination and registers the model again."""
        (digest,) = fake_server.add_model("m:latest", [b"r" * 30_000])
        orchestrator = TransferOrchestrator(EngineConfig(models_dir=models_dir))

        def counts() -> tuple[int, int, int, int]:
            return (
                second_server.calls["HEAD"],
                fake_server.calls["GET"],
                second_server.calls["POST"],
                second_server.calls["CREATE"],
            )

        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as destination,
        ):
            src = f"{server_url(source)}/m:latest"
            first = await orchestrator.copy_refs(src, server_url(destination))
            assert first.ok, first.error
            assert first.transferred == [digest]
            assert counts() == (1, 1, 1, 1)

            second = await orchestrator.copy_refs(src, server_url(destination))

        assert second.ok, second.error
        assert second.skipped == [digest]
        assert second.transferred == []
        assert second.bytes_transferred == 0
        assert counts() == (2, 1, 1, 2)

    @pytest.mark.asyncio
    async def test_source_failure_propagates(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        """A dropped download aborts the upload; nothing is registered."""
        (digest,) = fake_server.add_model("m:latest", [b"z" * 50_000])
        fake_server.fail_download_after = 8192
        config = EngineConfig(
            models_dir=models_dir,
            transfer=TransferConfig(max_buffer_bytes=4096, chunk_size=1024),
        )

        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as destination,
        ):
            result = await asyncio.wait_for(
                TransferOrchestrator(config).copy_refs(
                    f"{server_url(source)}/m:latest", server_url(destination)
                ),
                timeout=10,
            )

        assert result.error_kind is ErrorKind.TRANSFER_IO
        assert result.error is not None
        assert digest not in second_server.blobs
        assert second_server.calls["CREATE"] == 0

    @pytest.mark.asyncio
    async def test_destination_rejects_digest(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        fake_server.add_model("m:latest", [b"q" * 10_000])
        second_server.upload_status = 400

        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as destination,
        ):
            result = await asyncio.wait_for(
                TransferOrchestrator(EngineConfig(models_dir=models_dir)).copy_refs(
                    f"{server_url(source)}/m:latest", server_url(destination)
                ),
                timeout=10,
            )

        assert result.error_kind is ErrorKind.DIGEST_MISMATCH
        assert "same version" in (result.error or "")
        assert second_server.calls["CREATE"] == 0

    @pytest.mark.asyncio
    async def test_early_upload_rejection_collects_both_legs(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        """When both legs fail, neither task's exception is left unretrieved."""
        (digest,) = fake_server.add_model("m:latest", [bytes(range(256)) * 8192])
        second_server.upload_status = 500
        second_server.reject_upload_unread = True
        config = EngineConfig(
            models_dir=models_dir,
            transfer=TransferConfig(max_buffer_bytes=8192, chunk_size=4096),
        )
        loop = asyncio.get_running_loop()
        contexts: list[dict[str, Any]] = []
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, context: contexts.append(context))
        try:
            async with (
                TestServer(fake_server.app()) as source,
                TestServer(second_server.app()) as destination,
            ):
                result = await asyncio.wait_for(
                    TransferOrchestrator(config).copy_refs(
                        f"{server_url(source)}/m:latest", server_url(destination)
                    ),
                    timeout=10,
                )
            gc.collect()
            await asyncio.sleep(0)
        finally:
            loop.set_exception_handler(previous_handler)

        assert result.error_kind is ErrorKind.TRANSFER_IO
        assert digest not in second_server.blobs
        assert second_server.calls["CREATE"] == 0
        leaked = [c for c in contexts if isinstance(c.get("exception"), TransferError)]
        assert leaked == []

    @pytest.mark.asyncio
    async def test_cancel_during_relay(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        """Setting the token stops both legs promptly with a CANCELLED result."""
        (digest,) = fake_server.add_model("m:latest", [b"c" * 40_000])
        fake_server.stall_download_after = 8192
        cancel = asyncio.Event()
        states: list[CopyState] = []

        def on_state(state: CopyState, layer_digest: str | None) -> None:
            states.append(state)
            if state is CopyState.TRANSFERRING:
                asyncio.get_running_loop().call_later(0.2, cancel.set)

        config = EngineConfig(
            models_dir=models_dir,
            transfer=TransferConfig(max_buffer_bytes=4096, chunk_size=1024),
        )
        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as destination,
        ):
            try:
                result = await asyncio.wait_for(
                    TransferOrchestrator(config, on_state=on_state).copy_refs(
                        f"{server_url(source)}/m:latest",
                        server_url(destination),
                        cancel_event=cancel,
                    ),
                    timeout=10,
                )
            finally:
                fake_server.stall_release.set()

        assert result.error_kind is ErrorKind.CANCELLED
        assert states[-1] is CopyState.FAILED
        assert digest not in second_server.blobs
        assert second_server.calls["CREATE"] == 0

    @pytest.mark.asyncio
    async def test_already_cancelled(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        fake_server.add_model("m:latest", [b"w"])
        cancel = asyncio.Event()
        cancel.set()
        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as destination,
        ):
            result = await TransferOrchestrator(EngineConfig(models_dir=models_dir)).copy_refs(
                f"{server_url(source)}/m:latest", server_url(destination), cancel_event=cancel
            )
        assert result.error_kind is ErrorKind.CANCELLED
        assert fake_server.calls["SHOW"] == 0

    @pytest.mark.asyncio
    async def test_partial_failure_rerun_resumes(
        self,
        models_dir: Path,
        fake_server: FakeInferenceServer,
        second_server: FakeInferenceServer,
    ) -> None:
        """After a failed copy, re-running only moves the blobs still missing."""
        first_blob, second_blob = b"1" * 5000, b"2" * 5000
        digests = fake_server.add_model("m:latest", [first_blob, second_blob])
        second_server.blobs[digests[0]] = first_blob
        second_server.head_status = 500

        async with (
            TestServer(fake_server.app()) as source,
            TestServer(second_server.app()) as destination,
        ):
            orchestrator = TransferOrchestrator(EngineConfig(models_dir=models_dir))
            src = f"{server_url(source)}/m:latest"
            failed = await orchestrator.copy_refs(src, server_url(destination))
            assert failed.error_kind is ErrorKind.BLOB_CHECK

            second_server.head_status = None
            result = await orchestrator.copy_refs(src, server_url(destination))

        assert result.ok, result.error
        assert result.skipped == [digests[0]]
        assert result.transferred == [digests[1]]
        assert sha256_digest(second_server.blobs[digests[1]]) == digests[1]
