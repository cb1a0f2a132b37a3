"""Shared fixtures: fake inference servers and a local model store."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.fake_server import FakeInferenceServer


@pytest.fixture()
def fake_server() -> FakeInferenceServer:
    """Fresh fake server (source or destination)."""
    return FakeInferenceServer()


@pytest.fixture()
def second_server() -> FakeInferenceServer:
    """Another fake server for remote-to-remote copies."""
    return FakeInferenceServer()


@pytest.fixture()
def models_dir(tmp_path: Path) -> Path:
    path = tmp_path / "models"
    path.mkdir()
    return path
