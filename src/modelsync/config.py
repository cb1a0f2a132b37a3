"""
Engine configuration.

TransferConfig holds the knobs of a single copy (buffer ceiling, bandwidth
ceiling, chunking, timeouts). EngineConfig adds where the local store and the
local server live. Both validate in __post_init__ and can be built from the
environment the inference server itself uses (OLLAMA_MODELS, OLLAMA_HOST).
"""

from __future__ import annotations

import os
import platform
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB

DEFAULT_MAX_BUFFER_BYTES = 512 * MIB
DEFAULT_CHUNK_SIZE = 80 * KIB
DEFAULT_LOCAL_SERVER_URL = "http://127.0.0.1:11434"

_SIZE_PATTERN = re.compile(r"^\s*(\d+)\s*(B|KB|MB|GB)?\s*$", re.IGNORECASE)
_SIZE_MULTIPLIERS: dict[str, int] = {
    "": 1,
    "B": 1,
    "KB": KIB,
    "MB": MIB,
    "GB": GIB,
}


def parse_size(text: str | int) -> int:
    """Parse a human size such as ``"512MB"`` into bytes.

    Accepts bare integers and the suffixes B, KB, MB, GB (case-insensitive,
    binary multipliers).

    Args:
        text: Size string or integer byte count.

    Returns:
        Size in bytes.

    Raises:
        ValueError: If the text is not a recognized size.
    """
    if isinstance(text, int):
        if text < 0:
            raise ValueError(f"Size must be >= 0, got {text}")
        return text

    match = _SIZE_PATTERN.match(text)
    if match is None:
        raise ValueError(f"Invalid size {text!r} (expected e.g. 512MB, 1GB, 64KB, 100B)")
    number, unit = match.groups()
    return int(number) * _SIZE_MULTIPLIERS[(unit or "").upper()]


def default_models_dir() -> Path:
    """Return the platform default location of the local model store."""
    system = platform.system()
    if system == "Windows":
        return Path(os.environ.get("USERPROFILE", str(Path.home()))) / ".ollama" / "models"
    if system == "Darwin":
        return Path.home() / ".ollama" / "models"
    return Path("/usr/share/ollama/.ollama/models")


def normalize_server_url(url: str) -> str:
    """Normalize a server address to ``scheme://host:port`` without trailing slash.

    OLLAMA_HOST is commonly given as ``host:port`` or ``0.0.0.0``; those get an
    ``http://`` scheme. A wildcard bind address is rewritten to loopback.
    """
    url = url.strip().rstrip("/")
    if not url:
        return DEFAULT_LOCAL_SERVER_URL
    if "://" not in url:
        host = url.split("/", 1)[0]
        url = f"http://{url}" if ":" in host else f"http://{host}:11434"
    scheme, rest = url.split("://", 1)
    if rest.startswith("0.0.0.0"):
        rest = "127.0.0.1" + rest[len("0.0.0.0") :]
    return f"{scheme}://{rest}"


@dataclass
class TransferConfig:
    """Per-copy transfer settings."""

    max_buffer_bytes: int = DEFAULT_MAX_BUFFER_BYTES  # Remote-to-remote pipe ceiling
    bandwidth_limit: int = 0  # Bytes per second, 0 = unlimited
    chunk_size: int = DEFAULT_CHUNK_SIZE
    progress_interval_s: float = 0.5
    connect_timeout_s: float = 10.0
    read_timeout_s: float = 3600.0  # Large blob POSTs can sit idle while the server hashes
    verify_downloads: bool = True

    def __post_init__(self) -> None:
        if self.max_buffer_bytes <= 0:
            raise ValueError(f"max_buffer_bytes must be > 0, got {self.max_buffer_bytes}")
        if self.bandwidth_limit < 0:
            raise ValueError(f"bandwidth_limit must be >= 0, got {self.bandwidth_limit}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {self.chunk_size}")
        if self.progress_interval_s < 0:
            raise ValueError(f"progress_interval_s must be >= 0, got {self.progress_interval_s}")
        if self.connect_timeout_s <= 0:
            raise ValueError(f"connect_timeout_s must be > 0, got {self.connect_timeout_s}")
        if self.read_timeout_s <= 0:
            raise ValueError(f"read_timeout_s must be > 0, got {self.read_timeout_s}")
        # A chunk never exceeds what the pipe can hold
        self.chunk_size = min(self.chunk_size, self.max_buffer_bytes)


@dataclass
class EngineConfig:
    """Where the local store and local server live, plus transfer settings."""

    models_dir: Path = field(default_factory=default_models_dir)
    local_server_url: str = DEFAULT_LOCAL_SERVER_URL
    transfer: TransferConfig = field(default_factory=TransferConfig)

    def __post_init__(self) -> None:
        self.models_dir = Path(self.models_dir).expanduser()
        self.local_server_url = normalize_server_url(self.local_server_url)
        if not self.local_server_url.startswith(("http://", "https://")):
            raise ValueError(
                f"local_server_url must use http or https, got {self.local_server_url!r}"
            )

    @property
    def blobs_dir(self) -> Path:
        return self.models_dir / "blobs"

    @property
    def manifests_dir(self) -> Path:
        return self.models_dir / "manifests"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build configuration from environment variables.

        Reads OLLAMA_MODELS, OLLAMA_HOST, MODELSYNC_BUFFER_SIZE and
        MODELSYNC_BANDWIDTH_LIMIT. Unset or empty variables keep defaults.
        """
        env = os.environ if environ is None else environ

        transfer_kwargs: dict[str, int] = {}
        if env.get("MODELSYNC_BUFFER_SIZE"):
            transfer_kwargs["max_buffer_bytes"] = parse_size(env["MODELSYNC_BUFFER_SIZE"])
        if env.get("MODELSYNC_BANDWIDTH_LIMIT"):
            transfer_kwargs["bandwidth_limit"] = parse_size(env["MODELSYNC_BANDWIDTH_LIMIT"])

        models_dir = Path(env["OLLAMA_MODELS"]) if env.get("OLLAMA_MODELS") else default_models_dir()
        return cls(
            models_dir=models_dir,
            local_server_url=env.get("OLLAMA_HOST") or DEFAULT_LOCAL_SERVER_URL,
            transfer=TransferConfig(**transfer_kwargs),
        )
