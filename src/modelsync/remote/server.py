"""
Handle to one inference server's HTTP API.

Every remote call takes a ServerHandle; there is no global base address. The
handle owns (or borrows) one aiohttp session for all blob, show, create and
version calls against that server.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import aiohttp
import orjson

from modelsync.config import TransferConfig, normalize_server_url
from modelsync.errors import ManifestUnavailableError, ServerUnavailableError

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)


class ServerHandle:
    """Base URL plus HTTP session for one server.

    Args:
        base_url: Server address, e.g. ``http://10.0.0.5:11434``.
        session: Optional shared aiohttp session. A borrowed session is never
            closed by the handle.
        config: Timeouts for an owned session.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        config: TransferConfig | None = None,
    ) -> None:
        self._base_url = normalize_server_url(base_url)
        self._config = config or TransferConfig()
        self._session = session
        self._owns_session = session is None

    def __repr__(self) -> str:
        return f"ServerHandle({self._base_url!r})"

    @property
    def base_url(self) -> str:
        return self._base_url

    def url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            if not self._owns_session:
                raise RuntimeError("Borrowed aiohttp session is closed")
            # No total timeout: a multi-gigabyte upload may legitimately take hours
            timeout = aiohttp.ClientTimeout(
                total=None,
                sock_connect=self._config.connect_timeout_s,
                sock_read=self._config.read_timeout_s,
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this handle owns it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> ServerHandle:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # =========================================================================
    # Small JSON endpoints
    # =========================================================================

    async def version(self) -> str:
        """GET /api/version.

        Returns:
            Server version string ("" if the server omits it).

        Raises:
            ServerUnavailableError: On connection failure or non-2xx status.
        """
        session = await self.get_session()
        try:
            async with session.get(
                self.url("api/version"),
                timeout=aiohttp.ClientTimeout(total=self._config.connect_timeout_s),
            ) as resp:
                if not 200 <= resp.status < 300:
                    raise ServerUnavailableError(
                        f"Server {self._base_url} answered {resp.status} to version probe"
                    )
                body = await resp.read()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise ServerUnavailableError(
                f"Could not connect to server {self._base_url}: {e or type(e).__name__}"
            ) from e

        try:
            data = orjson.loads(body)
        except orjson.JSONDecodeError:
            return ""
        return str(data.get("version", "")) if isinstance(data, dict) else ""

    async def ensure_available(self) -> str:
        """Probe the server and log its version. Raises ServerUnavailableError."""
        version = await self.version()
        logger.info(
            "Server available",
            extra={"base_url": self._base_url, "server_version": version},
        )
        return version

    async def show(self, name: str) -> dict[str, Any]:
        """POST /api/show for a model.

        Returns:
            Decoded JSON object (modelfile, template, system, parameters, ...).

        Raises:
            ManifestUnavailableError: On connection failure, non-2xx, or a
                response that is not a JSON object.
        """
        session = await self.get_session()
        try:
            async with session.post(
                self.url("api/show"),
                data=orjson.dumps({"name": name}),
                headers={"Content-Type": "application/json"},
            ) as resp:
                body = await resp.read()
                if not 200 <= resp.status < 300:
                    raise ManifestUnavailableError(
                        f"Model {name!r} not available on {self._base_url} "
                        f"(status {resp.status}): {error_message(body)}"
                    )
        except (aiohttp.ClientError, TimeoutError) as e:
            raise ManifestUnavailableError(
                f"Show request for {name!r} to {self._base_url} failed: {e or type(e).__name__}"
            ) from e

        try:
            data = orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise ManifestUnavailableError(
                f"Show response for {name!r} from {self._base_url} is not JSON"
            ) from e
        if not isinstance(data, dict):
            raise ManifestUnavailableError(
                f"Show response for {name!r} from {self._base_url} is not an object"
            )
        return data


def error_message(body: bytes) -> str:
    """Extract ``{"error": ...}`` from a response body, else a short raw prefix."""
    try:
        data = orjson.loads(body)
    except orjson.JSONDecodeError:
        return body[:200].decode("utf-8", errors="replace").strip()
    if isinstance(data, dict) and "error" in data:
        return str(data["error"])
    return body[:200].decode("utf-8", errors="replace").strip()
