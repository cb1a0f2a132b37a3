"""
Model creation on a destination server.

POST /api/create with the uploaded file map; the server answers with
newline-delimited JSON status records:

    {"status":"parsing GGUF"}
    {"status":"using existing layer sha256:..."}
    {"status":"writing manifest"}
    {"status":"success"}

Only a final "success" means the model is registered.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import aiohttp
import orjson
from pydantic import BaseModel, ConfigDict, Field

from modelsync.errors import CreateFailureError
from modelsync.remote.server import error_message

if TYPE_CHECKING:
    from collections.abc import Callable

    from modelsync.remote.server import ServerHandle

logger = logging.getLogger(__name__)

SUCCESS_STATUS = "success"


class CreateRequest(BaseModel):
    """Body of POST /api/create."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    model: str = Field(min_length=1, description="Destination model name")
    files: dict[str, str] = Field(description="filename -> digest")
    template: str | None = None
    system: str | None = None
    parameters: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self.model, "files": dict(self.files)}
        if self.template:
            payload["template"] = self.template
        if self.system:
            payload["system"] = self.system
        if self.parameters:
            payload["parameters"] = self.parameters
        return payload


class ModelCreateStreamer:
    """Submits a create request and follows its status stream."""

    def __init__(self, server: ServerHandle) -> None:
        self._server = server

    async def create(
        self,
        request: CreateRequest,
        on_status: Callable[[str], None] | None = None,
    ) -> str:
        """Create the model and wait for the final status.

        Args:
            request: Model name, file map and optional metadata.
            on_status: Called with each status line as it arrives.

        Returns:
            The final status ("success").

        Raises:
            CreateFailureError: Non-2xx response, an ``error`` record, a
                connection failure, or a final status other than "success".
        """
        session = await self._server.get_session()
        last_status = ""
        try:
            async with session.post(
                self._server.url("api/create"),
                data=orjson.dumps(request.to_payload()),
                headers={"Content-Type": "application/json"},
            ) as resp:
                if not 200 <= resp.status < 300:
                    body = await resp.read()
                    raise CreateFailureError(
                        f"Create of {request.model!r} on {self._server.base_url} failed "
                        f"(status {resp.status}): {error_message(body)}",
                        status_code=resp.status,
                    )

                async for raw_line in resp.content:
                    line = raw_line.strip()
                    if not line:
                        continue
                    try:
                        record = orjson.loads(line)
                    except orjson.JSONDecodeError:
                        logger.warning(
                            "Skipping malformed create status line",
                            extra={"line": line[:200].decode("utf-8", errors="replace")},
                        )
                        continue
                    if not isinstance(record, dict):
                        continue
                    if record.get("error"):
                        raise CreateFailureError(
                            f"Create of {request.model!r} failed: {record['error']}",
                            status_code=resp.status,
                            last_status=last_status,
                        )
                    status = record.get("status")
                    if status:
                        last_status = str(status)
                        if on_status is not None:
                            on_status(last_status)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise CreateFailureError(
                f"Create of {request.model!r} on {self._server.base_url} failed: "
                f"{e or type(e).__name__}",
                last_status=last_status,
            ) from e

        if last_status != SUCCESS_STATUS:
            raise CreateFailureError(
                f"Create of {request.model!r} ended with status {last_status!r}",
                status_code=200,
                last_status=last_status,
            )
        logger.info(
            "Model created",
            extra={"model": request.model, "base_url": self._server.base_url},
        )
        return last_status
