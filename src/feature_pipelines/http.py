"""In-memory request and response objects seen by steps.

The request is read-only from the pipeline's point of view. The response
buffers status, headers and body until something finalizes it; after
that the executor stops running steps and further writes are rejected.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from feature_pipelines.errors import ResponseAlreadySentError


class Request(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: str = "GET"
    path: str = "/"
    params: dict[str, str] = Field(default_factory=dict)
    query: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None

    def header(self, name: str, default: str | None = None) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default


class Response:
    """Buffered HTTP response with a one-way ``finalized`` flag."""

    def __init__(self) -> None:
        self.status_code = 200
        self.headers: dict[str, str] = {}
        self.body = b""
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def status(self, code: int) -> Response:
        self._ensure_open()
        self.status_code = code
        return self

    def set_header(self, name: str, value: str) -> Response:
        self._ensure_open()
        self.headers[name.lower()] = value
        return self

    def get_header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def send(self, body: str | bytes | None = None) -> Response:
        """Write *body* and finalize. Text bodies default to text/plain."""
        if isinstance(body, str) and "content-type" not in self.headers:
            self.set_header("Content-Type", "text/plain; charset=utf-8")
        return self.end(body)

    def json(self, data: Any) -> Response:
        self.set_header("Content-Type", "application/json")
        return self.end(json.dumps(data, default=str))

    def end(self, body: str | bytes | None = None) -> Response:
        self._ensure_open()
        if body is not None:
            self.body = body.encode("utf-8") if isinstance(body, str) else body
        self._finalized = True
        return self

    def json_body(self) -> Any:
        """Decode the buffered body as JSON (mostly for tests and adapters)."""
        return json.loads(self.body) if self.body else None

    def _ensure_open(self) -> None:
        if self._finalized:
            raise ResponseAlreadySentError(
                "Response was already sent; cannot write to it again"
            )
