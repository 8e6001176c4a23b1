"""Request and response values passed between API modules and the engine."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Generic, TypeVar

from .errors import SlackClientError

T = TypeVar("T")


class Encoding(Enum):
    """Wire encoding of a request body."""

    JSON = "json"
    MULTIPART = "multipart"


@dataclass(frozen=True)
class FilePayload:
    """Binary payload sent as one multipart part."""

    content: bytes = field(repr=False)
    filename: str
    field_name: str = "file"
    content_type: str = "application/octet-stream"

    def __len__(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class RequestSpec:
    """One logical remote call.

    Attributes:
        method: Remote method name (e.g. "conversations.list").
        params: Scalar or structured fields, in order.
        file: Optional binary payload; forces multipart encoding.
        http_method: HTTP verb.
        encoding: Body encoding when no file is attached.
        url: Absolute URL overriding base_url/method (capability URLs).
        raw_body: Raw bytes sent as-is instead of params.
        authenticated: Whether credentials are attached.
        timeout: Per-call timeout override (seconds).
    """

    method: str
    params: Mapping[str, Any] = field(default_factory=dict)
    file: FilePayload | None = None
    http_method: str = "POST"
    encoding: Encoding = Encoding.JSON
    url: str | None = None
    raw_body: bytes | None = field(default=None, repr=False)
    authenticated: bool = True
    timeout: float | None = None

    @property
    def effective_encoding(self) -> Encoding:
        return Encoding.MULTIPART if self.file is not None else self.encoding

    def with_params(self, **extra: Any) -> RequestSpec:
        """Return a copy with ``extra`` merged into the parameters."""
        return replace(self, params={**self.params, **extra})

    @classmethod
    def raw_put(cls, url: str, content: bytes, *, timeout: float | None = None) -> RequestSpec:
        """Unauthenticated PUT of raw bytes to a capability URL."""
        return cls(
            method="PUT " + url.split("?", 1)[0],
            http_method="PUT",
            url=url,
            raw_body=content,
            authenticated=False,
            timeout=timeout,
        )


@dataclass(frozen=True)
class RawResponse:
    """HTTP response after classification as a success."""

    status: int
    headers: Mapping[str, str]
    text: str

    def json(self) -> Any:
        return json.loads(self.text)


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    """Decoded payload or classified failure, never both."""

    value: T | None = None
    error: SlackClientError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the captured error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    @classmethod
    async def capture(cls, awaitable: Awaitable[T]) -> ApiResult[T]:
        """Await a call and fold any client error into the result."""
        try:
            return cls(value=await awaitable)
        except SlackClientError as err:
            return cls(error=err)
