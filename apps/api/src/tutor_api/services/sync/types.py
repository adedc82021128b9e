from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
import json
from typing import Any, Literal

# Dropped from captured and replayed headers; the HTTP client recomputes them.
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "content-encoding",
        "content-length",
        "host",
        "keep-alive",
        "transfer-encoding",
    }
)

ResponseSource = Literal["network", "cache", "queued", "offline"]


def normalize_headers(headers: dict[str, str] | None) -> dict[str, str]:
    if not headers:
        return {}
    return {
        key.lower(): value
        for key, value in headers.items()
        if key.lower() not in HOP_BY_HOP_HEADERS
    }


@dataclass(frozen=True)
class OutboundRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", normalize_headers(self.headers))

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def cache_key(self) -> str:
        return self.url


@dataclass(frozen=True)
class UpstreamResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    reason: str = ""

    @property
    def ok(self) -> bool:
        """Delivered for replay purposes: 2xx, or a 3xx that is not followed."""
        return 200 <= self.status_code < 400

    @property
    def successful(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)

    @classmethod
    def from_json(cls, status_code: int, payload: Any) -> UpstreamResponse:
        return cls(
            status_code=status_code,
            headers={"content-type": "application/json"},
            content=json.dumps(payload).encode("utf-8"),
        )

    @classmethod
    def offline(cls) -> UpstreamResponse:
        return cls(status_code=504, reason="Offline")


@dataclass(frozen=True)
class GatewayResult:
    response: UpstreamResponse
    source: ResponseSource
    revalidation: Future[UpstreamResponse | None] | None = None


@dataclass(frozen=True)
class ReplaySummary:
    attempted: int
    delivered: int
    failed: int
    remaining: int
