from __future__ import annotations

import logging
from typing import Protocol

import httpx

from tutor_api.errors import NetworkFailure
from tutor_api.services.sync.types import OutboundRequest, UpstreamResponse, normalize_headers

logger = logging.getLogger(__name__)


class Transport(Protocol):
    def send(self, request: OutboundRequest) -> UpstreamResponse: ...

    def close(self) -> None: ...


class HttpxTransport:
    """Same-origin HTTP transport.

    One ``httpx.Client`` (and therefore one cookie jar) is shared by live
    requests and replays, so replayed requests carry the same credentials.
    Any failure to obtain a complete response (connect, timeout, undecodable
    body, redirect loop) is reported as ``NetworkFailure``.
    """

    def __init__(
        self,
        *,
        origin: str,
        timeout_seconds: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._client = client or httpx.Client(
            base_url=origin,
            timeout=timeout_seconds,
            follow_redirects=False,
        )

    def send(self, request: OutboundRequest) -> UpstreamResponse:
        try:
            response = self._client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
            )
            content = response.content
        except httpx.RequestError as exc:
            logger.debug(
                "upstream unusable method=%s url=%s error=%r", request.method, request.url, exc
            )
            raise NetworkFailure(str(exc)) from exc

        return UpstreamResponse(
            status_code=response.status_code,
            headers=normalize_headers(dict(response.headers)),
            content=content,
            reason=response.reason_phrase,
        )

    def close(self) -> None:
        self._client.close()
