from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
import logging
from threading import Lock
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from tutor_api.config import Settings
from tutor_api.db import OfflineStore
from tutor_api.errors import NetworkFailure, StorageUnavailable, UnsupportedPayload
from tutor_api.services.sync.cache import ResponseCache, StaleWhileRevalidate
from tutor_api.services.sync.lease import ReplayLease
from tutor_api.services.sync.queue import OfflineRequestQueue
from tutor_api.services.sync.replay import ReplayCoordinator
from tutor_api.services.sync.transport import HttpxTransport, Transport
from tutor_api.services.sync.types import (
    GatewayResult,
    OutboundRequest,
    ReplaySummary,
    UpstreamResponse,
)

logger = logging.getLogger(__name__)

FLUSH_QUEUE_TAG = "flush-queue"
REMINDER_TITLE = "AI Tutor"
REMINDER_TAG = "ai-tutor-due"


class Notifier(Protocol):
    def show(self, title: str, *, body: str, tag: str) -> None: ...


class LoggingNotifier:
    def show(self, title: str, *, body: str, tag: str) -> None:
        logger.info("notification title=%s tag=%s body=%s", title, tag, body)


def queued_response() -> UpstreamResponse:
    return UpstreamResponse.from_json(202, {"ok": True, "queued": True})


def not_queued_response() -> UpstreamResponse:
    return UpstreamResponse.from_json(503, {"error": "offline", "queued": False})


class OfflineGateway:
    """Request, message and sync handlers for the offline layer.

    ``handle`` decides per request: cacheable GETs go through
    stale-while-revalidate, mutating ``/api/`` requests fall back to the
    offline queue on network failure, everything else passes through.
    """

    def __init__(
        self,
        *,
        queue: OfflineRequestQueue,
        cache: ResponseCache,
        transport: Transport,
        origin: str,
        cache_path_prefixes: Sequence[str] = ("/_next/", "/api/"),
        api_prefix: str = "/api/",
        notifier: Notifier | None = None,
        executor: ThreadPoolExecutor | None = None,
        replay_lease: ReplayLease | None = None,
    ) -> None:
        self._queue = queue
        self._cache = cache
        self._transport = transport
        self._origin = httpx.URL(origin)
        self._api_prefix = api_prefix
        self._notifier = notifier or LoggingNotifier()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="offline-gateway"
        )
        self._owns_executor = executor is None
        self._replay = ReplayCoordinator(queue, transport, lease=replay_lease)
        self._swr = StaleWhileRevalidate(
            cache,
            transport,
            executor=self._executor,
            path_prefixes=cache_path_prefixes,
        )
        self._pending_sync: list[str] = []
        self._pending_lock = Lock()

    @property
    def replay(self) -> ReplayCoordinator:
        return self._replay

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def queue(self) -> OfflineRequestQueue:
        return self._queue

    def resolve_url(self, path: str, query: str = "") -> str:
        return str(self._origin.join(f"{path}?{query}" if query else path))

    def handle(self, request: OutboundRequest) -> GatewayResult:
        url = httpx.URL(request.url)
        same_origin = self._is_same_origin(url)

        if request.method == "GET" and same_origin and self._swr.matches_path(url.path):
            return self._swr.fetch(request)

        if request.method != "GET" and same_origin and url.path.startswith(self._api_prefix):
            return self._handle_mutation(request)

        try:
            return GatewayResult(response=self._transport.send(request), source="network")
        except NetworkFailure:
            return GatewayResult(response=UpstreamResponse.offline(), source="offline")

    def handle_message(self, message: dict[str, Any]) -> dict[str, Any] | None:
        message_type = message.get("type")
        if message_type == "FLUSH_QUEUE":
            summary = self._replay.flush()
            if summary is None:
                return {"type": "FLUSH_DONE", "coalesced": True}
            return {
                "type": "FLUSH_DONE",
                "coalesced": False,
                "attempted": summary.attempted,
                "delivered": summary.delivered,
                "failed": summary.failed,
                "remaining": summary.remaining,
            }
        if message_type == "GET_QUEUE_SIZE":
            return {"type": "QUEUE_SIZE", "count": self.queue_size()}
        if message_type == "REMIND_DUE":
            user_id = message.get("userId")
            if not user_id:
                return None
            return self._remind_due(str(user_id))
        return None

    def handle_sync(self, tag: str) -> ReplaySummary | None:
        if tag != FLUSH_QUEUE_TAG:
            logger.debug("ignoring sync tag=%s", tag)
            return None
        return self._replay.flush()

    def register_sync(self, tag: str) -> None:
        with self._pending_lock:
            if tag not in self._pending_sync:
                self._pending_sync.append(tag)

    def run_pending_sync(self) -> list[ReplaySummary | None]:
        with self._pending_lock:
            tags, self._pending_sync = self._pending_sync, []
        return [self.handle_sync(tag) for tag in tags]

    def activate(self) -> Future[list[ReplaySummary | None]]:
        """Drop older cache generations and schedule an opportunistic replay."""
        try:
            self._cache.purge_other_generations()
        except StorageUnavailable as exc:
            logger.warning("cache purge failed on activate error=%s", exc)
        self.register_sync(FLUSH_QUEUE_TAG)
        return self._executor.submit(self.run_pending_sync)

    def queue_size(self) -> int:
        try:
            return self._queue.size()
        except StorageUnavailable as exc:
            logger.warning("queue size unavailable error=%s", exc)
            return 0

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        self._transport.close()

    def _handle_mutation(self, request: OutboundRequest) -> GatewayResult:
        try:
            return GatewayResult(response=self._transport.send(request), source="network")
        except NetworkFailure as exc:
            logger.info(
                "mutation failed offline method=%s url=%s error=%s", request.method, request.url, exc
            )

        try:
            self._queue.enqueue(request)
        except UnsupportedPayload as exc:
            logger.warning("request not queued url=%s reason=%s", request.url, exc)
            return GatewayResult(response=not_queued_response(), source="offline")
        except StorageUnavailable as exc:
            logger.error("request not queued url=%s storage error=%s", request.url, exc)
            return GatewayResult(response=not_queued_response(), source="offline")

        self.register_sync(FLUSH_QUEUE_TAG)
        return GatewayResult(response=queued_response(), source="queued")

    def _remind_due(self, user_id: str) -> dict[str, Any] | None:
        request = OutboundRequest(
            method="GET",
            url=self.resolve_url(f"/api/learning/review/{quote(user_id, safe='')}", "limit=3"),
        )
        try:
            response = self._transport.send(request)
        except NetworkFailure as exc:
            logger.info("due review lookup failed user_id=%s error=%s", user_id, exc)
            return None
        if not response.ok:
            return None

        try:
            payload = response.json()
        except ValueError:
            return None

        due = payload.get("due") if isinstance(payload, dict) else None
        topics = [
            item if isinstance(item, str) else str(item.get("topic", ""))
            for item in (due or [])
            if isinstance(item, (str, dict))
        ]
        topics = [topic for topic in topics if topic]
        body = f"Due topics: {', '.join(topics)}" if topics else "No reviews due. Keep your streak!"

        self._notifier.show(REMINDER_TITLE, body=body, tag=REMINDER_TAG)
        return {"type": "REMINDER_SENT", "body": body, "tag": REMINDER_TAG}

    def _is_same_origin(self, url: httpx.URL) -> bool:
        if url.is_relative_url:
            return True
        return (
            url.scheme == self._origin.scheme
            and url.host == self._origin.host
            and url.port == self._origin.port
        )


def build_gateway(
    store: OfflineStore,
    settings: Settings,
    *,
    transport: Transport | None = None,
    notifier: Notifier | None = None,
) -> OfflineGateway:
    return OfflineGateway(
        queue=OfflineRequestQueue(store),
        cache=ResponseCache(store, cache_name=settings.cache_name),
        transport=transport
        or HttpxTransport(
            origin=settings.upstream_origin,
            timeout_seconds=settings.upstream_timeout_seconds,
        ),
        origin=settings.upstream_origin,
        cache_path_prefixes=settings.cache_path_prefixes,
        notifier=notifier,
        replay_lease=ReplayLease(store, ttl_seconds=settings.replay_lease_seconds),
    )
