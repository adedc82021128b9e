from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import Executor
from datetime import datetime, timezone
import logging

from sqlalchemy import delete, select

from tutor_api.db import OfflineStore
from tutor_api.errors import NetworkFailure, StorageUnavailable
from tutor_api.models import CacheEntryRecord
from tutor_api.services.sync.transport import Transport
from tutor_api.services.sync.types import GatewayResult, OutboundRequest, UpstreamResponse

logger = logging.getLogger(__name__)


class ResponseCache:
    """Request-keyed response store for one cache generation.

    ``cache_name`` carries the generation (for example ``tutor-cache-v1``);
    bumping it and calling ``purge_other_generations`` drops every older entry.
    """

    def __init__(self, store: OfflineStore, *, cache_name: str) -> None:
        self._store = store
        self._cache_name = cache_name

    @property
    def cache_name(self) -> str:
        return self._cache_name

    def match(self, key: str) -> UpstreamResponse | None:
        with self._store.session() as session:
            record = session.get(CacheEntryRecord, (self._cache_name, key))
            if record is None:
                return None
            return UpstreamResponse(
                status_code=record.status_code,
                headers=dict(record.headers or {}),
                content=record.content,
            )

    def put(self, key: str, response: UpstreamResponse) -> None:
        with self._store.begin() as session:
            session.merge(
                CacheEntryRecord(
                    cache_name=self._cache_name,
                    request_key=key,
                    status_code=response.status_code,
                    headers=dict(response.headers),
                    content=response.content,
                    stored_at=datetime.now(timezone.utc),
                )
            )

    def keys(self) -> list[str]:
        with self._store.session() as session:
            return list(
                session.scalars(
                    select(CacheEntryRecord.request_key)
                    .where(CacheEntryRecord.cache_name == self._cache_name)
                    .order_by(CacheEntryRecord.request_key)
                ).all()
            )

    def purge_other_generations(self) -> int:
        with self._store.begin() as session:
            deleted = session.execute(
                delete(CacheEntryRecord).where(CacheEntryRecord.cache_name != self._cache_name)
            ).rowcount
        if deleted:
            logger.info("stale cache generations purged kept=%s entries=%d", self._cache_name, deleted)
        return int(deleted or 0)


class StaleWhileRevalidate:
    """Serve cached GET responses immediately and refresh them in the background."""

    def __init__(
        self,
        cache: ResponseCache,
        transport: Transport,
        *,
        executor: Executor,
        path_prefixes: Sequence[str] = ("/_next/", "/api/"),
    ) -> None:
        self._cache = cache
        self._transport = transport
        self._executor = executor
        self._path_prefixes = tuple(path_prefixes)

    def matches_path(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self._path_prefixes)

    def fetch(self, request: OutboundRequest) -> GatewayResult:
        cached = self._lookup(request.cache_key)
        revalidation = self._executor.submit(self._revalidate, request)

        if cached is not None:
            return GatewayResult(response=cached, source="cache", revalidation=revalidation)

        response = revalidation.result()
        if response is None:
            return GatewayResult(response=UpstreamResponse.offline(), source="offline")
        return GatewayResult(response=response, source="network")

    def _lookup(self, key: str) -> UpstreamResponse | None:
        try:
            return self._cache.match(key)
        except StorageUnavailable as exc:
            logger.warning("cache lookup failed key=%s error=%s", key, exc)
            return None

    def _revalidate(self, request: OutboundRequest) -> UpstreamResponse | None:
        try:
            response = self._transport.send(request)
        except NetworkFailure as exc:
            logger.info("revalidation failed url=%s error=%s", request.url, exc)
            return None

        if response.successful:
            try:
                self._cache.put(request.cache_key, response)
            except StorageUnavailable as exc:
                logger.warning("cache write failed key=%s error=%s", request.cache_key, exc)
        return response
