from __future__ import annotations

import logging
from threading import Lock

from tutor_api.errors import NetworkFailure, ReplayFailure, StorageUnavailable
from tutor_api.services.sync.lease import ReplayLease
from tutor_api.services.sync.queue import OfflineRequestQueue, QueueEntry
from tutor_api.services.sync.transport import Transport
from tutor_api.services.sync.types import ReplaySummary

logger = logging.getLogger(__name__)

_EMPTY_SUMMARY = ReplaySummary(attempted=0, delivered=0, failed=0, remaining=0)


class ReplayCoordinator:
    """Runs one sequential replay pass at a time over the offline queue.

    Passes are gated twice: a process-local lock for triggers inside this
    process and a ``ReplayLease`` on the store for other processes sharing the
    queue. A trigger that arrives while a pass is running anywhere is
    coalesced: ``flush`` returns ``None`` without touching the queue.
    """

    def __init__(
        self,
        queue: OfflineRequestQueue,
        transport: Transport,
        *,
        lease: ReplayLease | None = None,
    ) -> None:
        self._queue = queue
        self._transport = transport
        self._lease = lease or ReplayLease(queue.store)
        self._pass_lock = Lock()

    @property
    def running(self) -> bool:
        return self._pass_lock.locked()

    def flush(self) -> ReplaySummary | None:
        if not self._pass_lock.acquire(blocking=False):
            logger.info("replay already running; trigger coalesced")
            return None

        try:
            try:
                leased = self._lease.acquire()
            except StorageUnavailable as exc:
                logger.warning("replay skipped; lease unavailable error=%s", exc)
                return _EMPTY_SUMMARY
            if not leased:
                logger.info("replay running in another process; trigger coalesced")
                return None

            try:
                return self._replay_pass()
            finally:
                self._release_lease()
        finally:
            self._pass_lock.release()

    def _release_lease(self) -> None:
        try:
            self._lease.release()
        except StorageUnavailable as exc:
            logger.warning("replay lease release failed error=%s", exc)

    def _still_leased(self) -> bool:
        try:
            return self._lease.renew()
        except StorageUnavailable as exc:
            logger.warning("replay lease renew failed error=%s", exc)
            return False

    def _replay_pass(self) -> ReplaySummary:
        try:
            entries = self._queue.entries()
        except StorageUnavailable as exc:
            logger.warning("replay skipped; queue unavailable error=%s", exc)
            return _EMPTY_SUMMARY

        attempted = 0
        delivered = 0
        failed = 0
        for entry in entries:
            if attempted and not self._still_leased():
                logger.warning("replay lease lost; stopping pass after attempted=%d", attempted)
                break
            attempted += 1
            try:
                self._replay_entry(entry)
            except Exception as exc:
                failed += 1
                logger.warning(
                    "replay failed entry_id=%s method=%s url=%s error=%s",
                    entry.id,
                    entry.method,
                    entry.url,
                    exc,
                )
            else:
                delivered += 1

        try:
            remaining = self._queue.size()
        except StorageUnavailable:
            remaining = len(entries) - delivered

        if entries:
            logger.info(
                "replay pass finished attempted=%d delivered=%d failed=%d remaining=%d",
                attempted,
                delivered,
                failed,
                remaining,
            )
        return ReplaySummary(
            attempted=attempted,
            delivered=delivered,
            failed=failed,
            remaining=remaining,
        )

    def _replay_entry(self, entry: QueueEntry) -> None:
        try:
            response = self._transport.send(entry.to_request())
        except NetworkFailure as exc:
            raise ReplayFailure(f"network unavailable: {exc}") from exc

        if not response.ok:
            raise ReplayFailure(f"upstream answered status={response.status_code}")

        self._queue.remove(entry.id)
