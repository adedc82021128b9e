from __future__ import annotations

import logging
import os
from random import random
from threading import Event
from time import sleep
from typing import Callable

from tutor_api.config import get_settings
from tutor_api.db import OfflineStore
from tutor_api.errors import StorageUnavailable
from tutor_api.logging_config import configure_logging
from tutor_api.services.sync import FLUSH_QUEUE_TAG, OfflineGateway, ReplaySummary, build_gateway

logger = logging.getLogger(__name__)


def _get_poll_seconds() -> int:
    value = os.getenv("WORKER_POLL_SECONDS", "5")
    return max(1, int(value))


def _get_retry_base_seconds() -> float:
    value = os.getenv("WORKER_DB_RETRY_BASE_SECONDS", "1")
    return max(0.1, float(value))


def _get_retry_max_seconds() -> float:
    value = os.getenv("WORKER_DB_RETRY_MAX_SECONDS", "30")
    return max(0.5, float(value))


def open_store_with_retry(
    database_url: str,
    *,
    max_attempts: int | None = None,
    sleeper: Callable[[float], None] = sleep,
) -> OfflineStore:
    base = _get_retry_base_seconds()
    max_delay = _get_retry_max_seconds()
    delay = base
    attempt = 1

    while True:
        store = OfflineStore(database_url)
        try:
            return store.open()
        except StorageUnavailable as exc:
            if max_attempts is not None and attempt >= max_attempts:
                raise
            logger.warning(
                "store open failed attempt=%d error=%s; retrying in %.1fs", attempt, exc, delay
            )
            sleeper(delay + random() * 0.2 * delay)
            delay = min(delay * 2, max_delay)
            attempt += 1


def run_sync_once(gateway: OfflineGateway) -> ReplaySummary | None:
    """Fire the background sync event when the queue has work; otherwise do nothing."""
    if gateway.queue_size() == 0:
        return None
    return gateway.handle_sync(FLUSH_QUEUE_TAG)


def run_loop(gateway: OfflineGateway, *, poll_seconds: int, stop_event: Event) -> None:
    while not stop_event.is_set():
        summary = run_sync_once(gateway)
        if summary is not None and summary.attempted:
            logger.info(
                "sync pass delivered=%d failed=%d remaining=%d",
                summary.delivered,
                summary.failed,
                summary.remaining,
            )
        stop_event.wait(poll_seconds)


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    store = open_store_with_retry(settings.database_url)
    gateway = build_gateway(store, settings)
    stop_event = Event()
    logger.info("sync worker started poll_seconds=%d", _get_poll_seconds())

    try:
        run_loop(gateway, poll_seconds=_get_poll_seconds(), stop_event=stop_event)
    except KeyboardInterrupt:
        stop_event.set()
    finally:
        gateway.close()
        store.close()


if __name__ == "__main__":
    main()
