from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
import time

from sqlalchemy import delete, func, select

from tutor_api.db import OfflineStore
from tutor_api.errors import UnsupportedPayload
from tutor_api.models import QueueEntryRecord
from tutor_api.services.sync.types import OutboundRequest

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def is_textual_content_type(content_type: str) -> bool:
    normalized = content_type.strip().lower()
    return "application/json" in normalized or normalized.startswith("text/")


@dataclass(frozen=True)
class QueueEntry:
    id: int
    url: str
    method: str
    headers: dict[str, str]
    body: str | None
    enqueued_at: int

    def to_request(self) -> OutboundRequest:
        return OutboundRequest(
            method=self.method,
            url=self.url,
            headers=dict(self.headers),
            body=None if self.body is None else self.body.encode("utf-8"),
        )


def _to_entry(record: QueueEntryRecord) -> QueueEntry:
    return QueueEntry(
        id=record.id,
        url=record.url,
        method=record.method,
        headers=dict(record.headers or {}),
        body=record.body,
        enqueued_at=record.enqueued_at,
    )


class OfflineRequestQueue:
    """Persistent queue of mutating requests that failed to reach the network.

    Entries are returned in storage-insertion order, which keeps requests for
    the same URL in enqueue order.
    """

    def __init__(self, store: OfflineStore, *, clock: Callable[[], int] = _now_ms) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> OfflineStore:
        return self._store

    def enqueue(self, request: OutboundRequest) -> QueueEntry:
        body = self._capture_body(request)
        record = QueueEntryRecord(
            url=request.url,
            method=request.method,
            headers=dict(request.headers),
            body=body,
            enqueued_at=self._clock(),
        )
        with self._store.begin() as session:
            session.add(record)
            session.flush()
            entry = _to_entry(record)

        logger.info(
            "request queued entry_id=%s method=%s url=%s", entry.id, entry.method, entry.url
        )
        return entry

    def entries(self) -> list[QueueEntry]:
        with self._store.session() as session:
            records = session.scalars(
                select(QueueEntryRecord).order_by(QueueEntryRecord.id.asc())
            ).all()
            return [_to_entry(record) for record in records]

    def size(self) -> int:
        with self._store.session() as session:
            return int(session.scalar(select(func.count()).select_from(QueueEntryRecord)) or 0)

    def remove(self, entry_id: int) -> bool:
        with self._store.begin() as session:
            deleted = session.execute(
                delete(QueueEntryRecord).where(QueueEntryRecord.id == entry_id)
            ).rowcount
        return bool(deleted)

    @staticmethod
    def _capture_body(request: OutboundRequest) -> str | None:
        if not request.body:
            return None
        if not is_textual_content_type(request.content_type):
            raise UnsupportedPayload(
                f"content type {request.content_type or '<none>'!r} is unsupported for offline queue"
            )
        try:
            return request.body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise UnsupportedPayload("request body is not valid UTF-8 text") from exc
