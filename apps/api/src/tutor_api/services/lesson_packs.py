from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
import uuid

from sqlalchemy import delete, select

from tutor_api.db import OfflineStore
from tutor_api.models import LessonPackRecord


@dataclass(frozen=True)
class LessonPack:
    id: str
    topic: str
    grade: str | None
    created_at: datetime
    lesson: dict[str, Any]


@dataclass(frozen=True)
class LessonPackSummary:
    id: str
    topic: str
    grade: str | None
    created_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LessonPackStore:
    """Generated lessons saved for offline study."""

    def __init__(self, store: OfflineStore, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self._clock = clock

    def save(self, *, topic: str, lesson: dict[str, Any], grade: str | int | None = None) -> LessonPack:
        record = LessonPackRecord(
            id=str(uuid.uuid4()),
            topic=topic,
            grade=None if grade is None else str(grade),
            created_at=self._clock(),
            lesson=lesson,
        )
        with self._store.begin() as session:
            session.add(record)

        return LessonPack(
            id=record.id,
            topic=record.topic,
            grade=record.grade,
            created_at=record.created_at,
            lesson=record.lesson,
        )

    def list_packs(self) -> list[LessonPackSummary]:
        with self._store.session() as session:
            rows = session.execute(
                select(
                    LessonPackRecord.id,
                    LessonPackRecord.topic,
                    LessonPackRecord.grade,
                    LessonPackRecord.created_at,
                ).order_by(LessonPackRecord.created_at.desc())
            ).all()

        return [
            LessonPackSummary(id=pack_id, topic=topic, grade=grade, created_at=created_at)
            for pack_id, topic, grade, created_at in rows
        ]

    def get(self, pack_id: str) -> LessonPack | None:
        with self._store.session() as session:
            record = session.get(LessonPackRecord, pack_id)
            if record is None:
                return None
            return LessonPack(
                id=record.id,
                topic=record.topic,
                grade=record.grade,
                created_at=record.created_at,
                lesson=record.lesson,
            )

    def delete(self, pack_id: str) -> bool:
        with self._store.begin() as session:
            deleted = session.execute(
                delete(LessonPackRecord).where(LessonPackRecord.id == pack_id)
            ).rowcount
        return bool(deleted)
