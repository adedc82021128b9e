from __future__ import annotations

from collections.abc import Callable
import logging
import time
import uuid

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from tutor_api.db import OfflineStore
from tutor_api.models import ReplayLeaseRecord

logger = logging.getLogger(__name__)

DEFAULT_LEASE_NAME = "offline-queue"
DEFAULT_LEASE_SECONDS = 120


def _now_ms() -> int:
    return int(time.time() * 1000)


def _ensure_row(session: Session, name: str) -> None:
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(ReplayLeaseRecord).on_conflict_do_nothing(index_elements=["name"])
    elif dialect == "sqlite":
        stmt = sqlite.insert(ReplayLeaseRecord).on_conflict_do_nothing(index_elements=["name"])
    else:
        if session.get(ReplayLeaseRecord, name) is None:
            session.add(ReplayLeaseRecord(name=name, holder=None, expires_at=0))
            session.flush()
        return
    session.execute(stmt.values(name=name, holder=None, expires_at=0))


class ReplayLease:
    """Store-backed lease that lets one replay pass run at a time across processes.

    Claiming is a single conditional UPDATE on the lease row, so concurrent
    claimants on the same store race on the database and exactly one wins. A
    holder that dies keeps the lease only until ``expires_at``.
    """

    def __init__(
        self,
        store: OfflineStore,
        *,
        name: str = DEFAULT_LEASE_NAME,
        ttl_seconds: float = DEFAULT_LEASE_SECONDS,
        holder: str | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._name = name
        self._ttl_ms = int(ttl_seconds * 1000)
        self._holder = holder or uuid.uuid4().hex
        self._clock = clock

    @property
    def holder(self) -> str:
        return self._holder

    def acquire(self) -> bool:
        now = self._clock()
        with self._store.begin() as session:
            _ensure_row(session, self._name)
            claimed = session.execute(
                update(ReplayLeaseRecord)
                .where(
                    ReplayLeaseRecord.name == self._name,
                    ReplayLeaseRecord.expires_at <= now,
                )
                .values(holder=self._holder, expires_at=now + self._ttl_ms)
            ).rowcount

        if claimed != 1:
            logger.debug("replay lease busy name=%s", self._name)
            return False
        return True

    def renew(self) -> bool:
        """Push the expiry forward; False means the lease was lost to another holder."""
        now = self._clock()
        with self._store.begin() as session:
            renewed = session.execute(
                update(ReplayLeaseRecord)
                .where(
                    ReplayLeaseRecord.name == self._name,
                    ReplayLeaseRecord.holder == self._holder,
                )
                .values(expires_at=now + self._ttl_ms)
            ).rowcount
        return renewed == 1

    def release(self) -> None:
        with self._store.begin() as session:
            session.execute(
                update(ReplayLeaseRecord)
                .where(
                    ReplayLeaseRecord.name == self._name,
                    ReplayLeaseRecord.holder == self._holder,
                )
                .values(holder=None, expires_at=0)
            )
