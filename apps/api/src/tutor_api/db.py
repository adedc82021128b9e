from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session
from sqlalchemy.pool import StaticPool

from tutor_api.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class OfflineStore:
    """Explicit handle over the local SQL store.

    Components receive an opened store instead of reaching for module-level
    state; ``close()`` releases the engine and further use raises
    ``StorageUnavailable``.
    """

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        self._database_url = database_url
        self._echo = echo
        self._engine: Engine | None = None

    @property
    def database_url(self) -> str:
        return self._database_url

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StorageUnavailable("offline store is not open")
        return self._engine

    def open(self) -> OfflineStore:
        if self._engine is not None:
            return self

        from tutor_api import models  # noqa: F401  registers tables on Base.metadata

        try:
            engine = self._create_engine()
            Base.metadata.create_all(bind=engine)
        except (SQLAlchemyError, OSError) as exc:
            logger.error("offline store open failed url=%s error=%r", self._safe_url(), exc)
            raise StorageUnavailable(f"cannot open offline store: {exc}") from exc

        self._engine = engine
        logger.info("offline store opened url=%s", self._safe_url())
        return self

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        logger.info("offline store closed url=%s", self._safe_url())

    @contextmanager
    def session(self) -> Iterator[Session]:
        with Session(self.engine, expire_on_commit=False) as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                raise StorageUnavailable(str(exc)) from exc

    @contextmanager
    def begin(self) -> Iterator[Session]:
        """Session bound to one transaction; commits on success, rolls back on error."""
        with Session(self.engine, expire_on_commit=False) as session:
            try:
                with session.begin():
                    yield session
            except SQLAlchemyError as exc:
                raise StorageUnavailable(str(exc)) from exc

    def __enter__(self) -> OfflineStore:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _create_engine(self) -> Engine:
        url = make_url(self._database_url)
        if url.get_backend_name() != "sqlite":
            return create_engine(url, echo=self._echo, pool_pre_ping=True)

        if url.database in (None, "", ":memory:"):
            return create_engine(
                url,
                echo=self._echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )

        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(
            url,
            echo=self._echo,
            connect_args={"check_same_thread": False},
        )

    def _safe_url(self) -> str:
        return make_url(self._database_url).render_as_string(hide_password=True)

