"""SQLAlchemy engine and session handle for the telemetry store."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import TelemetryDatabaseSettings, get_settings

logger = logging.getLogger(__name__)


def build_engine(settings: TelemetryDatabaseSettings) -> Engine:
    url = settings.url
    engine_kwargs = {
        "echo": settings.echo,
        "future": True,
    }

    if url.startswith("sqlite"):
        engine_kwargs.update(
            {
                "connect_args": {"check_same_thread": False, "timeout": 30},
                "poolclass": StaticPool,
            }
        )
    else:
        engine_kwargs["pool_size"] = settings.pool_size
        engine_kwargs["max_overflow"] = settings.max_overflow
        engine_kwargs["pool_pre_ping"] = settings.pool_pre_ping

    return create_engine(url, **engine_kwargs)


class TelemetryDatabase:
    """Connection pool handle owned by one service instance.

    The handle is created with the application, bootstrapped at startup and
    disposed at shutdown. Each request checks out one session for the
    duration of its transaction through :meth:`session_scope`.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine: Engine | None = engine
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )

    @classmethod
    def from_settings(cls, settings: TelemetryDatabaseSettings | None = None) -> "TelemetryDatabase":
        return cls(build_engine(settings or get_settings()))

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Telemetry database has been disposed")
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def session(self) -> Session:
        if self._engine is None:
            raise RuntimeError("Telemetry database has been disposed")
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session = self.session()
        try:
            yield session
            session.commit()
        except BaseException:
            # Cancellation rolls back too.
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        try:
            with self.session() as session:
                session.execute(text("SELECT 1"))
        except Exception:
            logger.warning("Telemetry database ping failed", exc_info=True)
            return False
        return True

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Telemetry database connection pool disposed")
        self._engine = None
