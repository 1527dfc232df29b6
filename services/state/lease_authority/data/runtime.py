"""Lease Authority SQL runtime wiring."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from packages.qave_shared.config import QaveSettings, SqlSettings
from resources.substrates.sql import (
    SessionProvider,
    create_session_factory,
    create_sql_engine,
    ping,
)
from services.state.lease_authority.data.schema import metadata


@dataclass(frozen=True)
class LeaseSqlRuntime:
    """Concrete handle for metadata database access."""

    engine: Engine
    session_factory: sessionmaker[Session]
    sessions: SessionProvider
    health_timeout_seconds: float = 1.0

    @classmethod
    def from_settings(cls, settings: QaveSettings) -> "LeaseSqlRuntime":
        """Build the DB runtime from typed application settings."""
        return cls.from_sql_settings(settings.sql)

    @classmethod
    def from_sql_settings(cls, sql_settings: SqlSettings) -> "LeaseSqlRuntime":
        engine = create_sql_engine(sql_settings)
        session_factory = create_session_factory(engine)
        return cls(
            engine=engine,
            session_factory=session_factory,
            sessions=SessionProvider(session_factory=session_factory),
            health_timeout_seconds=sql_settings.health_timeout_seconds,
        )

    def create_schema(self) -> None:
        """Create missing tables and indexes; existing ones are left alone."""
        metadata.create_all(self.engine)

    def is_healthy(self) -> bool:
        """Return ``True`` when the backing database is reachable."""
        return ping(self.engine, timeout_seconds=self.health_timeout_seconds)

    def dispose(self) -> None:
        self.engine.dispose()
