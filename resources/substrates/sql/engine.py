"""SQLAlchemy engine construction for the metadata database."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.pool import StaticPool

from packages.qave_shared.config import SqlSettings


def create_sql_engine(settings: SqlSettings) -> Engine:
    """Construct a configured SQLAlchemy engine for SQLite or a pooled server."""
    url = make_url(settings.url)
    if url.get_backend_name() != "sqlite":
        return create_engine(
            url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout_seconds,
            pool_pre_ping=settings.pool_pre_ping,
            echo=settings.echo,
        )

    database = url.database or ""
    in_memory = database in ("", ":memory:")
    kwargs: dict[str, Any] = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": settings.busy_timeout_seconds,
        },
        "echo": settings.echo,
    }
    if in_memory:
        # One shared connection; otherwise each pooled connection gets its own
        # empty database.
        kwargs["poolclass"] = StaticPool
    else:
        Path(database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, **kwargs)
    if not in_memory:
        event.listen(engine, "connect", _enable_sqlite_wal)
    return engine


def _enable_sqlite_wal(dbapi_connection: Any, connection_record: Any) -> None:
    """Let readers proceed while the sweeper or an upload holds the write lock."""
    del connection_record
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
    finally:
        cursor.close()
