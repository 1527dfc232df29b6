"""Tests for SQL substrate engine, session, health, and error helpers."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from packages.qave_shared.config import SqlSettings
from packages.qave_shared.errors import ErrorCategory, codes
from resources.substrates.sql import (
    SessionProvider,
    create_session_factory,
    create_sql_engine,
    is_sql_error,
    normalize_sql_error,
    ping,
    transactional_session,
)


def test_file_engine_creates_parent_dir_and_enables_wal(tmp_path: Path) -> None:
    """SQLite file databases get their directory created and WAL journaling."""
    db_path = tmp_path / "nested" / "meta.db"
    engine = create_sql_engine(SqlSettings(url=f"sqlite:///{db_path}"))
    try:
        with engine.connect() as conn:
            mode = conn.execute(text("PRAGMA journal_mode")).scalar_one()
        assert db_path.parent.is_dir()
        assert str(mode).lower() == "wal"
        assert ping(engine) is True
    finally:
        engine.dispose()


def test_memory_engine_shares_one_database() -> None:
    engine = create_sql_engine(SqlSettings(url="sqlite://"))
    sessions = SessionProvider(session_factory=create_session_factory(engine))

    with sessions.session() as db:
        db.execute(text("CREATE TABLE t (v INTEGER)"))
        db.execute(text("INSERT INTO t VALUES (1)"))
    with sessions.session() as db:
        assert db.execute(text("SELECT count(*) FROM t")).scalar_one() == 1


def test_transactional_session_rolls_back_on_error() -> None:
    engine = create_sql_engine(SqlSettings(url="sqlite://"))
    factory = create_session_factory(engine)
    with transactional_session(factory) as db:
        db.execute(text("CREATE TABLE t (v INTEGER)"))

    with pytest.raises(RuntimeError):
        with transactional_session(factory) as db:
            db.execute(text("INSERT INTO t VALUES (1)"))
            raise RuntimeError("abort")

    with transactional_session(factory) as db:
        assert db.execute(text("SELECT count(*) FROM t")).scalar_one() == 0


def test_ping_reports_unreachable_database(tmp_path: Path) -> None:
    """A database path under a regular file cannot be opened."""
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    engine = create_engine(f"sqlite:///{blocker / 'meta.db'}")

    assert ping(engine) is False


def test_normalize_sql_error_maps_integrity_to_conflict() -> None:
    exc = IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed"))

    error = normalize_sql_error(exc)

    assert is_sql_error(exc) is True
    assert error.category == ErrorCategory.CONFLICT
    assert error.code == codes.ALREADY_EXISTS


def test_normalize_sql_error_maps_operational_to_retryable_dependency() -> None:
    exc = OperationalError("SELECT", {}, sqlite3.OperationalError("database is locked"))

    error = normalize_sql_error(exc)

    assert error.category == ErrorCategory.DEPENDENCY
    assert error.code == codes.DEPENDENCY_UNAVAILABLE
    assert error.retryable is True


def test_normalize_sql_error_maps_programming_to_terminal_dependency() -> None:
    exc = ProgrammingError("SELECT", {}, sqlite3.ProgrammingError("bad"))

    error = normalize_sql_error(exc)

    assert error.code == codes.DEPENDENCY_FAILURE
    assert error.retryable is False


def test_non_sql_errors_are_internal() -> None:
    exc = RuntimeError("boom")

    assert is_sql_error(exc) is False
    assert normalize_sql_error(exc).category == ErrorCategory.INTERNAL
