"""SQLAlchemy exception normalization helpers."""

from __future__ import annotations

from packages.qave_shared.errors import (
    ErrorDetail,
    codes,
    conflict_error,
    dependency_error,
    internal_error,
)


def is_sql_error(exc: Exception) -> bool:
    """Return whether one exception originates from the SQLAlchemy/driver stack."""
    module = type(exc).__module__
    return module.startswith(("sqlalchemy", "sqlite3", "psycopg"))


def normalize_sql_error(exc: Exception) -> ErrorDetail:
    """Map low-level DB exceptions into shared structured error semantics."""
    exc_type_name = type(exc).__name__
    message = str(exc)
    metadata = {"exception_type": exc_type_name}

    if (
        "IntegrityError" in exc_type_name
        or "UniqueViolation" in exc_type_name
        or "UNIQUE constraint failed" in message
        or "duplicate key value" in message
    ):
        return conflict_error(
            "resource already exists",
            code=codes.ALREADY_EXISTS,
            metadata=metadata,
        )

    if (
        "OperationalError" in exc_type_name
        or "timeout" in message.lower()
        or "database is locked" in message
    ):
        return dependency_error(
            "metadata store unavailable",
            code=codes.DEPENDENCY_UNAVAILABLE,
            retryable=True,
            metadata=metadata,
        )

    if "InterfaceError" in exc_type_name or "ProgrammingError" in exc_type_name:
        return dependency_error(
            "metadata store request failed",
            code=codes.DEPENDENCY_FAILURE,
            retryable=False,
            metadata=metadata,
        )

    return internal_error(
        "unexpected metadata store failure",
        code=codes.UNEXPECTED_EXCEPTION,
        metadata=metadata,
    )
