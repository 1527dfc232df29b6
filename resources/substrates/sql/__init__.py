"""Shared SQL substrate primitives for the metadata database."""

from resources.substrates.sql.engine import create_sql_engine
from resources.substrates.sql.errors import is_sql_error, normalize_sql_error
from resources.substrates.sql.health import ping
from resources.substrates.sql.session import (
    SessionProvider,
    create_session_factory,
    transactional_session,
)

__all__ = [
    "SessionProvider",
    "create_session_factory",
    "create_sql_engine",
    "is_sql_error",
    "normalize_sql_error",
    "ping",
    "transactional_session",
]
