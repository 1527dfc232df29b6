"""Tests for structured logging context propagation and formatting."""

from __future__ import annotations

import contextvars
import json
import logging
import threading
from collections.abc import Iterator

import pytest

from packages.qave_shared.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_context,
    log_context,
)
from packages.qave_shared.logging.config import (
    ContextFilter,
    JsonFormatter,
    PlainFormatter,
)


@pytest.fixture(autouse=True)
def _isolated_context() -> Iterator[None]:
    clear_context()
    yield
    clear_context()


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(message: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name="qave.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )


def test_log_context_binds_and_restores() -> None:
    bind_context(service="qave")

    with log_context({"lease_id": "lease-1", "ignored": None}):
        assert get_context() == {"service": "qave", "lease_id": "lease-1"}
        with log_context({"piece_id": 7}):
            assert get_context()["piece_id"] == "7"
        assert "piece_id" not in get_context()

    assert get_context() == {"service": "qave"}


def test_clear_context_removes_selected_keys() -> None:
    bind_context(a="1", b="2")

    clear_context("a")

    assert get_context() == {"b": "2"}


def test_context_reaches_threads_started_from_copied_context() -> None:
    """Fields bound before a copy_context() run are visible inside the thread."""
    seen: dict[str, str] = {}

    with log_context({"request_id": "req-1"}):
        ctx = contextvars.copy_context()

    thread = threading.Thread(target=ctx.run, args=(lambda: seen.update(get_context()),))
    thread.start()
    thread.join()

    assert seen == {"request_id": "req-1"}
    assert get_context() == {}


def test_json_formatter_merges_context_fields() -> None:
    record = _record("sweep done")
    with log_context({"event": "sweep_cycle", "marked": 2}):
        ContextFilter().filter(record)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "sweep done"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "qave.test"
    assert payload["event"] == "sweep_cycle"
    assert payload["marked"] == "2"


def test_plain_formatter_appends_sorted_context() -> None:
    record = _record()
    with log_context({"b": "2", "a": "1"}):
        ContextFilter().filter(record)

    assert PlainFormatter().format(record).endswith("hello a=1 b=2")


def test_configure_logging_replaces_handlers(restore_root_logger: None) -> None:
    """Repeated configuration keeps a single stdout handler."""
    configure_logging(level="debug", json_output=False, service="qave", environment="test")
    configure_logging(level="WARNING", service="qave", environment="test")

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert root.level == logging.WARNING
    assert isinstance(root.handlers[0].formatter, JsonFormatter)
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    assert get_context() == {"service": "qave", "environment": "test"}
