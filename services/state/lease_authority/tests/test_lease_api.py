"""HTTP contract tests for Lease Authority routes."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from packages.qave_shared.config import SqlSettings
from packages.qave_shared.errors import (
    codes,
    conflict_error,
    dependency_error,
    validation_error,
)
from packages.qave_shared.http import REQUEST_ID_HEADER, create_app
from resources.adapters.piece_storage import InMemoryPieceStorageAdapter
from services.state.lease_authority.api import register_routes, status_for
from services.state.lease_authority.config import LeaseAuthoritySettings
from services.state.lease_authority.data import LeaseSqlRuntime, SqlLeaseRepository
from services.state.lease_authority.implementation import DefaultLeaseAuthorityService
from services.state.lease_authority.sweeper import ExpirationSweeper

_START = datetime(2026, 3, 1, 9, 0, 0, tzinfo=UTC)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock(_START)


@pytest.fixture
def client(tmp_path: Path, clock: _Clock) -> TestClient:
    runtime = LeaseSqlRuntime.from_sql_settings(
        SqlSettings(url=f"sqlite:///{tmp_path / 'meta.db'}")
    )
    runtime.create_schema()
    repository = SqlLeaseRepository(runtime.sessions)
    adapter = InMemoryPieceStorageAdapter()
    settings = LeaseAuthoritySettings(max_upload_bytes=64)
    service = DefaultLeaseAuthorityService(
        settings=settings, repository=repository, adapter=adapter, clock=clock
    )
    sweeper = ExpirationSweeper(repository=repository, adapter=adapter, settings=settings)
    app = create_app(title="qave-test")
    register_routes(app, service=service, settings=settings, sweeper=sweeper)
    return TestClient(app)


def _upload(client: TestClient, body: bytes = b"hello world", wallet: str = "w1") -> dict:
    response = client.post("/upload", content=body, headers={"X-Wallet": wallet})
    assert response.status_code == 200, response.text
    return response.json()


def test_health_reports_ok_with_request_id(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["sweeper"]["running"] is False
    assert response.headers[REQUEST_ID_HEADER] != ""


def test_upload_returns_receipt_fields(client: TestClient) -> None:
    """Upload responds with ids, piece reference, size, and a 30-day expiry."""
    body = _upload(client)

    assert set(body) == {
        "object_id",
        "lease_id",
        "piece_cid",
        "size",
        "created_at",
        "expire_at",
    }
    assert body["piece_cid"] == "mock-piece-1"
    assert body["size"] == 11
    created_at = datetime.fromisoformat(body["created_at"])
    expire_at = datetime.fromisoformat(body["expire_at"])
    assert expire_at - created_at == timedelta(days=30)


def test_upload_without_wallet_is_rejected(client: TestClient) -> None:
    response = client.post("/upload", content=b"abc")

    assert response.status_code == 400
    assert response.json() == {
        "error": "missing_wallet",
        "message": "X-Wallet header required",
    }


def test_blank_wallet_header_is_rejected(client: TestClient) -> None:
    response = client.get("/objects", headers={"X-Wallet": "  "})

    assert response.status_code == 400
    assert response.json()["error"] == "missing_wallet"


def test_oversized_upload_returns_413(client: TestClient) -> None:
    response = client.post("/upload", content=b"x" * 65, headers={"X-Wallet": "w1"})

    assert response.status_code == 413
    assert response.json()["error"] == "payload_too_large"


def test_get_object_returns_raw_bytes_while_active(
    client: TestClient, clock: _Clock
) -> None:
    """Bytes are served until expiry, then the route returns not found."""
    body = _upload(client, body=b"\x00\x01binary")

    response = client.get(f"/object/{body['object_id']}")
    assert response.status_code == 200
    assert response.content == b"\x00\x01binary"

    clock.now = _START + timedelta(days=30)
    expired = client.get(f"/object/{body['object_id']}")
    missing = client.get("/object/does-not-exist")

    assert expired.status_code == 404
    assert expired.json() == missing.json() == {
        "error": "not_found",
        "message": "object not found",
    }


def test_list_objects_is_newest_first_with_status(
    client: TestClient, clock: _Clock
) -> None:
    first = _upload(client, body=b"one")
    clock.now = _START + timedelta(seconds=1)
    second = _upload(client, body=b"two")
    _upload(client, body=b"other owner", wallet="w2")

    response = client.get("/objects", headers={"X-Wallet": "w1"})

    assert response.status_code == 200
    items = response.json()
    assert [item["object_id"] for item in items] == [
        second["object_id"],
        first["object_id"],
    ]
    assert {item["status"] for item in items} == {"active"}
    assert items[0]["size"] == 3
    assert items[0]["deleted_at"] is None


def test_dashboard_returns_aggregate_stats(client: TestClient) -> None:
    _upload(client, body=b"12345")
    _upload(client, body=b"123", wallet="w2")

    response = client.get("/dashboard")

    assert response.status_code == 200
    stats = response.json()
    assert stats["total_users"] == 2
    assert stats["total_storage_bytes"] == 8
    assert stats["active_objects"] == 2
    assert stats["expired_objects"] == 0
    assert stats["deleted_objects"] == 0


def test_status_mapping_covers_error_categories() -> None:
    assert status_for(validation_error("bad")) == 400
    assert status_for(validation_error("big", code=codes.PAYLOAD_TOO_LARGE)) == 413
    assert status_for(conflict_error("dup")) == 409
    assert status_for(dependency_error("down")) == 503
