"""Behavior tests for Lease Authority Service semantics."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from pathlib import Path
from threading import Event

import pytest
from sqlalchemy import text

from packages.qave_shared.config import SqlSettings
from packages.qave_shared.envelope import EnvelopeKind, EnvelopeMeta, new_meta
from packages.qave_shared.errors import ErrorCategory, codes
from resources.adapters.piece_storage import (
    DataSetMeta,
    InMemoryPieceStorageAdapter,
    LocalFilesystemPieceStorageAdapter,
    PieceStorageAdapter,
    PieceStorageError,
    PieceStorageSettings,
    UploadOptions,
    UploadResult,
)
from resources.substrates.sql import SessionProvider
from services.state.lease_authority.config import LeaseAuthoritySettings
from services.state.lease_authority.data import LeaseSqlRuntime, SqlLeaseRepository
from services.state.lease_authority.domain import LeaseStatus, ObjectLease, ObjectRecord
from services.state.lease_authority.guard import PieceGuard
from services.state.lease_authority.implementation import DefaultLeaseAuthorityService
from services.state.lease_authority.sweeper import ExpirationSweeper

_START = datetime(2026, 3, 1, 9, 15, 0, 250_000, tzinfo=UTC)


class _Clock:
    """Settable clock shared by the service under test."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class _FailingUploadAdapter(InMemoryPieceStorageAdapter):
    def upload(
        self, dataset_id: str, content: bytes, options: UploadOptions
    ) -> UploadResult:
        raise PieceStorageError("backend unavailable")


class _RecordingAdapter(InMemoryPieceStorageAdapter):
    """Memory backend that remembers dataset descriptors and file names."""

    def __init__(self) -> None:
        super().__init__()
        self.dataset_metas: list[DataSetMeta] = []
        self.file_names: list[str] = []

    def ensure_dataset(self, meta: DataSetMeta) -> str:
        self.dataset_metas.append(meta)
        return super().ensure_dataset(meta)

    def upload(
        self, dataset_id: str, content: bytes, options: UploadOptions
    ) -> UploadResult:
        self.file_names.append(options.file_name)
        return super().upload(dataset_id, content, options)


class _PausingRepository(SqlLeaseRepository):
    """Repository that can hold one upload between piece write and metadata insert."""

    def __init__(self, sessions: SessionProvider) -> None:
        super().__init__(sessions)
        self.pause_next = False
        self.paused = Event()
        self.release = Event()

    def record_upload(
        self, *, size_bytes: int, lease: ObjectLease
    ) -> tuple[ObjectRecord, ObjectLease]:
        if self.pause_next:
            self.pause_next = False
            self.paused.set()
            self.release.wait(5.0)
        return super().record_upload(size_bytes=size_bytes, lease=lease)


def _meta() -> EnvelopeMeta:
    return new_meta(kind=EnvelopeKind.COMMAND, source="test", principal="operator")


def _repository(tmp_path: Path, cls: type[SqlLeaseRepository] = SqlLeaseRepository) -> SqlLeaseRepository:
    runtime = LeaseSqlRuntime.from_sql_settings(
        SqlSettings(url=f"sqlite:///{tmp_path / 'meta.db'}")
    )
    runtime.create_schema()
    return cls(runtime.sessions)


def _service(
    tmp_path: Path,
    *,
    adapter: PieceStorageAdapter | None = None,
    repository: SqlLeaseRepository | None = None,
    clock: _Clock | None = None,
    guard: PieceGuard | None = None,
    **settings: object,
) -> DefaultLeaseAuthorityService:
    return DefaultLeaseAuthorityService(
        settings=LeaseAuthoritySettings(**settings),
        repository=repository or _repository(tmp_path),
        adapter=adapter or InMemoryPieceStorageAdapter(),
        clock=clock or _Clock(_START),
        guard=guard,
    )


def test_upload_read_and_list_end_to_end(tmp_path: Path) -> None:
    """1024 bytes upload, read back identically, and list as active."""
    clock = _Clock(_START)
    service = _service(tmp_path, clock=clock)
    content = bytes(range(256)) * 4

    uploaded = service.upload(meta=_meta(), wallet="w1", content=content)

    assert uploaded.ok is True
    assert uploaded.payload is not None
    receipt = uploaded.payload.value
    assert receipt.object.object_id != ""
    assert receipt.object.size_bytes == 1024
    assert receipt.lease.storage_ref.piece_id == "mock-piece-1"
    assert receipt.lease.storage_ref.dataset_id == "mock-ds-1"
    assert receipt.lease.created_at == _START
    assert receipt.lease.expire_at == _START + timedelta(days=30)

    read = service.get_object(meta=_meta(), object_id=receipt.object.object_id)
    assert read.ok is True
    assert read.payload is not None
    assert read.payload.value.content == content

    listed = service.list_objects(meta=_meta(), wallet="w1")
    assert listed.ok is True
    assert listed.payload is not None
    assert len(listed.payload.value) == 1
    assert listed.payload.value[0].status is LeaseStatus.ACTIVE
    assert listed.payload.value[0].object.object_id == receipt.object.object_id


def test_upload_uses_configured_dataset_and_file_name(tmp_path: Path) -> None:
    adapter = _RecordingAdapter()
    service = _service(tmp_path, adapter=adapter)

    service.upload(meta=_meta(), wallet="w1", content=b"abc")
    service.upload(meta=_meta(), wallet="w1", content=b"abc", file_name="notes.txt")

    assert adapter.dataset_metas[0] == DataSetMeta(application="Qave", version="1.0")
    assert adapter.file_names == ["file", "notes.txt"]


def test_expired_and_absent_objects_are_indistinguishable(tmp_path: Path) -> None:
    """Reads at or past expiry return the same not-found as unknown ids."""
    clock = _Clock(_START)
    service = _service(tmp_path, clock=clock)
    uploaded = service.upload(meta=_meta(), wallet="w1", content=b"payload")
    assert uploaded.payload is not None
    object_id = uploaded.payload.value.object.object_id

    clock.now = _START + timedelta(days=30) - timedelta(microseconds=1)
    assert service.get_object(meta=_meta(), object_id=object_id).ok is True

    clock.now = _START + timedelta(days=30)
    expired = service.get_object(meta=_meta(), object_id=object_id)
    absent = service.get_object(meta=_meta(), object_id="never-existed")

    assert expired.ok is False
    assert [(e.code, e.message, e.category) for e in expired.errors] == [
        (e.code, e.message, e.category) for e in absent.errors
    ]
    assert expired.errors[0].category == ErrorCategory.NOT_FOUND

    listed = service.list_objects(meta=_meta(), wallet="w1")
    assert listed.payload is not None
    assert [item.status for item in listed.payload.value] == [LeaseStatus.EXPIRED]


def test_deleted_lease_is_not_readable_but_still_listed(tmp_path: Path) -> None:
    repository = _repository(tmp_path)
    service = _service(tmp_path, repository=repository)
    uploaded = service.upload(meta=_meta(), wallet="w1", content=b"payload")
    assert uploaded.payload is not None
    receipt = uploaded.payload.value

    repository.mark_deleted(lease_id=receipt.lease.lease_id, deleted_at=_START)

    read = service.get_object(meta=_meta(), object_id=receipt.object.object_id)
    assert read.errors[0].code == codes.NOT_FOUND
    listed = service.list_objects(meta=_meta(), wallet="w1")
    assert listed.payload is not None
    assert [item.status for item in listed.payload.value] == [LeaseStatus.DELETED]


def test_missing_backing_piece_reads_as_not_found(tmp_path: Path) -> None:
    adapter = InMemoryPieceStorageAdapter()
    service = _service(tmp_path, adapter=adapter)
    uploaded = service.upload(meta=_meta(), wallet="w1", content=b"payload")
    assert uploaded.payload is not None
    adapter.delete(uploaded.payload.value.lease.storage_ref.piece_id)

    read = service.get_object(meta=_meta(), object_id=uploaded.payload.value.object.object_id)

    assert read.errors[0].category == ErrorCategory.NOT_FOUND


def test_blank_wallet_is_missing_wallet_validation_error(tmp_path: Path) -> None:
    adapter = InMemoryPieceStorageAdapter()
    service = _service(tmp_path, adapter=adapter)

    uploaded = service.upload(meta=_meta(), wallet="   ", content=b"abc")
    listed = service.list_objects(meta=_meta(), wallet="")

    assert uploaded.errors[0].code == codes.MISSING_WALLET
    assert uploaded.errors[0].category == ErrorCategory.VALIDATION
    assert listed.errors[0].code == codes.MISSING_WALLET
    assert adapter.health().detail == "ok; pieces=0"


def test_blank_object_id_is_validation_error(tmp_path: Path) -> None:
    result = _service(tmp_path).get_object(meta=_meta(), object_id=" ")

    assert result.errors[0].category == ErrorCategory.VALIDATION
    assert result.errors[0].code == codes.INVALID_ARGUMENT


def test_oversized_upload_is_rejected_before_backend(tmp_path: Path) -> None:
    adapter = InMemoryPieceStorageAdapter()
    service = _service(tmp_path, adapter=adapter, max_upload_bytes=8)

    rejected = service.upload(meta=_meta(), wallet="w1", content=b"123456789")
    accepted = service.upload(meta=_meta(), wallet="w1", content=b"12345678")

    assert rejected.errors[0].code == codes.PAYLOAD_TOO_LARGE
    assert accepted.ok is True
    assert accepted.payload is not None
    assert accepted.payload.value.lease.storage_ref.piece_id == "mock-piece-1"


def test_backend_failure_maps_to_retryable_dependency_error(tmp_path: Path) -> None:
    service = _service(tmp_path, adapter=_FailingUploadAdapter())

    result = service.upload(meta=_meta(), wallet="w1", content=b"abc")

    assert result.ok is False
    assert result.errors[0].category == ErrorCategory.DEPENDENCY
    assert result.errors[0].retryable is True
    listed = service.list_objects(meta=_meta(), wallet="w1")
    assert listed.payload is not None
    assert listed.payload.value == []


def test_duplicate_object_id_is_conflict_and_cleans_orphan_piece(tmp_path: Path) -> None:
    """Reused identifiers are rejected and the fresh piece is removed."""
    adapter = InMemoryPieceStorageAdapter()
    service = DefaultLeaseAuthorityService(
        settings=LeaseAuthoritySettings(),
        repository=_repository(tmp_path),
        adapter=adapter,
        clock=_Clock(_START),
        id_factory=lambda: "fixed-id",
    )

    first = service.upload(meta=_meta(), wallet="w1", content=b"one")
    second = service.upload(meta=_meta(), wallet="w1", content=b"two")

    assert first.ok is True
    assert second.errors[0].category == ErrorCategory.CONFLICT
    assert second.errors[0].code == codes.ALREADY_EXISTS
    assert "mock-piece-1" in adapter
    assert "mock-piece-2" not in adapter


def test_metadata_failure_removes_orphaned_piece_and_records_nothing(
    tmp_path: Path,
) -> None:
    """A rejected lease insert rolls back the user and object rows with it."""
    runtime = LeaseSqlRuntime.from_sql_settings(
        SqlSettings(url=f"sqlite:///{tmp_path / 'meta.db'}")
    )
    runtime.create_schema()
    with runtime.engine.begin() as connection:
        connection.execute(
            text(
                "CREATE TRIGGER reject_leases BEFORE INSERT ON leases "
                "BEGIN SELECT RAISE(ABORT, 'lease table unavailable'); END"
            )
        )
    repository = SqlLeaseRepository(runtime.sessions)
    adapter = InMemoryPieceStorageAdapter()
    service = _service(tmp_path, adapter=adapter, repository=repository)

    result = service.upload(meta=_meta(), wallet="w1", content=b"x" * 1024)

    assert result.ok is False
    assert "mock-piece-1" not in adapter
    stats = repository.compute_stats(now=_START)
    assert stats.total_users == 0
    assert stats.total_storage_bytes == 0
    assert stats.storage_today_bytes == 0
    assert repository.list_leases_by_owner(wallet="w1") == []


def test_upload_rows_use_the_service_clock(tmp_path: Path) -> None:
    """User and object rows share the injected upload time."""
    repository = _repository(tmp_path)
    service = _service(tmp_path, repository=repository, clock=_Clock(_START))

    service.upload(meta=_meta(), wallet="w1", content=b"abc")
    same_day = repository.compute_stats(now=_START)
    next_day = repository.compute_stats(now=_START + timedelta(days=1))

    assert (same_day.new_users_today, same_day.storage_today_bytes) == (1, 3)
    assert (next_day.new_users_today, next_day.storage_today_bytes) == (0, 0)
    assert next_day.total_users == 1


def test_sweep_waits_for_upload_sharing_the_expired_piece(tmp_path: Path) -> None:
    """An identical re-upload in flight keeps its piece through a sweep."""
    clock = _Clock(_START)
    adapter = LocalFilesystemPieceStorageAdapter(
        settings=PieceStorageSettings(
            backend="filesystem", root_dir=str(tmp_path / "pieces"), fsync_writes=False
        )
    )
    repository = _repository(tmp_path, _PausingRepository)
    assert isinstance(repository, _PausingRepository)
    guard = PieceGuard()
    service = _service(
        tmp_path, adapter=adapter, repository=repository, clock=clock, guard=guard
    )
    sweeper = ExpirationSweeper(
        repository=repository,
        adapter=adapter,
        settings=LeaseAuthoritySettings(),
        clock=clock,
        guard=guard,
    )
    first = service.upload(meta=_meta(), wallet="w1", content=b"same")
    assert first.payload is not None
    clock.now = _START + timedelta(days=31)
    repository.pause_next = True

    with ThreadPoolExecutor(max_workers=2) as pool:
        pending_upload = pool.submit(
            service.upload, meta=_meta(), wallet="w2", content=b"same"
        )
        assert repository.paused.wait(5.0)
        pending_sweep = pool.submit(sweeper.run_once)
        time.sleep(0.1)
        assert pending_sweep.done() is False
        repository.release.set()
        second = pending_upload.result(timeout=5.0)
        report = pending_sweep.result(timeout=5.0)

    assert report.marked == 1
    assert report.piece_delete_failures == 0
    assert second.payload is not None
    piece_id = second.payload.value.lease.storage_ref.piece_id
    assert piece_id == first.payload.value.lease.storage_ref.piece_id
    read = service.get_object(meta=_meta(), object_id=second.payload.value.object.object_id)
    assert read.payload is not None
    assert read.payload.value.content == b"same"
    assert guard.uploads_in_flight() == 0


def test_concurrent_uploads_for_one_owner_are_all_recorded(tmp_path: Path) -> None:
    """Parallel uploads succeed and none are lost from the listing."""
    service = _service(tmp_path)

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(
            pool.map(
                lambda index: service.upload(
                    meta=_meta(), wallet="w1", content=f"payload-{index}".encode()
                ),
                range(8),
            )
        )

    assert all(result.ok for result in results)
    object_ids = {r.payload.value.object.object_id for r in results if r.payload is not None}
    listed = service.list_objects(meta=_meta(), wallet="w1")
    assert listed.payload is not None
    assert {item.object.object_id for item in listed.payload.value} == object_ids
    assert len(object_ids) == 8


def test_dashboard_counts_expiring_window(tmp_path: Path) -> None:
    """A 3-day lease is expiring within 7 days; an 8-day lease is not."""
    clock = _Clock(datetime.now(UTC))
    repository = _repository(tmp_path)
    short = _service(
        tmp_path, repository=repository, clock=clock, lease_duration_days=3
    )
    long = _service(
        tmp_path, repository=repository, clock=clock, lease_duration_days=8
    )

    short.upload(meta=_meta(), wallet="w1", content=b"a" * 10)
    long.upload(meta=_meta(), wallet="w2", content=b"b" * 20)
    stats = short.dashboard(meta=_meta())

    assert stats.payload is not None
    assert stats.payload.value.expiring_in_7_days == 1
    assert stats.payload.value.total_users == 2
    assert stats.payload.value.total_storage_bytes == 30
    assert stats.payload.value.active_objects == 2


def test_health_reports_dependency_readiness(tmp_path: Path) -> None:
    result = _service(tmp_path).health(meta=_meta())

    assert result.payload is not None
    assert result.payload.value.service_ready is True
    assert result.payload.value.detail == "ok"


@pytest.mark.parametrize("field", ["envelope_id", "trace_id", "source", "principal"])
def test_invalid_metadata_is_rejected(tmp_path: Path, field: str) -> None:
    meta = new_meta(kind=EnvelopeKind.QUERY, source="test", principal="operator")
    broken = EnvelopeMeta(**{**meta.__dict__, field: ""})

    result = _service(tmp_path).dashboard(meta=broken)

    assert result.ok is False
    assert result.errors[0].message == f"metadata.{field} is required"
