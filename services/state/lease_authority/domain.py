"""Domain contracts for Lease Authority Service payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LeaseStatus(str, Enum):
    """Visibility state derived from lease timestamps; never stored."""

    ACTIVE = "active"
    EXPIRED = "expired"
    DELETED = "deleted"


class StorageRef(BaseModel):
    """Location of one payload in the piece storage backend."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    dataset_id: str
    piece_id: str


class ObjectRecord(BaseModel):
    """Immutable record of one uploaded payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    object_id: str
    wallet: str
    dataset_id: str
    size_bytes: int = Field(ge=0)
    created_at: datetime


class ObjectLease(BaseModel):
    """Time-bounded ownership claim binding one object to a storage reference.

    ``expire_at`` is fixed at creation and ``None`` means the lease never
    expires. ``deleted_at`` is written once by the expiration sweeper.
    ``tombstoned_at``, ``bucket`` and ``key`` are persisted but not written by
    any code path yet.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    lease_id: str
    object_id: str
    wallet: str
    created_at: datetime
    expire_at: datetime | None = None
    tombstoned_at: datetime | None = None
    deleted_at: datetime | None = None
    bucket: str = ""
    key: str = ""
    storage_ref: StorageRef


class LeaseListing(BaseModel):
    """One owner listing entry with its derived status attached."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    lease: ObjectLease
    object: ObjectRecord
    status: LeaseStatus


class AggregateStats(BaseModel):
    """Dashboard aggregates over every user, object, and lease."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_users: int = 0
    new_users_today: int = 0
    total_storage_bytes: int = 0
    storage_today_bytes: int = 0
    expiring_in_7_days: int = 0
    active_objects: int = 0
    expired_objects: int = 0
    deleted_objects: int = 0


class UploadReceipt(BaseModel):
    """Result of one accepted upload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    object: ObjectRecord
    lease: ObjectLease


class ObjectContent(BaseModel):
    """Readable object bytes plus the lease that made them visible."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    lease: ObjectLease
    content: bytes


class SweepReport(BaseModel):
    """Outcome of one expiration sweep cycle."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    started_at: datetime
    found: int = 0
    marked: int = 0
    pieces_deleted: int = 0
    piece_delete_failures: int = 0
    interrupted: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SweeperStats(BaseModel):
    """Cumulative sweeper counters exposed through health."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    running: bool
    cycles_completed: int
    cycles_failed: int
    leases_swept: int
    piece_delete_failures: int
    last_cycle_at: datetime | None = None
    last_error: str | None = None


class HealthStatus(BaseModel):
    """Service and owned dependency readiness status payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_ready: bool
    store_ready: bool
    storage_ready: bool
    detail: str
