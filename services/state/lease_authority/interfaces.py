"""Transport-neutral protocol interfaces used by Lease Authority Service."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from services.state.lease_authority.domain import (
    AggregateStats,
    ObjectLease,
    ObjectRecord,
)


class LeaseRepository(Protocol):
    """Protocol for authoritative user/dataset/object/lease persistence."""

    def create_user_if_absent(
        self, *, wallet: str, created_at: datetime | None = None
    ) -> None:
        """Insert one user row unless it already exists."""

    def create_dataset_if_absent(
        self, *, dataset_id: str, wallet: str, created_at: datetime | None = None
    ) -> None:
        """Insert one dataset row unless it already exists."""

    def create_object(
        self,
        *,
        object_id: str,
        wallet: str,
        dataset_id: str,
        size_bytes: int,
        created_at: datetime | None = None,
    ) -> ObjectRecord:
        """Insert one object row; raise ``ConstraintError`` on duplicate id."""

    def create_lease(self, *, lease: ObjectLease) -> ObjectLease:
        """Insert one lease row; raise ``ConstraintError`` on duplicate id."""

    def record_upload(
        self, *, size_bytes: int, lease: ObjectLease
    ) -> tuple[ObjectRecord, ObjectLease]:
        """Insert user, dataset, object and lease rows atomically."""

    def find_latest_lease_by_object_id(self, *, object_id: str) -> ObjectLease | None:
        """Return the most recent lease for one object regardless of status."""

    def list_leases_by_owner(
        self, *, wallet: str
    ) -> list[tuple[ObjectLease, ObjectRecord]]:
        """Return every lease for one owner, newest first."""

    def find_expired_unswept(
        self, *, now: datetime | None = None
    ) -> list[ObjectLease]:
        """Return undeleted leases with ``expire_at <= now``."""

    def mark_deleted(
        self, *, lease_id: str, deleted_at: datetime | None = None
    ) -> bool:
        """Set ``deleted_at`` once; return whether this call changed the row."""

    def has_live_lease_for_piece(self, *, piece_id: str) -> bool:
        """Return whether any undeleted lease still references one piece."""

    def compute_stats(self, *, now: datetime | None = None) -> AggregateStats:
        """Aggregate dashboard counters."""

    def ping(self) -> bool:
        """Run a trivial query; raise when the store is unreachable."""
