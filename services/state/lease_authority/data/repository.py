"""Authoritative SQL repository for Lease Authority Service state.

Every operation runs in its own transaction. Write transactions never read
before their first write, so SQLite never has to upgrade a read lock to a
write lock mid-transaction.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Mapping

from sqlalchemy import Table, func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from packages.qave_shared.envelope import normalize_utc
from resources.substrates.sql import SessionProvider
from services.state.lease_authority.domain import (
    AggregateStats,
    LeaseStatus,
    ObjectLease,
    ObjectRecord,
    StorageRef,
)
from services.state.lease_authority.errors import ConstraintError
from services.state.lease_authority.interfaces import LeaseRepository
from services.state.lease_authority.lifecycle import derive_status

from .schema import datasets, leases, objects, users

EXPIRING_WINDOW = timedelta(days=7)


class SqlLeaseRepository(LeaseRepository):
    """SQL repository over the users/datasets/objects/leases tables."""

    def __init__(self, sessions: SessionProvider) -> None:
        self._sessions = sessions

    def create_user_if_absent(
        self, *, wallet: str, created_at: datetime | None = None
    ) -> None:
        with self._sessions.session() as session:
            _insert_user(session, wallet=wallet, created_at=_utc_or_now(created_at))

    def create_dataset_if_absent(
        self, *, dataset_id: str, wallet: str, created_at: datetime | None = None
    ) -> None:
        with self._sessions.session() as session:
            _insert_dataset(
                session,
                dataset_id=dataset_id,
                wallet=wallet,
                created_at=_utc_or_now(created_at),
            )

    def create_object(
        self,
        *,
        object_id: str,
        wallet: str,
        dataset_id: str,
        size_bytes: int,
        created_at: datetime | None = None,
    ) -> ObjectRecord:
        record = _object_record(
            object_id=object_id,
            wallet=wallet,
            dataset_id=dataset_id,
            size_bytes=size_bytes,
            created_at=created_at,
        )
        try:
            with self._sessions.session() as session:
                session.execute(objects.insert().values(**record.model_dump()))
        except IntegrityError as exc:
            raise ConstraintError(entity="object", identifier=object_id) from exc
        return record

    def create_lease(self, *, lease: ObjectLease) -> ObjectLease:
        stored = _stored_lease(lease)
        try:
            with self._sessions.session() as session:
                session.execute(leases.insert().values(**_lease_row(stored)))
        except IntegrityError as exc:
            raise ConstraintError(entity="lease", identifier=lease.lease_id) from exc
        return stored

    def record_upload(
        self, *, size_bytes: int, lease: ObjectLease
    ) -> tuple[ObjectRecord, ObjectLease]:
        """Insert user, dataset, object and lease rows in one transaction.

        Any failure rolls back every row, so an upload is recorded entirely or
        not at all.
        """
        stored = _stored_lease(lease)
        record = _object_record(
            object_id=lease.object_id,
            wallet=lease.wallet,
            dataset_id=lease.storage_ref.dataset_id,
            size_bytes=size_bytes,
            created_at=stored.created_at,
        )
        entity, identifier = "object", record.object_id
        try:
            with self._sessions.session() as session:
                _insert_user(session, wallet=record.wallet, created_at=record.created_at)
                _insert_dataset(
                    session,
                    dataset_id=record.dataset_id,
                    wallet=record.wallet,
                    created_at=record.created_at,
                )
                session.execute(objects.insert().values(**record.model_dump()))
                entity, identifier = "lease", stored.lease_id
                session.execute(leases.insert().values(**_lease_row(stored)))
        except IntegrityError as exc:
            raise ConstraintError(entity=entity, identifier=identifier) from exc
        return record, stored

    def find_latest_lease_by_object_id(self, *, object_id: str) -> ObjectLease | None:
        with self._sessions.session() as session:
            row = (
                session.execute(
                    select(leases)
                    .where(leases.c.object_id == object_id)
                    .order_by(leases.c.created_at.desc(), leases.c.lease_id.desc())
                    .limit(1)
                )
                .mappings()
                .one_or_none()
            )
            return None if row is None else _to_lease(row)

    def list_leases_by_owner(
        self, *, wallet: str
    ) -> list[tuple[ObjectLease, ObjectRecord]]:
        stmt = (
            select(
                leases,
                objects.c.wallet.label("object_wallet"),
                objects.c.dataset_id.label("object_dataset_id"),
                objects.c.size_bytes,
                objects.c.created_at.label("object_created_at"),
            )
            .join(objects, objects.c.object_id == leases.c.object_id)
            .where(leases.c.wallet == wallet)
            .order_by(leases.c.created_at.desc(), leases.c.lease_id.desc())
        )
        with self._sessions.session() as session:
            rows = session.execute(stmt).mappings().all()
        return [(_to_lease(row), _to_object(row)) for row in rows]

    def find_expired_unswept(
        self, *, now: datetime | None = None
    ) -> list[ObjectLease]:
        instant = _utc_or_now(now)
        stmt = (
            select(leases)
            .where(
                leases.c.deleted_at.is_(None),
                leases.c.expire_at.is_not(None),
                leases.c.expire_at <= instant,
            )
            .order_by(leases.c.expire_at, leases.c.lease_id)
        )
        with self._sessions.session() as session:
            rows = session.execute(stmt).mappings().all()
        return [_to_lease(row) for row in rows]

    def mark_deleted(
        self, *, lease_id: str, deleted_at: datetime | None = None
    ) -> bool:
        """Set ``deleted_at`` only while it is still NULL."""
        with self._sessions.session() as session:
            result = session.execute(
                update(leases)
                .where(leases.c.lease_id == lease_id, leases.c.deleted_at.is_(None))
                .values(deleted_at=_utc_or_now(deleted_at))
            )
            return int(result.rowcount or 0) > 0

    def has_live_lease_for_piece(self, *, piece_id: str) -> bool:
        with self._sessions.session() as session:
            found = session.execute(
                select(leases.c.lease_id)
                .where(leases.c.piece_cid == piece_id, leases.c.deleted_at.is_(None))
                .limit(1)
            ).first()
            return found is not None

    def compute_stats(self, *, now: datetime | None = None) -> AggregateStats:
        """Aggregate counters; lease status counts go through ``derive_status``.

        Every lease row is loaded to classify it, which does not scale past a
        modest lease count.
        """
        instant = _utc_or_now(now)
        day_start = instant.replace(hour=0, minute=0, second=0, microsecond=0)
        horizon = instant + EXPIRING_WINDOW

        with self._sessions.session() as session:
            total_users = session.execute(
                select(func.count()).select_from(users)
            ).scalar_one()
            new_users_today = session.execute(
                select(func.count())
                .select_from(users)
                .where(users.c.created_at >= day_start)
            ).scalar_one()
            total_storage = session.execute(
                select(func.coalesce(func.sum(objects.c.size_bytes), 0))
            ).scalar_one()
            storage_today = session.execute(
                select(func.coalesce(func.sum(objects.c.size_bytes), 0)).where(
                    objects.c.created_at >= day_start
                )
            ).scalar_one()
            rows = session.execute(select(leases)).mappings().all()

        counts = {status: 0 for status in LeaseStatus}
        expiring = 0
        for row in rows:
            lease = _to_lease(row)
            status = derive_status(lease, now=instant)
            counts[status] += 1
            if (
                status is LeaseStatus.ACTIVE
                and lease.expire_at is not None
                and lease.expire_at <= horizon
            ):
                expiring += 1

        return AggregateStats(
            total_users=int(total_users),
            new_users_today=int(new_users_today),
            total_storage_bytes=int(total_storage),
            storage_today_bytes=int(storage_today),
            expiring_in_7_days=expiring,
            active_objects=counts[LeaseStatus.ACTIVE],
            expired_objects=counts[LeaseStatus.EXPIRED],
            deleted_objects=counts[LeaseStatus.DELETED],
        )

    def ping(self) -> bool:
        with self._sessions.session() as session:
            session.execute(select(1)).scalar_one()
        return True


def _insert_ignore(session: Session, table: Table, values: dict[str, Any]) -> None:
    """Insert one row, doing nothing when the primary key already exists."""
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing()
    elif dialect == "postgresql":
        stmt = postgresql_insert(table).values(**values).on_conflict_do_nothing()
    else:
        raise ValueError(f"unsupported SQL dialect: {dialect}")
    session.execute(stmt)


def _insert_user(session: Session, *, wallet: str, created_at: datetime) -> None:
    _insert_ignore(session, users, {"wallet": wallet, "created_at": created_at})


def _insert_dataset(
    session: Session, *, dataset_id: str, wallet: str, created_at: datetime
) -> None:
    _insert_ignore(
        session,
        datasets,
        {"dataset_id": dataset_id, "wallet": wallet, "created_at": created_at},
    )


def _object_record(
    *,
    object_id: str,
    wallet: str,
    dataset_id: str,
    size_bytes: int,
    created_at: datetime | None,
) -> ObjectRecord:
    return ObjectRecord(
        object_id=object_id,
        wallet=wallet,
        dataset_id=dataset_id,
        size_bytes=size_bytes,
        created_at=_utc_or_now(created_at),
    )


def _stored_lease(lease: ObjectLease) -> ObjectLease:
    return lease.model_copy(
        update={
            "created_at": normalize_utc(lease.created_at),
            "expire_at": _utc_or_none(lease.expire_at),
            "tombstoned_at": _utc_or_none(lease.tombstoned_at),
            "deleted_at": _utc_or_none(lease.deleted_at),
        }
    )


def _lease_row(lease: ObjectLease) -> dict[str, Any]:
    return {
        "lease_id": lease.lease_id,
        "object_id": lease.object_id,
        "wallet": lease.wallet,
        "created_at": lease.created_at,
        "expire_at": lease.expire_at,
        "tombstoned_at": lease.tombstoned_at,
        "deleted_at": lease.deleted_at,
        "bucket": lease.bucket,
        "object_key": lease.key,
        "dataset_id": lease.storage_ref.dataset_id,
        "piece_cid": lease.storage_ref.piece_id,
    }


def _to_lease(row: Mapping[str, Any]) -> ObjectLease:
    """Map one SQL row to a strict domain lease."""
    return ObjectLease(
        lease_id=str(row["lease_id"]),
        object_id=str(row["object_id"]),
        wallet=str(row["wallet"]),
        created_at=_row_dt(row, "created_at"),
        expire_at=_row_dt_or_none(row, "expire_at"),
        tombstoned_at=_row_dt_or_none(row, "tombstoned_at"),
        deleted_at=_row_dt_or_none(row, "deleted_at"),
        bucket=str(row["bucket"] or ""),
        key=str(row["object_key"] or ""),
        storage_ref=StorageRef(
            dataset_id=str(row["dataset_id"]),
            piece_id=str(row["piece_cid"]),
        ),
    )


def _to_object(row: Mapping[str, Any]) -> ObjectRecord:
    return ObjectRecord(
        object_id=str(row["object_id"]),
        wallet=str(row["object_wallet"]),
        dataset_id=str(row["object_dataset_id"]),
        size_bytes=int(row["size_bytes"]),
        created_at=_row_dt(row, "object_created_at"),
    )


def _row_dt(row: Mapping[str, Any], column: str) -> datetime:
    """Read and normalize one timezone-aware datetime field from SQL row."""
    value = row.get(column)
    if not isinstance(value, datetime):
        raise ValueError(f"expected datetime column for {column}")
    return normalize_utc(value)


def _row_dt_or_none(row: Mapping[str, Any], column: str) -> datetime | None:
    if row.get(column) is None:
        return None
    return _row_dt(row, column)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _utc_or_now(value: datetime | None) -> datetime:
    # SQLite stores naive text; every bound value must already be UTC.
    return _utc_now() if value is None else normalize_utc(value)


def _utc_or_none(value: datetime | None) -> datetime | None:
    return None if value is None else normalize_utc(value)
