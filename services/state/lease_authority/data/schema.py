"""SQLAlchemy table definitions owned by Lease Authority Service."""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("wallet", String(256), primary_key=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

datasets = Table(
    "datasets",
    metadata,
    Column("dataset_id", String(256), primary_key=True),
    Column("wallet", String(256), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

objects = Table(
    "objects",
    metadata,
    Column("object_id", String(64), primary_key=True),
    Column("wallet", String(256), ForeignKey("users.wallet"), nullable=False),
    Column("dataset_id", String(256), nullable=False),
    Column("size_bytes", BigInteger, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("size_bytes >= 0", name="ck_objects_size_nonnegative"),
)

leases = Table(
    "leases",
    metadata,
    Column("lease_id", String(64), primary_key=True),
    Column("object_id", String(64), ForeignKey("objects.object_id"), nullable=False),
    Column("wallet", String(256), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("expire_at", DateTime(timezone=True), nullable=True),
    Column("tombstoned_at", DateTime(timezone=True), nullable=True),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
    Column("bucket", String(256), nullable=False, server_default=""),
    Column("object_key", String(1024), nullable=False, server_default=""),
    Column("dataset_id", String(256), nullable=False),
    Column("piece_cid", String(256), nullable=False),
    Index("ix_leases_object_created", "object_id", "created_at"),
    Index("ix_leases_wallet_created", "wallet", "created_at"),
    Index("ix_leases_expire_at", "expire_at"),
    Index("ix_leases_piece_cid", "piece_cid"),
)
