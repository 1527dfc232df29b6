"""Lease status derivation.

``derive_status`` is the only place expiry policy is defined. The read path,
owner listings, dashboard aggregation, and the sweeper all call it rather than
comparing timestamps themselves.

There is no grace period: at ``now >= expire_at`` a lease stops being readable
even if the sweeper has not yet reclaimed it.
"""

from __future__ import annotations

from datetime import UTC, datetime

from packages.qave_shared.envelope import normalize_utc
from services.state.lease_authority.domain import LeaseStatus, ObjectLease


def derive_status(lease: ObjectLease, *, now: datetime | None = None) -> LeaseStatus:
    """Classify one lease against ``now`` (current UTC time when omitted).

    Deletion dominates expiry. A lease without ``expire_at`` never expires.
    """
    if lease.deleted_at is not None:
        return LeaseStatus.DELETED
    if lease.expire_at is None:
        return LeaseStatus.ACTIVE
    instant = datetime.now(UTC) if now is None else normalize_utc(now)
    if instant >= normalize_utc(lease.expire_at):
        return LeaseStatus.EXPIRED
    return LeaseStatus.ACTIVE


def is_readable(lease: ObjectLease, *, now: datetime | None = None) -> bool:
    """Return whether lease content may be served to a reader."""
    return derive_status(lease, now=now) is LeaseStatus.ACTIVE
