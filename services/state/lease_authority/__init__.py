"""Lease Authority Service public API exports."""

from services.state.lease_authority.domain import (
    AggregateStats,
    HealthStatus,
    LeaseListing,
    LeaseStatus,
    ObjectContent,
    ObjectLease,
    ObjectRecord,
    StorageRef,
    SweepReport,
    SweeperStats,
    UploadReceipt,
)
from services.state.lease_authority.lifecycle import derive_status
from services.state.lease_authority.service import (
    LeaseAuthorityService,
    build_lease_authority_service,
)

__all__ = [
    "AggregateStats",
    "HealthStatus",
    "LeaseAuthorityService",
    "LeaseListing",
    "LeaseStatus",
    "ObjectContent",
    "ObjectLease",
    "ObjectRecord",
    "StorageRef",
    "SweepReport",
    "SweeperStats",
    "UploadReceipt",
    "build_lease_authority_service",
    "derive_status",
]
