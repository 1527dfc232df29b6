"""Data-layer exports for Lease Authority Service."""

from services.state.lease_authority.data.repository import SqlLeaseRepository
from services.state.lease_authority.data.runtime import LeaseSqlRuntime

__all__ = ["LeaseSqlRuntime", "SqlLeaseRepository"]
