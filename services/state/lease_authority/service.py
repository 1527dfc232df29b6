"""Authoritative in-process Python API for Lease Authority Service."""

from __future__ import annotations

from abc import ABC, abstractmethod

from packages.qave_shared.config import QaveSettings
from packages.qave_shared.envelope import Envelope, EnvelopeMeta
from resources.adapters.piece_storage import PieceStorageAdapter
from services.state.lease_authority.domain import (
    AggregateStats,
    HealthStatus,
    LeaseListing,
    ObjectContent,
    UploadReceipt,
)
from services.state.lease_authority.guard import PieceGuard
from services.state.lease_authority.interfaces import LeaseRepository


class LeaseAuthorityService(ABC):
    """Public API for leased object upload, read, listing, and aggregates."""

    @abstractmethod
    def upload(
        self,
        *,
        meta: EnvelopeMeta,
        wallet: str,
        content: bytes,
        file_name: str = "",
    ) -> Envelope[UploadReceipt]:
        """Store one payload and bind it to a fresh object and lease."""

    @abstractmethod
    def get_object(
        self, *, meta: EnvelopeMeta, object_id: str
    ) -> Envelope[ObjectContent]:
        """Return object bytes only while its latest lease is active."""

    @abstractmethod
    def list_objects(
        self, *, meta: EnvelopeMeta, wallet: str
    ) -> Envelope[list[LeaseListing]]:
        """List every lease for one owner with derived status, newest first."""

    @abstractmethod
    def dashboard(self, *, meta: EnvelopeMeta) -> Envelope[AggregateStats]:
        """Return aggregate counters over all users, objects, and leases."""

    @abstractmethod
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return service and owned dependency readiness status."""


def build_lease_authority_service(
    *,
    settings: QaveSettings,
    repository: LeaseRepository | None = None,
    adapter: PieceStorageAdapter | None = None,
    guard: PieceGuard | None = None,
) -> LeaseAuthorityService:
    """Build default Lease Authority implementation from typed settings.

    Without an injected ``repository`` a SQL runtime is created from
    ``settings.sql`` and missing tables are created.
    """
    from resources.adapters.piece_storage import (
        build_piece_storage_adapter,
        resolve_piece_storage_settings,
    )
    from services.state.lease_authority.config import resolve_lease_authority_settings
    from services.state.lease_authority.data import LeaseSqlRuntime, SqlLeaseRepository
    from services.state.lease_authority.implementation import (
        DefaultLeaseAuthorityService,
    )

    if repository is None:
        runtime = LeaseSqlRuntime.from_settings(settings)
        runtime.create_schema()
        repository = SqlLeaseRepository(runtime.sessions)
    return DefaultLeaseAuthorityService(
        settings=resolve_lease_authority_settings(settings),
        repository=repository,
        adapter=adapter
        or build_piece_storage_adapter(resolve_piece_storage_settings(settings)),
        guard=guard,
    )
