"""Concrete Lease Authority Service implementation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Callable
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from packages.qave_shared.envelope import (
    Envelope,
    EnvelopeMeta,
    failure,
    success,
    validate_meta,
)
from packages.qave_shared.errors import (
    ErrorDetail,
    codes,
    conflict_error,
    dependency_error,
    not_found_error,
    validation_error,
)
from packages.qave_shared.logging import get_logger, public_api_instrumented
from resources.adapters.piece_storage import (
    DataSetMeta,
    PieceNotFoundError,
    PieceStorageAdapter,
    UploadOptions,
)
from resources.substrates.sql import is_sql_error, normalize_sql_error
from services.state.lease_authority.config import (
    SERVICE_COMPONENT_ID,
    LeaseAuthoritySettings,
)
from services.state.lease_authority.domain import (
    AggregateStats,
    HealthStatus,
    LeaseListing,
    ObjectContent,
    ObjectLease,
    StorageRef,
    UploadReceipt,
)
from services.state.lease_authority.errors import ConstraintError
from services.state.lease_authority.guard import PieceGuard
from services.state.lease_authority.interfaces import LeaseRepository
from services.state.lease_authority.lifecycle import derive_status, is_readable
from services.state.lease_authority.service import LeaseAuthorityService
from services.state.lease_authority.validation import (
    ListObjectsRequest,
    ObjectIdRequest,
    UploadRequest,
)

_LOGGER = get_logger(__name__)

_FIELD_CODES = {"wallet": codes.MISSING_WALLET}


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid4())


class DefaultLeaseAuthorityService(LeaseAuthorityService):
    """Default implementation over a SQL repository and a piece storage backend."""

    def __init__(
        self,
        *,
        settings: LeaseAuthoritySettings,
        repository: LeaseRepository,
        adapter: PieceStorageAdapter,
        clock: Callable[[], datetime] = _utc_now,
        id_factory: Callable[[], str] = _new_id,
        guard: PieceGuard | None = None,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._adapter = adapter
        self._clock = clock
        self._new_id = id_factory
        self._guard = guard or PieceGuard()

    @public_api_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Report readiness of the metadata store and the piece backend."""
        errors = validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        details: list[str] = []
        try:
            store_ready = self._repository.ping()
        except Exception as exc:  # noqa: BLE001
            store_ready = False
            details.append(f"store: {type(exc).__name__}")
        try:
            storage = self._adapter.health()
            storage_ready = storage.ready
            if not storage.ready:
                details.append(f"storage: {storage.detail}")
        except Exception as exc:  # noqa: BLE001
            storage_ready = False
            details.append(f"storage: {type(exc).__name__}")

        return success(
            meta=meta,
            payload=HealthStatus(
                service_ready=store_ready and storage_ready,
                store_ready=store_ready,
                storage_ready=storage_ready,
                detail="ok" if not details else "; ".join(details),
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("wallet",),
    )
    def upload(
        self,
        *,
        meta: EnvelopeMeta,
        wallet: str,
        content: bytes,
        file_name: str = "",
    ) -> Envelope[UploadReceipt]:
        """Store bytes in the backend first, then record object and lease.

        All metadata rows are written in one transaction. When it fails the new
        piece is removed on a best-effort basis, unless a live lease shares it.
        """
        request, errors = self._validate_request(
            meta=meta,
            model=UploadRequest,
            payload={
                "wallet": wallet,
                "content": content,
                "file_name": file_name or self._settings.default_file_name,
            },
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert isinstance(request, UploadRequest)

        if len(request.content) > self._settings.max_upload_bytes:
            return failure(
                meta=meta,
                errors=[
                    validation_error(
                        f"max upload size is {self._settings.max_upload_bytes} bytes",
                        code=codes.PAYLOAD_TOO_LARGE,
                        metadata={"size_bytes": str(len(request.content))},
                    )
                ],
            )

        failed: Exception | None = None
        with self._guard.uploading():
            try:
                dataset_id = self._adapter.ensure_dataset(
                    DataSetMeta(
                        application=self._settings.dataset_application,
                        version=self._settings.dataset_version,
                    )
                )
                stored = self._adapter.upload(
                    dataset_id,
                    request.content,
                    UploadOptions(file_name=request.file_name),
                )
            except Exception as exc:  # noqa: BLE001
                return self._dependency_failure(meta=meta, operation="upload", exc=exc)

            created_at = self._clock()
            object_id = self._new_id()
            lease = ObjectLease(
                lease_id=self._new_id(),
                object_id=object_id,
                wallet=request.wallet,
                created_at=created_at,
                expire_at=created_at + timedelta(days=self._settings.lease_duration_days),
                storage_ref=StorageRef(dataset_id=dataset_id, piece_id=stored.piece_id),
            )
            try:
                record, lease = self._repository.record_upload(
                    size_bytes=len(request.content), lease=lease
                )
            except Exception as exc:  # noqa: BLE001
                failed = exc

        if failed is None:
            return success(meta=meta, payload=UploadReceipt(object=record, lease=lease))

        self._cleanup_orphaned_piece(piece_id=stored.piece_id)
        if isinstance(failed, ConstraintError):
            return failure(
                meta=meta,
                errors=[
                    conflict_error(
                        str(failed),
                        code=codes.ALREADY_EXISTS,
                        metadata={"entity": failed.entity, "id": failed.identifier},
                    )
                ],
            )
        return self._store_failure(meta=meta, operation="upload", exc=failed)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("object_id",),
    )
    def get_object(
        self, *, meta: EnvelopeMeta, object_id: str
    ) -> Envelope[ObjectContent]:
        """Read object bytes; absent, expired and deleted all look the same."""
        request, errors = self._validate_request(
            meta=meta,
            model=ObjectIdRequest,
            payload={"object_id": object_id},
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert isinstance(request, ObjectIdRequest)

        try:
            lease = self._repository.find_latest_lease_by_object_id(
                object_id=request.object_id
            )
        except Exception as exc:  # noqa: BLE001
            return self._store_failure(meta=meta, operation="get_object", exc=exc)
        if lease is None or not is_readable(lease, now=self._clock()):
            return self._not_found(meta=meta, object_id=request.object_id)

        try:
            content = self._adapter.download(lease.storage_ref.piece_id)
        except PieceNotFoundError:
            return self._not_found(meta=meta, object_id=request.object_id)
        except Exception as exc:  # noqa: BLE001
            return self._dependency_failure(meta=meta, operation="get_object", exc=exc)
        return success(meta=meta, payload=ObjectContent(lease=lease, content=content))

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=SERVICE_COMPONENT_ID,
        id_fields=("wallet",),
    )
    def list_objects(
        self, *, meta: EnvelopeMeta, wallet: str
    ) -> Envelope[list[LeaseListing]]:
        request, errors = self._validate_request(
            meta=meta,
            model=ListObjectsRequest,
            payload={"wallet": wallet},
        )
        if errors:
            return failure(meta=meta, errors=errors)
        assert isinstance(request, ListObjectsRequest)

        try:
            pairs = self._repository.list_leases_by_owner(wallet=request.wallet)
        except Exception as exc:  # noqa: BLE001
            return self._store_failure(meta=meta, operation="list_objects", exc=exc)

        now = self._clock()
        return success(
            meta=meta,
            payload=[
                LeaseListing(
                    lease=lease,
                    object=record,
                    status=derive_status(lease, now=now),
                )
                for lease, record in pairs
            ],
        )

    @public_api_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID)
    def dashboard(self, *, meta: EnvelopeMeta) -> Envelope[AggregateStats]:
        errors = validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        try:
            stats = self._repository.compute_stats(now=self._clock())
        except Exception as exc:  # noqa: BLE001
            return self._store_failure(meta=meta, operation="dashboard", exc=exc)
        return success(meta=meta, payload=stats)

    def _validate_request(
        self,
        *,
        meta: EnvelopeMeta,
        model: type[BaseModel],
        payload: dict[str, Any],
    ) -> tuple[BaseModel | None, list[ErrorDetail]]:
        """Validate envelope metadata and request payload model."""
        errors = validate_meta(meta)
        if errors:
            return None, errors

        try:
            request = model.model_validate(payload)
        except ValidationError as exc:
            return None, [
                validation_error(
                    f"request validation failed: {err['msg']}",
                    code=_FIELD_CODES.get(
                        str(err["loc"][0]) if err["loc"] else "",
                        codes.INVALID_ARGUMENT,
                    ),
                    metadata={"field": ".".join(str(p) for p in err["loc"])},
                )
                for err in exc.errors()
            ]
        return request, []

    def _not_found(self, *, meta: EnvelopeMeta, object_id: str) -> Envelope[Any]:
        """Return the one not-found envelope used for every invisible object."""
        return failure(
            meta=meta,
            errors=[
                not_found_error(
                    "object not found",
                    code=codes.NOT_FOUND,
                    metadata={"object_id": object_id},
                )
            ],
        )

    def _store_failure(
        self,
        *,
        meta: EnvelopeMeta,
        operation: str,
        exc: Exception,
    ) -> Envelope[Any]:
        if is_sql_error(exc):
            _LOGGER.warning(
                "%s failed due to metadata store error: exception_type=%s",
                operation,
                type(exc).__name__,
                exc_info=exc,
            )
            return failure(meta=meta, errors=[normalize_sql_error(exc)])
        return self._dependency_failure(meta=meta, operation=operation, exc=exc)

    def _dependency_failure(
        self,
        *,
        meta: EnvelopeMeta,
        operation: str,
        exc: Exception,
    ) -> Envelope[Any]:
        """Map one dependency/runtime exception into structured envelope errors."""
        _LOGGER.warning(
            "%s failed due to dependency error: exception_type=%s",
            operation,
            type(exc).__name__,
            exc_info=exc,
        )
        return failure(
            meta=meta,
            errors=[
                dependency_error(
                    f"{operation} failed",
                    code=codes.DEPENDENCY_FAILURE,
                    metadata={"exception_type": type(exc).__name__},
                )
            ],
        )

    def _cleanup_orphaned_piece(self, *, piece_id: str) -> None:
        """Best-effort delete of a piece uploaded before metadata failure."""
        with self._guard.deleting():
            try:
                if self._repository.has_live_lease_for_piece(piece_id=piece_id):
                    return
            except Exception:  # noqa: BLE001
                return
            try:
                self._adapter.delete(piece_id)
            except PieceNotFoundError:
                return
            except Exception as exc:  # noqa: BLE001
                _LOGGER.warning(
                    "Failed to clean orphaned piece: piece_id=%s exception_type=%s",
                    piece_id,
                    type(exc).__name__,
                    exc_info=exc,
                )
