"""HTTP routes for Lease Authority Service.

Handlers stay thin: parse headers and bodies, call the in-process service in
the threadpool, and map envelope errors onto status codes.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from packages.qave_shared.envelope import EnvelopeKind, EnvelopeMeta, new_meta
from packages.qave_shared.errors import ErrorCategory, ErrorDetail, codes
from packages.qave_shared.http import (
    BodyTooLargeError,
    MissingHeaderError,
    error_body,
    get_header,
    read_bounded_body,
)
from packages.qave_shared.logging import fields, get_context, get_logger
from services.state.lease_authority.config import LeaseAuthoritySettings
from services.state.lease_authority.domain import LeaseListing, UploadReceipt
from services.state.lease_authority.service import LeaseAuthorityService
from services.state.lease_authority.sweeper import ExpirationSweeper

WALLET_HEADER = "X-Wallet"

_LOGGER = get_logger(__name__)

_STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.DEPENDENCY: 503,
    ErrorCategory.INTERNAL: 500,
}


def register_routes(
    app: FastAPI,
    *,
    service: LeaseAuthorityService,
    settings: LeaseAuthoritySettings,
    sweeper: ExpirationSweeper | None = None,
) -> None:
    """Attach health, upload, object, listing, and dashboard routes."""

    @app.get("/health")
    async def health() -> JSONResponse:
        result = await run_in_threadpool(
            lambda: service.health(meta=_meta(kind=EnvelopeKind.QUERY))
        )
        if not result.ok or result.payload is None:
            return _error_response(result.errors)
        status = result.payload.value
        body: dict[str, Any] = {
            "status": "ok" if status.service_ready else "degraded",
            **status.model_dump(mode="json"),
            "sweeper": None
            if sweeper is None
            else sweeper.stats().model_dump(mode="json"),
        }
        return JSONResponse(status_code=200 if status.service_ready else 503, content=body)

    @app.post("/upload")
    async def upload(request: Request) -> JSONResponse:
        try:
            wallet = get_header(request, WALLET_HEADER)
        except MissingHeaderError as exc:
            return _json_error(400, codes.MISSING_WALLET, exc.message)
        try:
            content = await read_bounded_body(
                request, limit_bytes=settings.max_upload_bytes
            )
        except BodyTooLargeError as exc:
            return _json_error(413, codes.PAYLOAD_TOO_LARGE, exc.message)

        file_name = request.query_params.get("filename", "")
        meta = _meta(kind=EnvelopeKind.COMMAND, principal=wallet)
        result = await run_in_threadpool(
            lambda: service.upload(
                meta=meta, wallet=wallet or "", content=content, file_name=file_name
            )
        )
        if not result.ok or result.payload is None:
            return _error_response(result.errors)
        return JSONResponse(content=_receipt_body(result.payload.value))

    @app.get("/object/{object_id}")
    async def get_object(object_id: str) -> Response:
        result = await run_in_threadpool(
            lambda: service.get_object(
                meta=_meta(kind=EnvelopeKind.QUERY), object_id=object_id
            )
        )
        if not result.ok or result.payload is None:
            return _error_response(result.errors)
        return Response(
            content=result.payload.value.content,
            media_type="application/octet-stream",
        )

    @app.get("/objects")
    async def list_objects(request: Request) -> JSONResponse:
        try:
            wallet = get_header(request, WALLET_HEADER)
        except MissingHeaderError as exc:
            return _json_error(400, codes.MISSING_WALLET, exc.message)
        meta = _meta(kind=EnvelopeKind.QUERY, principal=wallet)
        result = await run_in_threadpool(
            lambda: service.list_objects(meta=meta, wallet=wallet or "")
        )
        if not result.ok or result.payload is None:
            return _error_response(result.errors)
        return JSONResponse(
            content=[_listing_body(item) for item in result.payload.value]
        )

    @app.get("/dashboard")
    async def dashboard() -> JSONResponse:
        result = await run_in_threadpool(
            lambda: service.dashboard(meta=_meta(kind=EnvelopeKind.QUERY))
        )
        if not result.ok or result.payload is None:
            return _error_response(result.errors)
        return JSONResponse(content=result.payload.value.model_dump(mode="json"))


def status_for(error: ErrorDetail) -> int:
    """Map one envelope error onto an HTTP status code."""
    if error.code == codes.PAYLOAD_TOO_LARGE:
        return 413
    return _STATUS_BY_CATEGORY.get(error.category, 500)


def _meta(*, kind: EnvelopeKind, principal: str | None = None) -> EnvelopeMeta:
    """Build call metadata; the request id doubles as the trace id."""
    return new_meta(
        kind=kind,
        source="http",
        principal=principal or "anonymous",
        trace_id=get_context().get(fields.REQUEST_ID),
    )


def _error_response(errors: list[ErrorDetail]) -> JSONResponse:
    if not errors:
        _LOGGER.error("Service returned neither payload nor errors")
        return _json_error(500, codes.INTERNAL_ERROR, "internal error")
    first = errors[0]
    return _json_error(status_for(first), first.code, first.message)


def _json_error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=error_body(code=code, message=message)
    )


def _receipt_body(receipt: UploadReceipt) -> dict[str, Any]:
    lease = receipt.lease
    return {
        "object_id": receipt.object.object_id,
        "lease_id": lease.lease_id,
        "piece_cid": lease.storage_ref.piece_id,
        "size": receipt.object.size_bytes,
        "created_at": lease.created_at.isoformat(),
        "expire_at": None if lease.expire_at is None else lease.expire_at.isoformat(),
    }


def _listing_body(item: LeaseListing) -> dict[str, Any]:
    lease = item.lease
    return {
        "object_id": item.object.object_id,
        "lease_id": lease.lease_id,
        "piece_cid": lease.storage_ref.piece_id,
        "size": item.object.size_bytes,
        "created_at": lease.created_at.isoformat(),
        "expire_at": None if lease.expire_at is None else lease.expire_at.isoformat(),
        "deleted_at": None
        if lease.deleted_at is None
        else lease.deleted_at.isoformat(),
        "status": item.status.value,
    }
