"""FastAPI and uvicorn helpers for raw HTTP handling."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from time import perf_counter
from typing import Any, Awaitable, Callable
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, Request, Response

from packages.qave_shared.logging import fields, get_logger, log_context

from .errors import BodyTooLargeError, MissingHeaderError

REQUEST_ID_HEADER = "X-Request-Id"

_LOGGER = get_logger(__name__)

Lifespan = Callable[[FastAPI], AbstractAsyncContextManager[None]]


def create_app(
    *,
    title: str = "qave",
    version: str = "0.0.0",
    lifespan: Lifespan | None = None,
) -> FastAPI:
    """Create a FastAPI app with request-id access logging installed."""
    app = FastAPI(title=title, version=version, lifespan=lifespan)
    install_request_logging(app)
    return app


def run_app(
    app: FastAPI,
    *,
    host: str = "127.0.0.1",
    port: int = 8080,
    log_level: str = "warning",
) -> None:
    """Run one FastAPI app through uvicorn until interrupted."""
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def install_request_logging(app: FastAPI) -> None:
    """Tag every response with ``X-Request-Id`` and log method/path/latency."""

    @app.middleware("http")
    async def _request_logging(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = uuid4().hex
        started = perf_counter()
        with log_context({fields.REQUEST_ID: request_id}):
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            with log_context(
                {
                    fields.EVENT: fields.HTTP_REQUEST_EVENT,
                    fields.METHOD: request.method,
                    fields.PATH: request.url.path,
                    fields.STATUS_CODE: response.status_code,
                    fields.DURATION_MS: round((perf_counter() - started) * 1000.0, 3),
                }
            ):
                _LOGGER.info("HTTP request")
        return response


def get_header(
    request: Request,
    name: str,
    *,
    required: bool = True,
    strip: bool = True,
) -> str | None:
    """Fetch one header value and optionally enforce presence."""
    value = request.headers.get(name)
    if value is None:
        if required:
            raise MissingHeaderError(
                message=f"{name} header required",
                header_name=name,
            )
        return None

    if strip:
        value = value.strip()
    if required and value == "":
        raise MissingHeaderError(
            message=f"{name} header required",
            header_name=name,
        )
    return value


async def read_bounded_body(request: Request, *, limit_bytes: int) -> bytes:
    """Read the raw request body, failing once it exceeds ``limit_bytes``.

    A declared ``Content-Length`` over the limit is rejected before reading.
    """
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit_bytes:
        raise BodyTooLargeError(
            message=f"max body size is {limit_bytes} bytes", limit_bytes=limit_bytes
        )

    chunks: list[bytes] = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > limit_bytes:
            raise BodyTooLargeError(
                message=f"max body size is {limit_bytes} bytes",
                limit_bytes=limit_bytes,
            )
        chunks.append(chunk)
    return b"".join(chunks)


def error_body(*, code: str, message: str) -> dict[str, Any]:
    """Build the canonical JSON error body."""
    return {"error": code.lower(), "message": message}
