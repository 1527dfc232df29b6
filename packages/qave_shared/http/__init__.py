"""Public shared HTTP API for Qave packages."""

from .errors import BodyTooLargeError, HttpServerError, MissingHeaderError
from .server import (
    REQUEST_ID_HEADER,
    create_app,
    error_body,
    get_header,
    install_request_logging,
    read_bounded_body,
    run_app,
)

__all__ = [
    "BodyTooLargeError",
    "HttpServerError",
    "MissingHeaderError",
    "REQUEST_ID_HEADER",
    "create_app",
    "error_body",
    "get_header",
    "install_request_logging",
    "read_bounded_body",
    "run_app",
]
