"""Typed errors for shared HTTP server helpers."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(eq=False)
class HttpServerError(Exception):
    """Base error type for inbound HTTP parsing/validation helpers."""

    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class MissingHeaderError(HttpServerError):
    """Required inbound HTTP header is missing or blank."""

    header_name: str


@dataclass(eq=False)
class BodyTooLargeError(HttpServerError):
    """Inbound HTTP body exceeds the configured byte limit."""

    limit_bytes: int
