"""Pydantic request-validation models for Lease Authority Service API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator


class _ValidationModel(BaseModel):
    """Base request model with strict shape semantics."""

    model_config = ConfigDict(frozen=True, extra="forbid")


class _RequiresWallet(_ValidationModel):
    wallet: str

    @field_validator("wallet")
    @classmethod
    def _require_wallet(cls, value: str, info: ValidationInfo) -> str:
        """Reject blank owner identifiers."""
        normalized = value.strip()
        if normalized == "":
            raise ValueError(f"{info.field_name} is required")
        return normalized


class UploadRequest(_RequiresWallet):
    """Validated upload request shape."""

    content: bytes
    file_name: str

    @field_validator("file_name")
    @classmethod
    def _normalize_file_name(cls, value: str) -> str:
        return value.strip()


class ListObjectsRequest(_RequiresWallet):
    """Validated owner listing request shape."""


class ObjectIdRequest(_ValidationModel):
    """Validated request shape for operations keyed by object id."""

    object_id: str

    @field_validator("object_id")
    @classmethod
    def _require_object_id(cls, value: str, info: ValidationInfo) -> str:
        normalized = value.strip()
        if normalized == "":
            raise ValueError(f"{info.field_name} is required")
        return normalized
