"""Pydantic settings for Lease Authority Service behavior."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from packages.qave_shared.config import QaveSettings, resolve_component_settings

SERVICE_COMPONENT_ID = "service_lease_authority"


class LeaseAuthoritySettings(BaseModel):
    """Lease duration, upload limits, and sweeper cadence."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    lease_duration_days: int = Field(default=30, gt=0)
    max_upload_bytes: int = Field(default=50 * 1024 * 1024, gt=0)
    sweep_interval_seconds: float = Field(default=5.0, gt=0)
    sweeper_enabled: bool = True
    delete_backing_pieces: bool = True
    dataset_application: str = "Qave"
    dataset_version: str = "1.0"
    default_file_name: str = "file"

    @field_validator("dataset_application", "dataset_version", "default_file_name")
    @classmethod
    def _require_text(cls, value: str) -> str:
        normalized = value.strip()
        if normalized == "":
            raise ValueError("value is required")
        return normalized


def resolve_lease_authority_settings(settings: QaveSettings) -> LeaseAuthoritySettings:
    """Resolve settings from ``components.service.lease_authority``."""
    return resolve_component_settings(
        settings=settings,
        component_id=SERVICE_COMPONENT_ID,
        model=LeaseAuthoritySettings,
    )
