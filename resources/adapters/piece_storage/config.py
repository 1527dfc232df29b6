"""Pydantic settings for the piece storage adapter component."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

from packages.qave_shared.config import QaveSettings, resolve_component_settings

ADAPTER_COMPONENT_ID = "adapter_piece_storage"


class PieceStorageSettings(BaseModel):
    """Backend selection and local-disk layout for piece storage."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    backend: Literal["memory", "filesystem"] = "memory"
    dataset_id: str = "local-ds-1"
    root_dir: str = "./data/pieces"
    temp_prefix: str = "piecetmp"
    fsync_writes: bool = True

    @field_validator("dataset_id", "root_dir", "temp_prefix")
    @classmethod
    def _require_text(cls, value: str) -> str:
        normalized = value.strip()
        if normalized == "":
            raise ValueError("value is required")
        return normalized

    def root_path(self) -> Path:
        """Return the expanded root path for piece files."""
        return Path(self.root_dir).expanduser().resolve()


def resolve_piece_storage_settings(settings: QaveSettings) -> PieceStorageSettings:
    """Resolve adapter settings from ``components.adapter.piece_storage``."""
    return resolve_component_settings(
        settings=settings,
        component_id=ADAPTER_COMPONENT_ID,
        model=PieceStorageSettings,
    )
