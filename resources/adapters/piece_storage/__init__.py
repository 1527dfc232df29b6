"""Piece storage adapter exports."""

from resources.adapters.piece_storage.adapter import (
    DataSetMeta,
    PieceNotFoundError,
    PieceStorageAdapter,
    PieceStorageError,
    PieceStorageHealth,
    UploadOptions,
    UploadResult,
)
from resources.adapters.piece_storage.config import (
    ADAPTER_COMPONENT_ID,
    PieceStorageSettings,
    resolve_piece_storage_settings,
)
from resources.adapters.piece_storage.filesystem_adapter import (
    LocalFilesystemPieceStorageAdapter,
)
from resources.adapters.piece_storage.memory_adapter import (
    InMemoryPieceStorageAdapter,
)


def build_piece_storage_adapter(settings: PieceStorageSettings) -> PieceStorageAdapter:
    """Build the configured backend as a fresh, injectable instance."""
    if settings.backend == "filesystem":
        return LocalFilesystemPieceStorageAdapter(settings=settings)
    return InMemoryPieceStorageAdapter(dataset_id=settings.dataset_id)


__all__ = [
    "ADAPTER_COMPONENT_ID",
    "DataSetMeta",
    "InMemoryPieceStorageAdapter",
    "LocalFilesystemPieceStorageAdapter",
    "PieceNotFoundError",
    "PieceStorageAdapter",
    "PieceStorageError",
    "PieceStorageHealth",
    "PieceStorageSettings",
    "UploadOptions",
    "UploadResult",
    "build_piece_storage_adapter",
    "resolve_piece_storage_settings",
]
