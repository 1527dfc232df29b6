"""Transport-agnostic contract for content-addressed piece storage backends."""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field


class PieceStorageError(Exception):
    """Backend failure; surfaced to callers as a transient dependency error."""


class PieceNotFoundError(PieceStorageError):
    """The backend holds no piece for the requested identifier."""

    def __init__(self, piece_id: str) -> None:
        super().__init__(f"piece not found: {piece_id}")
        self.piece_id = piece_id


class DataSetMeta(BaseModel):
    """Descriptor used by backends that group pieces into datasets."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    application: str = "Qave"
    version: str = "1.0"
    with_cdn: bool = False


class UploadOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    file_name: str = "file"


class UploadResult(BaseModel):
    """Backend receipt for one stored piece."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    piece_id: str
    size: int = Field(ge=0)


class PieceStorageHealth(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    ready: bool
    detail: str


class PieceStorageAdapter(Protocol):
    """Capability set every storage backend must provide.

    Implementations are injected instances and must be safe for concurrent use.
    """

    def ensure_dataset(self, meta: DataSetMeta) -> str:
        """Return the dataset identifier new pieces are uploaded into."""

    def upload(
        self, dataset_id: str, content: bytes, options: UploadOptions
    ) -> UploadResult:
        """Store one payload and return its piece identifier and size."""

    def download(self, piece_id: str) -> bytes:
        """Return stored bytes or raise ``PieceNotFoundError``."""

    def delete(self, piece_id: str) -> None:
        """Remove one piece or raise ``PieceNotFoundError``."""

    def health(self) -> PieceStorageHealth:
        """Probe backend readiness."""
