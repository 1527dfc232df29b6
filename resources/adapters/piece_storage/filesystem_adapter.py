"""Local-disk piece storage backend addressed by SHA-256 content digest."""

from __future__ import annotations

import hashlib
import os
from pathlib import Path
from tempfile import NamedTemporaryFile

from resources.adapters.piece_storage.adapter import (
    DataSetMeta,
    PieceNotFoundError,
    PieceStorageAdapter,
    PieceStorageError,
    PieceStorageHealth,
    UploadOptions,
    UploadResult,
)
from resources.adapters.piece_storage.config import PieceStorageSettings

_PIECE_PREFIX = "sha256-"
_HEX = frozenset("0123456789abcdef")


class LocalFilesystemPieceStorageAdapter(PieceStorageAdapter):
    """Persist pieces under ``root_dir`` using digest-derived paths.

    Identical payloads map to the same piece identifier. Writes go to a temp
    file in the target directory and are moved into place with ``os.replace``.
    """

    def __init__(self, *, settings: PieceStorageSettings) -> None:
        self._settings = settings
        self._root = settings.root_path()

    def ensure_dataset(self, meta: DataSetMeta) -> str:
        del meta
        self._ensure_root()
        return self._settings.dataset_id

    def upload(
        self, dataset_id: str, content: bytes, options: UploadOptions
    ) -> UploadResult:
        del dataset_id, options
        digest = hashlib.sha256(content).hexdigest()
        path = self._path_for_digest(digest)
        try:
            self._ensure_root()
            path.parent.mkdir(parents=True, exist_ok=True)
            if not path.exists():
                self._write_atomic(path=path, content=content)
        except OSError as exc:
            raise PieceStorageError(f"piece write failed: {type(exc).__name__}") from exc
        return UploadResult(piece_id=f"{_PIECE_PREFIX}{digest}", size=len(content))

    def download(self, piece_id: str) -> bytes:
        path = self.resolve_path(piece_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise PieceNotFoundError(piece_id) from None
        except OSError as exc:
            raise PieceStorageError(f"piece read failed: {type(exc).__name__}") from exc

    def delete(self, piece_id: str) -> None:
        path = self.resolve_path(piece_id)
        try:
            path.unlink()
        except FileNotFoundError:
            raise PieceNotFoundError(piece_id) from None
        except OSError as exc:
            raise PieceStorageError(f"piece delete failed: {type(exc).__name__}") from exc

    def health(self) -> PieceStorageHealth:
        """Return readiness for root directory access."""
        try:
            self._ensure_root()
        except Exception as exc:  # noqa: BLE001
            return PieceStorageHealth(
                ready=False,
                detail=f"filesystem probe failed: {type(exc).__name__}",
            )
        return PieceStorageHealth(ready=True, detail="ok")

    def resolve_path(self, piece_id: str) -> Path:
        """Resolve the on-disk path for one piece identifier.

        Identifiers this backend did not mint resolve to ``PieceNotFoundError``.
        """
        if not piece_id.startswith(_PIECE_PREFIX):
            raise PieceNotFoundError(piece_id)
        digest = piece_id[len(_PIECE_PREFIX) :].lower()
        if len(digest) != 64 or any(ch not in _HEX for ch in digest):
            raise PieceNotFoundError(piece_id)
        return self._path_for_digest(digest)

    def _path_for_digest(self, digest: str) -> Path:
        return self._root / digest[:2] / digest[2:4] / f"{digest}.piece"

    def _ensure_root(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        if not self._root.is_dir():
            raise PieceStorageError(f"piece root is not a directory: {self._root}")

    def _write_atomic(self, *, path: Path, content: bytes) -> None:
        tmp_path: Path | None = None
        try:
            with NamedTemporaryFile(
                mode="wb",
                prefix=f".{self._settings.temp_prefix}-",
                suffix=".tmp",
                dir=path.parent,
                delete=False,
            ) as handle:
                tmp_path = Path(handle.name)
                handle.write(content)
                handle.flush()
                if self._settings.fsync_writes:
                    os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        finally:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
