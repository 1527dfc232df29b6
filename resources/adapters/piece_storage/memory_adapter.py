"""In-memory piece storage backend for tests and local development."""

from __future__ import annotations

from threading import Lock

from resources.adapters.piece_storage.adapter import (
    DataSetMeta,
    PieceNotFoundError,
    PieceStorageAdapter,
    PieceStorageHealth,
    UploadOptions,
    UploadResult,
)


class InMemoryPieceStorageAdapter(PieceStorageAdapter):
    """Keep pieces in a dict guarded by one lock over the whole state.

    Piece identifiers come from a monotonic counter, so a deleted identifier is
    never handed out again.
    """

    def __init__(self, *, dataset_id: str = "mock-ds-1") -> None:
        self._dataset_id = dataset_id
        self._pieces: dict[str, bytes] = {}
        self._counter = 0
        self._lock = Lock()

    def ensure_dataset(self, meta: DataSetMeta) -> str:
        del meta
        return self._dataset_id

    def upload(
        self, dataset_id: str, content: bytes, options: UploadOptions
    ) -> UploadResult:
        del dataset_id, options
        with self._lock:
            self._counter += 1
            piece_id = f"mock-piece-{self._counter}"
            self._pieces[piece_id] = bytes(content)
        return UploadResult(piece_id=piece_id, size=len(content))

    def download(self, piece_id: str) -> bytes:
        with self._lock:
            content = self._pieces.get(piece_id)
        if content is None:
            raise PieceNotFoundError(piece_id)
        return content

    def delete(self, piece_id: str) -> None:
        with self._lock:
            if self._pieces.pop(piece_id, None) is None:
                raise PieceNotFoundError(piece_id)

    def health(self) -> PieceStorageHealth:
        with self._lock:
            count = len(self._pieces)
        return PieceStorageHealth(ready=True, detail=f"ok; pieces={count}")

    def __contains__(self, piece_id: object) -> bool:
        with self._lock:
            return piece_id in self._pieces
