"""Background expiration sweeper for leases past their expiry.

One cycle asks the repository for expired unswept leases, marks each deleted,
and then asks the piece storage backend to remove the backing piece. The
metadata mark is authoritative: it is recorded before physical deletion and a
failed piece delete is logged and counted but never retried. Physical deletes
share a ``PieceGuard`` with uploads, so a piece being re-uploaded is never
removed before its new lease is recorded.
"""

from __future__ import annotations

import contextvars
from datetime import UTC, datetime
from threading import Event, Lock, Thread
from typing import Callable

from packages.qave_shared.logging import fields, get_logger, log_context
from resources.adapters.piece_storage import PieceNotFoundError, PieceStorageAdapter
from services.state.lease_authority.config import LeaseAuthoritySettings
from services.state.lease_authority.domain import ObjectLease, SweepReport, SweeperStats
from services.state.lease_authority.guard import PieceGuard
from services.state.lease_authority.interfaces import LeaseRepository

_LOGGER = get_logger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ExpirationSweeper:
    """Single-flight sweeper with a cooperative stop event."""

    def __init__(
        self,
        *,
        repository: LeaseRepository,
        adapter: PieceStorageAdapter,
        settings: LeaseAuthoritySettings,
        clock: Clock = _utc_now,
        guard: PieceGuard | None = None,
    ) -> None:
        self._repository = repository
        self._adapter = adapter
        self._settings = settings
        self._clock = clock
        self._guard = guard or PieceGuard()
        self._cycle_lock = Lock()
        self._state_lock = Lock()
        self._stop_event = Event()
        self._worker: Thread | None = None
        self._cycles_completed = 0
        self._cycles_failed = 0
        self._leases_swept = 0
        self._piece_delete_failures = 0
        self._last_cycle_at: datetime | None = None
        self._last_error: str | None = None

    @property
    def interval_seconds(self) -> float:
        return self._settings.sweep_interval_seconds

    def start(self) -> None:
        """Launch the background thread once; later calls are no-ops."""
        with self._state_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._stop_event.clear()
            context = contextvars.copy_context()
            self._worker = Thread(
                target=context.run,
                args=(self._run_loop,),
                name="qave-expiration-sweeper",
                daemon=True,
            )
            self._worker.start()
        _LOGGER.info(
            "Expiration sweeper started: interval_seconds=%s", self.interval_seconds
        )

    def stop(self, *, wait: bool = True, timeout: float | None = None) -> None:
        """Signal the loop to exit and optionally join the thread."""
        self._stop_event.set()
        with self._state_lock:
            worker = self._worker
        if wait and worker is not None:
            worker.join(timeout)
        _LOGGER.info("Expiration sweeper stopped")

    def is_running(self) -> bool:
        with self._state_lock:
            return self._worker is not None and self._worker.is_alive()

    def stats(self) -> SweeperStats:
        running = self.is_running()
        with self._state_lock:
            return SweeperStats(
                running=running,
                cycles_completed=self._cycles_completed,
                cycles_failed=self._cycles_failed,
                leases_swept=self._leases_swept,
                piece_delete_failures=self._piece_delete_failures,
                last_cycle_at=self._last_cycle_at,
                last_error=self._last_error,
            )

    def run_once(self) -> SweepReport:
        """Run one sweep cycle; never raises on store or backend failure."""
        with self._cycle_lock:
            report = self._sweep()
        self._record(report)
        return report

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.is_set():
                break
            self._stop_event.wait(self.interval_seconds)

    def _sweep(self) -> SweepReport:
        started_at = self._clock()
        try:
            expired = self._repository.find_expired_unswept(now=started_at)
        except Exception as exc:  # noqa: BLE001
            return self._abandoned(started_at=started_at, found=0, marked=0, exc=exc)

        marked = 0
        pieces_deleted = 0
        piece_delete_failures = 0
        for lease in expired:
            if self._stop_event.is_set():
                return SweepReport(
                    started_at=started_at,
                    found=len(expired),
                    marked=marked,
                    pieces_deleted=pieces_deleted,
                    piece_delete_failures=piece_delete_failures,
                    interrupted=True,
                )
            try:
                changed = self._repository.mark_deleted(
                    lease_id=lease.lease_id, deleted_at=self._clock()
                )
            except Exception as exc:  # noqa: BLE001
                return self._abandoned(
                    started_at=started_at,
                    found=len(expired),
                    marked=marked,
                    exc=exc,
                    pieces_deleted=pieces_deleted,
                    piece_delete_failures=piece_delete_failures,
                )
            if not changed:
                continue
            marked += 1
            if not self._settings.delete_backing_pieces:
                continue
            if self._delete_piece(lease):
                pieces_deleted += 1
            else:
                piece_delete_failures += 1

        return SweepReport(
            started_at=started_at,
            found=len(expired),
            marked=marked,
            pieces_deleted=pieces_deleted,
            piece_delete_failures=piece_delete_failures,
        )

    def _delete_piece(self, lease: ObjectLease) -> bool:
        """Delete the backing piece unless another lease still needs it.

        The guard keeps uploads that may be writing the same piece out of the
        window between the reference check and the delete.
        """
        piece_id = lease.storage_ref.piece_id
        with log_context({fields.LEASE_ID: lease.lease_id, fields.PIECE_ID: piece_id}):
            with self._guard.deleting():
                try:
                    if self._repository.has_live_lease_for_piece(piece_id=piece_id):
                        _LOGGER.info("Piece still referenced; skipping physical delete")
                        return True
                    self._adapter.delete(piece_id)
                except PieceNotFoundError:
                    return True
                except Exception as exc:  # noqa: BLE001
                    _LOGGER.warning(
                        "Piece delete failed: exception_type=%s",
                        type(exc).__name__,
                        exc_info=exc,
                    )
                    return False
        return True

    def _abandoned(
        self,
        *,
        started_at: datetime,
        found: int,
        marked: int,
        exc: Exception,
        pieces_deleted: int = 0,
        piece_delete_failures: int = 0,
    ) -> SweepReport:
        _LOGGER.warning(
            "Sweep cycle abandoned after store failure: exception_type=%s",
            type(exc).__name__,
            exc_info=exc,
        )
        return SweepReport(
            started_at=started_at,
            found=found,
            marked=marked,
            pieces_deleted=pieces_deleted,
            piece_delete_failures=piece_delete_failures,
            error=type(exc).__name__,
        )

    def _record(self, report: SweepReport) -> None:
        with self._state_lock:
            self._last_cycle_at = report.started_at
            self._leases_swept += report.marked
            self._piece_delete_failures += report.piece_delete_failures
            if report.ok:
                self._cycles_completed += 1
            else:
                self._cycles_failed += 1
                self._last_error = report.error
        if report.found == 0 and report.ok:
            return
        with log_context(
            {
                fields.EVENT: fields.SWEEP_CYCLE_EVENT,
                "found": report.found,
                "marked": report.marked,
                "pieces_deleted": report.pieces_deleted,
                "piece_delete_failures": report.piece_delete_failures,
                "interrupted": report.interrupted,
            }
        ):
            if report.ok:
                _LOGGER.info("Sweep cycle finished")
            else:
                _LOGGER.warning("Sweep cycle failed: error=%s", report.error)
