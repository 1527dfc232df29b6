"""Coordination between in-flight uploads and physical piece deletion.

Content-addressed backends hand the same piece to identical payloads, so a
piece written by an upload can already be referenced by an older lease. Until
the new lease row is committed, the repository cannot see that reference.
Uploads hold the guard shared from backend write through metadata insert;
deleters hold it exclusively across the live-lease check and the delete.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from threading import Condition


class PieceGuard:
    """Shared/exclusive guard that prefers waiting deleters over new uploads."""

    def __init__(self) -> None:
        self._condition = Condition()
        self._uploads = 0
        self._deleting = False
        self._deleters_waiting = 0

    @contextmanager
    def uploading(self) -> Iterator[None]:
        with self._condition:
            while self._deleting or self._deleters_waiting > 0:
                self._condition.wait()
            self._uploads += 1
        try:
            yield
        finally:
            with self._condition:
                self._uploads -= 1
                if self._uploads == 0:
                    self._condition.notify_all()

    @contextmanager
    def deleting(self) -> Iterator[None]:
        with self._condition:
            self._deleters_waiting += 1
            try:
                while self._deleting or self._uploads > 0:
                    self._condition.wait()
            finally:
                self._deleters_waiting -= 1
                self._condition.notify_all()
            self._deleting = True
        try:
            yield
        finally:
            with self._condition:
                self._deleting = False
                self._condition.notify_all()

    def uploads_in_flight(self) -> int:
        with self._condition:
            return self._uploads
