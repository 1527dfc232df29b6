"""Repository-level exceptions for Lease Authority Service."""

from __future__ import annotations


class ConstraintError(Exception):
    """Identifier collision on creation; retrying the same input recollides."""

    def __init__(self, *, entity: str, identifier: str) -> None:
        super().__init__(f"{entity} already exists: {identifier}")
        self.entity = entity
        self.identifier = identifier
