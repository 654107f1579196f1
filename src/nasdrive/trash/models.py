"""Trash index data models."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, field_validator

from nasdrive.models import EntryKind


class TrashEntry(BaseModel):
    """Index record for one quarantined payload.

    Attributes:
        trash_id: Random identifier, unique within the trash index.
        original_path: Relative path the payload was trashed from.
        original_name: Display name at the time of trashing.
        kind: Whether the payload is a file or a directory.
        size: Size in bytes reported by ``stat`` when trashed.
        trashed_at: UTC timestamp of the soft delete.
    """

    trash_id: str
    original_path: str
    original_name: str
    kind: EntryKind
    size: int
    trashed_at: datetime

    @field_validator("trashed_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def quarantine_name(self) -> str:
        """Return the payload file name inside the quarantine directory."""
        return f"{self.trash_id}_{self.original_name}"


__all__ = ["TrashEntry"]
