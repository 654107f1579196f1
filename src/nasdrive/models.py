"""Data models shared across store operations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, Literal, Optional

from pydantic import BaseModel

EntryKind = Literal["file", "directory"]


class StoreEntry(BaseModel):
    """Metadata for one directory child, recomputed from ``stat`` on every listing.

    Attributes:
        id: Identifier derived from the entry's relative path.
        parent_id: Identifier of the containing directory.
        name: Display name (last path segment).
        kind: Whether the entry is a file or a directory.
        size: Size in bytes as reported by ``stat``.
        media_type: Optional media-type hint derived from the extension.
        created_at: Creation (birth) time where available, otherwise ctime.
        modified_at: Last modification time.
        is_trashed: Always false for live entries.
    """

    id: str
    parent_id: Optional[str]
    name: str
    kind: EntryKind
    size: int
    media_type: Optional[str] = None
    created_at: datetime
    modified_at: datetime
    is_trashed: bool = False


@dataclass(slots=True)
class Download:
    """Single-file download handle; the caller must close ``stream``."""

    name: str
    size: int
    media_type: str
    stream: BinaryIO


__all__ = ["EntryKind", "StoreEntry", "Download"]
