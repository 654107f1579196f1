"""Upload request and client-side task models."""

from __future__ import annotations

import io
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Callable, Literal, Optional

from pydantic import BaseModel

TaskStatus = Literal["pending", "uploading", "completed", "error"]


class ChunkRequest(BaseModel):
    """One chunk of a chunked upload.

    Attributes:
        index: Zero-based chunk position.
        total: Number of chunks the payload was split into.
        data: Chunk bytes.
        offset: Byte position of the chunk in the final file, when known.
    """

    index: int
    total: int
    data: bytes
    offset: Optional[int] = None


class ChunkReceipt(BaseModel):
    """Server acknowledgement of a stored chunk."""

    path: str
    bytes_received: int
    complete: bool


@dataclass(frozen=True)
class UploadSource:
    """A named byte source that can be reopened for each attempt."""

    name: str
    size: int
    opener: Callable[[], BinaryIO] = field(repr=False)

    @classmethod
    def from_path(cls, path: Path, name: str | None = None) -> "UploadSource":
        """Build a source reading from a local file."""
        return cls(name=name or path.name, size=path.stat().st_size, opener=lambda: path.open("rb"))

    @classmethod
    def from_bytes(cls, name: str, data: bytes) -> "UploadSource":
        """Build a source over in-memory bytes."""
        return cls(name=name, size=len(data), opener=lambda: io.BytesIO(data))

    def open(self) -> BinaryIO:
        return self.opener()


@dataclass
class UploadTask:
    """Client-side progress record for one requested file; never persisted."""

    name: str
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TaskStatus = "pending"
    progress: int = 0
    error: Optional[str] = None

    def advance(self, progress: float) -> None:
        """Raise progress to ``progress`` percent; never moves backwards."""
        self.progress = max(self.progress, min(100, int(progress)))

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "error")


@dataclass(slots=True)
class UploadSummary:
    """Aggregate outcome of one drained upload batch."""

    succeeded: int
    failed: int
    tasks: list[UploadTask]

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


__all__ = [
    "TaskStatus",
    "ChunkRequest",
    "ChunkReceipt",
    "UploadSource",
    "UploadTask",
    "UploadSummary",
]
