"""Whole-document storage backends for the tag and trash indices."""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from .errors import StateError

DEFAULT_SYSTEM_DIRNAME = ".fm_system"
TAGS_FILENAME = "tags.json"
TRASH_INDEX_FILENAME = "trash.json"

LOGGER = logging.getLogger(__name__)


class IndexBackend(Protocol):
    """Read and write one JSON object as a whole."""

    def read(self) -> dict[str, Any] | None:
        """Return the stored mapping, or ``None`` when nothing was written yet."""
        ...

    def write(self, data: dict[str, Any]) -> None:
        """Replace the stored mapping with ``data``."""
        ...


class JsonFileBackend:
    """Persist a mapping as a JSON file, created lazily on first write."""

    def __init__(self, path: Path) -> None:
        """Initialize the backend.

        Args:
            path: Location of the JSON document.
        """
        self._path = path

    @property
    def path(self) -> Path:
        """Return the JSON document location."""
        return self._path

    def read(self) -> dict[str, Any] | None:
        """Load the JSON document.

        Returns:
            dict[str, Any] | None: Parsed mapping, or ``None`` if absent.

        Raises:
            StateError: If the file is not a JSON object.
        """
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StateError(f"Invalid index data in {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StateError(f"Index {self._path} must contain a JSON object.")
        return data

    def write(self, data: dict[str, Any]) -> None:
        """Atomically replace the JSON document with ``data``."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)
            os.replace(temp_name, self._path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        LOGGER.debug("Wrote %d index records to %s", len(data), self._path)


class MemoryBackend:
    """Keep the mapping in memory; used by tests and ephemeral stores."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data = copy.deepcopy(initial) if initial is not None else None
        self.writes = 0

    def read(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._data)

    def write(self, data: dict[str, Any]) -> None:
        self._data = copy.deepcopy(data)
        self.writes += 1


def system_dir(root: Path, dirname: str = DEFAULT_SYSTEM_DIRNAME) -> Path:
    """Return the metadata directory for a store root."""
    return root / dirname


__all__ = [
    "IndexBackend",
    "JsonFileBackend",
    "MemoryBackend",
    "StateError",
    "DEFAULT_SYSTEM_DIRNAME",
    "TAGS_FILENAME",
    "TRASH_INDEX_FILENAME",
    "system_dir",
]
