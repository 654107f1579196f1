"""Soft-delete state machine backed by a quarantine directory and a JSON index.

Active entries move into ``<system dir>/trash/<trash_id>_<name>`` and are
recorded in the trash index. From there they are either restored (back to
their original path, renamed on conflict) or purged, explicitly or once the
retention window has passed. Restore and purge always drop the index entry
together with the payload.
"""

from __future__ import annotations

import errno
import logging
import os
import secrets
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from nasdrive.errors import (
    AccessDenied,
    ExhaustedNameSpace,
    NotFound,
    translate_os_errors,
)
from nasdrive.paths import SafePathResolver, split_relative
from nasdrive.state import DEFAULT_SYSTEM_DIRNAME, IndexBackend, StateError
from nasdrive.tags import TagStore

from .models import TrashEntry

LOGGER = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=30)
QUARANTINE_DIRNAME = "trash"
MAX_CONFLICT_ATTEMPTS = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_trash_id() -> str:
    return secrets.token_hex(6)


def _relocate(source: Path, destination: Path) -> None:
    """Rename ``source`` to ``destination``, copying across devices if needed."""

    try:
        os.rename(source, destination)
        return
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
    LOGGER.info("Cross-device move of %s; falling back to copy and delete", source)
    if source.is_dir() and not source.is_symlink():
        shutil.copytree(source, destination, symlinks=True)
        shutil.rmtree(source)
    else:
        shutil.copy2(source, destination, follow_symlinks=False)
        source.unlink()


def _remove_payload(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


class TrashService:
    """Move entries to quarantine and manage their restore or purge."""

    def __init__(
        self,
        resolver: SafePathResolver,
        tags: TagStore,
        backend: IndexBackend,
        *,
        system_dirname: str = DEFAULT_SYSTEM_DIRNAME,
        retention: timedelta = DEFAULT_RETENTION,
        max_conflict_attempts: int = MAX_CONFLICT_ATTEMPTS,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """Initialize the trash service.

        Args:
            resolver: Resolver bound to the store root.
            tags: Tag store cascaded on permanent deletion.
            backend: Storage for the trash index.
            system_dirname: Metadata directory name under the root.
            retention: Age after which trashed entries are purged on listing.
            max_conflict_attempts: Upper bound on ``" (n)"`` suffixes tried on restore.
            clock: Source of the current UTC time.
            id_factory: Generator for new trash identifiers.
        """
        self._resolver = resolver
        self._tags = tags
        self._backend = backend
        self._system_dir = resolver.root / system_dirname
        self._quarantine = self._system_dir / QUARANTINE_DIRNAME
        self._retention = retention
        self._max_conflict_attempts = max_conflict_attempts
        self._clock = clock or _utcnow
        self._id_factory = id_factory or _new_trash_id

    @property
    def quarantine_dir(self) -> Path:
        """Return the directory holding trashed payloads."""
        return self._quarantine

    def quarantine_path(self, entry: TrashEntry) -> Path:
        """Return the payload location for ``entry``."""
        return self._quarantine / entry.quarantine_name

    def move_to_trash(self, relative_path: str) -> TrashEntry:
        """Quarantine the entry at ``relative_path`` and index it.

        Tags are left untouched so a restored entry keeps them.

        Raises:
            AccessDenied: If the path escapes the root or is the root itself.
            NotFound: If nothing exists at ``relative_path``.
        """

        source = self._resolver.resolve(split_relative(relative_path))
        if source == self._resolver.root:
            raise AccessDenied("The store root cannot be trashed.")
        if source == self._system_dir or self._system_dir in source.parents:
            raise AccessDenied("The metadata directory cannot be trashed.")
        relative = self._resolver.relative(source)

        with translate_os_errors(relative):
            stats = source.lstat()
        index = self._read_index()
        trash_id = self._id_factory()
        while trash_id in index:
            trash_id = self._id_factory()

        entry = TrashEntry(
            trash_id=trash_id,
            original_path=relative,
            original_name=source.name,
            kind="directory" if source.is_dir() else "file",
            size=stats.st_size,
            trashed_at=self._clock(),
        )
        payload = self.quarantine_path(entry)
        with translate_os_errors(relative):
            self._quarantine.mkdir(parents=True, exist_ok=True)
            _relocate(source, payload)

        index[trash_id] = entry
        try:
            self._write_index(index)
        except BaseException:
            LOGGER.error("Trash index write failed; returning %s to %s", payload, relative)
            _relocate(payload, source)
            raise
        LOGGER.info("Trashed %s as %s", relative, trash_id)
        return entry

    def restore_from_trash(self, trash_id: str) -> str:
        """Move a trashed payload back to its original location.

        Missing parent directories are recreated. If the original name is
        taken, ``" (1)"``, ``" (2)"``, ... is appended to the base name.

        Returns:
            str: Relative path the entry was restored to.

        Raises:
            NotFound: If ``trash_id`` is not indexed or its payload is gone.
            ExhaustedNameSpace: If no free conflict name was found.
        """

        index = self._read_index()
        entry = index.get(trash_id)
        if entry is None:
            raise NotFound(f"Trash entry not found: {trash_id}")

        payload = self.quarantine_path(entry)
        if not payload.exists() and not payload.is_symlink():
            del index[trash_id]
            self._write_index(index)
            LOGGER.warning("Dropped trash entry %s with missing payload", trash_id)
            raise NotFound(f"Trashed payload is missing for {trash_id}")

        target = self._resolver.resolve(split_relative(entry.original_path))
        with translate_os_errors(entry.original_path):
            target.parent.mkdir(parents=True, exist_ok=True)
            target = self._unique_path(target, keep_suffix=entry.kind == "file")
            _relocate(payload, target)

        del index[trash_id]
        self._write_index(index)
        restored = self._resolver.relative(target)
        LOGGER.info("Restored %s to %s", trash_id, restored)
        return restored

    def permanently_delete(self, trash_id: str) -> None:
        """Remove a trashed payload, its tags, and its index entry.

        Raises:
            NotFound: If ``trash_id`` is not indexed.
        """

        index = self._read_index()
        entry = index.pop(trash_id, None)
        if entry is None:
            raise NotFound(f"Trash entry not found: {trash_id}")
        with translate_os_errors(entry.original_path):
            self._purge(entry)
        self._write_index(index)

    def empty_trash(self) -> int:
        """Purge every indexed entry in one index write.

        Entries whose payload cannot be removed stay indexed so a later call
        retries them; their tags are dropped either way.

        Returns:
            int: Number of entries purged.
        """

        index = self._read_index()
        if not index:
            return 0
        purged = self._purge_batch(index, list(index))
        self._write_index(index)
        LOGGER.info("Emptied trash (%d entries)", purged)
        return purged

    def list(self) -> list[TrashEntry]:
        """Return trashed entries (newest first) after purging expired ones."""

        self.sweep_expired()
        entries = list(self._read_index().values())
        return sorted(entries, key=lambda item: item.trashed_at, reverse=True)

    def sweep_expired(self) -> int:
        """Purge entries older than the retention window.

        An entry whose payload cannot be removed stays indexed and is retried
        on the next sweep.

        Returns:
            int: Number of entries purged.
        """

        index = self._read_index()
        now = self._clock()
        expired = [
            trash_id
            for trash_id, entry in index.items()
            if now - entry.trashed_at > self._retention
        ]
        if not expired:
            return 0
        purged = self._purge_batch(index, expired)
        if purged:
            self._write_index(index)
            LOGGER.info("Expired %d trash entries", purged)
        return purged

    # Internal helpers -------------------------------------------------

    def _purge(self, entry: TrashEntry) -> None:
        self._remove_quarantined(entry)
        self._tags.cascade_delete(entry.original_path)

    def _purge_batch(self, index: dict[str, TrashEntry], trash_ids: list[str]) -> int:
        purged = 0
        for trash_id in trash_ids:
            entry = index[trash_id]
            try:
                self._remove_quarantined(entry)
            except OSError as exc:
                LOGGER.warning("Failed to purge %s; keeping it in the index: %s", trash_id, exc)
            else:
                del index[trash_id]
                purged += 1
            finally:
                self._tags.cascade_delete(entry.original_path)
        return purged

    def _remove_quarantined(self, entry: TrashEntry) -> None:
        try:
            _remove_payload(self.quarantine_path(entry))
        except FileNotFoundError:
            LOGGER.debug("Payload already gone for %s", entry.trash_id)

    def _unique_path(self, path: Path, *, keep_suffix: bool) -> Path:
        if not os.path.lexists(path):
            return path
        stem, suffix = (path.stem, path.suffix) if keep_suffix else (path.name, "")
        for counter in range(1, self._max_conflict_attempts):
            candidate = path.with_name(f"{stem} ({counter}){suffix}")
            if not os.path.lexists(candidate):
                return candidate
        raise ExhaustedNameSpace(
            f"No free name for {path.name} after {self._max_conflict_attempts} attempts"
        )

    def _read_index(self) -> dict[str, TrashEntry]:
        raw = self._backend.read() or {}
        try:
            return {key: TrashEntry.model_validate(value) for key, value in raw.items()}
        except ValidationError as exc:
            raise StateError(f"Invalid trash index data: {exc}") from exc

    def _write_index(self, index: dict[str, TrashEntry]) -> None:
        self._backend.write(
            {key: entry.model_dump(mode="json") for key, entry in index.items()}
        )


__all__ = ["TrashService", "DEFAULT_RETENTION", "QUARANTINE_DIRNAME"]
