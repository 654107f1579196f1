"""Directory listing and structural operations on the live tree."""

from __future__ import annotations

import logging
import mimetypes
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from . import identity
from .errors import AccessDenied, AlreadyExists, NotFound, translate_os_errors
from .models import Download, StoreEntry
from .paths import SafePathResolver
from .state import DEFAULT_SYSTEM_DIRNAME
from .tags import TagStore

LOGGER = logging.getLogger(__name__)


def _timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class DirectoryLister:
    """List directories and apply create/rename/move/delete under the store root."""

    def __init__(
        self,
        resolver: SafePathResolver,
        tags: TagStore,
        *,
        reserved_prefix: str = ".",
        system_dirname: str = DEFAULT_SYSTEM_DIRNAME,
    ) -> None:
        """Initialize the lister.

        Args:
            resolver: Resolver bound to the store root.
            tags: Tag store notified when paths change or disappear.
            reserved_prefix: Name prefix of hidden metadata and staging entries.
            system_dirname: Name of the metadata directory under the root.
        """
        self._resolver = resolver
        self._tags = tags
        self._reserved_prefix = reserved_prefix
        self._system_dir = resolver.root / system_dirname

    def list(self, segments: Sequence[str]) -> list[StoreEntry]:
        """Return the visible children of the directory at ``segments``.

        Raises:
            AccessDenied: If the path escapes the root.
            NotFound: If the path is missing or not a directory.
        """

        directory = self._resolver.resolve(segments)
        if not directory.is_dir():
            raise NotFound(f"Not a directory: {'/'.join(segments) or '/'}")

        entries: list[StoreEntry] = []
        with translate_os_errors(str(directory)):
            children = sorted(os.scandir(directory), key=lambda child: child.name)
        for child in children:
            if self._reserved_prefix and child.name.startswith(self._reserved_prefix):
                continue
            if Path(child.path) == self._system_dir:
                continue
            try:
                entries.append(self.entry_for(Path(child.path)))
            except NotFound:
                # removed between scandir and stat
                continue
        return entries

    def entry_for(self, path: Path) -> StoreEntry:
        """Build a :class:`StoreEntry` from the on-disk state of ``path``."""

        relative = self._resolver.relative(path)
        with translate_os_errors(relative or "/"):
            stats = path.stat()
        is_dir = path.is_dir()
        birth = getattr(stats, "st_birthtime", None)
        media_type = None if is_dir else mimetypes.guess_type(path.name)[0]
        return StoreEntry(
            id=self._resolver.identify(path),
            parent_id=identity.parent_of(relative) if relative else None,
            name=path.name,
            kind="directory" if is_dir else "file",
            size=stats.st_size,
            media_type=media_type,
            created_at=_timestamp(birth if birth is not None else stats.st_ctime),
            modified_at=_timestamp(stats.st_mtime),
        )

    def stat(self, identifier: str) -> StoreEntry:
        """Return the entry addressed by ``identifier``."""

        path = self._resolver.resolve_id(identifier)
        if not path.exists():
            raise NotFound(f"No entry for identifier {identifier!r}")
        return self.entry_for(path)

    def create_directory(self, segments: Sequence[str], name: str) -> StoreEntry:
        """Create ``name`` inside the directory at ``segments``.

        Raises:
            AccessDenied: If the new path escapes the root or ``name`` is not a
                single path segment.
            AlreadyExists: If an entry named ``name`` already exists.
            NotFound: If the parent directory is missing.
        """

        parent = self._resolver.resolve(segments)
        target = self._child_path(parent, name)
        self._guard_mutable(target)
        with translate_os_errors(self._resolver.relative(target)):
            target.mkdir()
        LOGGER.info("Created directory %s", self._resolver.relative(target))
        return self.entry_for(target)

    def rename(self, identifier: str, new_name: str) -> str:
        """Rename an entry within its parent and migrate its tags.

        Returns:
            str: Identifier of the renamed entry.

        Raises:
            AccessDenied: If the new name escapes the parent or targets the root.
            AlreadyExists: If the new name is already taken.
            NotFound: If the entry is missing.
        """

        source = self._resolver.resolve_id(identifier)
        self._guard_mutable(source)
        destination = self._child_path(source.parent, new_name)
        self._guard_mutable(destination)
        if destination == source:
            return identifier
        old_relative = self._resolver.relative(source)
        new_relative = self._resolver.relative(destination)

        self._rename(source, destination, old_relative)
        self._tags.migrate(old_relative, new_relative)
        LOGGER.info("Renamed %s to %s", old_relative, new_relative)
        return identity.encode(new_relative)

    def move(self, identifiers: Iterable[str], destination_id: str) -> list[str]:
        """Move each entry into the destination directory, keeping its name.

        Items are processed in order and the first failure aborts the batch;
        items moved before the failure stay at their new location.

        Returns:
            list[str]: Identifiers of the moved entries, in request order.
        """

        destination_dir = self._resolver.resolve_id(destination_id)
        if not destination_dir.is_dir():
            raise NotFound(f"Destination is not a directory: {destination_id!r}")
        self._guard_mutable(destination_dir, allow_root=True)

        moved: list[str] = []
        for identifier in identifiers:
            source = self._resolver.resolve_id(identifier)
            self._guard_mutable(source)
            target = self._resolver.resolve(
                [self._resolver.relative(destination_dir), source.name]
            )
            if target == source:
                moved.append(identifier)
                continue
            if source == destination_dir or source in destination_dir.parents:
                raise AccessDenied(f"Cannot move {source.name!r} into itself.")

            old_relative = self._resolver.relative(source)
            new_relative = self._resolver.relative(target)
            self._rename(source, target, old_relative)
            self._tags.migrate(old_relative, new_relative)
            LOGGER.info("Moved %s to %s", old_relative, new_relative)
            moved.append(identity.encode(new_relative))
        return moved

    def delete(self, identifier: str) -> None:
        """Permanently remove an entry (recursively) and its tags.

        Raises:
            AccessDenied: If the target is the store root or metadata directory.
            NotFound: If the entry is missing.
        """

        target = self._resolver.resolve_id(identifier)
        self._guard_mutable(target)
        relative = self._resolver.relative(target)
        with translate_os_errors(relative):
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()
        self._tags.cascade_delete(relative)
        LOGGER.info("Deleted %s", relative)

    def open_file(self, identifier: str) -> Download:
        """Open a single regular file for download.

        Raises:
            NotFound: If the entry is missing or is a directory.
        """

        path = self._resolver.resolve_id(identifier)
        if not path.is_file():
            raise NotFound(f"Not a regular file: {identifier!r}")
        media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        with translate_os_errors(path.name):
            stream = path.open("rb")
            try:
                size = os.fstat(stream.fileno()).st_size
            except BaseException:
                stream.close()
                raise
        return Download(name=path.name, size=size, media_type=media_type, stream=stream)

    # Internal helpers -------------------------------------------------

    def _child_path(self, parent: Path, name: str) -> Path:
        relative_parent = self._resolver.relative(parent)
        target = self._resolver.resolve([relative_parent, name])
        if target.parent != parent or target == parent:
            raise AccessDenied(f"Invalid entry name: {name!r}")
        return target

    def _guard_mutable(self, path: Path, *, allow_root: bool = False) -> None:
        if path == self._resolver.root:
            if allow_root:
                return
            raise AccessDenied("The store root cannot be modified.")
        if path == self._system_dir or self._system_dir in path.parents:
            raise AccessDenied("The metadata directory cannot be modified.")

    def _rename(self, source: Path, destination: Path, subject: str) -> None:
        if not source.exists() and not source.is_symlink():
            raise NotFound(f"{subject}: not found")
        if destination.exists():
            taken = self._resolver.relative(destination)
            raise AlreadyExists(f"Destination already exists: {taken}")
        with translate_os_errors(subject):
            source.rename(destination)


__all__ = ["DirectoryLister"]
