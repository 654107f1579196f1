"""Operation surface of the store, wiring every component to one root."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Sequence

from . import identity
from .config import NasdriveConfig
from .errors import DriveError
from .listing import DirectoryLister
from .models import Download, StoreEntry
from .paths import SafePathResolver, split_relative
from .state import (
    DEFAULT_SYSTEM_DIRNAME,
    TAGS_FILENAME,
    TRASH_INDEX_FILENAME,
    IndexBackend,
    JsonFileBackend,
    system_dir,
)
from .tags import TagMap, TagStore
from .trash import DEFAULT_RETENTION, TrashEntry, TrashService
from .trash.service import MAX_CONFLICT_ATTEMPTS
from .upload import ChunkReceipt, ChunkRequest, LocalTransport, UploadOrchestrator, UploadReceiver

LOGGER = logging.getLogger(__name__)

PathLike = str | Sequence[str]


def _segments(path: PathLike) -> list[str]:
    if isinstance(path, str):
        return split_relative(path)
    return list(path)


class Drive:
    """Facade exposing list, rename, move, delete, trash, tag and upload operations."""

    def __init__(
        self,
        root: Path | str,
        *,
        system_dirname: str = DEFAULT_SYSTEM_DIRNAME,
        reserved_prefix: str = ".",
        tags_backend: IndexBackend | None = None,
        trash_backend: IndexBackend | None = None,
        retention: timedelta = DEFAULT_RETENTION,
        max_conflict_attempts: int = MAX_CONFLICT_ATTEMPTS,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        """Wire the components for one store root.

        Args:
            root: Existing directory exposed as the store root.
            system_dirname: Metadata directory name under the root.
            reserved_prefix: Name prefix hidden from listings.
            tags_backend: Storage for the tag index; defaults to a JSON file.
            trash_backend: Storage for the trash index; defaults to a JSON file.
            retention: Trash retention window.
            max_conflict_attempts: Bound on restore conflict renaming.
            clock: Source of the current UTC time for the trash.
            id_factory: Generator for trash identifiers.
        """
        self.resolver = SafePathResolver(root)
        metadata = system_dir(self.resolver.root, system_dirname)
        self.tags = TagStore(tags_backend or JsonFileBackend(metadata / TAGS_FILENAME))
        self.lister = DirectoryLister(
            self.resolver,
            self.tags,
            reserved_prefix=reserved_prefix,
            system_dirname=system_dirname,
        )
        self.trash = TrashService(
            self.resolver,
            self.tags,
            trash_backend or JsonFileBackend(metadata / TRASH_INDEX_FILENAME),
            system_dirname=system_dirname,
            retention=retention,
            max_conflict_attempts=max_conflict_attempts,
            clock=clock,
            id_factory=id_factory,
        )
        self.receiver = UploadReceiver(
            self.resolver, reserved_prefix=reserved_prefix, system_dirname=system_dirname
        )

    @classmethod
    def from_config(cls, config: NasdriveConfig, **overrides: object) -> "Drive":
        """Build a drive from loaded configuration."""
        options: dict[str, object] = {
            "system_dirname": config.storage.system_dirname,
            "reserved_prefix": config.storage.reserved_prefix,
            "retention": timedelta(days=config.trash.retention_days),
            "max_conflict_attempts": config.trash.max_conflict_attempts,
        }
        options.update(overrides)
        return cls(Path(config.storage.root), **options)  # type: ignore[arg-type]

    @property
    def root(self) -> Path:
        return self.resolver.root

    # Browsing ---------------------------------------------------------

    def list(self, path: PathLike = "") -> list[StoreEntry]:
        return self.lister.list(_segments(path))

    def stat(self, identifier: str) -> StoreEntry:
        return self.lister.stat(identifier)

    def create_directory(self, path: PathLike, name: str) -> StoreEntry:
        return self.lister.create_directory(_segments(path), name)

    def rename(self, identifier: str, new_name: str) -> str:
        return self.lister.rename(identifier, new_name)

    def move(self, identifiers: Iterable[str], destination_id: str) -> list[str]:
        return self.lister.move(identifiers, destination_id)

    def delete(self, identifier: str) -> None:
        """Hard-delete an entry, bypassing the trash."""
        self.lister.delete(identifier)

    def download_file(self, identifier: str) -> Download:
        return self.lister.open_file(identifier)

    # Trash ------------------------------------------------------------

    def move_to_trash(self, identifier: str) -> TrashEntry:
        self.resolver.resolve_id(identifier)
        return self.trash.move_to_trash(identity.decode(identifier))

    def restore_from_trash(self, trash_id: str) -> str:
        return self.trash.restore_from_trash(trash_id)

    def permanently_delete(self, trash_id: str) -> None:
        self.trash.permanently_delete(trash_id)

    def empty_trash(self) -> int:
        return self.trash.empty_trash()

    def list_trash(self) -> list[TrashEntry]:
        return self.trash.list()

    def restore_many(self, trash_ids: Iterable[str]) -> tuple[dict[str, str], dict[str, str]]:
        """Restore several entries, collecting failures instead of stopping.

        Returns:
            tuple[dict[str, str], dict[str, str]]: Restored paths and error
                messages, both keyed by trash id.
        """
        restored: dict[str, str] = {}
        errors: dict[str, str] = {}
        for trash_id in trash_ids:
            try:
                restored[trash_id] = self.trash.restore_from_trash(trash_id)
            except DriveError as exc:
                LOGGER.warning("Restore of %s failed: %s", trash_id, exc)
                errors[trash_id] = str(exc)
        return restored, errors

    def permanently_delete_many(self, trash_ids: Iterable[str]) -> dict[str, str]:
        """Purge several entries; returns error messages keyed by trash id."""
        errors: dict[str, str] = {}
        for trash_id in trash_ids:
            try:
                self.trash.permanently_delete(trash_id)
            except DriveError as exc:
                LOGGER.warning("Purge of %s failed: %s", trash_id, exc)
                errors[trash_id] = str(exc)
        return errors

    # Tags -------------------------------------------------------------

    def get_tags(self) -> TagMap:
        return self.tags.get_all()

    def set_tags(self, path: str, labels: Iterable[str]) -> TagMap:
        return self.tags.set_tags(path, labels)

    # Uploads ----------------------------------------------------------

    def upload_file(self, stream: BinaryIO, path: PathLike, name: str) -> str:
        return self.receiver.receive_file(_segments(path), name, stream)

    def upload_chunk(self, path: PathLike, name: str, chunk: ChunkRequest) -> ChunkReceipt:
        return self.receiver.receive_chunk(_segments(path), name, chunk)

    def uploader(self, **options: object) -> UploadOrchestrator:
        """Return an orchestrator delivering straight into this drive."""
        transport = LocalTransport(self.receiver)
        return UploadOrchestrator(transport, **options)  # type: ignore[arg-type]


__all__ = ["Drive"]
