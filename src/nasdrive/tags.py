"""Path-keyed label store persisted as a single JSON object.

Every mutation is a read-modify-write of the whole document. Two writers
racing on the same backend can lose one of the updates; no lock is taken.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from .errors import AccessDenied
from .paths import split_relative
from .state import IndexBackend, StateError

LOGGER = logging.getLogger(__name__)

TagMap = Dict[str, List[str]]


def normalize_tag_path(path: str) -> str:
    """Return the canonical key for ``path`` (no leading or trailing slash)."""

    return "/".join(split_relative(path))


def _is_nested(key: str, prefix: str) -> bool:
    return key == prefix or key.startswith(prefix + "/")


class TagStore:
    """Persisted mapping from relative path to a set of labels."""

    def __init__(self, backend: IndexBackend) -> None:
        self._backend = backend

    def get_all(self) -> TagMap:
        """Return the full tag map; empty when nothing has been stored."""
        data = self._backend.read() or {}
        tags: TagMap = {}
        for key, labels in data.items():
            if not isinstance(labels, list):
                raise StateError(f"Tag entry for {key!r} must be a list.")
            if labels:
                tags[key] = [str(label) for label in labels]
        return tags

    def set_tags(self, path: str, labels: Iterable[str]) -> TagMap:
        """Replace the labels on ``path``; an empty set removes the key.

        Args:
            path: Relative path of the tagged entry.
            labels: New labels. Duplicates and blank labels are dropped.

        Returns:
            TagMap: The full map after the update.

        Raises:
            AccessDenied: If ``path`` refers to the store root.
        """

        key = normalize_tag_path(path)
        if not key:
            raise AccessDenied("The store root cannot carry tags.")
        cleaned = list(dict.fromkeys(label.strip() for label in labels if label.strip()))

        tags = self.get_all()
        if cleaned:
            tags[key] = cleaned
        else:
            tags.pop(key, None)
        self._backend.write(tags)
        return tags

    def migrate(self, old_path: str, new_path: str) -> None:
        """Move tags at or below ``old_path`` to the same suffix under ``new_path``."""

        old_key = normalize_tag_path(old_path)
        new_key = normalize_tag_path(new_path)
        if not old_key or old_key == new_key:
            return

        tags = self.get_all()
        changed = False
        if old_key in tags:
            tags[new_key] = tags.pop(old_key)
            changed = True

        prefix = old_key + "/"
        for key in [key for key in tags if key.startswith(prefix)]:
            tags[f"{new_key}/{key[len(prefix):]}"] = tags.pop(key)
            changed = True

        if changed:
            self._backend.write(tags)
            LOGGER.info("Migrated tags from %s to %s", old_key, new_key)

    def cascade_delete(self, path: str) -> None:
        """Drop tags for ``path`` and everything nested under it."""

        target = normalize_tag_path(path)
        if not target:
            return
        tags = self.get_all()
        doomed = [key for key in tags if _is_nested(key, target)]
        if not doomed:
            return
        for key in doomed:
            del tags[key]
        self._backend.write(tags)
        LOGGER.info("Removed %d tag record(s) under %s", len(doomed), target)


__all__ = ["TagStore", "TagMap", "normalize_tag_path"]
