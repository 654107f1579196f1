"""Containment-checked resolution of untrusted paths under the store root."""

from __future__ import annotations

import ntpath
import os
from pathlib import Path, PurePosixPath
from typing import Iterable, Sequence

from . import identity
from .errors import AccessDenied


def split_relative(relative_path: str) -> list[str]:
    """Split a ``/``-separated relative path into non-empty segments."""

    return [segment for segment in relative_path.split("/") if segment]


class SafePathResolver:
    """Map identifiers and segment lists to absolute paths inside one root."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser().resolve()

    @property
    def root(self) -> Path:
        """Return the canonical store root."""
        return self._root

    def resolve(self, segments: Sequence[str]) -> Path:
        """Join ``segments`` under the root and verify containment.

        The check is purely lexical so a rejected request never touches disk.

        Args:
            segments: Untrusted path segments; each may itself contain ``/``.

        Returns:
            Path: Absolute path equal to or inside the root.

        Raises:
            AccessDenied: If any segment is absolute, contains ``..``, or the
                joined result falls outside the root.
        """

        parts = list(self._validated_parts(segments))
        candidate = Path(os.path.normpath(os.path.join(self._root, *parts)))
        if candidate != self._root and self._root not in candidate.parents:
            raise AccessDenied(f"Path escapes the store root: {'/'.join(segments)!r}")
        return candidate

    def resolve_id(self, identifier: str) -> Path:
        """Decode ``identifier`` and resolve it like :meth:`resolve`.

        Raises:
            InvalidIdentifier: If the identifier is malformed.
            AccessDenied: If the decoded path escapes the root.
        """

        return self.resolve([identity.decode(identifier)])

    def relative(self, path: Path) -> str:
        """Return the ``/``-separated path of ``path`` relative to the root."""

        relative = path.relative_to(self._root)
        posix = PurePosixPath(*relative.parts).as_posix()
        return "" if posix == "." else posix

    def identify(self, path: Path) -> str:
        """Return the identifier of an absolute path inside the root."""

        return identity.encode(self.relative(path))

    def _validated_parts(self, segments: Iterable[str]) -> Iterable[str]:
        for segment in segments:
            if "\x00" in segment:
                raise AccessDenied("Path segments must not contain NUL bytes.")
            if segment.startswith(("/", "\\")) or ntpath.isabs(segment):
                raise AccessDenied(f"Absolute path segment rejected: {segment!r}")
            for part in split_relative(segment):
                if part == "..":
                    raise AccessDenied(f"Parent traversal rejected: {segment!r}")
                if part != ".":
                    yield part


__all__ = ["SafePathResolver", "split_relative"]
