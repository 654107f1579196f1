"""Reversible identifiers for paths relative to the store root.

An identifier is the standard (padded) base64 encoding of the UTF-8 bytes of
a ``/``-separated relative path. The store root has the reserved identifier
``"root"``, which can never be produced by encoding a real path because its
base64 payload is not valid UTF-8.
"""

from __future__ import annotations

import base64
import binascii
import posixpath

from .errors import InvalidIdentifier

ROOT_ID = "root"


def encode(relative_path: str) -> str:
    """Return the identifier for ``relative_path``.

    Args:
        relative_path: Path relative to the store root using ``/`` separators.

    Returns:
        str: Opaque identifier; ``ROOT_ID`` for the empty path.
    """

    if relative_path == "":
        return ROOT_ID
    return base64.b64encode(relative_path.encode("utf-8")).decode("ascii")


def decode(identifier: str) -> str:
    """Return the relative path encoded by ``identifier``.

    Args:
        identifier: Identifier previously produced by :func:`encode`.

    Returns:
        str: Relative path; the empty string for ``ROOT_ID``.

    Raises:
        InvalidIdentifier: If the identifier is not base64 or not UTF-8.
    """

    if identifier == ROOT_ID:
        return ""
    if not identifier:
        raise InvalidIdentifier("Identifier must not be empty.")
    try:
        raw = base64.b64decode(identifier.encode("ascii"), validate=True)
        return raw.decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError, binascii.Error) as exc:
        raise InvalidIdentifier(f"Malformed identifier: {identifier!r}") from exc


def parent_of(relative_path: str) -> str:
    """Return the identifier of the directory that contains ``relative_path``."""

    return encode(posixpath.dirname(relative_path))


__all__ = ["ROOT_ID", "encode", "decode", "parent_of"]
