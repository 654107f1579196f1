"""Typed failures raised by store operations."""

from __future__ import annotations

import errno
from contextlib import contextmanager
from typing import Iterator


class DriveError(Exception):
    """Base exception for every store operation failure."""

    code = "drive_error"


class AccessDenied(DriveError):
    """Raised when a path escapes the store root or targets a protected entry."""

    code = "access_denied"


class NotFound(DriveError):
    """Raised when an entry or identifier does not exist."""

    code = "not_found"


class AlreadyExists(DriveError):
    """Raised when a name collides with an existing entry."""

    code = "already_exists"


class InvalidIdentifier(DriveError):
    """Raised when an identifier cannot be decoded into a relative path."""

    code = "invalid_identifier"


class TransientIO(DriveError):
    """Raised for I/O failures that may succeed when retried."""

    code = "transient_io"


class ExhaustedNameSpace(DriveError):
    """Raised when conflict renaming runs out of candidate names."""

    code = "exhausted_namespace"


class ChunkSequenceError(DriveError):
    """Raised when a chunk arrives without the staging data it extends."""

    code = "chunk_sequence"


@contextmanager
def translate_os_errors(subject: str) -> Iterator[None]:
    """Re-raise ``OSError`` subclasses as typed drive errors.

    Args:
        subject: Human-readable description of the entry being touched.

    Raises:
        NotFound: When the entry (or one of its parents) is missing.
        AlreadyExists: When the target name is taken.
        TransientIO: For any other operating system failure.
    """

    try:
        yield
    except DriveError:
        raise
    except (FileNotFoundError, NotADirectoryError) as exc:
        raise NotFound(f"{subject}: not found") from exc
    except FileExistsError as exc:
        raise AlreadyExists(f"{subject}: already exists") from exc
    except OSError as exc:
        if exc.errno == errno.ENOTEMPTY:
            raise AlreadyExists(f"{subject}: already exists") from exc
        raise TransientIO(f"{subject}: {exc.strerror or exc}") from exc


__all__ = [
    "DriveError",
    "AccessDenied",
    "NotFound",
    "AlreadyExists",
    "InvalidIdentifier",
    "TransientIO",
    "ExhaustedNameSpace",
    "ChunkSequenceError",
    "translate_os_errors",
]
