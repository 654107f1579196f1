"""Server side of the upload pipeline.

Payloads never appear under their final name until fully written: a direct
upload streams into a hidden temporary file, a chunked upload appends to a
hidden staging file, and both are published with a single ``os.replace``.
The only state carried between chunk requests is the staging file itself.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
from pathlib import Path
from typing import BinaryIO, Sequence

from nasdrive.errors import (
    AccessDenied,
    AlreadyExists,
    ChunkSequenceError,
    NotFound,
    translate_os_errors,
)
from nasdrive.paths import SafePathResolver
from nasdrive.state import DEFAULT_SYSTEM_DIRNAME

from .models import ChunkReceipt, ChunkRequest

LOGGER = logging.getLogger(__name__)

STAGING_SUFFIX = ".part"
UPLOAD_SUFFIX = ".upload"
COPY_BUFFER_SIZE = 1024 * 1024


class UploadReceiver:
    """Write client-supplied bytes into the store."""

    def __init__(
        self,
        resolver: SafePathResolver,
        *,
        reserved_prefix: str = ".",
        system_dirname: str = DEFAULT_SYSTEM_DIRNAME,
    ) -> None:
        self._resolver = resolver
        self._reserved_prefix = reserved_prefix
        self._system_dir = resolver.root / system_dirname

    def staging_path(self, segments: Sequence[str], name: str) -> Path:
        """Return the hidden staging file used while chunks of ``name`` arrive."""

        target = self._target(segments, name)
        return target.with_name(f"{self._reserved_prefix}{target.name}{STAGING_SUFFIX}")

    def receive_file(self, segments: Sequence[str], name: str, stream: BinaryIO) -> str:
        """Store a whole payload as ``name`` inside the directory at ``segments``.

        Returns:
            str: Relative path of the stored file.

        Raises:
            AccessDenied: If the target escapes the root.
            NotFound: If the target directory is missing.
            AlreadyExists: If a directory occupies the target name.
            TransientIO: If writing fails; the temporary file is removed.
        """

        target = self._target(segments, name)
        relative = self._resolver.relative(target)
        with translate_os_errors(relative):
            temp = self._temp_path(target)
            handle = temp.open("xb")
            try:
                with handle:
                    shutil.copyfileobj(stream, handle, COPY_BUFFER_SIZE)
                os.replace(temp, target)
            except BaseException:
                temp.unlink(missing_ok=True)
                raise
        LOGGER.info("Stored upload %s", relative)
        return relative

    def receive_chunk(
        self, segments: Sequence[str], name: str, chunk: ChunkRequest
    ) -> ChunkReceipt:
        """Apply one chunk of a chunked upload.

        Chunk 0 truncates (or creates) the staging file. Later chunks append;
        when ``chunk.offset`` is given, a longer staging file is first cut
        back to that offset so a retried chunk is not written twice. The last
        chunk publishes the staging file under ``name``.

        Raises:
            ChunkSequenceError: If the chunk numbering is invalid or the
                staging file does not hold the preceding bytes.
        """

        if chunk.total < 1 or not 0 <= chunk.index < chunk.total:
            raise ChunkSequenceError(f"Invalid chunk {chunk.index} of {chunk.total} for {name!r}")

        target = self._target(segments, name)
        staging = self.staging_path(segments, name)
        relative = self._resolver.relative(target)

        with translate_os_errors(relative):
            if chunk.index == 0:
                mode = "wb"
            else:
                if not staging.is_file():
                    if self._already_published(target, chunk):
                        LOGGER.info("Final chunk for %s repeated after publish", relative)
                        size = target.stat().st_size
                        return ChunkReceipt(path=relative, bytes_received=size, complete=True)
                    raise ChunkSequenceError(
                        f"Chunk {chunk.index} for {relative} arrived without a staging file"
                    )
                self._align(staging, chunk, relative)
                mode = "ab"
            with staging.open(mode) as handle:
                handle.write(chunk.data)
            received = staging.stat().st_size

            complete = chunk.index == chunk.total - 1
            if complete:
                os.replace(staging, target)
                LOGGER.info("Assembled %s from %d chunk(s)", relative, chunk.total)

        return ChunkReceipt(path=relative, bytes_received=received, complete=complete)

    def _temp_path(self, target: Path) -> Path:
        """Return a fresh hidden name for a direct upload in progress."""
        token = secrets.token_hex(4)
        return target.with_name(f"{self._reserved_prefix}{target.name}.{token}{UPLOAD_SUFFIX}")

    def _already_published(self, target: Path, chunk: ChunkRequest) -> bool:
        if chunk.index != chunk.total - 1 or chunk.offset is None or not target.is_file():
            return False
        return target.stat().st_size == chunk.offset + len(chunk.data)

    def _align(self, staging: Path, chunk: ChunkRequest, relative: str) -> None:
        if chunk.offset is None:
            return
        size = staging.stat().st_size
        if size < chunk.offset:
            raise ChunkSequenceError(
                f"Staging file for {relative} has {size} bytes; chunk expects {chunk.offset}"
            )
        if size > chunk.offset:
            LOGGER.debug("Truncating staging file for %s to %d bytes", relative, chunk.offset)
            os.truncate(staging, chunk.offset)

    def _target(self, segments: Sequence[str], name: str) -> Path:
        directory = self._resolver.resolve(segments)
        target = self._resolver.resolve([self._resolver.relative(directory), name])
        if target.parent != directory:
            raise AccessDenied(f"Invalid upload name: {name!r}")
        if target == self._system_dir or self._system_dir in target.parents:
            raise AccessDenied("Uploads into the metadata directory are not allowed.")
        if not directory.is_dir():
            raise NotFound(f"Upload directory does not exist: {'/'.join(segments) or '/'}")
        if target.is_dir():
            raise AlreadyExists(f"A directory named {name!r} already exists")
        return target


__all__ = ["UploadReceiver", "STAGING_SUFFIX"]
