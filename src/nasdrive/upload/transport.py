"""Transports carrying upload requests from the orchestrator to a receiver."""

from __future__ import annotations

from typing import BinaryIO, Protocol, Sequence

from .models import ChunkReceipt, ChunkRequest
from .receiver import UploadReceiver


class UploadTransport(Protocol):
    """Deliver whole payloads and chunks to the store.

    Implementations that cross a network must bound every call with a timeout
    and raise on expiry so the orchestrator can retry.
    """

    def send_file(self, directory: Sequence[str], name: str, stream: BinaryIO) -> None:
        ...

    def send_chunk(self, directory: Sequence[str], name: str, chunk: ChunkRequest) -> ChunkReceipt:
        ...


class LocalTransport:
    """In-process transport calling an :class:`UploadReceiver` directly."""

    def __init__(self, receiver: UploadReceiver) -> None:
        self._receiver = receiver

    def send_file(self, directory: Sequence[str], name: str, stream: BinaryIO) -> None:
        self._receiver.receive_file(directory, name, stream)

    def send_chunk(self, directory: Sequence[str], name: str, chunk: ChunkRequest) -> ChunkReceipt:
        return self._receiver.receive_chunk(directory, name, chunk)


__all__ = ["UploadTransport", "LocalTransport"]
