"""Server-side upload tests: atomic publish and chunk staging."""

from __future__ import annotations

import io
import stat
from pathlib import Path

import pytest

from nasdrive.drive import Drive
from nasdrive.errors import AccessDenied, AlreadyExists, ChunkSequenceError, NotFound, TransientIO
from nasdrive.state import MemoryBackend
from nasdrive.upload import ChunkRequest


class _FailingStream:
    """Yield some bytes, then fail mid-stream."""

    def __init__(self) -> None:
        self._sent = False

    def read(self, size: int = -1) -> bytes:
        if self._sent:
            raise OSError("connection reset")
        self._sent = True
        return b"part"


def _drive(tmp_path: Path) -> Drive:
    root = tmp_path / "root"
    root.mkdir()
    return Drive(root, tags_backend=MemoryBackend(), trash_backend=MemoryBackend())


def _chunks(data: bytes, size: int) -> list[ChunkRequest]:
    pieces = [data[start : start + size] for start in range(0, len(data), size)]
    return [
        ChunkRequest(index=index, total=len(pieces), data=piece, offset=index * size)
        for index, piece in enumerate(pieces)
    ]


def test_direct_upload_publishes_file(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "docs").mkdir()

    stored = drive.upload_file(io.BytesIO(b"payload"), "docs", "report.pdf")

    assert stored == "docs/report.pdf"
    assert (drive.root / "docs" / "report.pdf").read_bytes() == b"payload"
    assert sorted(path.name for path in (drive.root / "docs").iterdir()) == ["report.pdf"]


def test_direct_upload_overwrites_existing_file(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "a.txt").write_bytes(b"old")

    drive.upload_file(io.BytesIO(b"new"), "", "a.txt")

    assert (drive.root / "a.txt").read_bytes() == b"new"


def test_failed_stream_leaves_nothing_behind(tmp_path: Path) -> None:
    drive = _drive(tmp_path)

    with pytest.raises(TransientIO):
        drive.upload_file(_FailingStream(), "", "broken.bin")  # type: ignore[arg-type]

    assert list(drive.root.iterdir()) == []


def test_upload_target_checks(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "taken").mkdir()

    with pytest.raises(AlreadyExists):
        drive.upload_file(io.BytesIO(b"x"), "", "taken")
    with pytest.raises(NotFound):
        drive.upload_file(io.BytesIO(b"x"), "missing", "a.txt")
    with pytest.raises(AccessDenied):
        drive.upload_file(io.BytesIO(b"x"), "", "../escape.txt")
    with pytest.raises(AccessDenied):
        drive.upload_file(io.BytesIO(b"x"), "../..", "escape.txt")
    with pytest.raises(AccessDenied):
        drive.upload_file(io.BytesIO(b"x"), ".fm_system", "tags.json")


def test_chunked_upload_is_byte_identical(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    data = bytes(range(256)) * 40
    staging = drive.receiver.staging_path([], "blob.bin")

    receipts = [drive.upload_chunk("", "blob.bin", chunk) for chunk in _chunks(data, 1000)]

    assert [receipt.complete for receipt in receipts] == [False] * 10 + [True]
    assert receipts[-1].bytes_received == len(data)
    assert receipts[-1].path == "blob.bin"
    assert (drive.root / "blob.bin").read_bytes() == data
    assert not staging.exists()


def test_staging_file_is_hidden_until_complete(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    first, second = _chunks(b"abcdef", 3)

    drive.upload_chunk("", "video.mp4", first)

    staging = drive.receiver.staging_path([], "video.mp4")
    assert staging.name == ".video.mp4.part"
    assert staging.read_bytes() == b"abc"
    assert drive.list() == []

    drive.upload_chunk("", "video.mp4", second)

    assert [entry.name for entry in drive.list()] == ["video.mp4"]


def test_repeated_first_chunk_restarts_staging(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    first, second = _chunks(b"abcdef", 3)

    drive.upload_chunk("", "f.bin", first)
    drive.upload_chunk("", "f.bin", first)
    drive.upload_chunk("", "f.bin", second)

    assert (drive.root / "f.bin").read_bytes() == b"abcdef"


def test_retried_chunk_with_offset_is_not_duplicated(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    first, second, third = _chunks(b"aaabbbccc", 3)

    drive.upload_chunk("", "f.bin", first)
    drive.upload_chunk("", "f.bin", second)
    receipt = drive.upload_chunk("", "f.bin", second)

    assert receipt.bytes_received == 6

    drive.upload_chunk("", "f.bin", third)

    assert (drive.root / "f.bin").read_bytes() == b"aaabbbccc"


def test_chunk_without_staging_file_is_rejected(tmp_path: Path) -> None:
    drive = _drive(tmp_path)

    with pytest.raises(ChunkSequenceError):
        drive.upload_chunk("", "f.bin", ChunkRequest(index=1, total=2, data=b"x"))


def test_chunk_beyond_staged_bytes_is_rejected(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    drive.upload_chunk("", "f.bin", ChunkRequest(index=0, total=3, data=b"abc", offset=0))

    with pytest.raises(ChunkSequenceError):
        drive.upload_chunk("", "f.bin", ChunkRequest(index=2, total=3, data=b"ghi", offset=6))


@pytest.mark.parametrize("index,total", [(-1, 2), (2, 2), (0, 0)])
def test_invalid_chunk_numbering(tmp_path: Path, index: int, total: int) -> None:
    drive = _drive(tmp_path)

    with pytest.raises(ChunkSequenceError):
        drive.upload_chunk("", "f.bin", ChunkRequest(index=index, total=total, data=b"x"))


def test_final_chunk_replayed_after_publish_is_acknowledged(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    first, last = _chunks(b"abcdef", 3)
    drive.upload_chunk("", "f.bin", first)
    drive.upload_chunk("", "f.bin", last)

    receipt = drive.upload_chunk("", "f.bin", last)

    assert receipt.complete
    assert receipt.bytes_received == 6
    assert (drive.root / "f.bin").read_bytes() == b"abcdef"


def test_final_chunk_replay_with_size_mismatch_is_rejected(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "f.bin").write_bytes(b"unrelated older file")

    with pytest.raises(ChunkSequenceError):
        drive.upload_chunk("", "f.bin", ChunkRequest(index=1, total=2, data=b"def", offset=3))


def test_direct_and_chunked_uploads_get_the_same_mode(tmp_path: Path) -> None:
    drive = _drive(tmp_path)

    drive.upload_file(io.BytesIO(b"small"), "", "direct.bin")
    for chunk in _chunks(b"abcdef", 3):
        drive.upload_chunk("", "chunked.bin", chunk)

    direct_mode = stat.S_IMODE((drive.root / "direct.bin").stat().st_mode)
    chunked_mode = stat.S_IMODE((drive.root / "chunked.bin").stat().st_mode)
    assert direct_mode == chunked_mode
    assert [path.name for path in drive.root.iterdir() if path.name.startswith(".")] == []
