"""Trash lifecycle tests."""

from __future__ import annotations

import errno
import itertools
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from nasdrive import identity
from nasdrive.drive import Drive
from nasdrive.errors import AccessDenied, ExhaustedNameSpace, NotFound
from nasdrive.state import JsonFileBackend, MemoryBackend
from nasdrive.trash import service as trash_service

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self) -> None:
        self.now = START

    def __call__(self) -> datetime:
        return self.now


def _drive(tmp_path: Path, **options: object) -> Drive:
    root = tmp_path / "root"
    root.mkdir(exist_ok=True)
    counter = itertools.count(1)
    options.setdefault("id_factory", lambda: f"t{next(counter):03d}")
    return Drive(
        root,
        tags_backend=MemoryBackend(),
        trash_backend=MemoryBackend(),
        **options,  # type: ignore[arg-type]
    )


def test_move_to_trash_quarantines_and_indexes(tmp_path: Path) -> None:
    drive = _drive(tmp_path, clock=_Clock())
    (drive.root / "docs").mkdir()
    (drive.root / "docs" / "a.txt").write_text("hello", encoding="utf-8")

    entry = drive.move_to_trash(identity.encode("docs/a.txt"))

    assert entry.trash_id == "t001"
    assert entry.original_path == "docs/a.txt"
    assert entry.original_name == "a.txt"
    assert entry.kind == "file"
    assert entry.size == 5
    assert entry.trashed_at == START
    assert not (drive.root / "docs" / "a.txt").exists()
    payload = drive.root / ".fm_system" / "trash" / "t001_a.txt"
    assert payload.read_text(encoding="utf-8") == "hello"
    assert [item.trash_id for item in drive.list_trash()] == ["t001"]
    assert [item.name for item in drive.list("docs")] == []


def test_trash_and_restore_preserves_tags(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "photos").mkdir()
    (drive.root / "photos" / "cat.png").write_bytes(b"meow")
    drive.set_tags("photos", ["Pets"])
    drive.set_tags("photos/cat.png", ["Red"])

    entry = drive.move_to_trash(identity.encode("photos"))

    assert entry.kind == "directory"
    assert drive.get_tags() == {"photos": ["Pets"], "photos/cat.png": ["Red"]}

    restored = drive.restore_from_trash(entry.trash_id)

    assert restored == "photos"
    assert (drive.root / "photos" / "cat.png").read_bytes() == b"meow"
    assert drive.list_trash() == []
    assert [item.name for item in drive.list("photos")] == ["cat.png"]
    assert drive.get_tags() == {"photos": ["Pets"], "photos/cat.png": ["Red"]}


def test_restore_recreates_missing_parents(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "a" / "b").mkdir(parents=True)
    (drive.root / "a" / "b" / "c.txt").write_text("c", encoding="utf-8")
    entry = drive.move_to_trash(identity.encode("a/b/c.txt"))
    drive.delete(identity.encode("a"))

    assert drive.restore_from_trash(entry.trash_id) == "a/b/c.txt"
    assert (drive.root / "a" / "b" / "c.txt").read_text(encoding="utf-8") == "c"


def test_restore_conflicts_get_numbered_names(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    note = drive.root / "note.txt"

    note.write_text("first", encoding="utf-8")
    first = drive.move_to_trash(identity.encode("note.txt"))
    note.write_text("second", encoding="utf-8")
    second = drive.move_to_trash(identity.encode("note.txt"))
    note.write_text("current", encoding="utf-8")

    assert drive.restore_from_trash(first.trash_id) == "note (1).txt"
    assert drive.restore_from_trash(second.trash_id) == "note (2).txt"
    assert note.read_text(encoding="utf-8") == "current"
    assert (drive.root / "note (1).txt").read_text(encoding="utf-8") == "first"
    assert (drive.root / "note (2).txt").read_text(encoding="utf-8") == "second"


def test_restore_conflict_on_directory_appends_to_full_name(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "v1.0").mkdir()
    entry = drive.move_to_trash(identity.encode("v1.0"))
    (drive.root / "v1.0").mkdir()

    assert drive.restore_from_trash(entry.trash_id) == "v1.0 (1)"


def test_restore_gives_up_after_bounded_attempts(tmp_path: Path) -> None:
    drive = _drive(tmp_path, max_conflict_attempts=3)
    (drive.root / "x.txt").write_text("old", encoding="utf-8")
    entry = drive.move_to_trash(identity.encode("x.txt"))
    for name in ("x.txt", "x (1).txt", "x (2).txt", "x (3).txt"):
        (drive.root / name).write_text("taken", encoding="utf-8")

    with pytest.raises(ExhaustedNameSpace):
        drive.restore_from_trash(entry.trash_id)

    assert [item.trash_id for item in drive.list_trash()] == [entry.trash_id]


def test_permanent_delete_removes_payload_and_tags(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "old.txt").write_text("bye", encoding="utf-8")
    drive.set_tags("old.txt", ["Archive"])
    entry = drive.move_to_trash(identity.encode("old.txt"))

    drive.permanently_delete(entry.trash_id)

    assert drive.list_trash() == []
    assert drive.get_tags() == {}
    assert not drive.trash.quarantine_path(entry).exists()
    with pytest.raises(NotFound):
        drive.restore_from_trash(entry.trash_id)
    with pytest.raises(NotFound):
        drive.permanently_delete(entry.trash_id)


def test_permanent_delete_tolerates_missing_payload(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "gone.txt").write_text("x", encoding="utf-8")
    entry = drive.move_to_trash(identity.encode("gone.txt"))
    drive.trash.quarantine_path(entry).unlink()

    drive.permanently_delete(entry.trash_id)

    assert drive.list_trash() == []


def test_restore_with_missing_payload_drops_entry(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "gone.txt").write_text("x", encoding="utf-8")
    entry = drive.move_to_trash(identity.encode("gone.txt"))
    drive.trash.quarantine_path(entry).unlink()

    with pytest.raises(NotFound):
        drive.restore_from_trash(entry.trash_id)

    assert drive.list_trash() == []


def test_listing_sweeps_expired_entries(tmp_path: Path) -> None:
    clock = _Clock()
    drive = _drive(tmp_path, clock=clock)
    (drive.root / "old.txt").write_text("old", encoding="utf-8")
    drive.set_tags("old.txt", ["Stale"])
    old = drive.move_to_trash(identity.encode("old.txt"))

    clock.now = START + timedelta(days=20)
    (drive.root / "new.txt").write_text("new", encoding="utf-8")
    new = drive.move_to_trash(identity.encode("new.txt"))

    clock.now = START + timedelta(days=30)
    assert [item.trash_id for item in drive.list_trash()] == [new.trash_id, old.trash_id]

    clock.now = START + timedelta(days=31)
    assert [item.trash_id for item in drive.list_trash()] == [new.trash_id]
    assert not drive.trash.quarantine_path(old).exists()
    assert drive.get_tags() == {}


def test_empty_trash_purges_everything(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    for name in ("a.txt", "b.txt"):
        (drive.root / name).write_text(name, encoding="utf-8")
        drive.move_to_trash(identity.encode(name))

    assert drive.empty_trash() == 2
    assert drive.list_trash() == []
    assert list(drive.trash.quarantine_dir.iterdir()) == []


def test_empty_trash_without_entries_does_not_create_index(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    drive = Drive(root, tags_backend=MemoryBackend())

    assert drive.empty_trash() == 0
    assert not (root / ".fm_system" / "trash.json").exists()


def test_index_persists_in_metadata_directory(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    (root / "keep.txt").write_text("k", encoding="utf-8")
    drive = Drive(root)
    entry = drive.move_to_trash(identity.encode("keep.txt"))

    reopened = Drive(root)

    assert [item.trash_id for item in reopened.list_trash()] == [entry.trash_id]
    raw = JsonFileBackend(root / ".fm_system" / "trash.json").read()
    assert raw is not None and raw[entry.trash_id]["original_path"] == "keep.txt"


def test_cross_device_move_falls_back_to_copy(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    drive = _drive(tmp_path)
    (drive.root / "big").mkdir()
    (drive.root / "big" / "data.bin").write_bytes(b"\x00" * 64)

    def cross_device(source: object, destination: object) -> None:
        raise OSError(errno.EXDEV, os.strerror(errno.EXDEV))

    monkeypatch.setattr(trash_service.os, "rename", cross_device)
    entry = drive.move_to_trash(identity.encode("big"))

    assert not (drive.root / "big").exists()
    assert (drive.trash.quarantine_path(entry) / "data.bin").read_bytes() == b"\x00" * 64

    assert drive.restore_from_trash(entry.trash_id) == "big"
    assert (drive.root / "big" / "data.bin").read_bytes() == b"\x00" * 64


def test_root_and_metadata_cannot_be_trashed(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / ".fm_system").mkdir()

    with pytest.raises(AccessDenied):
        drive.move_to_trash(identity.ROOT_ID)
    with pytest.raises(AccessDenied):
        drive.move_to_trash(identity.encode(".fm_system"))
    with pytest.raises(NotFound):
        drive.move_to_trash(identity.encode("missing.txt"))


def test_batch_restore_and_purge_collect_errors(tmp_path: Path) -> None:
    drive = _drive(tmp_path)
    (drive.root / "a.txt").write_text("a", encoding="utf-8")
    (drive.root / "b.txt").write_text("b", encoding="utf-8")
    first = drive.move_to_trash(identity.encode("a.txt"))
    second = drive.move_to_trash(identity.encode("b.txt"))

    restored, errors = drive.restore_many([first.trash_id, "nope"])

    assert restored == {first.trash_id: "a.txt"}
    assert set(errors) == {"nope"}

    errors = drive.permanently_delete_many([second.trash_id, "nope"])

    assert set(errors) == {"nope"}
    assert drive.list_trash() == []


def _fail_removal(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(path: Path) -> None:
        raise PermissionError(errno.EACCES, os.strerror(errno.EACCES), str(path))

    monkeypatch.setattr(trash_service, "_remove_payload", refuse)


def test_expired_entry_stays_indexed_when_payload_removal_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    clock = _Clock()
    drive = _drive(tmp_path, clock=clock)
    (drive.root / "a.txt").write_text("a", encoding="utf-8")
    drive.set_tags("a.txt", ["Red"])
    entry = drive.move_to_trash(identity.encode("a.txt"))
    clock.now = START + timedelta(days=31)

    _fail_removal(monkeypatch)

    assert [item.trash_id for item in drive.list_trash()] == [entry.trash_id]
    assert drive.trash.quarantine_path(entry).exists()
    assert drive.get_tags() == {}

    monkeypatch.undo()

    assert drive.list_trash() == []
    assert not drive.trash.quarantine_path(entry).exists()


def test_empty_trash_keeps_entries_it_could_not_purge(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    drive = _drive(tmp_path)
    (drive.root / "a.txt").write_text("a", encoding="utf-8")
    drive.set_tags("a.txt", ["Red"])
    entry = drive.move_to_trash(identity.encode("a.txt"))

    _fail_removal(monkeypatch)

    assert drive.empty_trash() == 0
    assert [item.trash_id for item in drive.list_trash()] == [entry.trash_id]
    assert drive.get_tags() == {}
