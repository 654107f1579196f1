"""Tag store and index backend tests."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

import pytest

from nasdrive.errors import AccessDenied
from nasdrive.state import JsonFileBackend, MemoryBackend, StateError
from nasdrive.tags import TagStore


class _BarrierBackend(MemoryBackend):
    """Memory backend whose reads wait until both writers have read."""

    def __init__(self) -> None:
        super().__init__()
        self.barrier = threading.Barrier(2, timeout=5)
        self.armed = True

    def read(self) -> dict[str, Any] | None:
        data = super().read()
        if self.armed:
            self.barrier.wait()
        return data


def test_get_all_is_empty_without_backing_file(tmp_path: Path) -> None:
    backend = JsonFileBackend(tmp_path / ".fm_system" / "tags.json")
    store = TagStore(backend)

    assert store.get_all() == {}
    assert not backend.path.exists()


def test_set_tags_persists_and_prunes_empty_sets(tmp_path: Path) -> None:
    backend = JsonFileBackend(tmp_path / ".fm_system" / "tags.json")
    store = TagStore(backend)

    result = store.set_tags("docs/a.txt", ["Red", "Blue", "Red", " "])

    assert result == {"docs/a.txt": ["Red", "Blue"]}
    assert json.loads(backend.path.read_text(encoding="utf-8")) == result

    result = store.set_tags("/docs/a.txt/", [])

    assert result == {}
    assert json.loads(backend.path.read_text(encoding="utf-8")) == {}


def test_root_is_not_taggable() -> None:
    store = TagStore(MemoryBackend())

    with pytest.raises(AccessDenied):
        store.set_tags("", ["Red"])
    with pytest.raises(AccessDenied):
        store.set_tags("/", ["Red"])


def test_migrate_moves_exact_and_nested_keys_only() -> None:
    store = TagStore(MemoryBackend())
    store.set_tags("A", ["one"])
    store.set_tags("A/x/y.txt", ["two"])
    store.set_tags("AB/z.txt", ["three"])
    store.set_tags("other", ["four"])

    store.migrate("A", "moved/B")

    assert store.get_all() == {
        "moved/B": ["one"],
        "moved/B/x/y.txt": ["two"],
        "AB/z.txt": ["three"],
        "other": ["four"],
    }


def test_migrate_without_matches_does_not_write() -> None:
    backend = MemoryBackend()
    store = TagStore(backend)
    store.set_tags("kept", ["one"])
    writes = backend.writes

    store.migrate("absent", "elsewhere")

    assert backend.writes == writes


def test_cascade_delete_removes_subtree() -> None:
    store = TagStore(MemoryBackend())
    store.set_tags("dir", ["one"])
    store.set_tags("dir/file", ["two"])
    store.set_tags("dirt", ["three"])

    store.cascade_delete("dir")

    assert store.get_all() == {"dirt": ["three"]}


def test_corrupt_index_raises_state_error(tmp_path: Path) -> None:
    path = tmp_path / "tags.json"
    path.write_text("not json", encoding="utf-8")

    with pytest.raises(StateError):
        TagStore(JsonFileBackend(path)).get_all()

    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(StateError):
        TagStore(JsonFileBackend(path)).get_all()


def test_concurrent_writers_can_lose_an_update() -> None:
    """Whole-file read-modify-write is unlocked: the later writer wins."""
    backend = _BarrierBackend()
    store = TagStore(backend)

    threads = [
        threading.Thread(target=store.set_tags, args=(path, ["Red"]))
        for path in ("first", "second")
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    backend.armed = False
    assert len(store.get_all()) == 1
