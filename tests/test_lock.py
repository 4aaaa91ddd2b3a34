from __future__ import annotations

import json
import os
from pathlib import Path

import allure
import pytest

from paired.errors import AlreadyLocked
from paired.startup.lock import LockDescriptor, LockManager

pytestmark = [
    allure.epic("Hub Lifecycle"),
    allure.feature("Startup Lock"),
]


class MutableClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _write_lock(path: Path, *, timestamp: float, source: str = "other", pid: int = 1) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"timestamp": timestamp, "source": source, "pid": pid}), "utf-8")


def test_acquire_writes_descriptor_and_release_removes_it(tmp_path: Path) -> None:
    path = tmp_path / "state" / "startup.lock"
    manager = LockManager(path, clock=MutableClock(5000.0))

    descriptor = manager.acquire("cli")

    assert descriptor == LockDescriptor(timestamp=5000.0, source="cli", pid=os.getpid())
    assert manager.is_locked()
    assert manager.read() == descriptor

    manager.release()

    assert not path.exists()
    assert not manager.is_locked()


def test_acquire_fails_while_fresh_lock_is_held(tmp_path: Path) -> None:
    path = tmp_path / "startup.lock"
    _write_lock(path, timestamp=1000.0, source="vscode", pid=4242)
    manager = LockManager(path, clock=MutableClock(1100.0))

    with pytest.raises(AlreadyLocked) as excinfo:
        manager.acquire("cli")

    assert excinfo.value.source == "vscode"
    assert excinfo.value.pid == 4242
    assert json.loads(path.read_text("utf-8"))["source"] == "vscode"


def test_stale_lock_is_treated_as_absent_and_reclaimed(tmp_path: Path) -> None:
    path = tmp_path / "startup.lock"
    _write_lock(path, timestamp=1000.0)
    manager = LockManager(path, stale_after_seconds=300, clock=MutableClock(1301.0))

    assert manager.is_locked() is False
    assert not path.exists()

    descriptor = manager.acquire("cli")
    assert descriptor.source == "cli"


def test_lock_at_exact_threshold_is_still_held(tmp_path: Path) -> None:
    path = tmp_path / "startup.lock"
    _write_lock(path, timestamp=1000.0)
    manager = LockManager(path, stale_after_seconds=300, clock=MutableClock(1300.0))

    assert manager.is_locked() is True


def test_unparseable_lock_file_is_reclaimed(tmp_path: Path) -> None:
    path = tmp_path / "startup.lock"
    path.write_text("{not json", "utf-8")
    manager = LockManager(path)

    assert manager.is_locked() is False
    assert manager.acquire("cli").source == "cli"


def test_reclaim_puts_back_a_lock_that_was_replaced(tmp_path: Path) -> None:
    path = tmp_path / "startup.lock"
    stale = LockDescriptor(timestamp=1.0, source="old", pid=1)
    _write_lock(path, timestamp=9999.0, source="fresh", pid=2)
    manager = LockManager(path)

    assert manager._reclaim(expected=stale) is False
    assert json.loads(path.read_text("utf-8"))["source"] == "fresh"
    assert [entry.name for entry in tmp_path.iterdir()] == ["startup.lock"]


def test_reclaim_warns_when_a_third_caller_takes_the_slot(
    tmp_path: Path,
    monkeypatch,
    caplog,
) -> None:
    path = tmp_path / "startup.lock"
    stale = LockDescriptor(timestamp=1.0, source="old", pid=1)
    _write_lock(path, timestamp=9999.0, source="fresh", pid=2)
    manager = LockManager(path)

    def _slot_taken(src, dst) -> None:
        _write_lock(Path(dst), timestamp=9999.5, source="third", pid=3)
        raise FileExistsError(dst)

    monkeypatch.setattr(os, "link", _slot_taken)

    with caplog.at_level("WARNING", logger="paired.startup.lock"):
        assert manager._reclaim(expected=stale) is False

    assert json.loads(path.read_text("utf-8"))["source"] == "third"
    assert [entry.name for entry in tmp_path.iterdir()] == ["startup.lock"]
    assert "Lock from fresh (pid=2) was displaced" in caplog.text


def test_release_is_tolerant_of_missing_file(tmp_path: Path) -> None:
    manager = LockManager(tmp_path / "startup.lock")

    manager.release()

    assert not (tmp_path / "startup.lock").exists()


def test_release_leaves_lock_owned_by_someone_else(tmp_path: Path) -> None:
    path = tmp_path / "startup.lock"
    manager = LockManager(path, clock=MutableClock(1000.0))
    manager.acquire("cli")
    _write_lock(path, timestamp=1000.0, source="hook", pid=777)

    manager.release()

    assert json.loads(path.read_text("utf-8"))["source"] == "hook"


def test_stale_after_must_be_positive(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="stale_after_seconds"):
        LockManager(tmp_path / "startup.lock", stale_after_seconds=0)
