from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

from conftest import wait_for
from devlauncher.errors import ConfigError
from devlauncher.sync import SyncSession


def tree(root: Path) -> dict[str, bytes]:
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


@pytest.fixture
def session_factory(logger):
    sessions = []

    def factory(source: Path, target: Path, file_filter=None) -> SyncSession:
        session = SyncSession.create(source, target, file_filter, logger=logger)
        sessions.append(session)
        return session

    yield factory
    for session in sessions:
        session.close()


def test_create_requires_existing_source(tmp_path: Path, logger) -> None:
    with pytest.raises(FileNotFoundError):
        SyncSession.create(tmp_path / "missing", tmp_path / "out", logger=logger)


def test_create_rejects_file_source(tmp_path: Path, logger) -> None:
    (tmp_path / "file").write_text("x")
    with pytest.raises(NotADirectoryError):
        SyncSession.create(tmp_path / "file", tmp_path / "out", logger=logger)


def test_create_rejects_target_inside_source(source: Path, logger) -> None:
    with pytest.raises(ConfigError):
        SyncSession.create(source, source / "mirror", logger=logger)


@pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
def test_uncreatable_target_propagates(tmp_path: Path, source: Path, logger) -> None:
    locked = tmp_path / "locked"
    locked.mkdir()
    locked.chmod(0o500)
    try:
        with pytest.raises(PermissionError):
            SyncSession.create(source, locked / "target", logger=logger)
    finally:
        locked.chmod(0o700)


def test_initial_sync_then_resync_copies_nothing(session_factory, source: Path, target: Path) -> None:
    (source / "a.txt").write_bytes(b"a" * 100)

    session = session_factory(source, target)

    assert session.initial_copies == 1
    assert (target / "a.txt").read_bytes() == b"a" * 100
    assert session.resync() == 0


def test_create_makes_target_with_parents(session_factory, source: Path, tmp_path: Path) -> None:
    target = tmp_path / "deep" / "webapp"
    session_factory(source, target)
    assert target.is_dir()


def test_one_registration_per_directory(session_factory, source: Path, target: Path) -> None:
    (source / "x" / "y").mkdir(parents=True)
    session = session_factory(source, target)
    assert sorted(r.source_path.relative_to(session.source_root).as_posix() for r in session.registrations) == [".", "x", "x/y"]


def test_new_file_appears_in_target(session_factory, source: Path, target: Path) -> None:
    session_factory(source, target)

    (source / "b.txt").write_bytes(b"brand new")

    assert wait_for(lambda: (target / "b.txt").exists() and (target / "b.txt").read_bytes() == b"brand new")


def test_changes_converge_to_source_tree(session_factory, source: Path, target: Path) -> None:
    (source / "keep.txt").write_text("keep")
    (source / "edit.txt").write_text("before")
    (source / "drop.txt").write_text("drop")
    session = session_factory(source, target)

    (source / "edit.txt").write_text("after the edit")
    (source / "drop.txt").unlink()
    (source / "pkg").mkdir()
    (source / "pkg" / "mod.txt").write_text("module")
    (source / "pkg" / "sub").mkdir()
    (source / "pkg" / "sub" / "leaf.txt").write_text("leaf")
    (source / "keep.txt").rename(source / "kept.txt")

    assert wait_for(lambda: tree(target) == tree(source), timeout=10)
    assert session.watcher.registration_for_directory(session.source_root / "pkg" / "sub") is not None


def test_filtered_files_never_reach_target(session_factory, source: Path, target: Path) -> None:
    session_factory(source, target, lambda p: p.suffix != ".tmp")

    (source / "scratch.tmp").write_text("x")
    (source / "real.txt").write_text("y")

    assert wait_for(lambda: (target / "real.txt").exists())
    assert not (target / "scratch.tmp").exists()


def test_deleting_file_and_directory_propagates(session_factory, source: Path, target: Path) -> None:
    (source / "f.txt").write_text("f")
    (source / "dir" / "nested").mkdir(parents=True)
    (source / "dir" / "a.txt").write_text("a")
    (source / "dir" / "nested" / "b.txt").write_text("b")
    session = session_factory(source, target)
    assert (target / "dir" / "nested" / "b.txt").exists()

    (source / "f.txt").unlink()
    shutil.rmtree(source / "dir")

    assert wait_for(lambda: not (target / "f.txt").exists() and not (target / "dir").exists())
    assert wait_for(lambda: [r.source_path for r in session.registrations] == [session.source_root])


def test_close_stops_mirroring(session_factory, source: Path, target: Path) -> None:
    session = session_factory(source, target)
    session.close()
    session.close()

    (source / "late.txt").write_text("late")

    assert session.closed
    assert session.registrations == []
    assert not wait_for(lambda: (target / "late.txt").exists(), timeout=0.5)
