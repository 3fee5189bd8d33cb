"""Tests for the snapshot engine."""

import os
import sqlite3
import threading
from datetime import datetime, timezone

import pytest

from snapsync.backup import snapshot as snapshot_module
from snapsync.backup.snapshot import (
    backup_filename,
    check_integrity,
    create_snapshot,
    snapshot_session,
)
from snapsync.errors import (
    IntegrityCheckFailed,
    SnapshotCopyFailed,
    SourceEmpty,
    SourceMissing,
    ValidationToolError,
)


def _rows(path: str) -> list[tuple]:
    conn = sqlite3.connect(path)
    try:
        return conn.execute("SELECT id, value FROM items ORDER BY id").fetchall()
    finally:
        conn.close()


def _scratch_files(scratch_dir) -> list[str]:
    if not os.path.isdir(scratch_dir):
        return []
    return os.listdir(scratch_dir)


def test_backup_filename_format():
    now = datetime(2026, 2, 8, 0, 0, 0, 123456, tzinfo=timezone.utc)
    name = backup_filename("Backup", now)

    assert name.startswith("Backup_2026-02-08_00-00-00-123456_")
    assert name.endswith(".db")


def test_backup_filenames_are_unique_within_one_instant():
    now = datetime(2026, 2, 8, tzinfo=timezone.utc)
    names = {backup_filename("Backup", now) for _ in range(20)}
    assert len(names) > 1


@pytest.mark.asyncio
async def test_snapshot_matches_source(sqlite_file, tmp_path):
    source = sqlite_file(rows=25)
    scratch = tmp_path / "scratch"

    snapshot = await create_snapshot(source, str(scratch), "Backup")

    assert snapshot.integrity_status == "ok"
    assert snapshot.size_bytes == os.path.getsize(snapshot.snapshot_path)
    assert snapshot.filename.startswith("Backup_")
    assert os.path.dirname(snapshot.snapshot_path) == str(scratch)
    assert _rows(snapshot.snapshot_path) == _rows(source)

    snapshot.discard()
    assert not os.path.exists(snapshot.snapshot_path)
    snapshot.discard()


@pytest.mark.asyncio
async def test_snapshot_leaves_source_untouched(sqlite_file, tmp_path):
    source = sqlite_file()
    with open(source, "rb") as f:
        before = f.read()

    async with snapshot_session(source, str(tmp_path / "scratch"), "Backup"):
        pass

    with open(source, "rb") as f:
        assert f.read() == before


@pytest.mark.asyncio
async def test_missing_source(tmp_path):
    with pytest.raises(SourceMissing):
        await create_snapshot(str(tmp_path / "nope.db"), str(tmp_path / "scratch"), "Backup")


@pytest.mark.asyncio
async def test_empty_source(tmp_path):
    source = tmp_path / "empty.db"
    source.write_bytes(b"")

    with pytest.raises(SourceEmpty):
        await create_snapshot(str(source), str(tmp_path / "scratch"), "Backup")

    assert _scratch_files(tmp_path / "scratch") == []


@pytest.mark.asyncio
async def test_garbage_source_fails_integrity(tmp_path):
    source = tmp_path / "garbage.db"
    source.write_bytes(b"this is definitely not a sqlite database" * 200)

    with pytest.raises(IntegrityCheckFailed):
        await create_snapshot(str(source), str(tmp_path / "scratch"), "Backup")

    assert _scratch_files(tmp_path / "scratch") == []


def test_integrity_findings_are_reported(sqlite_file, monkeypatch):
    source = sqlite_file()

    class _Conn:
        def execute(self, sql):
            return self

        def fetchall(self):
            return [("row 3 missing from index idx",), ("page 7: btree error",)]

        def close(self):
            pass

    monkeypatch.setattr(snapshot_module.sqlite3, "connect", lambda *a, **kw: _Conn())

    with pytest.raises(IntegrityCheckFailed) as exc_info:
        check_integrity(source)

    assert exc_info.value.details["findings"][0] == "row 3 missing from index idx"


def test_integrity_check_without_rows_is_tool_error(sqlite_file, monkeypatch):
    source = sqlite_file()

    class _Conn:
        def execute(self, sql):
            return self

        def fetchall(self):
            return []

        def close(self):
            pass

    monkeypatch.setattr(snapshot_module.sqlite3, "connect", lambda *a, **kw: _Conn())

    with pytest.raises(ValidationToolError):
        check_integrity(source)


def test_integrity_check_that_cannot_open_is_tool_error(sqlite_file, monkeypatch):
    source = sqlite_file()

    def _locked(*args, **kwargs):
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(snapshot_module.sqlite3, "connect", _locked)

    with pytest.raises(ValidationToolError):
        check_integrity(source)


@pytest.mark.asyncio
async def test_copy_failure_removes_partial_file(sqlite_file, tmp_path, monkeypatch):
    source = sqlite_file()
    scratch = tmp_path / "scratch"

    def _failing_copy(source_path, target_path):
        with open(target_path, "wb") as f:
            f.write(b"partial")
        raise SnapshotCopyFailed("disk full")

    monkeypatch.setattr(snapshot_module, "copy_database", _failing_copy)

    with pytest.raises(SnapshotCopyFailed):
        await create_snapshot(source, str(scratch), "Backup")

    assert _scratch_files(scratch) == []


@pytest.mark.asyncio
async def test_session_removes_file_when_body_raises(sqlite_file, tmp_path):
    source = sqlite_file()
    seen = {}

    with pytest.raises(RuntimeError):
        async with snapshot_session(source, str(tmp_path / "scratch"), "Backup") as snapshot:
            seen["path"] = snapshot.snapshot_path
            assert os.path.exists(snapshot.snapshot_path)
            raise RuntimeError("upload exploded")

    assert not os.path.exists(seen["path"])


@pytest.mark.asyncio
async def test_snapshot_during_concurrent_writes(tmp_path):
    """A WAL database keeps accepting writes while a snapshot is taken."""
    source = str(tmp_path / "busy.db")
    conn = sqlite3.connect(source)
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, value TEXT)")
    conn.executemany("INSERT INTO items (value) VALUES (?)", [(f"v{i}",) for i in range(500)])
    conn.commit()
    conn.close()

    stop = threading.Event()
    written = []

    def writer():
        w = sqlite3.connect(source, timeout=5)
        i = 0
        while not stop.is_set() and i < 500:
            w.execute("INSERT INTO items (value) VALUES (?)", (f"w{i}",))
            w.commit()
            written.append(i)
            i += 1
        w.close()

    thread = threading.Thread(target=writer)
    thread.start()
    try:
        snapshot = await create_snapshot(source, str(tmp_path / "scratch"), "Backup")
    finally:
        stop.set()
        thread.join()

    try:
        check_integrity(snapshot.snapshot_path)
        count = len(_rows(snapshot.snapshot_path))
        assert 500 <= count <= 500 + len(written)
    finally:
        snapshot.discard()
