"""Consistent snapshots of the live SQLite database.

A snapshot is produced with SQLite's online backup API rather than a file
copy: the application keeps writing to the database (WAL mode) while the
snapshot is taken, and a raw copy could capture a torn state.
"""

import asyncio
import logging
import os
import secrets
import sqlite3
from contextlib import asynccontextmanager, closing
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

from snapsync.config import get_settings
from snapsync.errors import (
    IntegrityCheckFailed,
    SnapshotCopyFailed,
    SourceEmpty,
    SourceMissing,
    ValidationToolError,
)

logger = logging.getLogger(__name__)

INTEGRITY_OK = "ok"

# Driver messages that mean the file itself is damaged, not that the check could not run
_CORRUPTION_MARKERS = ("malformed", "not a database", "disk image", "file is encrypted")


@dataclass
class Snapshot:
    source_path: str
    snapshot_path: str
    filename: str
    size_bytes: int
    integrity_status: str
    created_at: datetime

    def read_bytes(self) -> bytes:
        """Load the whole snapshot file for upload."""
        with open(self.snapshot_path, "rb") as f:
            return f.read()

    def discard(self) -> None:
        """Delete the local snapshot file (no-op if already gone)."""
        try:
            os.remove(self.snapshot_path)
            logger.debug(f"Removed local snapshot {self.snapshot_path}")
        except FileNotFoundError:
            pass


def backup_filename(prefix: str, now: Optional[datetime] = None) -> str:
    """Timestamped snapshot name, e.g. ``Backup_2026-02-08_00-00-00-123456_ab12.db``."""
    now = now or datetime.now(timezone.utc)
    return f"{prefix}_{now.strftime('%Y-%m-%d_%H-%M-%S-%f')}_{secrets.token_hex(2)}.db"


def _readonly_uri(path: str) -> str:
    return f"{Path(path).resolve().as_uri()}?mode=ro"


def _is_corruption(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _CORRUPTION_MARKERS)


def check_integrity(path: str) -> None:
    """Run ``PRAGMA integrity_check`` on a read-only connection.

    Raises IntegrityCheckFailed when SQLite reports anything but ``ok`` and
    ValidationToolError when the check itself could not be carried out.
    """
    try:
        with closing(sqlite3.connect(_readonly_uri(path), uri=True)) as conn:
            rows = conn.execute("PRAGMA integrity_check").fetchall()
    except sqlite3.DatabaseError as e:
        if _is_corruption(e):
            raise IntegrityCheckFailed(
                f"Database integrity check failed: {e}", details={"path": path}
            ) from e
        raise ValidationToolError(
            f"Database integrity check could not run: {e}", details={"path": path}
        ) from e
    except sqlite3.Error as e:
        raise ValidationToolError(
            f"Database integrity check could not run: {e}", details={"path": path}
        ) from e

    if not rows:
        raise ValidationToolError(
            "Database integrity check returned no results", details={"path": path}
        )

    value = rows[0][0]
    if value != INTEGRITY_OK:
        findings = [row[0] for row in rows[:3]]
        logger.error(f"Integrity check failed for {path}: {findings}")
        raise IntegrityCheckFailed(
            f"Database integrity check failed: {findings}",
            details={"path": path, "findings": findings},
        )


def _verify_source(source_path: str) -> None:
    if not os.path.isfile(source_path):
        raise SourceMissing(f"Database file not found: {source_path}")
    if os.path.getsize(source_path) == 0:
        raise SourceEmpty(f"Database file is empty: {source_path}")


def copy_database(source_path: str, target_path: str) -> None:
    """Online-backup ``source_path`` into ``target_path``.

    Both handles are closed before any error propagates.
    """
    source = None
    target = None
    try:
        source = sqlite3.connect(_readonly_uri(source_path), uri=True)
        target = sqlite3.connect(target_path)
        source.backup(target)
    except sqlite3.Error as e:
        raise SnapshotCopyFailed(f"SQLite backup failed: {e}") from e
    finally:
        for conn in (source, target):
            if conn is not None:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing snapshot connection: {e}")


def _create_snapshot_sync(source_path: str, scratch_dir: str, prefix: str) -> Snapshot:
    _verify_source(source_path)
    check_integrity(source_path)

    os.makedirs(scratch_dir, exist_ok=True)
    now = datetime.now(timezone.utc)
    filename = backup_filename(prefix, now)
    snapshot_path = os.path.join(scratch_dir, filename)

    try:
        copy_database(source_path, snapshot_path)
        try:
            check_integrity(snapshot_path)
            integrity_status = INTEGRITY_OK
        except (IntegrityCheckFailed, ValidationToolError) as e:
            raise SnapshotCopyFailed(f"Snapshot copy failed verification: {e.message}") from e
        size_bytes = os.path.getsize(snapshot_path)
    except BaseException:
        try:
            os.remove(snapshot_path)
        except FileNotFoundError:
            pass
        raise

    logger.info(f"Snapshot created: {filename} ({size_bytes} bytes)")
    return Snapshot(
        source_path=source_path,
        snapshot_path=snapshot_path,
        filename=filename,
        size_bytes=size_bytes,
        integrity_status=integrity_status,
        created_at=now,
    )


async def create_snapshot(
    source_path: Optional[str] = None,
    scratch_dir: Optional[str] = None,
    prefix: Optional[str] = None,
) -> Snapshot:
    """Validate the live database and copy it into a local snapshot file.

    The caller owns the returned file; use :func:`snapshot_session` to have
    it removed automatically.
    """
    settings = get_settings()
    return await asyncio.to_thread(
        _create_snapshot_sync,
        source_path or settings.database_path,
        scratch_dir or settings.scratch_dir,
        prefix or settings.backup_filename_prefix,
    )


@asynccontextmanager
async def snapshot_session(
    source_path: Optional[str] = None,
    scratch_dir: Optional[str] = None,
    prefix: Optional[str] = None,
) -> AsyncIterator[Snapshot]:
    """Create a snapshot and delete its file on every exit path."""
    snapshot = await create_snapshot(source_path, scratch_dir, prefix)
    try:
        yield snapshot
    finally:
        snapshot.discard()
