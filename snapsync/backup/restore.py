"""Restore the live database from an uploaded snapshot.

Tables owned by the backup subsystem (settings, run log, alert queue) are
kept as they are, so a restore never rolls back the Drive authorization.
"""

import asyncio
import logging
import os
import secrets
import sqlite3
from dataclasses import dataclass, field
from typing import Optional

from snapsync.backup.drive import DriveBackupStore
from snapsync.backup.snapshot import copy_database, check_integrity
from snapsync.config import get_settings
from snapsync.database import PRESERVED_TABLES
from snapsync.errors import (
    IntegrityCheckFailed,
    RemoteStoreError,
    RestoreFailed,
    SnapshotCopyFailed,
    ValidationToolError,
)

logger = logging.getLogger(__name__)

SAFETY_COPY_NAME = "pre-restore.db"


@dataclass
class RestoreResult:
    remote_id: str
    tables_restored: list[str] = field(default_factory=list)
    safety_copy_path: Optional[str] = None


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def restore_database(current_path: str, backup_path: str, preserved: tuple[str, ...] = PRESERVED_TABLES) -> list[str]:
    """Replace every non-preserved table of ``current_path`` with the backup's.

    Runs in one transaction; on failure the current database is unchanged.
    Returns the names of the restored tables.
    """
    placeholders = ",".join("?" * len(preserved))
    table_filter = f"type='table' AND name NOT IN ({placeholders}) AND name NOT LIKE 'sqlite_%'"

    conn = sqlite3.connect(current_path, isolation_level=None)
    try:
        conn.execute("PRAGMA foreign_keys = OFF")
        conn.execute("ATTACH DATABASE ? AS backup_db", (backup_path,))

        current_tables = [
            row[0] for row in conn.execute(
                f"SELECT name FROM main.sqlite_master WHERE {table_filter}", preserved
            )
        ]
        backup_tables = conn.execute(
            f"SELECT name, sql FROM backup_db.sqlite_master WHERE {table_filter}", preserved
        ).fetchall()
        has_sequence = conn.execute(
            "SELECT 1 FROM backup_db.sqlite_master WHERE type='table' AND name='sqlite_sequence'"
        ).fetchone() is not None
        restored = [name for name, _ in backup_tables]
        sequences = []
        if has_sequence and restored:
            sequences = conn.execute(
                f"SELECT name, seq FROM backup_db.sqlite_sequence "
                f"WHERE name IN ({','.join('?' * len(restored))})",
                restored
            ).fetchall()
        backup_indexes = conn.execute(
            f"""SELECT sql FROM backup_db.sqlite_master
                WHERE type='index' AND sql IS NOT NULL
                AND tbl_name NOT IN ({placeholders})""",
            preserved
        ).fetchall()

        conn.execute("BEGIN IMMEDIATE")
        try:
            for name in current_tables:
                conn.execute(f"DROP TABLE IF EXISTS main.{_quote(name)}")

            for name, sql in backup_tables:
                conn.execute(sql)
                columns = [
                    row[1] for row in conn.execute(f"PRAGMA backup_db.table_info({_quote(name)})")
                ]
                column_list = ", ".join(_quote(c) for c in columns)
                conn.execute(
                    f"INSERT INTO main.{_quote(name)} ({column_list}) "
                    f"SELECT {column_list} FROM backup_db.{_quote(name)}"
                )

            for (sql,) in backup_indexes:
                conn.execute(sql)

            # AUTOINCREMENT counters follow the backup, so ids deleted before
            # the snapshot are not handed out again
            for name, seq in sequences:
                updated = conn.execute(
                    "UPDATE main.sqlite_sequence SET seq = ? WHERE name = ?", (seq, name)
                ).rowcount
                if not updated:
                    conn.execute(
                        "INSERT INTO main.sqlite_sequence (name, seq) VALUES (?, ?)", (name, seq)
                    )

            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

        conn.execute("DETACH DATABASE backup_db")
    finally:
        conn.close()

    return restored


def _restore_from_bytes(data: bytes, remote_id: str, database_path: str, scratch_dir: str) -> RestoreResult:
    if not data:
        raise RestoreFailed(f"Downloaded backup {remote_id} is empty")

    os.makedirs(scratch_dir, exist_ok=True)
    download_path = os.path.join(scratch_dir, f"restore_{secrets.token_hex(4)}.db")
    try:
        with open(download_path, "wb") as f:
            f.write(data)

        try:
            check_integrity(download_path)
        except (IntegrityCheckFailed, ValidationToolError) as e:
            raise RestoreFailed(f"Backup {remote_id} failed verification: {e.message}") from e

        safety_path = os.path.join(os.path.dirname(os.path.abspath(database_path)), SAFETY_COPY_NAME)
        # The previous safety copy is only replaced once the new one is complete
        safety_tmp = f"{safety_path}.{secrets.token_hex(4)}.tmp"
        try:
            copy_database(database_path, safety_tmp)
        except SnapshotCopyFailed as e:
            if os.path.exists(safety_tmp):
                os.remove(safety_tmp)
            raise RestoreFailed(f"Could not save the current database before restoring: {e.message}") from e
        os.replace(safety_tmp, safety_path)

        try:
            tables = restore_database(database_path, download_path)
        except sqlite3.Error as e:
            raise RestoreFailed(f"Restoring tables failed: {e}") from e
    finally:
        try:
            os.remove(download_path)
        except FileNotFoundError:
            pass

    return RestoreResult(remote_id=remote_id, tables_restored=tables, safety_copy_path=safety_path)


async def restore_backup(
    store: DriveBackupStore,
    remote_id: str,
    database_path: Optional[str] = None,
    scratch_dir: Optional[str] = None,
) -> RestoreResult:
    """Download ``remote_id`` and restore the live database from it."""
    settings = get_settings()
    database_path = database_path or settings.database_path
    scratch_dir = scratch_dir or settings.scratch_dir

    try:
        data = await asyncio.to_thread(store.download_backup, remote_id)
    except RemoteStoreError as e:
        raise RestoreFailed(f"Could not download backup {remote_id}: {e.message}") from e

    result = await asyncio.to_thread(_restore_from_bytes, data, remote_id, database_path, scratch_dir)
    logger.warning(
        f"Database restored from backup {remote_id} "
        f"({len(result.tables_restored)} tables, safety copy at {result.safety_copy_path})"
    )
    return result
