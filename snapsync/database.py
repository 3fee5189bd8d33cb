"""Database connection and schema management."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

import aiosqlite

from snapsync.config import get_settings

logger = logging.getLogger(__name__)

# Global database connection
_db_connection: Optional[aiosqlite.Connection] = None
_db_lock = asyncio.Lock()

# Tables owned by this subsystem; a restore never overwrites them
PRESERVED_TABLES = ("settings", "backup_runs", "alert_queue", "sqlite_sequence")


SCHEMA = """
-- System settings (the backup credential record lives here)
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value_encrypted BLOB,
    value_plain TEXT,
    is_sensitive BOOLEAN DEFAULT FALSE,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Operational log of backup cycles
CREATE TABLE IF NOT EXISTS backup_runs (
    id INTEGER PRIMARY KEY,
    trigger TEXT NOT NULL,
    status TEXT NOT NULL,
    filename TEXT,
    size_bytes INTEGER,
    remote_id TEXT,
    deleted_count INTEGER DEFAULT 0,
    error_kind TEXT,
    details TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_backup_runs_created ON backup_runs(created_at);

-- Email alert queue
CREATE TABLE IF NOT EXISTS alert_queue (
    id INTEGER PRIMARY KEY,
    alert_type TEXT NOT NULL,
    recipient_email TEXT NOT NULL,
    subject TEXT NOT NULL,
    body TEXT NOT NULL,
    attempts INTEGER DEFAULT 0,
    last_attempt TIMESTAMP,
    sent_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


async def get_database() -> aiosqlite.Connection:
    """Get the database connection, creating it if necessary."""
    global _db_connection

    async with _db_lock:
        if _db_connection is None:
            settings = get_settings()
            _db_connection = await aiosqlite.connect(settings.database_path)
            _db_connection.row_factory = aiosqlite.Row
            await _db_connection.execute("PRAGMA foreign_keys = ON")
            await _db_connection.execute("PRAGMA journal_mode = WAL")
            await init_schema(_db_connection)
        return _db_connection


async def init_schema(db: aiosqlite.Connection) -> None:
    """Initialize database schema."""
    await db.executescript(SCHEMA)
    await db.commit()
    logger.info("Database schema initialized")


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection

    async with _db_lock:
        if _db_connection is not None:
            await _db_connection.close()
            _db_connection = None
            logger.info("Database connection closed")


async def get_setting(key: str) -> Optional[dict]:
    """Get a setting by key."""
    db = await get_database()
    cursor = await db.execute(
        "SELECT * FROM settings WHERE key = ?", (key,)
    )
    row = await cursor.fetchone()
    if row:
        return dict(row)
    return None


async def set_setting(
    key: str,
    value: str,
    is_sensitive: bool = False,
    encrypt_func=None
) -> None:
    """Set a setting value.

    The row is replaced with a single UPSERT, so readers see either the old or
    the new value, never a mix of both.
    """
    db = await get_database()
    now = datetime.utcnow().isoformat()

    if is_sensitive and encrypt_func:
        value_encrypted = encrypt_func(value)
        await db.execute(
            """INSERT INTO settings (key, value_encrypted, value_plain, is_sensitive, updated_at)
               VALUES (?, ?, NULL, TRUE, ?)
               ON CONFLICT(key) DO UPDATE SET
               value_encrypted = excluded.value_encrypted,
               value_plain = NULL,
               is_sensitive = TRUE,
               updated_at = excluded.updated_at""",
            (key, value_encrypted, now)
        )
    else:
        await db.execute(
            """INSERT INTO settings (key, value_encrypted, value_plain, is_sensitive, updated_at)
               VALUES (?, NULL, ?, FALSE, ?)
               ON CONFLICT(key) DO UPDATE SET
               value_encrypted = NULL,
               value_plain = excluded.value_plain,
               is_sensitive = FALSE,
               updated_at = excluded.updated_at""",
            (key, value, now)
        )
    await db.commit()


async def delete_setting(key: str) -> bool:
    """Delete a setting. Returns True if a row was removed."""
    db = await get_database()
    cursor = await db.execute("DELETE FROM settings WHERE key = ?", (key,))
    await db.commit()
    return cursor.rowcount > 0


async def record_backup_run(
    trigger: str,
    status: str,
    filename: Optional[str] = None,
    size_bytes: Optional[int] = None,
    remote_id: Optional[str] = None,
    deleted_count: int = 0,
    error_kind: Optional[str] = None,
    details: Optional[str] = None,
) -> int:
    """Append one entry to the backup run log."""
    db = await get_database()
    cursor = await db.execute(
        """INSERT INTO backup_runs
           (trigger, status, filename, size_bytes, remote_id, deleted_count,
            error_kind, details, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
           RETURNING id""",
        (
            trigger, status, filename, size_bytes, remote_id, deleted_count,
            error_kind, details, datetime.utcnow().isoformat(),
        )
    )
    row = await cursor.fetchone()
    await db.commit()
    return row["id"]


async def list_backup_runs(limit: int = 20) -> list[dict]:
    """Return the most recent backup runs, newest first."""
    db = await get_database()
    cursor = await db.execute(
        "SELECT * FROM backup_runs ORDER BY created_at DESC, id DESC LIMIT ?",
        (limit,)
    )
    rows = await cursor.fetchall()
    return [dict(row) for row in rows]


async def prune_backup_runs(retention_days: int) -> int:
    """Delete backup run log entries older than the retention window."""
    db = await get_database()
    cutoff = (datetime.utcnow() - timedelta(days=retention_days)).isoformat()
    cursor = await db.execute(
        "DELETE FROM backup_runs WHERE created_at < ? RETURNING id",
        (cutoff,)
    )
    deleted = await cursor.fetchall()
    await db.commit()
    return len(deleted)
