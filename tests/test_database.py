"""Tests for database module."""

from datetime import datetime, timedelta

import pytest

from snapsync.database import (
    delete_setting,
    get_database,
    get_setting,
    list_backup_runs,
    prune_backup_runs,
    record_backup_run,
    set_setting,
)


@pytest.mark.asyncio
async def test_database_connection(test_db):
    """Test database connection."""
    db = await get_database()
    assert db is not None

    cursor = await db.execute("SELECT 1")
    result = await cursor.fetchone()
    assert result[0] == 1


@pytest.mark.asyncio
async def test_database_uses_wal(test_db):
    cursor = await test_db.execute("PRAGMA journal_mode")
    row = await cursor.fetchone()
    assert row[0].lower() == "wal"


@pytest.mark.asyncio
async def test_schema_tables_exist(test_db):
    """Test that all required tables exist."""
    for table in ["settings", "backup_runs", "alert_queue"]:
        cursor = await test_db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
            (table,)
        )
        assert await cursor.fetchone() is not None, f"Table {table} does not exist"


@pytest.mark.asyncio
async def test_set_setting_plain_then_sensitive(test_db):
    await set_setting("smtp_host", "smtp.example.com")
    row = await get_setting("smtp_host")
    assert row["value_plain"] == "smtp.example.com"
    assert row["value_encrypted"] is None

    await set_setting("smtp_host", "secret", is_sensitive=True, encrypt_func=lambda v: b"sealed")
    row = await get_setting("smtp_host")
    assert row["value_plain"] is None
    assert row["value_encrypted"] == b"sealed"
    assert row["is_sensitive"]


@pytest.mark.asyncio
async def test_delete_setting(test_db):
    await set_setting("alert_emails", "ops@example.com")

    assert await delete_setting("alert_emails") is True
    assert await delete_setting("alert_emails") is False
    assert await get_setting("alert_emails") is None


@pytest.mark.asyncio
async def test_backup_runs_newest_first(test_db):
    first = await record_backup_run("scheduled", "success", filename="a.db", size_bytes=10)
    second = await record_backup_run("manual", "failed", error_kind="UPLOAD_FAILED", details="boom")

    runs = await list_backup_runs()

    assert [r["id"] for r in runs] == [second, first]
    assert runs[0]["error_kind"] == "UPLOAD_FAILED"
    assert runs[1]["filename"] == "a.db"


@pytest.mark.asyncio
async def test_prune_backup_runs(test_db):
    await record_backup_run("scheduled", "success")
    old = (datetime.utcnow() - timedelta(days=120)).isoformat()
    await test_db.execute(
        "INSERT INTO backup_runs (trigger, status, created_at) VALUES ('scheduled', 'success', ?)",
        (old,)
    )
    await test_db.commit()

    assert await prune_backup_runs(90) == 1
    assert len(await list_backup_runs()) == 1
