"""Backup cycle: snapshot, upload, retention, cleanup."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from snapsync.auth.credentials import Active, CredentialRecord, get_credential_store
from snapsync.backup.drive import DriveBackupStore, RemoteBackupEntry, RetentionResult
from snapsync.backup.restore import RestoreResult, restore_backup
from snapsync.backup.snapshot import snapshot_session
from snapsync.database import record_backup_run
from snapsync.errors import BackupSubsystemError, NotAuthorized

logger = logging.getLogger(__name__)

TRIGGER_MANUAL = "manual"
TRIGGER_SCHEDULED = "scheduled"

StoreFactory = Callable[[CredentialRecord], DriveBackupStore]

# One backup or restore at a time per process
_cycle_lock = asyncio.Lock()


@dataclass
class BackupResult:
    filename: str
    size_bytes: int
    entry: RemoteBackupEntry
    retention: RetentionResult = field(default_factory=RetentionResult)

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "size_bytes": self.size_bytes,
            "remote": self.entry.to_dict(),
            "retention": {
                "kept": len(self.retention.kept),
                "deleted": len(self.retention.deleted),
                "failed": len(self.retention.failed),
                "error": self.retention.error,
            },
        }


def _default_store_factory(record: CredentialRecord) -> DriveBackupStore:
    return DriveBackupStore.from_credential(record)


async def _enforce_retention(store: DriveBackupStore, folder_id: str) -> RetentionResult:
    try:
        return await asyncio.to_thread(store.enforce_retention, folder_id)
    except Exception as e:
        logger.error(f"Retention policy failed: {e}")
        return RetentionResult(error=str(e))


async def _log_run(trigger: str, status: str, **fields) -> None:
    """Write the run log entry without masking the outcome of the cycle."""
    try:
        await record_backup_run(trigger, status, **fields)
    except Exception as e:
        logger.error(f"Could not record {status} {trigger} backup run: {e}")


async def run_backup_cycle(
    trigger: str = TRIGGER_MANUAL,
    store_factory: Optional[StoreFactory] = None,
) -> BackupResult:
    """Run one full backup cycle and return what was stored.

    The local snapshot file is deleted whatever the outcome. Every run is
    written to the backup run log.
    """
    store_factory = store_factory or _default_store_factory

    async with _cycle_lock:
        snapshot = None
        try:
            async with snapshot_session() as snapshot:
                data = await asyncio.to_thread(snapshot.read_bytes)

                record = await get_credential_store().get()
                store = store_factory(record)

                folder_id = await asyncio.to_thread(store.resolve_backup_folder)
                entry = await asyncio.to_thread(store.upload, folder_id, snapshot.filename, data)
                retention = await _enforce_retention(store, folder_id)
        except BackupSubsystemError as e:
            await _log_run(
                trigger,
                "failed",
                filename=snapshot.filename if snapshot else None,
                size_bytes=snapshot.size_bytes if snapshot else None,
                error_kind=e.code,
                details=e.message,
            )
            raise
        except Exception as e:
            await _log_run(
                trigger,
                "failed",
                filename=snapshot.filename if snapshot else None,
                error_kind="UNEXPECTED",
                details=str(e),
            )
            raise

    await _log_run(
        trigger,
        "success",
        filename=snapshot.filename,
        size_bytes=snapshot.size_bytes,
        remote_id=entry.remote_id,
        deleted_count=len(retention.deleted),
        details=retention.error,
    )
    logger.info(
        f"Backup complete: {snapshot.filename} ({snapshot.size_bytes} bytes, "
        f"{len(retention.deleted)} old backup(s) removed)"
    )
    return BackupResult(
        filename=snapshot.filename,
        size_bytes=snapshot.size_bytes,
        entry=entry,
        retention=retention,
    )


async def trigger_manual_backup(store_factory: Optional[StoreFactory] = None) -> BackupResult:
    """Operator-initiated backup; errors are raised to the caller."""
    logger.info("Manual backup starting")
    return await run_backup_cycle(TRIGGER_MANUAL, store_factory)


async def _report_failure(error: Exception) -> None:
    from snapsync.alerts.email import alert_type_for, queue_alert

    code = getattr(error, "code", None)
    try:
        await queue_alert(alert_type_for(code), f"Scheduled backup failed: {error}")
    except Exception as e:
        logger.error(f"Failed to queue backup alert: {e}")


async def run_scheduled_backup(store_factory: Optional[StoreFactory] = None) -> Optional[BackupResult]:
    """Unattended daily backup.

    Returns quietly when Drive is not authorized yet. Any failure is logged
    and alerted, never raised: the scheduler must keep firing.
    """
    try:
        record = await get_credential_store().get()
        if not isinstance(record, Active):
            logger.info("Scheduled backup skipped: Google Drive authorization not configured")
            return None

        logger.info("Scheduled backup starting")
        return await run_backup_cycle(TRIGGER_SCHEDULED, store_factory)
    except NotAuthorized:
        logger.info("Scheduled backup skipped: Google Drive authorization not configured")
        return None
    except Exception as e:
        logger.error(f"Scheduled backup failed: {e}")
        await _report_failure(e)
        return None


async def list_remote_backups(store_factory: Optional[StoreFactory] = None) -> list[RemoteBackupEntry]:
    """List the backups stored in the Drive folder, newest first."""
    store_factory = store_factory or _default_store_factory
    store = store_factory(await get_credential_store().get())
    folder_id = await asyncio.to_thread(store.resolve_backup_folder)
    return await asyncio.to_thread(store.list_backups, folder_id)


async def run_restore(remote_id: str, store_factory: Optional[StoreFactory] = None) -> RestoreResult:
    """Restore the live database from one stored backup."""
    store_factory = store_factory or _default_store_factory
    async with _cycle_lock:
        store = store_factory(await get_credential_store().get())
        return await restore_backup(store, remote_id)
