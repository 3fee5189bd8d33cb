"""Backup, restore and scheduler status API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from snapsync.api.errors import to_http_exception
from snapsync.auth.session import Operator, require_owner
from snapsync.errors import BackupSubsystemError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/backup", tags=["backup"])


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------

class RemoteBackup(BaseModel):
    remote_id: str
    name: str
    created_time: Optional[str] = None
    size_bytes: Optional[int] = None
    parent_folder_id: Optional[str] = None


class SchedulerStatus(BaseModel):
    running: bool
    configured: bool
    schedule: str
    max_backups: int
    next_run: Optional[str] = None


class RestoreRequest(BaseModel):
    remote_id: str


class RestoreResponse(BaseModel):
    remote_id: str
    tables_restored: list[str]
    safety_copy_path: Optional[str] = None


class BackupRun(BaseModel):
    id: int
    trigger: str
    status: str
    filename: Optional[str] = None
    size_bytes: Optional[int] = None
    remote_id: Optional[str] = None
    deleted_count: Optional[int] = 0
    error_kind: Optional[str] = None
    details: Optional[str] = None
    created_at: Optional[str] = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/status", response_model=SchedulerStatus)
async def backup_status(owner: Operator = Depends(require_owner)):
    """Scheduler and authorization state."""
    from snapsync.jobs.scheduler import get_scheduler_status
    return await get_scheduler_status()


@router.post("/run")
async def run_backup_endpoint(owner: Operator = Depends(require_owner)):
    """Run a backup immediately."""
    from snapsync.jobs.backup_job import trigger_manual_backup
    try:
        result = await trigger_manual_backup()
    except BackupSubsystemError as e:
        raise to_http_exception(e)
    logger.info(f"Manual backup by {owner.email}: {result.filename}")
    return result.to_dict()


@router.get("", response_model=list[RemoteBackup])
async def list_backups_endpoint(owner: Operator = Depends(require_owner)):
    """List the backups stored in Google Drive, newest first."""
    from snapsync.jobs.backup_job import list_remote_backups
    try:
        entries = await list_remote_backups()
    except BackupSubsystemError as e:
        raise to_http_exception(e)
    return [entry.to_dict() for entry in entries]


@router.post("/restore", response_model=RestoreResponse)
async def restore_backup_endpoint(
    request: RestoreRequest,
    owner: Operator = Depends(require_owner),
):
    """Replace the live database contents with a stored backup.

    Settings, the alert queue and the backup run log are kept. The database
    as it was before the restore is saved next to it as ``pre-restore.db``.
    """
    from snapsync.jobs.backup_job import run_restore
    logger.warning(f"Restore of backup {request.remote_id} requested by {owner.email}")
    try:
        result = await run_restore(request.remote_id)
    except BackupSubsystemError as e:
        raise to_http_exception(e)
    return RestoreResponse(
        remote_id=result.remote_id,
        tables_restored=result.tables_restored,
        safety_copy_path=result.safety_copy_path,
    )


@router.delete("/authorization")
async def reset_authorization(owner: Operator = Depends(require_owner)):
    """Forget the stored Drive authorization."""
    from snapsync.auth.credentials import get_credential_store
    await get_credential_store().clear()
    logger.warning(f"Backup authorization reset by {owner.email}")
    return {"status": "ok"}


@router.get("/runs", response_model=list[BackupRun])
async def list_runs(
    limit: int = Query(20, ge=1, le=200),
    owner: Operator = Depends(require_owner),
):
    """Recent backup cycles, newest first."""
    from snapsync.database import list_backup_runs
    return await list_backup_runs(limit)
