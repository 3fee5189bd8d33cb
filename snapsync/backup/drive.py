"""Google Drive storage for uploaded snapshots."""

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from snapsync.auth.credentials import Active, CredentialRecord, describe
from snapsync.auth.google import build_drive_credentials
from snapsync.config import get_settings
from snapsync.errors import NotAuthorized, RemoteStoreError, UploadFailed

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
SNAPSHOT_MIME_TYPE = "application/x-sqlite3"

_ENTRY_FIELDS = "id, name, size, createdTime, parents"

# Errors the Drive client raises for transport and authorization problems
_DRIVE_ERRORS = (HttpError, GoogleAuthError, OSError)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class RemoteBackupEntry:
    remote_id: str
    name: str
    created_time: Optional[datetime]
    size_bytes: Optional[int]
    parent_folder_id: Optional[str]

    @classmethod
    def from_drive(cls, item: dict, folder_id: Optional[str] = None) -> "RemoteBackupEntry":
        created = item.get("createdTime")
        size = item.get("size")
        parents = item.get("parents") or []
        return cls(
            remote_id=item["id"],
            name=item.get("name", ""),
            created_time=_parse_drive_time(created) if created else None,
            size_bytes=int(size) if size is not None else None,
            parent_folder_id=parents[0] if parents else folder_id,
        )

    def to_dict(self) -> dict:
        return {
            "remote_id": self.remote_id,
            "name": self.name,
            "created_time": self.created_time.isoformat() if self.created_time else None,
            "size_bytes": self.size_bytes,
            "parent_folder_id": self.parent_folder_id,
        }


@dataclass
class RetentionResult:
    kept: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    error: Optional[str] = None


def _parse_drive_time(value: str) -> datetime:
    # Drive returns RFC 3339 with a trailing Z
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveBackupStore:
    """Backup folder operations on a Drive v3 service."""

    def __init__(self, service, folder_name: Optional[str] = None, max_backups: Optional[int] = None):
        settings = get_settings()
        self.service = service
        self.folder_name = folder_name or settings.backup_folder_name
        self.max_backups = max_backups if max_backups is not None else settings.max_backups

    @classmethod
    def from_credential(cls, record: CredentialRecord, **kwargs) -> "DriveBackupStore":
        """Build an authenticated store; only an Active credential qualifies."""
        if not isinstance(record, Active):
            raise NotAuthorized(
                f"Drive client requires an active credential (stored: {describe(record)})"
            )
        credentials = build_drive_credentials(record)
        service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        return cls(service, **kwargs)

    def resolve_backup_folder(self) -> str:
        """Return the id of the backup folder, creating it if it does not exist.

        Two processes resolving at the same moment can both create a folder;
        in-process callers are serialized by the backup job lock.
        """
        query = (
            f"name='{_escape_query(self.folder_name)}' "
            f"and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        )
        try:
            response = self.service.files().list(
                q=query,
                fields="files(id, name)",
                spaces="drive",
            ).execute()
            folders = response.get("files", [])
            if folders:
                return folders[0]["id"]

            folder = self.service.files().create(
                body={"name": self.folder_name, "mimeType": FOLDER_MIME_TYPE},
                fields="id",
            ).execute()
        except _DRIVE_ERRORS as e:
            raise RemoteStoreError(f"Could not resolve backup folder: {e}") from e

        logger.info(f"Created Drive backup folder '{self.folder_name}' ({folder['id']})")
        return folder["id"]

    def upload(self, folder_id: str, filename: str, data: bytes) -> RemoteBackupEntry:
        """Upload a snapshot into the backup folder as a single request."""
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=SNAPSHOT_MIME_TYPE, resumable=False)
        try:
            item = self.service.files().create(
                body={
                    "name": filename,
                    "mimeType": SNAPSHOT_MIME_TYPE,
                    "parents": [folder_id],
                },
                media_body=media,
                fields=_ENTRY_FIELDS,
            ).execute()
        except _DRIVE_ERRORS as e:
            logger.error(f"Upload of {filename} failed: {e}")
            raise UploadFailed(f"Upload of {filename} failed: {e}", details={"filename": filename}) from e

        entry = RemoteBackupEntry.from_drive(item, folder_id)
        logger.info(f"Uploaded {filename} to Drive ({entry.remote_id})")
        return entry

    def list_backups(self, folder_id: str) -> list[RemoteBackupEntry]:
        """List every backup in the folder, newest first."""
        entries: list[RemoteBackupEntry] = []
        page_token = None
        try:
            while True:
                params = {
                    "q": f"'{_escape_query(folder_id)}' in parents and trashed=false",
                    "fields": f"nextPageToken, files({_ENTRY_FIELDS})",
                    "orderBy": "createdTime desc",
                    "pageSize": 100,
                }
                if page_token:
                    params["pageToken"] = page_token

                response = self.service.files().list(**params).execute()
                entries.extend(
                    RemoteBackupEntry.from_drive(item, folder_id)
                    for item in response.get("files", [])
                )

                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        except _DRIVE_ERRORS as e:
            raise RemoteStoreError(f"Could not list backups: {e}") from e

        entries.sort(key=lambda e: e.created_time or _EPOCH, reverse=True)
        return entries

    def delete_backup(self, remote_id: str) -> None:
        try:
            self.service.files().delete(fileId=remote_id).execute()
        except _DRIVE_ERRORS as e:
            raise RemoteStoreError(f"Could not delete backup {remote_id}: {e}") from e
        logger.info(f"Deleted Drive backup {remote_id}")

    def download_backup(self, remote_id: str) -> bytes:
        """Download a backup's content."""
        try:
            return self.service.files().get_media(fileId=remote_id).execute()
        except _DRIVE_ERRORS as e:
            raise RemoteStoreError(f"Could not download backup {remote_id}: {e}") from e

    def enforce_retention(self, folder_id: str) -> RetentionResult:
        """Delete everything beyond the newest ``max_backups`` entries.

        Never raises: a stored backup stays a successful backup even when old
        ones cannot be cleaned up.
        """
        result = RetentionResult()
        try:
            backups = self.list_backups(folder_id)
        except RemoteStoreError as e:
            logger.error(f"Backup retention skipped: {e}")
            result.error = str(e)
            return result

        result.kept = [b.remote_id for b in backups[: self.max_backups]]
        for backup in backups[self.max_backups:]:
            try:
                self.delete_backup(backup.remote_id)
                result.deleted.append(backup.remote_id)
            except RemoteStoreError as e:
                logger.warning(f"Failed to delete old backup '{backup.name}': {e}")
                result.failed.append(backup.remote_id)

        if result.deleted:
            logger.info(f"Retention: removed {len(result.deleted)} old backup(s)")
        return result
