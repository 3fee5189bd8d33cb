"""Pytest configuration and fixtures."""

import asyncio
import itertools
import os
import re
import sqlite3
from datetime import datetime, timedelta, timezone

import httplib2
import pytest
import pytest_asyncio
from googleapiclient.errors import HttpError

# Set test environment variables before imports
os.environ["DATABASE_PATH"] = "/tmp/snapsync-test.db"
os.environ["ENCRYPTION_KEY_FILE"] = "/tmp/test_encryption.key"
os.environ["PUBLIC_URL"] = "http://localhost:3000"


@pytest.fixture
def settings_env(tmp_path, monkeypatch):
    """Point the settings at a per-test database and scratch directory."""
    from snapsync.config import get_settings

    database_path = tmp_path / "live.db"
    scratch_dir = tmp_path / "scratch"
    monkeypatch.setenv("DATABASE_PATH", str(database_path))
    monkeypatch.setenv("SCRATCH_DIR", str(scratch_dir))
    get_settings.cache_clear()

    yield get_settings()

    get_settings.cache_clear()


@pytest.fixture(scope="function")
def test_encryption_key(tmp_path, monkeypatch):
    """Create a temporary encryption key and install the encryption manager."""
    from snapsync.encryption import (
        generate_encryption_key,
        init_encryption_manager,
        reset_encryption_manager,
    )

    key = generate_encryption_key()
    key_path = tmp_path / "encryption.key"
    key_path.write_bytes(key)
    monkeypatch.setenv("ENCRYPTION_KEY_FILE", str(key_path))

    init_encryption_manager(key)
    yield key
    reset_encryption_manager()


@pytest_asyncio.fixture
async def test_db(settings_env, test_encryption_key, monkeypatch):
    """Create a test database on disk (snapshots need a real file)."""
    import snapsync.database as db_module
    import snapsync.jobs.backup_job as backup_job
    from snapsync.database import close_database, get_database

    # Reset the global connection
    db_module._db_connection = None
    monkeypatch.setattr(backup_job, "_cycle_lock", asyncio.Lock())

    db = await get_database()

    yield db

    await close_database()
    db_module._db_connection = None


@pytest_asyncio.fixture
async def app_tables(test_db):
    """Add some application tables with rows, as the host application would."""
    await test_db.executescript(
        """
        CREATE TABLE IF NOT EXISTS notes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_notes_title ON notes(title);
        INSERT INTO notes (title) VALUES ('first'), ('second');
        """
    )
    await test_db.commit()
    return test_db


@pytest.fixture
def sqlite_file(tmp_path):
    """Factory for standalone SQLite files with a small table."""
    def _make(name: str = "source.db", rows: int = 3) -> str:
        path = str(tmp_path / name)
        conn = sqlite3.connect(path)
        conn.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, value TEXT)")
        conn.executemany(
            "INSERT INTO items (value) VALUES (?)",
            [(f"value-{i}",) for i in range(rows)],
        )
        conn.commit()
        conn.close()
        return path

    return _make


def http_error(status: int = 500, message: str = "backend error") -> HttpError:
    resp = httplib2.Response({"status": str(status)})
    resp.reason = message
    content = ('{"error": {"code": %d, "message": "%s"}}' % (status, message)).encode()
    return HttpError(resp, content)


# ---------------------------------------------------------------------------
# Fake Drive v3 service
# ---------------------------------------------------------------------------


class _Request:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class _FakeFiles:
    def __init__(self, service: "FakeDriveService"):
        self.service = service

    def list(self, q="", fields=None, spaces=None, orderBy=None, pageSize=None, pageToken=None):
        return _Request(lambda: self.service._list(q, orderBy, pageSize, pageToken))

    def create(self, body=None, media_body=None, fields=None):
        return _Request(lambda: self.service._create(body or {}, media_body))

    def delete(self, fileId=None):
        return _Request(lambda: self.service._delete(fileId))

    def get_media(self, fileId=None):
        return _Request(lambda: self.service._get_media(fileId))


class FakeDriveService:
    """In-memory stand-in for ``build("drive", "v3")``.

    Understands the two query shapes the store issues: folder lookup by name
    and listing children of a folder.
    """

    FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

    def __init__(self, page_size_cap: int = 100):
        self.items: dict[str, dict] = {}
        self.content: dict[str, bytes] = {}
        self.page_size_cap = page_size_cap
        self.fail_list = None
        self.fail_upload = None
        self.fail_delete: dict[str, Exception] = {}
        self.calls: list[str] = []
        self._ids = itertools.count(1)
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def files(self):
        return _FakeFiles(self)

    # helpers used by tests

    def add_folder(self, name: str) -> str:
        return self._create({"name": name, "mimeType": self.FOLDER_MIME_TYPE}, None)["id"]

    def add_file(self, folder_id: str, name: str, data: bytes = b"data") -> str:
        file_id = self._create({"name": name, "parents": [folder_id]}, None)["id"]
        self.content[file_id] = data
        self.items[file_id]["size"] = str(len(data))
        return file_id

    def children(self, folder_id: str) -> list[dict]:
        return [
            item for item in self.items.values()
            if folder_id in item.get("parents", [])
        ]

    def folders(self, name: str) -> list[dict]:
        return [
            item for item in self.items.values()
            if item["name"] == name and item.get("mimeType") == self.FOLDER_MIME_TYPE
        ]

    # request implementations

    def _next_time(self) -> str:
        self._clock += timedelta(minutes=1)
        return self._clock.isoformat().replace("+00:00", "Z")

    def _list(self, q, order_by, page_size, page_token):
        self.calls.append("list")
        if self.fail_list:
            raise self.fail_list

        name = re.search(r"name='((?:[^'\\]|\\.)*)'", q)
        mime = re.search(r"mimeType='([^']*)'", q)
        parent = re.search(r"'([^']*)' in parents", q)

        matches = list(self.items.values())
        if name:
            wanted = name.group(1).replace("\\'", "'").replace("\\\\", "\\")
            matches = [i for i in matches if i["name"] == wanted]
        if mime:
            matches = [i for i in matches if i.get("mimeType") == mime.group(1)]
        if parent:
            matches = [i for i in matches if parent.group(1) in i.get("parents", [])]

        if order_by == "createdTime desc":
            matches.sort(key=lambda i: i["createdTime"], reverse=True)

        size = min(page_size or self.page_size_cap, self.page_size_cap)
        start = int(page_token or 0)
        page = matches[start:start + size]
        response = {"files": [dict(i) for i in page]}
        if start + size < len(matches):
            response["nextPageToken"] = str(start + size)
        return response

    def _create(self, body, media_body):
        self.calls.append("create")
        if media_body is not None and self.fail_upload:
            raise self.fail_upload

        file_id = f"file-{next(self._ids)}"
        item = {
            "id": file_id,
            "name": body.get("name", ""),
            "mimeType": body.get("mimeType", "application/octet-stream"),
            "parents": list(body.get("parents", [])),
            "createdTime": self._next_time(),
        }
        if media_body is not None:
            data = media_body.getbytes(0, media_body.size())
            self.content[file_id] = data
            item["size"] = str(len(data))
        self.items[file_id] = item
        return dict(item)

    def _delete(self, file_id):
        self.calls.append("delete")
        if file_id in self.fail_delete:
            raise self.fail_delete[file_id]
        if file_id not in self.items:
            raise http_error(404, "File not found")
        del self.items[file_id]
        self.content.pop(file_id, None)
        return ""

    def _get_media(self, file_id):
        self.calls.append("get_media")
        if file_id not in self.content:
            raise http_error(404, "File not found")
        return self.content[file_id]


@pytest.fixture
def drive_service():
    return FakeDriveService()


@pytest.fixture
def drive_store(drive_service, settings_env):
    from snapsync.backup.drive import DriveBackupStore

    return DriveBackupStore(drive_service)


@pytest_asyncio.fixture
async def active_credential(test_db):
    from snapsync.auth.credentials import get_credential_store

    return await get_credential_store().set_active("client-id", "client-secret", "refresh-token")


class FakeTokenEndpoint:
    """Replacement for ``exchange_code_for_tokens`` that records its calls."""

    def __init__(self, response=None, error: Exception = None):
        self.response = response if response is not None else {
            "access_token": "access",
            "refresh_token": "refresh-token",
            "expires_in": 3600,
        }
        self.error = error
        self.calls: list[tuple[str, str, str]] = []

    async def __call__(self, code, client_id, client_secret):
        self.calls.append((code, client_id, client_secret))
        if self.error:
            raise self.error
        return self.response


@pytest.fixture
def token_endpoint():
    return FakeTokenEndpoint()


@pytest.fixture
def make_drive_service():
    return FakeDriveService


@pytest.fixture
def make_http_error():
    return http_error
