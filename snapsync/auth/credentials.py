"""Persisted OAuth credential record for the backup Drive account.

The record is a tagged union stored as one encrypted JSON value in the
``settings`` table:

    Empty                  nothing stored, or the stored value is unreadable
    PendingAuthorization   client id/secret submitted, no refresh token yet
    Active                 refresh token granted; the only usable state
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from snapsync.database import delete_setting, get_setting, set_setting
from snapsync.encryption import DecryptionError, decrypt_value, encrypt_value

logger = logging.getLogger(__name__)

CREDENTIAL_SETTING_KEY = "backup_oauth_credentials"

KIND_PENDING = "pending"
KIND_ACTIVE = "active"


@dataclass(frozen=True)
class Empty:
    corrupt: bool = False


@dataclass(frozen=True)
class PendingAuthorization:
    client_id: str
    client_secret: str
    issued_at: datetime


@dataclass(frozen=True)
class Active:
    client_id: str
    client_secret: str
    refresh_token: str
    issued_at: datetime


CredentialRecord = Union[Empty, PendingAuthorization, Active]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_issued_at(value) -> datetime:
    """Accept ISO strings and the epoch-milliseconds form of older records."""
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ValueError(f"Unsupported issued_at value: {value!r}")


def has_refresh_token(payload: dict) -> bool:
    """Discriminant between the Active and Pending shapes of a stored payload."""
    token = payload.get("refresh_token", payload.get("refreshToken"))
    return isinstance(token, str) and bool(token.strip())


def decode_record(raw: str) -> CredentialRecord:
    """Decode a stored JSON payload into a credential record.

    Raises ValueError when the payload is not a credential record at all.
    Payloads with an ``active`` kind but no refresh token decode as
    PendingAuthorization.
    """
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise ValueError("Credential payload is not an object")

    client_id = payload.get("client_id", payload.get("clientId"))
    client_secret = payload.get("client_secret", payload.get("clientSecret"))
    if not client_id or not client_secret:
        raise ValueError("Credential payload lacks client id or secret")

    issued_raw = payload.get("issued_at", payload.get("timestamp"))
    issued_at = _parse_issued_at(issued_raw) if issued_raw is not None else utcnow()

    if has_refresh_token(payload):
        return Active(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=payload.get("refresh_token", payload.get("refreshToken")),
            issued_at=issued_at,
        )

    if payload.get("kind") == KIND_ACTIVE:
        logger.warning("Stored credential is marked active but has no refresh token; treating as pending")
    return PendingAuthorization(client_id=client_id, client_secret=client_secret, issued_at=issued_at)


def encode_record(record: CredentialRecord) -> str:
    """Serialize a non-empty record to JSON with an explicit ``kind``."""
    if isinstance(record, Active):
        payload = {
            "kind": KIND_ACTIVE,
            "client_id": record.client_id,
            "client_secret": record.client_secret,
            "refresh_token": record.refresh_token,
            "issued_at": record.issued_at.isoformat(),
        }
    elif isinstance(record, PendingAuthorization):
        payload = {
            "kind": KIND_PENDING,
            "client_id": record.client_id,
            "client_secret": record.client_secret,
            "issued_at": record.issued_at.isoformat(),
        }
    else:
        raise ValueError("Empty credential records are not stored")
    return json.dumps(payload)


def describe(record: CredentialRecord) -> str:
    """Short state name for logs and status reports."""
    if isinstance(record, Active):
        return "active"
    if isinstance(record, PendingAuthorization):
        return "pending"
    return "corrupt" if record.corrupt else "empty"


class CredentialStore:
    """Reads and writes the single credential record of this deployment."""

    def __init__(self, key: str = CREDENTIAL_SETTING_KEY):
        self.key = key

    async def get(self) -> CredentialRecord:
        """Return the stored record; unreadable data comes back as ``Empty(corrupt=True)``."""
        row = await get_setting(self.key)
        if not row:
            return Empty()

        try:
            if row.get("value_encrypted"):
                raw = decrypt_value(row["value_encrypted"], self.key)
            elif row.get("value_plain"):
                raw = row["value_plain"]
            else:
                return Empty()
            return decode_record(raw)
        except (DecryptionError, ValueError, TypeError) as e:
            logger.warning(f"Stored backup credential is unreadable, treating as absent: {e}")
            return Empty(corrupt=True)

    async def set_pending(self, client_id: str, client_secret: str) -> PendingAuthorization:
        """Replace any stored record with a fresh PendingAuthorization."""
        record = PendingAuthorization(
            client_id=client_id,
            client_secret=client_secret,
            issued_at=utcnow(),
        )
        await self._write(record)
        logger.info("Backup credential stored (pending authorization)")
        return record

    async def set_active(self, client_id: str, client_secret: str, refresh_token: str) -> Active:
        """Replace any stored record with an Active credential."""
        if not refresh_token or not refresh_token.strip():
            raise ValueError("An active credential requires a refresh token")

        record = Active(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
            issued_at=utcnow(),
        )
        await self._write(record)
        logger.info("Backup credential stored (active)")
        return record

    async def clear(self) -> None:
        """Reset the record to Empty."""
        if await delete_setting(self.key):
            logger.info("Backup credential cleared")

    async def is_active(self) -> bool:
        return isinstance(await self.get(), Active)

    async def _write(self, record: CredentialRecord) -> None:
        await set_setting(
            self.key,
            encode_record(record),
            is_sensitive=True,
            encrypt_func=lambda value: encrypt_value(value, self.key),
        )


_store: Optional[CredentialStore] = None


def get_credential_store() -> CredentialStore:
    """Get the process-wide credential store."""
    global _store
    if _store is None:
        _store = CredentialStore()
    return _store
