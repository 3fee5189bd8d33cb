"""
Error types for the backup subsystem.

Every failure the subsystem can report has its own exception class so that
callers (the scheduler, the HTTP API) can tell them apart:

- Snapshot errors: SourceMissing, SourceEmpty, IntegrityCheckFailed,
  ValidationToolError, SnapshotCopyFailed
- Authorization errors: NotAuthorized, InvalidClientCredentials,
  InvalidAuthorizationCode, CredentialStateMissing, AuthorizationDenied,
  TokenExchangeFailed, NoRefreshTokenGranted, WizardTransitionError
- Remote storage errors: RemoteStoreError, UploadFailed
- Restore errors: RestoreFailed

Each error carries a stable ``code`` for programmatic handling and a
``user_message`` that is safe to show to an operator.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BackupSubsystemError(Exception):
    """Base exception for all backup subsystem errors.

    Attributes:
        message: Detailed error message (logged)
        code: Error code for programmatic handling
        details: Additional error context
    """

    code = "BACKUP_ERROR"
    user_message = "The backup operation failed."

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.user_message,
            "detail": self.message,
        }


# ---------------------------------------------------------------------------
# Snapshot engine
# ---------------------------------------------------------------------------

class SnapshotError(BackupSubsystemError):
    """A snapshot of the live database could not be produced."""

    code = "SNAPSHOT_ERROR"


class SourceMissing(SnapshotError):
    code = "SOURCE_MISSING"
    user_message = "The database file to back up was not found. Check the configured database path."


class SourceEmpty(SnapshotError):
    code = "SOURCE_EMPTY"
    user_message = "The database file to back up is empty. Nothing was backed up."


class IntegrityCheckFailed(SnapshotError):
    """The database reported corruption. The source itself may be damaged."""

    code = "INTEGRITY_CHECK_FAILED"
    user_message = (
        "The database failed its integrity check and may be damaged. "
        "No backup was made; investigate the database before retrying."
    )


class ValidationToolError(SnapshotError):
    """The integrity check could not be run; says nothing about the data."""

    code = "VALIDATION_TOOL_ERROR"
    user_message = "The database integrity check could not be run. This is usually transient; retry later."


class SnapshotCopyFailed(SnapshotError):
    code = "SNAPSHOT_COPY_FAILED"
    user_message = "Copying the database into a snapshot failed."


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class AuthorizationError(BackupSubsystemError):
    code = "AUTHORIZATION_ERROR"


class NotAuthorized(AuthorizationError):
    """No Active credential exists; the authorization wizard must be completed."""

    code = "NOT_AUTHORIZED"
    user_message = "Google Drive is not authorized yet. Complete the authorization setup first."


class InvalidClientCredentials(AuthorizationError):
    code = "INVALID_CLIENT_CREDENTIALS"
    user_message = "Both the OAuth client ID and client secret are required."


class InvalidAuthorizationCode(AuthorizationError):
    code = "INVALID_AUTHORIZATION_CODE"
    user_message = "That authorization code does not look valid. Copy the complete code and try again."


class CredentialStateMissing(AuthorizationError):
    code = "CREDENTIAL_STATE_MISSING"
    user_message = (
        "The pending authorization was not found. "
        "Enter your client ID and secret again to restart authorization."
    )


class AuthorizationDenied(AuthorizationError):
    """The provider rejected the code (invalid, expired or already used)."""

    code = "AUTHORIZATION_DENIED"
    user_message = (
        "Google rejected the authorization code. It may have expired or already been used; "
        "open the authorization link again to get a new code."
    )


class TokenExchangeFailed(AuthorizationDenied):
    """The token endpoint could not be reached or returned garbage."""

    code = "TOKEN_EXCHANGE_FAILED"
    user_message = "Could not reach Google to exchange the authorization code. Try again shortly."


class NoRefreshTokenGranted(AuthorizationError):
    code = "NO_REFRESH_TOKEN_GRANTED"
    user_message = (
        "Google did not grant offline access. Remove the app's access from your Google "
        "account permissions, then authorize again."
    )


class WizardTransitionError(AuthorizationError):
    code = "WIZARD_TRANSITION_ERROR"
    user_message = "That action is not available at this point of the setup."


# ---------------------------------------------------------------------------
# Remote storage
# ---------------------------------------------------------------------------

class RemoteStoreError(BackupSubsystemError):
    code = "REMOTE_STORE_ERROR"
    user_message = "Google Drive request failed."


class UploadFailed(RemoteStoreError):
    code = "UPLOAD_FAILED"
    user_message = "Uploading the backup to Google Drive failed. The backup was not stored."


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------

class RestoreFailed(BackupSubsystemError):
    code = "RESTORE_FAILED"
    user_message = "Restoring the backup failed. The current database was kept."
