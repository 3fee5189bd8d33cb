"""HTTP mapping of backup subsystem errors."""

import logging

from fastapi import HTTPException, status

from snapsync.errors import (
    AuthorizationDenied,
    BackupSubsystemError,
    CredentialStateMissing,
    IntegrityCheckFailed,
    InvalidAuthorizationCode,
    InvalidClientCredentials,
    NoRefreshTokenGranted,
    NotAuthorized,
    RemoteStoreError,
    SourceEmpty,
    SourceMissing,
    TokenExchangeFailed,
    ValidationToolError,
    WizardTransitionError,
)

logger = logging.getLogger(__name__)

# Most specific class first
_STATUS_BY_ERROR = (
    (TokenExchangeFailed, status.HTTP_502_BAD_GATEWAY),
    (RemoteStoreError, status.HTTP_502_BAD_GATEWAY),
    (NotAuthorized, status.HTTP_409_CONFLICT),
    (CredentialStateMissing, status.HTTP_409_CONFLICT),
    (WizardTransitionError, status.HTTP_409_CONFLICT),
    (InvalidClientCredentials, status.HTTP_400_BAD_REQUEST),
    (InvalidAuthorizationCode, status.HTTP_400_BAD_REQUEST),
    (AuthorizationDenied, status.HTTP_400_BAD_REQUEST),
    (NoRefreshTokenGranted, status.HTTP_400_BAD_REQUEST),
    (ValidationToolError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (SourceMissing, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (SourceEmpty, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (IntegrityCheckFailed, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(error: BackupSubsystemError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(error: BackupSubsystemError) -> HTTPException:
    """Convert a subsystem error into an HTTPException carrying its user message."""
    status_code = status_for(error)
    if status_code >= 500:
        logger.error(f"{error.code}: {error.message}")
    else:
        logger.info(f"{error.code}: {error.message}")
    return HTTPException(status_code=status_code, detail=error.to_dict())
