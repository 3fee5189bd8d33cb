"""Google OAuth helpers for the backup Drive account."""

import logging
from urllib.parse import urlencode

import httpx
from google.oauth2.credentials import Credentials

from snapsync.auth.credentials import Active
from snapsync.errors import AuthorizationDenied, TokenExchangeFailed

logger = logging.getLogger(__name__)

# Google OAuth endpoints
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Out-of-band redirect: Google shows the code to the user instead of calling back
OOB_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"

DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]

TOKEN_EXCHANGE_TIMEOUT_SECONDS = 30.0


def build_auth_url(
    client_id: str,
    scopes: list[str] = DRIVE_SCOPES,
    redirect_uri: str = OOB_REDIRECT_URI,
    prompt: str = "consent",
) -> str:
    """Build the Google authorization URL requesting offline access.

    ``prompt=consent`` makes Google issue a refresh token even when the user
    already granted access to this client before.
    """
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "access_type": "offline",
        "prompt": prompt,
    }

    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def _error_code(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("error", ""))
    return ""


async def exchange_code_for_tokens(
    code: str,
    client_id: str,
    client_secret: str,
    redirect_uri: str = OOB_REDIRECT_URI,
) -> dict:
    """Exchange an authorization code for tokens.

    Raises AuthorizationDenied when Google rejects the code and
    TokenExchangeFailed when the token endpoint cannot be reached.
    """
    try:
        async with httpx.AsyncClient(timeout=TOKEN_EXCHANGE_TIMEOUT_SECONDS) as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "code": code,
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "redirect_uri": redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
    except httpx.HTTPError as e:
        logger.error(f"Token exchange request failed: {e}")
        raise TokenExchangeFailed(f"Token exchange request failed: {e}") from e

    if response.status_code != 200:
        error = _error_code(response)
        logger.error(f"Token exchange failed ({response.status_code}): {response.text}")
        if error == "invalid_grant":
            raise AuthorizationDenied(
                "Authorization code is invalid, expired or already used",
                details={"error": error},
            )
        if response.status_code >= 500:
            raise TokenExchangeFailed(
                f"Token endpoint returned {response.status_code}",
                details={"error": error},
            )
        raise AuthorizationDenied(
            f"Token exchange rejected: {error or response.status_code}",
            details={"error": error},
        )

    try:
        tokens = response.json()
    except ValueError as e:
        raise TokenExchangeFailed("Token endpoint returned a non-JSON response") from e

    if not isinstance(tokens, dict):
        raise TokenExchangeFailed("Token endpoint returned an unexpected payload")
    return tokens


def build_drive_credentials(record: Active) -> Credentials:
    """Build refreshable Google credentials from an Active record.

    No access token is stored; google-auth refreshes one on first use.
    """
    return Credentials(
        token=None,
        refresh_token=record.refresh_token,
        token_uri=GOOGLE_TOKEN_URL,
        client_id=record.client_id,
        client_secret=record.client_secret,
        scopes=DRIVE_SCOPES,
    )
