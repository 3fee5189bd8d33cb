"""Application configuration management."""

import hashlib
import os
import re
import secrets
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


# Fallback session secret when no encryption key exists yet (generated once per process)
_fallback_session_secret: Optional[str] = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (the live database that gets backed up)
    database_path: str = "/data/database.db"

    # Scratch directory for temporary snapshot files
    scratch_dir: str = "/data/tmp"

    # Encryption
    encryption_key_file: str = "/secrets/encryption.key"

    # Server
    public_url: str = "http://localhost:3000"
    log_level: str = "info"

    # Session
    session_secret_key: Optional[str] = None  # Derived from encryption key if not set
    session_expire_days: int = 7

    # Rate limiting
    rate_limit_per_minute: int = 60

    # Remote storage
    backup_folder_name: str = "snapsync_backups"
    backup_filename_prefix: str = "Backup"
    max_backups: int = 5

    # Schedule (daily)
    backup_hour: int = 0
    backup_minute: int = 0
    backup_timezone: str = "UTC"

    # Authorization wizard
    wizard_guide_steps: int = 6
    oauth_code_max_age_minutes: int = 15
    oauth_min_code_length: int = 10

    # Alerts and operational log
    alert_process_minutes: int = 1
    backup_run_retention_days: int = 90

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def describe_schedule(settings: Settings) -> str:
    """Human readable form of the daily backup schedule, e.g. '00:00 UTC daily'."""
    return f"{settings.backup_hour:02d}:{settings.backup_minute:02d} {settings.backup_timezone} daily"


def parse_email_list(raw: Optional[str]) -> list[str]:
    """Parse comma/newline/semicolon separated email addresses, keeping order."""
    if not raw:
        return []

    emails: list[str] = []
    for token in re.split(r"[,\n;]+", raw):
        email = token.strip().lower()
        if email and email not in emails:
            emails.append(email)
    return emails


def get_encryption_key() -> bytes:
    """Load encryption key from file."""
    settings = get_settings()
    key_file = settings.encryption_key_file

    if not os.path.exists(key_file):
        raise RuntimeError(f"Encryption key file not found at {key_file}")

    with open(key_file, "rb") as f:
        key = f.read()
        # Only strip trailing newlines; general .strip() can corrupt binary keys
        while key and key[-1:] in (b"\n", b"\r"):
            key = key[:-1]

    if len(key) < 32:
        raise RuntimeError("Invalid encryption key: must be at least 32 bytes")

    return key


def get_session_secret() -> str:
    """Get session secret key, derived from encryption key if not set."""
    settings = get_settings()
    if settings.session_secret_key:
        return settings.session_secret_key

    try:
        key = get_encryption_key()
        return hashlib.sha256(key + b"session_secret").hexdigest()
    except RuntimeError:
        global _fallback_session_secret
        if _fallback_session_secret is None:
            _fallback_session_secret = secrets.token_urlsafe(32)
        return _fallback_session_secret
