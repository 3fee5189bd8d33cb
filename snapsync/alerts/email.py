"""Email alerts for failed unattended backups."""

import logging
from datetime import datetime, timedelta
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib

from snapsync.config import get_settings, parse_email_list
from snapsync.database import get_database, get_setting
from snapsync.encryption import decrypt_value

logger = logging.getLogger(__name__)

ALERT_DEDUP_WINDOW = timedelta(hours=1)


async def get_smtp_config() -> dict:
    """Get SMTP configuration from settings."""
    config = {}

    host = await get_setting("smtp_host")
    if host:
        config["host"] = host.get("value_plain")

    port = await get_setting("smtp_port")
    if port:
        config["port"] = int(port.get("value_plain") or 587)
    else:
        config["port"] = 587

    username = await get_setting("smtp_username")
    if username:
        config["username"] = username.get("value_plain")

    password = await get_setting("smtp_password")
    if password and password.get("value_encrypted"):
        config["password"] = decrypt_value(password["value_encrypted"], "smtp_password")

    from_addr = await get_setting("smtp_from_address")
    if from_addr:
        config["from_address"] = from_addr.get("value_plain")

    return config


async def send_email(to_email: str, subject: str, body: str) -> None:
    """Send a plain text email through the configured SMTP server."""
    config = await get_smtp_config()

    if not config.get("host"):
        logger.warning("SMTP not configured, cannot send email")
        raise ValueError("SMTP not configured")

    msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = config.get("from_address", config.get("username"))
    msg["To"] = to_email

    try:
        await aiosmtplib.send(
            msg,
            hostname=config["host"],
            port=config["port"],
            username=config.get("username"),
            password=config.get("password"),
            start_tls=True,
        )
        logger.info(f"Email sent to {to_email}: {subject}")

    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        raise


def generate_alert_content(alert_type: str, details: str) -> tuple[str, str]:
    """Generate email subject and body for an alert."""
    settings = get_settings()
    timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC")

    subjects = {
        "backup_failed": "Backup - Scheduled Backup Failed",
        "backup_integrity": "Backup - Database Integrity Problem",
        "backup_upload_failed": "Backup - Upload to Google Drive Failed",
    }

    subject = subjects.get(alert_type, f"Backup - {alert_type}")

    body = f"""Automated Backup Alert

Alert Type: {alert_type}
Time: {timestamp}

Details:
{details}

---
Backup settings: {settings.public_url}/admin/backup
"""

    return subject, body


async def queue_alert(alert_type: str, details: str = "") -> int:
    """Queue an alert for every configured recipient.

    The same alert type is queued at most once per hour. Returns the number
    of queued messages.
    """
    recipients_setting = await get_setting("alert_emails")
    recipients = parse_email_list(recipients_setting.get("value_plain") if recipients_setting else None)
    if not recipients:
        logger.debug(f"No alert recipients configured, dropping {alert_type} alert")
        return 0

    db = await get_database()
    dedup_cutoff = (datetime.utcnow() - ALERT_DEDUP_WINDOW).isoformat()
    cursor = await db.execute(
        "SELECT id FROM alert_queue WHERE alert_type = ? AND created_at > ?",
        (alert_type, dedup_cutoff)
    )
    if await cursor.fetchone():
        logger.debug(f"Skipping duplicate alert: {alert_type}")
        return 0

    subject, body = generate_alert_content(alert_type, details)
    now = datetime.utcnow().isoformat()
    for recipient in recipients:
        await db.execute(
            """INSERT INTO alert_queue (alert_type, recipient_email, subject, body, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (alert_type, recipient, subject, body, now)
        )

    await db.commit()
    logger.info(f"Queued {alert_type} alert for {len(recipients)} recipients")
    return len(recipients)


def alert_type_for(error_code: Optional[str]) -> str:
    """Map an error code onto the alert type used for its email."""
    if error_code in ("INTEGRITY_CHECK_FAILED", "SOURCE_MISSING", "SOURCE_EMPTY"):
        return "backup_integrity"
    if error_code in ("UPLOAD_FAILED", "REMOTE_STORE_ERROR"):
        return "backup_upload_failed"
    return "backup_failed"
