"""Alert processing jobs.

Unsent alerts are retried with an exponential backoff: after the n-th failed
attempt an alert waits ``2 ** n`` minutes before the next one, and it is
given up after ``MAX_ALERT_ATTEMPTS``.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from snapsync.config import get_settings
from snapsync.database import get_database, prune_backup_runs

logger = logging.getLogger(__name__)

MAX_ALERT_ATTEMPTS = 3
ALERT_BATCH_SIZE = 10
STALE_ALERT_DAYS = 7


def retry_delay(attempts: int) -> timedelta:
    """Wait before the next send after ``attempts`` failures."""
    return timedelta(minutes=2 ** attempts)


def is_due(alert, now: datetime) -> bool:
    if not alert["attempts"] or not alert["last_attempt"]:
        return True
    last_attempt = datetime.fromisoformat(alert["last_attempt"])
    return now - last_attempt >= retry_delay(alert["attempts"])


async def process_alert_queue(now: Optional[datetime] = None) -> int:
    """Send the queued alerts whose backoff has elapsed.

    Returns the number of alerts sent.
    """
    from snapsync.alerts.email import send_email

    now = now or datetime.utcnow()
    db = await get_database()
    cursor = await db.execute(
        """SELECT * FROM alert_queue
           WHERE sent_at IS NULL AND attempts < ?
           ORDER BY created_at ASC, id ASC""",
        (MAX_ALERT_ATTEMPTS,)
    )
    due = [alert for alert in await cursor.fetchall() if is_due(alert, now)]

    sent = 0
    for alert in due[:ALERT_BATCH_SIZE]:
        try:
            await send_email(
                to_email=alert["recipient_email"],
                subject=alert["subject"],
                body=alert["body"],
            )
        except Exception as e:
            attempts = alert["attempts"] + 1
            if attempts >= MAX_ALERT_ATTEMPTS:
                logger.error(f"Giving up on alert {alert['id']} after {attempts} attempts: {e}")
            else:
                logger.warning(
                    f"Failed to send alert {alert['id']} (attempt {attempts}), "
                    f"retrying in {retry_delay(attempts)}: {e}"
                )
            await db.execute(
                "UPDATE alert_queue SET attempts = ?, last_attempt = ? WHERE id = ?",
                (attempts, now.isoformat(), alert["id"])
            )
            await db.commit()
            continue

        await db.execute(
            "UPDATE alert_queue SET sent_at = ? WHERE id = ?",
            (now.isoformat(), alert["id"])
        )
        await db.commit()
        sent += 1
        logger.info(f"Sent {alert['alert_type']} alert to {alert['recipient_email']}")

    return sent


async def cleanup_stale_alerts() -> int:
    """Drop week-old alerts that were sent or given up on, and old run log rows.

    Returns the number of alerts removed.
    """
    db = await get_database()
    cutoff = (datetime.utcnow() - timedelta(days=STALE_ALERT_DAYS)).isoformat()

    cursor = await db.execute(
        """DELETE FROM alert_queue
           WHERE (sent_at IS NOT NULL AND sent_at < ?)
           OR (attempts >= ? AND created_at < ?)
           RETURNING id""",
        (cutoff, MAX_ALERT_ATTEMPTS, cutoff)
    )
    removed = len(await cursor.fetchall())
    await db.commit()
    if removed:
        logger.info(f"Removed {removed} stale alerts")

    runs = await prune_backup_runs(get_settings().backup_run_retention_days)
    if runs:
        logger.info(f"Removed {runs} backup run entries past retention")

    return removed
