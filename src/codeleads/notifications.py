"""
Notification Utilities

Slack alerts for finished uploads and enrichment runs. Notifications are
best-effort: a failed post is logged and reported as False, never raised
into the ingestion or enrichment path.
"""
from typing import Optional

import requests

from config.settings import settings
from src.codeleads.models.jobs import AggregateProgress, RunStatus
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)


def send_slack_notification(message: str, webhook_url: Optional[str] = None) -> bool:
    """
    Send notification to Slack via webhook.

    Args:
        message: Message to send
        webhook_url: Slack webhook URL (defaults to settings.alert_slack_webhook)

    Returns:
        True if successful, False otherwise
    """
    if not settings.alert_enable_slack:
        logger.debug("slack_notifications_disabled")
        return False

    webhook_url = webhook_url or settings.alert_slack_webhook
    if not webhook_url:
        logger.warning("slack_webhook_url_not_configured")
        return False

    try:
        response = requests.post(webhook_url, json={"text": message}, timeout=10)
    except requests.RequestException as e:
        logger.error("slack_notification_error", error=str(e))
        return False

    if response.status_code == 200:
        logger.info("slack_notification_sent")
        return True

    logger.error("slack_notification_failed",
                 status_code=response.status_code,
                 response=response.text[:200])
    return False


def format_ingestion_summary(progress: AggregateProgress) -> str:
    """
    Format a split upload's aggregate progress into a notification message.

    Args:
        progress: Aggregated progress over the upload's jobs

    Returns:
        Formatted message string
    """
    headline = "Upload complete" if progress.is_complete else "Upload finished with failures"
    message_lines = [
        f"*{headline}*",
        "",
        f"Jobs: {progress.completed_jobs:,} complete, {progress.failed_jobs:,} failed of {progress.total_jobs:,}",
        f"Rows: {progress.processed_rows:,} / {progress.total_rows:,} ({progress.failed_rows:,} with errors)",
        f"New properties: {progress.properties_created:,}",
        f"Violations added: {progress.violations_created:,}",
    ]

    failed = [job for job in progress.jobs if job.error]
    if failed:
        message_lines.append("")
        message_lines.append("*Errors:*")
        for job in failed[:10]:
            message_lines.append(f"- {job.filename or job.job_id}: {job.error}")

    if progress.missing_job_ids:
        message_lines.append(f"_{len(progress.missing_job_ids)} job(s) no longer exist_")

    return "\n".join(message_lines)


def format_enrichment_summary(run: RunStatus) -> str:
    """Format a finished enrichment run into a notification message."""
    status = "cancelled" if run.cancelled_at else "finished"
    return "\n".join([
        f"*Skip trace run {status}*",
        "",
        f"Run: {run.run_id}",
        f"Properties: {run.total:,}",
        f"Contacts found: {run.succeeded:,}",
        f"Refunded: {run.failed:,}",
    ])
