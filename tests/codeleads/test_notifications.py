"""
Tests for Slack notifications
"""
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import requests

from src.codeleads import notifications
from src.codeleads.ingestion.aggregator import merge_statuses
from src.codeleads.models.jobs import IngestionStatus, JobStatus, RunStatus


def job(job_id, status, **counts):
    return JobStatus(job_id=job_id, owner_id="user-1", status=status, filename=f"{job_id}.csv", **counts)


@patch.object(notifications.settings, "alert_enable_slack", False)
def test_disabled_sends_nothing():
    with patch.object(notifications.requests, "post") as post:
        assert notifications.send_slack_notification("hello", "https://hooks.example/x") is False
    post.assert_not_called()


@patch.object(notifications.settings, "alert_enable_slack", True)
@patch.object(notifications.settings, "alert_slack_webhook", None)
def test_missing_webhook():
    assert notifications.send_slack_notification("hello") is False


@patch.object(notifications.settings, "alert_enable_slack", True)
def test_posts_message():
    with patch.object(notifications.requests, "post", return_value=Mock(status_code=200)) as post:
        assert notifications.send_slack_notification("hello", "https://hooks.example/x") is True
    post.assert_called_once_with("https://hooks.example/x", json={"text": "hello"}, timeout=10)


@patch.object(notifications.settings, "alert_enable_slack", True)
def test_failures_are_reported_not_raised():
    with patch.object(notifications.requests, "post", return_value=Mock(status_code=500, text="boom")):
        assert notifications.send_slack_notification("hello", "https://hooks.example/x") is False
    with patch.object(notifications.requests, "post", side_effect=requests.ConnectionError("down")):
        assert notifications.send_slack_notification("hello", "https://hooks.example/x") is False


def test_ingestion_summary():
    progress = merge_statuses(
        [
            job("a", IngestionStatus.COMPLETE, total_rows=10, processed_rows=10, properties_created=4,
                violations_created=9),
            job("b", IngestionStatus.FAILED, total_rows=5, processed_rows=5, failed_rows=5,
                error="5 of 5 rows failed validation (limit 50%)"),
        ],
        ["a", "b", "gone"],
    )

    message = notifications.format_ingestion_summary(progress)

    assert message.startswith("*Upload finished with failures*")
    assert "Jobs: 1 complete, 1 failed of 2" in message
    assert "New properties: 4" in message
    assert "- b.csv: 5 of 5 rows failed validation (limit 50%)" in message
    assert "_1 job(s) no longer exist_" in message


def test_enrichment_summary():
    run = RunStatus(run_id="r1", owner_id="user-1", total=10, queued=0, succeeded=7, failed=3,
                    finished_at=datetime.now(timezone.utc))

    message = notifications.format_enrichment_summary(run)

    assert "*Skip trace run finished*" in message
    assert "Contacts found: 7" in message
    assert "Refunded: 3" in message
