"""
Tests for the append-only job event timeline
"""
import pytest
from sqlalchemy import select

from src.codeleads.db.models import IngestionJob, JobEvent, JobEventType
from src.codeleads.db.session import session_scope
from src.codeleads.exceptions import AppendOnlyViolationError
from src.codeleads.ingestion.job_processor import create_ingestion_job


def test_append_and_read_back(event_log):
    view = event_log.append("job-1", JobEventType.QUEUED, {"source": "a.csv"})

    events = event_log.get_events("job-1")
    assert [e.id for e in events] == [view.id]
    assert events[0].type == JobEventType.QUEUED
    assert events[0].payload == {"source": "a.csv"}
    assert event_log.get_events("job-2") == []


def test_timeline_pages_in_order_and_restarts(event_log):
    types = [JobEventType.QUEUED, JobEventType.STARTED] + [JobEventType.REFUNDED] * 4 + [JobEventType.DONE]
    for n, event_type in enumerate(types):
        event_log.append("run-1", event_type, {"n": n})

    timeline = event_log.timeline("run-1", page_size=2)

    first = [e.payload["n"] for e in timeline]
    second = [e.payload["n"] for e in timeline]
    assert first == list(range(len(types)))
    assert second == first


def test_fetch_page_after_cursor(event_log):
    for n in range(5):
        event_log.append("run-1", JobEventType.REFUNDED, {"n": n})

    page = event_log.fetch_page("run-1", limit=2)
    rest = event_log.fetch_page("run-1", after=(page[-1].timestamp, page[-1].id), limit=10)

    assert [e.payload["n"] for e in page] == [0, 1]
    assert [e.payload["n"] for e in rest] == [2, 3, 4]


def test_append_in_caller_transaction_rolls_back_with_it(event_log, session_factory):
    with pytest.raises(RuntimeError):
        with session_scope(session_factory) as session:
            event_log.append("job-1", JobEventType.STARTED, session=session)
            raise RuntimeError("stage failed")

    assert event_log.get_events("job-1") == []


def test_timeline_survives_job_deletion(event_log, session_factory):
    job_id = create_ingestion_job("user-1/a.csv", "user-1", session_factory=session_factory, event_log=event_log)

    with session_scope(session_factory) as session:
        session.delete(session.get(IngestionJob, job_id))

    with session_scope(session_factory) as session:
        assert session.get(IngestionJob, job_id) is None
    assert [e.type for e in event_log.get_events(job_id)] == [JobEventType.QUEUED]


def test_events_cannot_be_edited(event_log, session_factory):
    event_log.append("job-1", JobEventType.QUEUED)

    with pytest.raises(AppendOnlyViolationError):
        with session_scope(session_factory) as session:
            session.execute(select(JobEvent)).scalar_one().payload = {"tampered": True}
