"""
Tests for the service facade
"""
from unittest.mock import Mock

import pytest

from src.codeleads.enrichment.vendor_client import SkipTraceClient
from src.codeleads.exceptions import NotFoundError
from src.codeleads.models.jobs import IngestionStatus, JobEventType
from src.codeleads.services import CodeLeadsServices


@pytest.fixture
def services(session_factory, store):
    return CodeLeadsServices(session_factory, store, vendor_client=Mock(spec=SkipTraceClient))


def test_create_and_inspect_job(services, csv_factory, rows_factory):
    handle = services.store.put("user-1", "march.csv", csv_factory(rows_factory(2, "Austin", "TX")).encode())

    job_id = services.create_ingestion_job(handle, "user-1", fallback_county="Travis", filename="march.csv")

    status = services.get_job_status(job_id)
    assert status.status == IngestionStatus.QUEUED
    assert status.owner_id == "user-1"
    assert [e.type for e in services.get_job_events(job_id)] == [JobEventType.QUEUED]
    assert [j.job_id for j in services.list_jobs("user-1")] == [job_id]


def test_unknown_job(services):
    with pytest.raises(NotFoundError):
        services.get_job_status("missing")


def test_split_by_location(services, csv_factory, rows_factory):
    result = services.split_by_location(
        csv_factory(rows_factory(2, "Austin", "TX") + rows_factory(1, "Boston", "MA"))
    )

    assert result.total_rows == 3
    assert sorted(result.groups) == ["Austin|TX", "Boston|MA"]
