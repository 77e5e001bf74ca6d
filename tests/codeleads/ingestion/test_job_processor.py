"""
Tests for the ingestion job stage machine
"""
import pytest
from sqlalchemy import func, select

from src.codeleads.db.models import IngestionStatus, JobEventType, Property, StagingRow, Violation
from src.codeleads.db.session import session_scope
from src.codeleads.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from src.codeleads.ingestion.job_processor import (
    ALLOWED_TRANSITIONS,
    IngestionJobProcessor,
    check_transition,
    create_ingestion_job,
)


@pytest.fixture
def submit(store, session_factory, event_log):
    def _submit(csv_text, owner_id="user-1", **kwargs):
        handle = store.put(owner_id, "violations.csv", csv_text.encode("utf-8"))
        return create_ingestion_job(
            handle, owner_id, session_factory=session_factory, event_log=event_log, **kwargs
        )
    return _submit


@pytest.fixture
def processor(store, session_factory, event_log):
    return IngestionJobProcessor(store=store, session_factory=session_factory, event_log=event_log)


def count(session_factory, model):
    with session_scope(session_factory) as session:
        return session.scalar(select(func.count()).select_from(model))


class TestTransitions:

    def test_forward_order(self):
        order = [
            IngestionStatus.QUEUED, IngestionStatus.PARSING, IngestionStatus.PROCESSING,
            IngestionStatus.DEDUPING, IngestionStatus.FINALIZING, IngestionStatus.COMPLETE,
        ]
        for current, target in zip(order, order[1:]):
            check_transition(current, target)

    def test_failed_reachable_from_every_non_terminal_stage(self):
        for status in IngestionStatus:
            if not status.is_terminal:
                check_transition(status, IngestionStatus.FAILED)

    @pytest.mark.parametrize("current,target", [
        (IngestionStatus.QUEUED, IngestionStatus.PROCESSING),
        (IngestionStatus.PROCESSING, IngestionStatus.PARSING),
        (IngestionStatus.COMPLETE, IngestionStatus.FAILED),
        (IngestionStatus.FAILED, IngestionStatus.QUEUED),
    ])
    def test_rejected_transitions(self, current, target):
        with pytest.raises(InvalidTransitionError):
            check_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        assert ALLOWED_TRANSITIONS[IngestionStatus.COMPLETE] == set()
        assert ALLOWED_TRANSITIONS[IngestionStatus.FAILED] == set()


class TestCreateIngestionJob:

    def test_creates_queued_job_with_event(self, submit, processor, event_log):
        job_id = submit("address,city,state\n1 Main St,Austin,TX\n", fallback_city="austin", fallback_state="tx")

        status = processor.get_status(job_id)
        assert status.status == IngestionStatus.QUEUED
        assert status.fallback_city == "Austin"
        assert status.fallback_state == "TX"
        assert [e.type for e in event_log.get_events(job_id)] == [JobEventType.QUEUED]

    @pytest.mark.parametrize("kwargs", [{"fallback_city": "123"}, {"fallback_state": "Texas"}])
    def test_rejects_bad_fallback(self, submit, session_factory, kwargs):
        with pytest.raises(ValidationError):
            submit("address\n1 Main St\n", **kwargs)
        assert count(session_factory, StagingRow) == 0


class TestIngestionJobProcessor:

    def test_complete_run(self, submit, processor, session_factory, event_log, csv_factory, rows_factory):
        job_id = submit(csv_factory(rows_factory(5, "Austin", "TX")))

        status = processor.run(job_id)

        assert status.status == IngestionStatus.COMPLETE
        assert status.total_rows == 5
        assert status.processed_rows == status.total_rows
        assert status.failed_rows == 0
        assert status.properties_created == 5
        assert status.violations_created == 5
        assert status.started_at is not None
        assert status.finished_at is not None
        assert count(session_factory, Property) == 5

        events = event_log.get_events(job_id)
        assert [e.type for e in events] == [JobEventType.QUEUED, JobEventType.STARTED, JobEventType.DONE]
        assert events[-1].payload["status"] == "COMPLETE"
        assert events[-1].payload["properties_created"] == 5

    def test_violation_fields(self, submit, processor, session_factory):
        job_id = submit(
            "address,city,state,zip,case_number,violation_type,case_status,open_date\n"
            "12 Oak Avenue Apt 3,Austin,TX,78701-1111,CE-9,Tall grass,Closed,2024-01-15\n"
        )
        processor.run(job_id)

        with session_scope(session_factory) as session:
            prop = session.execute(select(Property)).scalar_one()
            violation = session.execute(select(Violation)).scalar_one()
            assert prop.address == "12 OAK AVE APT 3"
            assert prop.city == "Austin"
            assert prop.zip_code == "78701"
            assert violation.case_id == "CE-9"
            assert violation.violation_type == "Tall grass"
            assert violation.status == "Closed"
            assert violation.opened_date.isoformat() == "2024-01-15"
            assert violation.days_open > 0
            assert violation.source_job_id == job_id

    def test_reingesting_identical_file_creates_no_new_properties(
        self, submit, processor, session_factory, csv_factory, rows_factory
    ):
        text = csv_factory(rows_factory(8, "Austin", "TX"))

        first = processor.run(submit(text))
        second = processor.run(submit(text))

        assert first.properties_created == 8
        assert second.status == IngestionStatus.COMPLETE
        assert second.properties_created == 0
        assert second.violations_created == 0
        assert count(session_factory, Property) == 8
        assert count(session_factory, Violation) == 8

    def test_same_address_twice_in_one_file(self, submit, processor, session_factory):
        job_id = submit(
            "address,city,state,case_id\n"
            "1 Main Street,Austin,TX,A-1\n"
            "1 main st,austin,tx,A-2\n"
        )

        status = processor.run(job_id)

        assert status.properties_created == 1
        assert status.violations_created == 2
        assert count(session_factory, Property) == 1

    def test_small_batches(self, store, session_factory, event_log, submit, csv_factory, rows_factory):
        processor = IngestionJobProcessor(
            store=store, session_factory=session_factory, event_log=event_log,
            batch_size=3, lookup_chunk_size=2,
        )
        job_id = submit(csv_factory(rows_factory(10, "Austin", "TX")))

        status = processor.run(job_id)

        assert status.status == IngestionStatus.COMPLETE
        assert status.properties_created == 10
        assert count(session_factory, StagingRow) == 10

    def test_row_errors_are_recorded_without_failing(self, submit, processor):
        job_id = submit(
            "address,city,state,opened_date\n"
            "1 Main St,Austin,TX,2024-01-01\n"
            "2 Main St,Austin,TX,2024-01-02\n"
            "3 Main St,Austin,TX,2024-01-03\n"
            ",Austin,TX,2024-01-04\n"
            "5 Main St,Austin,TX,not a date\n"
        )

        status = processor.run(job_id)

        assert status.status == IngestionStatus.COMPLETE
        assert status.processed_rows == 5
        assert status.failed_rows == 2
        assert status.properties_created == 3
        assert len(status.warnings) == 2
        assert status.warnings[0] == "Row 4: missing address"
        assert any("opened_date" in w for w in status.warnings)

    def test_fallback_location_fills_missing_cells(self, submit, processor, session_factory):
        job_id = submit(
            "address,zip\n1 Main St,78701\n2 Main St,78701\n",
            fallback_city="Austin", fallback_state="TX", fallback_county="Travis",
        )

        status = processor.run(job_id)

        assert status.properties_created == 2
        with session_scope(session_factory) as session:
            props = session.execute(select(Property)).scalars().all()
            assert {(p.city, p.state, p.county) for p in props} == {("Austin", "TX", "Travis")}

    def test_rows_without_location_or_fallback_fail(self, submit, processor):
        job_id = submit("address,city\n1 Main St,Austin\n2 Main St,Austin\n")

        status = processor.run(job_id)

        assert status.status == IngestionStatus.FAILED
        assert status.failed_rows == 2
        assert "rows failed validation" in status.error

    def test_failure_ratio_fails_job(self, submit, processor, event_log):
        job_id = submit(
            "address,city,state\n"
            "1 Main St,Austin,TX\n"
            ",Austin,TX\n"
            ",Austin,TX\n"
            ",Austin,TX\n"
        )

        status = processor.run(job_id)

        assert status.status == IngestionStatus.FAILED
        assert status.error == "3 of 4 rows failed validation (limit 50%)"
        assert status.properties_created == 0
        assert status.finished_at is not None

        done = event_log.get_events(job_id)[-1]
        assert done.type == JobEventType.DONE
        assert done.payload["status"] == "FAILED"

    def test_missing_source_file_fails_job(self, session_factory, event_log, processor):
        job_id = create_ingestion_job(
            "user-1/nowhere.csv", "user-1", session_factory=session_factory, event_log=event_log
        )

        status = processor.run(job_id)

        assert status.status == IngestionStatus.FAILED
        assert "No stored file" in status.error

    def test_malformed_file_fails_job(self, submit, processor):
        status = processor.run(submit("address,city\n"))

        assert status.status == IngestionStatus.FAILED
        assert status.total_rows == 0

    def test_processed_rows_never_exceed_total(self, submit, processor, csv_factory, rows_factory):
        status = processor.run(submit(csv_factory(rows_factory(3, "Austin", "TX"))))

        assert 0 <= status.processed_rows <= status.total_rows

    def test_run_twice_rejected(self, submit, processor, csv_factory, rows_factory):
        job_id = submit(csv_factory(rows_factory(1, "Austin", "TX")))
        processor.run(job_id)

        with pytest.raises(InvalidTransitionError):
            processor.run(job_id)

    def test_unknown_job(self, processor):
        with pytest.raises(NotFoundError):
            processor.run("no-such-job")
