"""
Tests for multi-job progress merging and watching
"""
import asyncio
import threading

from src.codeleads.db.models import IngestionStatus
from src.codeleads.ingestion.aggregator import (
    MultiJobAggregator,
    ProgressWatcher,
    StatusBus,
    merge_statuses,
)
from src.codeleads.ingestion.job_processor import IngestionJobProcessor, create_ingestion_job
from src.codeleads.models.jobs import JobStatus


def snapshot(job_id, status, total=10, processed=10, failed=0, created=0):
    return JobStatus(
        job_id=job_id, owner_id="user-1", status=status,
        total_rows=total, processed_rows=processed, failed_rows=failed, properties_created=created,
    )


class TestMergeStatuses:

    def test_sums_counters(self):
        progress = merge_statuses([
            snapshot("a", IngestionStatus.COMPLETE, total=10, processed=10, created=4),
            snapshot("b", IngestionStatus.PROCESSING, total=30, processed=5, failed=1, created=0),
        ], ["a", "b"])

        assert progress.total_jobs == 2
        assert progress.completed_jobs == 1
        assert progress.total_rows == 40
        assert progress.processed_rows == 15
        assert progress.failed_rows == 1
        assert progress.properties_created == 4
        assert progress.is_processing
        assert not progress.is_complete
        assert progress.percent == 37.5

    def test_missing_ids_reported_not_raised(self):
        progress = merge_statuses([snapshot("a", IngestionStatus.COMPLETE)], ["a", "gone", "a"])

        assert progress.missing_job_ids == ["gone"]
        assert progress.total_jobs == 1
        assert progress.is_complete

    def test_any_failed_job_marks_failed(self):
        progress = merge_statuses([
            snapshot("a", IngestionStatus.COMPLETE),
            snapshot("b", IngestionStatus.FAILED),
        ], ["a", "b"])

        assert progress.is_failed
        assert not progress.is_complete
        assert not progress.is_processing

    def test_nothing_found(self):
        progress = merge_statuses([], ["x"])

        assert not progress.is_complete
        assert not progress.is_processing
        assert progress.percent == 0.0


def test_aggregate_reads_jobs(session_factory, event_log, store):
    job_id = create_ingestion_job("user-1/a.csv", "user-1", session_factory=session_factory, event_log=event_log)

    progress = MultiJobAggregator(session_factory).aggregate([job_id, "missing-id"])

    assert progress.jobs[0].job_id == job_id
    assert progress.jobs[0].status == IngestionStatus.QUEUED
    assert progress.is_processing
    assert progress.missing_job_ids == ["missing-id"]


def test_watch_stops_when_jobs_are_terminal(session_factory, event_log, store, csv_factory, rows_factory):
    handle = store.put("user-1", "a.csv", csv_factory(rows_factory(3, "Austin", "TX")).encode())
    job_id = create_ingestion_job(handle, "user-1", session_factory=session_factory, event_log=event_log)
    IngestionJobProcessor(store=store, session_factory=session_factory, event_log=event_log).run(job_id)

    watcher = ProgressWatcher(MultiJobAggregator(session_factory), StatusBus(), poll_interval=0.05)

    async def collect():
        return [p async for p in watcher.watch([job_id])]

    snapshots = asyncio.run(collect())

    assert len(snapshots) == 1
    assert snapshots[0].is_complete


def test_watch_follows_a_running_job(session_factory, event_log, store, csv_factory, rows_factory):
    handle = store.put("user-1", "a.csv", csv_factory(rows_factory(20, "Austin", "TX")).encode())
    job_id = create_ingestion_job(handle, "user-1", session_factory=session_factory, event_log=event_log)
    bus = StatusBus()
    processor = IngestionJobProcessor(
        store=store, session_factory=session_factory, event_log=event_log, status_bus=bus, batch_size=5
    )
    watcher = ProgressWatcher(MultiJobAggregator(session_factory), bus, poll_interval=0.2)

    async def follow():
        worker = threading.Thread(target=processor.run, args=(job_id,))
        worker.start()
        try:
            return await watcher.wait_until_done([job_id], timeout=30)
        finally:
            await asyncio.to_thread(worker.join)

    final = asyncio.run(follow())

    assert final.is_complete
    assert final.processed_rows == 20
    assert final.properties_created == 20


def test_status_bus_wakes_subscriber():
    bus = StatusBus()

    async def scenario():
        sub = bus.subscribe(["job-1"])
        threading.Thread(target=bus.publish, args=("job-1",)).start()
        await asyncio.wait_for(sub.event.wait(), timeout=5)
        bus.publish("job-2")
        bus.unsubscribe(sub)
        return sub.event.is_set()

    assert asyncio.run(scenario())
