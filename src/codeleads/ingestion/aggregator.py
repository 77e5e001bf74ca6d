"""
Multi-Job Progress

Merges the jobs created from one split upload into a single progress view,
and lets callers follow that view as it changes.

Push and polling share one loop: ProgressWatcher re-reads the jobs either
when the StatusBus reports a change to one of them or when the poll
interval elapses, whichever comes first.
"""
import asyncio
import threading
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence, Set

from config.settings import settings
from src.codeleads.db.models import IngestionStatus
from src.codeleads.db.repository import IngestionJobRepository
from src.codeleads.db.session import SessionFactory, session_scope
from src.codeleads.models.jobs import AggregateProgress, JobStatus
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(eq=False)
class Subscription:
    job_ids: Set[str]
    loop: asyncio.AbstractEventLoop
    event: asyncio.Event = field(default_factory=asyncio.Event)


class StatusBus:
    """
    In-process change notifications for jobs.

    publish() may be called from any thread (job processors run in worker
    threads); waiters are woken on their own event loop.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    def subscribe(self, job_ids: Iterable[str]) -> Subscription:
        """Must be called from inside a running event loop."""
        sub = Subscription(job_ids=set(job_ids), loop=asyncio.get_running_loop())
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def publish(self, job_id: str) -> None:
        with self._lock:
            targets = [s for s in self._subscriptions if job_id in s.job_ids]
        for sub in targets:
            if not sub.loop.is_closed():
                sub.loop.call_soon_threadsafe(sub.event.set)


def merge_statuses(statuses: Sequence[JobStatus], requested_ids: Sequence[str]) -> AggregateProgress:
    """
    Combine per-job snapshots.

    Args:
        statuses: Snapshots of the jobs that still exist
        requested_ids: Every id the caller asked about

    Returns:
        AggregateProgress; requested ids with no snapshot are listed in
        missing_job_ids instead of raising
    """
    by_id: Dict[str, JobStatus] = {s.job_id: s for s in statuses}
    ordered = [by_id[jid] for jid in dict.fromkeys(requested_ids) if jid in by_id]
    missing = [jid for jid in dict.fromkeys(requested_ids) if jid not in by_id]

    completed = sum(1 for s in ordered if s.status == IngestionStatus.COMPLETE)
    failed = sum(1 for s in ordered if s.status == IngestionStatus.FAILED)

    return AggregateProgress(
        jobs=ordered,
        total_jobs=len(ordered),
        completed_jobs=completed,
        failed_jobs=failed,
        total_rows=sum(s.total_rows for s in ordered),
        processed_rows=sum(s.processed_rows for s in ordered),
        failed_rows=sum(s.failed_rows for s in ordered),
        properties_created=sum(s.properties_created for s in ordered),
        violations_created=sum(s.violations_created for s in ordered),
        is_processing=any(not s.is_terminal for s in ordered),
        is_complete=bool(ordered) and completed == len(ordered),
        is_failed=failed > 0,
        missing_job_ids=missing,
    )


class MultiJobAggregator:
    """Loads job snapshots and merges them."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory
        self.jobs = IngestionJobRepository()

    def snapshots(self, job_ids: Sequence[str]) -> List[JobStatus]:
        with session_scope(self.session_factory) as session:
            return [JobStatus.model_validate(job) for job in self.jobs.get_many(session, job_ids)]

    def aggregate(self, job_ids: Sequence[str]) -> AggregateProgress:
        progress = merge_statuses(self.snapshots(job_ids), job_ids)
        if progress.missing_job_ids:
            logger.warning("aggregate_jobs_missing", missing=progress.missing_job_ids)
        return progress


class ProgressWatcher:
    """
    Follows an AggregateProgress until no job is still running.

    Usage:
        watcher = ProgressWatcher(aggregator, bus)
        async for progress in watcher.watch(job_ids):
            render(progress)
    """

    def __init__(self, aggregator: MultiJobAggregator, bus: Optional[StatusBus] = None,
                 poll_interval: Optional[float] = None):
        self.aggregator = aggregator
        self.bus = bus
        self.poll_interval = poll_interval or settings.progress_poll_interval_seconds

    async def watch(self, job_ids: Sequence[str]) -> AsyncIterator[AggregateProgress]:
        """
        Yield a snapshot each time the merged progress changes.

        Stops after yielding the first snapshot with is_processing False.
        """
        sub = self.bus.subscribe(job_ids) if self.bus else None
        try:
            last: Optional[AggregateProgress] = None
            while True:
                progress = await asyncio.to_thread(self.aggregator.aggregate, list(job_ids))
                if progress != last:
                    yield progress
                    last = progress
                if not progress.is_processing:
                    return
                await self._wait(sub)
        finally:
            if sub is not None:
                self.bus.unsubscribe(sub)

    async def _wait(self, sub: Optional[Subscription]) -> None:
        if sub is None:
            await asyncio.sleep(self.poll_interval)
            return
        try:
            await asyncio.wait_for(sub.event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
        sub.event.clear()

    async def wait_until_done(self, job_ids: Sequence[str], timeout: Optional[float] = None) -> AggregateProgress:
        """
        Block until every job is terminal.

        Raises:
            asyncio.TimeoutError: timeout elapsed first
        """
        async def _drain() -> AggregateProgress:
            final = None
            async for progress in self.watch(job_ids):
                final = progress
            return final

        return await asyncio.wait_for(_drain(), timeout=timeout)
