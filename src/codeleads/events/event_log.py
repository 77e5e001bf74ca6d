"""
Job Event Log

Append-only timeline shared by ingestion jobs and enrichment runs. Events
reference their job by id only, so a timeline stays readable after the job
or run row is deleted.
"""
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import select, and_, or_
from sqlalchemy.orm import Session

from src.codeleads.db.models import JobEvent, JobEventType
from src.codeleads.db.session import SessionFactory, session_scope
from src.codeleads.models.jobs import JobEventView
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)


class EventTimeline:
    """
    Lazy, restartable iterable over one job's events.

    Each iteration starts from the beginning and fetches keyset pages
    ordered by (timestamp, id); nothing is held between iterations.
    """

    def __init__(self, log: "JobEventLog", job_id: str, page_size: int = 100):
        self._log = log
        self.job_id = job_id
        self.page_size = page_size

    def __iter__(self) -> Iterator[JobEventView]:
        after: Optional[tuple] = None
        while True:
            page = self._log.fetch_page(self.job_id, after=after, limit=self.page_size)
            yield from page
            if len(page) < self.page_size:
                return
            last = page[-1]
            after = (last.timestamp, last.id)


class JobEventLog:
    """Writes and reads job_events."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory

    def append(self, job_id: str, event_type: JobEventType, payload: Optional[Dict[str, Any]] = None,
               session: Optional[Session] = None) -> JobEventView:
        """
        Append one event.

        Args:
            job_id: Ingestion job id or enrichment run id
            event_type: queued, started, refunded or done
            payload: JSON-serializable details
            session: Join the caller's transaction instead of opening one

        Returns:
            The stored event
        """
        if session is not None:
            return self._append(session, job_id, event_type, payload)
        with session_scope(self.session_factory) as own:
            return self._append(own, job_id, event_type, payload)

    @staticmethod
    def _append(session: Session, job_id: str, event_type: JobEventType,
                payload: Optional[Dict[str, Any]]) -> JobEventView:
        event = JobEvent(job_id=job_id, type=JobEventType(event_type), payload=payload or {})
        session.add(event)
        session.flush()
        logger.debug("job_event_appended", job_id=job_id, type=event.type.value)
        return JobEventView.model_validate(event)

    def fetch_page(self, job_id: str, after: Optional[tuple] = None, limit: int = 100) -> List[JobEventView]:
        """
        One keyset page of a job's events.

        Args:
            job_id: Job or run id
            after: (timestamp, id) of the last event already seen
            limit: Page size
        """
        query = select(JobEvent).where(JobEvent.job_id == job_id)
        if after is not None:
            ts, event_id = after
            query = query.where(
                or_(
                    JobEvent.timestamp > ts,
                    and_(JobEvent.timestamp == ts, JobEvent.id > event_id),
                )
            )
        query = query.order_by(JobEvent.timestamp, JobEvent.id).limit(limit)

        with session_scope(self.session_factory) as session:
            rows = session.execute(query).scalars().all()
            return [JobEventView.model_validate(row) for row in rows]

    def timeline(self, job_id: str, page_size: int = 100) -> EventTimeline:
        return EventTimeline(self, job_id, page_size)

    def get_events(self, job_id: str) -> List[JobEventView]:
        return list(self.timeline(job_id))

