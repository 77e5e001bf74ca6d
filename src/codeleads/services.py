"""
Service Facade

Wires the ingestion pipeline, the credit ledger and the enrichment manager
around one session factory and byte store. The API and the CLI talk to
these services rather than to the components directly.
"""
from functools import lru_cache
from typing import List, Optional, Sequence

from src.codeleads.credits.consent import ConsentStore
from src.codeleads.credits.ledger import CreditLedger
from src.codeleads.db.session import SessionFactory, session_scope
from src.codeleads.db.repository import IngestionJobRepository
from src.codeleads.enrichment.manager import EnrichmentJobManager
from src.codeleads.enrichment.vendor_client import SkipTraceClient
from src.codeleads.events.event_log import JobEventLog
from src.codeleads.exceptions import NotFoundError
from src.codeleads.ingestion import job_processor
from src.codeleads.ingestion.aggregator import MultiJobAggregator, ProgressWatcher, StatusBus
from src.codeleads.ingestion.csv_splitter import CsvSplitter, SplitResult
from src.codeleads.ingestion.location_detector import LocationDetector
from src.codeleads.ingestion.orchestrator import BatchJobOrchestrator
from src.codeleads.models.jobs import JobEventView, JobStatus, RunStatus
from src.codeleads.notifications import send_slack_notification
from src.codeleads.storage import ByteStore, LocalByteStore
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)


class CodeLeadsServices:
    """
    One wired set of components.

    Args:
        session_factory: Session factory (defaults to the configured database)
        store: Byte store for uploads (defaults to LocalByteStore)
        vendor_client: Skip-trace client (defaults to SkipTraceClient)
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None, store: Optional[ByteStore] = None,
                 vendor_client: Optional[SkipTraceClient] = None):
        self.session_factory = session_factory
        self.store = store or LocalByteStore()
        self.status_bus = StatusBus()
        self.event_log = JobEventLog(session_factory)
        self.ledger = CreditLedger(session_factory)
        self.consent = ConsentStore(session_factory)
        self.detector = LocationDetector()
        self.splitter = CsvSplitter()
        self.aggregator = MultiJobAggregator(session_factory)
        self.watcher = ProgressWatcher(self.aggregator, self.status_bus)
        self.orchestrator = BatchJobOrchestrator(
            store=self.store,
            session_factory=session_factory,
            event_log=self.event_log,
            splitter=self.splitter,
            status_bus=self.status_bus,
            notifier=send_slack_notification,
        )
        self.enrichment = EnrichmentJobManager(
            client=vendor_client or SkipTraceClient(),
            session_factory=session_factory,
            ledger=self.ledger,
            consent=self.consent,
            event_log=self.event_log,
            notifier=send_slack_notification,
        )

    def create_ingestion_job(self, byte_handle: str, owner: str, fallback_city: Optional[str] = None,
                             fallback_state: Optional[str] = None, fallback_county: Optional[str] = None,
                             filename: Optional[str] = None) -> str:
        return job_processor.create_ingestion_job(
            byte_handle, owner,
            fallback_city=fallback_city,
            fallback_state=fallback_state,
            fallback_county=fallback_county,
            filename=filename,
            session_factory=self.session_factory,
            event_log=self.event_log,
        )

    def get_job_status(self, job_id: str) -> JobStatus:
        with session_scope(self.session_factory) as session:
            job = IngestionJobRepository().get_by_id(session, job_id)
            if job is None:
                raise NotFoundError(f"Ingestion job {job_id} not found", {"job_id": job_id})
            return JobStatus.model_validate(job)

    def split_by_location(self, csv_text: str, fallback_city: Optional[str] = None,
                          fallback_state: Optional[str] = None) -> SplitResult:
        return self.splitter.split(csv_text, fallback_city, fallback_state)

    async def start_enrichment_run(self, user_id: str, property_ids: Sequence[str], consent_ok: bool = False,
                                   client_ip: Optional[str] = None, user_agent: Optional[str] = None) -> str:
        return await self.enrichment.start_run(
            user_id, property_ids, consent_ok=consent_ok, client_ip=client_ip, user_agent=user_agent
        )

    def list_jobs(self, owner: str, limit: int = 20) -> List[JobStatus]:
        with session_scope(self.session_factory) as session:
            jobs = IngestionJobRepository().get_recent_for_owner(session, owner, limit=limit)
            return [JobStatus.model_validate(job) for job in jobs]

    def get_run_status(self, run_id: str) -> RunStatus:
        return self.enrichment.get_run_status(run_id)

    def get_job_events(self, job_or_run_id: str) -> List[JobEventView]:
        return self.event_log.get_events(job_or_run_id)


@lru_cache(maxsize=1)
def get_services() -> CodeLeadsServices:
    """Process-wide services bound to the configured database and storage."""
    logger.info("services_initialized")
    return CodeLeadsServices()
