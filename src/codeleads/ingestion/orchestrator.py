"""
Batch Job Orchestrator

Turns one multi-location upload into independent per-location ingestion
jobs. Job creation is submitted in fixed-width batches with a pause in
between; batch i finishes before batch i+1 starts, while creations inside a
batch run concurrently. A creation that fails is reported on its own and
never affects its siblings.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from config.settings import settings
from src.codeleads.db.base import new_uuid
from src.codeleads.db.repository import chunked
from src.codeleads.db.session import SessionFactory
from src.codeleads.events.event_log import JobEventLog
from src.codeleads.exceptions import ValidationError
from src.codeleads.ingestion.aggregator import StatusBus, merge_statuses
from src.codeleads.ingestion.csv_splitter import CsvSplitter, SplitResult
from src.codeleads.ingestion.job_processor import IngestionJobProcessor, create_ingestion_job
from src.codeleads.models.jobs import JobStatus
from src.codeleads.notifications import format_ingestion_summary
from src.codeleads.storage import ByteStore
from src.codeleads.utils.logger import get_logger

logger = get_logger(__name__)

# async (source_handle, owner_id, fallback_city, fallback_state, fallback_county, filename, parent_job_id) -> job_id
JobCreator = Callable[..., Awaitable[str]]


@dataclass
class JobCreation:
    """Outcome of creating the job for one location group."""
    key: str
    city: str
    state: str
    row_count: int
    batch_index: int
    job_id: Optional[str] = None
    source_handle: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.job_id is not None


@dataclass
class SubmissionResult:
    upload_id: str
    total_rows: int
    skipped_rows: int
    creations: List[JobCreation] = field(default_factory=list)

    @property
    def job_ids(self) -> List[str]:
        return [c.job_id for c in self.creations if c.ok]

    @property
    def failed(self) -> List[JobCreation]:
        return [c for c in self.creations if not c.ok]


class BatchJobOrchestrator:
    """
    Splits, stores and submits per-location jobs.

    Usage:
        orchestrator = BatchJobOrchestrator(store=LocalByteStore())
        result = await orchestrator.submit(csv_text, owner_id="user-1", filename="march.csv")
    """

    def __init__(
        self,
        store: ByteStore,
        session_factory: Optional[SessionFactory] = None,
        job_creator: Optional[JobCreator] = None,
        event_log: Optional[JobEventLog] = None,
        splitter: Optional[CsvSplitter] = None,
        status_bus: Optional[StatusBus] = None,
        batch_width: Optional[int] = None,
        batch_delay: Optional[float] = None,
        max_concurrent_jobs: Optional[int] = None,
        notifier: Optional[Callable[[str], object]] = None,
    ):
        self.store = store
        self.session_factory = session_factory
        self.event_log = event_log or JobEventLog(session_factory)
        self.job_creator = job_creator or self._create_job
        self.splitter = splitter or CsvSplitter()
        self.status_bus = status_bus
        self.batch_width = batch_width or settings.orchestrator_batch_width
        self.batch_delay = settings.orchestrator_batch_delay_seconds if batch_delay is None else batch_delay
        self.max_concurrent_jobs = max_concurrent_jobs or settings.ingestion_max_concurrent_jobs
        self.notifier = notifier

    async def _create_job(self, **kwargs) -> str:
        return await asyncio.to_thread(
            create_ingestion_job,
            session_factory=self.session_factory,
            event_log=self.event_log,
            **kwargs,
        )

    async def submit(
        self,
        csv_text: str,
        owner_id: str,
        filename: str = "upload.csv",
        fallback_city: Optional[str] = None,
        fallback_state: Optional[str] = None,
        fallback_county: Optional[str] = None,
        process: bool = False,
    ) -> SubmissionResult:
        """
        Split an upload and create one job per location group.

        Args:
            csv_text: Raw CSV text
            owner_id: Uploading user
            filename: Original filename, used to name the split files
            fallback_city: City for rows without one
            fallback_state: State for rows without one
            fallback_county: County recorded on created properties
            process: Also run the created jobs through the processing pool

        Returns:
            SubmissionResult with one JobCreation per group

        Raises:
            ValidationError: Malformed CSV, bad fallback, or no usable group
        """
        split = await asyncio.to_thread(self.splitter.split, csv_text, fallback_city, fallback_state)
        if not split.groups:
            raise ValidationError(
                "No rows with a detectable city and state; supply a fallback city and state",
                {"total_rows": split.total_rows, "skipped_rows": split.skipped_rows},
            )

        upload_id = new_uuid()
        result = SubmissionResult(upload_id=upload_id, total_rows=split.total_rows, skipped_rows=split.skipped_rows)
        keys = list(split.groups)

        logger.info(
            "split_submission_started",
            upload_id=upload_id,
            groups=len(keys),
            batch_width=self.batch_width,
            skipped_rows=split.skipped_rows,
        )

        for batch_index, batch in enumerate(chunked(keys, self.batch_width)):
            if batch_index:
                await asyncio.sleep(self.batch_delay)
            creations = await asyncio.gather(*(
                self._submit_group(split, key, batch_index, owner_id, filename, fallback_county, upload_id)
                for key in batch
            ))
            result.creations.extend(creations)
            logger.info(
                "split_batch_submitted",
                upload_id=upload_id,
                batch_index=batch_index,
                created=sum(1 for c in creations if c.ok),
                failed=sum(1 for c in creations if not c.ok),
            )

        if result.failed:
            logger.warning("split_job_creation_failures", upload_id=upload_id, failed=[c.key for c in result.failed])

        if process and result.job_ids:
            await self.process_jobs(result.job_ids)

        return result

    async def _submit_group(self, split: SplitResult, key: str, batch_index: int, owner_id: str,
                            filename: str, fallback_county: Optional[str], upload_id: str) -> JobCreation:
        city, state = SplitResult.split_key(key)
        creation = JobCreation(key=key, city=city, state=state,
                               row_count=len(split.groups[key]), batch_index=batch_index)
        split_name = f"{city}_{state}_{filename}"
        try:
            data = split.to_csv(key).encode("utf-8")
            creation.source_handle = await asyncio.to_thread(self.store.put, owner_id, split_name, data, "splits")
            creation.job_id = await self.job_creator(
                source_handle=creation.source_handle,
                owner_id=owner_id,
                fallback_city=city,
                fallback_state=state,
                fallback_county=fallback_county,
                filename=split_name,
                parent_job_id=upload_id,
            )
        except Exception as e:
            logger.exception("split_job_creation_failed", key=key, error=str(e))
            creation.error = str(e) or type(e).__name__
        return creation

    async def process_jobs(self, job_ids: List[str]) -> List[JobStatus]:
        """
        Run jobs through a bounded pool of processors.

        Returns:
            Final snapshots in job_ids order
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_jobs)
        processor = IngestionJobProcessor(
            store=self.store,
            session_factory=self.session_factory,
            event_log=self.event_log,
            status_bus=self.status_bus,
        )

        async def run_one(job_id: str) -> JobStatus:
            async with semaphore:
                return await asyncio.to_thread(processor.run, job_id)

        results = list(await asyncio.gather(*(run_one(job_id) for job_id in job_ids)))
        if self.notifier is not None and results:
            await asyncio.to_thread(self.notifier, format_ingestion_summary(merge_statuses(results, job_ids)))
        return results
