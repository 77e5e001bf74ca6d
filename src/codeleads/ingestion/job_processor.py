"""
Ingestion Job Processor

Drives one IngestionJob through its fixed stage graph:

    QUEUED -> PARSING -> PROCESSING -> DEDUPING -> FINALIZING -> COMPLETE

with FAILED reachable from every non-terminal stage. Each stage works in
bounded batches and commits per batch, so a failure part-way leaves the
counters equal to the work that is actually committed.
"""
from datetime import date
from typing import Any, Dict, Optional

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.settings import settings
from src.codeleads.db.base import utcnow
from src.codeleads.db.models import IngestionJob, IngestionStatus, JobEventType, Violation
from src.codeleads.db.repository import (
    IngestionJobRepository,
    PropertyRepository,
    StagingRowRepository,
    ViolationRepository,
    chunked,
)
from src.codeleads.db.session import SessionFactory, session_scope
from src.codeleads.events.event_log import JobEventLog
from src.codeleads.exceptions import (
    CodeLeadsError,
    FatalJobError,
    InvalidTransitionError,
    NotFoundError,
    RowError,
    ValidationError,
)
from src.codeleads.ingestion.aggregator import StatusBus
from src.codeleads.ingestion.csv_reader import find_city_column, find_column, find_state_column, read_table
from src.codeleads.models.jobs import JobStatus
from src.codeleads.storage import ByteStore
from src.codeleads.transformers.address_standardizer import AddressStandardizer
from src.codeleads.transformers.location_validator import CityNameValidator, normalize_city, normalize_state
from src.codeleads.utils.logger import bound_context, get_logger

logger = get_logger(__name__)

S = IngestionStatus

ALLOWED_TRANSITIONS = {
    S.QUEUED: {S.PARSING, S.FAILED},
    S.PARSING: {S.PROCESSING, S.FAILED},
    S.PROCESSING: {S.DEDUPING, S.FAILED},
    S.DEDUPING: {S.FINALIZING, S.FAILED},
    S.FINALIZING: {S.COMPLETE, S.FAILED},
    S.COMPLETE: set(),
    S.FAILED: set(),
}

# Header aliases, tried in order
FIELD_ALIASES = {
    "address": ("address", "street_address", "property_address", "site_address", "location_address", "street"),
    "zip": ("zip", "zip_code", "zipcode", "postal_code", "zip5"),
    "case_id": ("case_id", "case_number", "case_no", "case", "file_number", "record_id"),
    "violation": ("violation", "violation_type", "violation_description", "description"),
    "status": ("status", "case_status"),
    "opened_date": ("opened_date", "open_date", "date_opened", "opened", "case_date"),
    "last_updated": ("last_updated", "last_updated_date", "updated_date", "status_date"),
}


def check_transition(current: IngestionStatus, target: IngestionStatus) -> None:
    """
    Raises:
        InvalidTransitionError: target is not the next stage or FAILED
    """
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move job from {current.value} to {target.value}",
            {"from": current.value, "to": target.value},
        )


def apply_transition(job: IngestionJob, target: IngestionStatus) -> None:
    check_transition(job.status, target)
    job.status = target
    if target.is_terminal:
        job.finished_at = utcnow()


def job_counters(job: IngestionJob) -> Dict[str, Any]:
    return {
        "status": job.status.value,
        "total_rows": job.total_rows,
        "processed_rows": job.processed_rows,
        "failed_rows": job.failed_rows,
        "properties_created": job.properties_created,
        "violations_created": job.violations_created,
        "error": job.error,
    }


def create_ingestion_job(
    source_handle: str,
    owner_id: str,
    fallback_city: Optional[str] = None,
    fallback_state: Optional[str] = None,
    fallback_county: Optional[str] = None,
    filename: Optional[str] = None,
    parent_job_id: Optional[str] = None,
    session_factory: Optional[SessionFactory] = None,
    event_log: Optional[JobEventLog] = None,
) -> str:
    """
    Create a QUEUED job and its ``queued`` event in one transaction.

    Returns:
        The new job id

    Raises:
        ValidationError: Fallback city or state is unusable
    """
    if fallback_city and not CityNameValidator().is_valid(fallback_city):
        raise ValidationError(f"Fallback city is not a valid city name: {fallback_city!r}")
    if fallback_state and normalize_state(fallback_state) is None:
        raise ValidationError(f"Fallback state must be a 2-letter code: {fallback_state!r}")

    event_log = event_log or JobEventLog(session_factory)
    with session_scope(session_factory) as session:
        job = IngestionJobRepository().create_job(
            session,
            owner_id=owner_id,
            source_handle=source_handle,
            filename=filename,
            fallback_city=normalize_city(fallback_city) if fallback_city else None,
            fallback_state=normalize_state(fallback_state) if fallback_state else None,
            fallback_county=fallback_county,
            parent_job_id=parent_job_id,
        )
        event_log.append(job.id, JobEventType.QUEUED, {"source": source_handle, "filename": filename}, session=session)
        return job.id


class IngestionJobProcessor:
    """
    Runs ingestion jobs to a terminal state.

    Usage:
        processor = IngestionJobProcessor(store=LocalByteStore())
        status = processor.run(job_id)
    """

    def __init__(
        self,
        store: ByteStore,
        session_factory: Optional[SessionFactory] = None,
        event_log: Optional[JobEventLog] = None,
        batch_size: Optional[int] = None,
        lookup_chunk_size: Optional[int] = None,
        max_failure_ratio: Optional[float] = None,
        validator: Optional[CityNameValidator] = None,
        status_bus: Optional[StatusBus] = None,
    ):
        self.store = store
        self.status_bus = status_bus
        self.session_factory = session_factory
        self.event_log = event_log or JobEventLog(session_factory)
        self.batch_size = batch_size or settings.ingestion_batch_size
        self.lookup_chunk_size = lookup_chunk_size or settings.ingestion_lookup_chunk_size
        self.max_failure_ratio = settings.ingestion_max_failure_ratio if max_failure_ratio is None else max_failure_ratio
        self.max_warnings = settings.ingestion_max_warnings
        self.validator = validator or CityNameValidator()
        self.standardizer = AddressStandardizer()

        self.jobs = IngestionJobRepository()
        self.staging = StagingRowRepository()
        self.properties = PropertyRepository()
        self.violations = ViolationRepository()

    def run(self, job_id: str) -> JobStatus:
        """
        Process a QUEUED job through every stage.

        Row-level problems never stop the job; a fatal condition moves it
        to FAILED. Either way the final snapshot is returned.

        Raises:
            NotFoundError: No such job
            InvalidTransitionError: Job is not QUEUED
        """
        with bound_context(job_id=job_id):
            self._begin(job_id)
            try:
                self._parse(job_id)
                self._process(job_id)
                self._dedupe(job_id)
                self._finalize(job_id)
            except (CodeLeadsError, SQLAlchemyError) as e:
                message = e.message if isinstance(e, CodeLeadsError) else f"Database error: {e}"
                logger.error("ingestion_job_failed", error=message, error_type=type(e).__name__)
                self._fail(job_id, message)
            except Exception as e:
                logger.exception("ingestion_job_crashed", error=str(e))
                self._fail(job_id, f"Unexpected error: {e}")
                raise
            return self.get_status(job_id)

    def get_status(self, job_id: str) -> JobStatus:
        with session_scope(self.session_factory) as session:
            job = self._load(session, job_id)
            return JobStatus.model_validate(job)

    def _publish(self, job_id: str) -> None:
        if self.status_bus is not None:
            self.status_bus.publish(job_id)

    def _load(self, session: Session, job_id: str) -> IngestionJob:
        job = self.jobs.get_by_id(session, job_id)
        if job is None:
            raise NotFoundError(f"Ingestion job {job_id} not found", {"job_id": job_id})
        return job

    def _advance(self, job_id: str, target: IngestionStatus) -> None:
        with session_scope(self.session_factory) as session:
            apply_transition(self._load(session, job_id), target)
        self._publish(job_id)
        logger.info("ingestion_stage_started", stage=target.value)

    def _begin(self, job_id: str) -> None:
        with session_scope(self.session_factory) as session:
            job = self._load(session, job_id)
            apply_transition(job, S.PARSING)
            job.started_at = utcnow()
            self.event_log.append(job_id, JobEventType.STARTED, {"source": job.source_handle}, session=session)
        self._publish(job_id)
        logger.info("ingestion_job_started")

    def _parse(self, job_id: str) -> None:
        with session_scope(self.session_factory) as session:
            handle = self._load(session, job_id).source_handle

        raw = self.store.get(handle)
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = raw.decode("latin-1")
        df = read_table(text)
        records = df.to_dict(orient="records")

        with session_scope(self.session_factory) as session:
            self._load(session, job_id).total_rows = len(records)

        numbered = list(enumerate(records, start=1))
        for batch in chunked(numbered, self.batch_size):
            with session_scope(self.session_factory) as session:
                self.staging.bulk_create(session, job_id, batch)

        logger.info("ingestion_rows_staged", total_rows=len(records))

    def _process(self, job_id: str) -> None:
        self._advance(job_id, S.PROCESSING)

        while True:
            with session_scope(self.session_factory) as session:
                rows = self.staging.next_unprocessed(session, job_id, self.batch_size)
                if not rows:
                    break
                job = self._load(session, job_id)
                warnings = list(job.warnings or [])
                failed = 0

                for row in rows:
                    try:
                        for key, value in self._normalize_row(row.row_num, row.raw, job).items():
                            setattr(row, key, value)
                    except RowError as e:
                        row.row_error = e.message
                        failed += 1
                        if len(warnings) < self.max_warnings:
                            warnings.append(e.message)
                    row.processed = True

                job.processed_rows += len(rows)
                job.failed_rows += failed
                job.warnings = warnings
                processed, failed_total = job.processed_rows, job.failed_rows

            logger.debug("ingestion_batch_processed", processed_rows=processed, failed_rows=failed_total)
            self._publish(job_id)
            if processed and failed_total / processed > self.max_failure_ratio:
                raise FatalJobError(
                    f"{failed_total} of {processed} rows failed validation "
                    f"(limit {self.max_failure_ratio:.0%})",
                    {"failed_rows": failed_total, "processed_rows": processed},
                )

    def _normalize_row(self, row_num: int, raw: Dict[str, str], job: IngestionJob) -> Dict[str, Any]:
        """
        Turn one raw record into property and violation candidate fields.

        Raises:
            RowError: The row lacks an address or a resolvable location, or
                carries an unparseable date
        """
        headers = list(raw.keys())

        def cell(field: str) -> str:
            column = find_column(headers, FIELD_ALIASES[field])
            return (raw.get(column) or "").strip() if column else ""

        address = cell("address")
        if not address:
            raise RowError(row_num, "missing address")

        city_col = find_city_column(headers)
        city = self.validator.normalize(raw.get(city_col)) if city_col else None
        city = city or job.fallback_city
        if not city:
            raise RowError(row_num, "no usable city and no fallback city")

        state_col = find_state_column(headers)
        state = normalize_state(raw.get(state_col)) if state_col else None
        state = state or job.fallback_state
        if not state:
            raise RowError(row_num, "no usable state and no fallback state")

        std = self.standardizer.standardize(address, city, state, cell("zip"))
        if not std.street_line:
            raise RowError(row_num, f"unparseable address {address!r}")

        return {
            "address": std.street_line,
            "city": city,
            "state": state,
            "zip_code": std.zip_code,
            "address_key": std.address_key,
            "case_id": cell("case_id") or None,
            "violation_type": cell("violation") or None,
            "violation_status": cell("status") or "Open",
            "opened_date": self._parse_date(row_num, "opened_date", cell("opened_date")),
            "last_updated": self._parse_date(row_num, "last_updated", cell("last_updated")),
        }

    @staticmethod
    def _parse_date(row_num: int, field: str, value: str) -> Optional[date]:
        if not value:
            return None
        try:
            parsed = pd.to_datetime(value)
        except (ValueError, OverflowError):
            raise RowError(row_num, f"invalid {field} {value!r}") from None
        if pd.isna(parsed):
            return None
        return parsed.date()

    def _dedupe(self, job_id: str) -> None:
        self._advance(job_id, S.DEDUPING)

        after_row = 0
        while True:
            with session_scope(self.session_factory) as session:
                rows = self.staging.iter_promotable(session, job_id, self.lookup_chunk_size, after_row)
                if not rows:
                    break
                after_row = rows[-1].row_num
                job = self._load(session, job_id)

                resolved = self.properties.find_ids_by_keys(
                    session, [r.address_key for r in rows], self.lookup_chunk_size
                )
                missing: Dict[str, Dict[str, Any]] = {}
                for row in rows:
                    if row.address_key not in resolved and row.address_key not in missing:
                        missing[row.address_key] = {
                            "address_key": row.address_key,
                            "address": row.address,
                            "city": row.city,
                            "state": row.state,
                            "zip_code": row.zip_code,
                            "county": job.fallback_county,
                        }

                created_total = 0
                for batch in chunked(list(missing.values()), self.batch_size):
                    ids, created = self.properties.insert_missing(session, batch)
                    resolved.update(ids)
                    created_total += created

                for row in rows:
                    row.property_id = resolved[row.address_key]

                job.properties_created += created_total

            logger.debug("ingestion_properties_resolved", rows=len(rows), created=created_total)

    def _finalize(self, job_id: str) -> None:
        self._advance(job_id, S.FINALIZING)
        today = date.today()

        after_row = 0
        while True:
            with session_scope(self.session_factory) as session:
                rows = self.staging.iter_promotable(session, job_id, self.batch_size, after_row)
                if not rows:
                    break
                after_row = rows[-1].row_num

                seen = self.violations.existing_case_ids(session, [r.property_id for r in rows])
                created = 0
                for row in rows:
                    if row.case_id:
                        if (row.property_id, row.case_id) in seen:
                            continue
                        seen.add((row.property_id, row.case_id))
                    session.add(Violation(
                        property_id=row.property_id,
                        source_job_id=job_id,
                        case_id=row.case_id,
                        violation_type=row.violation_type,
                        status=row.violation_status or "Open",
                        opened_date=row.opened_date,
                        last_updated=row.last_updated,
                        days_open=(today - row.opened_date).days if row.opened_date else None,
                    ))
                    created += 1

                self._load(session, job_id).violations_created += created

        with session_scope(self.session_factory) as session:
            job = self._load(session, job_id)
            job.processed_rows = job.total_rows
            apply_transition(job, S.COMPLETE)
            self.event_log.append(job_id, JobEventType.DONE, job_counters(job), session=session)
            counters = job_counters(job)
        self._publish(job_id)

        logger.info("ingestion_job_completed", **{k: v for k, v in counters.items() if k != "error"})

    def _fail(self, job_id: str, message: str) -> None:
        with session_scope(self.session_factory) as session:
            job = self.jobs.get_by_id(session, job_id)
            if job is None or job.status.is_terminal:
                return
            apply_transition(job, S.FAILED)
            job.error = message
            self.event_log.append(job_id, JobEventType.DONE, job_counters(job), session=session)
        self._publish(job_id)
