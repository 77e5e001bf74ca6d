"""
Enrichment Job Manager

Credit-metered bulk skip tracing. Starting a run checks, in order:

    1. consent on file (recorded first when the caller passes consent_ok)
    2. the per-user cap on unfinished runs
    3. a single ledger charge for every unique property

Nothing irreversible happens before all three pass. The run is then
dispatched to a fixed pool of workers draining a queue of properties. Each
property ends with exactly one outcome row, written in the same transaction
as the run's counter update; failures are refunded one credit each, keyed
so that a repeated refund is a no-op.
"""
import asyncio
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from config.settings import settings
from src.codeleads.credits.consent import ConsentStore
from src.codeleads.credits.ledger import REASON_REFUND, CreditLedger, refund_key
from src.codeleads.db.base import new_uuid, utcnow
from src.codeleads.db.models import (
    EnrichmentOutcome,
    EnrichmentRun,
    JobEventType,
    OutcomeStatus,
    Property,
    PropertyContact,
)
from src.codeleads.db.repository import EnrichmentRunRepository
from src.codeleads.db.session import SessionFactory, session_scope, with_retry
from src.codeleads.enrichment.vendor_client import ContactRecord, SkipTraceClient
from src.codeleads.events.event_log import JobEventLog
from src.codeleads.exceptions import (
    CodeLeadsError,
    ConsentRequiredError,
    InvalidTransitionError,
    NotFoundError,
    RunLimitExceededError,
    ValidationError,
    VendorError,
    VendorNoMatch,
    VendorTimeoutError,
)
from src.codeleads.models.jobs import RunStatus
from src.codeleads.notifications import format_enrichment_summary
from src.codeleads.utils.logger import bound_context, get_logger

logger = get_logger(__name__)

RERUNNABLE_STATUSES = (OutcomeStatus.NO_MATCH, OutcomeStatus.VENDOR_ERROR, OutcomeStatus.TIMEOUT)


@dataclass
class PropertyTask:
    property_id: str
    address: Optional[str]


@dataclass
class Outcome:
    status: OutcomeStatus
    attempts: int = 0
    contacts: List[ContactRecord] = field(default_factory=list)
    raw: Optional[dict] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS


@dataclass
class RunContext:
    run_id: str
    user_id: str
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    # property_id -> outcome whose write kept failing
    unsettled: Dict[str, Outcome] = field(default_factory=dict)


@dataclass
class StartLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


def single_line_address(prop: Property) -> str:
    locality = " ".join(p for p in (prop.state, prop.zip_code) if p)
    return ", ".join(p for p in (prop.address, prop.city, locality) if p)


class EnrichmentJobManager:
    """
    Starts, dispatches, cancels and reports enrichment runs.

    Usage:
        manager = EnrichmentJobManager(client=SkipTraceClient())
        run_id = await manager.start_run("user-1", property_ids, consent_ok=True)
        status = await manager.wait(run_id)
    """

    def __init__(
        self,
        client: SkipTraceClient,
        session_factory: Optional[SessionFactory] = None,
        ledger: Optional[CreditLedger] = None,
        consent: Optional[ConsentStore] = None,
        event_log: Optional[JobEventLog] = None,
        max_concurrent_calls: Optional[int] = None,
        max_active_runs: Optional[int] = None,
        call_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        notifier: Optional[Callable[[str], bool]] = None,
        write_retries: int = 3,
        write_retry_delay: float = 1.0,
    ):
        self.client = client
        self.session_factory = session_factory
        self.ledger = ledger or CreditLedger(session_factory)
        self.consent = consent or ConsentStore(session_factory)
        self.event_log = event_log or JobEventLog(session_factory)
        self.max_concurrent_calls = max_concurrent_calls or settings.enrichment_max_concurrent_calls
        self.max_active_runs = max_active_runs or settings.enrichment_max_active_runs_per_user
        self.call_timeout = call_timeout or settings.vendor_timeout_seconds
        self.max_attempts = max_attempts or settings.vendor_max_attempts
        self.retry_backoff = settings.vendor_retry_backoff_seconds if retry_backoff is None else retry_backoff
        self.notifier = notifier
        self.write_retries = write_retries
        self.write_retry_delay = write_retry_delay
        self.runs = EnrichmentRunRepository()

        self._contexts: Dict[str, RunContext] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._start_locks: Dict[str, StartLock] = {}

    async def start_run(
        self,
        user_id: str,
        property_ids: Sequence[str],
        consent_ok: bool = False,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        rerun_of: Optional[str] = None,
    ) -> str:
        """
        Charge for and schedule a run.

        Args:
            user_id: Caller identity
            property_ids: Properties to skip trace (duplicates are ignored)
            consent_ok: Caller accepted the terms with this request
            client_ip: Recorded (hashed) with a new consent
            user_agent: Recorded with a new consent
            rerun_of: Run whose failures this run retries

        Returns:
            The run id

        Raises:
            ValidationError: No property ids
            ConsentRequiredError: No consent on file; nothing charged
            RunLimitExceededError: Too many unfinished runs; nothing charged
            InsufficientCreditsError: Balance too low; nothing charged or dispatched
        """
        ids = list(dict.fromkeys(pid for pid in property_ids if pid))
        if not ids:
            raise ValidationError("At least one property id is required")

        # One start at a time per user
        entry = self._start_locks.setdefault(user_id, StartLock())
        entry.holders += 1
        try:
            async with entry.lock:
                run_id = await self._gate_and_charge(user_id, ids, consent_ok, client_ip, user_agent, rerun_of)
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._start_locks.pop(user_id, None)

        context = RunContext(run_id=run_id, user_id=user_id)
        self._contexts[run_id] = context
        task = asyncio.create_task(self._dispatch(context, ids))
        task.add_done_callback(partial(self._on_dispatch_done, run_id))
        self._tasks[run_id] = task
        logger.info("enrichment_run_started", run_id=run_id, user_id=user_id, properties=len(ids))
        return run_id

    async def rerun_failed(
        self,
        run_id: str,
        user_id: str,
        consent_ok: bool = False,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Optional[str], int]:
        """
        Start a new run over the properties a finished run could not enrich.

        Properties that ended no_match, vendor_error or timeout are charged
        again through start_run, so consent, the run cap and the balance
        are checked as for any other run.

        Returns:
            (new run id, property count); (None, 0) when nothing failed

        Raises:
            NotFoundError: No such run, or it belongs to another user
            InvalidTransitionError: The run has not finished yet
        """
        status = await asyncio.to_thread(self.get_run_status, run_id)
        if status.owner_id != user_id:
            raise NotFoundError(f"Enrichment run {run_id} not found", {"run_id": run_id})
        if not status.is_finished:
            raise InvalidTransitionError(
                f"Enrichment run {run_id} is still running", {"run_id": run_id, "queued": status.queued}
            )

        ids = await asyncio.to_thread(self._rerunnable_property_ids, run_id)
        if not ids:
            logger.info("enrichment_rerun_nothing_failed", run_id=run_id)
            return None, 0

        new_run_id = await self.start_run(
            user_id, ids, consent_ok=consent_ok, client_ip=client_ip, user_agent=user_agent, rerun_of=run_id
        )
        logger.info("enrichment_rerun_started", run_id=new_run_id, rerun_of=run_id, properties=len(ids))
        return new_run_id, len(ids)

    async def _gate_and_charge(self, user_id: str, ids: List[str], consent_ok: bool, client_ip: Optional[str],
                               user_agent: Optional[str], rerun_of: Optional[str]) -> str:
        if consent_ok:
            await asyncio.to_thread(self.consent.record, user_id, client_ip, user_agent)
        if not await asyncio.to_thread(self.consent.has_consent, user_id):
            logger.warning("enrichment_consent_missing", user_id=user_id)
            raise ConsentRequiredError(user_id)

        active = await asyncio.to_thread(self._count_active, user_id)
        if active >= self.max_active_runs:
            logger.warning("enrichment_run_limit_reached", user_id=user_id, active_runs=active)
            raise RunLimitExceededError(user_id, active, self.max_active_runs)

        run_id = new_uuid()
        await asyncio.to_thread(
            self.ledger.charge, user_id, len(ids), correlation_id=run_id, meta={"properties": len(ids)}
        )
        try:
            await asyncio.to_thread(self._create_run, run_id, user_id, ids, rerun_of)
        except Exception:
            logger.exception("enrichment_run_create_failed", run_id=run_id)
            await asyncio.to_thread(
                self.ledger.refund, user_id, len(ids),
                correlation_id=run_id, idempotency_key=f"charge-reversal:{run_id}",
            )
            raise
        return run_id

    def _on_dispatch_done(self, run_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(run_id, None)
        self._contexts.pop(run_id, None)
        if task.cancelled():
            logger.warning("enrichment_dispatch_cancelled", run_id=run_id)
        elif task.exception() is not None:
            logger.error("enrichment_dispatch_crashed", run_id=run_id, error=repr(task.exception()))

    async def wait(self, run_id: str) -> RunStatus:
        """Wait for a run dispatched by this manager and return its final status."""
        task = self._tasks.get(run_id)
        if task is not None:
            await task
        return await asyncio.to_thread(self.get_run_status, run_id)

    async def cancel_run(self, run_id: str) -> RunStatus:
        """
        Stop dispatching new calls for a run.

        In-flight calls finish with their own outcome; properties never
        dispatched are recorded as cancelled and refunded.

        Raises:
            NotFoundError: No such run
        """
        status = await asyncio.to_thread(self._mark_cancelled, run_id)
        if status.is_finished:
            return status

        context = self._contexts.get(run_id)
        if context is not None:
            context.cancelled.set()
            logger.info("enrichment_run_cancel_requested", run_id=run_id)
            return status

        # Dispatched elsewhere or lost: settle the leftovers here
        context = RunContext(run_id=run_id, user_id=status.owner_id)
        pending = await asyncio.to_thread(self._pending_property_ids, run_id)
        for property_id in pending:
            await self._settle(context, PropertyTask(property_id, None), Outcome(OutcomeStatus.CANCELLED))
        return await asyncio.to_thread(self.get_run_status, run_id)

    def get_run_status(self, run_id: str) -> RunStatus:
        with session_scope(self.session_factory) as session:
            run = self.runs.get_by_id(session, run_id)
            if run is None:
                raise NotFoundError(f"Enrichment run {run_id} not found", {"run_id": run_id})
            return RunStatus.model_validate(run)

    def get_outcomes(self, run_id: str) -> List[dict]:
        with session_scope(self.session_factory) as session:
            return [
                {
                    "property_id": o.property_id,
                    "status": o.status.value,
                    "attempts": o.attempts,
                    "contacts_found": o.contacts_found,
                    "error": o.error,
                }
                for o in self.runs.get_outcomes(session, run_id)
            ]

    def _count_active(self, user_id: str) -> int:
        with session_scope(self.session_factory) as session:
            return self.runs.count_active(session, user_id)

    def _create_run(self, run_id: str, user_id: str, ids: List[str], rerun_of: Optional[str] = None) -> None:
        with session_scope(self.session_factory) as session:
            session.add(EnrichmentRun(
                run_id=run_id,
                owner_id=user_id,
                total=len(ids),
                queued=len(ids),
                succeeded=0,
                failed=0,
                settings_snapshot={
                    "property_ids": ids,
                    "max_concurrent_calls": self.max_concurrent_calls,
                    "call_timeout": self.call_timeout,
                    "max_attempts": self.max_attempts,
                    "rerun_of": rerun_of,
                },
            ))
            session.flush()
            self.event_log.append(run_id, JobEventType.QUEUED, {"total": len(ids)}, session=session)

    def _mark_cancelled(self, run_id: str) -> RunStatus:
        with session_scope(self.session_factory) as session:
            run = self.runs.get_by_id(session, run_id)
            if run is None:
                raise NotFoundError(f"Enrichment run {run_id} not found", {"run_id": run_id})
            if run.finished_at is None and run.cancelled_at is None:
                run.cancelled_at = utcnow()
            return RunStatus.model_validate(run)

    def _pending_property_ids(self, run_id: str) -> List[str]:
        with session_scope(self.session_factory) as session:
            run = self.runs.get_by_id(session, run_id)
            done = self.runs.outcome_property_ids(session, run_id)
            return [pid for pid in run.settings_snapshot.get("property_ids", []) if pid not in done]

    def _rerunnable_property_ids(self, run_id: str) -> List[str]:
        with session_scope(self.session_factory) as session:
            run = self.runs.get_by_id(session, run_id)
            failed = self.runs.outcome_property_ids(session, run_id, statuses=RERUNNABLE_STATUSES)
            return [pid for pid in run.settings_snapshot.get("property_ids", []) if pid in failed]

    def _load_tasks(self, ids: List[str]) -> List[PropertyTask]:
        with session_scope(self.session_factory) as session:
            found = {
                p.id: single_line_address(p)
                for p in session.execute(select(Property).where(Property.id.in_(ids))).scalars()
            }
        return [PropertyTask(pid, found.get(pid)) for pid in ids]

    async def _dispatch(self, context: RunContext, ids: List[str]) -> None:
        with bound_context(run_id=context.run_id):
            await asyncio.to_thread(
                self.event_log.append, context.run_id, JobEventType.STARTED,
                {"workers": min(self.max_concurrent_calls, len(ids))},
            )
            tasks = await asyncio.to_thread(self._load_tasks, ids)

            queue: asyncio.Queue = asyncio.Queue()
            for task in tasks:
                queue.put_nowait(task)

            workers = [
                asyncio.create_task(self._worker(context, queue))
                for _ in range(min(self.max_concurrent_calls, len(tasks)))
            ]
            await asyncio.gather(*workers)
            await self._settle_leftovers(context)

            status = await asyncio.to_thread(self.get_run_status, context.run_id)
            logger.info(
                "enrichment_run_finished",
                succeeded=status.succeeded,
                failed=status.failed,
                cancelled=status.cancelled_at is not None,
            )
            if self.notifier is not None:
                await asyncio.to_thread(self.notifier, format_enrichment_summary(status))

    async def _worker(self, context: RunContext, queue: asyncio.Queue) -> None:
        while True:
            try:
                task = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            if context.cancelled.is_set():
                outcome = Outcome(OutcomeStatus.CANCELLED, error="run cancelled")
            else:
                outcome = await self._call_vendor(task)
            try:
                await self._settle(context, task, outcome)
            except (SQLAlchemyError, CodeLeadsError) as e:
                logger.error("enrichment_outcome_write_failed", property_id=task.property_id, error=str(e))
                context.unsettled[task.property_id] = outcome

    async def _settle_leftovers(self, context: RunContext) -> None:
        """Give every property the workers could not record a final outcome."""
        pending = await asyncio.to_thread(self._pending_property_ids, context.run_id)
        for property_id in pending:
            outcome = context.unsettled.pop(property_id, None) or Outcome(
                OutcomeStatus.VENDOR_ERROR, error="outcome was not recorded"
            )
            try:
                await self._settle(context, PropertyTask(property_id, None), outcome)
            except (SQLAlchemyError, CodeLeadsError):
                logger.exception("enrichment_outcome_unrecoverable", property_id=property_id)

    async def _call_vendor(self, task: PropertyTask) -> Outcome:
        """
        Look one property up with retries.

        A no-match answer ends the attempts immediately; timeouts and
        retryable vendor errors are retried after a constant backoff.
        """
        if task.address is None:
            return Outcome(OutcomeStatus.VENDOR_ERROR, error="property not found")

        outcome = Outcome(OutcomeStatus.VENDOR_ERROR)
        for attempt in range(1, self.max_attempts + 1):
            outcome.attempts = attempt
            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(self.client.lookup, task.address),
                    timeout=self.call_timeout,
                )
                return Outcome(OutcomeStatus.SUCCESS, attempts=attempt, contacts=result.contacts, raw=result.raw)
            except VendorNoMatch:
                return Outcome(OutcomeStatus.NO_MATCH, attempts=attempt)
            except (asyncio.TimeoutError, VendorTimeoutError):
                outcome.status, outcome.error = OutcomeStatus.TIMEOUT, f"timed out after {self.call_timeout}s"
            except VendorError as e:
                outcome.status, outcome.error = OutcomeStatus.VENDOR_ERROR, e.message
                if not e.retryable:
                    break
            except Exception as e:
                logger.exception("skiptrace_call_crashed", property_id=task.property_id)
                outcome.status, outcome.error = OutcomeStatus.VENDOR_ERROR, str(e) or type(e).__name__

            if attempt < self.max_attempts:
                logger.debug("skiptrace_retry", property_id=task.property_id, attempt=attempt)
                await asyncio.sleep(self.retry_backoff)

        return outcome

    async def _settle(self, context: RunContext, task: PropertyTask, outcome: Outcome) -> None:
        record = with_retry(max_retries=self.write_retries, retry_delay=self.write_retry_delay)(self._record)
        async with context.write_lock:
            await asyncio.to_thread(record, context, task.property_id, outcome)

    def _record(self, context: RunContext, property_id: str, outcome: Outcome) -> None:
        # Refunds are keyed per property; repeating one is a no-op
        if not outcome.succeeded:
            self._refund(context, property_id)
        self._write_outcome(context.run_id, property_id, outcome)

    def _refund(self, context: RunContext, property_id: str) -> None:
        entry = self.ledger.refund(
            context.user_id, 1,
            correlation_id=context.run_id,
            idempotency_key=refund_key(context.run_id, property_id),
            property_id=property_id,
        )
        if entry is None:
            return
        refunded = self.ledger.count_by_correlation(context.run_id, REASON_REFUND)
        self.event_log.append(
            context.run_id, JobEventType.REFUNDED, {"count": refunded, "property_id": property_id}
        )

    def _write_outcome(self, run_id: str, property_id: str, outcome: Outcome) -> bool:
        """
        Record one terminal outcome and move the run's counters.

        Returns:
            True if the write was applied, False if the property already had
            an outcome in this run
        """
        counter = EnrichmentRun.succeeded if outcome.succeeded else EnrichmentRun.failed
        try:
            with session_scope(self.session_factory) as session:
                session.add(EnrichmentOutcome(
                    run_id=run_id,
                    property_id=property_id,
                    status=outcome.status,
                    attempts=outcome.attempts,
                    contacts_found=len(outcome.contacts),
                    error=outcome.error,
                ))
                session.flush()

                moved = session.execute(
                    update(EnrichmentRun)
                    .where(EnrichmentRun.run_id == run_id, EnrichmentRun.queued > 0)
                    .values({EnrichmentRun.queued: EnrichmentRun.queued - 1, counter: counter + 1})
                ).rowcount
                if moved != 1:
                    raise ValidationError(f"Run {run_id} has no queued properties left", {"run_id": run_id})

                if outcome.succeeded and session.get(Property, property_id) is not None:
                    for contact in outcome.contacts:
                        session.add(PropertyContact(
                            property_id=property_id,
                            run_id=run_id,
                            name=contact.name,
                            phone=contact.phone,
                            email=contact.email,
                            raw_payload=outcome.raw,
                        ))

                run = session.execute(
                    select(EnrichmentRun).where(EnrichmentRun.run_id == run_id).execution_options(populate_existing=True)
                ).scalar_one()
                if run.queued == 0:
                    run.finished_at = utcnow()
                    self.event_log.append(run_id, JobEventType.DONE, {
                        "total": run.total,
                        "succeeded": run.succeeded,
                        "failed": run.failed,
                        "cancelled": run.cancelled_at is not None,
                    }, session=session)
        except IntegrityError:
            logger.warning("enrichment_outcome_duplicate", run_id=run_id, property_id=property_id)
            return False

        logger.debug("enrichment_outcome_recorded", property_id=property_id, status=outcome.status.value)
        return True
