"""
SQLAlchemy ORM Models

Durable records for spreadsheet ingestion (jobs, staging rows, properties,
violations) and for credit-metered enrichment (runs, outcomes, contacts,
ledger, consent), plus the shared append-only job event stream.
"""
import enum
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    String, Integer, Date, DateTime, Boolean, Text,
    ForeignKey, CheckConstraint, UniqueConstraint, Index, Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.codeleads.db.base import (
    Base, TimestampMixin, JSONType, append_only, new_uuid, utcnow,
)


class IngestionStatus(str, enum.Enum):
    """Ingestion job stages, in their only legal forward order."""

    QUEUED = "QUEUED"
    PARSING = "PARSING"
    PROCESSING = "PROCESSING"
    DEDUPING = "DEDUPING"
    FINALIZING = "FINALIZING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (IngestionStatus.COMPLETE, IngestionStatus.FAILED)


class OutcomeStatus(str, enum.Enum):
    """Terminal classification of one property's enrichment attempt."""

    SUCCESS = "success"
    NO_MATCH = "no_match"
    VENDOR_ERROR = "vendor_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class JobEventType(str, enum.Enum):
    QUEUED = "queued"
    STARTED = "started"
    REFUNDED = "refunded"
    DONE = "done"


class Property(Base, TimestampMixin):
    """
    Master property table.

    One record per normalized (address, city, state, zip). Promotion from
    staging looks up or creates by address_key, so re-ingesting the same
    address never produces a second row.
    """
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)

    address_key: Mapped[str] = mapped_column(
        String(400),
        nullable=False,
        unique=True,
        comment="Normalized ADDRESS|CITY|ST|ZIP natural key"
    )
    address: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Standardized street address"
    )
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    county: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    violations: Mapped[list["Violation"]] = relationship(
        "Violation",
        back_populates="property",
        cascade="all, delete-orphan"
    )
    contacts: Mapped[list["PropertyContact"]] = relationship(
        "PropertyContact",
        back_populates="property",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_properties_city_state", "city", "state"),
        Index("idx_properties_zip_code", "zip_code"),
    )

    def __repr__(self) -> str:
        return f"<Property(id={self.id}, key={self.address_key})>"


class Violation(Base, TimestampMixin):
    """Code enforcement violations (many:1 with properties)."""
    __tablename__ = "violations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    property_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
        comment="References properties table"
    )
    source_job_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        comment="Ingestion job that created the violation"
    )

    case_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    violation_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Open")
    opened_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_updated: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    days_open: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    property: Mapped["Property"] = relationship("Property", back_populates="violations")

    __table_args__ = (
        Index("idx_violations_property_id", "property_id"),
        Index("idx_violations_case_id", "case_id"),
        Index("idx_violations_opened_date", "opened_date"),
    )

    def __repr__(self) -> str:
        return f"<Violation(case={self.case_id}, status={self.status})>"


class IngestionJob(Base, TimestampMixin):
    """One location group's spreadsheet rows on their way to durable records."""
    __tablename__ = "ingestion_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    source_handle: Mapped[str] = mapped_column(String(500), nullable=False)
    filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    parent_job_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        nullable=True,
        comment="Upload that was split into this job"
    )

    fallback_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    fallback_state: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    fallback_county: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[IngestionStatus] = mapped_column(
        SQLEnum(IngestionStatus, name="ingestion_status", native_enum=False, length=20),
        nullable=False,
        default=IngestionStatus.QUEUED,
    )

    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    properties_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    violations_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    warnings: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "processed_rows >= 0 AND processed_rows <= total_rows",
            name="check_processed_rows_range"
        ),
        Index("idx_ingestion_jobs_owner", "owner_id"),
        Index("idx_ingestion_jobs_status", "status"),
        Index("idx_ingestion_jobs_parent", "parent_job_id"),
    )

    def __repr__(self) -> str:
        return f"<IngestionJob(id={self.id}, status={self.status}, rows={self.processed_rows}/{self.total_rows})>"


class StagingRow(Base):
    """Parsed-but-not-yet-promoted spreadsheet record owned by one job."""
    __tablename__ = "staging_rows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("ingestion_jobs.id", ondelete="CASCADE"),
        nullable=False,
    )
    row_num: Mapped[int] = mapped_column(Integer, nullable=False)
    raw: Mapped[dict] = mapped_column(JSONType, nullable=False)

    # Normalized candidate, written during PROCESSING
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    address_key: Mapped[Optional[str]] = mapped_column(String(400), nullable=True)
    case_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    violation_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    violation_status: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    opened_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_updated: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    property_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    row_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("job_id", "row_num", name="uq_staging_rows_job_row"),
        Index("idx_staging_rows_job_key", "job_id", "address_key"),
    )


class EnrichmentRun(Base):
    """Credit-metered bulk skip-trace run."""
    __tablename__ = "enrichment_runs"

    run_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    settings_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    total: Mapped[int] = mapped_column(Integer, nullable=False)
    queued: Mapped[int] = mapped_column(Integer, nullable=False)
    succeeded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    outcomes: Mapped[list["EnrichmentOutcome"]] = relationship(
        "EnrichmentOutcome",
        back_populates="run",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("queued >= 0", name="check_queued_non_negative"),
        CheckConstraint("succeeded + failed + queued = total", name="check_counts_balance"),
        Index("idx_enrichment_runs_owner_active", "owner_id", "finished_at"),
    )

    def __repr__(self) -> str:
        return f"<EnrichmentRun(id={self.run_id}, queued={self.queued}/{self.total})>"


class EnrichmentOutcome(Base):
    """Exactly one terminal outcome per (run, property)."""
    __tablename__ = "enrichment_outcomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("enrichment_runs.run_id", ondelete="CASCADE"),
        nullable=False,
    )
    property_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[OutcomeStatus] = mapped_column(
        SQLEnum(OutcomeStatus, name="outcome_status", native_enum=False, length=20),
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    contacts_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    run: Mapped["EnrichmentRun"] = relationship("EnrichmentRun", back_populates="outcomes")

    __table_args__ = (
        UniqueConstraint("run_id", "property_id", name="uq_enrichment_outcomes_run_property"),
    )


class PropertyContact(Base, TimestampMixin):
    """Owner contact returned by the skip-trace vendor."""
    __tablename__ = "property_contacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
    )
    run_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="batchdata")
    raw_payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    property: Mapped["Property"] = relationship("Property", back_populates="contacts")

    __table_args__ = (
        Index("idx_property_contacts_property", "property_id"),
    )


class CreditAccount(Base):
    """
    Per-user compare-and-swap token for ledger appends.

    Holds no balance: every append bumps version in the same transaction,
    so a writer that read the balance at an older version loses the race.
    """
    __tablename__ = "credit_accounts"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


@append_only
class LedgerEntry(Base):
    """Immutable signed credit-balance adjustment."""
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    property_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        unique=True,
        comment="Set for refunds: refund:{run_id}:{property_id}"
    )
    meta: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("delta <> 0", name="check_delta_non_zero"),
        Index("idx_ledger_entries_user", "user_id", "created_at"),
        Index("idx_ledger_entries_correlation", "correlation_id"),
    )

    def __repr__(self) -> str:
        return f"<LedgerEntry(user={self.user_id}, delta={self.delta}, reason={self.reason})>"


class ConsentRecord(Base):
    """Durable proof a user accepted the skip-trace terms."""
    __tablename__ = "consent_records"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    consented_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    client_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)


@append_only
class JobEvent(Base):
    """
    Append-only event for an ingestion job or enrichment run.

    job_id deliberately has no foreign key: timelines outlive the records
    they describe.
    """
    __tablename__ = "job_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[JobEventType] = mapped_column(
        SQLEnum(JobEventType, name="job_event_type", native_enum=False, length=20),
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    __table_args__ = (
        Index("idx_job_events_job_ts", "job_id", "timestamp", "id"),
    )

    def __repr__(self) -> str:
        return f"<JobEvent(job={self.job_id}, type={self.type})>"
