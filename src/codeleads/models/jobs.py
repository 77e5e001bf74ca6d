"""
Job Data Models

Pydantic snapshots of ingestion jobs, enrichment runs, aggregated progress
and timeline events. These are what services and the API hand out; ORM
rows never leave a session.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from src.codeleads.db.models import IngestionStatus, JobEventType


class JobStatus(BaseModel):
    """
    Snapshot of one ingestion job.

    Attributes:
        job_id: Job identifier
        status: Current stage
        total_rows: Rows parsed from the source file
        processed_rows: Rows normalized so far (successful or not)
        failed_rows: Rows that raised a row-level error
        properties_created: Properties newly created by this job
        violations_created: Violations inserted by this job
        warnings: Row-level messages in occurrence order
    """

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    job_id: str = Field(..., validation_alias="id")
    owner_id: str
    status: IngestionStatus
    filename: Optional[str] = None
    fallback_city: Optional[str] = None
    fallback_state: Optional[str] = None
    parent_job_id: Optional[str] = None
    total_rows: int = 0
    processed_rows: int = 0
    failed_rows: int = 0
    properties_created: int = 0
    violations_created: int = 0
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class RunStatus(BaseModel):
    """Snapshot of one enrichment run's counters."""

    model_config = ConfigDict(from_attributes=True)

    run_id: str
    owner_id: str
    total: int
    queued: int
    succeeded: int
    failed: int
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None


class AggregateProgress(BaseModel):
    """
    Merged view over the jobs created from one split upload.

    Attributes:
        is_processing: At least one job is not yet terminal
        is_complete: Every known job finished COMPLETE
        is_failed: At least one known job finished FAILED
        missing_job_ids: Requested ids with no job record
    """

    jobs: List[JobStatus] = Field(default_factory=list)
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    total_rows: int = 0
    processed_rows: int = 0
    failed_rows: int = 0
    properties_created: int = 0
    violations_created: int = 0
    is_processing: bool = False
    is_complete: bool = False
    is_failed: bool = False
    missing_job_ids: List[str] = Field(default_factory=list)

    @property
    def percent(self) -> float:
        if not self.total_rows:
            return 100.0 if self.is_complete else 0.0
        return round(100.0 * self.processed_rows / self.total_rows, 1)


class JobEventView(BaseModel):
    """One entry of a job or run timeline."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: str
    type: JobEventType
    timestamp: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)
