"""
Pydantic Schemas for API Request/Response Models

These schemas define the JSON structure for API endpoints. Job, run,
progress and event snapshots are served with the shared models from
src.codeleads.models.
"""
from typing import List, Optional
from datetime import datetime, date
from pydantic import BaseModel, ConfigDict, Field


class PasteUploadRequest(BaseModel):
    """CSV pasted as text instead of uploaded as a file."""
    csv_text: str = Field(..., min_length=1)
    filename: str = "pasted.csv"
    fallback_city: Optional[str] = None
    fallback_state: Optional[str] = Field(None, min_length=2, max_length=2)
    fallback_county: Optional[str] = None
    process: bool = True


class PreviewRequest(BaseModel):
    csv_text: str = Field(..., min_length=1)


class JobCreationResult(BaseModel):
    key: str
    city: str
    state: str
    row_count: int
    job_id: Optional[str] = None
    error: Optional[str] = None


class SubmissionResponse(BaseModel):
    """Jobs created from one upload."""
    upload_id: str
    total_rows: int
    skipped_rows: int
    job_ids: List[str]
    jobs: List[JobCreationResult]


class LocationPreview(BaseModel):
    city: str
    state: str
    row_count: int


class PreviewResponse(BaseModel):
    total_rows: int
    undetected_rows: int
    city_column: Optional[str] = None
    state_column: Optional[str] = None
    locations: List[LocationPreview]


class StartRunRequest(BaseModel):
    property_ids: List[str] = Field(..., min_length=1)
    consent_ok: bool = False


class StartRunResponse(BaseModel):
    run_id: str


class RerunRequest(BaseModel):
    consent_ok: bool = False


class RerunResponse(BaseModel):
    run_id: Optional[str] = Field(None, description="New run id, null when nothing failed")
    total: int


class OutcomeItem(BaseModel):
    property_id: str
    status: str
    attempts: int
    contacts_found: int
    error: Optional[str] = None


class BalanceResponse(BaseModel):
    user_id: str
    balance: int


class ConsentRequest(BaseModel):
    accepted: bool = Field(..., description="Must be true to record consent")


class ConsentResponse(BaseModel):
    user_id: str
    consented: bool
    consented_at: Optional[datetime] = None


class ViolationInfo(BaseModel):
    """Violation attached to a property."""
    case_id: Optional[str] = None
    violation_type: Optional[str] = None
    status: str
    opened_date: Optional[date] = None
    last_updated: Optional[date] = None
    days_open: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class ContactInfo(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    source: str

    model_config = ConfigDict(from_attributes=True)


class PropertyListItem(BaseModel):
    """Property row in paginated listings."""
    id: str
    address: str
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    county: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PropertyDetail(PropertyListItem):
    violations: List[ViolationInfo] = Field(default_factory=list)
    contacts: List[ContactInfo] = Field(default_factory=list)


class PropertyPage(BaseModel):
    items: List[PropertyListItem]
    total: int
    page: int
    page_size: int
    pages: int


class HealthCheck(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str
    timestamp: datetime
