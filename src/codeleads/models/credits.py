"""
Credit Data Models

Pydantic views of ledger entries and consent records.
"""
from typing import Any, Dict, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class LedgerEntryView(BaseModel):
    """One signed adjustment of a user's credit balance."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    delta: int
    reason: str
    correlation_id: Optional[str] = None
    property_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class ConsentView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    consented_at: datetime
    client_hash: str
    user_agent: Optional[str] = None
