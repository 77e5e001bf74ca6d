"""
Events Router

Timeline of lifecycle events for an ingestion job or an enrichment run.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from src.codeleads.api.dependencies import get_current_user, get_services
from src.codeleads.models.jobs import JobEventView
from src.codeleads.services import CodeLeadsServices

router = APIRouter(prefix="/api/v1/events", tags=["events"])


@router.get("/{job_id}", response_model=List[JobEventView])
def get_events(
    job_id: str,
    after_timestamp: Optional[datetime] = Query(None, description="Timestamp of the last event seen"),
    after_id: Optional[int] = Query(None, description="Id of the last event seen"),
    limit: int = Query(100, ge=1, le=500),
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """
    One page of events in (timestamp, id) order.

    The timeline outlives the job it describes, so an id with no job or run
    record can still have events. Pass the timestamp and id of the last
    event received to continue from it.
    """
    if (after_timestamp is None) != (after_id is None):
        raise HTTPException(status_code=400, detail="after_timestamp and after_id must be given together")
    after = (after_timestamp, after_id) if after_id is not None else None
    return services.event_log.fetch_page(job_id, after=after, limit=limit)
