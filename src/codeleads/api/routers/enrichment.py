"""
Enrichment Router

Endpoints for credit-metered skip-trace runs.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from src.codeleads.api.dependencies import get_current_user, get_services
from src.codeleads.api.schemas import OutcomeItem, RerunRequest, RerunResponse, StartRunRequest, StartRunResponse
from src.codeleads.models.jobs import RunStatus
from src.codeleads.services import CodeLeadsServices

router = APIRouter(prefix="/api/v1/enrichment", tags=["enrichment"])


def _owned_run(services: CodeLeadsServices, run_id: str, user_id: str) -> RunStatus:
    run = services.get_run_status(run_id)
    if run.owner_id != user_id:
        raise HTTPException(status_code=404, detail=f"Enrichment run not found: {run_id}")
    return run


@router.post("/runs", response_model=StartRunResponse, status_code=202)
async def start_run(
    body: StartRunRequest,
    request: Request,
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """
    Charge one credit per property and start skip tracing.

    Returns immediately with the run id; calls proceed in the background
    and failed lookups are refunded.

    Raises:
        HTTPException: 403 without consent, 402 when the balance is too low,
            429 when too many runs are still active
    """
    run_id = await services.start_enrichment_run(
        user_id,
        body.property_ids,
        consent_ok=body.consent_ok,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return StartRunResponse(run_id=run_id)


@router.get("/runs/{run_id}", response_model=RunStatus)
def get_run(
    run_id: str,
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    return _owned_run(services, run_id, user_id)


@router.post("/runs/{run_id}/cancel", response_model=RunStatus)
async def cancel_run(
    run_id: str,
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """Stop dispatching; undispatched properties are refunded."""
    _owned_run(services, run_id, user_id)
    return await services.enrichment.cancel_run(run_id)


@router.post("/runs/{run_id}/rerun-failed", response_model=RerunResponse)
async def rerun_failed(
    run_id: str,
    request: Request,
    body: Optional[RerunRequest] = None,
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """
    Start a new run over a finished run's no_match, vendor_error and timeout
    properties. The new run is charged like any other.

    Raises:
        NotFoundError: Another user's run (404)
        InvalidTransitionError: The run is still running (409)
    """
    new_run_id, total = await services.enrichment.rerun_failed(
        run_id,
        user_id,
        consent_ok=body.consent_ok if body else False,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return RerunResponse(run_id=new_run_id, total=total)


@router.get("/runs/{run_id}/outcomes", response_model=List[OutcomeItem])
def get_outcomes(
    run_id: str,
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    _owned_run(services, run_id, user_id)
    return services.enrichment.get_outcomes(run_id)
