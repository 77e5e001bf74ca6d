"""
Credits Router

Balance, ledger history and skip-trace consent for the caller.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from src.codeleads.api.dependencies import get_current_user, get_services
from src.codeleads.api.schemas import BalanceResponse, ConsentRequest, ConsentResponse
from src.codeleads.models.credits import LedgerEntryView
from src.codeleads.services import CodeLeadsServices

router = APIRouter(prefix="/api/v1/credits", tags=["credits"])


@router.get("/balance", response_model=BalanceResponse)
def get_balance(
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    return BalanceResponse(user_id=user_id, balance=services.ledger.balance(user_id))


@router.get("/ledger", response_model=List[LedgerEntryView])
def get_ledger(
    limit: int = Query(100, ge=1, le=1000),
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """Most recent ledger entries first."""
    return services.ledger.entries(user_id, limit=limit)


@router.get("/consent", response_model=ConsentResponse)
def get_consent(
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    record = services.consent.get(user_id)
    return ConsentResponse(
        user_id=user_id,
        consented=record is not None,
        consented_at=record.consented_at if record else None,
    )


@router.post("/consent", response_model=ConsentResponse)
def record_consent(
    body: ConsentRequest,
    request: Request,
    user_id: str = Depends(get_current_user),
    services: CodeLeadsServices = Depends(get_services),
):
    """
    Accept the skip-trace terms.

    Raises:
        HTTPException: 400 if accepted is false
    """
    if not body.accepted:
        raise HTTPException(status_code=400, detail="Consent must be accepted")
    record = services.consent.record(
        user_id,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return ConsentResponse(user_id=user_id, consented=True, consented_at=record.consented_at)
