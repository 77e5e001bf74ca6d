"""
Properties Router

Endpoints for property queries.
"""
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from src.codeleads.api.dependencies import get_current_user, get_db
from src.codeleads.api.schemas import ContactInfo, PropertyDetail, PropertyListItem, PropertyPage, ViolationInfo
from src.codeleads.db.repository import PropertyContactRepository, PropertyRepository, ViolationRepository

router = APIRouter(prefix="/api/v1/properties", tags=["properties"])


@router.get("", response_model=PropertyPage)
def list_properties(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    city: Optional[str] = Query(None),
    state: Optional[str] = Query(None, min_length=2, max_length=2),
    search: Optional[str] = Query(None, description="Substring of address or city"),
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Filtered, paginated property listing.

    Filtering and paging happen in the database; only the requested page
    is loaded.
    """
    items, total = PropertyRepository().list_page(
        db, page=page, page_size=page_size, city=city, state=state, search=search
    )
    return PropertyPage(
        items=[PropertyListItem.model_validate(p) for p in items],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total else 0,
    )


@router.get("/{property_id}", response_model=PropertyDetail)
def get_property_detail(
    property_id: str,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get detailed information for a specific property.

    Raises:
        HTTPException: 404 if property not found
    """
    property_obj = PropertyRepository().get_by_id(db, property_id)
    if not property_obj:
        raise HTTPException(status_code=404, detail=f"Property not found: {property_id}")

    violations = ViolationRepository().get_for_property(db, property_id)
    contacts = PropertyContactRepository().get_for_property(db, property_id)
    return PropertyDetail(
        **PropertyListItem.model_validate(property_obj).model_dump(),
        violations=[ViolationInfo.model_validate(v) for v in violations],
        contacts=[ContactInfo.model_validate(c) for c in contacts],
    )
