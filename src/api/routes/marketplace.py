"""Marketplace API - owner listings, agent browsing and lead claims."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.auth_deps import get_current_user_id
from api.deps import get_db, get_notification_relay
from api.serializers import claim_dict, open_listing_dict
from services.identity import get_identity_directory
from services.marketplace import LeadMatchingService, get_lead_matching_service
from services.notification import get_notification_dispatcher
from services.relay import Relay

router = APIRouter()


class ListingCreate(BaseModel):
    """Owner posts a property into the marketplace."""
    title: str = Field(..., max_length=255)
    area_code: str = Field(..., max_length=20)
    address: Optional[str] = Field(None, max_length=255)
    details: Optional[Dict[str, Any]] = None


def _service(
    db: Session = Depends(get_db),
    relay: Optional[Relay] = Depends(get_notification_relay),
) -> LeadMatchingService:
    identity = get_identity_directory(db)
    return get_lead_matching_service(
        db,
        notifier=get_notification_dispatcher(db, relay=relay, identity=identity),
        identity=identity,
    )


@router.post("/listings")
def post_listing(
    request: ListingCreate,
    user_id: int = Depends(get_current_user_id),
    service: LeadMatchingService = Depends(_service),
) -> Dict[str, Any]:
    """Post a listing and notify agents covering its area."""
    posted = service.post_lead(
        user_id,
        request.title,
        request.area_code,
        details=request.details,
        address=request.address,
    )
    return {"id": posted.listing_id, "lead_id": posted.lead_id, "matched_count": posted.matched_count}


@router.get("/listings")
def list_listings(
    status: Optional[str] = Query(None, description="open (default) or engaged"),
    user_id: int = Depends(get_current_user_id),
    service: LeadMatchingService = Depends(_service),
) -> List[Dict[str, Any]]:
    """Listings in the calling agent's areas."""
    return [open_listing_dict(item) for item in service.list_open(user_id, status)]


@router.post("/listings/{listing_id}/claim")
def claim_listing(
    listing_id: int,
    user_id: int = Depends(get_current_user_id),
    service: LeadMatchingService = Depends(_service),
) -> Dict[str, Any]:
    """Claim the lead (first agent wins) and open a conversation with the owner."""
    return claim_dict(service.claim(listing_id, user_id))
