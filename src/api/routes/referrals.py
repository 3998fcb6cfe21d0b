"""Referrals API - agent-to-agent referral offers."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from api.auth_deps import get_current_user_id
from api.deps import get_db, get_notification_relay
from api.serializers import referral_dict
from services.identity import get_identity_directory
from services.notification import get_notification_dispatcher
from services.referral import ReferralWorkflow, get_referral_workflow
from services.relay import Relay

router = APIRouter()


class ReferralOffer(BaseModel):
    """Request to offer a referral."""
    to_user_id: int
    fee_percent: Optional[float] = None
    context: Optional[Dict[str, Any]] = None
    conversation_id: Optional[int] = None


def _workflow(
    db: Session = Depends(get_db),
    relay: Optional[Relay] = Depends(get_notification_relay),
) -> ReferralWorkflow:
    identity = get_identity_directory(db)
    return get_referral_workflow(
        db,
        notifier=get_notification_dispatcher(db, relay=relay, identity=identity),
        identity=identity,
    )


@router.post("")
def offer_referral(
    request: ReferralOffer,
    user_id: int = Depends(get_current_user_id),
    workflow: ReferralWorkflow = Depends(_workflow),
) -> Dict[str, Any]:
    """Offer a referral; reuses or creates the referral thread."""
    referral = workflow.offer(
        user_id,
        request.to_user_id,
        fee_percent=request.fee_percent,
        context=request.context,
        conversation_id=request.conversation_id,
    )
    return {"id": referral.id, "conversation_id": referral.conversation_id}


@router.get("")
def list_referrals(
    user_id: int = Depends(get_current_user_id),
    workflow: ReferralWorkflow = Depends(_workflow),
) -> List[Dict[str, Any]]:
    """Referrals the caller sent or received."""
    return [referral_dict(r) for r in workflow.list_mine(user_id)]


@router.get("/counts")
def referral_counts(
    user_id: int = Depends(get_current_user_id),
    workflow: ReferralWorkflow = Depends(_workflow),
) -> Dict[str, int]:
    """Badge counts for the caller."""
    return workflow.counts(user_id).as_dict()


@router.get("/{referral_id}")
def get_referral(
    referral_id: int,
    user_id: int = Depends(get_current_user_id),
    workflow: ReferralWorkflow = Depends(_workflow),
) -> Dict[str, Any]:
    return referral_dict(workflow.get(referral_id, user_id))


@router.post("/{referral_id}/accept")
def accept_referral(
    referral_id: int,
    user_id: int = Depends(get_current_user_id),
    workflow: ReferralWorkflow = Depends(_workflow),
) -> Dict[str, Any]:
    return referral_dict(workflow.accept(referral_id, user_id))


@router.post("/{referral_id}/decline")
def decline_referral(
    referral_id: int,
    user_id: int = Depends(get_current_user_id),
    workflow: ReferralWorkflow = Depends(_workflow),
) -> Dict[str, Any]:
    return referral_dict(workflow.decline(referral_id, user_id))


@router.post("/{referral_id}/complete")
def complete_referral(
    referral_id: int,
    user_id: int = Depends(get_current_user_id),
    workflow: ReferralWorkflow = Depends(_workflow),
) -> Dict[str, Any]:
    """Either party marks an accepted referral completed."""
    return referral_dict(workflow.complete(referral_id, user_id))
