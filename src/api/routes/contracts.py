"""Contracts API - drafts, sending, click-to-sign and file access."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.auth_deps import get_current_user_id
from api.deps import get_db, get_notification_relay, get_storage
from api.serializers import contract_view_dict
from services.contract import ContractLifecycle, get_contract_lifecycle
from services.notification import get_notification_dispatcher
from services.relay import Relay
from services.storage import ObjectStorage

router = APIRouter()


class ContractCreate(BaseModel):
    title: str = Field(..., max_length=255)
    type: str = Field("custom", max_length=50)


class ContractSend(BaseModel):
    conversation_id: int
    signer_ids: List[int] = Field(default_factory=list)


def _lifecycle(
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
    relay: Optional[Relay] = Depends(get_notification_relay),
) -> ContractLifecycle:
    return get_contract_lifecycle(
        db,
        storage=storage,
        notifier=get_notification_dispatcher(db, relay=relay),
    )


@router.post("")
def create_contract(
    request: ContractCreate,
    user_id: int = Depends(get_current_user_id),
    lifecycle: ContractLifecycle = Depends(_lifecycle),
) -> Dict[str, Any]:
    """Create a draft and return a presigned upload URL for the PDF."""
    draft = lifecycle.create(user_id, request.title, request.type)
    return {"id": draft.contract_id, "upload_url": draft.upload_url, "file_key": draft.file_key}


@router.get("/pending/count")
def pending_count(
    user_id: int = Depends(get_current_user_id),
    lifecycle: ContractLifecycle = Depends(_lifecycle),
) -> Dict[str, int]:
    """Contracts awaiting the caller's signature."""
    return {"pending": lifecycle.pending_count(user_id)}


@router.get("")
def list_contracts(
    conversation_id: int = Query(..., ge=1),
    user_id: int = Depends(get_current_user_id),
    lifecycle: ContractLifecycle = Depends(_lifecycle),
) -> List[Dict[str, Any]]:
    """Contracts attached to a conversation the caller is in."""
    return [contract_view_dict(v) for v in lifecycle.list_for_conversation(conversation_id, user_id)]


@router.post("/{contract_id}/send")
def send_contract(
    contract_id: int,
    request: ContractSend,
    user_id: int = Depends(get_current_user_id),
    lifecycle: ContractLifecycle = Depends(_lifecycle),
) -> Dict[str, Any]:
    """Attach to a conversation, add signers and notify them."""
    view = lifecycle.send(contract_id, user_id, request.conversation_id, request.signer_ids)
    return contract_view_dict(view)


@router.post("/{contract_id}/sign")
def sign_contract(
    contract_id: int,
    user_id: int = Depends(get_current_user_id),
    lifecycle: ContractLifecycle = Depends(_lifecycle),
) -> Dict[str, Any]:
    """Record the caller's signature."""
    return contract_view_dict(lifecycle.sign(contract_id, user_id))


@router.get("/{contract_id}")
def get_contract(
    contract_id: int,
    user_id: int = Depends(get_current_user_id),
    lifecycle: ContractLifecycle = Depends(_lifecycle),
) -> Dict[str, Any]:
    return contract_view_dict(lifecycle.get(contract_id, user_id))


@router.get("/{contract_id}/download_url")
def contract_download_url(
    contract_id: int,
    user_id: int = Depends(get_current_user_id),
    lifecycle: ContractLifecycle = Depends(_lifecycle),
) -> Dict[str, str]:
    """Presigned download URL for the contract file."""
    return {"url": lifecycle.download_url(contract_id, user_id)}
