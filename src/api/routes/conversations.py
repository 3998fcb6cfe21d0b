"""
Conversations API - threads, inbox and read positions.

Membership is enforced by the conversation store; a conversation the
caller is not in looks exactly like one that does not exist.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.auth_deps import get_current_user_id
from api.deps import get_db
from api.serializers import conversation_detail_dict
from services.conversation import get_conversation_store

router = APIRouter()


class ConversationCreate(BaseModel):
    """Request to open a conversation."""
    participant_ids: List[int] = Field(..., min_length=1)
    subject: Optional[str] = Field(None, max_length=255)
    initial_message: Optional[str] = None


@router.post("")
def create_conversation(
    request: ConversationCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Create a conversation; the caller is added as owner."""
    conversation_id = get_conversation_store(db).create(
        user_id,
        request.participant_ids,
        subject=request.subject,
        initial_body=request.initial_message,
    )
    return {"id": conversation_id}


@router.get("")
def list_conversations(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """The caller's inbox with last message and unread count per thread."""
    return [summary.as_dict() for summary in get_conversation_store(db).list_for_user(user_id)]


@router.get("/{conversation_id}")
def get_conversation(
    conversation_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Participants and full message history."""
    return conversation_detail_dict(get_conversation_store(db).get(conversation_id, user_id))


@router.post("/{conversation_id}/read")
def mark_conversation_read(
    conversation_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Catch the caller's read position up to the newest message."""
    last_id = get_conversation_store(db).mark_read(conversation_id, user_id)
    return {"ok": True, "last_read_message_id": last_id}
