"""Messages API - post into a conversation."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.auth_deps import get_current_user_id
from api.deps import get_db
from services.conversation import get_conversation_store

router = APIRouter()


class MessageCreate(BaseModel):
    conversation_id: int
    body: str
    attachment_key: Optional[str] = Field(None, max_length=512)


@router.post("")
def post_message(
    request: MessageCreate,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Post a plain-text message; only participants may post."""
    message_id = get_conversation_store(db).post_message(
        request.conversation_id,
        user_id,
        request.body,
        attachment_key=request.attachment_key,
    )
    return {"id": message_id}
