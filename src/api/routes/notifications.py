"""Notifications API - polling and seen markers."""
from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.auth_deps import get_current_user_id
from api.deps import get_db
from api.serializers import notification_dict
from services.notification import get_notification_dispatcher

router = APIRouter()


@router.get("")
def list_notifications(
    unseen_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """The caller's notifications, newest first."""
    dispatcher = get_notification_dispatcher(db)
    return [
        notification_dict(n)
        for n in dispatcher.list_for_user(user_id, limit=limit, unseen_only=unseen_only)
    ]


@router.post("/{notification_id}/seen")
def mark_notification_seen(
    notification_id: int,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return notification_dict(get_notification_dispatcher(db).mark_seen(notification_id, user_id))
