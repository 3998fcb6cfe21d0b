"""Notification dispatcher: in-app record first, best-effort email relay second."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.db import store_operation
from core.exceptions import NotFoundError
from core.logging_config import get_logger
from core.models import Notification, NotificationChannel, NotificationType
from core.types import NotificationPayload
from core.utils import utcnow
from services.identity import IdentityDirectory, get_identity_directory
from services.relay import Relay, get_relay

LOGGER = get_logger(__name__)


class NotificationDispatcher:
    """
    Delivers a typed event to one user.

    The in-app row is the record of truth and must be written or the call
    fails. The relay is attempted at most once afterwards; its failure is
    logged and absorbed so the calling transition (sign, claim, offer...)
    still succeeds.
    """

    def __init__(
        self,
        session: Session,
        identity: IdentityDirectory,
        relay: Optional[Relay] = None,
    ):
        """Initialize the dispatcher."""
        self.session = session
        self.identity = identity
        self.relay = relay

    @store_operation
    def notify(
        self,
        user_id: int,
        event_type: Union[NotificationType, str],
        subject: str,
        message: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """
        Record a notification and try to relay it.

        Args:
            user_id: Recipient.
            event_type: Notification type.
            subject: Short headline (email subject when relayed).
            message: Body text.
            extra: Ids and other fields the client needs to deep-link.

        Returns:
            The persisted Notification row.
        """
        payload = NotificationPayload(subject=subject, message=message, extra=extra or {})
        notification = Notification(
            user_id=user_id,
            type=getattr(event_type, "value", event_type),
            payload=payload.model_dump(),
            channel=NotificationChannel.INAPP.value,
        )
        self.session.add(notification)
        self.session.flush()

        self._relay(notification, payload)
        return notification

    def _relay(self, notification: Notification, payload: NotificationPayload) -> None:
        """Single best-effort relay attempt; never raises for relay failures."""
        if self.relay is None:
            return

        recipient = self.identity.resolve_user(notification.user_id)
        if recipient is None or not recipient.email:
            LOGGER.debug(f"No relay address for user {notification.user_id}")
            return

        try:
            delivered = self.relay.send(recipient.email, payload.subject, payload.message)
        except Exception as e:
            LOGGER.warning(
                f"Relay failed for notification {notification.id}: {e}",
                extra={"extra_data": {"user_id": notification.user_id, "type": notification.type}},
            )
            return

        if not delivered:
            LOGGER.warning(f"Relay did not confirm notification {notification.id}")
            return

        notification.channel = NotificationChannel.EMAIL.value
        notification.delivered_at = utcnow()
        self.session.flush()

    @store_operation
    def list_for_user(
        self,
        user_id: int,
        limit: int = 50,
        unseen_only: bool = False,
    ) -> List[Notification]:
        """Newest-first notifications for polling clients."""
        query = select(Notification).where(Notification.user_id == user_id)
        if unseen_only:
            query = query.where(Notification.seen_at.is_(None))
        query = query.order_by(Notification.id.desc()).limit(limit)
        return list(self.session.execute(query).scalars().all())

    @store_operation
    def mark_seen(self, notification_id: int, user_id: int) -> Notification:
        """
        Mark one of the user's notifications as seen.

        Raises:
            NotFoundError: If the row is absent or belongs to someone else.
        """
        notification = self.session.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError("Notification not found")
        if notification.seen_at is None:
            notification.seen_at = utcnow()
            self.session.flush()
        return notification


def get_notification_dispatcher(
    session: Session,
    relay: Optional[Relay] = None,
    identity: Optional[IdentityDirectory] = None,
) -> NotificationDispatcher:
    """Get a NotificationDispatcher wired to the configured collaborators."""
    return NotificationDispatcher(
        session,
        identity=identity or get_identity_directory(session),
        relay=relay if relay is not None else get_relay(),
    )


__all__ = [
    "NotificationDispatcher",
    "get_notification_dispatcher",
]
