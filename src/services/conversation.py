"""Conversation store: threads, participants, messages and read positions.

This is the only module that writes conversation, participant, message
and conversation_link rows. Contracts, referrals and marketplace claims
go through the public methods here.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from core.config import get_settings
from core.db import insert_ignore, store_operation
from core.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from core.logging_config import get_logger
from core.models import (
    Conversation,
    ConversationLink,
    ConversationParticipant,
    Message,
    ParticipantRole,
    User,
)
from core.types import ConversationDetail, ConversationSummary
from core.utils import unique_ids

LOGGER = get_logger(__name__)

MAX_SUBJECT_LENGTH = 255


class ConversationStore:
    """Membership-gated access to conversations."""

    def __init__(self, session: Session):
        """Initialize the conversation store."""
        self.session = session
        self.settings = get_settings()

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def _participant(self, conversation_id: int, user_id: int) -> Optional[ConversationParticipant]:
        return self.session.execute(
            select(ConversationParticipant).where(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.user_id == user_id,
            )
        ).scalar_one_or_none()

    @store_operation
    def is_participant(self, conversation_id: int, user_id: int) -> bool:
        """True if user_id has a participant row in the conversation."""
        return self._participant(conversation_id, user_id) is not None

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def _create(
        self,
        creator_id: int,
        participant_ids: Iterable[int],
        subject: Optional[str],
        initial_body: Optional[str],
        roles: Optional[Dict[int, str]],
    ) -> int:
        conversation = Conversation(
            subject=(subject or "").strip()[:MAX_SUBJECT_LENGTH] or None,
            created_by_user_id=creator_id,
        )
        self.session.add(conversation)
        self.session.flush()

        roles = roles or {}
        creator_row = None
        for uid in unique_ids([creator_id, *participant_ids]):
            default_role = ParticipantRole.OWNER.value if uid == creator_id else ParticipantRole.MEMBER.value
            row = ConversationParticipant(
                conversation_id=conversation.id,
                user_id=uid,
                role=roles.get(uid, default_role),
            )
            self.session.add(row)
            if uid == creator_id:
                creator_row = row
        self.session.flush()

        body = (initial_body or "").strip()
        if body:
            message = Message(conversation_id=conversation.id, sender_user_id=creator_id, body=body)
            self.session.add(message)
            self.session.flush()
            creator_row.last_read_message_id = message.id
            self.session.flush()

        LOGGER.info(
            f"Created conversation {conversation.id}",
            extra={"extra_data": {"creator": creator_id, "subject": conversation.subject}},
        )
        return conversation.id

    @store_operation
    def create(
        self,
        creator_id: int,
        participant_ids: Iterable[int],
        subject: Optional[str] = None,
        initial_body: Optional[str] = None,
        roles: Optional[Dict[int, str]] = None,
    ) -> int:
        """
        Create a conversation. The creator is always a participant.

        Args:
            creator_id: User opening the thread.
            participant_ids: Other members.
            subject: Optional subject line.
            initial_body: If non-empty, posted by the creator straight away.
            roles: Optional per-user role labels overriding owner/member.

        Returns:
            The new conversation id.

        Raises:
            InvalidInputError: No other participant, or an unknown user id.
        """
        others = [uid for uid in unique_ids(participant_ids) if uid != creator_id]
        if not others:
            raise InvalidInputError("participant_ids required")

        known = set(
            self.session.execute(select(User.id).where(User.id.in_([creator_id, *others]))).scalars()
        )
        unknown = sorted({creator_id, *others} - known)
        if unknown:
            raise InvalidInputError(f"Unknown participant ids: {unknown}")

        return self._create(creator_id, others, subject, initial_body, roles)

    @store_operation
    def find_or_create_linked(
        self,
        purpose: str,
        party_key: str,
        creator_id: int,
        participant_ids: Iterable[int],
        subject: Optional[str] = None,
        initial_body: Optional[str] = None,
        roles: Optional[Dict[int, str]] = None,
    ) -> Tuple[int, bool]:
        """
        Reuse the conversation linked to (purpose, party_key) or create one.

        Concurrent creators race on the unique link row; the loser discards
        its unpublished thread and returns the winner's.

        Returns:
            (conversation_id, created) where created is True only if this
            call materialized the thread.
        """
        existing = self._linked_conversation_id(purpose, party_key)
        if existing is not None:
            return existing, False

        participant_ids = list(participant_ids)
        conversation_id = self._create(creator_id, participant_ids, subject, initial_body, roles)
        linked = insert_ignore(
            self.session,
            ConversationLink,
            {"purpose": purpose, "party_key": party_key, "conversation_id": conversation_id},
            index_elements=("purpose", "party_key"),
        )
        if linked:
            return conversation_id, True

        LOGGER.info(f"Lost link race for {purpose}/{party_key}; discarding conversation {conversation_id}")
        orphan = self.session.get(Conversation, conversation_id)
        self.session.delete(orphan)
        self.session.flush()
        return self._linked_conversation_id(purpose, party_key), False

    def _linked_conversation_id(self, purpose: str, party_key: str) -> Optional[int]:
        return self.session.execute(
            select(ConversationLink.conversation_id).where(
                ConversationLink.purpose == purpose,
                ConversationLink.party_key == party_key,
            )
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    @store_operation
    def post_message(
        self,
        conversation_id: int,
        sender_id: int,
        body: str,
        attachment_key: Optional[str] = None,
    ) -> int:
        """
        Append a message and move the sender's read position onto it.

        Raises:
            InvalidInputError: Body empty after trimming.
            ForbiddenError: Sender is not a participant.
        """
        text = (body or "").strip()
        if not text:
            raise InvalidInputError("Message body required")

        participant = self._participant(conversation_id, sender_id)
        if participant is None:
            raise ForbiddenError("Not a participant of this conversation")

        message = Message(
            conversation_id=conversation_id,
            sender_user_id=sender_id,
            body=text,
            attachment_key=attachment_key,
        )
        self.session.add(message)
        self.session.flush()

        self._advance_read_position(participant, message.id)
        LOGGER.info(
            f"Message {message.id} posted to conversation {conversation_id}",
            extra={"extra_data": {"sender": sender_id, "attachment": bool(attachment_key)}},
        )
        return message.id

    def _advance_read_position(self, participant: ConversationParticipant, message_id: int) -> None:
        """Move a read position forward only; a stale writer never moves it back."""
        self.session.execute(
            update(ConversationParticipant)
            .where(
                ConversationParticipant.id == participant.id,
                or_(
                    ConversationParticipant.last_read_message_id.is_(None),
                    ConversationParticipant.last_read_message_id < message_id,
                ),
            )
            .values(last_read_message_id=message_id)
            .execution_options(synchronize_session=False)
        )
        self.session.expire(participant, ["last_read_message_id"])

    @store_operation
    def mark_read(self, conversation_id: int, user_id: int) -> int:
        """
        Catch the user's read position up to the newest message.

        Returns:
            The id the read position now points at (0 for an empty thread).

        Raises:
            NotFoundError: Conversation absent or user not a participant.
        """
        participant = self._participant(conversation_id, user_id)
        if participant is None:
            raise NotFoundError("Conversation not found")

        last_id = self.session.execute(
            select(func.max(Message.id)).where(Message.conversation_id == conversation_id)
        ).scalar() or 0
        if last_id:
            self._advance_read_position(participant, last_id)
        return last_id

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @store_operation
    def list_for_user(self, user_id: int, limit: Optional[int] = None) -> List[ConversationSummary]:
        """
        The user's conversations, newest-created first.

        Each row carries the latest message body and the number of messages
        from other participants past the user's read position.
        """
        last_message = (
            select(Message.body)
            .where(Message.conversation_id == Conversation.id)
            .order_by(Message.id.desc())
            .limit(1)
            .correlate(Conversation)
            .scalar_subquery()
        )
        unread_count = (
            select(func.count(Message.id))
            .where(
                Message.conversation_id == Conversation.id,
                Message.id > func.coalesce(ConversationParticipant.last_read_message_id, 0),
                Message.sender_user_id != user_id,
            )
            .correlate(Conversation, ConversationParticipant)
            .scalar_subquery()
        )

        rows = self.session.execute(
            select(
                Conversation.id,
                Conversation.subject,
                Conversation.created_at,
                last_message.label("last_message"),
                unread_count.label("unread_count"),
            )
            .join(
                ConversationParticipant,
                and_(
                    ConversationParticipant.conversation_id == Conversation.id,
                    ConversationParticipant.user_id == user_id,
                ),
            )
            .order_by(Conversation.created_at.desc(), Conversation.id.desc())
            .limit(limit or self.settings.conversation_list_limit)
        ).all()

        return [
            ConversationSummary(
                id=row.id,
                subject=row.subject,
                created_at=row.created_at,
                last_message=row.last_message,
                unread_count=int(row.unread_count or 0),
            )
            for row in rows
        ]

    @store_operation
    def unread_count(self, conversation_id: int, user_id: int) -> int:
        """Unread messages for one participant; NotFoundError for non-members."""
        participant = self._participant(conversation_id, user_id)
        if participant is None:
            raise NotFoundError("Conversation not found")
        return self.session.execute(
            select(func.count(Message.id)).where(
                Message.conversation_id == conversation_id,
                Message.id > (participant.last_read_message_id or 0),
                Message.sender_user_id != user_id,
            )
        ).scalar() or 0

    @store_operation
    def get(self, conversation_id: int, user_id: int) -> ConversationDetail:
        """
        Participants and every message in ascending id order.

        Raises:
            NotFoundError: The conversation does not exist or the user is
                not a participant. The two cases look identical.
        """
        if self._participant(conversation_id, user_id) is None:
            raise NotFoundError("Conversation not found")

        conversation = self.session.get(Conversation, conversation_id)
        participants = self.session.execute(
            select(ConversationParticipant)
            .where(ConversationParticipant.conversation_id == conversation_id)
            .order_by(ConversationParticipant.id)
        ).scalars().all()
        messages = self.session.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.id.asc())
        ).scalars().all()

        return ConversationDetail(
            conversation=conversation,
            participants=list(participants),
            messages=list(messages),
        )


def get_conversation_store(session: Session) -> ConversationStore:
    """Get a ConversationStore instance."""
    return ConversationStore(session)


__all__ = [
    "ConversationStore",
    "get_conversation_store",
]
