"""
Referral workflow between two agents.

    offered -> accepted -> completed
            -> declined

declined and completed are terminal. Every transition is a conditional
UPDATE on the expected prior status; a caller that loses the race gets
ConflictError rather than overwriting the winner.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from core.config import get_settings
from core.db import store_operation
from core.exceptions import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from core.logging_config import get_logger
from core.models import (
    LinkPurpose,
    NotificationType,
    ParticipantRole,
    Referral,
    ReferralStatus,
)
from core.types import ReferralContext, ReferralCounts, parse_payload
from core.utils import clamp_percent, party_key, utcnow
from services.conversation import ConversationStore, get_conversation_store
from services.identity import IdentityDirectory, get_identity_directory
from services.notification import NotificationDispatcher, get_notification_dispatcher

LOGGER = get_logger(__name__)

REFERRAL_SUBJECT = "Referral"
REFERRAL_OPENING = "I would like to refer a client."


class ReferralWorkflow:
    """Owns referral rows and their status machine."""

    def __init__(
        self,
        session: Session,
        conversations: ConversationStore,
        notifier: NotificationDispatcher,
        identity: IdentityDirectory,
    ):
        """Initialize the referral workflow."""
        self.session = session
        self.conversations = conversations
        self.notifier = notifier
        self.identity = identity
        self.settings = get_settings()

    # -------------------------------------------------------------------------
    # Offer
    # -------------------------------------------------------------------------

    @store_operation
    def offer(
        self,
        from_id: int,
        to_id: int,
        fee_percent: Optional[float] = None,
        context: Union[ReferralContext, Dict[str, Any], None] = None,
        conversation_id: Optional[int] = None,
    ) -> Referral:
        """
        Offer a referral to another agent.

        Without an explicit conversation_id the referral thread for the two
        agents is reused, or created and seeded with an opening message.

        Args:
            from_id: Referring agent.
            to_id: Receiving agent.
            fee_percent: Clamped into [0, 100]; defaults to the configured fee.
            context: Optional client/property details.
            conversation_id: Attach to this thread instead of the referral thread.

        Returns:
            The new Referral in offered state.

        Raises:
            InvalidInputError: Self-referral, non-numeric fee or malformed context.
            NotFoundError: Recipient unknown.
            ForbiddenError: from_id is not in the given conversation.
        """
        if from_id == to_id:
            raise InvalidInputError("Cannot refer a client to yourself")
        if self.identity.resolve_user(to_id) is None:
            raise NotFoundError("Recipient not found", user_id=to_id)

        raw_fee = self.settings.referral_default_fee_pct if fee_percent is None else fee_percent
        try:
            fee = clamp_percent(raw_fee)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError("referral fee must be a number") from exc

        ctx = parse_payload(ReferralContext, context)

        if conversation_id is not None:
            if not self.conversations.is_participant(conversation_id, from_id):
                raise ForbiddenError("Not a participant of this conversation")
            self.conversations.post_message(
                conversation_id, from_id, f"Referral offered ({fee:g}% fee)."
            )
        else:
            conversation_id, _ = self.conversations.find_or_create_linked(
                LinkPurpose.REFERRAL.value,
                party_key(from_id, to_id),
                creator_id=from_id,
                participant_ids=[to_id],
                subject=REFERRAL_SUBJECT,
                initial_body=REFERRAL_OPENING,
                roles={from_id: ParticipantRole.AGENT.value, to_id: ParticipantRole.AGENT.value},
            )

        referral = Referral(
            from_user_id=from_id,
            to_user_id=to_id,
            conversation_id=conversation_id,
            fee_percent=fee,
            context=ctx.model_dump(exclude_none=True) if ctx else None,
            status=ReferralStatus.OFFERED.value,
        )
        self.session.add(referral)
        self.session.flush()

        self.notifier.notify(
            to_id,
            NotificationType.REFERRAL_OFFER,
            "New referral offer",
            "An agent sent you a referral.",
            {"referral_id": referral.id, "conversation_id": conversation_id, "fee": fee},
        )

        LOGGER.info(
            f"Referral {referral.id} offered",
            extra={"extra_data": {
                "referral_id": referral.id,
                "from": from_id,
                "to": to_id,
                "conversation_id": conversation_id,
                "fee": fee,
            }},
        )
        return referral

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _load(self, referral_id: int) -> Referral:
        referral = self.session.get(Referral, referral_id)
        if referral is None:
            raise NotFoundError("Referral not found", referral_id=referral_id)
        return referral

    def _transition(self, referral: Referral, expected: ReferralStatus, target: ReferralStatus) -> None:
        """Compare-and-set the status; ConflictError if it is no longer `expected`."""
        if referral.status != expected.value:
            raise ConflictError(
                f"Referral is {referral.status}, not {expected.value}",
                referral_id=referral.id,
            )

        now = utcnow()
        values: Dict[str, Any] = {"status": target.value, "updated_at": now}
        if target in (ReferralStatus.ACCEPTED, ReferralStatus.DECLINED):
            values["responded_at"] = now
        if target == ReferralStatus.COMPLETED:
            values["completed_at"] = now

        result = self.session.execute(
            update(Referral)
            .where(Referral.id == referral.id, Referral.status == expected.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.expire(referral)
        if result.rowcount != 1:
            raise ConflictError("Referral changed concurrently", referral_id=referral.id)

        LOGGER.info(
            f"Referral {referral.id} {expected.value} -> {target.value}",
            extra={"extra_data": {"referral_id": referral.id}},
        )

    def _respond(self, referral_id: int, actor_id: int, target: ReferralStatus) -> Referral:
        referral = self._load(referral_id)
        if referral.to_user_id != actor_id:
            raise ForbiddenError("Only the recipient may respond", referral_id=referral_id)
        self._transition(referral, ReferralStatus.OFFERED, target)
        return referral

    @store_operation
    def accept(self, referral_id: int, actor_id: int) -> Referral:
        """Recipient accepts an offered referral; the referrer is notified."""
        referral = self._respond(referral_id, actor_id, ReferralStatus.ACCEPTED)
        self.notifier.notify(
            referral.from_user_id,
            NotificationType.REFERRAL_ACCEPT,
            "Referral accepted",
            "Your referral was accepted.",
            {"referral_id": referral_id},
        )
        return referral

    @store_operation
    def decline(self, referral_id: int, actor_id: int) -> Referral:
        """Recipient declines an offered referral; the referrer is notified."""
        referral = self._respond(referral_id, actor_id, ReferralStatus.DECLINED)
        self.notifier.notify(
            referral.from_user_id,
            NotificationType.REFERRAL_DECLINE,
            "Referral declined",
            "Your referral was declined.",
            {"referral_id": referral_id},
        )
        return referral

    @store_operation
    def complete(self, referral_id: int, actor_id: int) -> Referral:
        """
        Either party closes an accepted referral. Both parties are notified.

        Raises:
            ForbiddenError: Actor is not one of the two agents.
            ConflictError: Referral is not accepted.
        """
        referral = self._load(referral_id)
        if actor_id not in (referral.from_user_id, referral.to_user_id):
            raise ForbiddenError("Forbidden", referral_id=referral_id)
        self._transition(referral, ReferralStatus.ACCEPTED, ReferralStatus.COMPLETED)

        for uid in (referral.from_user_id, referral.to_user_id):
            self.notifier.notify(
                uid,
                NotificationType.REFERRAL_COMPLETE,
                "Referral marked completed",
                "The referral has been marked as completed.",
                {"referral_id": referral_id},
            )
        return referral

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @store_operation
    def list_mine(self, user_id: int, limit: int = 200) -> List[Referral]:
        """Referrals sent or received by the user, newest first."""
        return list(
            self.session.execute(
                select(Referral)
                .where(or_(Referral.from_user_id == user_id, Referral.to_user_id == user_id))
                .order_by(Referral.created_at.desc(), Referral.id.desc())
                .limit(limit)
            ).scalars().all()
        )

    @store_operation
    def get(self, referral_id: int, requester_id: int) -> Referral:
        """A single referral, visible to its two parties only."""
        referral = self._load(referral_id)
        if requester_id not in (referral.from_user_id, referral.to_user_id):
            raise ForbiddenError("Forbidden", referral_id=referral_id)
        return referral

    @store_operation
    def counts(self, user_id: int) -> ReferralCounts:
        """Badge counts: offers awaiting the user, and accepted referrals they are part of."""
        offered_to_me = self.session.execute(
            select(func.count(Referral.id)).where(
                Referral.to_user_id == user_id,
                Referral.status == ReferralStatus.OFFERED.value,
            )
        ).scalar() or 0
        accepted_active = self.session.execute(
            select(func.count(Referral.id)).where(
                or_(Referral.from_user_id == user_id, Referral.to_user_id == user_id),
                Referral.status == ReferralStatus.ACCEPTED.value,
            )
        ).scalar() or 0
        return ReferralCounts(offered_to_me=offered_to_me, accepted_active=accepted_active)


def get_referral_workflow(
    session: Session,
    notifier: Optional[NotificationDispatcher] = None,
    identity: Optional[IdentityDirectory] = None,
) -> ReferralWorkflow:
    """Get a ReferralWorkflow wired to the configured collaborators."""
    identity = identity or get_identity_directory(session)
    return ReferralWorkflow(
        session,
        conversations=get_conversation_store(session),
        notifier=notifier or get_notification_dispatcher(session, identity=identity),
        identity=identity,
    )


__all__ = [
    "ReferralWorkflow",
    "get_referral_workflow",
    "REFERRAL_SUBJECT",
    "REFERRAL_OPENING",
]
