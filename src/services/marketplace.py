"""
Marketplace lead matching and claiming.

An owner posts a listing; a paired lead is fanned out to every agent whose
area set contains the listing's area code. The first agent to claim wins
the lead (a conditional UPDATE on status='new'); every claimant, winner or
not, gets a conversation with the owner for that lead.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from sqlalchemy import and_, func, select, update
from sqlalchemy.orm import Session

from core.config import get_settings
from core.db import insert_ignore, store_operation
from core.exceptions import ForbiddenError, InvalidInputError, NotFoundError
from core.logging_config import get_logger
from core.models import (
    Lead,
    LeadMatch,
    LeadSource,
    LeadStatus,
    LinkPurpose,
    ListingStatus,
    MarketplaceListing,
    NotificationType,
    ParticipantRole,
)
from core.types import ClaimResult, LeadDetails, OpenListing, PostedLead, parse_payload
from core.utils import normalize_area_code, utcnow
from services.conversation import ConversationStore, get_conversation_store
from services.identity import IdentityDirectory, get_identity_directory
from services.notification import NotificationDispatcher, get_notification_dispatcher

LOGGER = get_logger(__name__)

CLAIM_OPENING = "Hi! I'm interested in your property."
LISTABLE_STATUSES = {ListingStatus.OPEN.value, ListingStatus.ENGAGED.value}


def lead_party_key(lead_id: int, agent_id: int) -> str:
    """Conversation link key for one lead and one claiming agent."""
    return f"{lead_id}:{agent_id}"


class LeadMatchingService:
    """
    Owns marketplace listings, leads and lead matches.

    Conversations and notifications are reached only through the
    conversation store and notification dispatcher.
    """

    def __init__(
        self,
        session: Session,
        conversations: ConversationStore,
        notifier: NotificationDispatcher,
        identity: IdentityDirectory,
    ):
        """Initialize the lead matching service."""
        self.session = session
        self.conversations = conversations
        self.notifier = notifier
        self.identity = identity
        self.settings = get_settings()

    # =========================================================================
    # Posting and fan-out
    # =========================================================================

    @store_operation
    def post_lead(
        self,
        owner_id: int,
        title: str,
        area_code: str,
        details: Union[LeadDetails, Dict[str, Any], None] = None,
        address: Optional[str] = None,
    ) -> PostedLead:
        """
        Post a listing, create its lead and notify matching agents.

        Args:
            owner_id: Posting owner.
            title: Required.
            area_code: Required; agents are matched on it.
            details: Optional structured listing facts.
            address: Optional street address.

        Returns:
            PostedLead with listing id, lead id and number of matched agents.

        Raises:
            InvalidInputError: Missing title or area code, or malformed details.
        """
        clean_title = (title or "").strip()
        code = normalize_area_code(area_code)
        if not clean_title or not code:
            raise InvalidInputError("title and area_code required")
        parsed = parse_payload(LeadDetails, details)

        listing = MarketplaceListing(
            owner_user_id=owner_id,
            title=clean_title[:255],
            address=(address or "").strip() or None,
            area_code=code,
            details=parsed.model_dump(exclude_none=True) if parsed else None,
            status=ListingStatus.OPEN.value,
        )
        self.session.add(listing)
        self.session.flush()

        lead = Lead(
            source=LeadSource.MARKETPLACE.value,
            subject=f"Owner lead: {clean_title}"[:255],
            related_id=listing.id,
            owner_user_id=owner_id,
            status=LeadStatus.NEW.value,
        )
        self.session.add(lead)
        self.session.flush()

        LOGGER.info(
            f"Lead {lead.id} posted for listing {listing.id}",
            extra={"extra_data": {"lead_id": lead.id, "owner": owner_id, "area_code": code}},
        )

        matched = self.fan_out(lead.id)
        return PostedLead(listing_id=listing.id, lead_id=lead.id, matched_count=matched)

    @store_operation
    def fan_out(self, lead_id: int) -> int:
        """
        Match the lead to every agent covering its area and notify new matches.

        Safe to re-run: an agent already matched is not notified again.

        Returns:
            Number of agents matched to the lead.
        """
        lead = self.session.get(Lead, lead_id)
        if lead is None:
            raise NotFoundError("Lead not found", lead_id=lead_id)
        listing = lead.listing

        candidates = self.identity.agents_for_area(listing.area_code)

        notified = 0
        for agent_id in candidates:
            inserted = insert_ignore(
                self.session,
                LeadMatch,
                {"lead_id": lead_id, "agent_user_id": agent_id, "notified_at": utcnow()},
                index_elements=("lead_id", "agent_user_id"),
            )
            if not inserted:
                continue
            self.notifier.notify(
                agent_id,
                NotificationType.LEAD_MATCH,
                "New lead in your area",
                f"A new owner lead is available: {listing.title}",
                {"lead_id": lead_id, "listing_id": listing.id, "area_code": listing.area_code},
            )
            notified += 1

        LOGGER.info(
            f"Fan-out for lead {lead_id}: {len(candidates)} matched, {notified} notified",
            extra={"extra_data": {"lead_id": lead_id, "area_code": listing.area_code}},
        )
        return len(candidates)

    # =========================================================================
    # Browsing
    # =========================================================================

    @store_operation
    def list_open(self, agent_id: int, status: Optional[str] = None) -> List[OpenListing]:
        """
        Listings in the agent's areas, newest first.

        Args:
            agent_id: Requesting agent.
            status: "open" (default) or "engaged".

        Raises:
            ForbiddenError: Caller is not an agent.
            InvalidInputError: Unknown status filter.
        """
        user = self.identity.resolve_user(agent_id)
        if user is None or not user.is_agent:
            raise ForbiddenError("Agents only")

        status = (status or ListingStatus.OPEN.value).strip().lower()
        if status not in LISTABLE_STATUSES:
            raise InvalidInputError(f"status must be one of {sorted(LISTABLE_STATUSES)}")

        if not user.area_codes:
            return []

        interested = (
            select(func.count(LeadMatch.id))
            .where(LeadMatch.lead_id == Lead.id)
            .correlate(Lead)
            .scalar_subquery()
        )
        rows = self.session.execute(
            select(MarketplaceListing, Lead.id, interested.label("interested_agents"))
            .join(
                Lead,
                and_(
                    Lead.related_id == MarketplaceListing.id,
                    Lead.source == LeadSource.MARKETPLACE.value,
                ),
            )
            .where(
                MarketplaceListing.area_code.in_(sorted(user.area_codes)),
                MarketplaceListing.status == status,
            )
            .order_by(MarketplaceListing.created_at.desc(), MarketplaceListing.id.desc())
            .limit(self.settings.lead_list_limit)
        ).all()

        return [
            OpenListing(listing=listing, lead_id=lead_id, interested_agents=int(count or 0))
            for listing, lead_id, count in rows
        ]

    # =========================================================================
    # Claiming
    # =========================================================================

    @store_operation
    def claim(self, listing_id: int, agent_id: int) -> ClaimResult:
        """
        Claim a lead and open (or reuse) a conversation with its owner.

        Only one agent ever becomes the assignee. Later claimants are not
        refused: they get their own conversation with the owner, and
        calling again returns the same conversation.

        Raises:
            NotFoundError: Listing or its lead is missing.
            ForbiddenError: The listing's area is outside the agent's areas.
        """
        listing = self.session.get(MarketplaceListing, listing_id)
        if listing is None:
            raise NotFoundError("Listing not found", listing_id=listing_id)
        lead = self.session.execute(
            select(Lead).where(
                Lead.related_id == listing_id,
                Lead.source == LeadSource.MARKETPLACE.value,
            )
        ).scalar_one_or_none()
        if lead is None:
            raise NotFoundError("Lead not found", listing_id=listing_id)

        agent = self.identity.resolve_user(agent_id)
        if agent is None or not agent.is_agent or listing.area_code not in agent.area_codes:
            raise ForbiddenError("Not in your area", listing_id=listing_id)

        won = self._try_claim(lead, listing, agent_id)

        conversation_id, created = self.conversations.find_or_create_linked(
            LinkPurpose.MARKETPLACE_LEAD.value,
            lead_party_key(lead.id, agent_id),
            creator_id=agent_id,
            participant_ids=[listing.owner_user_id],
            subject=f"Marketplace: {listing.title}",
            initial_body=CLAIM_OPENING,
            roles={
                listing.owner_user_id: ParticipantRole.OWNER.value,
                agent_id: ParticipantRole.AGENT.value,
            },
        )

        self.notifier.notify(
            listing.owner_user_id,
            NotificationType.LEAD_CLAIM,
            "An agent reached out about your property",
            "Check your inbox.",
            {"conversation_id": conversation_id, "listing_id": listing_id, "lead_id": lead.id},
        )

        LOGGER.info(
            f"Agent {agent_id} claimed listing {listing_id}" if won
            else f"Agent {agent_id} reached out on already-claimed listing {listing_id}",
            extra={"extra_data": {
                "lead_id": lead.id,
                "conversation_id": conversation_id,
                "won": won,
                "conversation_created": created,
            }},
        )
        return ClaimResult(
            conversation_id=conversation_id,
            claimed=won,
            assignee_user_id=lead.assignee_user_id,
            conversation_created=created,
        )

    def _try_claim(self, lead: Lead, listing: MarketplaceListing, agent_id: int) -> bool:
        """
        new -> claimed in one conditional UPDATE; the row count says who won.

        The listing flips to engaged in the same transaction, only for the winner.
        """
        result = self.session.execute(
            update(Lead)
            .where(Lead.id == lead.id, Lead.status == LeadStatus.NEW.value)
            .values(
                status=LeadStatus.CLAIMED.value,
                assignee_user_id=agent_id,
                claimed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        won = result.rowcount == 1
        if won:
            self.session.execute(
                update(MarketplaceListing)
                .where(
                    MarketplaceListing.id == listing.id,
                    MarketplaceListing.status == ListingStatus.OPEN.value,
                )
                .values(status=ListingStatus.ENGAGED.value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
        self.session.expire(lead)
        self.session.expire(listing)
        return won


def get_lead_matching_service(
    session: Session,
    notifier: Optional[NotificationDispatcher] = None,
    identity: Optional[IdentityDirectory] = None,
) -> LeadMatchingService:
    """Get a LeadMatchingService wired to the configured collaborators."""
    identity = identity or get_identity_directory(session)
    return LeadMatchingService(
        session,
        conversations=get_conversation_store(session),
        notifier=notifier or get_notification_dispatcher(session, identity=identity),
        identity=identity,
    )


__all__ = [
    "LeadMatchingService",
    "get_lead_matching_service",
    "lead_party_key",
    "CLAIM_OPENING",
]
