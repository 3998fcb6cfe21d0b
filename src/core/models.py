"""SQLAlchemy ORM models for the coordination layer."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base


# =============================================================================
# Enums
# =============================================================================


class UserRole(str, enum.Enum):
    """Roles known to the identity store."""
    OWNER = "owner"
    AGENT = "agent"
    ADMIN = "admin"


class ParticipantRole(str, enum.Enum):
    """Role labels attached to conversation participants."""
    OWNER = "owner"      # Creator of a plain conversation, or the listing owner
    MEMBER = "member"
    AGENT = "agent"


class ContractStatus(str, enum.Enum):
    """Contract lifecycle. No path back."""
    DRAFT = "draft"
    SENT = "sent"
    SIGNED = "signed"


class SignerRole(str, enum.Enum):
    SENDER = "sender"
    SIGNER = "signer"


class ReferralStatus(str, enum.Enum):
    """Referral hand-off states; declined and completed are terminal."""
    OFFERED = "offered"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    COMPLETED = "completed"


class ListingStatus(str, enum.Enum):
    """Owner-posted marketplace listing states."""
    OPEN = "open"
    ENGAGED = "engaged"


class LeadStatus(str, enum.Enum):
    NEW = "new"
    CLAIMED = "claimed"


class LeadSource(str, enum.Enum):
    MARKETPLACE = "marketplace"


class LinkPurpose(str, enum.Enum):
    """Why a conversation was materialized for a set of parties."""
    REFERRAL = "referral"
    MARKETPLACE_LEAD = "marketplace_lead"


class NotificationChannel(str, enum.Enum):
    INAPP = "inapp"
    EMAIL = "email"


class NotificationType(str, enum.Enum):
    """Event types delivered by the notification dispatcher."""
    CONTRACT_SENT = "contract_sent"
    CONTRACT_SIGNED = "contract_signed"
    REFERRAL_OFFER = "referral_offer"
    REFERRAL_ACCEPT = "referral_accept"
    REFERRAL_DECLINE = "referral_decline"
    REFERRAL_COMPLETE = "referral_complete"
    LEAD_MATCH = "lead_match"
    LEAD_CLAIM = "lead_claim"


# =============================================================================
# Identity (owned by the external identity store, mirrored here)
# =============================================================================


class User(Base):
    """A marketplace user as seen by the coordination layer."""
    __tablename__ = "user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), default=UserRole.OWNER.value, nullable=False)
    primary_area_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    service_areas: Mapped[list["AgentServiceArea"]] = relationship(
        "AgentServiceArea", back_populates="user", cascade="all, delete-orphan"
    )


class AgentServiceArea(Base):
    """Secondary area codes an agent has configured beyond their primary one."""
    __tablename__ = "agent_service_area"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    area_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    user: Mapped["User"] = relationship("User", back_populates="service_areas")

    __table_args__ = (
        UniqueConstraint("user_id", "area_code", name="uq_agent_service_area"),
    )


# =============================================================================
# Conversations
# =============================================================================


class Conversation(Base):
    """A message thread between two or more participants."""
    __tablename__ = "conversation"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    participants: Mapped[list["ConversationParticipant"]] = relationship(
        "ConversationParticipant", back_populates="conversation", cascade="all, delete-orphan"
    )
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )


class ConversationParticipant(Base):
    """
    Membership row. Absence of a row means no access at all.

    last_read_message_id is the read position; every message with a higher
    id sent by someone else counts as unread.
    """
    __tablename__ = "conversation_participant"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversation.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), default=ParticipantRole.MEMBER.value, nullable=False)
    last_read_message_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="participants")

    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_conversation_participant"),
    )


class Message(Base):
    """A plain-text message; id order is the only ordering used for reads."""
    __tablename__ = "message"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversation.id"), nullable=False)
    sender_user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    attachment_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        Index("ix_message_conversation_id_id", "conversation_id", "id"),
    )


class ConversationLink(Base):
    """
    Indexed "does a thread already exist for this pairing" lookup.

    party_key is the sorted party ids (plus the lead id for marketplace
    threads), unique per purpose.
    """
    __tablename__ = "conversation_link"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    party_key: Mapped[str] = mapped_column(String(128), nullable=False)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversation.id"), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("purpose", "party_key", name="uq_conversation_link"),
    )


# =============================================================================
# Contracts
# =============================================================================


class Contract(Base):
    """
    A contract document awaiting attestation by every signer.

    The row (and its file_key) exists before the bytes are uploaded.
    """
    __tablename__ = "contract"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(50), default="custom", nullable=False)
    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    file_key: Mapped[str] = mapped_column(String(512), nullable=False)
    conversation_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("conversation.id"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=ContractStatus.DRAFT.value, nullable=False, index=True
    )

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    signers: Mapped[list["ContractSigner"]] = relationship(
        "ContractSigner",
        back_populates="contract",
        cascade="all, delete-orphan",
        order_by="ContractSigner.id",
    )


class ContractSigner(Base):
    """One required attestation; signed_at stays null until the user signs."""
    __tablename__ = "contract_signer"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contract_id: Mapped[int] = mapped_column(ForeignKey("contract.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), default=SignerRole.SIGNER.value, nullable=False)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    contract: Mapped["Contract"] = relationship("Contract", back_populates="signers")

    __table_args__ = (
        UniqueConstraint("contract_id", "user_id", name="uq_contract_signer"),
    )


# =============================================================================
# Referrals
# =============================================================================


class Referral(Base):
    """A referral offer from one agent to another."""
    __tablename__ = "referral"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    to_user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("conversation.id"), nullable=False)
    fee_percent: Mapped[float] = mapped_column(Float, nullable=False)
    context: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ReferralStatus.OFFERED.value, nullable=False, index=True
    )

    responded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# =============================================================================
# Marketplace leads
# =============================================================================


class MarketplaceListing(Base):
    """An owner's intent to list, posted into the marketplace."""
    __tablename__ = "marketplace_listing"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    area_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    details: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ListingStatus.OPEN.value, nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    lead: Mapped[Optional["Lead"]] = relationship("Lead", back_populates="listing", uselist=False)

    __table_args__ = (
        Index("ix_marketplace_listing_area_status", "area_code", "status"),
    )


class Lead(Base):
    """
    The claimable record paired 1:1 with a marketplace listing.

    status moves new -> claimed exactly once; assignee is the winner.
    """
    __tablename__ = "lead"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(32), default=LeadSource.MARKETPLACE.value, nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    related_id: Mapped[int] = mapped_column(
        ForeignKey("marketplace_listing.id"), nullable=False, unique=True
    )
    owner_user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    assignee_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("user.id"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), default=LeadStatus.NEW.value, nullable=False, index=True
    )

    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    listing: Mapped["MarketplaceListing"] = relationship("MarketplaceListing", back_populates="lead")
    matches: Mapped[list["LeadMatch"]] = relationship(
        "LeadMatch", back_populates="lead", cascade="all, delete-orphan"
    )


class LeadMatch(Base):
    """An agent matched to a lead at fan-out time. Written once."""
    __tablename__ = "lead_match"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lead_id: Mapped[int] = mapped_column(ForeignKey("lead.id"), nullable=False)
    agent_user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False, index=True)
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    lead: Mapped["Lead"] = relationship("Lead", back_populates="matches")

    __table_args__ = (
        UniqueConstraint("lead_id", "agent_user_id", name="uq_lead_match"),
    )


# =============================================================================
# Notifications
# =============================================================================


class Notification(Base):
    """
    In-app record of an event delivered to one user.

    channel starts as inapp and becomes email once the relay confirms;
    delivered_at is only ever set by a successful relay.
    """
    __tablename__ = "notification"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    channel: Mapped[str] = mapped_column(
        String(16), default=NotificationChannel.INAPP.value, nullable=False
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    seen_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notification_user_id_id", "user_id", "id"),
    )


__all__ = [
    "Base",
    "UserRole",
    "ParticipantRole",
    "ContractStatus",
    "SignerRole",
    "ReferralStatus",
    "ListingStatus",
    "LeadStatus",
    "LeadSource",
    "LinkPurpose",
    "NotificationChannel",
    "NotificationType",
    "User",
    "AgentServiceArea",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "ConversationLink",
    "Contract",
    "ContractSigner",
    "Referral",
    "MarketplaceListing",
    "Lead",
    "LeadMatch",
    "Notification",
]
