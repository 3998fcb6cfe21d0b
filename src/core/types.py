"""Shared dataclasses, payload schemas and type helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.exceptions import InvalidInputError

P = TypeVar("P", bound=BaseModel)


# =============================================================================
# Structured payloads (stored as JSON, validated on the way in)
# =============================================================================


class NotificationPayload(BaseModel):
    """Body of a notification row."""

    model_config = ConfigDict(extra="forbid")

    subject: str
    message: str
    extra: Dict[str, Any] = Field(default_factory=dict)


class ReferralContext(BaseModel):
    """What the referring agent knows about the client or property."""

    model_config = ConfigDict(extra="forbid")

    client_name: Optional[str] = Field(default=None, max_length=255)
    property_address: Optional[str] = Field(default=None, max_length=255)
    area_code: Optional[str] = Field(default=None, max_length=20)
    price: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)


class LeadDetails(BaseModel):
    """Owner-supplied facts about a marketplace listing."""

    model_config = ConfigDict(extra="forbid")

    property_type: Optional[str] = Field(default=None, max_length=50)
    bedrooms: Optional[int] = Field(default=None, ge=0)
    bathrooms: Optional[float] = Field(default=None, ge=0)
    asking_price: Optional[float] = Field(default=None, ge=0)
    timeline: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=2000)


def parse_payload(model: Type[P], raw: Any) -> Optional[P]:
    """
    Validate an optional payload at the boundary.

    Accepts an instance of the model, a mapping, or None.

    Raises:
        InvalidInputError: If the mapping does not fit the model.
    """
    if raw is None or isinstance(raw, model):
        return raw
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid {model.__name__}: {exc.errors()[0]['msg']}") from exc


# =============================================================================
# Collaborator views
# =============================================================================


@dataclass(slots=True, frozen=True)
class UserIdentity:
    """What the identity collaborator tells us about a user."""

    id: int
    email: Optional[str]
    role: str
    area_codes: FrozenSet[str] = frozenset()

    @property
    def is_agent(self) -> bool:
        return self.role == "agent"


# =============================================================================
# Operation results
# =============================================================================


@dataclass(slots=True, frozen=True)
class ConversationSummary:
    """One row of a user's inbox."""

    id: int
    subject: Optional[str]
    created_at: Optional[datetime]
    last_message: Optional[str]
    unread_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject": self.subject,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_message": self.last_message,
            "unread_count": self.unread_count,
        }


@dataclass(slots=True)
class ConversationDetail:
    """A conversation with its participants and full message history."""

    conversation: Any
    participants: List[Any] = field(default_factory=list)
    messages: List[Any] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class ContractDraft:
    """A newly created draft plus the upload handle for its file."""

    contract_id: int
    upload_url: str
    file_key: str


@dataclass(slots=True)
class ContractView:
    contract: Any
    signers: List[Any] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class PostedLead:
    listing_id: int
    lead_id: int
    matched_count: int


@dataclass(slots=True)
class OpenListing:
    """A listing visible to an agent, with the number of matched agents."""

    listing: Any
    lead_id: int
    interested_agents: int


@dataclass(slots=True, frozen=True)
class ClaimResult:
    """
    Outcome of a claim call.

    claimed is True only for the caller whose conditional update won.
    """

    conversation_id: int
    claimed: bool
    assignee_user_id: Optional[int]
    conversation_created: bool


@dataclass(slots=True, frozen=True)
class ReferralCounts:
    offered_to_me: int
    accepted_active: int

    def as_dict(self) -> Dict[str, int]:
        return {"offered_to_me": self.offered_to_me, "accepted_active": self.accepted_active}


__all__ = [
    "NotificationPayload",
    "ReferralContext",
    "LeadDetails",
    "parse_payload",
    "UserIdentity",
    "ConversationSummary",
    "ConversationDetail",
    "ContractDraft",
    "ContractView",
    "PostedLead",
    "OpenListing",
    "ClaimResult",
    "ReferralCounts",
]
