"""JSON shapes returned by the API routes."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from core.models import (
    Contract,
    ContractSigner,
    ConversationParticipant,
    MarketplaceListing,
    Message,
    Notification,
    Referral,
)
from core.types import ClaimResult, ContractView, ConversationDetail, OpenListing


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def participant_dict(p: ConversationParticipant) -> Dict[str, Any]:
    return {
        "user_id": p.user_id,
        "role": p.role,
        "last_read_message_id": p.last_read_message_id,
    }


def message_dict(m: Message) -> Dict[str, Any]:
    return {
        "id": m.id,
        "conversation_id": m.conversation_id,
        "sender_user_id": m.sender_user_id,
        "body": m.body,
        "attachment_key": m.attachment_key,
        "created_at": _iso(m.created_at),
    }


def conversation_detail_dict(detail: ConversationDetail) -> Dict[str, Any]:
    c = detail.conversation
    return {
        "conversation": {
            "id": c.id,
            "subject": c.subject,
            "created_by_user_id": c.created_by_user_id,
            "created_at": _iso(c.created_at),
        },
        "participants": [participant_dict(p) for p in detail.participants],
        "messages": [message_dict(m) for m in detail.messages],
    }


def signer_dict(s: ContractSigner) -> Dict[str, Any]:
    return {"user_id": s.user_id, "role": s.role, "signed_at": _iso(s.signed_at)}


def contract_dict(c: Contract) -> Dict[str, Any]:
    return {
        "id": c.id,
        "title": c.title,
        "type": c.type,
        "created_by_user_id": c.created_by_user_id,
        "file_key": c.file_key,
        "conversation_id": c.conversation_id,
        "status": c.status,
        "sent_at": _iso(c.sent_at),
        "signed_at": _iso(c.signed_at),
        "created_at": _iso(c.created_at),
    }


def contract_view_dict(view: ContractView) -> Dict[str, Any]:
    return {
        "contract": contract_dict(view.contract),
        "signers": [signer_dict(s) for s in view.signers],
    }


def referral_dict(r: Referral) -> Dict[str, Any]:
    return {
        "id": r.id,
        "from_user_id": r.from_user_id,
        "to_user_id": r.to_user_id,
        "conversation_id": r.conversation_id,
        "fee_percent": r.fee_percent,
        "context": r.context,
        "status": r.status,
        "responded_at": _iso(r.responded_at),
        "completed_at": _iso(r.completed_at),
        "created_at": _iso(r.created_at),
    }


def listing_dict(listing: MarketplaceListing) -> Dict[str, Any]:
    return {
        "id": listing.id,
        "owner_user_id": listing.owner_user_id,
        "title": listing.title,
        "address": listing.address,
        "area_code": listing.area_code,
        "details": listing.details,
        "status": listing.status,
        "created_at": _iso(listing.created_at),
    }


def open_listing_dict(item: OpenListing) -> Dict[str, Any]:
    data = listing_dict(item.listing)
    data["lead_id"] = item.lead_id
    data["interested_agents"] = item.interested_agents
    return data


def claim_dict(result: ClaimResult) -> Dict[str, Any]:
    return {
        "conversation_id": result.conversation_id,
        "claimed": result.claimed,
        "assignee_user_id": result.assignee_user_id,
        "conversation_created": result.conversation_created,
    }


def notification_dict(n: Notification) -> Dict[str, Any]:
    return {
        "id": n.id,
        "type": n.type,
        "payload": n.payload,
        "channel": n.channel,
        "delivered_at": _iso(n.delivered_at),
        "seen_at": _iso(n.seen_at),
        "created_at": _iso(n.created_at),
    }
