"""Coordination services for the marketplace backend.

This module provides:
- Notification dispatch (in-app record plus best-effort email relay)
- Conversation store (threads, membership, unread counts)
- Contract lifecycle (draft -> sent -> signed)
- Referral workflow between agents
- Marketplace lead matching and claiming

Plus the collaborator adapters they depend on:
- Identity directory (users, roles, service areas)
- Object storage (S3 presigned URLs)
- Relay (SES email)

Every service is built per unit of work with a get_* factory that takes
the active session.
"""
from __future__ import annotations

# Collaborators
from .identity import (
    IdentityDirectory,
    SqlIdentityDirectory,
    get_identity_directory,
)
from .relay import (
    Relay,
    SesEmailRelay,
    DryRunRelay,
    get_relay,
)
from .storage import (
    ObjectStorage,
    S3ObjectStorage,
    UnconfiguredStorage,
    get_object_storage,
)

# Notifications
from .notification import (
    NotificationDispatcher,
    get_notification_dispatcher,
)

# Conversations
from .conversation import (
    ConversationStore,
    get_conversation_store,
)

# Contracts
from .contract import (
    ContractLifecycle,
    build_contract_key,
    get_contract_lifecycle,
)

# Referrals
from .referral import (
    ReferralWorkflow,
    get_referral_workflow,
)

# Marketplace
from .marketplace import (
    LeadMatchingService,
    get_lead_matching_service,
    lead_party_key,
)

__all__ = [
    # Identity
    "IdentityDirectory",
    "SqlIdentityDirectory",
    "get_identity_directory",
    # Relay
    "Relay",
    "SesEmailRelay",
    "DryRunRelay",
    "get_relay",
    # Storage
    "ObjectStorage",
    "S3ObjectStorage",
    "UnconfiguredStorage",
    "get_object_storage",
    # Notification
    "NotificationDispatcher",
    "get_notification_dispatcher",
    # Conversation
    "ConversationStore",
    "get_conversation_store",
    # Contract
    "ContractLifecycle",
    "build_contract_key",
    "get_contract_lifecycle",
    # Referral
    "ReferralWorkflow",
    "get_referral_workflow",
    # Marketplace
    "LeadMatchingService",
    "get_lead_matching_service",
    "lead_party_key",
]
