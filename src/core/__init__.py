"""Core module exports."""
from __future__ import annotations

from core.config import Settings, get_settings, reload_settings
from core.db import get_session, SessionLocal, init_db, insert_ignore, store_operation
from core.exceptions import (
    # Base
    CoordinationError,
    # Configuration
    ConfigurationError,
    # Request
    InvalidInputError,
    ForbiddenError,
    NotFoundError,
    ConflictError,
    # Dependencies
    DependencyFailureError,
    StorageUnavailableError,
)
from core.logging_config import (
    setup_logging,
    get_logger,
    start_request_context,
    log_external_call,
    JSONFormatter,
    RequestContextFilter,
)
from core.models import (
    Base,
    User,
    Conversation,
    ConversationParticipant,
    Message,
    Contract,
    ContractSigner,
    Referral,
    MarketplaceListing,
    Lead,
    LeadMatch,
    Notification,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "reload_settings",
    # Database
    "get_session",
    "SessionLocal",
    "init_db",
    "insert_ignore",
    "store_operation",
    "Base",
    # Models
    "User",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "Contract",
    "ContractSigner",
    "Referral",
    "MarketplaceListing",
    "Lead",
    "LeadMatch",
    "Notification",
    # Exceptions
    "CoordinationError",
    "ConfigurationError",
    "InvalidInputError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "DependencyFailureError",
    "StorageUnavailableError",
    # Logging
    "setup_logging",
    "get_logger",
    "start_request_context",
    "log_external_call",
    "JSONFormatter",
    "RequestContextFilter",
]
