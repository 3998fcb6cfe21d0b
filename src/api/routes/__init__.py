"""API route modules."""
from __future__ import annotations

from . import (
    health,
    conversations,
    messages,
    contracts,
    referrals,
    marketplace,
    notifications,
)

__all__ = [
    "health",
    "conversations",
    "messages",
    "contracts",
    "referrals",
    "marketplace",
    "notifications",
]
