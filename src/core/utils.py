"""Core utility functions."""
from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from core.logging_config import get_logger

LOGGER = get_logger(__name__)


def utcnow() -> datetime:
    """Get current UTC datetime with timezone info. Always use this instead of datetime.now()."""
    return datetime.now(timezone.utc)


def generate_unique_key() -> str:
    """Generate a unique random key."""
    return uuid.uuid4().hex


def clamp_percent(value: float) -> float:
    """
    Clamp a percentage into [0, 100] without rounding.

    Raises:
        ValueError: If the value is not a finite number.
    """
    number = float(value)
    if math.isnan(number):
        raise ValueError("percentage must be a number")
    return max(0.0, min(100.0, number))


def normalize_area_code(area_code: Optional[str]) -> str:
    """Strip whitespace from an area code; an absent code becomes ''."""
    return (area_code or "").strip()


def party_key(*user_ids: int) -> str:
    """Order-independent key for a set of users, e.g. ``"3:7"``."""
    return ":".join(str(uid) for uid in sorted(set(user_ids)))


def unique_ids(ids: Iterable[int]) -> list[int]:
    """Deduplicate ids, keeping first-seen order."""
    seen: dict[int, None] = {}
    for uid in ids:
        seen.setdefault(int(uid), None)
    return list(seen)


class CircuitBreaker:
    """
    Fail-fast guard around a flaky collaborator.

    closed: calls go through. After `failure_threshold` consecutive
    failures the breaker opens and refuses calls for `recovery_timeout`
    seconds, then lets a single trial call through (half_open). A successful
    trial closes it again; a failed trial re-opens it.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, name: str, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout

        self.state = self.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[datetime] = None

    def _transition(self, state: str) -> None:
        LOGGER.info(f"Circuit {self.name}: {self.state} -> {state}")
        self.state = state

    def can_execute(self) -> bool:
        """True if a call may be attempted now."""
        if self.state == self.OPEN:
            waited = (utcnow() - self.opened_at).total_seconds() if self.opened_at else 0
            if waited < self.recovery_timeout:
                return False
            self._transition(self.HALF_OPEN)
        return True

    def record_success(self) -> None:
        self.failure_count = 0
        if self.state != self.CLOSED:
            self._transition(self.CLOSED)

    def record_failure(self) -> None:
        self.failure_count += 1
        if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != self.OPEN:
                LOGGER.warning(f"Circuit {self.name} opening after {self.failure_count} failures")
                self._transition(self.OPEN)
            self.opened_at = utcnow()


__all__ = [
    "utcnow",
    "generate_unique_key",
    "clamp_percent",
    "normalize_area_code",
    "party_key",
    "unique_ids",
    "CircuitBreaker",
]
