"""Identity collaborator: user lookup and agent area-code resolution."""
from __future__ import annotations

from typing import List, Optional, Protocol

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from core.logging_config import get_logger
from core.models import AgentServiceArea, User, UserRole
from core.types import UserIdentity
from core.utils import normalize_area_code

LOGGER = get_logger(__name__)


class IdentityDirectory(Protocol):
    """What the coordination layer needs from the identity store."""

    def resolve_user(self, user_id: int) -> Optional[UserIdentity]:
        """Return email, role and area codes, or None for an unknown user."""
        ...

    def agents_for_area(self, area_code: str) -> List[int]:
        """Return ids of every active agent whose area set contains area_code."""
        ...


class SqlIdentityDirectory:
    """
    Identity directory backed by the user and agent_service_area tables.

    An agent's area set is their primary area code unioned with any
    configured secondary areas.
    """

    def __init__(self, session: Session):
        self.session = session

    def resolve_user(self, user_id: int) -> Optional[UserIdentity]:
        user = self.session.execute(
            select(User)
            .options(selectinload(User.service_areas))
            .where(User.id == user_id, User.is_active.is_(True))
        ).scalar_one_or_none()
        if user is None:
            return None

        areas = {normalize_area_code(a.area_code) for a in user.service_areas}
        if user.primary_area_code:
            areas.add(normalize_area_code(user.primary_area_code))
        areas.discard("")

        return UserIdentity(
            id=user.id,
            email=user.email,
            role=user.role,
            area_codes=frozenset(areas),
        )

    def agents_for_area(self, area_code: str) -> List[int]:
        code = normalize_area_code(area_code)
        if not code:
            return []

        secondary = select(AgentServiceArea.user_id).where(AgentServiceArea.area_code == code)
        rows = self.session.execute(
            select(User.id)
            .where(
                User.role == UserRole.AGENT.value,
                User.is_active.is_(True),
                or_(User.primary_area_code == code, User.id.in_(secondary)),
            )
            .order_by(User.id)
        ).scalars().all()

        LOGGER.debug(f"Resolved {len(rows)} agents for area {code}")
        return list(rows)


def get_identity_directory(session: Session) -> SqlIdentityDirectory:
    """Get the default SQL-backed identity directory."""
    return SqlIdentityDirectory(session)


__all__ = [
    "IdentityDirectory",
    "SqlIdentityDirectory",
    "get_identity_directory",
]
