"""Database session dependency for FastAPI routes."""
from __future__ import annotations

from typing import Generator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.db import SessionLocal
from core.exceptions import DependencyFailureError
from core.logging_config import get_logger
from services.relay import Relay, get_relay
from services.storage import ObjectStorage, get_object_storage

LOGGER = get_logger(__name__)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides one unit of work per request.

    Commits when the route returns, rolls back if it raised.

    Yields:
        SQLAlchemy Session instance.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.error(f"Request unit of work failed: {exc}")
        raise DependencyFailureError("The data store is unavailable") from exc
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_storage() -> ObjectStorage:
    """Object storage adapter for contract files."""
    return get_object_storage()


def get_notification_relay() -> Optional[Relay]:
    """Relay used by the notification dispatcher (None when disabled)."""
    return get_relay()


__all__ = ["get_db", "get_storage", "get_notification_relay"]
