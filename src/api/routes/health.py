"""Liveness and readiness checks."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.deps import get_db
from core.config import get_settings
from core.logging_config import get_logger
from core.utils import utcnow

router = APIRouter()
LOGGER = get_logger(__name__)


def _check_database(db: Session) -> Dict[str, Any]:
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        LOGGER.error(f"Database check failed: {exc}")
        return {"status": "unhealthy", "connected": False, "error": str(exc)}
    return {"status": "healthy", "connected": True}


@router.get("")
def health_check() -> Dict[str, Any]:
    """Process is up; touches nothing external."""
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "dry_run": settings.dry_run,
        "environment": settings.environment,
    }


@router.get("/detailed")
def detailed_health_check(db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Database reachability plus which collaborators are wired."""
    settings = get_settings()
    database = _check_database(db)

    return {
        "status": database["status"],
        "timestamp": utcnow().isoformat(),
        "checks": {
            "database": database,
            "object_storage": {
                "configured": settings.is_storage_enabled(),
                "region": settings.s3_region,
            },
            "email_relay": {
                "configured": settings.is_email_relay_enabled(),
                "dry_run": settings.dry_run,
            },
        },
    }
