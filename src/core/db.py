"""Database connection, session management and store-level helpers."""
from __future__ import annotations

from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Generator, List, Sequence, TypeVar

from sqlalchemy import create_engine, event, inspect, insert, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from .config import get_settings
from .exceptions import DependencyFailureError
from .logging_config import get_logger

LOGGER = get_logger(__name__)
SETTINGS = get_settings()

F = TypeVar("F", bound=Callable[..., Any])

# Tables the coordination layer cannot run without
REQUIRED_TABLES = [
    "user",
    "agent_service_area",
    "conversation",
    "conversation_participant",
    "conversation_link",
    "message",
    "contract",
    "contract_signer",
    "referral",
    "marketplace_listing",
    "lead",
    "lead_match",
    "notification",
]


def _build_engine(url: str):
    """Create the process-wide engine for the configured store."""
    if url.startswith("sqlite"):
        in_memory = url.endswith(":memory:")
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool if in_memory else NullPool,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

        return engine

    return create_engine(
        url,
        pool_size=SETTINGS.db_pool_size,
        max_overflow=SETTINGS.db_max_overflow,
        pool_timeout=SETTINGS.db_pool_timeout,
        pool_pre_ping=True,
    )


engine = _build_engine(SETTINGS.database_url)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for one unit of work.

    Commits on success, rolls back on any error. Store errors raised
    while committing surface as DependencyFailureError.

    Yields:
        SQLAlchemy Session object.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        LOGGER.error(f"Unit of work failed in the store: {exc}")
        raise DependencyFailureError("The data store is unavailable") from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def store_operation(func: F) -> F:
    """
    Translate raw SQLAlchemy errors raised by a public operation.

    Domain errors pass through untouched; anything the store raises
    becomes DependencyFailureError so callers never see driver details.
    """

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as exc:
            LOGGER.error(f"Store failure in {func.__qualname__}: {exc}")
            raise DependencyFailureError("The data store is unavailable") from exc

    return wrapper  # type: ignore[return-value]


def insert_ignore(
    session: Session,
    model: Any,
    values: Dict[str, Any],
    index_elements: Sequence[str],
) -> bool:
    """
    Insert a row unless one with the same unique key already exists.

    Uses the dialect's native conflict clause so concurrent callers never
    see an IntegrityError.

    Args:
        session: Active session.
        model: ORM class to insert into.
        values: Column values for the new row.
        index_elements: Columns of the unique key guarding the insert.

    Returns:
        True if this call inserted the row, False if it already existed.
    """
    session.flush()
    dialect = session.get_bind().dialect.name

    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(
            index_elements=list(index_elements)
        )
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as pg_insert

        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(
            index_elements=list(index_elements)
        )
    elif dialect in ("mysql", "mariadb"):
        stmt = insert(model).values(**values).prefix_with("IGNORE")
    else:
        try:
            with session.begin_nested():
                session.execute(insert(model).values(**values))
            return True
        except IntegrityError:
            return False

    result = session.execute(stmt)
    return result.rowcount == 1


def init_db() -> Dict[str, Any]:
    """
    Create any missing tables.

    Returns:
        Dict with initialization results.
    """
    from . import models  # noqa: F401

    result: Dict[str, Any] = {
        "status": "success",
        "tables_created": [],
        "tables_existing": [],
    }

    try:
        existing_tables = set(inspect(engine).get_table_names())
        Base.metadata.create_all(bind=engine)
        new_tables = set(inspect(engine).get_table_names())
        result["tables_created"] = sorted(new_tables - existing_tables)
        result["tables_existing"] = sorted(existing_tables)
    except SQLAlchemyError as e:
        result["status"] = "error"
        result["error"] = str(e)
        LOGGER.error(f"init_db failed: {e}")

    return result


def validate_database() -> Dict[str, Any]:
    """
    Validate database connection and required tables.

    Call this at application startup to ensure the database is ready.
    """
    result: Dict[str, Any] = {
        "status": "ok",
        "tables_found": [],
        "tables_missing": [],
        "errors": [],
    }

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

        existing_tables: List[str] = inspect(engine).get_table_names()
        result["tables_found"] = existing_tables

        missing = [t for t in REQUIRED_TABLES if t not in existing_tables]
        result["tables_missing"] = missing
        if missing:
            result["status"] = "missing_tables"
            result["errors"].append(f"Missing required tables: {missing}")

    except SQLAlchemyError as e:
        result["status"] = "error"
        result["errors"].append(str(e))

    return result


__all__ = [
    "Base",
    "engine",
    "SessionLocal",
    "get_session",
    "store_operation",
    "insert_ignore",
    "init_db",
    "validate_database",
    "REQUIRED_TABLES",
]
