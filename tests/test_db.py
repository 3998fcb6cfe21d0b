"""Tests for store-level helpers."""
from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from core.db import init_db, insert_ignore, store_operation, validate_database
from core.exceptions import DependencyFailureError, NotFoundError
from core.models import AgentServiceArea


class TestInsertIgnore:
    """Unique-key guarded inserts."""

    def test_first_insert_wins(self, db_session, agent_a):
        values = {"user_id": agent_a.id, "area_code": "D11"}

        assert insert_ignore(db_session, AgentServiceArea, values, ("user_id", "area_code")) is True
        assert insert_ignore(db_session, AgentServiceArea, values, ("user_id", "area_code")) is False

        rows = db_session.query(AgentServiceArea).filter_by(user_id=agent_a.id, area_code="D11").all()
        assert len(rows) == 1


class TestStoreOperation:
    """Raw store errors never leak."""

    def test_sqlalchemy_error_becomes_dependency_failure(self):
        @store_operation
        def broken():
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        with pytest.raises(DependencyFailureError):
            broken()

    def test_domain_errors_pass_through(self):
        @store_operation
        def missing():
            raise NotFoundError("nope")

        with pytest.raises(NotFoundError):
            missing()


class TestSchemaBootstrap:
    """init_db and validate_database against the configured engine."""

    def test_init_then_validate(self):
        result = init_db()
        assert result["status"] == "success"

        status = validate_database()
        assert status["status"] == "ok"
        assert status["tables_missing"] == []
