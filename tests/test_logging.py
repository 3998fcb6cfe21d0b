"""Tests for structured logging and request correlation."""
from __future__ import annotations

import json
import logging

from core.logging_config import (
    JSONFormatter,
    RequestContextFilter,
    current_request_id,
    reset_request_context,
    start_request_context,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("services.contract", logging.INFO, __file__, 10, "Contract 5 sent", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRequestContext:
    """Binding and stamping request ids."""

    def test_bind_and_reset(self):
        token = start_request_context("abc")
        try:
            assert current_request_id() == "abc"
        finally:
            reset_request_context(token)
        assert current_request_id() is None

    def test_filter_stamps_bound_id(self):
        record = _record()
        token = start_request_context("req-1")
        try:
            assert RequestContextFilter().filter(record) is True
        finally:
            reset_request_context(token)
        assert record.request_id == "req-1"

    def test_filter_outside_request(self):
        record = _record()
        RequestContextFilter().filter(record)
        assert record.request_id == "-"


class TestJSONFormatter:
    """One JSON object per record."""

    def test_entity_ids_lifted_to_top_level(self):
        record = _record(extra_data={"contract_id": 5, "signers": 3}, request_id="req-9")

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Contract 5 sent"
        assert data["level"] == "INFO"
        assert data["contract_id"] == 5
        assert data["extra"] == {"contract_id": 5, "signers": 3}
        assert data["request_id"] == "req-9"

    def test_placeholder_request_id_omitted(self):
        data = json.loads(JSONFormatter().format(_record(request_id="-")))
        assert "request_id" not in data
        assert "extra" not in data
