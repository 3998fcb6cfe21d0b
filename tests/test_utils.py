"""Tests for core utility helpers."""
from __future__ import annotations

import math

import pytest

from core.utils import CircuitBreaker, clamp_percent, normalize_area_code, party_key, unique_ids


class TestHelpers:
    """Small pure helpers."""

    def test_clamp_percent(self):
        assert clamp_percent(150) == 100.0
        assert clamp_percent(-10) == 0.0
        assert clamp_percent(47.3) == 47.3
        assert clamp_percent("12.5") == 12.5

    def test_clamp_percent_rejects_nan(self):
        with pytest.raises(ValueError):
            clamp_percent(math.nan)

    def test_party_key_is_order_independent(self):
        assert party_key(7, 3) == party_key(3, 7) == "3:7"

    def test_unique_ids_keeps_first_seen_order(self):
        assert unique_ids([3, 1, 3, 2, 1]) == [3, 1, 2]

    def test_normalize_area_code(self):
        assert normalize_area_code("  D04 ") == "D04"
        assert normalize_area_code(None) == ""


class TestCircuitBreaker:
    """closed -> open -> half_open -> closed/open."""

    def test_opens_at_threshold(self):
        breaker = CircuitBreaker("relay", failure_threshold=2, recovery_timeout=3600)

        breaker.record_failure()
        assert breaker.can_execute() is True
        breaker.record_failure()

        assert breaker.state == CircuitBreaker.OPEN
        assert breaker.can_execute() is False

    def test_half_open_success_closes(self):
        breaker = CircuitBreaker("relay", failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()

        assert breaker.can_execute() is True
        assert breaker.state == CircuitBreaker.HALF_OPEN
        breaker.record_success()

        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker("relay", failure_threshold=3, recovery_timeout=0)
        for _ in range(3):
            breaker.record_failure()

        breaker.can_execute()
        breaker.record_failure()

        assert breaker.state == CircuitBreaker.OPEN


class TestErrorKinds:
    """Every exported error carries the kind the API maps to a status code."""

    def test_exported_kinds(self):
        import core.exceptions as exceptions

        kinds = {name: getattr(exceptions, name).kind for name in exceptions.__all__}

        assert kinds == {
            "CoordinationError": "error",
            "ConfigurationError": "configuration_error",
            "InvalidInputError": "invalid_input",
            "ForbiddenError": "forbidden",
            "NotFoundError": "not_found",
            "ConflictError": "conflict",
            "DependencyFailureError": "dependency_failure",
            "StorageUnavailableError": "dependency_failure",
        }

    def test_storage_failure_is_dependency_failure(self):
        from core.exceptions import DependencyFailureError, StorageUnavailableError

        assert issubclass(StorageUnavailableError, DependencyFailureError)
