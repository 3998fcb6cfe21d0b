"""Custom exceptions for the coordination backend.

Every public operation fails with one of the kinds below. The transport
maps each kind to a status code; nothing else is allowed to escape a
component.
"""
from __future__ import annotations


class CoordinationError(Exception):
    """Base exception for all application errors."""

    kind = "error"

    def __init__(self, message: str = "", **context: object):
        super().__init__(message)
        self.message = message
        self.context = context


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(CoordinationError):
    """Raised when required configuration is missing or invalid."""

    kind = "configuration_error"


# =============================================================================
# Request Errors
# =============================================================================


class InvalidInputError(CoordinationError):
    """Raised when a required field is missing or malformed."""

    kind = "invalid_input"


class ForbiddenError(CoordinationError):
    """Raised when the actor lacks the relationship an operation requires."""

    kind = "forbidden"


class NotFoundError(CoordinationError):
    """Raised when an entity is absent (or hidden from the actor)."""

    kind = "not_found"


class ConflictError(CoordinationError):
    """Raised when an action is incompatible with the entity's current state."""

    kind = "conflict"


# =============================================================================
# Dependency Errors
# =============================================================================


class DependencyFailureError(CoordinationError):
    """Raised when the store or an external collaborator is unreachable."""

    kind = "dependency_failure"


class StorageUnavailableError(DependencyFailureError):
    """Raised when object storage cannot issue an authorization."""

    pass


__all__ = [
    "CoordinationError",
    "ConfigurationError",
    "InvalidInputError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "DependencyFailureError",
    "StorageUnavailableError",
]
