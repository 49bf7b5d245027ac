"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Each carries a ``kind`` that the
HTTP layer renders as ``{"kind": ..., "message": ...}``.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    kind = "application_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    kind = "domain_error"


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""

    kind = "repository_error"


class ValidationException(ApplicationException):
    """Exception for validation errors."""

    kind = "validation_error"


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    kind = "not_found"

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""

    kind = "configuration_error"


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    kind = "collaborator_failure"

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class InvalidTransitionException(DomainException):
    """Exception raised when a requested status change violates the workflow."""

    kind = "invalid_transition"

    def __init__(
        self,
        current: Any,
        requested: Any,
        reason: str,
        details: Optional[dict] = None
    ):
        self.current = current
        self.requested = requested
        super().__init__(
            reason,
            details or {
                "current": getattr(current, "value", current),
                "requested": getattr(requested, "value", requested),
            }
        )
