"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Every exception carries an
``error_code`` so API callers can tell a safe retry from a terminal condition.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    error_code = "application_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    error_code = "domain_error"


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""

    error_code = "repository_error"


class ValidationException(ApplicationException):
    """Exception for validation errors."""

    error_code = "validation_error"


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    error_code = "not_found"

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
    """Exception for configuration errors, e.g. a malformed business-hours policy."""

    error_code = "configuration_error"


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    error_code = "external_service_error"

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class ViolationNotFoundException(ResourceNotFoundException):
    """The SLA violation does not exist."""

    error_code = "violation_not_found"

    def __init__(self, violation_id: str):
        super().__init__("SLA violation", violation_id, {"violation_id": violation_id})


class TargetNotFoundException(ResourceNotFoundException):
    """No escalation target could be determined or the requested one is unusable."""

    error_code = "target_not_found"

    def __init__(self, violation_id: str, target_user_id: Optional[str] = None):
        self.violation_id = violation_id
        self.target_user_id = target_user_id
        super().__init__(
            "Escalation target",
            target_user_id,
            {"violation_id": violation_id, "target_user_id": target_user_id}
        )


class AlreadyEscalatedException(DomainException):
    """A violation can be escalated only once."""

    error_code = "already_escalated"

    def __init__(self, violation_id: str):
        self.violation_id = violation_id
        super().__init__(
            f"SLA violation {violation_id} is already escalated",
            {"violation_id": violation_id}
        )


class NotificationDispatchException(ExternalServiceException):
    """Delivery of a notification request failed; never propagated past the dispatcher."""

    error_code = "notification_dispatch_failed"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notifier", message, details)
