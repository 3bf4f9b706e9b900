"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Escalation and delivery code
isolates failures at the smallest unit (one action, one ticket, one rule,
one delivery); only RuleLoadException aborts a whole tick.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class RuleLoadException(RepositoryException):
    """Raised when the active rule set cannot be loaded; aborts the tick."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

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
    """Malformed rule, condition, or subscription. Recorded per item."""


class UnsupportedActionException(ConfigurationException):
    """Escalation action type with no registered handler."""

    def __init__(self, action_type: str, details: Optional[dict] = None):
        self.action_type = action_type
        super().__init__(f"Unknown action type: {action_type}", details)


class EvaluationException(DomainException):
    """A condition could not be evaluated against a ticket."""

    def __init__(
        self,
        ticket_id: str,
        reason: str,
        details: Optional[dict] = None
    ):
        self.ticket_id = ticket_id
        super().__init__(
            f"Cannot evaluate ticket {ticket_id}: {reason}",
            details or {"ticket_id": ticket_id}
        )


class DeliveryException(ApplicationException):
    """Base exception for webhook delivery failures."""


class TransientDeliveryException(DeliveryException):
    """Timeout, network failure, or non-2xx response. Eligible for retry."""

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        details: Optional[dict] = None
    ):
        self.http_status = http_status
        super().__init__(message, details)


class PermanentDeliveryFailure(DeliveryException):
    """All attempts for a delivery are exhausted."""

    def __init__(
        self,
        delivery_id: str,
        attempts: int,
        details: Optional[dict] = None
    ):
        self.delivery_id = delivery_id
        self.attempts = attempts
        super().__init__(
            f"Delivery {delivery_id} failed after {attempts} attempts",
            details or {"delivery_id": delivery_id, "attempts": attempts}
        )
