"""
Custom exceptions for the scheduling policy engine.

This module defines a hierarchy of custom exceptions used across the platform
to provide consistent error handling and reporting. Scheduling conflicts
themselves are not exceptions: they are returned as decision data.
"""

from django.utils.translation import gettext_lazy as _
from rest_framework import status


class APIException(Exception):
    """Base exception for all API-related exceptions."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = _("An unexpected error occurred.")

    def __init__(self, message=None, status_code=None, errors=None):
        self.message = message or self.default_message
        if status_code:
            self.status_code = status_code
        self.errors = errors
        super().__init__(self.message)

    def to_dict(self):
        """Convert exception to dictionary representation."""
        error_dict = {
            "message": str(self.message),
            "status_code": self.status_code,
            "code": self.__class__.__name__,
        }

        if self.errors:
            error_dict["errors"] = self.errors

        return error_dict


class InvalidRequestException(APIException):
    """Raised when a booking request is malformed and cannot be evaluated."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = _("Invalid booking request.")


class ValidationException(APIException):
    """Exception raised for validation errors."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = _("Validation failed.")


class PolicyUnavailableException(APIException):
    """Raised when buffer policy configuration cannot be read."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = _("Buffer policy configuration is unavailable.")


class ConcurrentCommitConflictException(APIException):
    """
    Raised when a booking cannot be committed because the timeline changed
    after it was evaluated, or because the timeline is locked by another
    booking. Callers must re-evaluate rather than retry the stale decision.
    """

    status_code = status.HTTP_409_CONFLICT
    default_message = _("The timeline changed since this booking was evaluated.")


class InvalidOperationException(APIException):
    """Exception raised when an operation is invalid in the current state."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = _("This operation is not valid in the current state.")
