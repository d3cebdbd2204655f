"""
Centralised custom exceptions.

Import these from `core.exceptions` across the project instead of redefining
ad-hoc `Exception` subclasses in each app.
"""

from __future__ import annotations

from .custom_exceptions import (
    APIException,
    ConcurrentCommitConflictException,
    InvalidOperationException,
    InvalidRequestException,
    PolicyUnavailableException,
    ValidationException,
)

__all__ = [
    "APIException",
    "ConcurrentCommitConflictException",
    "InvalidOperationException",
    "InvalidRequestException",
    "PolicyUnavailableException",
    "ValidationException",
]
