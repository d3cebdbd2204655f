"""
Data validation utilities for the scheduling platform.

This module provides validation functions for buffer policy values and
booking requests.
"""

import re
from datetime import datetime

from django.core.exceptions import ValidationError
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from core.exceptions import InvalidRequestException
from core.utils.constants import MAX_BUFFER_MINUTES, MIN_BUFFER_MINUTES, WEEKDAY_NAMES

TIME_REGEX = r"^([01][0-9]|2[0-3]):[0-5][0-9]$"


def validate_buffer_minutes(value):
    """
    Validate a buffer length in minutes.

    Args:
        value (int): Minutes to validate

    Raises:
        ValidationError: If the value is not a whole number within the allowed range
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(_("Buffer minutes must be a whole number"))

    if value < MIN_BUFFER_MINUTES or value > MAX_BUFFER_MINUTES:
        raise ValidationError(
            _("Buffer minutes must be between %(min)s and %(max)s")
            % {"min": MIN_BUFFER_MINUTES, "max": MAX_BUFFER_MINUTES}
        )


def validate_time_format(value):
    """
    Validate zero-padded 24h time format (HH:MM).

    Args:
        value (str): Time to validate

    Raises:
        ValidationError: If the time format is invalid
    """
    if not isinstance(value, str) or not re.match(TIME_REGEX, value):
        raise ValidationError(_("Enter a valid time format (HH:MM)"))


def validate_weekday(value):
    """
    Validate a lowercase English weekday name.

    Args:
        value (str): Weekday to validate

    Raises:
        ValidationError: If the weekday is unknown
    """
    if value not in WEEKDAY_NAMES:
        raise ValidationError(_("Enter a valid weekday name"))


def validate_booking_request(request):
    """
    Validate a booking request before it is evaluated.

    Args:
        request (BookingRequest): Request to validate

    Raises:
        InvalidRequestException: With a field -> message mapping of every problem found
    """
    errors = {}

    if request.staff_id in (None, ""):
        errors["staff_id"] = str(_("Staff is required"))
    if request.location_id in (None, ""):
        errors["location_id"] = str(_("Location is required"))
    if request.service_id in (None, ""):
        errors["service_id"] = str(_("Service is required"))

    if not isinstance(request.start, datetime):
        errors["start"] = str(_("Start must be a datetime"))
    elif timezone.is_naive(request.start):
        errors["start"] = str(_("Start must be timezone-aware"))

    durations = [request.base_duration_minutes] + [
        add_on.duration_minutes for add_on in request.add_ons
    ]
    if any(isinstance(d, bool) or not isinstance(d, int) for d in durations):
        errors["duration"] = str(_("Durations must be whole minutes"))
    elif any(add_on.duration_minutes < 0 for add_on in request.add_ons):
        errors["add_ons"] = str(_("Add-on durations cannot be negative"))
    elif request.total_duration_minutes <= 0:
        errors["duration"] = str(_("Total duration must be positive"))

    if errors:
        raise InvalidRequestException(errors=errors)
