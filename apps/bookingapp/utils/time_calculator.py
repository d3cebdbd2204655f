# apps/bookingapp/utils/time_calculator.py
from datetime import timedelta


def calculate_total_duration(base_duration, add_ons):
    """
    Calculate total duration of a booking including its add-on services

    Args:
        base_duration: Duration of the main service in minutes
        add_ons: Iterable of AddOn objects

    Returns:
        Total duration in minutes
    """
    return base_duration + sum(add_on.duration_minutes for add_on in add_ons)


def calculate_appointment_end_time(start_time, duration):
    """
    Calculate end time based on start time and duration

    Args:
        start_time: Datetime for start
        duration: Duration in minutes

    Returns:
        Datetime for end
    """
    return start_time + timedelta(minutes=duration)


def calculate_total_appointment_time(duration, buffer_before, buffer_after):
    """
    Calculate total appointment time including buffers

    Args:
        duration: Service duration in minutes
        buffer_before: Buffer before in minutes
        buffer_after: Buffer after in minutes

    Returns:
        Total time in minutes
    """
    return duration + buffer_before + buffer_after


def add_buffer_times(start_time, end_time, buffer_before, buffer_after):
    """
    Add buffer times to an appointment time range

    Args:
        start_time: Original start datetime
        end_time: Original end datetime
        buffer_before: Buffer before in minutes
        buffer_after: Buffer after in minutes

    Returns:
        Tuple of (new_start_time, new_end_time)
    """
    new_start = start_time - timedelta(minutes=buffer_before)
    new_end = end_time + timedelta(minutes=buffer_after)

    return (new_start, new_end)
