"""
Core utilities and shared components for the salon scheduling service.

This package provides the exception hierarchy, validation helpers and
constants shared by the booking services and the scheduling algorithms.
"""

__version__ = "1.0.0"
