"""
Scheduling algorithms package.

This package contains the framework-independent scheduling logic used by the
booking services. The algorithms operate on plain value objects and never
touch the database or Django settings directly.

The algorithms are organized into the following subpackages:
- availability: Buffer resolution, timeline indexing and conflict detection
"""

__version__ = "1.0.0"
