"""
Availability calculation algorithms.

This package contains the algorithms that decide whether a booking fits on
the timelines it occupies.

Key components:
- BufferResolver: Combines configured buffer scopes into one effective buffer
- TimelineIndex: Ordered per-resource view of committed intervals
- ConflictDetector: Detects buffer and overlap violations against neighbours
"""

from .buffer_resolver import BufferResolver
from .conflict_detector import ConflictDetector
from .timeline_index import Neighbors, TimelineIndex

__all__ = ["BufferResolver", "ConflictDetector", "Neighbors", "TimelineIndex"]
