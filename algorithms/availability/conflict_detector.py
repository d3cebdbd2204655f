"""
Buffer-aware conflict detection.

Checks a candidate booking against the committed intervals of every resource
it occupies. Adjacent bookings may demand different margins, so the gap
required between two neighbours is the larger of the two demands: the
earlier booking's after-buffer and the later booking's before-buffer.
Blocked time carries no buffers but may never be overlapped.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from .scheduling_types import (
    BookingRequest,
    CommittedInterval,
    ConflictFinding,
    ConflictSide,
    EffectiveBuffer,
)
from .timeline_index import TimelineIndex

logger = logging.getLogger(__name__)


def gap_minutes(later: datetime, earlier: datetime) -> float:
    """Minutes from ``earlier`` to ``later`` (negative when they overlap)"""
    return (later - earlier).total_seconds() / 60


class ConflictDetector:
    """
    Finds buffer and overlap violations for a candidate booking.

    Staff and location timelines are checked independently and their findings
    are unioned.
    """

    def __init__(self, timeline_index: TimelineIndex):
        self.timeline_index = timeline_index

    def find_conflicts(
        self, request: BookingRequest, buffers: Dict[str, EffectiveBuffer]
    ) -> List[ConflictFinding]:
        """
        Find every violated neighbour of the request on its resources.

        Args:
            request: The candidate booking
            buffers: Effective buffer per resource id the booking occupies

        Returns:
            List of ConflictFinding, empty when the booking fits
        """
        findings = []

        for resource_id, buffer in buffers.items():
            findings.extend(
                self.check_resource(
                    resource_id,
                    request.start,
                    request.end,
                    buffer,
                    exclude_interval_id=request.exclude_interval_id,
                )
            )

        if findings:
            logger.debug(
                f"Found {len(findings)} conflict(s) for booking "
                f"{request.start.isoformat()} - {request.end.isoformat()}"
            )

        return findings

    def check_resource(
        self,
        resource_id: str,
        core_start: datetime,
        core_end: datetime,
        buffer: EffectiveBuffer,
        exclude_interval_id: Optional[str] = None,
    ) -> List[ConflictFinding]:
        """
        Check one resource timeline.

        Args:
            resource_id: Timeline to check
            core_start: Candidate start
            core_end: Candidate end
            buffer: Candidate's effective buffer on this resource
            exclude_interval_id: Committed interval to ignore (rescheduling)

        Returns:
            Overlap findings followed by at most one before and one after finding
        """
        findings = []

        for interval in self.timeline_index.overlapping(
            resource_id, core_start, core_end, exclude_interval_id
        ):
            findings.append(self._overlap_finding(interval, core_start, core_end, buffer))

        before, after = self.timeline_index.neighbors(
            resource_id, core_start, core_end, exclude_interval_id
        )

        if before is not None and not before.is_block:
            required = max(before.applied_after, buffer.before_minutes)
            actual = gap_minutes(core_start, before.end)
            if actual < required:
                findings.append(ConflictFinding(before, required, actual, ConflictSide.BEFORE))

        if after is not None and not after.is_block:
            required = max(buffer.after_minutes, after.applied_before)
            actual = gap_minutes(after.start, core_end)
            if actual < required:
                findings.append(ConflictFinding(after, required, actual, ConflictSide.AFTER))

        return findings

    @staticmethod
    def _overlap_finding(
        interval: CommittedInterval,
        core_start: datetime,
        core_end: datetime,
        buffer: EffectiveBuffer,
    ) -> ConflictFinding:
        # Blocks demand no margin, only that they are not overlapped
        if interval.is_block:
            required = 0
        elif interval.start < core_start:
            required = max(interval.applied_after, buffer.before_minutes)
        else:
            required = max(buffer.after_minutes, interval.applied_before)

        overlap = gap_minutes(min(interval.end, core_end), max(interval.start, core_start))
        return ConflictFinding(interval, required, -overlap, ConflictSide.OVERLAP)
