"""
Per-resource ordered timelines of committed intervals.

Each resource (a staff member or a location) keeps its intervals sorted by
start time so that the nearest neighbours of a candidate span can be found
with a binary search. Committed intervals on one resource never overlap at
their core spans; the index trusts its callers to preserve that and does not
re-validate on insert.
"""

import logging
import threading
from bisect import bisect_left, bisect_right
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from core.exceptions import ConcurrentCommitConflictException

from .scheduling_types import CommittedInterval

logger = logging.getLogger(__name__)


def _is_excluded(interval: CommittedInterval, exclude_interval_id: Optional[str]) -> bool:
    return exclude_interval_id is not None and interval.interval_id == exclude_interval_id


class Neighbors:
    """Nearest committed intervals on either side of a span"""

    def __init__(
        self,
        before: Optional[CommittedInterval] = None,
        after: Optional[CommittedInterval] = None,
    ):
        self.before = before
        self.after = after

    def __iter__(self):
        return iter((self.before, self.after))

    def __repr__(self) -> str:
        return f"Neighbors(before={self.before!r}, after={self.after!r})"


class _ResourceTimeline:
    """Sorted intervals of one resource plus a parallel list of start times"""

    def __init__(self):
        self.starts: List[datetime] = []
        self.intervals: List[CommittedInterval] = []
        self.version = 0

    def insert(self, interval: CommittedInterval):
        position = bisect_right(self.starts, interval.start)
        self.starts.insert(position, interval.start)
        self.intervals.insert(position, interval)
        self.version += 1

    def delete(self, position: int):
        del self.starts[position]
        del self.intervals[position]
        self.version += 1


class TimelineIndex:
    """
    Ordered view of committed appointments and blocked time per resource.

    Lookups are O(log n) per resource. Every mutation of a resource bumps its
    version counter, which callers use for optimistic compare-and-commit.
    """

    def __init__(self, intervals: Optional[Iterable[CommittedInterval]] = None):
        self._timelines: Dict[str, _ResourceTimeline] = defaultdict(_ResourceTimeline)
        self._lock = threading.RLock()

        if intervals:
            self.load(intervals)

    def load(self, intervals: Iterable[CommittedInterval]) -> int:
        """
        Bulk-insert intervals, typically when hydrating from persistence.

        Returns:
            Number of intervals loaded
        """
        count = 0
        with self._lock:
            for interval in intervals:
                self._timelines[interval.resource_id].insert(interval)
                count += 1
        return count

    def commit(
        self, interval: CommittedInterval, expected_version: Optional[int] = None
    ) -> int:
        """
        Insert an interval into its resource timeline.

        Args:
            interval: The interval to insert
            expected_version: Version the caller evaluated against; when given
                and stale, nothing is inserted

        Returns:
            The new version of the resource timeline

        Raises:
            ConcurrentCommitConflictException: If expected_version is stale
        """
        with self._lock:
            timeline = self._timelines[interval.resource_id]
            if expected_version is not None and timeline.version != expected_version:
                logger.warning(
                    f"Stale commit on {interval.resource_id}: evaluated at version "
                    f"{expected_version}, current version {timeline.version}"
                )
                raise ConcurrentCommitConflictException(
                    errors={
                        "resource_id": interval.resource_id,
                        "expected_version": expected_version,
                        "current_version": timeline.version,
                    }
                )

            timeline.insert(interval)
            return timeline.version

    def commit_all(
        self,
        intervals: List[CommittedInterval],
        expected_versions: Optional[Dict[str, int]] = None,
        replace_interval_id: Optional[str] = None,
    ) -> Dict[str, int]:
        """
        Insert one interval per resource as a single unit.

        Either every interval is inserted or none is. When
        ``replace_interval_id`` is given, that interval is first removed from
        every timeline holding it, including timelines the booking moves away
        from (rescheduling to another staff member or location).

        Returns:
            New version per touched resource, vacated timelines included

        Raises:
            ConcurrentCommitConflictException: If any expected version is stale
        """
        expected_versions = expected_versions or {}

        with self._lock:
            stale = {
                resource_id: {"expected_version": expected, "current_version": self.version(resource_id)}
                for resource_id, expected in expected_versions.items()
                if self.version(resource_id) != expected
            }
            if stale:
                logger.warning(f"Stale commit rejected for {sorted(stale)}")
                raise ConcurrentCommitConflictException(errors=stale)

            touched = [interval.resource_id for interval in intervals]
            if replace_interval_id is not None:
                for resource_id in self.resources_holding(replace_interval_id):
                    self.remove(resource_id, replace_interval_id)
                    if resource_id not in touched:
                        touched.append(resource_id)

            for interval in intervals:
                self._timelines[interval.resource_id].insert(interval)

            return {resource_id: self.version(resource_id) for resource_id in touched}

    def remove(self, resource_id: str, interval_id: str) -> bool:
        """
        Remove a committed interval, e.g. when an appointment is cancelled.

        Returns:
            True if an interval was removed, False if none matched
        """
        with self._lock:
            timeline = self._timelines.get(resource_id)
            if timeline is None:
                return False

            for position, interval in enumerate(timeline.intervals):
                if interval.interval_id == interval_id:
                    timeline.delete(position)
                    return True

        return False

    def resources_holding(self, interval_id: str) -> List[str]:
        """Resources whose timeline holds the given interval, in sorted order"""
        with self._lock:
            return sorted(
                resource_id
                for resource_id, timeline in self._timelines.items()
                if any(interval.interval_id == interval_id for interval in timeline.intervals)
            )

    def version(self, resource_id: str) -> int:
        with self._lock:
            timeline = self._timelines.get(resource_id)
            return timeline.version if timeline else 0

    def versions(self, resource_ids: Iterable[str]) -> Dict[str, int]:
        with self._lock:
            return {resource_id: self.version(resource_id) for resource_id in resource_ids}

    def intervals(self, resource_id: str) -> List[CommittedInterval]:
        """All intervals of a resource in start order"""
        with self._lock:
            timeline = self._timelines.get(resource_id)
            return list(timeline.intervals) if timeline else []

    def neighbors(
        self,
        resource_id: str,
        core_start: datetime,
        core_end: datetime,
        exclude_interval_id: Optional[str] = None,
    ) -> Neighbors:
        """
        Find the nearest interval ending at or before ``core_start`` and the
        nearest interval starting at or after ``core_end``.

        Args:
            resource_id: Timeline to search
            core_start: Start of the candidate core span
            core_end: End of the candidate core span
            exclude_interval_id: Interval to ignore (rescheduling)

        Returns:
            Neighbors with either side possibly None
        """
        with self._lock:
            timeline = self._timelines.get(resource_id)
            if timeline is None:
                return Neighbors()

            before = None
            # Nearest first; intervals still overlapping core_start are skipped
            position = bisect_left(timeline.starts, core_start) - 1
            while position >= 0:
                candidate = timeline.intervals[position]
                if not _is_excluded(candidate, exclude_interval_id):
                    if candidate.end <= core_start:
                        before = candidate
                        break
                position -= 1

            after = None
            position = bisect_left(timeline.starts, core_end)
            while position < len(timeline.intervals):
                candidate = timeline.intervals[position]
                if not _is_excluded(candidate, exclude_interval_id):
                    after = candidate
                    break
                position += 1

            return Neighbors(before, after)

    def overlapping(
        self,
        resource_id: str,
        core_start: datetime,
        core_end: datetime,
        exclude_interval_id: Optional[str] = None,
    ) -> List[CommittedInterval]:
        """
        Committed intervals whose core spans intersect [core_start, core_end).

        Returns:
            Intervals in start order
        """
        with self._lock:
            timeline = self._timelines.get(resource_id)
            if timeline is None:
                return []

            found = []
            position = bisect_left(timeline.starts, core_end) - 1
            while position >= 0:
                candidate = timeline.intervals[position]
                if candidate.end > core_start:
                    if not _is_excluded(candidate, exclude_interval_id):
                        found.append(candidate)
                else:
                    break
                position -= 1

            found.reverse()
            return found

