import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Tuple

from django.utils.dateparse import parse_datetime

from algorithms.availability.scheduling_types import CommittedInterval, IntervalKind
from algorithms.availability.timeline_index import TimelineIndex
from core.exceptions import ValidationException
from core.utils.constants import ACTIVE_APPOINTMENT_STATUSES, BLOCK_TYPES

logger = logging.getLogger(__name__)

DateRange = Tuple[datetime, datetime]


class TimelineLoader:
    """
    Hydrates a TimelineIndex from a persistence source.

    The source exposes ``list_committed_intervals(resource_id, date_range)``
    returning CommittedInterval objects or appointment/block dicts with
    ``id``, ``kind``, ``start_time``, ``end_time``, ``status``,
    ``buffer_before``, ``buffer_after`` and ``block_type``.
    """

    def __init__(self, source):
        self.source = source

    def build_index(self, resource_ids: Iterable[str], date_range: DateRange) -> TimelineIndex:
        index = TimelineIndex()
        self.hydrate(index, resource_ids, date_range)
        return index

    def hydrate(
        self, index: TimelineIndex, resource_ids: Iterable[str], date_range: DateRange
    ) -> int:
        """
        Load the committed intervals of each resource within a date range.

        Returns:
            Number of intervals loaded
        """
        total = 0
        for resource_id in resource_ids:
            rows = self.source.list_committed_intervals(resource_id, date_range)
            intervals = [
                interval
                for interval in (self.to_interval(resource_id, row) for row in rows)
                if interval is not None
            ]
            total += index.load(intervals)
            logger.debug(f"Loaded {len(intervals)} intervals for {resource_id}")

        logger.info(f"Timeline hydrated with {total} intervals")
        return total

    @staticmethod
    def to_interval(resource_id: str, row: Any) -> Optional[CommittedInterval]:
        """
        Convert a source row into a CommittedInterval.

        Returns None for appointments that no longer occupy time (cancelled,
        completed, no-show).

        Raises:
            ValidationException: If the row cannot be interpreted
        """
        if isinstance(row, CommittedInterval):
            return row

        if not isinstance(row, dict):
            raise ValidationException(errors={"row": f"Unsupported timeline row: {row!r}"})

        try:
            kind = IntervalKind(row.get("kind", IntervalKind.APPOINTMENT.value))
        except ValueError:
            raise ValidationException(errors={"row": f"Unknown interval kind {row.get('kind')!r}"})

        status = row.get("status")
        if kind == IntervalKind.APPOINTMENT and status and status not in ACTIVE_APPOINTMENT_STATUSES:
            return None

        start = _as_datetime(row.get("start_time"))
        end = _as_datetime(row.get("end_time"))
        if start is None or end is None or end <= start:
            raise ValidationException(
                errors={"row": f"Invalid time span for interval {row.get('id')}"}
            )

        block_type = None
        if kind == IntervalKind.BLOCK:
            block_type = row.get("block_type") or "other"
            if block_type not in BLOCK_TYPES:
                raise ValidationException(
                    errors={"row": f"Unknown block type {block_type!r} for interval {row.get('id')}"}
                )

        return CommittedInterval(
            resource_id=resource_id,
            kind=kind,
            start=start,
            end=end,
            applied_before=row.get("buffer_before") or 0,
            applied_after=row.get("buffer_after") or 0,
            interval_id=str(row["id"]) if row.get("id") is not None else None,
            block_type=block_type,
        )


def _as_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return parse_datetime(value)
    return None

