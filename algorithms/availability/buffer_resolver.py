"""
Buffer resolution.

Combines every buffer rule that applies to a booking into one effective
(before, after) pair. Each rule is a floor imposed by one stakeholder (room
turnover, staff recovery, product setup), so the pair is the per-side maximum
of all applicable rules: a narrower scope never weakens a wider one.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

from core.utils.constants import TIME_FORMAT_24H, WEEKDAY_NAMES

from .scheduling_types import BufferScope, EffectiveBuffer

logger = logging.getLogger(__name__)


class BufferResolver:
    """
    Resolves effective buffers against one policy snapshot.

    The snapshot must expose ``enforcement``, ``global_rule``,
    ``time_window_rules`` and ``rule_for(scope, scope_id)``.
    """

    def __init__(self, policy):
        self.policy = policy

    def resolve(
        self,
        service_id: Any,
        staff_id: Any,
        location_id: Any,
        start: Optional[datetime] = None,
    ) -> EffectiveBuffer:
        """
        Resolve the effective buffer for a (service, staff, location) triple.

        Args:
            service_id: Service being booked
            staff_id: Staff member performing it
            location_id: Location it takes place at
            start: Local wall-clock start; enables time-of-day and weekday rules

        Returns:
            EffectiveBuffer, always {0, 0} when enforcement is disabled
        """
        if not self.policy.enforcement.enabled:
            return EffectiveBuffer(0, 0)

        rules = self.applicable_rules(service_id, staff_id, location_id, start)

        effective = combine_rules(rules)

        logger.debug(
            f"Resolved buffer for service={service_id} staff={staff_id} "
            f"location={location_id}: before={effective.before_minutes} "
            f"after={effective.after_minutes} from {len(rules)} rule(s)"
        )

        return effective

    def applicable_rules(
        self,
        service_id: Any,
        staff_id: Any,
        location_id: Any,
        start: Optional[datetime] = None,
    ) -> List[Any]:
        """
        Collect every configured rule that applies to the booking.

        The global rule is always first. Absent scopes contribute nothing.
        """
        rules = [self.policy.global_rule]

        for scope, scope_id in (
            (BufferScope.SERVICE, service_id),
            (BufferScope.STAFF, staff_id),
            (BufferScope.LOCATION, location_id),
        ):
            if scope_id is None:
                continue
            rule = self.policy.rule_for(scope, scope_id)
            if rule is not None:
                rules.append(rule)

        if start is not None:
            rules.extend(self._time_based_rules(start))

        return rules

    def _time_based_rules(self, start: datetime) -> Iterable[Any]:
        hhmm = start.strftime(TIME_FORMAT_24H)
        for window in self.policy.time_window_rules:
            if window.applies_to(hhmm):
                yield window

        weekday_rule = self.policy.rule_for(BufferScope.WEEKDAY, WEEKDAY_NAMES[start.weekday()])
        if weekday_rule is not None:
            yield weekday_rule


def combine_rules(rules: Iterable[Any]) -> EffectiveBuffer:
    """Per-side maximum of a collection of rules ({0, 0} when empty)"""
    before = 0
    after = 0
    for rule in rules:
        before = max(before, rule.before_minutes)
        after = max(after, rule.after_minutes)
    return EffectiveBuffer(before, after)
