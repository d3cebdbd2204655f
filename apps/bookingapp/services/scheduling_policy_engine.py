"""
Scheduling Policy Engine

Entry point used by the booking API layer to decide whether a candidate
appointment may be booked.

Key features:
1. Total duration computation including add-on services
2. Per-resource buffer resolution (staff and location timelines)
3. Buffer and overlap conflict detection
4. Enforcement modes: disabled, advisory, strict and override-capable
5. Override audit records sent through the ``buffer_override_recorded`` signal
6. Evaluate-and-commit as one unit under per-resource locks
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from algorithms.availability.buffer_resolver import BufferResolver
from algorithms.availability.conflict_detector import ConflictDetector
from algorithms.availability.scheduling_types import (
    AuditOutcome,
    BookingRequest,
    CommittedInterval,
    EffectiveBuffer,
    EnforcementMode,
    IntervalKind,
    OverrideAuditRecord,
    SchedulingDecision,
)
from algorithms.availability.timeline_index import TimelineIndex
from apps.bookingapp.services.buffer_policy_store import BufferPolicyStore
from apps.bookingapp.signals import buffer_override_recorded
from apps.bookingapp.utils.time_calculator import (
    add_buffer_times,
    calculate_appointment_end_time,
    calculate_total_appointment_time,
    calculate_total_duration,
)
from core.exceptions import ConcurrentCommitConflictException, InvalidOperationException
from core.utils.constants import (
    DEFAULT_LOCK_EXPIRES,
    DEFAULT_LOCK_POLL_INTERVAL,
    DEFAULT_LOCK_TIMEOUT,
)
from core.utils.validators import validate_booking_request
from utils.distributed_locks import distributed_locks

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class SchedulingPolicyEngine:
    """
    Evaluates booking requests against buffer policy and committed timelines.

    The engine never owns storage: the timeline index is hydrated and kept in
    sync by the caller's persistence layer, and the policy store is consulted
    once per evaluation for an immutable snapshot.
    """

    def __init__(self, policy_store, timeline_index: Optional[TimelineIndex] = None):
        self.policy_store = policy_store
        self.timeline_index = timeline_index if timeline_index is not None else TimelineIndex()
        self.conflict_detector = ConflictDetector(self.timeline_index)

    @classmethod
    def from_settings(cls, timeline_index: Optional[TimelineIndex] = None):
        """Engine backed by the policy configured in ``settings.BUFFER_TIME_SETTINGS``"""
        return cls(BufferPolicyStore.from_settings(), timeline_index)

    @staticmethod
    def _lock_options() -> Dict[str, Any]:
        config = getattr(settings, "SCHEDULING_POLICY", {})
        return {
            "expires": config.get("LOCK_EXPIRES", DEFAULT_LOCK_EXPIRES),
            "timeout": config.get("LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT),
            "poll_interval": config.get("LOCK_POLL_INTERVAL", DEFAULT_LOCK_POLL_INTERVAL),
        }

    def evaluate(
        self,
        request: BookingRequest,
        override_justification: Optional[str] = None,
        actor: Optional[str] = None,
        policy=None,
    ) -> SchedulingDecision:
        """
        Decide whether a booking request may be admitted.

        Args:
            request: The candidate booking
            override_justification: Reason given by staff to book despite a
                buffer violation; only honoured in override-capable mode
            actor: Who is making the booking, recorded on overrides
            policy: Policy snapshot to evaluate against; taken from the store
                when omitted

        Returns:
            SchedulingDecision

        Raises:
            InvalidRequestException: If the request is malformed
        """
        validate_booking_request(request)

        if policy is None:
            try:
                policy = self.policy_store.snapshot()
            except Exception as e:
                logger.error(f"Buffer policy unavailable, refusing booking: {str(e)}")
                return SchedulingDecision.rejected(
                    [],
                    system_error=True,
                    message=str(_("Buffer policy is unavailable. Please try again later.")),
                )

        mode = policy.enforcement.mode
        buffers = self.resolve_buffers(request, policy)

        # Versions must be read before the timelines are searched
        versions = self.timeline_index.versions(request.resource_ids)
        findings = self.conflict_detector.find_conflicts(request, buffers)

        context = {"mode": mode, "effective_buffers": buffers, "timeline_versions": versions}

        if not findings:
            return SchedulingDecision.admitted(**context)

        if any(finding.is_hard for finding in findings):
            logger.info(
                f"Booking for staff {request.staff_id} at {request.start.isoformat()} "
                f"overlaps committed time; rejected"
            )
            return SchedulingDecision.rejected(
                findings,
                message=str(_("The booking overlaps an existing appointment or blocked time.")),
                **context,
            )

        if mode == EnforcementMode.DISABLED:
            return SchedulingDecision.admitted(**context)

        if policy.enforcement.warn_on_violation:
            logger.warning(
                f"Buffer violation ({mode.value}) for staff {request.staff_id} at "
                f"{request.start.isoformat()}: {len(findings)} finding(s)"
            )

        if mode == EnforcementMode.STRICT:
            return SchedulingDecision.rejected(
                findings,
                message=str(_("The booking does not leave the required buffer time.")),
                **context,
            )

        justification = (override_justification or "").strip()
        if mode == EnforcementMode.ADVISORY or not justification:
            return SchedulingDecision.admitted_with_warning(
                findings,
                message=str(_("The booking does not leave the recommended buffer time.")),
                **context,
            )

        record = OverrideAuditRecord(
            who=actor or SYSTEM_ACTOR,
            when=timezone.now(),
            booking_summary=self.booking_summary(request, buffers),
            findings=findings,
            justification=justification,
        )
        buffer_override_recorded.send(sender=self.__class__, record=record)
        logger.info(f"Buffer violation overridden by {record.who}: {justification}")

        return SchedulingDecision.admitted_by_override(
            findings,
            justification,
            audit_record=record,
            message=str(_("Buffer time overridden.")),
            **context,
        )

    def resolve_buffers(self, request: BookingRequest, policy) -> Dict[str, EffectiveBuffer]:
        """
        Resolve the effective buffer for each resource the booking occupies.

        Time-of-day and weekday rules are matched against the start in the
        current time zone.
        """
        resolver = BufferResolver(policy)
        local_start = timezone.localtime(request.start)

        return {
            resource_id: resolver.resolve(
                request.service_id, request.staff_id, request.location_id, start=local_start
            )
            for resource_id in request.resource_ids
        }

    def build_intervals(
        self,
        request: BookingRequest,
        decision: SchedulingDecision,
        interval_id: Optional[str] = None,
    ) -> List[CommittedInterval]:
        """
        Committed intervals representing an admitted booking, one per resource.

        Each carries the buffer in effect on its resource at evaluation time.
        """
        interval_id = interval_id or str(uuid.uuid4())
        total = calculate_total_duration(request.base_duration_minutes, request.add_ons)
        end = calculate_appointment_end_time(request.start, total)

        intervals = []
        for resource_id in request.resource_ids:
            buffer = decision.effective_buffers.get(resource_id, EffectiveBuffer())
            intervals.append(
                CommittedInterval(
                    resource_id=resource_id,
                    kind=IntervalKind.APPOINTMENT,
                    start=request.start,
                    end=end,
                    applied_before=buffer.before_minutes,
                    applied_after=buffer.after_minutes,
                    interval_id=interval_id,
                )
            )
        return intervals

    def commit(
        self,
        request: BookingRequest,
        decision: SchedulingDecision,
        interval_id: Optional[str] = None,
    ) -> List[CommittedInterval]:
        """
        Commit an admitted decision, provided the timelines are unchanged
        since it was evaluated.

        A booking admitted by override has its audit record emitted again
        with the commit outcome.

        Raises:
            InvalidOperationException: If the decision was not admitted
            ConcurrentCommitConflictException: If a timeline changed meanwhile
        """
        if not decision.is_admitted:
            raise InvalidOperationException(
                message=_("Only admitted bookings can be committed."),
                errors={"decision": decision.decision_type.value},
            )

        intervals = self.build_intervals(request, decision, interval_id)
        try:
            self.timeline_index.commit_all(
                intervals,
                expected_versions=decision.timeline_versions,
                replace_interval_id=request.exclude_interval_id,
            )
        except ConcurrentCommitConflictException:
            self._record_override_outcome(decision, AuditOutcome.COMMIT_FAILED)
            raise

        decision.committed_intervals = intervals
        self._record_override_outcome(decision, AuditOutcome.COMMITTED, intervals[0].interval_id)

        logger.info(
            f"Committed booking {intervals[0].interval_id} on {', '.join(request.resource_ids)}"
        )
        return intervals

    def _record_override_outcome(
        self,
        decision: SchedulingDecision,
        outcome: AuditOutcome,
        interval_id: Optional[str] = None,
    ):
        if decision.audit_record is None:
            return

        decision.audit_record = decision.audit_record.with_outcome(outcome, interval_id)
        buffer_override_recorded.send(sender=self.__class__, record=decision.audit_record)

    def evaluate_and_commit(
        self,
        request: BookingRequest,
        override_justification: Optional[str] = None,
        actor: Optional[str] = None,
        interval_id: Optional[str] = None,
    ) -> SchedulingDecision:
        """
        Evaluate a booking and, if admitted, commit it while holding the locks
        of every resource it occupies. A reschedule also locks the resources
        its old interval is vacating.

        Returns:
            SchedulingDecision with ``committed_intervals`` set when admitted

        Raises:
            InvalidRequestException: If the request is malformed
            ConcurrentCommitConflictException: If the timelines stay locked by
                other bookings past the lock timeout
        """
        validate_booking_request(request)
        resource_ids = list(request.resource_ids)
        if request.exclude_interval_id is not None:
            resource_ids += self.timeline_index.resources_holding(request.exclude_interval_id)
        keys = [f"timeline:{resource_id}" for resource_id in resource_ids]

        with distributed_locks(keys, **self._lock_options()) as acquired:
            if not acquired:
                raise ConcurrentCommitConflictException(
                    message=_("The schedule is being updated. Please re-evaluate the booking."),
                    errors={"resources": sorted(set(resource_ids))},
                )

            decision = self.evaluate(request, override_justification, actor)
            if decision.is_admitted:
                self.commit(request, decision, interval_id)

            return decision

    @staticmethod
    def booking_summary(request: BookingRequest, buffers: Dict[str, EffectiveBuffer]) -> Dict[str, Any]:
        """Booking description for audit records, including its protected span"""
        summary = request.summary()
        buffer = buffers.get(request.staff_resource_id, EffectiveBuffer())
        protected_start, protected_end = add_buffer_times(
            request.start, request.end, buffer.before_minutes, buffer.after_minutes
        )
        summary.update(
            {
                "buffer_before_minutes": buffer.before_minutes,
                "buffer_after_minutes": buffer.after_minutes,
                "protected_start": protected_start.isoformat(),
                "protected_end": protected_end.isoformat(),
                "occupied_minutes": calculate_total_appointment_time(
                    request.total_duration_minutes,
                    buffer.before_minutes,
                    buffer.after_minutes,
                ),
            }
        )
        return summary

