"""
Value types shared by the buffer resolver, the timeline index, the conflict
detector and the scheduling policy engine.

All durations are expressed in whole minutes. Datetimes are expected to be
timezone-aware; the engine validates this before any of these types are used
in calculations.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional


class BufferScope(str, Enum):
    """Scopes a buffer rule can be configured at"""

    GLOBAL = "global"
    SERVICE = "service"
    STAFF = "staff"
    LOCATION = "location"
    WEEKDAY = "weekday"


class IntervalKind(str, Enum):
    """Kinds of entries occupying a resource timeline"""

    APPOINTMENT = "appointment"
    BLOCK = "block"


class ConflictSide(str, Enum):
    """Position of a conflicting neighbour relative to the candidate booking"""

    BEFORE = "before"
    AFTER = "after"
    OVERLAP = "overlap"


class EnforcementMode(str, Enum):
    """Effective enforcement mode derived from EnforcementSettings"""

    DISABLED = "disabled"
    STRICT = "strict"
    ADVISORY = "advisory"
    OVERRIDE_CAPABLE = "override_capable"


class DecisionType(str, Enum):
    """Outcomes of a scheduling evaluation"""

    ADMITTED = "admitted"
    ADMITTED_WITH_WARNING = "admitted_with_warning"
    REJECTED = "rejected"
    ADMITTED_BY_OVERRIDE = "admitted_by_override"


class AuditOutcome(str, Enum):
    """What became of a booking admitted by override"""

    ADMITTED = "admitted"
    COMMITTED = "committed"
    COMMIT_FAILED = "commit_failed"


STAFF_RESOURCE_PREFIX = "staff"
LOCATION_RESOURCE_PREFIX = "location"


def staff_resource(staff_id: Any) -> str:
    """Timeline key for a staff member"""
    return f"{STAFF_RESOURCE_PREFIX}:{staff_id}"


def location_resource(location_id: Any) -> str:
    """Timeline key for a location"""
    return f"{LOCATION_RESOURCE_PREFIX}:{location_id}"


class BufferRule:
    """
    Buffer minutes configured for one scope.

    A rule that is not configured for a scope is simply absent; an explicit
    rule of zero minutes is a real rule and still takes part in resolution.
    Rules are read-only once built, so policy snapshots can hand them out.
    """

    __slots__ = ("_scope", "_scope_id", "_before_minutes", "_after_minutes")

    def __init__(
        self,
        scope: BufferScope,
        before_minutes: int = 0,
        after_minutes: int = 0,
        scope_id: Optional[str] = None,
    ):
        self._scope = BufferScope(scope)
        self._scope_id = None if self._scope == BufferScope.GLOBAL else scope_id
        self._before_minutes = before_minutes
        self._after_minutes = after_minutes

    @property
    def scope(self) -> BufferScope:
        return self._scope

    @property
    def scope_id(self) -> Optional[str]:
        return self._scope_id

    @property
    def before_minutes(self) -> int:
        return self._before_minutes

    @property
    def after_minutes(self) -> int:
        return self._after_minutes

    def __eq__(self, other) -> bool:
        if not isinstance(other, BufferRule):
            return NotImplemented
        return (
            self.scope == other.scope
            and self.scope_id == other.scope_id
            and self.before_minutes == other.before_minutes
            and self.after_minutes == other.after_minutes
        )

    def __repr__(self) -> str:
        return (
            f"BufferRule({self.scope.value}:{self.scope_id}, "
            f"before={self.before_minutes}, after={self.after_minutes})"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scope": self.scope.value,
            "scope_id": self.scope_id,
            "before_minutes": self.before_minutes,
            "after_minutes": self.after_minutes,
        }


class TimeWindowBufferRule:
    """Buffer applied to bookings starting within a wall-clock window (HH:MM, inclusive)"""

    __slots__ = ("_start", "_end", "_before_minutes", "_after_minutes")

    def __init__(self, start: str, end: str, before_minutes: int = 0, after_minutes: int = 0):
        self._start = start
        self._end = end
        self._before_minutes = before_minutes
        self._after_minutes = after_minutes

    @property
    def start(self) -> str:
        return self._start

    @property
    def end(self) -> str:
        return self._end

    @property
    def before_minutes(self) -> int:
        return self._before_minutes

    @property
    def after_minutes(self) -> int:
        return self._after_minutes

    def applies_to(self, hhmm: str) -> bool:
        # Zero-padded HH:MM strings compare chronologically
        return self.start <= hhmm <= self.end

    def __eq__(self, other) -> bool:
        if not isinstance(other, TimeWindowBufferRule):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"TimeWindowBufferRule({self.start}-{self.end})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startTime": self.start,
            "endTime": self.end,
            "beforeMinutes": self.before_minutes,
            "afterMinutes": self.after_minutes,
        }


class EnforcementSettings:
    """
    Buffer enforcement switches.

    ``strict_mode`` always wins over ``allow_override``. ``warn_on_violation``
    only controls whether soft violations are logged. Flags are validated as
    booleans by the policy store before they get here.
    """

    __slots__ = ("_enabled", "_strict_mode", "_allow_override", "_warn_on_violation")

    def __init__(
        self,
        enabled: bool = False,
        strict_mode: bool = False,
        allow_override: bool = True,
        warn_on_violation: bool = True,
    ):
        self._enabled = enabled
        self._strict_mode = strict_mode
        self._allow_override = allow_override
        self._warn_on_violation = warn_on_violation

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def strict_mode(self) -> bool:
        return self._strict_mode

    @property
    def allow_override(self) -> bool:
        return self._allow_override

    @property
    def warn_on_violation(self) -> bool:
        return self._warn_on_violation

    @property
    def mode(self) -> EnforcementMode:
        if not self.enabled:
            return EnforcementMode.DISABLED
        if self.strict_mode:
            return EnforcementMode.STRICT
        if self.allow_override:
            return EnforcementMode.OVERRIDE_CAPABLE
        return EnforcementMode.ADVISORY

    def __eq__(self, other) -> bool:
        if not isinstance(other, EnforcementSettings):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"EnforcementSettings(mode={self.mode.value})"

    def to_dict(self) -> Dict[str, bool]:
        return {
            "enabled": self.enabled,
            "strictMode": self.strict_mode,
            "allowOverride": self.allow_override,
            "warnOnViolation": self.warn_on_violation,
        }


class AddOn:
    """An additional service appended to an appointment"""

    def __init__(self, duration_minutes: int, service_id: Optional[str] = None):
        self.duration_minutes = duration_minutes
        self.service_id = service_id

    def to_dict(self) -> Dict[str, Any]:
        return {"duration_minutes": self.duration_minutes, "service_id": self.service_id}


class BookingRequest:
    """
    A candidate booking, built fresh for each booking attempt.

    ``exclude_interval_id`` names a committed interval to ignore, which is how
    an existing appointment is evaluated against its own new time slot when
    rescheduling.
    """

    def __init__(
        self,
        staff_id: Any,
        location_id: Any,
        service_id: Any,
        start: datetime,
        base_duration_minutes: int,
        add_ons: Optional[List[AddOn]] = None,
        exclude_interval_id: Optional[str] = None,
    ):
        self.staff_id = staff_id
        self.location_id = location_id
        self.service_id = service_id
        self.start = start
        self.base_duration_minutes = base_duration_minutes
        self.add_ons = list(add_ons or [])
        self.exclude_interval_id = exclude_interval_id

    @property
    def total_duration_minutes(self) -> int:
        return self.base_duration_minutes + sum(
            add_on.duration_minutes for add_on in self.add_ons
        )

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.total_duration_minutes)

    @property
    def staff_resource_id(self) -> str:
        return staff_resource(self.staff_id)

    @property
    def location_resource_id(self) -> str:
        return location_resource(self.location_id)

    @property
    def resource_ids(self) -> List[str]:
        return [self.staff_resource_id, self.location_resource_id]

    def summary(self) -> Dict[str, Any]:
        """Compact description used in audit records and log lines"""
        return {
            "staff_id": str(self.staff_id),
            "location_id": str(self.location_id),
            "service_id": str(self.service_id),
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "total_duration_minutes": self.total_duration_minutes,
            "add_on_count": len(self.add_ons),
        }


class CommittedInterval:
    """
    An appointment or blocked time already accepted onto a resource timeline.

    ``applied_before`` / ``applied_after`` are the buffer minutes that were in
    effect when the interval was committed. Blocks never carry buffers.
    """

    def __init__(
        self,
        resource_id: str,
        kind: IntervalKind,
        start: datetime,
        end: datetime,
        applied_before: int = 0,
        applied_after: int = 0,
        interval_id: Optional[str] = None,
        block_type: Optional[str] = None,
    ):
        self.resource_id = resource_id
        self.kind = IntervalKind(kind)
        self.start = start
        self.end = end
        self.interval_id = interval_id
        self.block_type = block_type

        if self.kind == IntervalKind.BLOCK:
            self.applied_before = 0
            self.applied_after = 0
        else:
            self.applied_before = applied_before
            self.applied_after = applied_after

    @property
    def is_block(self) -> bool:
        return self.kind == IntervalKind.BLOCK

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end

    def __repr__(self) -> str:
        return (
            f"CommittedInterval({self.resource_id}, {self.kind.value}, "
            f"{self.start.isoformat()} - {self.end.isoformat()})"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interval_id": self.interval_id,
            "resource_id": self.resource_id,
            "kind": self.kind.value,
            "block_type": self.block_type,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "applied_before": self.applied_before,
            "applied_after": self.applied_after,
        }


class EffectiveBuffer:
    """Resolved (before, after) buffer pair for one booking"""

    def __init__(self, before_minutes: int = 0, after_minutes: int = 0):
        self.before_minutes = before_minutes
        self.after_minutes = after_minutes

    def __eq__(self, other) -> bool:
        if not isinstance(other, EffectiveBuffer):
            return NotImplemented
        return (
            self.before_minutes == other.before_minutes
            and self.after_minutes == other.after_minutes
        )

    def __repr__(self) -> str:
        return f"EffectiveBuffer(before={self.before_minutes}, after={self.after_minutes})"

    def to_dict(self) -> Dict[str, int]:
        return {"before_minutes": self.before_minutes, "after_minutes": self.after_minutes}


class ConflictFinding:
    """One violated neighbour on one resource timeline"""

    def __init__(
        self,
        neighbor: CommittedInterval,
        required_gap_minutes: float,
        actual_gap_minutes: float,
        side: ConflictSide,
    ):
        self.neighbor = neighbor
        self.required_gap_minutes = required_gap_minutes
        self.actual_gap_minutes = actual_gap_minutes
        self.side = ConflictSide(side)

    @property
    def resource_id(self) -> str:
        return self.neighbor.resource_id

    @property
    def is_hard(self) -> bool:
        """Core-span overlaps can never be warned about or overridden"""
        return self.side == ConflictSide.OVERLAP or (
            self.neighbor.is_block and self.actual_gap_minutes < 0
        )

    def __repr__(self) -> str:
        return (
            f"ConflictFinding({self.resource_id}, {self.side.value}, "
            f"required={self.required_gap_minutes}, actual={self.actual_gap_minutes})"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "side": self.side.value,
            "required_gap_minutes": self.required_gap_minutes,
            "actual_gap_minutes": self.actual_gap_minutes,
            "is_hard": self.is_hard,
            "neighbor": self.neighbor.to_dict(),
        }


class OverrideAuditRecord:
    """
    Record emitted whenever a buffer violation is admitted by override.

    The record is emitted once with outcome ``admitted`` when the override is
    granted, and again with ``committed`` or ``commit_failed`` once the
    booking is committed or loses a concurrent commit.
    """

    def __init__(
        self,
        who: str,
        when: datetime,
        booking_summary: Dict[str, Any],
        findings: List[ConflictFinding],
        justification: str,
        outcome: AuditOutcome = AuditOutcome.ADMITTED,
        interval_id: Optional[str] = None,
    ):
        self.who = who
        self.when = when
        self.booking_summary = booking_summary
        self.findings = list(findings)
        self.justification = justification
        self.outcome = AuditOutcome(outcome)
        self.interval_id = interval_id

    def with_outcome(self, outcome: AuditOutcome, interval_id: Optional[str] = None) -> "OverrideAuditRecord":
        return OverrideAuditRecord(
            self.who,
            self.when,
            self.booking_summary,
            self.findings,
            self.justification,
            outcome=outcome,
            interval_id=interval_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "who": self.who,
            "when": self.when.isoformat(),
            "booking_summary": self.booking_summary,
            "findings": [finding.to_dict() for finding in self.findings],
            "justification": self.justification,
            "outcome": self.outcome.value,
            "interval_id": self.interval_id,
        }


class SchedulingDecision:
    """Result of evaluating a booking request"""

    ADMITTED_TYPES = (
        DecisionType.ADMITTED,
        DecisionType.ADMITTED_WITH_WARNING,
        DecisionType.ADMITTED_BY_OVERRIDE,
    )

    def __init__(
        self,
        decision_type: DecisionType,
        findings: Optional[List[ConflictFinding]] = None,
        justification: Optional[str] = None,
        system_error: bool = False,
        mode: Optional[EnforcementMode] = None,
        effective_buffers: Optional[Dict[str, EffectiveBuffer]] = None,
        timeline_versions: Optional[Dict[str, int]] = None,
        audit_record: Optional[OverrideAuditRecord] = None,
        message: str = "",
    ):
        self.decision_type = DecisionType(decision_type)
        self.findings = list(findings or [])
        self.justification = justification
        self.system_error = system_error
        self.mode = mode
        self.effective_buffers = dict(effective_buffers or {})
        self.timeline_versions = dict(timeline_versions or {})
        self.audit_record = audit_record
        self.message = message
        self.committed_intervals: List[CommittedInterval] = []

    @classmethod
    def admitted(cls, **kwargs) -> "SchedulingDecision":
        return cls(DecisionType.ADMITTED, **kwargs)

    @classmethod
    def admitted_with_warning(cls, findings, **kwargs) -> "SchedulingDecision":
        return cls(DecisionType.ADMITTED_WITH_WARNING, findings=findings, **kwargs)

    @classmethod
    def rejected(cls, findings, **kwargs) -> "SchedulingDecision":
        return cls(DecisionType.REJECTED, findings=findings, **kwargs)

    @classmethod
    def admitted_by_override(cls, findings, justification, **kwargs) -> "SchedulingDecision":
        return cls(
            DecisionType.ADMITTED_BY_OVERRIDE,
            findings=findings,
            justification=justification,
            **kwargs,
        )

    @property
    def is_admitted(self) -> bool:
        return self.decision_type in self.ADMITTED_TYPES

    @property
    def has_hard_conflict(self) -> bool:
        return any(finding.is_hard for finding in self.findings)

    def __repr__(self) -> str:
        return f"SchedulingDecision({self.decision_type.value}, findings={len(self.findings)})"

    def to_dict(self) -> Dict[str, Any]:
        """Convert decision to dictionary"""
        return {
            "decision": self.decision_type.value,
            "is_admitted": self.is_admitted,
            "mode": self.mode.value if self.mode else None,
            "system_error": self.system_error,
            "message": self.message,
            "justification": self.justification,
            "findings": [finding.to_dict() for finding in self.findings],
            "effective_buffers": {
                resource_id: buffer.to_dict()
                for resource_id, buffer in self.effective_buffers.items()
            },
            "committed_intervals": [interval.to_dict() for interval in self.committed_intervals],
        }
