# apps/bookingapp/tests/test_scheduling_policy_engine.py
from datetime import datetime
from unittest.mock import MagicMock, patch

from django.core.cache import cache
from django.test import SimpleTestCase, override_settings
from django.utils import timezone

from algorithms.availability.scheduling_types import (
    AddOn,
    AuditOutcome,
    BookingRequest,
    CommittedInterval,
    ConflictSide,
    DecisionType,
    EffectiveBuffer,
    IntervalKind,
    location_resource,
    staff_resource,
)
from algorithms.availability.timeline_index import TimelineIndex
from apps.bookingapp.services.buffer_policy_store import BufferPolicyStore
from apps.bookingapp.services.scheduling_policy_engine import SchedulingPolicyEngine
from core.exceptions import (
    ConcurrentCommitConflictException,
    InvalidOperationException,
    InvalidRequestException,
    PolicyUnavailableException,
)
from utils.distributed_locks import distributed_lock

STAFF = "S"
LOCATION = "L"
SERVICE = "cut"

STRICT = {"enabled": True, "strictMode": True}
OVERRIDE = {"enabled": True, "strictMode": False, "allowOverride": True}
ADVISORY = {"enabled": True, "strictMode": False, "allowOverride": False}
DISABLED = {"enabled": False}


def at(hour, minute=0):
    return timezone.make_aware(datetime(2024, 6, 3, hour, minute))


def appointment(resource_id, start, end, before=0, after=0, interval_id=None):
    return CommittedInterval(
        resource_id, IntervalKind.APPOINTMENT, start, end, before, after, interval_id=interval_id
    )


def block(resource_id, start, end, interval_id=None):
    return CommittedInterval(
        resource_id, IntervalKind.BLOCK, start, end, interval_id=interval_id, block_type="break"
    )


def booking(start, duration=30, add_ons=None, staff_id=STAFF, location_id=LOCATION, **kwargs):
    return BookingRequest(
        staff_id=staff_id,
        location_id=location_id,
        service_id=SERVICE,
        start=start,
        base_duration_minutes=duration,
        add_ons=add_ons,
        **kwargs,
    )


def make_engine(enforcement, intervals=(), **policy):
    store = BufferPolicyStore.from_dict({"enforcement": enforcement, **policy})
    return SchedulingPolicyEngine(store, TimelineIndex(intervals))


class SchedulingPolicyEngineDecisionTest(SimpleTestCase):
    """Test cases for SchedulingPolicyEngine.evaluate"""

    def setUp(self):
        # Existing appointment for staff S ending at 14:00 with a 10 minute after-buffer
        self.existing = [appointment(staff_resource(STAFF), at(13), at(14), after=10, interval_id="a1")]
        self.policy = {"globalBeforeMinutes": 0, "globalAfterMinutes": 10}

    def test_free_slot_is_admitted(self):
        engine = make_engine(STRICT, self.existing, **self.policy)

        decision = engine.evaluate(booking(at(14, 10)))

        self.assertEqual(decision.decision_type, DecisionType.ADMITTED)
        self.assertEqual(decision.findings, [])

    def test_strict_mode_rejects_buffer_violation(self):
        engine = make_engine(STRICT, self.existing, **self.policy)

        decision = engine.evaluate(booking(at(14, 5)))

        self.assertEqual(decision.decision_type, DecisionType.REJECTED)
        self.assertEqual(len(decision.findings), 1)
        finding = decision.findings[0]
        self.assertEqual(finding.side, ConflictSide.BEFORE)
        self.assertEqual(finding.required_gap_minutes, 10)
        self.assertEqual(finding.actual_gap_minutes, 5)
        self.assertEqual(finding.resource_id, staff_resource(STAFF))
        self.assertFalse(decision.system_error)

    def test_override_mode_without_justification_warns(self):
        engine = make_engine(OVERRIDE, self.existing, **self.policy)

        decision = engine.evaluate(booking(at(14, 5)))

        self.assertEqual(decision.decision_type, DecisionType.ADMITTED_WITH_WARNING)
        self.assertEqual(len(decision.findings), 1)
        self.assertIsNone(decision.audit_record)

    def test_override_mode_with_blank_justification_warns(self):
        engine = make_engine(OVERRIDE, self.existing, **self.policy)

        decision = engine.evaluate(booking(at(14, 5)), override_justification="   ")

        self.assertEqual(decision.decision_type, DecisionType.ADMITTED_WITH_WARNING)

    @patch("apps.bookingapp.signals.record_buffer_override_audit")
    def test_override_with_justification_is_audited(self, mock_audit_task):
        engine = make_engine(OVERRIDE, self.existing, **self.policy)

        decision = engine.evaluate(
            booking(at(14, 5), add_ons=[AddOn(15)]),
            override_justification="Regular client, quick touch-up",
            actor="front-desk",
        )

        self.assertEqual(decision.decision_type, DecisionType.ADMITTED_BY_OVERRIDE)
        self.assertEqual(decision.justification, "Regular client, quick touch-up")

        record = decision.audit_record
        self.assertEqual(record.who, "front-desk")
        self.assertEqual(record.justification, "Regular client, quick touch-up")
        self.assertEqual(record.findings, decision.findings)
        self.assertEqual(record.booking_summary["total_duration_minutes"], 45)
        self.assertEqual(record.booking_summary["staff_id"], STAFF)
        self.assertIsNotNone(record.when)

        mock_audit_task.delay.assert_called_once_with(record.to_dict())

    @patch("apps.bookingapp.signals.record_buffer_override_audit")
    def test_override_actor_defaults_to_system(self, mock_audit_task):
        engine = make_engine(OVERRIDE, self.existing, **self.policy)

        decision = engine.evaluate(booking(at(14, 5)), override_justification="Manager approved")

        self.assertEqual(decision.audit_record.who, "system")

    def test_advisory_mode_ignores_justification(self):
        engine = make_engine(ADVISORY, self.existing, **self.policy)

        decision = engine.evaluate(booking(at(14, 5)), override_justification="Please")

        self.assertEqual(decision.decision_type, DecisionType.ADMITTED_WITH_WARNING)
        self.assertIsNone(decision.audit_record)

    def test_disabled_enforcement_ignores_buffers(self):
        engine = make_engine(DISABLED, self.existing, **self.policy)

        decision = engine.evaluate(booking(at(14)))

        self.assertEqual(decision.decision_type, DecisionType.ADMITTED)
        self.assertEqual(decision.findings, [])
        self.assertEqual(decision.effective_buffers[staff_resource(STAFF)], EffectiveBuffer(0, 0))

    def test_disabled_enforcement_still_rejects_overlap(self):
        engine = make_engine(DISABLED, self.existing, **self.policy)

        decision = engine.evaluate(booking(at(13, 30)))

        self.assertEqual(decision.decision_type, DecisionType.REJECTED)
        self.assertTrue(decision.has_hard_conflict)
        self.assertEqual(decision.findings[0].side, ConflictSide.OVERLAP)
        self.assertEqual(decision.findings[0].actual_gap_minutes, -30)

    def test_neighbour_after_buffer_applies_to_candidate(self):
        # The neighbour committed with a 10 minute after-buffer demands the gap
        # even though the candidate's own before-buffer is zero
        engine = make_engine(STRICT, self.existing, globalBeforeMinutes=0, globalAfterMinutes=0)

        decision = engine.evaluate(booking(at(14, 5)))

        self.assertEqual(decision.decision_type, DecisionType.REJECTED)
        self.assertEqual(decision.findings[0].required_gap_minutes, 10)

    def test_following_neighbour_checked_against_after_buffer(self):
        intervals = [appointment(staff_resource(STAFF), at(15), at(16), interval_id="a2")]
        engine = make_engine(STRICT, intervals, globalAfterMinutes=15)

        decision = engine.evaluate(booking(at(14, 20), duration=30))

        self.assertEqual(decision.decision_type, DecisionType.REJECTED)
        self.assertEqual(decision.findings[0].side, ConflictSide.AFTER)
        self.assertEqual(decision.findings[0].actual_gap_minutes, 10)

    def test_add_ons_extend_the_core_span(self):
        intervals = [appointment(staff_resource(STAFF), at(15), at(16), interval_id="a2")]
        engine = make_engine(STRICT, intervals)

        self.assertTrue(engine.evaluate(booking(at(14), duration=60)).is_admitted)

        decision = engine.evaluate(booking(at(14), duration=60, add_ons=[AddOn(15), AddOn(10)]))

        self.assertEqual(decision.decision_type, DecisionType.REJECTED)
        self.assertEqual(decision.findings[0].side, ConflictSide.OVERLAP)
        self.assertEqual(decision.findings[0].actual_gap_minutes, -25)

    def test_staff_conflict_spans_locations(self):
        engine = make_engine(DISABLED, self.existing)

        decision = engine.evaluate(booking(at(13, 15), location_id="uptown"))

        self.assertEqual(decision.decision_type, DecisionType.REJECTED)
        self.assertEqual(decision.findings[0].resource_id, staff_resource(STAFF))

    def test_location_conflict_spans_staff(self):
        intervals = [appointment(location_resource(LOCATION), at(10), at(11), interval_id="room")]
        engine = make_engine(DISABLED, intervals)

        decision = engine.evaluate(booking(at(10, 30), staff_id="other"))

        self.assertEqual(decision.decision_type, DecisionType.REJECTED)
        self.assertEqual(decision.findings[0].resource_id, location_resource(LOCATION))

    def test_long_booking_reports_every_overlapped_interval(self):
        intervals = [
            appointment(staff_resource(STAFF), at(10), at(10, 30), interval_id="x"),
            appointment(staff_resource(STAFF), at(11), at(11, 30), interval_id="y"),
        ]
        engine = make_engine(DISABLED, intervals)

        decision = engine.evaluate(booking(at(9, 45), duration=120))

        overlapped = [f.neighbor.interval_id for f in decision.findings if f.side == ConflictSide.OVERLAP]
        self.assertEqual(overlapped, ["x", "y"])

    def test_block_overlap_rejected_in_every_mode(self):
        intervals = [block(location_resource(LOCATION), at(14), at(14, 30), interval_id="lunch")]

        for enforcement in (STRICT, OVERRIDE, ADVISORY, DISABLED):
            with self.subTest(enforcement=enforcement):
                engine = make_engine(enforcement, intervals, globalBeforeMinutes=15, globalAfterMinutes=15)

                decision = engine.evaluate(
                    booking(at(14, 15)), override_justification="Need the room", actor="manager"
                )

                self.assertEqual(decision.decision_type, DecisionType.REJECTED)
                self.assertTrue(decision.has_hard_conflict)
                self.assertIsNone(decision.audit_record)

    def test_block_adjacent_booking_needs_no_gap(self):
        intervals = [block(staff_resource(STAFF), at(12), at(13), interval_id="lunch")]
        engine = make_engine(STRICT, intervals, globalBeforeMinutes=15, globalAfterMinutes=15)

        self.assertTrue(engine.evaluate(booking(at(13))).is_admitted)
        self.assertTrue(engine.evaluate(booking(at(11, 30))).is_admitted)

    def test_effective_buffer_uses_max_of_scopes(self):
        engine = make_engine(
            STRICT,
            serviceBuffers={SERVICE: {"beforeMinutes": 5}},
            staffBuffers={STAFF: {"beforeMinutes": 20}},
        )

        decision = engine.evaluate(booking(at(10)))

        self.assertEqual(decision.effective_buffers[staff_resource(STAFF)].before_minutes, 20)
        self.assertEqual(decision.effective_buffers[location_resource(LOCATION)].before_minutes, 20)

    def test_time_window_buffer_applies_by_local_start(self):
        engine = make_engine(
            STRICT,
            specialRules={"timeBasedBuffers": [{"startTime": "12:00", "endTime": "13:00", "afterMinutes": 30}]},
        )

        lunch = engine.evaluate(booking(at(12, 30)))
        morning = engine.evaluate(booking(at(9)))

        self.assertEqual(lunch.effective_buffers[staff_resource(STAFF)].after_minutes, 30)
        self.assertEqual(morning.effective_buffers[staff_resource(STAFF)].after_minutes, 0)

    def test_weekday_buffer_applies(self):
        engine = make_engine(STRICT, specialRules={"dayBasedBuffers": {"monday": {"beforeMinutes": 10}}})

        decision = engine.evaluate(booking(at(9)))

        self.assertEqual(decision.effective_buffers[staff_resource(STAFF)].before_minutes, 10)

    def test_evaluation_is_idempotent(self):
        engine = make_engine(OVERRIDE, self.existing, **self.policy)
        request = booking(at(14, 5))

        first = engine.evaluate(request)
        second = engine.evaluate(request)

        self.assertEqual(first.to_dict(), second.to_dict())
        self.assertEqual(first.timeline_versions, second.timeline_versions)

    def test_enforcement_monotonicity(self):
        request = booking(at(14, 5))

        for strict_enforcement in (
            {"enabled": True, "strictMode": True, "allowOverride": True},
            {"enabled": True, "strictMode": True, "allowOverride": False},
        ):
            engine = make_engine(strict_enforcement, self.existing, **self.policy)
            decision = engine.evaluate(request, override_justification="Please")
            self.assertFalse(decision.is_admitted)

        for disabled in (
            {"enabled": False, "strictMode": True},
            {"enabled": False, "allowOverride": False},
        ):
            engine = make_engine(disabled, self.existing, **self.policy)
            self.assertEqual(engine.evaluate(request).decision_type, DecisionType.ADMITTED)

    def test_policy_failure_fails_closed(self):
        store = MagicMock()
        store.snapshot.side_effect = PolicyUnavailableException()
        engine = SchedulingPolicyEngine(store, TimelineIndex())

        with self.assertLogs("apps.bookingapp.services.scheduling_policy_engine", level="ERROR"):
            decision = engine.evaluate(booking(at(9)))

        self.assertEqual(decision.decision_type, DecisionType.REJECTED)
        self.assertTrue(decision.system_error)
        self.assertEqual(decision.findings, [])

    def test_violation_is_logged_when_warning_enabled(self):
        engine = make_engine(ADVISORY, self.existing, **self.policy)

        with self.assertLogs("apps.bookingapp.services.scheduling_policy_engine", level="WARNING"):
            engine.evaluate(booking(at(14, 5)))

    @patch("apps.bookingapp.services.scheduling_policy_engine.logger")
    def test_violation_not_logged_when_warning_disabled(self, mock_logger):
        engine = make_engine({**ADVISORY, "warnOnViolation": False}, self.existing, **self.policy)

        decision = engine.evaluate(booking(at(14, 5)))

        self.assertEqual(decision.decision_type, DecisionType.ADMITTED_WITH_WARNING)
        mock_logger.warning.assert_not_called()

    def test_naive_start_is_invalid(self):
        engine = make_engine(STRICT)

        with self.assertRaises(InvalidRequestException) as context:
            engine.evaluate(booking(datetime(2024, 6, 3, 9, 0)))

        self.assertIn("start", context.exception.errors)

    def test_negative_add_on_is_invalid(self):
        engine = make_engine(STRICT)

        with self.assertRaises(InvalidRequestException) as context:
            engine.evaluate(booking(at(9), add_ons=[AddOn(-10)]))

        self.assertIn("add_ons", context.exception.errors)

    def test_missing_resources_are_invalid(self):
        engine = make_engine(STRICT)

        with self.assertRaises(InvalidRequestException) as context:
            engine.evaluate(booking(at(9), staff_id=None, location_id=""))

        self.assertIn("staff_id", context.exception.errors)
        self.assertIn("location_id", context.exception.errors)

    def test_zero_duration_is_invalid(self):
        engine = make_engine(STRICT)

        with self.assertRaises(InvalidRequestException):
            engine.evaluate(booking(at(9), duration=0))

    @override_settings(BUFFER_TIME_SETTINGS={"globalAfterMinutes": 10, "enforcement": STRICT})
    def test_from_settings(self):
        engine = SchedulingPolicyEngine.from_settings(TimelineIndex(self.existing))

        self.assertEqual(engine.evaluate(booking(at(14, 5))).decision_type, DecisionType.REJECTED)


class SchedulingPolicyEngineCommitTest(SimpleTestCase):
    """Test cases for committing admitted decisions"""

    def setUp(self):
        cache.clear()
        self.engine = make_engine(STRICT, globalAfterMinutes=10)

    def test_commit_inserts_on_every_resource(self):
        request = booking(at(10), add_ons=[AddOn(15)])
        decision = self.engine.evaluate(request)

        intervals = self.engine.commit(request, decision, interval_id="appt-1")

        self.assertEqual(len(intervals), 2)
        self.assertEqual(decision.committed_intervals, intervals)
        for resource_id in request.resource_ids:
            committed = self.engine.timeline_index.intervals(resource_id)
            self.assertEqual(len(committed), 1)
            self.assertEqual(committed[0].interval_id, "appt-1")
            self.assertEqual(committed[0].end, at(10, 45))
            self.assertEqual(committed[0].applied_after, 10)

    def test_buffers_are_fixed_at_commit_time(self):
        request = booking(at(10))
        self.engine.commit(request, self.engine.evaluate(request), interval_id="appt-1")

        self.engine.policy_store.set_global_buffer(0, 0)

        decision = self.engine.evaluate(booking(at(10, 35)))
        self.assertEqual(decision.decision_type, DecisionType.REJECTED)
        self.assertEqual(decision.findings[0].required_gap_minutes, 10)

    def test_commit_rejected_decision_is_invalid(self):
        request = booking(at(10))
        self.engine.commit(request, self.engine.evaluate(request))

        clash = booking(at(10, 15))
        decision = self.engine.evaluate(clash)

        with self.assertRaises(InvalidOperationException):
            self.engine.commit(clash, decision)

    def test_stale_decision_cannot_be_committed(self):
        first = booking(at(10))
        second = booking(at(10, 15))
        first_decision = self.engine.evaluate(first)
        second_decision = self.engine.evaluate(second)

        self.engine.commit(first, first_decision)

        with self.assertRaises(ConcurrentCommitConflictException):
            self.engine.commit(second, second_decision)

        self.assertEqual(len(self.engine.timeline_index.intervals(staff_resource(STAFF))), 1)
        self.assertEqual(len(self.engine.timeline_index.intervals(location_resource(LOCATION))), 1)

    def test_reschedule_ignores_own_interval(self):
        request = booking(at(10))
        self.engine.commit(request, self.engine.evaluate(request), interval_id="appt-1")

        moved = booking(at(10, 15), exclude_interval_id="appt-1")
        decision = self.engine.evaluate(moved)
        self.assertEqual(decision.decision_type, DecisionType.ADMITTED)

        self.engine.commit(moved, decision, interval_id="appt-1")

        committed = self.engine.timeline_index.intervals(staff_resource(STAFF))
        self.assertEqual([interval.start for interval in committed], [at(10, 15)])

    def test_reschedule_to_other_staff_vacates_old_timeline(self):
        self.engine.evaluate_and_commit(booking(at(10)), interval_id="appt-1")

        decision = self.engine.evaluate_and_commit(
            booking(at(11), staff_id="S2", exclude_interval_id="appt-1"), interval_id="appt-1"
        )

        self.assertEqual(decision.decision_type, DecisionType.ADMITTED)
        self.assertEqual(self.engine.timeline_index.intervals(staff_resource(STAFF)), [])
        moved = self.engine.timeline_index.intervals(staff_resource("S2"))
        self.assertEqual([(interval.interval_id, interval.start) for interval in moved], [("appt-1", at(11))])
        located = self.engine.timeline_index.intervals(location_resource(LOCATION))
        self.assertEqual([interval.start for interval in located], [at(11)])

        # The freed slot can be booked again
        other = self.engine.evaluate_and_commit(booking(at(10), location_id="L2"))
        self.assertEqual(other.decision_type, DecisionType.ADMITTED)

    def test_reschedule_to_other_location_vacates_old_timeline(self):
        self.engine.evaluate_and_commit(booking(at(10)), interval_id="appt-1")

        self.engine.evaluate_and_commit(
            booking(at(10), location_id="L2", exclude_interval_id="appt-1"), interval_id="appt-1"
        )

        self.assertEqual(self.engine.timeline_index.intervals(location_resource(LOCATION)), [])
        self.assertEqual(len(self.engine.timeline_index.intervals(location_resource("L2"))), 1)
        self.assertEqual(len(self.engine.timeline_index.intervals(staff_resource(STAFF))), 1)

    @override_settings(SCHEDULING_POLICY={"LOCK_TIMEOUT": 0, "LOCK_POLL_INTERVAL": 0.01})
    def test_reschedule_locks_vacated_timeline(self):
        self.engine.evaluate_and_commit(booking(at(10)), interval_id="appt-1")
        moved = booking(at(11), staff_id="S2", exclude_interval_id="appt-1")

        with distributed_lock(f"timeline:{staff_resource(STAFF)}", timeout=0) as acquired:
            self.assertTrue(acquired)

            with self.assertRaises(ConcurrentCommitConflictException):
                self.engine.evaluate_and_commit(moved, interval_id="appt-1")

        self.assertEqual(len(self.engine.timeline_index.intervals(staff_resource(STAFF))), 1)
        self.assertEqual(self.engine.timeline_index.intervals(staff_resource("S2")), [])

    @patch("apps.bookingapp.signals.record_buffer_override_audit")
    def test_override_audit_records_commit(self, mock_audit_task):
        existing = [appointment(staff_resource(STAFF), at(13), at(14), after=10, interval_id="a1")]
        engine = make_engine(OVERRIDE, existing, globalAfterMinutes=10)

        decision = engine.evaluate_and_commit(
            booking(at(14, 5)),
            override_justification="Walk-in VIP",
            actor="front-desk",
            interval_id="appt-2",
        )

        self.assertEqual(decision.decision_type, DecisionType.ADMITTED_BY_OVERRIDE)
        self.assertEqual(decision.audit_record.outcome, AuditOutcome.COMMITTED)

        emitted = [call.args[0] for call in mock_audit_task.delay.call_args_list]
        self.assertEqual([record["outcome"] for record in emitted], ["admitted", "committed"])
        self.assertEqual(emitted[1]["interval_id"], "appt-2")
        self.assertEqual(emitted[1]["justification"], "Walk-in VIP")

    @patch("apps.bookingapp.signals.record_buffer_override_audit")
    def test_override_audit_records_failed_commit(self, mock_audit_task):
        existing = [appointment(staff_resource(STAFF), at(13), at(14), after=10, interval_id="a1")]
        engine = make_engine(OVERRIDE, existing, globalAfterMinutes=10)
        request = booking(at(14, 5))
        decision = engine.evaluate(request, override_justification="Walk-in VIP")

        later = booking(at(16))
        engine.commit(later, engine.evaluate(later))

        with self.assertRaises(ConcurrentCommitConflictException):
            engine.commit(request, decision)

        self.assertEqual(decision.audit_record.outcome, AuditOutcome.COMMIT_FAILED)
        emitted = [call.args[0] for call in mock_audit_task.delay.call_args_list]
        self.assertEqual([record["outcome"] for record in emitted], ["admitted", "commit_failed"])
        self.assertIsNone(emitted[1]["interval_id"])

    def test_evaluate_and_commit(self):
        decision = self.engine.evaluate_and_commit(booking(at(10)), interval_id="appt-1")

        self.assertEqual(decision.decision_type, DecisionType.ADMITTED)
        self.assertEqual(len(decision.committed_intervals), 2)

        clash = self.engine.evaluate_and_commit(booking(at(10, 5)))

        self.assertEqual(clash.decision_type, DecisionType.REJECTED)
        self.assertEqual(clash.committed_intervals, [])
        self.assertEqual(len(self.engine.timeline_index.intervals(staff_resource(STAFF))), 1)

    @override_settings(SCHEDULING_POLICY={"LOCK_TIMEOUT": 0, "LOCK_POLL_INTERVAL": 0.01})
    def test_evaluate_and_commit_while_timeline_locked(self):
        with distributed_lock(f"timeline:{location_resource(LOCATION)}", timeout=0) as acquired:
            self.assertTrue(acquired)

            with self.assertRaises(ConcurrentCommitConflictException):
                self.engine.evaluate_and_commit(booking(at(10)))

        self.assertEqual(self.engine.timeline_index.intervals(staff_resource(STAFF)), [])
        self.assertTrue(self.engine.evaluate_and_commit(booking(at(10))).is_admitted)

    def test_evaluate_and_commit_fails_closed(self):
        store = MagicMock()
        store.snapshot.side_effect = RuntimeError("settings backend down")
        engine = SchedulingPolicyEngine(store, TimelineIndex())

        with self.assertLogs("apps.bookingapp.services.scheduling_policy_engine", level="ERROR"):
            decision = engine.evaluate_and_commit(booking(at(10)))

        self.assertTrue(decision.system_error)
        self.assertEqual(engine.timeline_index.intervals(staff_resource(STAFF)), [])
