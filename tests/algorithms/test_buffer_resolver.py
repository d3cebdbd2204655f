from datetime import datetime
from unittest.mock import MagicMock

from django.test import SimpleTestCase

from algorithms.availability.buffer_resolver import BufferResolver, combine_rules
from algorithms.availability.scheduling_types import (
    BufferRule,
    BufferScope,
    EffectiveBuffer,
    TimeWindowBufferRule,
)
from apps.bookingapp.services.buffer_policy_store import BufferPolicySnapshot


def policy(**data):
    data.setdefault("enforcement", {"enabled": True})
    return BufferPolicySnapshot.from_dict(data)


class BufferResolverTest(SimpleTestCase):
    """Test cases for BufferResolver"""

    def test_disabled_enforcement_resolves_to_zero(self):
        resolver = BufferResolver(
            policy(globalBeforeMinutes=30, globalAfterMinutes=30, enforcement={"enabled": False})
        )

        self.assertEqual(resolver.resolve("cut", "S", "L"), EffectiveBuffer(0, 0))

    def test_global_only(self):
        resolver = BufferResolver(policy(globalBeforeMinutes=5, globalAfterMinutes=10))

        self.assertEqual(resolver.resolve("cut", "S", "L"), EffectiveBuffer(5, 10))

    def test_max_of_staff_and_service(self):
        resolver = BufferResolver(
            policy(
                serviceBuffers={"cut": {"beforeMinutes": 5}},
                staffBuffers={"S": {"beforeMinutes": 20}},
            )
        )

        self.assertEqual(resolver.resolve("cut", "S", "L").before_minutes, 20)

    def test_each_side_resolved_independently(self):
        resolver = BufferResolver(
            policy(
                globalBeforeMinutes=5,
                globalAfterMinutes=5,
                serviceBuffers={"color": {"beforeMinutes": 15, "afterMinutes": 0}},
                locationBuffers={"L": {"beforeMinutes": 0, "afterMinutes": 25}},
            )
        )

        self.assertEqual(resolver.resolve("color", "S", "L"), EffectiveBuffer(15, 25))

    def test_narrower_scope_never_weakens_wider(self):
        resolver = BufferResolver(
            policy(globalBeforeMinutes=10, globalAfterMinutes=10, staffBuffers={"S": {}})
        )

        self.assertEqual(resolver.resolve("cut", "S", "L"), EffectiveBuffer(10, 10))

    def test_unknown_ids_fall_back_to_global(self):
        resolver = BufferResolver(
            policy(globalAfterMinutes=5, serviceBuffers={"color": {"afterMinutes": 30}})
        )

        self.assertEqual(resolver.resolve("cut", None, "elsewhere"), EffectiveBuffer(0, 5))

    def test_time_based_rules_need_a_start(self):
        resolver = BufferResolver(
            policy(
                specialRules={
                    "timeBasedBuffers": [{"startTime": "12:00", "endTime": "13:00", "beforeMinutes": 10}],
                    "dayBasedBuffers": {"saturday": {"afterMinutes": 20}},
                }
            )
        )

        self.assertEqual(resolver.resolve("cut", "S", "L"), EffectiveBuffer(0, 0))
        # 2024-06-08 is a Saturday
        self.assertEqual(resolver.resolve("cut", "S", "L", datetime(2024, 6, 8, 12, 0)), EffectiveBuffer(10, 20))
        self.assertEqual(resolver.resolve("cut", "S", "L", datetime(2024, 6, 8, 13, 0)), EffectiveBuffer(10, 20))
        self.assertEqual(resolver.resolve("cut", "S", "L", datetime(2024, 6, 8, 13, 1)), EffectiveBuffer(0, 20))
        self.assertEqual(resolver.resolve("cut", "S", "L", datetime(2024, 6, 7, 12, 30)), EffectiveBuffer(10, 0))

    def test_applicable_rules_order(self):
        resolver = BufferResolver(
            policy(serviceBuffers={"cut": {"beforeMinutes": 5}}, staffBuffers={"S": {"afterMinutes": 5}})
        )

        scopes = [rule.scope for rule in resolver.applicable_rules("cut", "S", "L")]

        self.assertEqual(scopes, [BufferScope.GLOBAL, BufferScope.SERVICE, BufferScope.STAFF])

    def test_resolver_accepts_any_policy_shape(self):
        snapshot = MagicMock()
        snapshot.enforcement.enabled = True
        snapshot.global_rule = BufferRule(BufferScope.GLOBAL, 3, 4)
        snapshot.rule_for.return_value = None
        snapshot.time_window_rules = ()

        self.assertEqual(BufferResolver(snapshot).resolve("cut", "S", "L"), EffectiveBuffer(3, 4))


class CombineRulesTest(SimpleTestCase):
    def test_empty(self):
        self.assertEqual(combine_rules([]), EffectiveBuffer(0, 0))

    def test_mixed_rule_types(self):
        rules = [
            BufferRule(BufferScope.GLOBAL, 5, 0),
            TimeWindowBufferRule("09:00", "10:00", 0, 15),
        ]

        self.assertEqual(combine_rules(rules), EffectiveBuffer(5, 15))
