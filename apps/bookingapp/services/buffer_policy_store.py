"""
Buffer Policy Store

Holds the configured buffer rules and enforcement settings.

Every edit replaces the current policy with a new immutable snapshot, so an
evaluation that took a snapshot keeps seeing exactly that policy even while
the settings screen saves changes. Policies are stored in the same shape the
settings screen edits (camelCase keys), which is also the shape of the
``BUFFER_TIME_SETTINGS`` Django setting.
"""

import logging
import threading
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional

from django.conf import settings
from django.core.exceptions import ValidationError

from algorithms.availability.scheduling_types import (
    BufferRule,
    BufferScope,
    EnforcementSettings,
    TimeWindowBufferRule,
)
from core.exceptions import PolicyUnavailableException, ValidationException
from core.utils.constants import DEFAULT_BUFFER_TIME
from core.utils.validators import (
    validate_buffer_minutes,
    validate_time_format,
    validate_weekday,
)

logger = logging.getLogger(__name__)

# Settings keys of the per-id rule maps
SCOPE_KEYS = {
    BufferScope.SERVICE: "serviceBuffers",
    BufferScope.STAFF: "staffBuffers",
    BufferScope.LOCATION: "locationBuffers",
}

SCOPED = (BufferScope.SERVICE, BufferScope.STAFF, BufferScope.LOCATION, BufferScope.WEEKDAY)


def _validated_rule(scope, scope_id, before_minutes, after_minutes) -> BufferRule:
    try:
        validate_buffer_minutes(before_minutes)
        validate_buffer_minutes(after_minutes)
        if scope == BufferScope.WEEKDAY:
            validate_weekday(scope_id)
    except ValidationError as e:
        raise ValidationException(
            errors={"scope": str(scope.value), "scope_id": scope_id, "detail": e.messages}
        )

    if scope != BufferScope.GLOBAL and scope_id in (None, ""):
        raise ValidationException(
            errors={"scope": str(scope.value), "detail": ["A scope id is required"]}
        )

    return BufferRule(
        scope,
        before_minutes,
        after_minutes,
        scope_id=None if scope_id is None else str(scope_id),
    )


def _validated_window(start, end, before_minutes, after_minutes) -> TimeWindowBufferRule:
    try:
        validate_time_format(start)
        validate_time_format(end)
        validate_buffer_minutes(before_minutes)
        validate_buffer_minutes(after_minutes)
    except ValidationError as e:
        raise ValidationException(errors={"time_window": f"{start}-{end}", "detail": e.messages})

    if start > end:
        raise ValidationException(
            errors={"time_window": f"{start}-{end}", "detail": ["Window must not end before it starts"]}
        )

    return TimeWindowBufferRule(start, end, before_minutes, after_minutes)


def _validated_enforcement(enabled, strict_mode, allow_override, warn_on_violation) -> EnforcementSettings:
    flags = {
        "enabled": enabled,
        "strictMode": strict_mode,
        "allowOverride": allow_override,
        "warnOnViolation": warn_on_violation,
    }
    invalid = {
        key: f"Must be true or false, got {value!r}"
        for key, value in flags.items()
        if not isinstance(value, bool)
    }
    if invalid:
        raise ValidationException(errors={"enforcement": invalid})

    return EnforcementSettings(enabled, strict_mode, allow_override, warn_on_violation)


class BufferPolicySnapshot:
    """
    Immutable view of buffer policy at one point in time.

    Scoped rules are kept as typed ``id -> BufferRule`` mappings; an id that
    is missing from a mapping has no override at that scope.
    """

    def __init__(
        self,
        global_rule: Optional[BufferRule] = None,
        scoped_rules: Optional[Mapping[BufferScope, Mapping[str, BufferRule]]] = None,
        time_window_rules: Optional[Iterable[TimeWindowBufferRule]] = None,
        enforcement: Optional[EnforcementSettings] = None,
    ):
        self._global_rule = global_rule or BufferRule(
            BufferScope.GLOBAL, DEFAULT_BUFFER_TIME, DEFAULT_BUFFER_TIME
        )
        scoped_rules = scoped_rules or {}
        self._scoped_rules = MappingProxyType(
            {scope: MappingProxyType(dict(scoped_rules.get(scope, {}))) for scope in SCOPED}
        )
        self._time_window_rules = tuple(time_window_rules or ())

        self._enforcement = enforcement or EnforcementSettings()

    @property
    def global_rule(self) -> BufferRule:
        return self._global_rule

    @property
    def enforcement(self) -> EnforcementSettings:
        return self._enforcement

    @property
    def time_window_rules(self):
        return self._time_window_rules

    def rules(self, scope: BufferScope) -> Mapping[str, BufferRule]:
        return self._scoped_rules[BufferScope(scope)]

    def rule_for(self, scope: BufferScope, scope_id: Any) -> Optional[BufferRule]:
        scope = BufferScope(scope)
        if scope == BufferScope.GLOBAL:
            return self._global_rule
        if scope_id is None:
            return None
        return self._scoped_rules[scope].get(str(scope_id))

    def replace(
        self,
        global_rule: Optional[BufferRule] = None,
        scoped_rules: Optional[Mapping[BufferScope, Mapping[str, BufferRule]]] = None,
        time_window_rules: Optional[Iterable[TimeWindowBufferRule]] = None,
        enforcement: Optional[EnforcementSettings] = None,
    ) -> "BufferPolicySnapshot":
        """Copy of this snapshot with the given parts swapped out"""
        return BufferPolicySnapshot(
            global_rule=global_rule or self._global_rule,
            scoped_rules=scoped_rules if scoped_rules is not None else self._scoped_rules,
            time_window_rules=(
                time_window_rules if time_window_rules is not None else self._time_window_rules
            ),
            enforcement=enforcement or self._enforcement,
        )

    def with_rule(self, rule: BufferRule) -> "BufferPolicySnapshot":
        if rule.scope == BufferScope.GLOBAL:
            return self.replace(global_rule=rule)

        scoped = {scope: dict(rules) for scope, rules in self._scoped_rules.items()}
        scoped[rule.scope][rule.scope_id] = rule
        return self.replace(scoped_rules=scoped)

    def without_rule(self, scope: BufferScope, scope_id: Any) -> "BufferPolicySnapshot":
        scoped = {s: dict(rules) for s, rules in self._scoped_rules.items()}
        scoped[BufferScope(scope)].pop(str(scope_id), None)
        return self.replace(scoped_rules=scoped)

    @classmethod
    def default(cls) -> "BufferPolicySnapshot":
        return cls()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BufferPolicySnapshot":
        """
        Build a snapshot from the settings-screen shape, filling gaps with defaults.

        Raises:
            ValidationException: If any configured value is invalid
        """
        data = data or {}

        global_rule = _validated_rule(
            BufferScope.GLOBAL,
            None,
            data.get("globalBeforeMinutes", DEFAULT_BUFFER_TIME),
            data.get("globalAfterMinutes", DEFAULT_BUFFER_TIME),
        )

        scoped = {}
        for scope, key in SCOPE_KEYS.items():
            scoped[scope] = {
                str(scope_id): _validated_rule(
                    scope, scope_id, values.get("beforeMinutes", 0), values.get("afterMinutes", 0)
                )
                for scope_id, values in (data.get(key) or {}).items()
            }

        special = data.get("specialRules") or {}
        scoped[BufferScope.WEEKDAY] = {
            weekday: _validated_rule(
                BufferScope.WEEKDAY,
                weekday,
                values.get("beforeMinutes", 0),
                values.get("afterMinutes", 0),
            )
            for weekday, values in (special.get("dayBasedBuffers") or {}).items()
        }
        windows = [
            _validated_window(
                window.get("startTime"),
                window.get("endTime"),
                window.get("beforeMinutes", 0),
                window.get("afterMinutes", 0),
            )
            for window in special.get("timeBasedBuffers") or []
        ]

        enforcement_data = data.get("enforcement") or {}
        defaults = EnforcementSettings()
        enforcement = _validated_enforcement(
            enabled=enforcement_data.get("enabled", defaults.enabled),
            strict_mode=enforcement_data.get("strictMode", defaults.strict_mode),
            allow_override=enforcement_data.get("allowOverride", defaults.allow_override),
            warn_on_violation=enforcement_data.get("warnOnViolation", defaults.warn_on_violation),
        )

        return cls(global_rule, scoped, windows, enforcement)

    def to_dict(self) -> Dict[str, Any]:
        """Convert snapshot to the settings-screen shape"""

        def pair(rule):
            return {"beforeMinutes": rule.before_minutes, "afterMinutes": rule.after_minutes}

        data = {
            "globalBeforeMinutes": self._global_rule.before_minutes,
            "globalAfterMinutes": self._global_rule.after_minutes,
        }
        for scope, key in SCOPE_KEYS.items():
            data[key] = {scope_id: pair(rule) for scope_id, rule in self.rules(scope).items()}

        data["specialRules"] = {
            "timeBasedBuffers": [window.to_dict() for window in self._time_window_rules],
            "dayBasedBuffers": {
                weekday: pair(rule) for weekday, rule in self.rules(BufferScope.WEEKDAY).items()
            },
        }
        data["enforcement"] = self._enforcement.to_dict()
        return data


class BufferPolicyStore:
    """
    Service holding the current buffer policy.

    Reads are lock-free: they return the current immutable snapshot. Writes
    are serialized and swap in a new snapshot.
    """

    def __init__(self, snapshot: Optional[BufferPolicySnapshot] = None):
        self._snapshot = snapshot or BufferPolicySnapshot.default()
        self._write_lock = threading.Lock()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BufferPolicyStore":
        return cls(BufferPolicySnapshot.from_dict(data))

    @classmethod
    def from_settings(cls) -> "BufferPolicyStore":
        """
        Build a store from ``settings.BUFFER_TIME_SETTINGS``.

        Raises:
            PolicyUnavailableException: If the setting is malformed
        """
        data = getattr(settings, "BUFFER_TIME_SETTINGS", None)
        try:
            return cls.from_dict(data)
        except ValidationException as e:
            logger.error(f"Invalid BUFFER_TIME_SETTINGS: {e.errors}")
            raise PolicyUnavailableException(errors=e.errors)
        except (AttributeError, TypeError, ValueError) as e:
            logger.error(f"Unreadable BUFFER_TIME_SETTINGS: {str(e)}")
            raise PolicyUnavailableException(errors={"detail": str(e)})

    # Reads

    def snapshot(self) -> BufferPolicySnapshot:
        return self._snapshot

    def get_settings(self) -> Dict[str, Any]:
        return self._snapshot.to_dict()

    def get_enforcement_settings(self) -> EnforcementSettings:
        return self._snapshot.enforcement

    def get_buffer_rule(self, scope: BufferScope, scope_id: Any = None) -> Optional[BufferRule]:
        return self._snapshot.rule_for(scope, scope_id)

    def is_enabled(self) -> bool:
        return self._snapshot.enforcement.enabled

    def is_strict_mode(self) -> bool:
        return self._snapshot.enforcement.strict_mode

    def is_override_allowed(self) -> bool:
        return self._snapshot.enforcement.allow_override

    # Writes

    def _swap(self, build) -> BufferPolicySnapshot:
        with self._write_lock:
            self._snapshot = build(self._snapshot)
            return self._snapshot

    def set_global_buffer(self, before_minutes: int, after_minutes: int) -> BufferPolicySnapshot:
        rule = _validated_rule(BufferScope.GLOBAL, None, before_minutes, after_minutes)
        return self._swap(lambda snapshot: snapshot.with_rule(rule))

    def set_service_buffer(self, service_id, before_minutes: int, after_minutes: int):
        rule = _validated_rule(BufferScope.SERVICE, service_id, before_minutes, after_minutes)
        return self._swap(lambda snapshot: snapshot.with_rule(rule))

    def set_staff_buffer(self, staff_id, before_minutes: int, after_minutes: int):
        rule = _validated_rule(BufferScope.STAFF, staff_id, before_minutes, after_minutes)
        return self._swap(lambda snapshot: snapshot.with_rule(rule))

    def set_location_buffer(self, location_id, before_minutes: int, after_minutes: int):
        rule = _validated_rule(BufferScope.LOCATION, location_id, before_minutes, after_minutes)
        return self._swap(lambda snapshot: snapshot.with_rule(rule))

    def set_weekday_buffer(self, weekday: str, before_minutes: int, after_minutes: int):
        rule = _validated_rule(BufferScope.WEEKDAY, weekday, before_minutes, after_minutes)
        return self._swap(lambda snapshot: snapshot.with_rule(rule))

    def add_time_window_buffer(self, start: str, end: str, before_minutes: int, after_minutes: int):
        window = _validated_window(start, end, before_minutes, after_minutes)
        return self._swap(
            lambda snapshot: snapshot.replace(
                time_window_rules=snapshot.time_window_rules + (window,)
            )
        )

    def clear_time_window_buffers(self):
        return self._swap(lambda snapshot: snapshot.replace(time_window_rules=()))

    def clear_buffer(self, scope: BufferScope, scope_id: Any):
        """Remove the override at a scope; the global rule cannot be removed"""
        scope = BufferScope(scope)
        if scope == BufferScope.GLOBAL:
            raise ValidationException(errors={"scope": "The global buffer cannot be removed"})
        return self._swap(lambda snapshot: snapshot.without_rule(scope, scope_id))

    def set_enforcement(
        self,
        enabled: bool,
        strict_mode: bool = False,
        allow_override: Optional[bool] = None,
        warn_on_violation: Optional[bool] = None,
    ) -> BufferPolicySnapshot:
        def build(snapshot):
            current = snapshot.enforcement
            return snapshot.replace(
                enforcement=_validated_enforcement(
                    enabled=enabled,
                    strict_mode=strict_mode,
                    allow_override=(
                        current.allow_override if allow_override is None else allow_override
                    ),
                    warn_on_violation=(
                        current.warn_on_violation
                        if warn_on_violation is None
                        else warn_on_violation
                    ),
                )
            )

        return self._swap(build)

    def update_settings(self, updates: Dict[str, Any]) -> BufferPolicySnapshot:
        """
        Shallow-merge settings-screen keys over the current policy.

        Raises:
            ValidationException: If the merged policy is invalid; the current
                policy is left untouched
        """
        with self._write_lock:
            merged = {**self._snapshot.to_dict(), **(updates or {})}
            self._snapshot = BufferPolicySnapshot.from_dict(merged)
            logger.info(f"Buffer policy updated: {sorted((updates or {}).keys())}")
            return self._snapshot

    def reset_to_defaults(self) -> BufferPolicySnapshot:
        logger.info("Buffer policy reset to defaults")
        return self._swap(lambda snapshot: BufferPolicySnapshot.default())
