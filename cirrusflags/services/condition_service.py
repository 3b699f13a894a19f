# CirrusFlags/cirrusflags/services/condition_service.py
"""Condition evaluation shared by targeting rules and segments.

Provides pure functions to:
- resolve a dot-notation attribute path against an evaluation context,
- compare a resolved value with a condition's operator and reference value,
- evaluate recursive ``and`` / ``or`` condition groups,
- check whether a rule schedule contains a point in time.

Nothing here raises on bad input: malformed regexes, unparsable dates and
unknown operators simply do not match.
"""


from __future__ import annotations

import re
from dataclasses import dataclass, fields, is_dataclass
from datetime import datetime, timezone
from collections.abc import Mapping
from typing import Any, List, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cirrusflags.models import (
    ConditionGroup,
    EvaluationContext,
    RuleSchedule,
    TargetingCondition,
)


class _Missing:
    """Sentinel for an attribute path that does not resolve."""

    _instance: Optional["_Missing"] = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


@dataclass(frozen=True)
class ConditionResult:
    """Trace of one condition evaluation (collected in debug mode)."""

    attribute: str
    operator: str
    expected_value: Any
    actual_value: Any
    matched: bool


# ---------- Attribute paths ----------


def resolve_attribute_path(path: str, context: Any) -> Any:
    """Walk ``path`` (dot notation) through mappings and dataclasses.

    Args:
        path: Attribute path such as ``"user.custom.department"``.
        context: Root object, usually an ``EvaluationContext``.

    Returns:
        The resolved value, or ``MISSING`` when any segment is absent or
        the value at the end of the path is ``None``.
    """
    current: Any = context
    for part in path.split("."):
        if current is None or current is MISSING:
            return MISSING
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif is_dataclass(current) and not isinstance(current, type):
            if part not in {f.name for f in fields(current)}:
                return MISSING
            current = getattr(current, part)
        else:
            return MISSING
    return MISSING if current is None else current


# ---------- Value helpers ----------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _normalize(value: Any, case_sensitive: bool) -> str:
    text = str(value)
    return text if case_sensitive else text.lower()


def _as_list(value: Any) -> Optional[list]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return None


def values_equal(actual: Any, expected: Any, case_sensitive: bool = True) -> bool:
    """Strict equality: ``True`` never equals ``1`` and strings honour case."""
    if isinstance(actual, str) and isinstance(expected, str):
        return _normalize(actual, case_sensitive) == _normalize(
            expected, case_sensitive
        )
    if isinstance(actual, bool) or isinstance(expected, bool):
        return (
            isinstance(actual, bool)
            and isinstance(expected, bool)
            and actual is expected
        )
    actual_list, expected_list = _as_list(actual), _as_list(expected)
    if actual_list is not None and expected_list is not None:
        return len(actual_list) == len(expected_list) and all(
            values_equal(a, e, case_sensitive)
            for a, e in zip(actual_list, expected_list)
        )
    return actual == expected


def _contains(actual: Any, expected: Any, case_sensitive: bool) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return _normalize(expected, case_sensitive) in _normalize(
            actual, case_sensitive
        )
    items = _as_list(actual)
    if items is not None:
        return any(values_equal(item, expected, case_sensitive) for item in items)
    return False


def _is_in(actual: Any, expected: Any, case_sensitive: bool) -> bool:
    items = _as_list(expected)
    if items is None:
        return False
    return any(values_equal(actual, item, case_sensitive) for item in items)


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a datetime, an ISO-8601 string or epoch seconds.

    Naive datetimes are treated as UTC. Returns ``None`` when ``value``
    cannot be interpreted as a point in time.
    """
    parsed: Optional[datetime] = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    elif _is_number(value):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_version(version: str) -> List[int]:
    """Split ``version`` on dots and hyphens into numeric segments.

    A leading ``v`` is ignored; each segment contributes its leading digits
    (``"3rc1"`` -> 3) and non-numeric segments count as 0.
    """
    if version.startswith("v"):
        version = version[1:]
    parts: List[int] = []
    for segment in re.split(r"[.-]", version):
        digits = re.match(r"\d+", segment)
        parts.append(int(digits.group()) if digits else 0)
    return parts


def compare_versions(actual: str, expected: str) -> int:
    """Return -1, 0 or 1; missing segments compare as 0."""
    a_parts, e_parts = parse_version(actual), parse_version(expected)
    width = max(len(a_parts), len(e_parts))
    a_parts += [0] * (width - len(a_parts))
    e_parts += [0] * (width - len(e_parts))
    for a, e in zip(a_parts, e_parts):
        if a != e:
            return 1 if a > e else -1
    return 0


# ---------- Operators ----------


def compare(
    actual: Any, operator: str, expected: Any, case_sensitive: bool = True
) -> bool:
    """Apply ``operator`` to a resolved value and a reference value.

    Args:
        actual: The resolved attribute value, or ``MISSING``.
        operator: Operator name in its wire spelling (``"greaterThan"``).
        expected: The condition's reference value.
        case_sensitive: Whether string comparisons respect case.

    Returns:
        ``True`` if the comparison holds. A missing value only satisfies
        ``notExists``; unknown operators never match.
    """
    if actual is MISSING:
        return operator == "notExists"

    if operator == "exists":
        return True
    if operator == "notExists":
        return False
    if operator == "equals":
        return values_equal(actual, expected, case_sensitive)
    if operator == "notEquals":
        return not values_equal(actual, expected, case_sensitive)
    if operator == "contains":
        return _contains(actual, expected, case_sensitive)
    if operator == "notContains":
        return not _contains(actual, expected, case_sensitive)
    if operator in ("startsWith", "endsWith"):
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        a = _normalize(actual, case_sensitive)
        e = _normalize(expected, case_sensitive)
        return a.startswith(e) if operator == "startsWith" else a.endswith(e)
    if operator == "matches":
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        try:
            flags = 0 if case_sensitive else re.IGNORECASE
            return re.search(expected, actual, flags) is not None
        except re.error:
            return False
    if operator == "in":
        return _is_in(actual, expected, case_sensitive)
    if operator == "notIn":
        return _as_list(expected) is not None and not _is_in(
            actual, expected, case_sensitive
        )
    if operator in (
        "greaterThan",
        "greaterThanOrEquals",
        "lessThan",
        "lessThanOrEquals",
    ):
        if not _is_number(actual) or not _is_number(expected):
            return False
        if operator == "greaterThan":
            return actual > expected
        if operator == "greaterThanOrEquals":
            return actual >= expected
        if operator == "lessThan":
            return actual < expected
        return actual <= expected
    if operator in ("before", "after"):
        a_date, e_date = parse_date(actual), parse_date(expected)
        if a_date is None or e_date is None:
            return False
        return a_date < e_date if operator == "before" else a_date > e_date
    if operator in ("semverGreaterThan", "semverLessThan", "semverEquals"):
        if not isinstance(actual, str) or not isinstance(expected, str):
            return False
        order = compare_versions(actual, expected)
        if operator == "semverGreaterThan":
            return order > 0
        if operator == "semverLessThan":
            return order < 0
        return order == 0

    return False


# ---------- Conditions & groups ----------


def evaluate_condition(
    condition: TargetingCondition,
    context: EvaluationContext,
    trace: Optional[List[ConditionResult]] = None,
) -> bool:
    """Evaluate one condition; ``negate`` is applied after the comparison."""
    actual = resolve_attribute_path(condition.attribute, context)
    matched = compare(
        actual, condition.operator, condition.value, condition.case_sensitive
    )
    if condition.negate:
        matched = not matched
    if trace is not None:
        trace.append(
            ConditionResult(
                attribute=condition.attribute,
                operator=condition.operator,
                expected_value=condition.value,
                actual_value=None if actual is MISSING else actual,
                matched=matched,
            )
        )
    return matched


def evaluate_group(
    group: ConditionGroup,
    context: EvaluationContext,
    trace: Optional[List[ConditionResult]] = None,
) -> bool:
    """Evaluate a condition group recursively.

    An empty ``and`` group is true and an empty ``or`` group is false.
    """
    items: Tuple[Union[TargetingCondition, ConditionGroup], ...] = group.conditions

    def _one(item: Union[TargetingCondition, ConditionGroup]) -> bool:
        if isinstance(item, ConditionGroup):
            return evaluate_group(item, context, trace)
        return evaluate_condition(item, context, trace)

    if group.operator == "and":
        return all(_one(item) for item in items)
    return any(_one(item) for item in items)


# ---------- Schedules ----------


def _zone(name: str) -> Any:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def is_within_schedule(schedule: RuleSchedule, now: datetime) -> bool:
    """Check ``now`` against a schedule's window, weekdays and hours.

    ``days_of_week`` uses 0 = Sunday. Weekday and hour are computed in the
    schedule's timezone; an unknown timezone falls back to UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    start = parse_date(schedule.start_time) if schedule.start_time else None
    end = parse_date(schedule.end_time) if schedule.end_time else None
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False

    local = now.astimezone(_zone(schedule.timezone or "UTC"))
    if schedule.days_of_week:
        if (local.weekday() + 1) % 7 not in schedule.days_of_week:
            return False
    if schedule.hours_of_day:
        if local.hour not in schedule.hours_of_day:
            return False
    return True
