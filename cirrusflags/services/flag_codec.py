# CirrusFlags/cirrusflags/services/flag_codec.py
"""Conversion between JSON payloads and CirrusFlags models.

Parsers (``*_from_dict``) turn already schema-validated JSON into frozen
model instances and raise ``FlagConfigurationError`` for anything the
models reject. ``to_dict`` turns any model, result, event or report back
into JSON-safe data: enums become their values, datetimes ISO-8601 strings
and tuples lists.
"""


from __future__ import annotations

import dataclasses
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from cirrusflags.errors.exceptions import FlagConfigurationError
from cirrusflags.models import (
    ApplicationContext,
    CanaryRollout,
    ConditionGroup,
    DeploymentRing,
    DeviceContext,
    EvaluationContext,
    EvaluationResult,
    ExperimentRollout,
    FeatureFlag,
    FlagDependency,
    FlagLifecycle,
    MetricThreshold,
    NetworkContext,
    PercentageRollout,
    RingRollout,
    RolloutConfig,
    RolloutCriteria,
    RolloutStage,
    RuleSchedule,
    ScheduledRollout,
    Segment,
    SessionContext,
    TargetingCondition,
    TargetingRule,
    UserAttributes,
    Variant,
    VariantAllocation,
)
from cirrusflags.services.condition_service import parse_date
from cirrusflags.services.lifecycle_service import LifecycleManager


# ---------- Helpers ----------


def _build(cls: Any, what: str, data: Mapping[str, Any], **overrides: Any) -> Any:
    """Instantiate ``cls`` from ``data``, reporting bad keys as config errors."""
    kwargs = dict(data)
    kwargs.update(overrides)
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise FlagConfigurationError(f"Invalid {what}: {e}")


def _datetime(value: Any, what: str) -> Optional[datetime]:
    if value is None:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise FlagConfigurationError(f"Invalid {what}: {value!r} is not a date")
    return parsed


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise FlagConfigurationError(f"{what} must be an object")
    return data


# ---------- Targeting ----------


def condition_from_dict(
    data: Mapping[str, Any],
) -> Union[TargetingCondition, ConditionGroup]:
    """Parse a leaf condition or, when ``conditions`` is present, a group."""
    data = _mapping(data, "Condition")
    if "conditions" in data:
        return condition_group_from_dict(data)
    return _build(TargetingCondition, "condition", data)


def condition_group_from_dict(data: Any) -> ConditionGroup:
    """Parse a condition group.

    A bare list is accepted as shorthand for an ``and`` group.
    """
    if data is None:
        return ConditionGroup()
    if isinstance(data, list):
        data = {"operator": "and", "conditions": data}
    data = _mapping(data, "Condition group")
    return ConditionGroup(
        operator=data.get("operator", "and"),
        conditions=[condition_from_dict(c) for c in data.get("conditions", [])],
    )


def schedule_from_dict(data: Mapping[str, Any]) -> RuleSchedule:
    data = _mapping(data, "Schedule")
    return _build(
        RuleSchedule,
        "schedule",
        data,
        start_time=_datetime(data.get("start_time"), "schedule start_time"),
        end_time=_datetime(data.get("end_time"), "schedule end_time"),
    )


def rule_from_dict(data: Mapping[str, Any]) -> TargetingRule:
    data = _mapping(data, "Targeting rule")
    schedule = data.get("schedule")
    return _build(
        TargetingRule,
        "targeting rule",
        data,
        conditions=condition_group_from_dict(data.get("conditions")),
        schedule=schedule_from_dict(schedule) if schedule else None,
    )


# ---------- Rollouts ----------


def _criteria_from_dict(data: Optional[Mapping[str, Any]]) -> RolloutCriteria:
    if not data:
        return RolloutCriteria()
    return _build(
        RolloutCriteria,
        "rollout criteria",
        data,
        metrics=[
            _build(MetricThreshold, "metric threshold", m)
            for m in data.get("metrics", [])
        ],
    )


def _stage_from_dict(data: Mapping[str, Any]) -> RolloutStage:
    criteria = data.get("criteria")
    return _build(
        RolloutStage,
        "rollout stage",
        data,
        start_time=_datetime(data.get("start_time"), "stage start_time"),
        criteria=_criteria_from_dict(criteria) if criteria else None,
    )


def rollout_from_dict(data: Optional[Mapping[str, Any]]) -> Optional[RolloutConfig]:
    """Parse a rollout object tagged by its ``strategy`` field."""
    if data is None:
        return None
    data = _mapping(data, "Rollout")
    strategy = data.get("strategy")
    fields = {k: v for k, v in data.items() if k != "strategy"}

    if strategy == "percentage":
        return _build(PercentageRollout, "percentage rollout", fields)
    if strategy == "scheduled":
        return _build(
            ScheduledRollout,
            "scheduled rollout",
            fields,
            stages=[_stage_from_dict(s) for s in data.get("stages", [])],
        )
    if strategy == "ring":
        return _build(
            RingRollout,
            "ring rollout",
            fields,
            rings=[
                _build(DeploymentRing, "deployment ring", r)
                for r in data.get("rings", [])
            ],
        )
    if strategy == "canary":
        return _build(
            CanaryRollout,
            "canary rollout",
            fields,
            criteria=_criteria_from_dict(data.get("criteria")),
        )
    if strategy == "experiment":
        return _build(
            ExperimentRollout,
            "experiment rollout",
            fields,
            allocation=[
                _build(VariantAllocation, "variant allocation", a)
                for a in data.get("allocation", [])
            ],
            end_date=_datetime(data.get("end_date"), "experiment end_date"),
        )
    raise FlagConfigurationError(f"Unknown rollout strategy '{strategy}'")


# ---------- Flags ----------


def lifecycle_from_dict(data: Mapping[str, Any]) -> FlagLifecycle:
    data = _mapping(data, "Lifecycle")
    dates = {
        name: _datetime(data.get(name), f"lifecycle {name}")
        for name in (
            "created_at",
            "updated_at",
            "activated_at",
            "review_date",
            "deprecation_date",
            "removal_date",
        )
    }
    for name in ("created_at", "updated_at"):
        if dates[name] is None:
            raise FlagConfigurationError(f"Invalid lifecycle: {name} is required")
    try:
        return _build(FlagLifecycle, "lifecycle", data, **dates)
    except ValueError as e:
        # Unknown lifecycle state
        raise FlagConfigurationError(f"Invalid lifecycle: {e}")


def flag_from_dict(
    data: Mapping[str, Any],
    lifecycle_manager: Optional[LifecycleManager] = None,
    created_by: str = "system",
) -> FeatureFlag:
    """Parse a flag definition.

    Args:
        data: The flag payload (see ``schemas/flag_config.schema.json``).
        lifecycle_manager: Used to create a fresh ``draft`` lifecycle when
            the payload has none.
        created_by: Author recorded on such a fresh lifecycle.

    Raises:
        FlagConfigurationError: If the payload does not describe a valid
            flag.
    """
    data = _mapping(data, "Flag")
    flag_id = data.get("id") or data.get("key")

    if data.get("lifecycle"):
        lifecycle = lifecycle_from_dict(data["lifecycle"])
    else:
        lifecycle = (lifecycle_manager or LifecycleManager()).create_lifecycle(
            created_by=created_by
        )

    return _build(
        FeatureFlag,
        "flag",
        data,
        id=flag_id,
        variants=[_build(Variant, "variant", v) for v in data.get("variants", [])],
        lifecycle=lifecycle,
        targeting_rules=[rule_from_dict(r) for r in data.get("targeting_rules", [])],
        rollout=rollout_from_dict(data.get("rollout")),
        dependencies=[
            _build(FlagDependency, "dependency", d, source_flag=flag_id)
            for d in data.get("dependencies", [])
        ],
    )


def segment_from_dict(data: Mapping[str, Any]) -> Segment:
    data = _mapping(data, "Segment")
    overrides: Dict[str, Any] = {
        "updated_at": _datetime(data.get("updated_at"), "segment updated_at")
    }
    if data.get("rules") is not None:
        overrides["rules"] = condition_group_from_dict(data["rules"])
    fields = {k: v for k, v in data.items() if k != "rules"}
    return _build(Segment, "segment", fields, **overrides)


def definitions_from_dict(
    data: Mapping[str, Any],
    lifecycle_manager: Optional[LifecycleManager] = None,
) -> Tuple[List[FeatureFlag], List[Segment]]:
    """Parse a bootstrap document ``{"flags": [...], "segments": [...]}``."""
    data = _mapping(data, "Definitions")
    flags = [flag_from_dict(f, lifecycle_manager) for f in data.get("flags", [])]
    segments = [segment_from_dict(s) for s in data.get("segments", [])]
    return flags, segments


# ---------- Context ----------

_USER_FIELDS = {f.name for f in dataclasses.fields(UserAttributes)}


def _user_from_dict(data: Mapping[str, Any]) -> UserAttributes:
    """Known attributes map to fields; anything else lands in ``custom``."""
    data = _mapping(data, "user")
    known = {k: v for k, v in data.items() if k in _USER_FIELDS}
    custom = dict(data.get("custom") or {})
    custom.update({k: v for k, v in data.items() if k not in _USER_FIELDS})
    known["custom"] = custom
    known["created_at"] = _datetime(data.get("created_at"), "user created_at")
    if "id" in known and known["id"] is not None:
        known["id"] = str(known["id"])
    return _build(UserAttributes, "user", known)


def context_from_dict(data: Optional[Mapping[str, Any]]) -> EvaluationContext:
    """Parse an evaluation context; every section is optional."""
    if not data:
        return EvaluationContext()
    data = _mapping(data, "Context")

    session = data.get("session")
    if session:
        session = _build(
            SessionContext,
            "session",
            session,
            started_at=_datetime(session.get("started_at"), "session started_at"),
        )

    def section(name: str, cls: Any) -> Any:
        value = data.get(name)
        return _build(cls, name, _mapping(value, name)) if value else None

    return EvaluationContext(
        user=_user_from_dict(data["user"]) if data.get("user") else None,
        device=section("device", DeviceContext),
        application=section("application", ApplicationContext),
        network=section("network", NetworkContext),
        session=session or None,
        timestamp=_datetime(data.get("timestamp"), "context timestamp"),
        custom=dict(data.get("custom") or {}),
    )


# ---------- Serialization ----------


def to_dict(obj: Any) -> Any:
    """Recursively convert models and reports into JSON-safe values."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_dict(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [to_dict(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): to_dict(v) for k, v in obj.items()}
    return obj


def result_to_dict(result: EvaluationResult) -> Dict[str, Any]:
    """Serialize an ``EvaluationResult`` (``EvaluateResponse`` schema)."""
    return to_dict(result)
