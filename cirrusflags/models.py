# CirrusFlags/cirrusflags/models.py
"""Domain model for CirrusFlags.

Every entity the engine works with is a frozen dataclass:

- the evaluation context (user, device, application, network, session),
- flags, variants, targeting rules and condition trees,
- segments,
- the five rollout strategies,
- flag dependencies and lifecycle metadata,
- evaluation results.

Flag payloads are plain JSON values (``bool``, ``str``, ``int``/``float``,
``dict``, ``list`` or ``None``). Sequences are stored as tuples so that a
registered definition cannot be mutated behind the engine's back.
"""


from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from cirrusflags.errors.exceptions import FlagConfigurationError


JsonValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]


def _freeze(obj: Any, name: str, value: Any) -> None:
    """Store ``value`` as a tuple on a frozen dataclass instance."""
    object.__setattr__(obj, name, tuple(value or ()))


# ---------- Value types ----------


VALUE_TYPES = ("boolean", "string", "number", "json")


def infer_value_type(value: JsonValue) -> str:
    """Infer the variant value type of a JSON value.

    ``bool`` is checked before numbers because it is a subclass of ``int``.
    """
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (int, float)):
        return "number"
    return "json"


# ---------- Evaluation context ----------


@dataclass(frozen=True)
class UserAttributes:
    """Attributes of the user being evaluated."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    organization_id: Optional[str] = None
    groups: Tuple[str, ...] = ()
    roles: Tuple[str, ...] = ()
    permissions: Tuple[str, ...] = ()
    plan: Optional[str] = None
    created_at: Optional[datetime] = None
    is_internal: Optional[bool] = None
    is_beta: Optional[bool] = None
    custom: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _freeze(self, "groups", self.groups)
        _freeze(self, "roles", self.roles)
        _freeze(self, "permissions", self.permissions)


@dataclass(frozen=True)
class DeviceContext:
    type: str = "unknown"
    os: Optional[str] = None
    os_version: Optional[str] = None
    browser: Optional[str] = None
    browser_version: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    screen_width: Optional[int] = None
    screen_height: Optional[int] = None
    pixel_ratio: Optional[float] = None
    is_touch_device: Optional[bool] = None


@dataclass(frozen=True)
class ApplicationContext:
    name: str
    version: str
    environment: str = "production"
    build: Optional[str] = None
    platform: Optional[str] = None
    locale: Optional[str] = None
    timezone: Optional[str] = None


@dataclass(frozen=True)
class NetworkContext:
    connection_type: Optional[str] = None
    effective_type: Optional[str] = None
    downlink_speed: Optional[float] = None
    rtt: Optional[float] = None
    is_metered: Optional[bool] = None
    country_code: Optional[str] = None
    region_code: Optional[str] = None
    city: Optional[str] = None
    ip_hash: Optional[str] = None


@dataclass(frozen=True)
class SessionContext:
    session_id: str
    started_at: Optional[datetime] = None
    page_views: Optional[int] = None
    duration: Optional[float] = None
    referrer: Optional[str] = None
    utm: Dict[str, str] = field(default_factory=dict)
    is_first_session: Optional[bool] = None
    entry_page: Optional[str] = None


@dataclass(frozen=True)
class EvaluationContext:
    """Immutable snapshot of everything known about one evaluation.

    Targeting attribute paths use dot notation over this structure, for
    example ``user.plan`` or ``user.custom.department``.
    """

    user: Optional[UserAttributes] = None
    device: Optional[DeviceContext] = None
    application: Optional[ApplicationContext] = None
    network: Optional[NetworkContext] = None
    session: Optional[SessionContext] = None
    timestamp: Optional[datetime] = None
    custom: Dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user is not None else None

    @property
    def session_id(self) -> Optional[str]:
        return self.session.session_id if self.session is not None else None

    def merge(self, overrides: Optional[EvaluationContext]) -> EvaluationContext:
        """Return a new context where the non-empty fields of ``overrides`` win.

        The merge is shallow: an overriding ``user`` replaces the whole user
        record. ``custom`` is replaced only when the override provides one.
        """
        if overrides is None:
            return self
        return EvaluationContext(
            user=overrides.user if overrides.user is not None else self.user,
            device=(
                overrides.device if overrides.device is not None else self.device
            ),
            application=(
                overrides.application
                if overrides.application is not None
                else self.application
            ),
            network=(
                overrides.network
                if overrides.network is not None
                else self.network
            ),
            session=(
                overrides.session
                if overrides.session is not None
                else self.session
            ),
            timestamp=(
                overrides.timestamp
                if overrides.timestamp is not None
                else self.timestamp
            ),
            custom=overrides.custom if overrides.custom else self.custom,
        )


# ---------- Targeting ----------


COMPARISON_OPERATORS = frozenset(
    {
        "equals",
        "notEquals",
        "contains",
        "notContains",
        "startsWith",
        "endsWith",
        "matches",
        "in",
        "notIn",
        "greaterThan",
        "greaterThanOrEquals",
        "lessThan",
        "lessThanOrEquals",
        "before",
        "after",
        "exists",
        "notExists",
        "semverGreaterThan",
        "semverLessThan",
        "semverEquals",
    }
)

LOGICAL_OPERATORS = ("and", "or")


@dataclass(frozen=True)
class TargetingCondition:
    """A single ``attribute <operator> value`` test."""

    attribute: str
    operator: str
    value: Any = None
    case_sensitive: bool = True
    negate: bool = False


@dataclass(frozen=True)
class ConditionGroup:
    """Conditions (or nested groups) combined with ``and`` / ``or``."""

    operator: str = "and"
    conditions: Tuple[Union[TargetingCondition, ConditionGroup], ...] = ()

    def __post_init__(self) -> None:
        if self.operator not in LOGICAL_OPERATORS:
            raise FlagConfigurationError(
                f"Unknown logical operator '{self.operator}'"
            )
        _freeze(self, "conditions", self.conditions)


@dataclass(frozen=True)
class RuleSchedule:
    """Time window in which a targeting rule is active.

    ``days_of_week`` uses 0 = Sunday; ``hours_of_day`` uses 0..23. Both are
    interpreted in ``timezone`` (an IANA name, UTC by default).
    """

    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    days_of_week: Tuple[int, ...] = ()
    hours_of_day: Tuple[int, ...] = ()
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        _freeze(self, "days_of_week", self.days_of_week)
        _freeze(self, "hours_of_day", self.hours_of_day)


@dataclass(frozen=True)
class TargetingRule:
    id: str
    variant_id: str
    conditions: ConditionGroup = field(default_factory=ConditionGroup)
    priority: int = 0
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True
    schedule: Optional[RuleSchedule] = None

    def __post_init__(self) -> None:
        if not self.id:
            raise FlagConfigurationError("Rule ID is required")
        if not self.variant_id:
            raise FlagConfigurationError(
                f"Rule '{self.id}' requires a variant ID"
            )
        if self.name is None:
            object.__setattr__(self, "name", self.id)


# ---------- Segments ----------


@dataclass(frozen=True)
class Segment:
    """A reusable audience: rules plus explicit include/exclude lists.

    Without rules a segment matches only its ``included_users``.
    """

    id: str
    name: str
    rules: ConditionGroup = field(
        default_factory=lambda: ConditionGroup(operator="or")
    )
    included_users: Tuple[str, ...] = ()
    excluded_users: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    description: Optional[str] = None
    estimated_size: Optional[int] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.id:
            raise FlagConfigurationError("Segment ID is required")
        if not self.name:
            raise FlagConfigurationError(
                f"Segment '{self.id}' requires a name"
            )
        _freeze(self, "included_users", self.included_users)
        _freeze(self, "excluded_users", self.excluded_users)
        _freeze(self, "tags", self.tags)


# ---------- Rollouts ----------


@dataclass(frozen=True)
class MetricThreshold:
    name: str
    operator: str
    value: float


@dataclass(frozen=True)
class RolloutCriteria:
    min_sample_size: Optional[int] = None
    max_error_rate: Optional[float] = None
    min_success_rate: Optional[float] = None
    metrics: Tuple[MetricThreshold, ...] = ()

    def __post_init__(self) -> None:
        _freeze(self, "metrics", self.metrics)


def _check_percentage(value: float, what: str) -> None:
    if isinstance(value, bool) or not 0 <= value <= 100:
        raise FlagConfigurationError(
            f"{what} must be between 0 and 100, got {value!r}"
        )


@dataclass(frozen=True)
class PercentageRollout:
    percentage: float
    hash_key: Optional[str] = None
    hash_attribute: Optional[str] = None
    salt: Optional[str] = None
    sticky: bool = False
    strategy: str = field(default="percentage", init=False)

    def __post_init__(self) -> None:
        _check_percentage(self.percentage, "Rollout percentage")


@dataclass(frozen=True)
class RolloutStage:
    name: str
    percentage: float
    start_time: datetime
    min_duration: Optional[float] = None
    criteria: Optional[RolloutCriteria] = None

    def __post_init__(self) -> None:
        _check_percentage(self.percentage, f"Stage '{self.name}' percentage")


@dataclass(frozen=True)
class ScheduledRollout:
    stages: Tuple[RolloutStage, ...]
    current_stage: int = 0
    auto_advance: bool = False
    strategy: str = field(default="scheduled", init=False)

    def __post_init__(self) -> None:
        _freeze(self, "stages", self.stages)


@dataclass(frozen=True)
class DeploymentRing:
    id: str
    name: str
    segments: Tuple[str, ...] = ()
    priority: int = 0

    def __post_init__(self) -> None:
        _freeze(self, "segments", self.segments)


@dataclass(frozen=True)
class RingRollout:
    rings: Tuple[DeploymentRing, ...]
    current_ring: str
    strategy: str = field(default="ring", init=False)

    def __post_init__(self) -> None:
        _freeze(self, "rings", self.rings)


@dataclass(frozen=True)
class CanaryRollout:
    canary_percentage: float
    canary_segment: Optional[str] = None
    criteria: RolloutCriteria = field(default_factory=RolloutCriteria)
    auto_rollback: bool = True
    strategy: str = field(default="canary", init=False)

    def __post_init__(self) -> None:
        _check_percentage(self.canary_percentage, "Canary percentage")


@dataclass(frozen=True)
class VariantAllocation:
    variant_id: str
    percentage: float


@dataclass(frozen=True)
class ExperimentRollout:
    experiment_id: str
    allocation: Tuple[VariantAllocation, ...]
    end_date: Optional[datetime] = None
    primary_metric: str = "conversion"
    strategy: str = field(default="experiment", init=False)

    def __post_init__(self) -> None:
        _freeze(self, "allocation", self.allocation)
        total = sum(a.percentage for a in self.allocation)
        if total > 100.0001:
            raise FlagConfigurationError(
                f"Experiment '{self.experiment_id}' allocates {total}% "
                "of traffic (max 100%)"
            )


RolloutConfig = Union[
    PercentageRollout,
    ScheduledRollout,
    RingRollout,
    CanaryRollout,
    ExperimentRollout,
]


# ---------- Variants ----------


@dataclass(frozen=True)
class Variant:
    """One possible output value of a flag."""

    id: str
    value: Any
    name: Optional[str] = None
    description: Optional[str] = None
    value_type: Optional[str] = None
    is_control: bool = False
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise FlagConfigurationError("Variant ID is required")
        if self.name is None:
            object.__setattr__(self, "name", self.id)
        if self.value_type is None:
            object.__setattr__(self, "value_type", infer_value_type(self.value))
        elif self.value_type not in VALUE_TYPES:
            raise FlagConfigurationError(
                f"Variant '{self.id}' has unknown value type "
                f"'{self.value_type}'"
            )


# ---------- Dependencies ----------


DEPENDENCY_TYPES = ("requires", "conflicts", "implies", "supersedes")


@dataclass(frozen=True)
class FlagDependency:
    source_flag: str
    target_flag: str
    type: str
    required_variant: Optional[str] = None
    description: Optional[str] = None

    def __post_init__(self) -> None:
        if self.type not in DEPENDENCY_TYPES:
            raise FlagConfigurationError(
                f"Unknown dependency type '{self.type}'"
            )


# ---------- Lifecycle ----------


class LifecycleState(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class FlagLifecycle:
    state: LifecycleState
    created_at: datetime
    created_by: str
    updated_at: datetime
    updated_by: str
    activated_at: Optional[datetime] = None
    review_date: Optional[datetime] = None
    deprecation_date: Optional[datetime] = None
    removal_date: Optional[datetime] = None
    owner: Optional[str] = None
    ticket_id: Optional[str] = None
    documentation_url: Optional[str] = None

    def __post_init__(self) -> None:
        # Accept plain strings from JSON payloads.
        object.__setattr__(self, "state", LifecycleState(self.state))


# ---------- Flags ----------


@dataclass(frozen=True)
class FeatureFlag:
    """A feature flag definition.

    Construction validates the definition: a flag needs at least one
    variant, and every variant id referenced by ``default_variant``,
    ``off_variant``, a targeting rule or an experiment allocation must be
    one of its variants.

    Raises:
        FlagConfigurationError: If the definition is inconsistent.
    """

    id: str
    key: str
    variants: Tuple[Variant, ...]
    default_variant: str
    off_variant: str
    lifecycle: FlagLifecycle
    enabled: bool = True
    name: Optional[str] = None
    description: Optional[str] = None
    tags: Tuple[str, ...] = ()
    targeting_rules: Tuple[TargetingRule, ...] = ()
    rollout: Optional[RolloutConfig] = None
    segments: Tuple[str, ...] = ()
    dependencies: Tuple[FlagDependency, ...] = ()

    def __post_init__(self) -> None:
        for name in ("variants", "tags", "targeting_rules", "segments",
                     "dependencies"):
            _freeze(self, name, getattr(self, name))
        if self.name is None:
            object.__setattr__(self, "name", self.key)
        self._validate()

    def _validate(self) -> None:
        if not self.id or not self.key:
            raise FlagConfigurationError("Flag ID and key are required")
        if not self.variants:
            raise FlagConfigurationError(f"Flag '{self.key}' has no variants")

        ids = [v.id for v in self.variants]
        if len(set(ids)) != len(ids):
            raise FlagConfigurationError(
                f"Flag '{self.key}' has duplicate variant ids"
            )

        def check(variant_id: Optional[str], where: str) -> None:
            if variant_id not in ids:
                raise FlagConfigurationError(
                    f"Flag '{self.key}': {where} references unknown "
                    f"variant '{variant_id}'"
                )

        check(self.default_variant, "default_variant")
        check(self.off_variant, "off_variant")
        for rule in self.targeting_rules:
            check(rule.variant_id, f"rule '{rule.id}'")
        if isinstance(self.rollout, ExperimentRollout):
            for allocation in self.rollout.allocation:
                check(allocation.variant_id, "experiment allocation")
        for dep in self.dependencies:
            if dep.source_flag != self.id:
                raise FlagConfigurationError(
                    f"Flag '{self.key}': dependency source "
                    f"'{dep.source_flag}' must be the flag's own id"
                )

    def get_variant(self, variant_id: Optional[str]) -> Optional[Variant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


# ---------- Evaluation results ----------


class EvaluationReason(str, Enum):
    OFF = "OFF"
    TARGET_MATCH = "TARGET_MATCH"
    RULE_MATCH = "RULE_MATCH"
    SEGMENT_MATCH = "SEGMENT_MATCH"
    ROLLOUT = "ROLLOUT"
    PREREQUISITE_FAILED = "PREREQUISITE_FAILED"
    DEPENDENCY_FAILED = "DEPENDENCY_FAILED"
    DEFAULT = "DEFAULT"
    ERROR = "ERROR"
    STALE = "STALE"


@dataclass(frozen=True)
class EvaluationErrorInfo:
    code: str
    message: str
    is_transient: bool = False
    stack: Optional[str] = None


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of evaluating one flag for one context."""

    flag_key: str
    value: Any
    variant_id: str
    reason: EvaluationReason
    timestamp: datetime
    duration_ms: float = 0.0
    rule_id: Optional[str] = None
    segment_id: Optional[str] = None
    is_stale: bool = False
    error: Optional[EvaluationErrorInfo] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
