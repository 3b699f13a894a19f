# CirrusFlags/cirrusflags/services/rollout_service.py
"""Rollout strategies for CirrusFlags.

The engine dispatches on ``rollout.strategy``:

- ``percentage``: hash-based inclusion, optionally sticky per user,
- ``scheduled``: percentage of the latest stage that has started,
- ``ring``: inclusion through segment membership of the active rings,
- ``canary``: hash-based inclusion against the canary percentage,
- ``experiment``: cumulative allocation walk across variants.

Every strategy buckets on ``"<flag_key>:<hash_key>"`` so that the same user
gets the same bucket for the same flag and salt.
"""


from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from cirrusflags.models import (
    CanaryRollout,
    EvaluationContext,
    ExperimentRollout,
    PercentageRollout,
    RingRollout,
    RolloutConfig,
    RolloutStage,
    ScheduledRollout,
    Variant,
)
from cirrusflags.services.condition_service import (
    MISSING,
    parse_date,
    resolve_attribute_path,
)
from cirrusflags.services.hashing import HashFunction, default_hash


logger = logging.getLogger(__name__)

# (segment_id, context) -> is the context a member of the segment?
SegmentResolver = Callable[[str, EvaluationContext], bool]


@dataclass(frozen=True)
class ExperimentAssignment:
    experiment_id: str
    allocation_percentage: float


@dataclass(frozen=True)
class RolloutResult:
    included: bool
    variant_id: Optional[str] = None
    bucket: Optional[float] = None
    percentage: Optional[float] = None
    stage: Optional[str] = None
    ring: Optional[str] = None
    is_canary: bool = False
    experiment: Optional[ExperimentAssignment] = None


def _now(context: EvaluationContext) -> datetime:
    return parse_date(context.timestamp) or datetime.now(timezone.utc)


def default_hash_key(context: EvaluationContext) -> Optional[str]:
    """The user id, else the session id, else ``None``."""
    return context.user_id or context.session_id or None


def _first_treatment(variants: Sequence[Variant]) -> Optional[str]:
    for variant in variants:
        if not variant.is_control:
            return variant.id
    return variants[0].id if variants else None


class PercentageRolloutEngine:
    """Evaluate rollout configurations and hold sticky buckets.

    Args:
        hash_function: ``(key, salt) -> float in [0, 100)``; defaults to
            the MurmurHash3-based ``default_hash``.
    """

    def __init__(self, hash_function: Optional[HashFunction] = None) -> None:
        self.hash_function: HashFunction = hash_function or default_hash
        self._sticky: Dict[Tuple[str, str], float] = {}
        self._lock = threading.Lock()

    def evaluate(
        self,
        rollout: RolloutConfig,
        context: EvaluationContext,
        flag_key: str,
        variants: Sequence[Variant],
        segment_resolver: Optional[SegmentResolver] = None,
    ) -> RolloutResult:
        if isinstance(rollout, PercentageRollout):
            return self._evaluate_percentage(rollout, context, flag_key, variants)
        if isinstance(rollout, ScheduledRollout):
            return self._evaluate_scheduled(rollout, context, flag_key, variants)
        if isinstance(rollout, RingRollout):
            return self._evaluate_ring(
                rollout, context, flag_key, variants, segment_resolver
            )
        if isinstance(rollout, CanaryRollout):
            return self._evaluate_canary(
                rollout, context, flag_key, variants, segment_resolver
            )
        if isinstance(rollout, ExperimentRollout):
            return self._evaluate_experiment(rollout, context, flag_key)
        return RolloutResult(included=False)

    # ---------- Buckets ----------

    def get_bucket(
        self, flag_key: str, hash_key: str, salt: Optional[str] = None
    ) -> float:
        return self.hash_function(f"{flag_key}:{hash_key}", salt or "default")

    def set_sticky_bucket(self, flag_key: str, hash_key: str, bucket: float) -> None:
        with self._lock:
            self._sticky[(flag_key, hash_key)] = bucket

    def clear_sticky_buckets(self, flag_key: Optional[str] = None) -> None:
        """Forget sticky buckets for one flag, or for every flag."""
        with self._lock:
            if flag_key is None:
                self._sticky.clear()
            else:
                for key in [k for k in self._sticky if k[0] == flag_key]:
                    del self._sticky[key]

    def sticky_bucket_count(self) -> int:
        with self._lock:
            return len(self._sticky)

    # ---------- Strategies ----------

    def _evaluate_percentage(
        self,
        rollout: PercentageRollout,
        context: EvaluationContext,
        flag_key: str,
        variants: Sequence[Variant],
    ) -> RolloutResult:
        hash_key: Optional[str] = rollout.hash_key or None
        if hash_key is None and rollout.hash_attribute:
            value = resolve_attribute_path(rollout.hash_attribute, context)
            if value is not MISSING and value != "":
                hash_key = str(value)
        if hash_key is None:
            hash_key = default_hash_key(context)
        if hash_key is None:
            return RolloutResult(included=False, percentage=rollout.percentage)

        if rollout.sticky:
            with self._lock:
                bucket = self._sticky.get((flag_key, hash_key))
            if bucket is None:
                bucket = self.get_bucket(flag_key, hash_key, rollout.salt)
                with self._lock:
                    bucket = self._sticky.setdefault((flag_key, hash_key), bucket)
        else:
            bucket = self.get_bucket(flag_key, hash_key, rollout.salt)

        included = bucket < rollout.percentage
        return RolloutResult(
            included=included,
            variant_id=_first_treatment(variants) if included else None,
            bucket=bucket,
            percentage=rollout.percentage,
        )

    def _evaluate_scheduled(
        self,
        rollout: ScheduledRollout,
        context: EvaluationContext,
        flag_key: str,
        variants: Sequence[Variant],
    ) -> RolloutResult:
        stage = current_stage(rollout.stages, _now(context))
        if stage is None:
            return RolloutResult(included=False)

        hash_key = default_hash_key(context)
        if hash_key is None:
            return RolloutResult(included=False, stage=stage.name)

        bucket = self.hash_function(f"{flag_key}:{hash_key}", "scheduled")
        included = bucket < stage.percentage
        return RolloutResult(
            included=included,
            variant_id=_first_treatment(variants) if included else None,
            bucket=bucket,
            percentage=stage.percentage,
            stage=stage.name,
        )

    def _evaluate_ring(
        self,
        rollout: RingRollout,
        context: EvaluationContext,
        flag_key: str,
        variants: Sequence[Variant],
        segment_resolver: Optional[SegmentResolver],
    ) -> RolloutResult:
        current = next(
            (r for r in rollout.rings if r.id == rollout.current_ring), None
        )
        hash_key = default_hash_key(context)
        if current is None or segment_resolver is None or hash_key is None:
            return RolloutResult(included=False, ring=rollout.current_ring)

        reached = sorted(
            (r for r in rollout.rings if r.priority <= current.priority),
            key=lambda r: r.priority,
        )
        for ring in reached:
            if any(segment_resolver(sid, context) for sid in ring.segments):
                bucket = self.hash_function(f"{flag_key}:{hash_key}", "ring")
                return RolloutResult(
                    included=True,
                    variant_id=_first_treatment(variants),
                    bucket=bucket,
                    ring=ring.name,
                )
        return RolloutResult(included=False, ring=rollout.current_ring)

    def _evaluate_canary(
        self,
        rollout: CanaryRollout,
        context: EvaluationContext,
        flag_key: str,
        variants: Sequence[Variant],
        segment_resolver: Optional[SegmentResolver],
    ) -> RolloutResult:
        hash_key = default_hash_key(context)
        if hash_key is None:
            return RolloutResult(
                included=False, percentage=rollout.canary_percentage
            )

        if rollout.canary_segment:
            member = segment_resolver is not None and segment_resolver(
                rollout.canary_segment, context
            )
            if not member:
                return RolloutResult(
                    included=False, percentage=rollout.canary_percentage
                )

        bucket = self.hash_function(f"{flag_key}:{hash_key}", "canary")
        is_canary = bucket < rollout.canary_percentage
        return RolloutResult(
            included=is_canary,
            variant_id=_first_treatment(variants) if is_canary else None,
            bucket=bucket,
            percentage=rollout.canary_percentage,
            is_canary=is_canary,
        )

    def _evaluate_experiment(
        self,
        rollout: ExperimentRollout,
        context: EvaluationContext,
        flag_key: str,
    ) -> RolloutResult:
        end = parse_date(rollout.end_date) if rollout.end_date else None
        if end is not None and _now(context) > end:
            return RolloutResult(included=False)

        hash_key = default_hash_key(context)
        if hash_key is None:
            return RolloutResult(included=False)

        bucket = self.hash_function(f"{flag_key}:{hash_key}", rollout.experiment_id)
        cumulative = 0.0
        for allocation in rollout.allocation:
            cumulative += allocation.percentage
            if bucket < cumulative:
                return RolloutResult(
                    included=True,
                    variant_id=allocation.variant_id,
                    bucket=bucket,
                    percentage=allocation.percentage,
                    experiment=ExperimentAssignment(
                        rollout.experiment_id, allocation.percentage
                    ),
                )
        return RolloutResult(
            included=False,
            bucket=bucket,
            experiment=ExperimentAssignment(rollout.experiment_id, 0.0),
        )


def current_stage(
    stages: Sequence[RolloutStage], now: datetime
) -> Optional[RolloutStage]:
    """Return the latest stage whose start time is not after ``now``."""
    active: Optional[RolloutStage] = None
    for stage in sorted(stages, key=lambda s: parse_date(s.start_time)):
        if parse_date(stage.start_time) <= now:
            active = stage
        else:
            break
    return active


# ---------- Planning helpers ----------


def calculate_rollout_impact(
    current_percentage: float, new_percentage: float
) -> Dict[str, float]:
    """Share of traffic added, removed and unchanged by a percentage change.

    Hash buckets are stable, so raising a percentage only adds users and
    lowering it only removes them.
    """
    if new_percentage > current_percentage:
        return {
            "added": new_percentage - current_percentage,
            "removed": 0.0,
            "unchanged": current_percentage,
        }
    return {
        "added": 0.0,
        "removed": current_percentage - new_percentage,
        "unchanged": new_percentage,
    }


_SCHEDULE_STEPS = (1, 5, 10, 25, 50, 75)


def generate_rollout_schedule(
    start_date: datetime,
    target_percentage: float = 100,
    duration_days: float = 7,
) -> List[RolloutStage]:
    """Build an evenly spaced ramp ending at ``target_percentage``.

    Example:
        ``generate_rollout_schedule(start)`` yields stages named ``1%``,
        ``5%``, ``10%``, ``25%``, ``50%``, ``75%`` and ``100%``, one day
        apart.
    """
    steps = [p for p in _SCHEDULE_STEPS if p < target_percentage]
    steps.append(target_percentage)
    interval = timedelta(days=duration_days / len(steps))

    stages: List[RolloutStage] = []
    current = start_date
    for percentage in steps:
        stages.append(
            RolloutStage(
                name=f"{percentage:g}%",
                percentage=percentage,
                start_time=current,
                min_duration=interval.total_seconds(),
            )
        )
        current = current + interval
    return stages
