# CirrusFlags/cirrusflags/services/variant_service.py
"""Variant helpers: typing, coercion, selection and experiment statistics."""


from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from cirrusflags.models import (
    VariantAllocation,
    Variant,
    infer_value_type,
)


@dataclass(frozen=True)
class VariantStats:
    variant_id: str
    user_count: int
    conversions: int
    conversion_rate: float
    average_value: Optional[float] = None
    standard_deviation: Optional[float] = None
    confidence_interval: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class VariantComparison:
    control: VariantStats
    treatment: VariantStats
    relative_lift: float
    p_value: float
    is_significant: bool
    confidence_level: float


class VariantManager:
    """Stateless operations over variants."""

    # ---------- Creation ----------

    def create_variant(
        self,
        variant_id: str,
        value: Any,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_control: bool = False,
        payload: Optional[Dict[str, Any]] = None,
        value_type: Optional[str] = None,
    ) -> Variant:
        return Variant(
            id=variant_id,
            value=value,
            name=name,
            description=description,
            value_type=value_type or infer_value_type(value),
            is_control=is_control,
            payload=dict(payload or {}),
        )

    def create_boolean_variant(self, variant_id: str, value: bool, **options: Any) -> Variant:
        return self.create_variant(variant_id, value, value_type="boolean", **options)

    def create_string_variant(self, variant_id: str, value: str, **options: Any) -> Variant:
        return self.create_variant(variant_id, value, value_type="string", **options)

    def create_number_variant(self, variant_id: str, value: float, **options: Any) -> Variant:
        return self.create_variant(variant_id, value, value_type="number", **options)

    def create_json_variant(self, variant_id: str, value: Any, **options: Any) -> Variant:
        return self.create_variant(variant_id, value, value_type="json", **options)

    # ---------- Typing ----------

    def infer_value_type(self, value: Any) -> str:
        return infer_value_type(value)

    def validate_variant(self, variant: Variant) -> bool:
        """Check that a variant's value matches its declared type."""
        if variant.value_type == "boolean":
            return isinstance(variant.value, bool)
        if variant.value_type == "string":
            return isinstance(variant.value, str)
        if variant.value_type == "number":
            return isinstance(variant.value, (int, float)) and not isinstance(
                variant.value, bool
            )
        if variant.value_type == "json":
            return True
        return False

    def coerce_value(self, value: Any, target_type: str) -> Any:
        """Best-effort conversion of ``value`` to ``target_type``.

        Returns ``None`` when the value cannot be coerced; callers must not
        treat that ``None`` as a flag value.
        """
        if target_type == "boolean":
            if isinstance(value, bool):
                return value
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered == "true":
                    return True
                if lowered == "false":
                    return False
                return None
            if isinstance(value, (int, float)):
                return value != 0
            return None

        if target_type == "string":
            if isinstance(value, str):
                return value
            if value is None:
                return None
            if isinstance(value, bool):
                return "true" if value else "false"
            if isinstance(value, (int, float)):
                return str(value)
            try:
                return json.dumps(value)
            except (TypeError, ValueError):
                return None

        if target_type == "number":
            if isinstance(value, bool):
                return None
            if isinstance(value, (int, float)):
                return value
            if isinstance(value, str):
                try:
                    parsed = float(value)
                except ValueError:
                    return None
                if math.isnan(parsed):
                    return None
                return int(parsed) if parsed.is_integer() and "." not in value else parsed
            return None

        if target_type == "json":
            if isinstance(value, str):
                try:
                    return json.loads(value)
                except ValueError:
                    return None
            return value

        return None

    # ---------- Selection ----------

    def select_variant(
        self,
        variants: Sequence[Variant],
        bucket: float,
        allocations: Optional[Sequence[VariantAllocation]] = None,
    ) -> Optional[Variant]:
        """Pick a variant for ``bucket`` (0 <= bucket < 100).

        With allocations, walk their cumulative percentages; otherwise split
        ``[0, 100)`` into equal slices, one per variant.
        """
        if not variants:
            return None

        if allocations:
            by_id = {v.id: v for v in variants}
            cumulative = 0.0
            for allocation in allocations:
                cumulative += allocation.percentage
                if bucket < cumulative and allocation.variant_id in by_id:
                    return by_id[allocation.variant_id]

        index = math.floor(bucket / 100 * len(variants))
        return variants[min(max(index, 0), len(variants) - 1)]

    def get_control_variant(self, variants: Sequence[Variant]) -> Optional[Variant]:
        return next((v for v in variants if v.is_control), None)

    def get_treatment_variants(self, variants: Sequence[Variant]) -> List[Variant]:
        return [v for v in variants if not v.is_control]

    # ---------- Allocations ----------

    def create_equal_allocations(
        self, variants: Sequence[Variant]
    ) -> List[VariantAllocation]:
        if not variants:
            return []
        share = 100 / len(variants)
        return [VariantAllocation(v.id, share) for v in variants]

    def create_control_heavy_allocations(
        self, variants: Sequence[Variant], control_percentage: float = 50
    ) -> List[VariantAllocation]:
        control = self.get_control_variant(variants)
        treatments = self.get_treatment_variants(variants)
        if control is None or not treatments:
            return self.create_equal_allocations(variants)

        share = (100 - control_percentage) / len(treatments)
        return [VariantAllocation(control.id, control_percentage)] + [
            VariantAllocation(v.id, share) for v in treatments
        ]


_manager = VariantManager()


class VariantSets:
    """Ready-made variant lists for common flag shapes."""

    @staticmethod
    def boolean() -> List[Variant]:
        return [
            _manager.create_boolean_variant("off", False, name="Off", is_control=True),
            _manager.create_boolean_variant("on", True, name="On"),
        ]

    @staticmethod
    def ab_test(control_value: Any, treatment_value: Any) -> List[Variant]:
        return [
            _manager.create_variant(
                "control", control_value, name="Control", is_control=True
            ),
            _manager.create_variant("treatment", treatment_value, name="Treatment"),
        ]

    @staticmethod
    def abc_test(
        control_value: Any, treatment_a_value: Any, treatment_b_value: Any
    ) -> List[Variant]:
        return [
            _manager.create_variant(
                "control", control_value, name="Control", is_control=True
            ),
            _manager.create_variant(
                "treatment-a", treatment_a_value, name="Treatment A"
            ),
            _manager.create_variant(
                "treatment-b", treatment_b_value, name="Treatment B"
            ),
        ]

    @staticmethod
    def from_map(
        values: Mapping[str, Any], control_id: Optional[str] = None
    ) -> List[Variant]:
        return [
            _manager.create_variant(vid, value, is_control=vid == control_id)
            for vid, value in values.items()
        ]


# ---------- Experiment statistics ----------


def calculate_variant_stats(
    variant_id: str, values: Sequence[float], conversions: int
) -> VariantStats:
    """Mean, population standard deviation and a 95% interval of the mean."""
    n = len(values)
    if n == 0:
        return VariantStats(variant_id, 0, 0, 0.0)

    mean = sum(values) / n
    variance = sum((v - mean) ** 2 for v in values) / n
    std_dev = math.sqrt(variance)
    margin = 1.96 * (std_dev / math.sqrt(n))
    return VariantStats(
        variant_id=variant_id,
        user_count=n,
        conversions=conversions,
        conversion_rate=conversions / n,
        average_value=mean,
        standard_deviation=std_dev,
        confidence_interval=(mean - margin, mean + margin),
    )


def _normal_cdf(x: float) -> float:
    return 0.5 * (1 + math.erf(x / math.sqrt(2)))


def compare_variants(
    control: VariantStats,
    treatment: VariantStats,
    confidence_level: float = 0.95,
) -> VariantComparison:
    """Two-proportion z-test of treatment against control conversion."""
    relative_lift = (
        (treatment.conversion_rate - control.conversion_rate)
        / control.conversion_rate
        if control.conversion_rate > 0
        else 0.0
    )

    n1, n2 = control.user_count, treatment.user_count
    if n1 == 0 or n2 == 0:
        return VariantComparison(
            control, treatment, relative_lift, 1.0, False, confidence_level
        )

    pooled = (control.conversions + treatment.conversions) / (n1 + n2)
    se = math.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))
    z = (treatment.conversion_rate - control.conversion_rate) / se if se > 0 else 0.0
    p_value = 2 * (1 - _normal_cdf(abs(z)))

    return VariantComparison(
        control=control,
        treatment=treatment,
        relative_lift=relative_lift,
        p_value=p_value,
        is_significant=p_value < 1 - confidence_level,
        confidence_level=confidence_level,
    )
