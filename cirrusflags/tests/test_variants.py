# CirrusFlags/cirrusflags/tests/test_variants.py
"""
Unit tests for variant typing, coercion, selection and experiment stats.
"""


import pytest

from cirrusflags.errors.exceptions import FlagConfigurationError
from cirrusflags.models import Variant, VariantAllocation
from cirrusflags.services.variant_service import (
    VariantManager,
    VariantSets,
    calculate_variant_stats,
    compare_variants,
)


@pytest.fixture
def manager():
    return VariantManager()


# ---------- Typing ----------


def test_value_type_is_inferred():
    assert Variant("a", True).value_type == "boolean"
    assert Variant("a", 3.5).value_type == "number"
    assert Variant("a", "x").value_type == "string"
    assert Variant("a", {"k": 1}).value_type == "json"


def test_unknown_value_type_is_rejected():
    with pytest.raises(FlagConfigurationError):
        Variant("a", 1, value_type="integer")


def test_validate_variant(manager):
    assert manager.validate_variant(Variant("a", 1, value_type="number"))
    assert not manager.validate_variant(Variant("a", True, value_type="number"))
    assert not manager.validate_variant(Variant("a", "1", value_type="boolean"))


# ---------- Coercion ----------


@pytest.mark.parametrize(
    "value,target,expected",
    [
        ("TRUE", "boolean", True),
        ("nope", "boolean", None),
        (0, "boolean", False),
        (False, "string", "false"),
        ({"a": 1}, "string", '{"a": 1}'),
        ("42", "number", 42),
        ("4.5", "number", 4.5),
        ("abc", "number", None),
        (True, "number", None),
        ('{"a": 1}', "json", {"a": 1}),
        ("{", "json", None),
    ],
)
def test_coerce_value(manager, value, target, expected):
    assert manager.coerce_value(value, target) == expected


# ---------- Selection ----------


def test_select_variant_equal_slices(manager):
    variants = VariantSets.abc_test("a", "b", "c")
    assert manager.select_variant(variants, 10).id == "control"
    assert manager.select_variant(variants, 50).id == "treatment-a"
    assert manager.select_variant(variants, 99.99).id == "treatment-b"
    assert manager.select_variant([], 10) is None


def test_select_variant_with_allocations(manager):
    variants = VariantSets.ab_test("old", "new")
    allocations = [VariantAllocation("control", 90), VariantAllocation("treatment", 10)]
    assert manager.select_variant(variants, 89.99, allocations).id == "control"
    assert manager.select_variant(variants, 95, allocations).id == "treatment"


def test_allocations(manager):
    variants = VariantSets.abc_test("a", "b", "c")
    equal = manager.create_equal_allocations(variants)
    assert sum(a.percentage for a in equal) == pytest.approx(100)

    heavy = manager.create_control_heavy_allocations(variants, 80)
    assert heavy[0] == VariantAllocation("control", 80)
    assert [a.percentage for a in heavy[1:]] == [10, 10]


def test_variant_sets():
    boolean = VariantSets.boolean()
    assert [(v.id, v.value, v.is_control) for v in boolean] == [
        ("off", False, True),
        ("on", True, False),
    ]
    mapped = VariantSets.from_map({"blue": "#00f", "red": "#f00"}, control_id="blue")
    assert mapped[0].is_control and not mapped[1].is_control


# ---------- Statistics ----------


def test_calculate_variant_stats():
    stats = calculate_variant_stats("control", [1.0, 0.0, 1.0, 0.0], conversions=2)
    assert stats.conversion_rate == 0.5
    assert stats.average_value == 0.5
    assert stats.standard_deviation == 0.5
    low, high = stats.confidence_interval
    assert low < 0.5 < high

    assert calculate_variant_stats("empty", [], 0).user_count == 0


def test_compare_variants_detects_significant_lift():
    control = calculate_variant_stats("control", [0.0] * 1000, conversions=100)
    treatment = calculate_variant_stats("treatment", [0.0] * 1000, conversions=150)
    comparison = compare_variants(control, treatment)
    assert comparison.relative_lift == pytest.approx(0.5)
    assert comparison.p_value < 0.05
    assert comparison.is_significant is True


def test_compare_variants_without_users():
    empty = calculate_variant_stats("x", [], 0)
    comparison = compare_variants(empty, empty)
    assert comparison.p_value == 1.0
    assert comparison.is_significant is False
