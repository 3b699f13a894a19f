# CirrusFlags/cirrusflags/tests/test_dependencies.py
"""
Unit tests for the dependency graph: cycles, resolution, validation and
DOT export.
"""


import pytest

from cirrusflags.errors.exceptions import FlagConfigurationError
from cirrusflags.models import FlagDependency
from cirrusflags.services.dependency_service import (
    DependencyResolver,
    TargetState,
    generate_dependency_dot,
    validate_dependencies,
)


def dep(source, target, type_="requires", **kwargs):
    return FlagDependency(source, target, type_, **kwargs)


def states(**flags):
    """Evaluator returning ``TargetState`` from keyword arguments."""

    def _evaluate(flag_id):
        value = flags.get(flag_id)
        if value is None:
            return TargetState(enabled=False)
        return TargetState(enabled=True, variant_id=value)

    return _evaluate


# ---------- Graph ----------


def test_unknown_dependency_type_is_rejected():
    with pytest.raises(FlagConfigurationError):
        dep("a", "b", "blocks")


def test_dependents_and_transitive_dependents():
    resolver = DependencyResolver([dep("b", "a"), dep("c", "b")])
    assert resolver.get_dependents("a") == ["b"]
    assert resolver.get_transitive_dependents("a") == {"b", "c"}
    assert resolver.has_dependencies("c")
    assert not resolver.has_dependencies("a")

    resolver.remove_dependency("c", "b")
    assert resolver.get_transitive_dependents("a") == {"b"}


def test_evaluation_order_puts_dependencies_first():
    resolver = DependencyResolver([dep("c", "b"), dep("b", "a")])
    assert resolver.get_evaluation_order("c") == ["a", "b", "c"]


def test_export_graph():
    graph = DependencyResolver([dep("b", "a")]).export_graph()
    assert {"source": "b", "target": "a", "type": "requires"} in graph["edges"]
    assert {n["id"] for n in graph["nodes"]} == {"a", "b"}


# ---------- Cycles ----------


def test_detects_cycle_and_closes_on_first_node():
    resolver = DependencyResolver([dep("a", "b"), dep("b", "a")])
    assert resolver.detect_circular_dependencies() == [["a", "b", "a"]]


def test_conflicts_edges_do_not_form_cycles():
    resolver = DependencyResolver(
        [dep("a", "b", "conflicts"), dep("b", "a", "conflicts")]
    )
    assert resolver.detect_circular_dependencies() == []


def test_flag_on_cycle_never_resolves():
    resolver = DependencyResolver([dep("a", "b"), dep("b", "a")])
    result = resolver.resolve_dependencies("a", states(a="on", b="on"))
    assert result.satisfied is False
    assert result.unsatisfied[0].reason == "Circular dependency detected: a -> b -> a"


def test_every_node_of_a_cyclic_component_is_reported():
    # c sits on a -> c -> b -> a, which the DFS never closes as a back edge
    resolver = DependencyResolver(
        [dep("a", "b"), dep("b", "a"), dep("a", "c"), dep("c", "b", "implies")]
    )
    cycles = resolver.detect_circular_dependencies()
    assert cycles == [["a", "b", "a"], ["c", "b", "a", "c"]]

    result = resolver.resolve_dependencies("c", states(a="on", b="on", c="on"))
    assert result.satisfied is False
    assert result.unsatisfied[0].reason == (
        "Circular dependency detected: c -> b -> a -> c"
    )


def test_flag_outside_cycle_still_resolves():
    resolver = DependencyResolver([dep("a", "b"), dep("b", "a"), dep("d", "a")])
    assert resolver.detect_circular_dependencies() == [["a", "b", "a"]]
    assert resolver.resolve_dependencies("d", states(a="on")).satisfied is True


def test_cache_of_cycles_resets_on_change():
    resolver = DependencyResolver([dep("a", "b")])
    assert resolver.detect_circular_dependencies() == []
    resolver.add_dependency(dep("b", "a"))
    assert resolver.detect_circular_dependencies() == [["a", "b", "a"]]


# ---------- Resolution ----------


def test_requires():
    resolver = DependencyResolver([dep("child", "parent")])
    assert resolver.resolve_dependencies("child", states(parent="on")).satisfied

    failed = resolver.resolve_dependencies("child", states())
    assert failed.satisfied is False
    assert failed.unsatisfied[0].reason == "Required flag 'parent' is not enabled"


def test_requires_variant():
    resolver = DependencyResolver([dep("child", "parent", required_variant="v2")])
    result = resolver.resolve_dependencies("child", states(parent="v1"))
    assert result.satisfied is False
    assert result.unsatisfied[0].actual_variant == "v1"
    assert resolver.resolve_dependencies("child", states(parent="v2")).satisfied


def test_conflicts():
    resolver = DependencyResolver([dep("new", "legacy", "conflicts")])
    result = resolver.resolve_dependencies("new", states(legacy="on"))
    assert result.satisfied is False
    assert result.conflicts == ["legacy"]
    assert resolver.resolve_dependencies("new", states()).satisfied


def test_implies_and_supersedes_are_informational():
    resolver = DependencyResolver(
        [dep("a", "b", "implies"), dep("a", "c", "supersedes")]
    )
    result = resolver.resolve_dependencies("a", states())
    assert result.satisfied is True
    assert result.implied == ["b"]


# ---------- Validation & DOT ----------


def test_validate_dependencies():
    report = validate_dependencies(
        [
            dep("a", "b"),
            dep("a", "b", "conflicts"),
            dep("c", "d"),
            dep("e", "d", "supersedes"),
        ]
    )
    assert report["valid"] is False
    assert "Flag a both requires and conflicts with b" in report["errors"]
    assert report["warnings"] == ["Flag 'c' requires superseded flag 'd'"]

    cyclic = validate_dependencies([dep("x", "y"), dep("y", "x")])
    assert cyclic["errors"] == ["Circular dependency detected: x -> y -> x"]


def test_generate_dependency_dot():
    dot = generate_dependency_dot([dep("b", "a", "conflicts")])
    assert dot.startswith("digraph FlagDependencies {")
    assert '"b" -> "a" [style=dashed color=red label="conflicts"];' in dot
    assert dot.endswith("}")
