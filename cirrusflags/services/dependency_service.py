# CirrusFlags/cirrusflags/services/dependency_service.py
"""Flag dependency graph and resolution.

Dependency types:
- ``requires``: the target must be enabled (and serve ``required_variant``
  when one is given).
- ``conflicts``: the target must not be enabled.
- ``implies``: informational; a disabled target is recorded in ``implied``.
- ``supersedes``: informational only.

Cycles are detected over ``requires``, ``implies`` and ``supersedes`` edges.
A flag that sits on a cycle never resolves as satisfied.
"""


from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from cirrusflags.models import FlagDependency


logger = logging.getLogger(__name__)

_CYCLE_EDGE_TYPES = frozenset({"requires", "implies", "supersedes"})


@dataclass(frozen=True)
class TargetState:
    """What the evaluator reports about a dependency target."""

    enabled: bool
    variant_id: Optional[str] = None


FlagEvaluator = Callable[[str], TargetState]


@dataclass(frozen=True)
class UnsatisfiedDependency:
    source_flag: str
    target_flag: str
    type: str
    reason: str
    required_variant: Optional[str] = None
    actual_variant: Optional[str] = None


@dataclass(frozen=True)
class DependencyResolutionResult:
    satisfied: bool
    unsatisfied: List[UnsatisfiedDependency] = field(default_factory=list)
    evaluation_order: List[str] = field(default_factory=list)
    circular_dependencies: List[List[str]] = field(default_factory=list)
    implied: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)


class DependencyResolver:
    """Adjacency map ``source -> {target -> dependency}`` plus reverse edges."""

    def __init__(self, dependencies: Iterable[FlagDependency] = ()) -> None:
        self._edges: Dict[str, Dict[str, FlagDependency]] = {}
        self._dependents: Dict[str, Set[str]] = {}
        self._cycles: Optional[List[List[str]]] = None
        self.build_graph(dependencies)

    # ---------- Graph maintenance ----------

    def build_graph(self, dependencies: Iterable[FlagDependency]) -> None:
        self._edges = {}
        self._dependents = {}
        self._cycles = None
        for dep in dependencies:
            self._link(dep)

    def _link(self, dep: FlagDependency) -> None:
        self._edges.setdefault(dep.source_flag, {})[dep.target_flag] = dep
        self._edges.setdefault(dep.target_flag, {})
        self._dependents.setdefault(dep.target_flag, set()).add(dep.source_flag)
        self._dependents.setdefault(dep.source_flag, set())

    def add_dependency(self, dependency: FlagDependency) -> None:
        self._link(dependency)
        self._cycles = None

    def remove_dependency(self, source_flag: str, target_flag: str) -> None:
        self._edges.get(source_flag, {}).pop(target_flag, None)
        self._dependents.get(target_flag, set()).discard(source_flag)
        self._cycles = None

    def clear(self) -> None:
        self.build_graph(())

    # ---------- Queries ----------

    def get_dependencies(self, flag_id: str) -> List[FlagDependency]:
        return list(self._edges.get(flag_id, {}).values())

    def get_dependents(self, flag_id: str) -> List[str]:
        return sorted(self._dependents.get(flag_id, ()))

    def get_transitive_dependents(self, flag_id: str) -> Set[str]:
        """Every flag that depends on ``flag_id`` directly or indirectly."""
        seen: Set[str] = set()
        stack = [flag_id]
        while stack:
            for dependent in self._dependents.get(stack.pop(), ()):
                if dependent not in seen and dependent != flag_id:
                    seen.add(dependent)
                    stack.append(dependent)
        return seen

    def has_dependencies(self, flag_id: str) -> bool:
        return bool(self._edges.get(flag_id))

    def has_dependents(self, flag_id: str) -> bool:
        return bool(self._dependents.get(flag_id))

    def get_all_flags(self) -> List[str]:
        return list(self._edges)

    def export_graph(self) -> Dict[str, list]:
        nodes = [
            {
                "id": flag_id,
                "dependency_count": len(targets),
                "dependent_count": len(self._dependents.get(flag_id, ())),
            }
            for flag_id, targets in self._edges.items()
        ]
        edges = [
            {"source": dep.source_flag, "target": dep.target_flag, "type": dep.type}
            for targets in self._edges.values()
            for dep in targets.values()
        ]
        return {"nodes": nodes, "edges": edges}

    # ---------- Cycles & ordering ----------

    def _cycle_targets(self, node: str) -> List[str]:
        return [
            target
            for target, dep in self._edges.get(node, {}).items()
            if dep.type in _CYCLE_EDGE_TYPES
        ]

    def _cyclic_components(self) -> List[Set[str]]:
        """Tarjan's strongly connected components that contain a cycle."""
        index: Dict[str, int] = {}
        low: Dict[str, int] = {}
        stack: List[str] = []
        on_stack: Set[str] = set()
        components: List[Set[str]] = []

        def connect(node: str) -> None:
            index[node] = low[node] = len(index)
            stack.append(node)
            on_stack.add(node)
            for target in self._cycle_targets(node):
                if target not in index:
                    connect(target)
                    low[node] = min(low[node], low[target])
                elif target in on_stack:
                    low[node] = min(low[node], index[target])

            if low[node] == index[node]:
                component: Set[str] = set()
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.add(member)
                    if member == node:
                        break
                if len(component) > 1 or node in self._cycle_targets(node):
                    components.append(component)

        for node in list(self._edges):
            if node not in index:
                connect(node)
        return components

    def _cycle_through(self, node: str, members: Set[str]) -> List[str]:
        """Shortest cycle from ``node`` back to itself inside ``members``."""
        parents: Dict[str, str] = {}
        queue = deque([node])
        while queue:
            current = queue.popleft()
            for target in self._cycle_targets(current):
                if target == node:
                    path = [current]
                    while path[-1] != node:
                        path.append(parents[path[-1]])
                    path.reverse()
                    return path + [node]
                if target in members and target not in parents:
                    parents[target] = current
                    queue.append(target)
        return [node, node]

    def detect_circular_dependencies(self) -> List[List[str]]:
        """Find cycles with a DFS over a recursion stack.

        Each cycle is reported in traversal order and closes on its first
        node, e.g. ``["a", "b", "a"]``. A DFS only sees back edges, so
        every node of a cyclic strongly connected component that no
        reported cycle covers gets one more cycle running through it.
        """
        if self._cycles is not None:
            return [list(c) for c in self._cycles]

        cycles: List[List[str]] = []
        visited: Set[str] = set()
        on_stack: Set[str] = set()
        path: List[str] = []

        def dfs(node: str) -> None:
            visited.add(node)
            on_stack.add(node)
            path.append(node)
            for target in self._cycle_targets(node):
                if target not in visited:
                    dfs(target)
                elif target in on_stack:
                    start = path.index(target)
                    cycles.append(path[start:] + [target])
            path.pop()
            on_stack.discard(node)

        for node in list(self._edges):
            if node not in visited:
                dfs(node)

        covered = {node for cycle in cycles for node in cycle}
        for component in self._cyclic_components():
            for node in sorted(component - covered):
                if node in covered:
                    continue
                cycle = self._cycle_through(node, component)
                cycles.append(cycle)
                covered.update(cycle)

        if cycles:
            logger.warning(
                "Detected %d circular flag dependency chain(s): %s",
                len(cycles),
                "; ".join(" -> ".join(c) for c in cycles),
            )
        self._cycles = cycles
        return [list(c) for c in cycles]

    def get_evaluation_order(self, flag_id: str) -> List[str]:
        """DFS post-order: dependencies come before the flags needing them."""
        order: List[str] = []
        visited: Set[str] = set()

        def visit(node: str) -> None:
            if node in visited:
                return
            visited.add(node)
            for target in self._edges.get(node, {}):
                visit(target)
            order.append(node)

        visit(flag_id)
        return order

    # ---------- Resolution ----------

    def resolve_dependencies(
        self, flag_id: str, evaluator: FlagEvaluator
    ) -> DependencyResolutionResult:
        """Check every direct dependency of ``flag_id``.

        Args:
            flag_id: The flag being evaluated.
            evaluator: Returns the ``TargetState`` of a target flag id.

        Returns:
            The resolution. ``satisfied`` is false when any ``requires`` or
            ``conflicts`` edge fails, or when ``flag_id`` is on a cycle.
        """
        cycles = self.detect_circular_dependencies()
        for cycle in cycles:
            if flag_id in cycle:
                return DependencyResolutionResult(
                    satisfied=False,
                    unsatisfied=[
                        UnsatisfiedDependency(
                            source_flag=flag_id,
                            target_flag=flag_id,
                            type="requires",
                            reason="Circular dependency detected: "
                            + " -> ".join(cycle),
                        )
                    ],
                    circular_dependencies=cycles,
                )

        unsatisfied: List[UnsatisfiedDependency] = []
        implied: List[str] = []
        conflicts: List[str] = []

        for target, dep in self._edges.get(flag_id, {}).items():
            if dep.type == "supersedes":
                continue
            state = evaluator(target)
            if dep.type == "requires":
                if not state.enabled:
                    unsatisfied.append(
                        UnsatisfiedDependency(
                            source_flag=flag_id,
                            target_flag=target,
                            type=dep.type,
                            reason=f"Required flag '{target}' is not enabled",
                            required_variant=dep.required_variant,
                        )
                    )
                elif dep.required_variant and state.variant_id != dep.required_variant:
                    unsatisfied.append(
                        UnsatisfiedDependency(
                            source_flag=flag_id,
                            target_flag=target,
                            type=dep.type,
                            reason=(
                                f"Required variant '{dep.required_variant}' "
                                "not matched"
                            ),
                            required_variant=dep.required_variant,
                            actual_variant=state.variant_id,
                        )
                    )
            elif dep.type == "conflicts":
                if state.enabled:
                    conflicts.append(target)
                    unsatisfied.append(
                        UnsatisfiedDependency(
                            source_flag=flag_id,
                            target_flag=target,
                            type=dep.type,
                            reason=f"Conflicting flag '{target}' is enabled",
                        )
                    )
            elif dep.type == "implies" and not state.enabled:
                implied.append(target)

        return DependencyResolutionResult(
            satisfied=not unsatisfied,
            unsatisfied=unsatisfied,
            evaluation_order=self.get_evaluation_order(flag_id),
            circular_dependencies=cycles,
            implied=implied,
            conflicts=conflicts,
        )


# ---------- Validation & export ----------


def validate_dependencies(dependencies: Iterable[FlagDependency]) -> Dict[str, object]:
    """Static checks over a dependency set.

    Errors: cycles, and a pair that both requires and conflicts.
    Warnings: requiring a flag that another flag supersedes.

    Returns:
        ``{"valid": bool, "errors": [...], "warnings": [...]}``.
    """
    deps = list(dependencies)
    errors: List[str] = []
    warnings: List[str] = []

    for cycle in DependencyResolver(deps).detect_circular_dependencies():
        errors.append("Circular dependency detected: " + " -> ".join(cycle))

    types_by_pair: Dict[tuple, Set[str]] = {}
    for dep in deps:
        types_by_pair.setdefault((dep.source_flag, dep.target_flag), set()).add(
            dep.type
        )
    for (source, target), types in types_by_pair.items():
        if {"requires", "conflicts"} <= types:
            errors.append(f"Flag {source} both requires and conflicts with {target}")

    superseded = {d.target_flag for d in deps if d.type == "supersedes"}
    for dep in deps:
        if dep.type == "requires" and dep.target_flag in superseded:
            warnings.append(
                f"Flag '{dep.source_flag}' requires superseded flag "
                f"'{dep.target_flag}'"
            )

    return {"valid": not errors, "errors": errors, "warnings": warnings}


_EDGE_STYLES = {
    "requires": "style=solid color=blue",
    "conflicts": "style=dashed color=red",
    "implies": "style=dotted color=green",
    "supersedes": "style=bold color=orange",
}


def generate_dependency_dot(dependencies: Iterable[FlagDependency]) -> str:
    """Render a dependency set as Graphviz DOT text."""
    deps = list(dependencies)
    lines = ["digraph FlagDependencies {", "  rankdir=TB;", "  node [shape=box];", ""]

    nodes: List[str] = []
    for dep in deps:
        for node in (dep.source_flag, dep.target_flag):
            if node not in nodes:
                nodes.append(node)
    lines.extend(f'  "{node}";' for node in nodes)
    lines.append("")

    for dep in deps:
        style = _EDGE_STYLES.get(dep.type, "")
        lines.append(
            f'  "{dep.source_flag}" -> "{dep.target_flag}" '
            f'[{style} label="{dep.type}"];'
        )
    lines.append("}")
    return "\n".join(lines)
