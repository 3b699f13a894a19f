# CirrusFlags/cirrusflags/blueprints/reports/reports.py
"""Flag hygiene and dependency reporting endpoints.

- ``GET /reports/cleanup``: cleanup report over every registered flag
- ``GET /reports/health/<key>``: health score of one flag
- ``GET /reports/dependencies``: dependency graph plus static validation
- ``GET /reports/dependencies.dot``: the same graph in Graphviz DOT
"""

from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify

from cirrusflags.blueprints.engine_context import current_engine
from cirrusflags.services.dependency_service import (
    generate_dependency_dot,
    validate_dependencies,
)
from cirrusflags.services.flag_codec import to_dict


reports_bp = Blueprint("reports_bp", __name__, url_prefix="/reports")


def _all_dependencies():
    return [
        dep for flag in current_engine().get_all_flags() for dep in flag.dependencies
    ]


@reports_bp.get("/cleanup")
def get_cleanup_report() -> tuple[Any, int]:
    """Return the cleanup report (overdue, removable, dormant flags, ...)."""
    report = current_engine().generate_cleanup_report()
    return jsonify(to_dict(report)), 200


@reports_bp.get("/health/<string:key>")
def get_flag_health(key: str) -> tuple[Any, int]:
    """Return the health of one flag; 404 if the key is unknown."""
    health = current_engine().get_flag_health(key)
    return jsonify(to_dict(health)), 200


@reports_bp.get("/dependencies")
def get_dependency_graph() -> tuple[Any, int]:
    """Return the dependency graph, detected cycles and validation results."""
    resolver = current_engine().registry.snapshot().resolver
    return (
        jsonify(
            {
                "graph": resolver.export_graph(),
                "cycles": resolver.detect_circular_dependencies(),
                "validation": validate_dependencies(_all_dependencies()),
            }
        ),
        200,
    )


@reports_bp.get("/dependencies.dot")
def get_dependency_dot() -> tuple[str, int, dict[str, str]]:
    """Return the dependency graph as a Graphviz document."""
    return (
        generate_dependency_dot(_all_dependencies()),
        200,
        {"Content-Type": "text/vnd.graphviz; charset=utf-8"},
    )
