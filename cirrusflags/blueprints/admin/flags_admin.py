# CirrusFlags/cirrusflags/blueprints/admin/flags_admin.py
"""Admin-facing feature flag management endpoints for CirrusFlags.

Provides upsert, batch replace, listing, deletion and lifecycle
transitions on the flags registered in the running engine.
"""


from __future__ import annotations

from typing import Any, Dict, Iterable, List

from flask import Blueprint, request, jsonify

from cirrusflags.blueprints.engine_context import current_engine
from cirrusflags.errors.handlers import BadRequest, NotFound
from cirrusflags.models import FeatureFlag
from cirrusflags.services.condition_service import parse_date
from cirrusflags.services.dependency_service import DependencyResolver
from cirrusflags.services.flag_codec import flag_from_dict, to_dict
from cirrusflags.services.flag_service import FlagEngine
from cirrusflags.validators.flag_config_validator import (
    validate_flag_batch,
    validate_flag_config,
    validate_lifecycle_action,
)


flags_admin_bp = Blueprint("flags_admin", __name__, url_prefix="/admin/flags")


def _serialize_flag(flag: FeatureFlag) -> dict:
    """Serialize a FeatureFlag into a JSON-safe dict.

    Returns:
        dict: Serialized flag.
    """
    return to_dict(flag)


def _parse_flag(engine: FlagEngine, payload: Dict[str, Any]) -> FeatureFlag:
    """Build a flag from an admin payload.

    When a flag with the same key is already registered, its id and
    lifecycle are kept unless the payload provides its own.
    """
    existing = engine.get_flag(payload["key"])
    if existing is not None:
        payload = dict(payload)
        payload.setdefault("id", existing.id)
        if not payload.get("lifecycle"):
            payload["lifecycle"] = to_dict(existing.lifecycle)
    return flag_from_dict(payload, engine.lifecycle, created_by="admin-api")


def _reject_cycles(engine: FlagEngine, flags: Iterable[FeatureFlag]) -> None:
    """Raise BadRequest if registering ``flags`` would create a cycle."""
    combined = {f.id: f for f in engine.get_all_flags()}
    combined.update({f.id: f for f in flags})

    resolver = DependencyResolver(
        dep for flag in combined.values() for dep in flag.dependencies
    )
    cycles = resolver.detect_circular_dependencies()
    if cycles:
        raise BadRequest(
            "Circular dependency detected: " + " -> ".join(cycles[0])
        )


@flags_admin_bp.post("/")
def post_upsert_flag() -> tuple[Any, int]:
    """Create or update a single flag definition.

    - Validates the payload against flag_config.schema.json
      via validate_flag_config.
    - Rejects definitions that close a dependency cycle (400).

    Returns:
        tuple: (JSON response, HTTP status code).
    """
    payload = request.get_json(silent=True) or {}

    # Validate payload shape (raises BadRequest if invalid)
    validate_flag_config(payload)

    engine = current_engine()
    flag = _parse_flag(engine, payload)
    _reject_cycles(engine, [flag])
    engine.register_flag(flag)

    return jsonify(_serialize_flag(flag)), 200


@flags_admin_bp.put("/")
def put_flags_batch() -> tuple[Any, int]:
    """Atomically add or replace a batch of flags.

    Request JSON body: ``{"flags": [FlagConfig, ...]}``. Either every
    flag of the batch becomes visible to evaluations or none does.

    Returns:
        tuple: (JSON list of registered flags, HTTP status code).
    """
    payload = request.get_json(silent=True) or {}
    validate_flag_batch(payload)

    engine = current_engine()
    flags: List[FeatureFlag] = [_parse_flag(engine, p) for p in payload["flags"]]

    keys = [f.key for f in flags]
    if len(set(keys)) != len(keys):
        raise BadRequest("Batch contains duplicate flag keys")

    _reject_cycles(engine, flags)
    engine.register_flags(flags)

    return jsonify([_serialize_flag(f) for f in flags]), 200


@flags_admin_bp.get("/")
def list_flags() -> tuple[Any, int]:
    """
    List registered flags ordered by key.

    Query params:
        - limit (optional, default 50)
        - offset (optional, default 0)

    Returns:
        tuple: (JSON list of flag representations, HTTP status code).
    """
    try:
        limit = int(request.args.get("limit", "50"))
    except ValueError:
        limit = 50

    try:
        offset = int(request.args.get("offset", "0"))
    except ValueError:
        offset = 0

    flags = sorted(current_engine().get_all_flags(), key=lambda f: f.key)
    page = flags[max(offset, 0):max(offset, 0) + max(limit, 0)]

    return jsonify([_serialize_flag(f) for f in page]), 200


@flags_admin_bp.get("/<string:key>")
def get_flag_by_key(key: str) -> tuple[Any, int]:
    """Retrieve a flag definition by its key.

    Args:
        key: The key of the flag to retrieve.

    Returns:
        tuple: (JSON flag representation, HTTP status code).
               Returns 404 if the flag is not found.
    """
    flag = current_engine().get_flag(key)
    if flag is None:
        raise NotFound(f"Flag '{key}' not found")

    return jsonify(_serialize_flag(flag)), 200


@flags_admin_bp.delete("/<string:key>")
def delete_flag(key: str) -> tuple[str, int]:
    """Delete a flag by its key.

    Behaviour:
        - If the flag does not exist, we still return 204 (idempotent delete).

    Returns:
        tuple: ("", 204) on success.
    """
    engine = current_engine()
    flag = engine.get_flag(key)
    if flag is not None:
        engine.remove_flag(flag.id)

    # No content on success
    return "", 204


@flags_admin_bp.post("/<string:key>/lifecycle")
def post_lifecycle_action(key: str) -> tuple[Any, int]:
    """Apply a lifecycle transition to a flag.

    Request JSON body:
        {
            "action": "activate" | "pause" | "deprecate" | "archive",
            "user": "string",
            "reason": "string" (optional),
            "deprecation_date" / "removal_date": ISO-8601 (deprecate only)
        }

    Returns:
        tuple: (JSON updated flag, HTTP status code). Unknown flags give
        404 and transitions not allowed from the current state give 409.
    """
    payload = request.get_json(silent=True) or {}
    validate_lifecycle_action(payload)

    dates = {}
    for name in ("deprecation_date", "removal_date"):
        if payload.get(name) is not None:
            parsed = parse_date(payload[name])
            if parsed is None:
                raise BadRequest(f"Invalid LifecycleAction: {name} is not a date")
            dates[name] = parsed

    flag = current_engine().transition_flag(
        key,
        payload["action"],
        payload["user"],
        reason=payload.get("reason"),
        **dates,
    )

    return jsonify(_serialize_flag(flag)), 200
