# CirrusFlags/cirrusflags/blueprints/flags/evaluate.py
"""Runtime evaluation endpoints for CirrusFlags feature flags.

This blueprint exposes the public `/evaluate/` API used by client
applications to resolve flags for a given evaluation context.
"""

from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify, request

from cirrusflags.blueprints.engine_context import current_engine
from cirrusflags.errors.handlers import NotFound
from cirrusflags.services.flag_codec import context_from_dict, result_to_dict
from cirrusflags.validators.evaluate_validator import (
    validate_eval_all_payload,
    validate_eval_payload,
)


evaluate_bp = Blueprint("evaluate_bp", __name__, url_prefix="/evaluate")


@evaluate_bp.post("/")
def post_evaluate() -> tuple[Any, int]:
    """Evaluate one flag for a context (public API).

    Request JSON body (EvaluateRequest):
        {
            "flag_key": "string",
            "context": { "user": {...}, "device": {...}, ... }
        }

    Behaviour:
        - Returns 404 with {"error": "NotFound"} if the flag does not exist.
        - Otherwise runs the engine and returns 200 with the serialized
          EvaluationResult (EvaluateResponse).

    Returns:
        A tuple ``(response, status_code)``.
    """
    payload = request.get_json(silent=True) or {}
    validate_eval_payload(payload)

    engine = current_engine()
    flag_key = payload["flag_key"]
    if engine.get_flag(flag_key) is None:
        raise NotFound(f"Flag '{flag_key}' not found")

    context = context_from_dict(payload.get("context"))
    result = engine.evaluate(flag_key, context)

    return jsonify(result_to_dict(result)), 200


@evaluate_bp.post("/all")
def post_evaluate_all() -> tuple[Any, int]:
    """Evaluate several flags at once.

    ``flag_keys`` is optional; without it every registered flag is
    evaluated. Unknown keys are not an error here: they come back as
    ``OFF`` results carrying the fallback value.

    Returns:
        A tuple ``(response, status_code)`` where the response maps each
        flag key to its serialized result.
    """
    payload = request.get_json(silent=True) or {}
    validate_eval_all_payload(payload)

    context = context_from_dict(payload.get("context"))
    results = current_engine().evaluate_all(payload.get("flag_keys"), context)

    return jsonify({key: result_to_dict(r) for key, r in results.items()}), 200
