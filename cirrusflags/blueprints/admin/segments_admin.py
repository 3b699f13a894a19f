# CirrusFlags/cirrusflags/blueprints/admin/segments_admin.py
"""Admin-facing segment management endpoints for CirrusFlags."""


from __future__ import annotations

from typing import Any

from flask import Blueprint, request, jsonify

from cirrusflags.blueprints.engine_context import current_engine
from cirrusflags.services.flag_codec import segment_from_dict, to_dict
from cirrusflags.validators.segment_config_validator import validate_segment_config


segments_admin_bp = Blueprint(
    "segments_admin", __name__, url_prefix="/admin/segments"
)


@segments_admin_bp.post("/")
def post_segments() -> tuple[Any, int]:
    """Register or replace a batch of segments.

    Request JSON body: ``{"segments": [SegmentConfig, ...]}``.

    Returns:
        tuple: (JSON list of registered segments, HTTP status code).
    """
    payload = request.get_json(silent=True) or {}
    validate_segment_config(payload)

    segments = [segment_from_dict(s) for s in payload["segments"]]
    current_engine().register_segments(segments)

    return jsonify([to_dict(s) for s in segments]), 200


@segments_admin_bp.get("/")
def list_segments() -> tuple[Any, int]:
    """List registered segments ordered by id."""
    segments = sorted(current_engine().get_all_segments(), key=lambda s: s.id)
    return jsonify([to_dict(s) for s in segments]), 200


@segments_admin_bp.delete("/<string:segment_id>")
def delete_segment(segment_id: str) -> tuple[str, int]:
    """Delete a segment (idempotent, always 204)."""
    current_engine().remove_segment(segment_id)
    return "", 204
