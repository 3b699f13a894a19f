# CirrusFlags/cirrusflags/blueprints/system/health.py
from flask import Blueprint, jsonify

from cirrusflags.blueprints.engine_context import current_engine

health_bp = Blueprint("health_bp", __name__, url_prefix="/health")

@health_bp.get("/")
def health() -> jsonify:
    """
    Health probe.

    Returns:
        {"status": "ok", "flags": <count>, "segments": <count>}
    """
    stats = current_engine().get_stats()
    return jsonify(
        {
            "status": "ok",
            "flags": stats["flag_count"],
            "segments": stats["segment_count"],
        }
    )
