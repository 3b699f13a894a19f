# CirrusFlags/cirrusflags/blueprints/engine_context.py
"""Access to the FlagEngine owned by the running Flask application."""

from __future__ import annotations

from flask import current_app

from cirrusflags.services.flag_service import FlagEngine


EXTENSION_KEY = "cirrusflags"


def current_engine() -> FlagEngine:
    """Return the engine stored by ``create_app`` in ``app.extensions``."""
    return current_app.extensions[EXTENSION_KEY]
