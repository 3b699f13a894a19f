# CirrusFlags/cirrusflags/errors/handlers.py
"""Centralized JSON error handling for the CirrusFlags HTTP API.

Defines request-level exceptions and registers Flask error handlers
so that errors (including engine domain errors) are returned as
consistent JSON payloads instead of HTML pages.
"""


from __future__ import annotations

import logging
from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from cirrusflags.errors.exceptions import (
    FlagConfigurationError,
    FlagNotFoundError,
    InvalidStateTransitionError,
)


logger = logging.getLogger(__name__)


class BadRequest(Exception):
    """Exception raised for bad requests (HTTP 400).

    Attributes:
        detail: Human-readable description of the error.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(Exception):
    """Exception raised for missing resources (HTTP 404).

    Attributes:
        detail: Human-readable description of the error.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


def register_error_handlers(app: Flask) -> None:
    """Register JSON error handlers for request and domain errors.

    Attaches Flask error handlers so the API always returns JSON
    instead of HTML error pages.

    Args:
        app: The Flask application instance to configure.
    """

    @app.errorhandler(BadRequest)
    def _on_bad_request(err: BadRequest) -> tuple[Any, int]:
        """Return HTTP 400 for validation/contract issues."""
        return jsonify({"error": "BadRequest", "detail": err.detail}), 400

    @app.errorhandler(FlagConfigurationError)
    def _on_flag_configuration(err: FlagConfigurationError) -> tuple[Any, int]:
        """Return HTTP 400 for definitions the engine refuses to build."""
        return jsonify({"error": "BadRequest", "detail": err.detail}), 400

    @app.errorhandler(NotFound)
    def _on_not_found(err: NotFound) -> tuple[Any, int]:
        """Return HTTP 404 for missing resources."""
        return jsonify({"error": "NotFound", "detail": err.detail}), 404

    @app.errorhandler(FlagNotFoundError)
    def _on_flag_not_found(err: FlagNotFoundError) -> tuple[Any, int]:
        """Return HTTP 404 for management calls on unknown flags."""
        return jsonify({"error": "NotFound", "detail": err.detail}), 404

    @app.errorhandler(InvalidStateTransitionError)
    def _on_invalid_transition(
        err: InvalidStateTransitionError,
    ) -> tuple[Any, int]:
        """Return HTTP 409 for lifecycle transitions not allowed from the current state."""
        return jsonify({"error": "Conflict", "detail": err.detail}), 409

    @app.errorhandler(HTTPException)
    def _on_http_exception(err: HTTPException) -> tuple[Any, int]:
        """Fallback for other HTTP errors (for example 405)."""
        code = err.code or 500
        name = err.name or "HTTPException"
        return jsonify({"error": name, "detail": err.description}), code

    @app.errorhandler(Exception)
    def _on_unexpected(err: Exception) -> tuple[Any, int]:
        """Last-resort handler to avoid HTML stack traces."""
        logger.exception("Unhandled error: %s", err)
        return (
            jsonify(
                {
                    "error": "InternalServerError",
                    "detail": "An unexpected error occurred.",
                }
            ),
            500,
        )
