# CirrusFlags/cirrusflags/app.py

"""CirrusFlags HTTP application entrypoint.

This module creates and configures the Flask application around a single
FlagEngine and applies development-time CORS settings for local frontends.
It then starts the HTTP server using environment-based configuration.
"""

from pathlib import Path
from typing import Optional
import json
import logging
import os

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

from cirrusflags.blueprints.admin.flags_admin import flags_admin_bp
from cirrusflags.blueprints.admin.segments_admin import segments_admin_bp
from cirrusflags.blueprints.docs.docs import docs_bp
from cirrusflags.blueprints.engine_context import EXTENSION_KEY
from cirrusflags.blueprints.flags.evaluate import evaluate_bp
from cirrusflags.blueprints.reports.reports import reports_bp
from cirrusflags.blueprints.system.health import health_bp
from cirrusflags.config import EngineConfig
from cirrusflags.errors.exceptions import FlagConfigurationError
from cirrusflags.errors.handlers import register_error_handlers
from cirrusflags.services.events import LoggingEventSink
from cirrusflags.services.flag_codec import definitions_from_dict
from cirrusflags.services.flag_service import FlagEngine


logger = logging.getLogger(__name__)


def load_flags_file(engine: FlagEngine, path: str) -> None:
    """Register the flags and segments of a JSON bootstrap file.

    The file holds ``{"flags": [...], "segments": [...]}``. Segments are
    registered first so flags referencing them resolve immediately.

    Raises:
        FlagConfigurationError: If the file is missing, not JSON, or holds
            invalid definitions.
    """
    file_path = Path(path)
    try:
        with file_path.open("r", encoding="utf-8") as f:
            document = json.load(f)
    except OSError as e:
        raise FlagConfigurationError(f"Cannot read flags file {path}: {e}")
    except ValueError as e:
        raise FlagConfigurationError(f"Flags file {path} is not valid JSON: {e}")

    flags, segments = definitions_from_dict(document, engine.lifecycle)
    if segments:
        engine.register_segments(segments)
    if flags:
        engine.register_flags(flags)
    logger.info(
        "Loaded %d flag(s) and %d segment(s) from %s",
        len(flags),
        len(segments),
        file_path,
    )


def create_app(
    engine: Optional[FlagEngine] = None,
    config: Optional[EngineConfig] = None,
) -> Flask:
    """Create and configure the CirrusFlags Flask application instance.

    This factory loads environment variables, builds (or adopts) the
    engine, registers blueprints, and applies global error handlers.

    Args:
        engine: An existing engine to serve; one is built from ``config``
            when omitted.
        config: Engine settings; read from the environment when omitted.

    Returns:
        Flask: A configured Flask application instance.
    """
    load_dotenv()
    app = Flask(__name__)

    if engine is None:
        config = config or EngineConfig.from_env()
        engine = FlagEngine(config, event_sinks=[LoggingEventSink()])
        if config.flags_file:
            load_flags_file(engine, config.flags_file)
    app.extensions[EXTENSION_KEY] = engine

    # Register JSON error handlers (400/404/409/500, etc.).
    register_error_handlers(app)

    # System & health
    app.register_blueprint(health_bp)          # /health/

    # Registry management
    app.register_blueprint(flags_admin_bp)     # /admin/flags/
    app.register_blueprint(segments_admin_bp)  # /admin/segments/

    # Public evaluation endpoints (SDK / runtime)
    app.register_blueprint(evaluate_bp)        # /evaluate/, /evaluate/all

    # Lifecycle & dependency reports
    app.register_blueprint(reports_bp)         # /reports/*

    # Documentation (OpenAPI + Swagger UI)
    app.register_blueprint(docs_bp)            # /openapi.yaml and /docs

    return app


if __name__ == "__main__":
    debug = os.getenv("DEBUG", "false").lower() == "true"
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app()

    # Allow local development frontends to call this API directly.
    # In production, CORS should be enforced at the reverse proxy layer.
    CORS(
        app,
        resources={
            r"/*": {
                "origins": [
                    "http://localhost:3000",
                    "http://localhost:5173",
                ],
            },
        },
        supports_credentials=False,
        allow_headers=["Content-Type"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    )

    # HTTP server configuration derived from environment variables.
    port = int(os.getenv("BACKEND_PORT", "8000"))

    app.run(
        host="0.0.0.0",
        port=port,
        debug=debug,
    )
