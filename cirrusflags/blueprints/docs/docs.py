# CirrusFlags/cirrusflags/blueprints/docs/docs.py
"""Documentation endpoints for CirrusFlags (OpenAPI spec, schemas, Swagger UI).

This blueprint serves:
- the OpenAPI YAML file
- an index of the JSON Schema files and the files themselves
- a minimal Swagger UI pointing to /openapi.yaml
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from flask import Blueprint, current_app, jsonify, send_from_directory

# Absolute routes: /openapi.yaml, /schemas/*, /docs
docs_bp = Blueprint("docs_bp", __name__)


def _package_dir() -> Path:
    # resolved at request time
    return Path(current_app.root_path)


def _missing(detail: str, tried: Path) -> tuple[Any, int]:
    return (
        jsonify({"error": "NotFound", "detail": detail, "tried": str(tried)}),
        404,
    )


@docs_bp.get("/openapi.yaml")
def get_openapi_yaml() -> Any:
    """Serve the OpenAPI spec file located at cirrusflags/docs/openapi.yaml.

    Returns:
        A Flask response streaming ``openapi.yaml`` with ``text/yaml``
        mimetype, or a JSON 404 payload if the file cannot be found.
    """
    docs_dir = _package_dir() / "docs"
    spec = docs_dir / "openapi.yaml"

    if not spec.exists():
        return _missing("openapi.yaml not found", spec)

    return send_from_directory(docs_dir, "openapi.yaml", mimetype="text/yaml")


@docs_bp.get("/schemas/")
def list_schema_files() -> tuple[Any, int]:
    """List the JSON Schema files that can be fetched under ``/schemas/``."""
    schemas_dir = _package_dir() / "schemas"
    names = sorted(p.name for p in schemas_dir.glob("*.json"))
    return jsonify({"schemas": names}), 200


@docs_bp.get("/schemas/<path:filename>")
def get_schema_file(filename: str) -> Any:
    """Serve a JSON schema file used by OpenAPI ``$ref``s.

    Args:
        filename: Name of the schema file under ``cirrusflags/schemas``.

    Returns:
        A Flask response streaming the schema with ``application/json``
        mimetype, or a JSON 404 payload if there is no such ``.json`` file.
    """
    schemas_dir = _package_dir() / "schemas"
    target = schemas_dir / filename

    if not filename.endswith(".json") or not target.exists():
        return _missing(filename, target)

    return send_from_directory(
        schemas_dir,
        filename,
        mimetype="application/json",
    )


@docs_bp.get("/docs")
def swagger_ui() -> tuple[str, int, dict[str, str]]:
    """Serve a minimal Swagger UI page that loads ``/openapi.yaml``.

    Swagger UI assets come from a public CDN.
    """
    return (
        """
        <!doctype html>
        <html>
        <head>
            <meta charset="utf-8"/>
            <title>CirrusFlags API Docs</title>
            <link rel="stylesheet"
                  href="https://unpkg.com/swagger-ui-dist/swagger-ui.css"/>
        </head>
        <body>
            <div id="swagger-ui"></div>
            <script src="https://unpkg.com/swagger-ui-dist/swagger-ui-bundle.js"></script>
            <script>
            window.ui = SwaggerUIBundle({
                url: '/openapi.yaml',
                dom_id: '#swagger-ui',
                deepLinking: true
            });
            </script>
        </body>
        </html>
        """,
        200,
        {"Content-Type": "text/html; charset=utf-8"},
    )
