# CirrusFlags/cirrusflags/validators/flag_config_validator.py
"""
Validators for admin flag payloads using JSON Schema.

Schemas are loaded once at import time from ``cirrusflags/schemas``.
"""


from pathlib import Path
import json
from jsonschema import validate as js_validate, ValidationError
from cirrusflags.errors.handlers import BadRequest

# Resolve schema paths
SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"
SCHEMA_PATH = SCHEMAS_DIR / "flag_config.schema.json"
LIFECYCLE_SCHEMA_PATH = SCHEMAS_DIR / "lifecycle_action.schema.json"

# Load schemas
with SCHEMA_PATH.open("r", encoding="utf-8") as f:
    FLAG_CONFIG_SCHEMA = json.load(f)

with LIFECYCLE_SCHEMA_PATH.open("r", encoding="utf-8") as f:
    LIFECYCLE_ACTION_SCHEMA = json.load(f)


def validate_flag_config(payload: dict) -> None:
    """
    Validate an admin FlagConfig payload against the schema.

    Args:
        payload: Parsed JSON body for one flag definition.

    Raises:
        BadRequest: If payload is not an object or violates the schema.
    """
    if not isinstance(payload, dict):
        raise BadRequest("Body must be a JSON object.")

    try:
        js_validate(instance=payload, schema=FLAG_CONFIG_SCHEMA)
    except ValidationError as e:
        msg = getattr(e, "message", None) or str(e)
        raise BadRequest(f"Invalid FlagConfig: {msg}")


def validate_flag_batch(payload: dict) -> None:
    """
    Validate a batch body ``{"flags": [FlagConfig, ...]}``.

    Raises:
        BadRequest: If the body is malformed or any flag violates the schema.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("flags"), list):
        raise BadRequest('Body must be a JSON object with a "flags" array.')

    for index, flag in enumerate(payload["flags"]):
        try:
            validate_flag_config(flag)
        except BadRequest as e:
            raise BadRequest(f"flags[{index}]: {e.detail}")


def validate_lifecycle_action(payload: dict) -> None:
    """
    Validate a lifecycle transition request.

    Raises:
        BadRequest: If payload is not an object or violates the schema.
    """
    if not isinstance(payload, dict):
        raise BadRequest("Body must be a JSON object.")

    try:
        js_validate(instance=payload, schema=LIFECYCLE_ACTION_SCHEMA)
    except ValidationError as e:
        msg = getattr(e, "message", None) or str(e)
        raise BadRequest(f"Invalid LifecycleAction: {msg}")
