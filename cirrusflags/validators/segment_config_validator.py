# CirrusFlags/cirrusflags/validators/segment_config_validator.py
"""
Validator for admin segment payloads using JSON Schema.
"""


from pathlib import Path
import json
from jsonschema import validate as js_validate, ValidationError
from cirrusflags.errors.handlers import BadRequest


SCHEMA_PATH = (
    Path(__file__).resolve().parent.parent / "schemas" / "segment_config.schema.json"
)

with SCHEMA_PATH.open("r", encoding="utf-8") as f:
    SEGMENT_CONFIG_SCHEMA = json.load(f)


def validate_segment_config(payload: dict) -> None:
    """
    Validate a segment batch body ``{"segments": [...]}``.

    Args:
        payload: Parsed JSON body.

    Raises:
        BadRequest: If payload is not an object or violates the schema.
    """
    if not isinstance(payload, dict):
        raise BadRequest("Body must be a JSON object.")

    try:
        js_validate(instance=payload, schema=SEGMENT_CONFIG_SCHEMA)
    except ValidationError as e:
        msg = getattr(e, "message", None) or str(e)
        raise BadRequest(f"Invalid SegmentConfig: {msg}")
