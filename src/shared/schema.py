"""JSON Schema helpers for tool input validation."""

from typing import Any, Optional

from jsonschema import Draft7Validator


def compile_schema(schema: dict[str, Any]) -> Draft7Validator:
    """
    Check a tool input schema and build a reusable validator.

    Raises:
        jsonschema.SchemaError: If the schema itself is malformed
    """
    Draft7Validator.check_schema(schema)
    return Draft7Validator(schema)


def validation_errors(validator: Draft7Validator, data: Any) -> list[str]:
    """Return human-readable validation errors, empty when data is valid."""
    return [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in sorted(validator.iter_errors(data), key=lambda e: e.message)
    ]


def object_schema(
    properties: Optional[dict[str, dict[str, Any]]] = None,
    required: Optional[list[str]] = None,
) -> dict[str, Any]:
    """
    Build an object schema from a ``{name: {"type": ..., "description": ...}}``
    property map.
    """
    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties or {},
    }
    if required:
        schema["required"] = list(required)
    return schema


def string_prop(description: str) -> dict[str, Any]:
    return {"type": "string", "description": description}
