"""
Schema Validator - Tool arguments against a plugin function's JSON Schema

Responsibilities:
- Compile each parameter schema once (Draft 7), rejecting malformed schemas
- Report every violation of a call, not just the first
- Phrase violations for the model: parameter names, not schema keywords
- NOT execute anything
- NOT transform data
"""

from typing import Any

from jsonschema import Draft7Validator
from jsonschema.exceptions import ValidationError


class SchemaValidationError(Exception):
    """Arguments did not match the schema."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Schema validation failed: {', '.join(errors)}")


def _location(error: ValidationError) -> str:
    return ".".join(str(p) for p in error.absolute_path)


def _describe(error: ValidationError) -> list[str]:
    where = _location(error)
    if error.validator == "required":
        missing = [name for name in error.validator_value if name not in (error.instance or {})]
        prefix = f"{where}: " if where else ""
        return [f"{prefix}missing required parameter '{name}'" for name in missing]
    if error.validator == "additionalProperties" and isinstance(error.instance, dict):
        allowed = set(error.schema.get("properties", {}))
        unknown = sorted(k for k in error.instance if k not in allowed)
        prefix = f"{where}: " if where else ""
        return [f"{prefix}unknown parameter '{name}'" for name in unknown]
    return [f"{where or 'arguments'}: {error.message}"]


class SchemaValidator:
    """
    Compiled Draft 7 validator for one parameter schema.

    Built once per plugin function when the registry is constructed;
    ``validate`` is then safe to call from any number of turns.
    """

    def __init__(self, schema: dict):
        Draft7Validator.check_schema(schema)
        self._validator = Draft7Validator(schema)

    def validate(self, data: Any) -> None:
        """
        Raises:
            SchemaValidationError: With one message per violation, ordered by parameter
        """
        errors = sorted(self._validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
        messages = [message for error in errors for message in _describe(error)]
        if messages:
            raise SchemaValidationError(messages)


__all__ = ["SchemaValidator", "SchemaValidationError"]
