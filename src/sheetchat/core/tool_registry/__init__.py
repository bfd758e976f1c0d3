"""
Tool Registry - Static catalog of plugin functions

Responsibilities:
- Declare every plugin function (name, description, parameter contract)
- Expose the catalog to the model as tool definitions (describe / tool_catalog)
- Validate a requested call and parse it into its typed argument variant
- NOT execute tools (that is the query engine)

The registry is immutable after construction and safe to share across
concurrent conversations.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, Mapping

from pydantic import ValidationError as PydanticValidationError

from sheetchat.core.schema_validator import SchemaValidationError, SchemaValidator
from sheetchat.exceptions import ToolValidationException
from sheetchat.tools.args import AGG_FUNCS, FILTER_OPERATORS, OPERATION_ARGS, ToolArgs

logger = logging.getLogger(__name__)

ParamType = Literal["string", "integer", "number", "boolean", "array", "object"]


@dataclass(frozen=True)
class ParameterSpec:
    """Contract of a single parameter."""
    type: ParamType
    description: str
    required: bool = False
    enum: tuple[str, ...] | None = None
    default: Any = None
    extra: Mapping[str, Any] = field(default_factory=dict)   # items / additionalProperties / anyOf

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"description": self.description}
        if "anyOf" not in self.extra:
            schema["type"] = self.type
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.default is not None:
            schema["default"] = self.default
        schema.update(copy.deepcopy(dict(self.extra)))
        return schema


@dataclass(frozen=True)
class PluginFunction:
    """Registry entry: one callable operation."""
    name: str
    description: str
    parameters: Mapping[str, ParameterSpec]
    args_model: type[ToolArgs] = field(repr=False)

    @property
    def required(self) -> frozenset[str]:
        return frozenset(n for n, p in self.parameters.items() if p.required)

    def json_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {n: p.to_json_schema() for n, p in self.parameters.items()},
            "required": [n for n, p in self.parameters.items() if p.required],
            "additionalProperties": False,
        }

    def to_tool_definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.json_schema(),
        }


class PluginRegistry:
    """
    Immutable catalog of plugin functions.

    Validation fails closed: unknown functions, missing required parameters,
    wrongly typed values and unknown parameters all reject the whole call.
    """

    def __init__(self, functions: list[PluginFunction]):
        by_name: dict[str, PluginFunction] = {}
        for fn in functions:
            if fn.name in by_name:
                raise ValueError(f"Plugin function {fn.name} already registered")
            if "file_id" not in fn.required:
                raise ValueError(f"Plugin function {fn.name} must require file_id")
            frozen = PluginFunction(
                name=fn.name,
                description=fn.description,
                parameters=MappingProxyType(dict(fn.parameters)),
                args_model=fn.args_model,
            )
            by_name[fn.name] = frozen
        self._functions: Mapping[str, PluginFunction] = MappingProxyType(by_name)
        self._order: tuple[str, ...] = tuple(by_name)
        self._validators: Mapping[str, SchemaValidator] = MappingProxyType(
            {n: SchemaValidator(f.json_schema()) for n, f in by_name.items()}
        )

    def describe(self) -> tuple[PluginFunction, ...]:
        """All functions in declaration order."""
        return tuple(self._functions[n] for n in self._order)

    def tool_catalog(self) -> list[dict[str, Any]]:
        """Catalog as handed verbatim to the model."""
        return [fn.to_tool_definition() for fn in self.describe()]

    def names(self) -> list[str]:
        return list(self._order)

    def get(self, name: str) -> PluginFunction:
        """
        Get a function by name.

        Raises:
            ToolValidationException: If the function does not exist
        """
        fn = self._functions.get(name)
        if fn is None:
            raise ToolValidationException(
                f"Unknown function '{name}'. Available: {', '.join(self._order)}",
                code="UNKNOWN_FUNCTION",
                function_name=name,
            )
        return fn

    def validate(self, name: str, raw_args: str | Mapping[str, Any] | None) -> ToolArgs:
        """
        Validate a requested call and parse it into its typed variant.

        Args:
            name: Requested function name
            raw_args: Arguments as emitted by the model (JSON string or mapping)

        Returns:
            The typed argument variant for the function

        Raises:
            ToolValidationException: On any contract violation
        """
        fn = self.get(name)
        args = _decode_arguments(name, raw_args)

        try:
            self._validators[name].validate(args)
        except SchemaValidationError as e:
            raise ToolValidationException(
                f"Invalid arguments for '{name}': {'; '.join(e.errors)}",
                function_name=name,
                errors=e.errors,
            ) from e

        try:
            return fn.args_model.model_validate(args)
        except PydanticValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            ]
            raise ToolValidationException(
                f"Invalid arguments for '{name}': {'; '.join(errors)}",
                function_name=name,
                errors=errors,
            ) from e


def _decode_arguments(name: str, raw_args: str | Mapping[str, Any] | None) -> dict[str, Any]:
    if raw_args is None or raw_args == "":
        return {}
    if isinstance(raw_args, Mapping):
        return dict(raw_args)
    if isinstance(raw_args, str):
        try:
            decoded = json.loads(raw_args)
        except json.JSONDecodeError as e:
            raise ToolValidationException(
                f"Arguments for '{name}' are not valid JSON: {e.msg}",
                function_name=name,
            ) from e
        if not isinstance(decoded, dict):
            raise ToolValidationException(
                f"Arguments for '{name}' must be a JSON object",
                function_name=name,
            )
        return decoded
    raise ToolValidationException(
        f"Arguments for '{name}' must be a JSON object",
        function_name=name,
    )


# =============================================================================
# Default catalog
# =============================================================================

_FILE_ID = ParameterSpec("string", "ID of the file to analyze", required=True)
_SHEET_NAME = ParameterSpec("string", "Sheet name (defaults to first sheet)")


def _limit(what: str) -> ParameterSpec:
    return ParameterSpec("integer", f"Limit number of {what} returned", extra={"minimum": 1})


def _column_list(description: str, required: bool = False) -> ParameterSpec:
    return ParameterSpec(
        "array",
        description,
        required=required,
        extra={"items": {"type": "string"}, "minItems": 1},
    )


def default_functions() -> list[PluginFunction]:
    """The spreadsheet plugin catalog."""
    rows_n = ParameterSpec("integer", "Number of rows to view", default=5, extra={"minimum": 0})
    return [
        PluginFunction(
            name="read_file",
            description=(
                "Given an Excel or CSV file, outputs basic file information including sheet names, "
                "column headers with types, row count, and the first rows of data."
            ),
            parameters={"file_id": _FILE_ID, "sheet_name": _SHEET_NAME},
            args_model=OPERATION_ARGS["read_file"],
        ),
        PluginFunction(
            name="head",
            description="Outputs the first N rows of data from the file",
            parameters={"file_id": _FILE_ID, "n": rows_n, "sheet_name": _SHEET_NAME},
            args_model=OPERATION_ARGS["head"],
        ),
        PluginFunction(
            name="tail",
            description="Outputs the last N rows of data from the file",
            parameters={"file_id": _FILE_ID, "n": rows_n, "sheet_name": _SHEET_NAME},
            args_model=OPERATION_ARGS["tail"],
        ),
        PluginFunction(
            name="describe",
            description=(
                "Outputs statistical description of columns: count, mean, std, min, max and "
                "percentiles for numeric columns; count, unique and top value for the others. "
                "Missing values are reported per column."
            ),
            parameters={
                "file_id": _FILE_ID,
                "sheet_name": _SHEET_NAME,
                "columns": _column_list("Columns to describe (defaults to all)"),
            },
            args_model=OPERATION_ARGS["describe"],
        ),
        PluginFunction(
            name="groupby",
            description="Groups data by specified columns and performs aggregation operations",
            parameters={
                "file_id": _FILE_ID,
                "by": _column_list("Column names to group by", required=True),
                "agg": ParameterSpec(
                    "object",
                    'Aggregation configuration: {"column_name": "aggregation_function"}. '
                    f"Functions: {', '.join(AGG_FUNCS)}",
                    required=True,
                    extra={
                        "additionalProperties": {"type": "string", "enum": list(AGG_FUNCS)},
                        "minProperties": 1,
                    },
                ),
                "sheet_name": _SHEET_NAME,
                "limit": _limit("groups"),
            },
            args_model=OPERATION_ARGS["groupby"],
        ),
        PluginFunction(
            name="filter",
            description=(
                "Filters data with a list of conditions, all of which must match (AND). "
                f"Operators: {', '.join(FILTER_OPERATORS)}. contains, startswith and endswith ignore case."
            ),
            parameters={
                "file_id": _FILE_ID,
                "conditions": ParameterSpec(
                    "array",
                    'Conditions, e.g. [{"column": "age", "operator": ">", "value": 30}]',
                    required=True,
                    extra={
                        "minItems": 1,
                        "items": {
                            "type": "object",
                            "properties": {
                                "column": {"type": "string"},
                                "operator": {"type": "string"},
                                "value": {},
                            },
                            "required": ["column", "operator"],
                            "additionalProperties": False,
                        },
                    },
                ),
                "sheet_name": _SHEET_NAME,
                "limit": _limit("rows"),
            },
            args_model=OPERATION_ARGS["filter"],
        ),
        PluginFunction(
            name="sort",
            description="Sorts data by specified column(s). Sorting is stable.",
            parameters={
                "file_id": _FILE_ID,
                "by": _column_list("Column names to sort by", required=True),
                "ascending": ParameterSpec(
                    "boolean",
                    "Sort in ascending order; a single flag or one flag per 'by' column",
                    default=True,
                    extra={"anyOf": [{"type": "boolean"}, {"type": "array", "items": {"type": "boolean"}}]},
                ),
                "sheet_name": _SHEET_NAME,
                "limit": _limit("rows"),
            },
            args_model=OPERATION_ARGS["sort"],
        ),
        PluginFunction(
            name="value_counts",
            description="Counts unique values in a column, most frequent first",
            parameters={
                "file_id": _FILE_ID,
                "column": ParameterSpec("string", "Column name to count values for", required=True),
                "sheet_name": _SHEET_NAME,
                "limit": _limit("unique values"),
            },
            args_model=OPERATION_ARGS["value_counts"],
        ),
    ]


def build_default_registry() -> PluginRegistry:
    registry = PluginRegistry(default_functions())
    logger.info(f"[tool_registry] Registered {len(registry.names())} functions: {registry.names()}")
    return registry


__all__ = [
    "ParameterSpec",
    "PluginFunction",
    "PluginRegistry",
    "build_default_registry",
    "default_functions",
]
