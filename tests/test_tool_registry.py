"""
Tests for the plugin function registry.
"""

import pytest

from sheetchat.core.tool_registry import ParameterSpec, PluginFunction, PluginRegistry
from sheetchat.exceptions import ToolValidationException
from sheetchat.tools.args import FilterArgs, GroupByArgs, HeadArgs, ReadFileArgs, SortArgs


class TestCatalog:
    def test_describe_order(self, registry):
        assert [fn.name for fn in registry.describe()] == [
            "read_file", "head", "tail", "describe", "groupby", "filter", "sort", "value_counts",
        ]

    def test_every_function_requires_file_id(self, registry):
        for fn in registry.describe():
            assert "file_id" in fn.required

    def test_required_parameters(self, registry):
        assert registry.get("groupby").required == {"file_id", "by", "agg"}
        assert registry.get("filter").required == {"file_id", "conditions"}
        assert registry.get("sort").required == {"file_id", "by"}
        assert registry.get("value_counts").required == {"file_id", "column"}
        assert registry.get("head").required == {"file_id"}

    def test_tool_catalog_is_closed_json_schema(self, registry):
        catalog = registry.tool_catalog()

        assert len(catalog) == 8
        head = next(t for t in catalog if t["name"] == "head")
        assert head["description"]
        assert head["parameters"]["type"] == "object"
        assert head["parameters"]["additionalProperties"] is False
        assert head["parameters"]["required"] == ["file_id"]
        assert head["parameters"]["properties"]["n"]["type"] == "integer"

    def test_registry_is_immutable(self, registry):
        with pytest.raises(TypeError):
            registry.get("head").parameters["n"] = ParameterSpec("string", "hijacked")

    def test_duplicate_names_rejected(self, registry):
        head = registry.get("head")
        with pytest.raises(ValueError):
            PluginRegistry([head, head])

    def test_function_without_file_id_rejected(self):
        fn = PluginFunction(
            name="noop",
            description="No file",
            parameters={"x": ParameterSpec("string", "x", required=True)},
            args_model=ReadFileArgs,
        )
        with pytest.raises(ValueError):
            PluginRegistry([fn])


class TestValidate:
    def test_valid_call_parses_into_variant(self, registry):
        args = registry.validate("groupby", {"file_id": "f1", "by": ["region"], "agg": {"amount": "sum"}})

        assert isinstance(args, GroupByArgs)
        assert args.by == ["region"]
        assert args.agg == {"amount": "sum"}
        assert args.sheet_name is None

    def test_json_string_arguments(self, registry):
        args = registry.validate("head", '{"file_id": "f1", "n": 3}')
        assert isinstance(args, HeadArgs)
        assert args.n == 3

    def test_malformed_json(self, registry):
        with pytest.raises(ToolValidationException) as exc:
            registry.validate("head", '{"file_id": ')
        assert exc.value.code == "VALIDATION_ERROR"

    def test_unknown_function(self, registry):
        with pytest.raises(ToolValidationException) as exc:
            registry.validate("pivot", {"file_id": "f1"})
        assert exc.value.code == "UNKNOWN_FUNCTION"

    def test_missing_required(self, registry):
        with pytest.raises(ToolValidationException) as exc:
            registry.validate("groupby", {"file_id": "f1", "agg": {"amount": "sum"}})
        assert any("by" in e for e in exc.value.errors)

    def test_unknown_parameter_rejected(self, registry):
        with pytest.raises(ToolValidationException) as exc:
            registry.validate("head", {"file_id": "f1", "rows": 3})
        assert exc.value.code == "VALIDATION_ERROR"
        assert exc.value.errors == ["unknown parameter 'rows'"]

    def test_every_violation_is_reported(self, registry):
        with pytest.raises(ToolValidationException) as exc:
            registry.validate("groupby", {"agg": {"amount": "sum"}, "limit": 0})

        errors = exc.value.errors
        assert "missing required parameter 'file_id'" in errors
        assert "missing required parameter 'by'" in errors
        assert any(e.startswith("limit:") for e in errors)

    def test_nested_violation_names_its_location(self, registry):
        with pytest.raises(ToolValidationException) as exc:
            registry.validate("filter", {"file_id": "f1", "conditions": [{"column": "amount"}]})
        assert exc.value.errors == ["conditions.0: missing required parameter 'operator'"]

    def test_wrong_type_rejected(self, registry):
        with pytest.raises(ToolValidationException):
            registry.validate("head", {"file_id": "f1", "n": "five"})
        with pytest.raises(ToolValidationException):
            registry.validate("head", {"file_id": "f1", "n": True})

    def test_negative_n_rejected(self, registry):
        with pytest.raises(ToolValidationException):
            registry.validate("head", {"file_id": "f1", "n": -1})

    def test_unknown_aggregation_is_validation_error(self, registry):
        with pytest.raises(ToolValidationException) as exc:
            registry.validate("groupby", {"file_id": "f1", "by": ["region"], "agg": {"amount": "average"}})
        assert exc.value.code == "VALIDATION_ERROR"

    def test_one_bad_field_invalidates_whole_call(self, registry):
        with pytest.raises(ToolValidationException):
            registry.validate("sort", {"file_id": "f1", "by": ["amount"], "ascending": "yes", "limit": 10})

    def test_sort_ascending_forms(self, registry):
        single = registry.validate("sort", {"file_id": "f1", "by": ["a", "b"], "ascending": False})
        per_column = registry.validate("sort", {"file_id": "f1", "by": ["a", "b"], "ascending": [True, False]})

        assert isinstance(single, SortArgs)
        assert single.ascending_flags == [False, False]
        assert per_column.ascending_flags == [True, False]

    def test_sort_ascending_length_mismatch(self, registry):
        with pytest.raises(ToolValidationException):
            registry.validate("sort", {"file_id": "f1", "by": ["a", "b"], "ascending": [True]})

    def test_filter_conditions_shape(self, registry):
        args = registry.validate(
            "filter",
            {"file_id": "f1", "conditions": [{"column": "amount", "operator": ">", "value": 15}]},
        )
        assert isinstance(args, FilterArgs)
        assert args.conditions[0].value == 15

        with pytest.raises(ToolValidationException):
            registry.validate("filter", {"file_id": "f1", "conditions": [{"column": "amount"}]})
        with pytest.raises(ToolValidationException):
            registry.validate("filter", {"file_id": "f1", "conditions": []})
