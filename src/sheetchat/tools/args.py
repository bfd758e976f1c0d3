"""
Typed argument variants, one per plugin function.

The registry parses validated raw arguments into exactly one of these
models; the query engine dispatches on the model type.
"""

from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

AggFunc = Literal["sum", "mean", "count", "min", "max", "std", "median", "nunique", "first", "last"]
AGG_FUNCS: tuple[str, ...] = AggFunc.__args__

FILTER_OPERATORS: tuple[str, ...] = (
    "==", "!=", ">", ">=", "<", "<=",
    "in", "not_in",
    "contains", "startswith", "endswith",
    "is_null", "not_null",
)


class ToolArgs(BaseModel):
    """Base for all operation arguments. Unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    operation: ClassVar[str]

    file_id: str = Field(..., min_length=1)
    sheet_name: str | None = None


class ReadFileArgs(ToolArgs):
    operation: ClassVar[str] = "read_file"


class HeadArgs(ToolArgs):
    operation: ClassVar[str] = "head"

    n: int | None = Field(default=None, ge=0)


class TailArgs(HeadArgs):
    operation: ClassVar[str] = "tail"


class DescribeArgs(ToolArgs):
    operation: ClassVar[str] = "describe"

    columns: list[str] | None = None


class GroupByArgs(ToolArgs):
    operation: ClassVar[str] = "groupby"

    by: list[str] = Field(..., min_length=1)
    agg: dict[str, AggFunc] = Field(..., min_length=1)
    limit: int | None = Field(default=None, ge=1)


class FilterCondition(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    column: str
    operator: str
    value: Any = None


class FilterArgs(ToolArgs):
    operation: ClassVar[str] = "filter"

    conditions: list[FilterCondition] = Field(..., min_length=1)
    limit: int | None = Field(default=None, ge=1)


class SortArgs(ToolArgs):
    operation: ClassVar[str] = "sort"

    by: list[str] = Field(..., min_length=1)
    ascending: bool | list[bool] = True
    limit: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _ascending_matches_by(self) -> "SortArgs":
        if isinstance(self.ascending, list) and len(self.ascending) != len(self.by):
            raise ValueError("ascending list must have one entry per 'by' column")
        return self

    @property
    def ascending_flags(self) -> list[bool]:
        if isinstance(self.ascending, bool):
            return [self.ascending] * len(self.by)
        return list(self.ascending)


class ValueCountsArgs(ToolArgs):
    operation: ClassVar[str] = "value_counts"

    column: str = Field(..., min_length=1)
    limit: int | None = Field(default=None, ge=1)


OPERATION_ARGS: dict[str, type[ToolArgs]] = {
    model.operation: model
    for model in (
        ReadFileArgs,
        HeadArgs,
        TailArgs,
        DescribeArgs,
        GroupByArgs,
        FilterArgs,
        SortArgs,
        ValueCountsArgs,
    )
}
