"""
SheetChat Tools - typed operation variants

The model never executes anything: it requests a named plugin function,
the registry turns the raw arguments into one of these typed variants, and
the query engine executes it deterministically.
"""

from sheetchat.tools.args import (
    AGG_FUNCS,
    FILTER_OPERATORS,
    OPERATION_ARGS,
    DescribeArgs,
    FilterArgs,
    FilterCondition,
    GroupByArgs,
    HeadArgs,
    ReadFileArgs,
    SortArgs,
    TailArgs,
    ToolArgs,
    ValueCountsArgs,
)

__all__ = [
    "AGG_FUNCS",
    "FILTER_OPERATORS",
    "OPERATION_ARGS",
    "DescribeArgs",
    "FilterArgs",
    "FilterCondition",
    "GroupByArgs",
    "HeadArgs",
    "ReadFileArgs",
    "SortArgs",
    "TailArgs",
    "ToolArgs",
    "ValueCountsArgs",
]
