"""
Filter evaluation - conjunctive conditions over one sheet.

Each condition is checked against the column's inferred type before it is
evaluated. A comparison that does not fit the column type is an error, never
a silent "no match".
"""

import logging
from typing import Any

import pandas as pd

from sheetchat.core.table_store import ColumnType, Sheet
from sheetchat.exceptions import ColumnNotFoundException, InvalidFilterException, TypeMismatchException
from sheetchat.tools.args import FILTER_OPERATORS, FilterCondition

logger = logging.getLogger(__name__)

_ORDERING_OPS = {">", ">=", "<", "<="}
_TEXT_OPS = {"contains", "startswith", "endswith"}
_NULL_OPS = {"is_null", "not_null"}


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _coerce_value(col: str, col_type: ColumnType, value: Any, operator: str) -> Any:
    """Check a filter value against the column type and return it in comparable form."""
    if col_type == "number":
        if not _is_number(value):
            raise TypeMismatchException(
                message=f"Filter value for '{col}' must be numeric.",
                details={"column": col, "column_type": col_type, "operator": operator, "value": value},
            )
        return value
    if col_type == "boolean":
        if not isinstance(value, bool):
            raise TypeMismatchException(
                message=f"Filter value for '{col}' must be true or false.",
                details={"column": col, "column_type": col_type, "operator": operator, "value": value},
            )
        return value
    if col_type == "date":
        if not isinstance(value, str):
            raise TypeMismatchException(
                message=f"Filter value for '{col}' must be a date string (YYYY-MM-DD).",
                details={"column": col, "column_type": col_type, "operator": operator, "value": value},
            )
        parsed = pd.to_datetime(value, errors="coerce")
        if pd.isna(parsed):
            raise TypeMismatchException(
                message=f"Filter value for '{col}' is not a valid date: {value}",
                details={"column": col, "column_type": col_type, "operator": operator, "value": value},
            )
        return parsed
    if not isinstance(value, str):
        raise TypeMismatchException(
            message=f"Filter value for '{col}' must be a string.",
            details={"column": col, "column_type": col_type, "operator": operator, "value": value},
        )
    return value


def _condition_mask(sheet: Sheet, cond: FilterCondition) -> pd.Series:
    col = cond.column
    op = cond.operator.strip().lower()

    if op not in FILTER_OPERATORS:
        raise InvalidFilterException(
            message=f"Unsupported operator: {cond.operator}",
            code="UNSUPPORTED_OPERATOR",
            details={"operator": cond.operator, "allowed": list(FILTER_OPERATORS)},
        )

    col_type = sheet.column_type(col)
    if col_type is None:
        raise ColumnNotFoundException([col], sheet.column_names)

    s = sheet.frame[col]

    if op in _NULL_OPS:
        return s.isna() if op == "is_null" else s.notna()

    val = cond.value

    if op in {"in", "not_in"}:
        if not isinstance(val, list) or len(val) == 0:
            raise InvalidFilterException(
                message=f"'{op}' operator requires a non-empty list value",
                details={"column": col, "operator": op, "value": val},
            )
        values = [_coerce_value(col, col_type, v, op) for v in val]
        mask = s.isin(values) & s.notna()
        return mask if op == "in" else (~mask & s.notna())

    if val is None:
        if op == "==":
            return s.isna()
        if op == "!=":
            return s.notna()
        raise InvalidFilterException(
            message=f"'{op}' operator requires a value",
            details={"column": col, "operator": op},
        )

    if op in _TEXT_OPS:
        if col_type != "string":
            raise TypeMismatchException(
                message=f"'{op}' requires a text column; '{col}' is {col_type}.",
                details={"column": col, "column_type": col_type, "operator": op},
            )
        # text operators ignore case
        needle = str(_coerce_value(col, col_type, val, op)).lower()
        text = s.astype("string").str.lower()
        if op == "contains":
            mask = text.str.contains(needle, regex=False)
        elif op == "startswith":
            mask = text.str.startswith(needle)
        else:
            mask = text.str.endswith(needle)
        return mask.fillna(False).astype(bool)

    if op in _ORDERING_OPS and col_type == "boolean":
        raise TypeMismatchException(
            message=f"'{op}' cannot be applied to boolean column '{col}'.",
            details={"column": col, "column_type": col_type, "operator": op},
        )

    target = _coerce_value(col, col_type, val, op)
    present = s.notna()
    if op == "==":
        return (s == target) & present
    if op == "!=":
        return (s != target) & present
    if op == ">":
        return (s > target) & present
    if op == ">=":
        return (s >= target) & present
    if op == "<":
        return (s < target) & present
    return (s <= target) & present


def apply_filters(sheet: Sheet, conditions: list[FilterCondition]) -> pd.DataFrame:
    """Return the rows matching every condition (AND), in original order."""
    mask = pd.Series(True, index=sheet.frame.index)
    for cond in conditions:
        try:
            mask &= _condition_mask(sheet, cond)
        except TypeError as e:
            raise TypeMismatchException(
                message=f"Cannot compare column '{cond.column}' with {cond.value!r}.",
                details={"column": cond.column, "operator": cond.operator, "value": cond.value},
            ) from e
    return sheet.frame[mask]
