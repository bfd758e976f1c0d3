"""
Query Engine - Executes one validated plugin operation

Responsibilities:
- Resolve file_id / sheet_name against the table store (under a read lease)
- Run the operation (read_file, head, tail, describe, groupby, filter, sort, value_counts)
- Return a JSON-native payload that is a value copy, never a view into the store
- NOT validate raw arguments (that is the tool registry)
- NOT apply timeouts (that is the orchestrator)

Every operation is read-only. Deterministic failures raise a
ToolExecutionException subclass with a stable code.
"""

import logging
from collections import Counter
from typing import Any, Callable

import pandas as pd

from sheetchat.config import QuerySettings
from sheetchat.core.query_engine.filters import apply_filters
from sheetchat.core.table_store import FileRecord, InMemoryTableStore, Sheet, frame_to_rows, to_native
from sheetchat.exceptions import (
    ColumnNotFoundException,
    SheetChatException,
    ToolExecutionException,
    ToolValidationException,
    TypeMismatchException,
)
from sheetchat.tools.args import (
    DescribeArgs,
    FilterArgs,
    GroupByArgs,
    HeadArgs,
    ReadFileArgs,
    SortArgs,
    TailArgs,
    ToolArgs,
    ValueCountsArgs,
)

logger = logging.getLogger(__name__)

NUMERIC_AGGS = frozenset({"sum", "mean", "std", "median"})


def _require_columns(sheet: Sheet, columns: list[str]) -> None:
    missing = [c for c in columns if sheet.column_type(c) is None]
    if missing:
        raise ColumnNotFoundException(missing, sheet.column_names)


class QueryEngine:
    """
    Executes plugin operations against an InMemoryTableStore.

    Stateless apart from its store and row bounds; safe to share across
    conversations.
    """

    def __init__(self, store: InMemoryTableStore, settings: QuerySettings | None = None):
        self._store = store
        self._settings = settings or QuerySettings()
        self._handlers: dict[type[ToolArgs], Callable[[FileRecord, Sheet, Any], dict[str, Any]]] = {
            ReadFileArgs: self._read_file,
            HeadArgs: self._head,
            TailArgs: self._tail,
            DescribeArgs: self._describe,
            GroupByArgs: self._groupby,
            FilterArgs: self._filter,
            SortArgs: self._sort,
            ValueCountsArgs: self._value_counts,
        }

    @property
    def max_rows(self) -> int:
        return self._settings.max_rows

    def execute(self, function_name: str, args: ToolArgs) -> dict[str, Any]:
        """
        Execute one operation.

        Args:
            function_name: Registry name of the operation
            args: Typed arguments produced by PluginRegistry.validate

        Returns:
            JSON-native result payload

        Raises:
            ToolExecutionException: FILE_NOT_FOUND, SHEET_NOT_FOUND, COLUMN_NOT_FOUND,
                UNSUPPORTED_OPERATOR, INVALID_FILTER, TYPE_MISMATCH, EXECUTION_ERROR
        """
        handler = self._handlers.get(type(args))
        if handler is None or args.operation != function_name:
            raise ToolValidationException(
                f"Arguments of type {type(args).__name__} do not belong to '{function_name}'",
                function_name=function_name,
            )

        with self._store.reading(args.file_id) as record:
            sheet = record.sheet(args.sheet_name)
            try:
                result = handler(record, sheet, args)
            except SheetChatException:
                raise
            except (TypeError, ValueError) as e:
                logger.warning(f"[query_engine] {function_name} failed on {args.file_id}: {e}")
                raise ToolExecutionException(
                    code="EXECUTION_ERROR",
                    message=f"{function_name} failed: {e}",
                    details={"file_id": args.file_id, "sheet_name": sheet.name},
                ) from e

        logger.debug(f"[query_engine] {function_name} ok on {args.file_id}/{sheet.name}")
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _window(self, limit: int | None) -> int:
        if limit is None:
            return self._settings.max_rows
        return min(limit, self._settings.max_rows)

    def _rows_payload(self, frame: pd.DataFrame, limit: int | None = None) -> dict[str, Any]:
        window = self._window(limit)
        return {
            "rows": frame_to_rows(frame.head(window)),
            "total_rows": len(frame),
            "truncated": len(frame) > window,
        }

    @staticmethod
    def _base(record: FileRecord, sheet: Sheet) -> dict[str, Any]:
        return {"file_id": record.id, "sheet_name": sheet.name}

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _read_file(self, record: FileRecord, sheet: Sheet, args: ReadFileArgs) -> dict[str, Any]:
        return {
            **self._base(record, sheet),
            "filename": record.filename,
            "sheet_names": record.sheet_names,
            "sheets": [
                {"name": s.name, "columns": s.schema(), "row_count": s.row_count}
                for s in record.sheets
            ],
            "columns": sheet.schema(),
            "row_count": sheet.row_count,
            **self._rows_payload(sheet.frame),
        }

    def _bounded_n(self, n: int | None) -> int:
        n = self._settings.default_rows if n is None else n
        return min(n, self._settings.max_rows)

    def _head(self, record: FileRecord, sheet: Sheet, args: HeadArgs) -> dict[str, Any]:
        n = self._bounded_n(args.n)
        window = sheet.frame.head(n)
        return {
            **self._base(record, sheet),
            "n": len(window),
            "rows": frame_to_rows(window),
            "total_rows": sheet.row_count,
            "truncated": sheet.row_count > len(window),
        }

    def _tail(self, record: FileRecord, sheet: Sheet, args: TailArgs) -> dict[str, Any]:
        n = self._bounded_n(args.n)
        window = sheet.frame.tail(n)
        return {
            **self._base(record, sheet),
            "n": len(window),
            "rows": frame_to_rows(window),
            "total_rows": sheet.row_count,
            "truncated": sheet.row_count > len(window),
        }

    def _describe(self, record: FileRecord, sheet: Sheet, args: DescribeArgs) -> dict[str, Any]:
        columns = args.columns if args.columns is not None else sheet.column_names
        _require_columns(sheet, columns)

        stats: dict[str, dict[str, Any]] = {}
        for col in columns:
            col_type = sheet.column_type(col)
            s = sheet.frame[col]
            missing = int(s.isna().sum())
            present = s.dropna()

            if col_type == "number":
                d = present.astype(float).describe() if len(present) else pd.Series(dtype=float)
                stats[col] = {
                    "type": col_type,
                    "count": int(len(present)),
                    "missing": missing,
                    **{k: to_native(d.get(k)) for k in ("mean", "std", "min", "25%", "50%", "75%", "max")},
                }
                continue

            entry: dict[str, Any] = {
                "type": col_type,
                "count": int(len(present)),
                "missing": missing,
                "unique": int(present.nunique()),
                "top": None,
                "freq": None,
            }
            if len(present):
                top_value, top_count = _frequency_table(present)[0]
                entry["top"] = top_value
                entry["freq"] = top_count
            if col_type == "date" and len(present):
                entry["min"] = to_native(present.min())
                entry["max"] = to_native(present.max())
            stats[col] = entry

        return {
            **self._base(record, sheet),
            "row_count": sheet.row_count,
            "columns": stats,
        }

    def _groupby(self, record: FileRecord, sheet: Sheet, args: GroupByArgs) -> dict[str, Any]:
        _require_columns(sheet, [*args.by, *args.agg])

        for col, func in args.agg.items():
            col_type = sheet.column_type(col)
            if func in NUMERIC_AGGS and col_type != "number":
                raise TypeMismatchException(
                    message=f"Aggregation '{func}' requires a numeric column; '{col}' is {col_type}.",
                    details={"column": col, "column_type": col_type, "agg": func},
                )

        grouped = sheet.frame.groupby(args.by, sort=False, dropna=False)
        named = {f"{col}_{func}": pd.NamedAgg(column=col, aggfunc=func) for col, func in args.agg.items()}
        aggregated = grouped.agg(**named).reset_index()
        sizes = [int(v) for v in grouped.size().tolist()]

        window = self._window(args.limit)
        rows = frame_to_rows(aggregated.head(window))
        return {
            **self._base(record, sheet),
            "by": list(args.by),
            "rows": rows,
            "group_sizes": sizes,
            "group_count": len(aggregated),
            "total_rows": sheet.row_count,
            "truncated": len(aggregated) > window,
        }

    def _filter(self, record: FileRecord, sheet: Sheet, args: FilterArgs) -> dict[str, Any]:
        matched = apply_filters(sheet, list(args.conditions))
        return {
            **self._base(record, sheet),
            "source_rows": sheet.row_count,
            **self._rows_payload(matched, args.limit),
        }

    def _sort(self, record: FileRecord, sheet: Sheet, args: SortArgs) -> dict[str, Any]:
        _require_columns(sheet, list(args.by))
        try:
            ordered = sheet.frame.sort_values(
                by=list(args.by),
                ascending=args.ascending_flags,
                kind="mergesort",
                na_position="last",
            )
        except TypeError as e:
            raise TypeMismatchException(
                message=f"Cannot sort by {args.by}: column values are not mutually comparable.",
                details={"by": list(args.by)},
            ) from e
        return {
            **self._base(record, sheet),
            "by": list(args.by),
            **self._rows_payload(ordered, args.limit),
        }

    def _value_counts(self, record: FileRecord, sheet: Sheet, args: ValueCountsArgs) -> dict[str, Any]:
        _require_columns(sheet, [args.column])
        table = _frequency_table(sheet.frame[args.column])
        window = self._window(args.limit)
        return {
            **self._base(record, sheet),
            "column": args.column,
            "values": [{"value": value, "count": n} for value, n in table[:window]],
            "distinct": len(table),
            "total_rows": sheet.row_count,
            "truncated": len(table) > window,
        }


def _frequency_table(series: pd.Series) -> list[tuple[Any, int]]:
    """(value, count) pairs, descending by count, ties in first-seen order. Nulls count as a value."""
    codes, uniques = pd.factorize(series, use_na_sentinel=False)
    counts = Counter(codes.tolist())
    order = sorted(range(len(uniques)), key=lambda i: -counts[i])
    return [(to_native(uniques[i]), counts[i]) for i in order]


__all__ = ["QueryEngine", "NUMERIC_AGGS"]
