from __future__ import annotations

import logging
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from itertools import count
from threading import RLock
from typing import Any, Iterator, Literal

import pandas as pd

from sheetchat.exceptions import FileInUseException, FileNotFoundException, SheetNotFoundException

logger = logging.getLogger(__name__)

ColumnType = Literal["string", "number", "boolean", "date"]


@dataclass(frozen=True)
class ColumnDef:
    name: str
    type: ColumnType


@dataclass(frozen=True)
class Sheet:
    """One named table of a file. The frame is never mutated after ingest."""

    name: str
    columns: tuple[ColumnDef, ...]
    frame: pd.DataFrame = field(repr=False, compare=False)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def row_count(self) -> int:
        return len(self.frame)

    def column_type(self, name: str) -> ColumnType | None:
        for col in self.columns:
            if col.name == name:
                return col.type
        return None

    def rows(self) -> list[dict[str, Any]]:
        return frame_to_rows(self.frame)

    def schema(self) -> list[dict[str, str]]:
        return [{"name": c.name, "type": c.type} for c in self.columns]


@dataclass(frozen=True)
class FileRecord:
    id: str
    filename: str
    content_hash: str
    uploaded_at: datetime
    size_bytes: int
    sheets: tuple[Sheet, ...] = field(repr=False)
    sequence: int = 0

    @property
    def sheet_names(self) -> list[str]:
        return [s.name for s in self.sheets]

    def sheet(self, sheet_name: str | None = None) -> Sheet:
        """Resolve a sheet by name; None selects the first sheet."""
        if sheet_name is None:
            return self.sheets[0]
        for sheet in self.sheets:
            if sheet.name == sheet_name:
                return sheet
        raise SheetNotFoundException(self.id, sheet_name, self.sheet_names)


def to_native(value: Any) -> Any:
    """Convert a pandas/numpy cell into a JSON-native value copy."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [to_native(v) for v in value]
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if isinstance(value, pd.Timestamp):
        if value.hour == value.minute == value.second == value.microsecond == 0:
            return value.date().isoformat()
        return value.isoformat()
    if hasattr(value, "item"):
        return value.item()
    return value


def frame_to_rows(frame: pd.DataFrame) -> list[dict[str, Any]]:
    return [
        {str(col): to_native(val) for col, val in zip(frame.columns, values)}
        for values in frame.itertuples(index=False, name=None)
    ]


class InMemoryTableStore:
    """
    Source of truth for uploaded files and their sheets.

    Readers take a lease through ``reading()``; deletes are rejected while
    any lease on the file is held, so data is never torn down underneath a
    running query.
    """

    def __init__(self):
        self._lock = RLock()
        self._files: dict[str, FileRecord] = {}
        self._readers: Counter[str] = Counter()
        self._sequence = count(1)

    def next_sequence(self) -> int:
        with self._lock:
            return next(self._sequence)

    def put(self, record: FileRecord) -> None:
        with self._lock:
            self._files[record.id] = record
        logger.info(f"[table_store] Stored {record.id} ({record.filename}, {len(record.sheets)} sheet(s))")

    def get(self, file_id: str) -> FileRecord | None:
        with self._lock:
            return self._files.get(file_id)

    def get_or_raise(self, file_id: str) -> FileRecord:
        record = self.get(file_id)
        if record is None:
            raise FileNotFoundException(file_id)
        return record

    def list(self) -> list[FileRecord]:
        """All records in upload order."""
        with self._lock:
            return sorted(self._files.values(), key=lambda r: r.sequence)

    @contextmanager
    def reading(self, file_id: str) -> Iterator[FileRecord]:
        with self._lock:
            record = self._files.get(file_id)
            if record is None:
                raise FileNotFoundException(file_id)
            self._readers[file_id] += 1
        try:
            yield record
        finally:
            with self._lock:
                self._readers[file_id] -= 1
                if self._readers[file_id] <= 0:
                    del self._readers[file_id]

    @contextmanager
    def exclusive(self) -> Iterator["InMemoryTableStore"]:
        """Hold the store lock so several calls see and change one consistent state."""
        with self._lock:
            yield self

    def active_readers(self, file_id: str) -> int:
        with self._lock:
            return self._readers.get(file_id, 0)

    def delete(self, file_id: str) -> FileRecord:
        return self.delete_many([file_id])[0]

    def delete_many(self, file_ids: list[str]) -> list[FileRecord]:
        """
        Delete several files atomically.

        Raises:
            FileNotFoundException: If any id is unknown (nothing is deleted)
            FileInUseException: If any file has an active reader (nothing is deleted)
        """
        with self._lock:
            for file_id in file_ids:
                if file_id not in self._files:
                    raise FileNotFoundException(file_id)
            busy = [fid for fid in file_ids if self._readers.get(fid, 0) > 0]
            if busy:
                raise FileInUseException(busy)
            removed = [self._files.pop(fid) for fid in file_ids]
        for record in removed:
            logger.info(f"[table_store] Deleted {record.id} ({record.filename})")
        return removed
