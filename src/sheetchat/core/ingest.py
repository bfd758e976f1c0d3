"""
File ingestion - bytes to typed sheets.

Responsibilities:
- Hash raw bytes (dedup key, independent of filename)
- Parse CSV/TSV/Excel into pandas frames, one per sheet
- Infer a column type per column (string/number/boolean/date)

No network or storage awareness: callers own persistence.
"""

import hashlib
import io
import logging
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from uuid import uuid4

import pandas as pd
from pandas.api import types as ptypes

from sheetchat.core.table_store import ColumnDef, ColumnType, FileRecord, Sheet
from sheetchat.exceptions import ValidationException

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = {".csv": ",", ".tsv": "\t"}
EXCEL_EXTENSIONS = {".xlsx", ".xlsm"}
SUPPORTED_EXTENSIONS = sorted([*CSV_EXTENSIONS, *EXCEL_EXTENSIONS])

_DATE_PATTERN = r"^\d{4}-\d{1,2}-\d{1,2}([ T]\d{1,2}:\d{2}(:\d{2}(\.\d+)?)?)?$"
_BOOL_STRINGS = {"true": True, "false": False}


def content_hash(content: bytes) -> str:
    """SHA-256 of the raw bytes. Filename never participates."""
    return hashlib.sha256(content).hexdigest()


def _generate_file_id() -> str:
    return f"file_{uuid4().hex[:16]}"


def _read_csv(content: bytes, sep: str) -> pd.DataFrame:
    try:
        return pd.read_csv(io.BytesIO(content), sep=sep, encoding="utf-8")
    except UnicodeDecodeError:
        return pd.read_csv(io.BytesIO(content), sep=sep, encoding="latin-1")


def _unique_names(names: list[str]) -> list[str]:
    """Suffix repeated names with .1, .2, ... the way pandas mangles duplicate headers."""
    seen: set[str] = set()
    unique = []
    for name in names:
        candidate, n = name, 0
        while candidate in seen:
            n += 1
            candidate = f"{name}.{n}"
        seen.add(candidate)
        unique.append(candidate)
    return unique


def _clean_strings(df: pd.DataFrame) -> pd.DataFrame:
    """Strip surrounding whitespace/quotes from text cells and column names."""
    df = df.copy()
    df.columns = _unique_names([str(c).strip() for c in df.columns])
    for col in df.columns:
        if df[col].dtype == "object":
            df[col] = df[col].apply(lambda x: x.strip().strip("'\"") if isinstance(x, str) else x)
    return df


def _infer_column(series: pd.Series) -> tuple[ColumnType, pd.Series]:
    """Return the inferred type and the (possibly converted) series."""
    if ptypes.is_bool_dtype(series):
        return "boolean", series
    if ptypes.is_numeric_dtype(series):
        return "number", series
    if ptypes.is_datetime64_any_dtype(series):
        return "date", series

    non_null = series.dropna()
    if non_null.empty:
        return "string", series

    if all(isinstance(v, bool) for v in non_null):
        return "boolean", series

    as_text = non_null.astype(str).str.strip()
    lowered = as_text.str.lower()
    if lowered.isin(list(_BOOL_STRINGS)).all():
        converted = series.map(lambda v: _BOOL_STRINGS[str(v).strip().lower()] if pd.notna(v) else None)
        return "boolean", converted.astype("object")

    if as_text.str.match(_DATE_PATTERN).all():
        parsed = pd.to_datetime(series, errors="coerce")
        if parsed.notna().sum() == len(non_null):
            return "date", parsed

    return "string", series


def _build_sheet(name: str, df: pd.DataFrame) -> Sheet:
    df = _clean_strings(df)
    columns: list[ColumnDef] = []
    converted: dict[str, pd.Series] = {}
    for col in df.columns:
        col_type, series = _infer_column(df[col])
        columns.append(ColumnDef(name=str(col), type=col_type))
        converted[str(col)] = series
    frame = pd.DataFrame(converted, index=pd.RangeIndex(len(df)))
    return Sheet(name=name, columns=tuple(columns), frame=frame)


def parse_file(content: bytes, filename: str) -> list[Sheet]:
    """
    Parse file bytes into sheets.

    Args:
        content: Raw file bytes
        filename: Original filename (extension selects the parser)

    Returns:
        Sheets in workbook order (single sheet named after the stem for CSV)

    Raises:
        ValidationException: Unsupported extension or unparsable content
    """
    path = Path(filename)
    ext = path.suffix.lower()

    try:
        if ext in CSV_EXTENSIONS:
            frames = {path.stem or "Sheet1": _read_csv(content, CSV_EXTENSIONS[ext])}
        elif ext in EXCEL_EXTENSIONS:
            frames = pd.read_excel(io.BytesIO(content), sheet_name=None)
        else:
            raise ValidationException(
                f"Unsupported file type '{ext or filename}'. Supported: {', '.join(SUPPORTED_EXTENSIONS)}",
                code="UNSUPPORTED_FILE",
            )
    except ValidationException:
        raise
    except (ValueError, UnicodeDecodeError, zipfile.BadZipFile, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.warning(f"[ingest] Failed to parse {filename}: {e}")
        raise ValidationException(f"Could not parse '{filename}': {e}", code="UNPARSABLE_FILE") from e

    if not frames:
        raise ValidationException(f"'{filename}' contains no sheets", code="UNPARSABLE_FILE")

    return [_build_sheet(str(name), df) for name, df in frames.items()]


def build_file_record(content: bytes, filename: str, sequence: int = 0) -> FileRecord:
    """Parse and hash an upload into a complete, not yet stored, FileRecord."""
    if not content:
        raise ValidationException("Empty file", code="EMPTY_FILE")

    sheets = parse_file(content, filename)
    record = FileRecord(
        id=_generate_file_id(),
        filename=filename,
        content_hash=content_hash(content),
        uploaded_at=datetime.now(timezone.utc),
        size_bytes=len(content),
        sheets=tuple(sheets),
        sequence=sequence,
    )
    logger.info(
        f"[ingest] Parsed {filename}: sheets={record.sheet_names}, "
        f"rows={[s.row_count for s in sheets]}, hash={record.content_hash[:12]}"
    )
    return record
