# ean_intake/services/tabular.py
"""
Tabular Parser - supplier CSV / Excel files into rows of named fields.

Header row is always the first row and never counted as data. Rows where
every cell is empty are skipped. Values are trimmed strings; missing cells
become "".
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Dict, List, Optional
import csv, io

import pandas as pd

from ean_intake.db_models import FileType
from ean_intake.errors import TabularParseError, UnsupportedFileType, ColumnNotFound

ALLOWED_EXTENSIONS = (".csv", ".xlsx", ".xls")

_EXTENSION_TYPES = {
    ".csv": FileType.csv,
    ".xlsx": FileType.xlsx,
    ".xls": FileType.xlsx,
}


def file_extension(file_name: str) -> str:
    return PurePath(file_name or "").suffix.lower()


def file_type_for(file_name: str) -> FileType:
    """Declared file type from the extension (.xls is read as a spreadsheet too)."""
    ext = file_extension(file_name)
    try:
        return _EXTENSION_TYPES[ext]
    except KeyError:
        raise UnsupportedFileType(
            f"Unsupported file type '{ext or file_name}'. Allowed: {', '.join(ALLOWED_EXTENSIONS)}"
        )


# ============================================================================
# Decoding helpers
# ============================================================================

def _decode_bytes_auto(b: bytes) -> str:
    try:
        return b.decode("utf-8-sig")
    except UnicodeDecodeError:
        try:
            return b.decode("cp1250")
        except UnicodeDecodeError:
            return b.decode("utf-8", errors="ignore")


def _detect_delimiter(line: str) -> str:
    counts = {';': line.count(';'), '\t': line.count('\t'), ',': line.count(',')}
    delim = max(counts, key=lambda k: counts[k])
    return delim if counts[delim] > 0 else ','


def _clean_header(h: Any, position: int) -> str:
    s = str(h if h is not None else "")
    if s.startswith("Unnamed: "):
        s = ""
    s = s.strip().strip('"').strip("'").strip()
    return s or f"Column{position + 1}"


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


# ============================================================================
# Parsed table
# ============================================================================

@dataclass
class TableMetadata:
    row_count: int
    column_count: int


class TabularFile:
    """A fully parsed file; parse once, then read headers/rows/columns from it."""

    def __init__(self, frame: pd.DataFrame):
        self.frame = frame

    @property
    def headers(self) -> List[str]:
        return [str(c) for c in self.frame.columns]

    @property
    def row_count(self) -> int:
        return int(self.frame.shape[0])

    @property
    def column_count(self) -> int:
        return int(self.frame.shape[1])

    def rows(self, limit: Optional[int] = None) -> List[Dict[str, str]]:
        frame = self.frame if limit is None else self.frame.head(limit)
        return frame.to_dict(orient="records")

    def records(self) -> List[Dict[str, str]]:
        return self.rows()

    def column_values(self, column: str) -> List[str]:
        if column not in self.frame.columns:
            raise ColumnNotFound(column)
        return self.frame[column].tolist()


def _normalize_frame(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [_clean_header(c, i) for i, c in enumerate(df.columns)]
    df = df.fillna("").astype(str)
    if df.shape[1] and df.shape[0]:
        df = df.apply(lambda col: col.str.strip())
        df = df[(df != "").any(axis=1)]
    return df.reset_index(drop=True)


def _read_csv_frame(data: bytes) -> pd.DataFrame:
    text = _decode_bytes_auto(data)
    first_line = next((ln for ln in text.splitlines() if ln.strip()), "")
    if not first_line:
        raise TabularParseError("File contains no header row")
    delim = _detect_delimiter(first_line)
    try:
        return pd.read_csv(
            io.StringIO(text),
            sep=delim,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, csv.Error) as e:
        raise TabularParseError(f"Failed to parse CSV: {e}") from e


def _read_excel_frame(data: bytes) -> pd.DataFrame:
    try:
        return pd.read_excel(
            io.BytesIO(data),
            sheet_name=0,
            header=0,
            dtype=str,
        )
    except Exception as e:
        raise TabularParseError(f"Failed to read spreadsheet: {e}") from e


def load_table(data: bytes, file_type: FileType) -> TabularFile:
    """Full parse, all columns preserved."""
    if file_type == FileType.csv:
        frame = _read_csv_frame(data)
    elif file_type == FileType.xlsx:
        frame = _read_excel_frame(data)
    else:
        raise UnsupportedFileType(f"Unsupported file type '{file_type}'")
    return TabularFile(_normalize_frame(frame))


# ============================================================================
# Lightweight passes
# ============================================================================

def read_metadata(data: bytes, file_type: FileType) -> TableMetadata:
    """Row and column counts; delimited text is streamed, not materialized."""
    if file_type != FileType.csv:
        table = load_table(data, file_type)
        return TableMetadata(row_count=table.row_count, column_count=table.column_count)

    text = _decode_bytes_auto(data)
    first_line = next((ln for ln in text.splitlines() if ln.strip()), "")
    if not first_line:
        raise TabularParseError("File contains no header row")

    reader = csv.reader(io.StringIO(text), delimiter=_detect_delimiter(first_line))
    headers: List[str] = []
    row_count = 0
    try:
        for row in reader:
            if not row or all(_is_blank(x) for x in row):
                continue
            if not headers:
                headers = row
                continue
            row_count += 1
    except csv.Error as e:
        raise TabularParseError(f"Failed to parse CSV: {e}") from e

    return TableMetadata(row_count=row_count, column_count=len(headers))
