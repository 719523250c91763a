from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any

import pandas as pd

"""Report file reader.

Turns an uploaded payload into raw, untyped records (header -> scalar):

- ``.csv`` payloads are text. A leading BOM is stripped and, when the first
  line uses semicolons but no commas, every semicolon is rewritten to a comma
  before parsing.
- Anything else is a binary workbook; only the first sheet is read.

Empty cells become ``None`` and fully empty rows are skipped. Literal strings
such as "NA" / "NaN" are kept as text (pandas' default NA conversion is
disabled); interpreting them is the normalizer's job.
"""

__all__ = [
    "EmptyDatasetError",
    "ReadError",
    "preprocess_text_payload",
    "read_report",
    "read_report_file",
]

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = (".csv",)
BOM = "\ufeff"


class EmptyDatasetError(Exception):
    """Raised when the file has no sheet or no data rows."""


class ReadError(Exception):
    """Raised when the payload cannot be read or parsed at all."""


def preprocess_text_payload(text: str) -> str:
    """Strip a leading BOM and normalize a semicolon-delimited CSV to commas."""
    if text.startswith(BOM):
        text = text[len(BOM):]
    first_line = text.split("\n", 1)[0]
    if ";" in first_line and "," not in first_line:
        text = text.replace(";", ",")
    return text


def is_text_payload(filename: str) -> bool:
    return filename.lower().endswith(TEXT_EXTENSIONS)


def _frame_to_records(df: pd.DataFrame) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    for raw in df.to_dict(orient="records"):
        row: dict[str, Any] = {}
        for col, val in raw.items():
            # NaN / NaT -> None
            if pd.isna(val):
                row[str(col)] = None
            else:
                row[str(col)] = val
        if all(v is None for v in row.values()):
            continue
        records.append(row)
    return records


def _read_text(payload: bytes | str) -> pd.DataFrame:
    if isinstance(payload, bytes):
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ReadError(f"Could not read the file content: {e}") from e
    else:
        text = payload
    text = preprocess_text_payload(text)
    try:
        return pd.read_csv(
            io.StringIO(text), dtype=str, keep_default_na=False, na_values=[""], skip_blank_lines=True
        )
    except pd.errors.EmptyDataError as e:
        raise EmptyDatasetError("The uploaded file is empty or in an unsupported format.") from e
    except pd.errors.ParserError as e:
        raise ReadError(f"Could not parse the CSV content: {e}") from e


def _read_workbook(payload: bytes) -> pd.DataFrame:
    # pandas はエンジン (openpyxl / xlrd) 固有の例外をそのまま投げるのでまとめて ReadError にする
    try:
        xls = pd.ExcelFile(io.BytesIO(payload))
    except ImportError as e:
        raise ReadError(f"No reader is available for this workbook format: {e}") from e
    except Exception as e:
        raise ReadError(f"Could not read the workbook: {e}") from e
    if not xls.sheet_names:
        raise EmptyDatasetError("The file does not contain any sheets.")
    sheet_name = xls.sheet_names[0]
    logger.debug(f"reading first sheet '{sheet_name}' of {len(xls.sheet_names)}")
    try:
        return xls.parse(sheet_name, keep_default_na=False, na_values=[""])
    except Exception as e:
        raise ReadError(f"Could not read sheet '{sheet_name}': {e}") from e


def read_report(payload: bytes | str, filename: str) -> list[dict[str, Any]]:
    """Read a report payload into raw records.

    Parameters
    ----------
    payload: file content (text for .csv, raw bytes otherwise)
    filename: original file name; its extension selects the text or binary path

    Raises
    ------
    EmptyDatasetError: no sheet, or no data rows
    ReadError: the payload cannot be decoded or parsed
    """
    if is_text_payload(filename) or isinstance(payload, str):
        df = _read_text(payload)
    else:
        df = _read_workbook(payload)

    records = _frame_to_records(df)
    if not records:
        raise EmptyDatasetError("The uploaded file is empty or in an unsupported format.")
    logger.debug(f"read {len(records)} records from {filename} columns={list(df.columns)}")
    return records


def read_report_file(path: Path) -> list[dict[str, Any]]:
    """Read a report from disk. I/O failures surface as ReadError."""
    try:
        payload = path.read_bytes()
    except OSError as e:
        raise ReadError(
            f"Failed to read the file. It might be corrupted or in use by another program. ({e})"
        ) from e
    return read_report(payload, path.name)
