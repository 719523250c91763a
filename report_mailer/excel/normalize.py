from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

import pandas as pd

from report_mailer.excel.reader import EmptyDatasetError
from report_mailer.models.report_row import ReportRow

"""Row normalization.

Raw records from the reader carry arbitrary headers and untyped values. Each
record is normalized independently:

1. headers -> canonical keys (printable ASCII, lowercase, trimmed, runs of
   whitespace/underscore collapsed to one hyphen): "Sub Bottler" -> "sub-bottler"
2. values -> strings; the date columns ``installed-date`` / ``last-hit`` are
   rendered DD-MM-YYYY, or "Invalid Date" when the value cannot be read as a date
3. ``subbottler`` = ``sub-bottler``, falling back to ``bottler`` when the source
   value is missing, empty or the token "NAN"
4. ``bottler`` = stringified ``bottler``

Row order is preserved; nothing is dropped or merged here.
"""

__all__ = [
    "SchemaError",
    "REQUIRED_COLUMNS",
    "DATE_COLUMNS",
    "UNASSIGNED_GROUP",
    "canonical_key",
    "stringify",
    "format_date",
    "normalize_record",
    "normalize_records",
]

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("bottler", "sub-bottler")
DATE_COLUMNS = frozenset({"installed-date", "last-hit"})
INVALID_DATE = "Invalid Date"
NAN_TOKEN = "NAN"
# bottler も空のときの subbottler
UNASSIGNED_GROUP = "(unassigned)"

_NON_PRINTABLE_ASCII = re.compile(r"[^\x20-\x7E]")
_SEPARATOR_RUN = re.compile(r"[\s_]+")
_DATE_LIKE = re.compile(r"^\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4}(?:[ T]\S.*)?$")


class SchemaError(Exception):
    """Raised when mandatory columns are absent after header normalization."""

    def __init__(self, missing: Sequence[str], found: Sequence[str]) -> None:
        self.missing = list(missing)
        self.found = list(found)
        names = ", ".join(f"'{c}'" for c in self.missing)
        super().__init__(
            f"The file is missing the required column(s): {names}. "
            f"Please ensure your column headers are correct. Found headers: [{', '.join(self.found)}]."
        )


def canonical_key(header: Any) -> str:
    """Normalize a column header. Idempotent on already-canonical keys."""
    key = _NON_PRINTABLE_ASCII.sub("", str(header))
    return _SEPARATOR_RUN.sub("-", key.lower().strip())


def stringify(value: Any) -> str:
    """Total, non-throwing conversion of a cell value to text."""
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return str(value)
    if value is pd.NaT:
        return ""
    return str(value)


def _render_date(value: date) -> str:
    return f"{value.day:02d}-{value.month:02d}-{value.year:04d}"


def format_date(value: Any) -> str:
    """Render a date-column value as DD-MM-YYYY.

    Date objects are formatted directly. Text that looks like a date is parsed;
    when parsing fails the result is "Invalid Date". Any other value is
    stringified unchanged.
    """
    if value is pd.NaT:
        return INVALID_DATE
    if isinstance(value, (datetime, date)):
        return _render_date(value)
    if isinstance(value, str):
        text = value.strip()
        if _DATE_LIKE.match(text):
            parsed = pd.to_datetime(text, errors="coerce")
            if pd.isna(parsed):
                return INVALID_DATE
            return _render_date(parsed)
    return stringify(value)


def _is_blank_group(value: str) -> bool:
    text = value.strip()
    return text == "" or text.upper() == NAN_TOKEN


def normalize_record(raw: Mapping[Any, Any]) -> ReportRow:
    canonical: dict[str, Any] = {}
    for key, value in raw.items():
        canonical[canonical_key(key)] = value

    columns: dict[str, str] = {}
    for key, value in canonical.items():
        if key in DATE_COLUMNS:
            columns[key] = format_date(value)
        else:
            columns[key] = stringify(value)

    bottler = stringify(canonical.get("bottler"))
    subbottler = stringify(canonical.get("sub-bottler"))
    if _is_blank_group(subbottler):
        subbottler = bottler if not _is_blank_group(bottler) else UNASSIGNED_GROUP

    return ReportRow(columns=columns, bottler=bottler, subbottler=subbottler)


def normalize_records(records: Sequence[Mapping[Any, Any]]) -> list[ReportRow]:
    """Normalize raw records into ReportRows of equal length and order.

    Raises:
        EmptyDatasetError: no records
        SchemaError: the first record lacks ``bottler`` or ``sub-bottler``
            (all records are assumed to share the first record's schema)
    """
    if not records:
        raise EmptyDatasetError("The uploaded file is empty or in an unsupported format.")

    first_keys = [canonical_key(k) for k in records[0].keys()]
    missing = [col for col in REQUIRED_COLUMNS if col not in first_keys]
    if missing:
        raise SchemaError(missing, first_keys)

    rows = [normalize_record(raw) for raw in records]
    logger.debug(f"normalized {len(rows)} rows columns={first_keys}")
    return rows
