from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path

from ..models.report_row import ReportRow, SubBottlerGroup

"""Per-group CSV export.

RFC4180-style: the header line comes from the first row's keys; a field is
quoted only when it contains a comma, a double quote or a newline, and
embedded quotes are doubled. Lines are joined with ``\\n``.
"""

__all__ = [
    "rows_to_csv",
    "export_filename",
    "write_group_csv",
]

_NEEDS_QUOTING = (",", '"', "\n")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def _escape_field(value: str) -> str:
    escaped = value.replace('"', '""')
    if any(ch in value for ch in _NEEDS_QUOTING):
        return f'"{escaped}"'
    return escaped


def rows_to_csv(rows: Sequence[ReportRow]) -> str:
    """Serialize rows to CSV text; "" when there are no rows."""
    if not rows:
        return ""
    headers = list(rows[0].keys())
    lines = [",".join(_escape_field(h) for h in headers)]
    for row in rows:
        lines.append(",".join(_escape_field(row.get(h, "")) for h in headers))
    return "\n".join(lines)


def export_filename(group_name: str) -> str:
    """``Report-<name>.csv`` with non-alphanumerics as ``_``, lowercased."""
    return f"Report-{_UNSAFE_FILENAME_CHARS.sub('_', group_name).lower()}.csv"


def write_group_csv(group: SubBottlerGroup, directory: Path) -> Path | None:
    """Write one group's CSV into ``directory``; None when the group has no rows."""
    content = rows_to_csv(group.rows)
    if not content:
        return None
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(group.name)
    path.write_text(content, encoding="utf-8")
    return path
