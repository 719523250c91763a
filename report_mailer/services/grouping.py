from __future__ import annotations

from collections.abc import Iterable, Sequence

from report_mailer.models.report_row import ReportRow, SubBottlerGroup

"""Group partitioning.

Rows are bucketed by their normalized ``subbottler`` value. Groups come out
in first-seen order and each group keeps its rows in input order, so the
result is a total, non-overlapping, order-preserving cover of the input.
"""

__all__ = [
    "partition_rows",
    "find_group",
]


def partition_rows(rows: Iterable[ReportRow]) -> list[SubBottlerGroup]:
    buckets: dict[str, list[ReportRow]] = {}
    for row in rows:
        # dict は挿入順を保持 -> first-seen order
        buckets.setdefault(row.subbottler, []).append(row)
    return [SubBottlerGroup(name=name, rows=tuple(members)) for name, members in buckets.items()]


def find_group(groups: Sequence[SubBottlerGroup], name: str) -> SubBottlerGroup | None:
    for group in groups:
        if group.name == name:
            return group
    return None
