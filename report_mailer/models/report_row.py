from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

"""ReportRow / SubBottlerGroup models.

A ReportRow is one normalized record of the uploaded report. The column set
varies by file, so the row is an ordered ``str -> str`` mapping over the
canonical column names, with the two grouping fields ``bottler`` and
``subbottler`` always present on top of it.
"""

__all__ = [
    "ReportRow",
    "SubBottlerGroup",
]


@dataclass(frozen=True, eq=False)
class ReportRow(Mapping[str, str]):
    """Logical representation of a single report row after normalization.

    ``columns`` keeps the canonical source columns in source order. Iterating
    the row yields those keys followed by ``subbottler`` and ``bottler``
    (a source ``bottler`` column keeps its original position).

    The row is read-only: ``columns`` is copied into a read-only view when the
    row is built.
    """
    columns: Mapping[str, str] = field(default_factory=dict)
    bottler: str = ""
    subbottler: str = ""
    _merged: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        merged = dict(self.columns)
        merged["subbottler"] = self.subbottler
        merged["bottler"] = self.bottler
        object.__setattr__(self, "columns", MappingProxyType(dict(self.columns)))
        object.__setattr__(self, "_merged", MappingProxyType(merged))

    def __getitem__(self, key: str) -> str:
        return self._merged[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._merged)

    def __len__(self) -> int:
        return len(self._merged)

    def to_dict(self) -> dict[str, str]:
        return dict(self._merged)


@dataclass(frozen=True)
class SubBottlerGroup:
    """All rows sharing one ``subbottler`` value, in input order."""
    name: str
    rows: tuple[ReportRow, ...] = ()

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self.rows)
