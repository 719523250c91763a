from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

"""Batch result model for a whole-set draft generation run."""

__all__ = [
    "BatchResult",
]


@dataclass(frozen=True)
class BatchResult:
    """Aggregated outcome of ``BatchOrchestrator.generate_all``.

    Contains everything needed for the SUMMARY output line.
    """
    total_groups: int
    ready_groups: int  # ready at the end of the run
    failed_groups: int  # failed at the end of the run
    chunks: int  # chunk 数
    pauses: int  # inter-chunk pauses actually taken
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    failed_names: tuple[str, ...] = ()
