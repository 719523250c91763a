from __future__ import annotations

from ..models.batch_result import BatchResult

"""SUMMARY line rendering."""

__all__ = [
    "render_summary_fields",
    "render_summary_line",
]


def _format_seconds(value: float) -> str:
    if value == int(value):
        return str(int(value))
    # 小さい値でも指数表記にしない
    digits = 6 if value < 0.01 else 2
    return f"{value:.{digits}f}".rstrip("0").rstrip(".")


def render_summary_fields(result: BatchResult) -> str:
    return " ".join(
        f"{key}={value}"
        for key, value in (
            ("groups", result.total_groups),
            ("ready", result.ready_groups),
            ("failed", result.failed_groups),
            ("chunks", result.chunks),
            ("pauses", result.pauses),
            ("elapsed_sec", _format_seconds(result.elapsed_seconds)),
        )
    )


def render_summary_line(result: BatchResult) -> str:
    """Render the one-line result of a batch run.

    >>> from datetime import datetime, timezone
    >>> t = datetime(2024, 1, 1, tzinfo=timezone.utc)
    >>> render_summary_line(BatchResult(12, 11, 1, 3, 2, t, t, 40.0))
    'SUMMARY groups=12 ready=11 failed=1 chunks=3 pauses=2 elapsed_sec=40'
    """
    return f"SUMMARY {render_summary_fields(result)}"
