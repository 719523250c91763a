from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from report_mailer.models.error_record import ErrorRecord

"""Buffered JSON Lines error log.

Failures of one batch run are collected in memory and written together when
the run ends. The file ``errors-YYYYMMDD-HHMMSS.log`` (UTC, first write time)
is created only when there is something to write; later flushes of the same
buffer append to it.
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

DEFAULT_LOGS_DIR = Path("logs")


class ErrorLogBuffer:
    def __init__(self, logs_dir: Path | None = None) -> None:
        self.logs_dir = logs_dir if logs_dir is not None else DEFAULT_LOGS_DIR
        self._pending: list[ErrorRecord] = []
        self._target: Path | None = None

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def records(self) -> list[ErrorRecord]:
        return list(self._pending)

    @property
    def file_path(self) -> Path | None:
        """Log file written so far, or None before the first non-empty flush."""
        return self._target

    def append(self, record: ErrorRecord) -> None:
        self._pending.append(record)

    def record(self, file: str, group: str, error_type: str, message: str) -> ErrorRecord:
        rec = ErrorRecord.create(file, group, error_type, message)
        self._pending.append(rec)
        return rec

    def _resolve_target(self) -> Path:
        if self._target is None:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
            self._target = self.logs_dir / f"errors-{stamp}.log"
        return self._target

    def flush(self) -> Path | None:
        """Append pending records to the log file.

        Returns:
            the log file path, or None when nothing was pending (no file is created)

        Raises:
            OSError: the log directory or file cannot be written; pending
                records are kept so a later flush can retry
        """
        if not self._pending:
            return None
        target = self._resolve_target()
        payload = "".join(rec.to_json_line() + "\n" for rec in self._pending)
        with target.open("a", encoding="utf-8") as fh:
            fh.write(payload)
        self._pending.clear()
        return target
