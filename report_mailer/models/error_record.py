from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

"""Per-group failure record.

One record per failed generation or rejected dispatch, serialized as one JSON
object per line with exactly the keys timestamp, file, group, error_type and
message.
"""

__all__ = [
    "ErrorRecord",
    "utc_timestamp",
]


def utc_timestamp() -> str:
    """ISO8601 UTC with a ``Z`` suffix, e.g. ``2024-03-05T10:00:00.123456Z``."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ErrorRecord:
    file: str  # report filename ("" when unknown)
    group: str
    error_type: str  # GENERATION_<KIND> | DISPATCH_REJECTED
    message: str
    timestamp: str = field(default_factory=utc_timestamp)

    @classmethod
    def create(cls, file: str, group: str, error_type: str, message: str) -> ErrorRecord:
        return cls(file=file, group=group, error_type=error_type, message=message)

    def to_json_line(self) -> str:
        data = asdict(self)
        ordered = {key: data[key] for key in ("timestamp", "file", "group", "error_type", "message")}
        return json.dumps(ordered, ensure_ascii=False)
