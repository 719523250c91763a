from __future__ import annotations

import sys
from collections.abc import Sequence
from typing import Any

from tqdm import tqdm

"""Terminal progress for a batch run (TTY only).

One tqdm bar counts settled groups across the whole run. Each chunk also
prints a one-line header and result, e.g.::

    Chunk 2/3 (5): North, South, ... ready=4 failed=1

Nothing is drawn when stdout is not a terminal (CI, redirected output); the
log lines carry the same information there.
"""

__all__ = [
    "BatchProgress",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class BatchProgress:
    """Progress of ``generate_all``: a group bar plus per-chunk lines."""

    def __init__(self, total_groups: int, total_chunks: int, *, description: str = "Drafting") -> None:
        self.total_groups = total_groups
        self.total_chunks = total_chunks
        self.description = description
        self.chunk_index = 0
        self.settled = 0
        self.ready = 0
        self.failed = 0
        self.enabled = is_tty_enabled()
        self._bar: Any = None
        if self.enabled:
            self._bar = tqdm(total=total_groups, desc=description, unit="group", ncols=80, ascii=True, leave=True)

    def begin_chunk(self, names: Sequence[str]) -> None:
        self.chunk_index += 1
        if self.enabled:
            tqdm.write(f"Chunk {self.chunk_index}/{self.total_chunks} ({len(names)}): {', '.join(names)}")

    def group_settled(self, ready: bool) -> None:
        # chunk 内のグループは並行に完了するので完了順にカウント
        self.settled += 1
        if ready:
            self.ready += 1
        else:
            self.failed += 1
        if self._bar is not None:
            self._bar.update(1)
            self._bar.set_postfix(ready=self.ready, failed=self.failed)

    def end_chunk(self, ready: int, failed: int) -> None:
        if self.enabled:
            tqdm.write(f"  ready={ready} failed={failed}")

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None

    def __enter__(self) -> BatchProgress:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
