from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime

from ..logging.error_log import ErrorLogBuffer
from ..models.batch_result import BatchResult
from ..models.config_models import DEFAULT_CHUNK_SIZE, DEFAULT_DELAY_SECONDS
from ..models.draft import DraftState, DraftStatus
from ..models.report_row import SubBottlerGroup
from .draft_store import DraftStateStore
from .generation import DraftGenerator, classify_generation_error
from .progress import BatchProgress

"""Batch orchestration for draft generation.

``generate_all`` splits the groups into fixed-size chunks and processes the
chunks strictly in sequence:

1. every group of the chunk is issued at once (``asyncio.gather``)
2. the orchestrator waits until all of them settled, success or failure
3. unless this was the last chunk, it pauses ``delay_seconds``

so at most ``chunk_size`` requests start per ``delay_seconds`` window, which
keeps the run under the provider's requests-per-minute quota.

``generate_one`` drives a single group through pending -> ready | failed. Any
exception from the generator is caught there and recorded against that group
only; sibling groups in the same or later chunks are always attempted.

When the store is reset to a new dataset while a run is in flight, the run
stops at the next chunk boundary and its late completions are discarded.
"""

__all__ = [
    "BatchOrchestrator",
    "chunk_groups",
]

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[object]]


def chunk_groups(groups: Sequence[SubBottlerGroup], size: int) -> list[list[SubBottlerGroup]]:
    """Partition ``groups`` into consecutive chunks of ``size`` (last may be shorter)."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    return [list(groups[i:i + size]) for i in range(0, len(groups), size)]


class BatchOrchestrator:
    """Rate-limited, failure-isolated draft generation over a DraftStateStore.

    Args:
        generator: external generation collaborator
        store: state container shared with the caller (mutated by key only)
        chunk_size: groups generated concurrently per chunk
        delay_seconds: pause between consecutive chunks
        error_log: buffer receiving one ErrorRecord per failed generation
        source_name: report filename stamped on error records
        sleep: timed suspension used for the pause (injectable for tests)
        on_error: called with the user-facing message of every failure
    """

    def __init__(
        self,
        generator: DraftGenerator,
        store: DraftStateStore,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        error_log: ErrorLogBuffer | None = None,
        source_name: str = "",
        sleep: SleepFn = asyncio.sleep,
        on_error: Callable[[str, str], None] | None = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk size must be >= 1, got {chunk_size}")
        if delay_seconds < 0:
            raise ValueError(f"delay must be >= 0, got {delay_seconds}")
        self.generator = generator
        self.store = store
        self.chunk_size = chunk_size
        self.delay_seconds = delay_seconds
        self.error_log = error_log
        self.source_name = source_name
        self._sleep = sleep
        self._on_error = on_error
        self.last_error: str | None = None

    def _surface_failure(self, group_name: str, error_type: str, message: str) -> None:
        self.last_error = message
        if self.error_log is not None:
            self.error_log.record(self.source_name, group_name, error_type, message)
        if self._on_error is not None:
            self._on_error(group_name, message)

    def _state_of(self, name: str) -> DraftState:
        # reset 後に消えたグループは未生成として扱う
        return self.store.get(name) if name in self.store else DraftState()

    async def generate_one(self, group: SubBottlerGroup) -> DraftState:
        """Generate (or regenerate) one group's draft.

        Never raises for generation failures: the group ends ``failed`` and
        the message is surfaced through ``last_error`` / ``on_error``.
        """
        epoch = self.store.begin(group.name)
        logger.debug(f"generating draft group={group.name} rows={len(group.rows)} epoch={epoch}")
        try:
            draft = await self.generator.generate(group.name, group.rows)
        except Exception as e:
            err = classify_generation_error(e)
            logger.error(f"Failed to generate draft for {group.name}: {err}")
            if self.store.fail(group.name, epoch, str(err)):
                self._surface_failure(group.name, err.error_type, str(err))
            return self._state_of(group.name)

        if self.store.complete(group.name, epoch, draft):
            logger.debug(f"draft ready group={group.name}")
        return self._state_of(group.name)

    async def _generate_tracked(self, group: SubBottlerGroup, progress: BatchProgress, dataset_id: int) -> DraftState:
        if self.store.dataset_id != dataset_id:
            return DraftState()
        state = await self.generate_one(group)
        progress.group_settled(ready=state.status is DraftStatus.READY)
        return state

    async def generate_all(self, groups: Sequence[SubBottlerGroup]) -> BatchResult:
        """Generate drafts for every group, chunk by chunk, pausing between chunks."""
        start_time = datetime.now(UTC)
        chunks = chunk_groups(groups, self.chunk_size)
        dataset_id = self.store.dataset_id
        pauses = 0

        with BatchProgress(len(groups), len(chunks)) as progress:
            for index, chunk in enumerate(chunks):
                if self.store.dataset_id != dataset_id:
                    logger.info(f"dataset replaced; stopping batch before chunk {index + 1}/{len(chunks)}")
                    break
                names = [g.name for g in chunk]
                logger.info(f"chunk {index + 1}/{len(chunks)}: {', '.join(names)}")
                progress.begin_chunk(names)

                # chunk 内は並行、全件 settle まで待つ
                states = await asyncio.gather(*(self._generate_tracked(g, progress, dataset_id) for g in chunk))

                progress.end_chunk(
                    ready=sum(1 for s in states if s.status is DraftStatus.READY),
                    failed=sum(1 for s in states if s.status is DraftStatus.FAILED),
                )
                if self.store.dataset_id != dataset_id:
                    logger.info(f"dataset replaced; stopping batch after chunk {index + 1}/{len(chunks)}")
                    break

                if index < len(chunks) - 1:
                    logger.info(f"pausing {self.delay_seconds:g}s before next chunk (rate limit)")
                    await self._sleep(self.delay_seconds)
                    pauses += 1

        if self.error_log is not None:
            try:
                path = self.error_log.flush()
            except OSError as e:
                # error log の書き込み失敗でバッチ結果は失わない
                logger.warning(f"failed to write error log: {e}")
            else:
                if path is not None:
                    logger.info(f"error details written to {path}")

        end_time = datetime.now(UTC)
        superseded = self.store.dataset_id != dataset_id
        final = {g.name: DraftState() if superseded else self._state_of(g.name) for g in groups}
        failed_names = tuple(name for name, s in final.items() if s.status is DraftStatus.FAILED)
        return BatchResult(
            total_groups=len(groups),
            ready_groups=sum(1 for s in final.values() if s.status is DraftStatus.READY),
            failed_groups=len(failed_names),
            chunks=len(chunks),
            pauses=pauses,
            start_time=start_time,
            end_time=end_time,
            elapsed_seconds=(end_time - start_time).total_seconds(),
            failed_names=failed_names,
        )
