from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ..excel.normalize import SchemaError, normalize_records
from ..excel.reader import EmptyDatasetError, ReadError, read_report, read_report_file
from ..logging.error_log import ErrorLogBuffer
from ..models.batch_result import BatchResult
from ..models.config_models import BatchConfig
from ..models.draft import DraftState
from ..models.report_row import ReportRow, SubBottlerGroup
from .draft_store import DraftStateStore, UnknownGroupError
from .generation import DraftGenerator
from .grouping import find_group, partition_rows
from .orchestrator import BatchOrchestrator, SleepFn

"""Report session: one uploaded file from ingestion to drafts.

Owns the rows, the groups and the DraftStateStore of the current dataset.
A new ingestion (or ``reset``) discards all of them first, so an aborted
ingestion never leaves partial rows or groups behind; the error message stays
in ``session.error`` and the caller may retry with another file.
"""

__all__ = [
    "IngestionError",
    "ReportSession",
]

logger = logging.getLogger(__name__)

IngestionError = (EmptyDatasetError, SchemaError, ReadError)


class ReportSession:
    def __init__(
        self,
        generator: DraftGenerator,
        batch: BatchConfig | None = None,
        *,
        error_log: ErrorLogBuffer | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        batch = batch or BatchConfig()
        self.rows: list[ReportRow] = []
        self.groups: list[SubBottlerGroup] = []
        self.store = DraftStateStore()
        self.source_name = ""
        self.error: str | None = None
        self.orchestrator = BatchOrchestrator(
            generator,
            self.store,
            chunk_size=batch.chunk_size,
            delay_seconds=batch.delay_seconds,
            error_log=error_log,
            sleep=sleep,
            on_error=self._on_generation_error,
        )

    def _on_generation_error(self, group_name: str, message: str) -> None:
        self.error = message

    def reset(self) -> None:
        self.rows = []
        self.groups = []
        self.store.reset()
        self.source_name = ""
        self.error = None
        self.orchestrator.last_error = None

    def _load(self, records: list[dict], source_name: str) -> list[SubBottlerGroup]:
        rows = normalize_records(records)
        groups = partition_rows(rows)
        self.rows = rows
        self.groups = groups
        self.store.reset(g.name for g in groups)
        self.source_name = source_name
        self.orchestrator.source_name = source_name
        logger.info(f"ingested {source_name}: rows={len(rows)} groups={len(groups)}")
        return groups

    def ingest(self, payload: bytes | str, filename: str) -> list[SubBottlerGroup]:
        """Read, normalize and group a payload; every group starts ``pending``.

        Raises:
            EmptyDatasetError, SchemaError, ReadError: ingestion aborted; the
                session is left empty with ``error`` set
        """
        self.reset()
        try:
            return self._load(read_report(payload, filename), filename)
        except IngestionError as e:
            self.error = str(e)
            raise

    def ingest_file(self, path: Path) -> list[SubBottlerGroup]:
        self.reset()
        try:
            return self._load(read_report_file(path), path.name)
        except IngestionError as e:
            self.error = str(e)
            raise

    async def generate_all(self) -> BatchResult:
        """Generate (or regenerate) every group's draft."""
        return await self.orchestrator.generate_all(self.groups)

    async def regenerate(self, group_name: str) -> DraftState:
        group = find_group(self.groups, group_name)
        if group is None:
            raise UnknownGroupError(group_name)
        # 直前のエラー表示をクリアしてから再試行
        self.error = None
        self.orchestrator.last_error = None
        return await self.orchestrator.generate_one(group)
