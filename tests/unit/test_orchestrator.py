from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from report_mailer.logging.error_log import ErrorLogBuffer
from report_mailer.models.draft import DraftState, DraftStatus, EmailDraft
from report_mailer.models.report_row import ReportRow, SubBottlerGroup
from report_mailer.services.draft_store import DraftStateStore
from report_mailer.services.generation import GenerationError, GenerationErrorKind
from report_mailer.services.orchestrator import BatchOrchestrator, chunk_groups


def _groups(n: int) -> list[SubBottlerGroup]:
    return [
        SubBottlerGroup(name=f"G{i:02d}", rows=(ReportRow(columns={"n": str(i)}, bottler="B", subbottler=f"G{i:02d}"),))
        for i in range(n)
    ]


def _orchestrator(generator, groups, sleep, **kwargs) -> BatchOrchestrator:
    store = DraftStateStore(g.name for g in groups)
    return BatchOrchestrator(generator, store, sleep=sleep, **kwargs)


def test_chunk_groups_sizes():
    chunks = chunk_groups(_groups(12), 5)
    assert [len(c) for c in chunks] == [5, 5, 2]
    assert [g.name for c in chunks for g in c] == [g.name for g in _groups(12)]


def test_chunk_groups_edge_cases():
    assert chunk_groups([], 5) == []
    assert [len(c) for c in chunk_groups(_groups(5), 5)] == [5]
    with pytest.raises(ValueError):
        chunk_groups(_groups(3), 0)


def test_generate_all_twelve_groups_three_chunks_two_pauses(fake_generator_cls, recorded_sleep):
    groups = _groups(12)
    gen = fake_generator_cls()
    orch = _orchestrator(gen, groups, recorded_sleep, chunk_size=5, delay_seconds=20)

    result = asyncio.run(orch.generate_all(groups))

    assert sorted(gen.calls) == [g.name for g in groups]
    assert recorded_sleep.calls == [20, 20]
    assert result.chunks == 3
    assert result.pauses == 2
    assert result.total_groups == 12
    assert result.ready_groups == 12
    assert result.failed_groups == 0
    assert all(orch.store.get(g.name).status is DraftStatus.READY for g in groups)


def test_single_chunk_has_no_pause(fake_generator_cls, recorded_sleep):
    groups = _groups(4)
    orch = _orchestrator(fake_generator_cls(), groups, recorded_sleep, chunk_size=5, delay_seconds=20)
    result = asyncio.run(orch.generate_all(groups))
    assert recorded_sleep.calls == []
    assert result.pauses == 0
    assert result.chunks == 1


def test_chunks_run_concurrently_and_strictly_in_sequence():
    events: list[str] = []

    class Tracing:
        in_flight = 0
        max_in_flight = 0

        async def generate(self, name, rows):
            Tracing.in_flight += 1
            Tracing.max_in_flight = max(Tracing.max_in_flight, Tracing.in_flight)
            events.append(f"start:{name}")
            # 後の要素ほど早く終わる
            await asyncio.sleep(0.001 * (10 - int(name[1:]) % 5))
            events.append(f"end:{name}")
            Tracing.in_flight -= 1
            return EmailDraft(subject=name, body="<p/>")

    async def sleep(seconds):
        events.append("pause")

    groups = _groups(12)
    orch = _orchestrator(Tracing(), groups, sleep, chunk_size=5, delay_seconds=20)
    asyncio.run(orch.generate_all(groups))

    assert Tracing.max_in_flight == 5
    pause_idx = [i for i, e in enumerate(events) if e == "pause"]
    assert len(pause_idx) == 2
    first, second = pause_idx
    chunk1 = {f"G{i:02d}" for i in range(5)}
    chunk2 = {f"G{i:02d}" for i in range(5, 10)}
    # chunk N settles completely before its pause; chunk N+1 starts after it
    assert {e.split(":")[1] for e in events[:first]} == chunk1
    assert len(events[:first]) == 10
    assert {e.split(":")[1] for e in events[first + 1:second]} == chunk2
    assert {e.split(":")[1] for e in events[second + 1:]} == {"G10", "G11"}


def test_failure_is_isolated_per_group(fake_generator_cls, recorded_sleep, tmp_path: Path):
    groups = _groups(7)
    quota = GenerationError(GenerationErrorKind.QUOTA_EXCEEDED, "quota exceeded")
    gen = fake_generator_cls(failures={"G01": quota, "G05": RuntimeError("boom")}, delays={"G02": 0.01})
    surfaced: list[tuple[str, str]] = []
    error_log = ErrorLogBuffer(logs_dir=tmp_path / "logs")
    orch = _orchestrator(
        gen, groups, recorded_sleep, chunk_size=5, delay_seconds=1,
        error_log=error_log, source_name="report.xlsx",
        on_error=lambda name, msg: surfaced.append((name, msg)),
    )

    result = asyncio.run(orch.generate_all(groups))

    assert len(gen.calls) == 7
    assert orch.store.get("G01").status is DraftStatus.FAILED
    assert orch.store.get("G01").error == "quota exceeded"
    assert orch.store.get("G05").status is DraftStatus.FAILED
    assert "boom" in orch.store.get("G05").error
    for name in ["G00", "G02", "G03", "G04", "G06"]:
        assert orch.store.get(name).status is DraftStatus.READY
    assert result.failed_names == ("G01", "G05")
    assert result.ready_groups == 5
    assert {name for name, _ in surfaced} == {"G01", "G05"}
    assert orch.last_error is not None

    logs = list((tmp_path / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    lines = [json.loads(line) for line in logs[0].read_text(encoding="utf-8").splitlines()]
    assert {(r["group"], r["error_type"]) for r in lines} == {
        ("G01", "GENERATION_QUOTA_EXCEEDED"),
        ("G05", "GENERATION_UNSPECIFIED"),
    }
    assert all(r["file"] == "report.xlsx" for r in lines)


def test_no_error_log_written_when_all_succeed(fake_generator_cls, recorded_sleep, tmp_path: Path):
    groups = _groups(2)
    orch = _orchestrator(
        fake_generator_cls(), groups, recorded_sleep, error_log=ErrorLogBuffer(logs_dir=tmp_path / "logs")
    )
    asyncio.run(orch.generate_all(groups))
    assert not (tmp_path / "logs").exists()


def test_generate_one_regenerates_failed_group(recorded_sleep):
    attempts: dict[str, int] = {}

    class Flaky:
        async def generate(self, name, rows):
            attempts[name] = attempts.get(name, 0) + 1
            if attempts[name] == 1:
                raise Exception("429 RESOURCE_EXHAUSTED")
            return EmailDraft(subject=f"Weekly Report for {name}", body="<p>ok</p>")

    groups = _groups(1)
    orch = _orchestrator(Flaky(), groups, recorded_sleep)
    state = asyncio.run(orch.generate_one(groups[0]))
    assert state.status is DraftStatus.FAILED
    assert "quota" in state.error

    state = asyncio.run(orch.generate_one(groups[0]))
    assert state.status is DraftStatus.READY
    assert state.draft.body == "<p>ok</p>"
    assert state.epoch == 2


def test_single_regeneration_during_batch_wins(recorded_sleep):
    calls: list[str] = []

    class SlowFirst:
        async def generate(self, name, rows):
            calls.append(name)
            if len(calls) == 1:
                await asyncio.sleep(0.05)
                return EmailDraft(subject=name, body="<p>old</p>")
            return EmailDraft(subject=name, body="<p>new</p>")

    groups = _groups(1)
    orch = _orchestrator(SlowFirst(), groups, recorded_sleep)

    async def scenario():
        batch = asyncio.create_task(orch.generate_all(groups))
        await asyncio.sleep(0.01)
        await orch.generate_one(groups[0])
        return await batch

    result = asyncio.run(scenario())
    state = orch.store.get("G00")
    assert calls == ["G00", "G00"]
    assert state.status is DraftStatus.READY
    assert state.draft.body == "<p>new</p>"
    assert result.ready_groups == 1


def test_invalid_pacing_parameters(fake_generator_cls):
    store = DraftStateStore()
    with pytest.raises(ValueError):
        BatchOrchestrator(fake_generator_cls(), store, chunk_size=0)
    with pytest.raises(ValueError):
        BatchOrchestrator(fake_generator_cls(), store, delay_seconds=-1)


def test_batch_of_replaced_dataset_stops_and_leaves_new_states_alone(recorded_sleep):
    class Slow:
        def __init__(self):
            self.calls: list[str] = []

        async def generate(self, name, rows):
            self.calls.append(name)
            await asyncio.sleep(0.05)
            return EmailDraft(subject=name, body="<p>old dataset</p>")

    groups = _groups(7)
    gen = Slow()
    orch = _orchestrator(gen, groups, recorded_sleep, chunk_size=5)

    async def scenario():
        batch = asyncio.create_task(orch.generate_all(groups))
        await asyncio.sleep(0.01)
        # 新しいファイルの取り込み: 同名グループ G00 と新規グループ
        orch.store.reset(["G00", "NEW"])
        return await batch

    result = asyncio.run(scenario())
    assert len(gen.calls) == 5
    assert recorded_sleep.calls == []
    assert orch.store.get("G00") == DraftState()
    assert orch.store.get("NEW").status is DraftStatus.PENDING
    assert result.ready_groups == 0
    assert result.failed_groups == 0
