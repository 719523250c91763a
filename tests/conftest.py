# Shared pytest fixtures
from __future__ import annotations
import asyncio
import tempfile
from pathlib import Path

import pandas as pd
import pytest

from report_mailer.logging.init import reset_logging
from report_mailer.models.draft import EmailDraft


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture(autouse=True)
def _clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def sample_config_yaml() -> str:
    return """batch:
  chunk_size: 5
  delay_seconds: 20
generation:
  model: gemini-flash-latest
  api_key_env: GEMINI_API_KEY
dispatch:
  from_address: "Reports <reports@example.com>"
  api_key_env: RESEND_API_KEY
recipients_file: recipients.json
export_directory: exports
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "mailer.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def sample_csv_text() -> str:
    return (
        "Bottler,Sub Bottler,Outlet Name,Installed Date,Days From Last Hit\n"
        "Acme Bottling,North,\"Acme, Inc.\",2024-03-05,12\n"
        "Acme Bottling,NaN,Corner Shop,2024-01-20,3\n"
        "Beta Drinks,South,Kiosk 7,not a date,40\n"
        "Acme Bottling,North,Mall Stand,2023-12-31,\n"
    )


@pytest.fixture()
def make_excel():
    def _make(path: Path, rows: list[list[object]], sheet: str = "Report") -> Path:
        df = pd.DataFrame(rows[1:], columns=rows[0])
        with pd.ExcelWriter(path) as writer:
            df.to_excel(writer, sheet_name=sheet, index=False)
        return path
    return _make


class FakeGenerator:
    """Records calls; fails for names in ``failures`` with the mapped exception."""

    def __init__(self, failures: dict[str, Exception] | None = None, delays: dict[str, float] | None = None):
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, group_name, rows):
        self.calls.append(group_name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(group_name, 0))
            if group_name in self.failures:
                raise self.failures[group_name]
            return EmailDraft(subject=f"Weekly Report for {group_name}", body=f"<p>{group_name}</p>")
        finally:
            self.in_flight -= 1


@pytest.fixture()
def fake_generator_cls():
    return FakeGenerator


@pytest.fixture()
def recorded_sleep():
    calls: list[float] = []

    async def _sleep(seconds: float) -> None:
        calls.append(seconds)

    _sleep.calls = calls  # type: ignore[attr-defined]
    return _sleep
