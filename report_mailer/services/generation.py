from __future__ import annotations

import html
import logging
import os
import re
from collections.abc import Sequence
from enum import Enum
from typing import Protocol

from google import genai
from google.genai import errors as genai_errors

from report_mailer.models.config_models import GenerationConfig
from report_mailer.models.draft import EmailDraft
from report_mailer.models.report_row import ReportRow

"""Draft generation collaborator.

Request: (group name, ordered rows). The rows are sorted descending by
"days from last hit" (missing / non-numeric -> 0) and rendered as an inline-styled
HTML table embedded in the prompt; the stored rows are not touched.
Response: ``EmailDraft(subject, body_html)`` or a ``GenerationError`` whose
``kind`` selects the user-facing message.
"""

__all__ = [
    "DraftGenerator",
    "GeminiDraftGenerator",
    "GenerationError",
    "GenerationErrorKind",
    "DAYS_FROM_LAST_HIT",
    "sort_rows_for_prompt",
    "rows_to_html_table",
    "build_prompt",
    "build_subject",
    "clean_html_body",
    "classify_generation_error",
]

logger = logging.getLogger(__name__)

DAYS_FROM_LAST_HIT = "days-from-last-hit"

_TABLE_STYLE = "border-collapse: collapse; width: 100%; font-family: sans-serif; font-size: 14px;"
_TH_STYLE = "border: 1px solid #ddd; padding: 8px; text-align: left; background-color: #f2f2f2; color: #333;"
_TD_STYLE = "border: 1px solid #ddd; padding: 8px;"
_FENCE_OPEN = re.compile(r"^```html\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


class GenerationErrorKind(Enum):
    INVALID_CREDENTIAL = "invalid_credential"
    QUOTA_EXCEEDED = "quota_exceeded"
    NETWORK = "network"
    UNSPECIFIED = "unspecified"


class GenerationError(Exception):
    """Generation failed; ``str(err)`` is the message shown to the user."""

    def __init__(self, kind: GenerationErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def error_type(self) -> str:
        return f"GENERATION_{self.kind.name}"


class DraftGenerator(Protocol):
    async def generate(self, group_name: str, rows: Sequence[ReportRow]) -> EmailDraft: ...


def _days_from_last_hit(row: ReportRow) -> float:
    try:
        value = float(row.get(DAYS_FROM_LAST_HIT, "") or 0)
    except ValueError:
        return 0.0
    # NaN 比較は順序を壊すので 0 扱い
    return value if value == value else 0.0


def sort_rows_for_prompt(rows: Sequence[ReportRow]) -> list[ReportRow]:
    """Copy of ``rows`` sorted descending by days-from-last-hit (stable)."""
    return sorted(rows, key=_days_from_last_hit, reverse=True)


def rows_to_html_table(rows: Sequence[ReportRow]) -> str:
    if not rows:
        return "<p>No data available for this report.</p>"
    headers = list(rows[0].keys())
    header_row = "".join(f'<th style="{_TH_STYLE}">{html.escape(h)}</th>' for h in headers)
    body_rows = "".join(
        "<tr>" + "".join(f'<td style="{_TD_STYLE}">{html.escape(row.get(h, ""))}</td>' for h in headers) + "</tr>"
        for row in rows
    )
    return (
        f'<table style="{_TABLE_STYLE}"><thead><tr>{header_row}</tr></thead>'
        f"<tbody>{body_rows}</tbody></table>"
    )


def build_subject(group_name: str) -> str:
    return f"Weekly Report for {group_name}"


def build_prompt(group_name: str, rows: Sequence[ReportRow]) -> str:
    html_table = rows_to_html_table(sort_rows_for_prompt(rows))
    return f"""
You are a professional business operations assistant. Your task is to compose the body of a professional email.

**Instructions:**
1.  Start with a polite and friendly greeting addressed to the {group_name} team.
2.  State clearly that their weekly report data is included in this email.
3.  Keep the tone professional and concise.
4.  End with a professional closing (e.g., "Best regards,"). Do not add a name or signature line.
5.  After your written text, include the provided HTML table.
6.  The final output should be a single block of HTML, starting with your written paragraphs inside <p> tags, followed by the table. Do not wrap the entire response in markdown backticks.

**HTML Table to include:**
{html_table}
"""


def clean_html_body(raw_body: str) -> str:
    """Strip a leading ```html fence and a trailing ``` fence."""
    return _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", raw_body)).strip()


def classify_generation_error(exc: BaseException) -> GenerationError:
    """Map a provider / transport exception to a GenerationError."""
    if isinstance(exc, GenerationError):
        return exc
    detail = str(exc)
    code = getattr(exc, "code", None)
    if "API key not valid" in detail or "API_KEY_INVALID" in detail:
        return GenerationError(
            GenerationErrorKind.INVALID_CREDENTIAL,
            "The provided API Key is invalid. Please check and try again.",
        )
    if code == 429 or "429" in detail or "RESOURCE_EXHAUSTED" in detail:
        return GenerationError(
            GenerationErrorKind.QUOTA_EXCEEDED,
            "You've exceeded your API quota. Please check your plan and billing details "
            "or wait a minute before retrying.",
        )
    if isinstance(exc, (ConnectionError, TimeoutError)) or re.search(
        r"connect|network|timed out|fetch", detail, re.IGNORECASE
    ):
        return GenerationError(
            GenerationErrorKind.NETWORK,
            "A network error occurred. Please check your internet connection.",
        )
    return GenerationError(
        GenerationErrorKind.UNSPECIFIED,
        f"An unexpected error occurred with the AI service: {detail or type(exc).__name__}",
    )


class GeminiDraftGenerator:
    """DraftGenerator backed by the Gemini API (google-genai async client).

    The client is created on first use so that a missing API key fails the
    affected generations instead of the whole run.
    """

    def __init__(self, config: GenerationConfig | None = None, client: genai.Client | None = None) -> None:
        self.config = config or GenerationConfig()
        self._client = client

    def _get_client(self) -> genai.Client:
        if self._client is None:
            api_key = os.getenv(self.config.api_key_env, "").strip()
            if not api_key:
                raise GenerationError(
                    GenerationErrorKind.INVALID_CREDENTIAL,
                    f"{self.config.api_key_env} environment variable not set. "
                    "Please configure it before proceeding.",
                )
            self._client = genai.Client(api_key=api_key)
        return self._client

    async def generate(self, group_name: str, rows: Sequence[ReportRow]) -> EmailDraft:
        client = self._get_client()
        prompt = build_prompt(group_name, rows)
        try:
            response = await client.aio.models.generate_content(model=self.config.model, contents=prompt)
        except genai_errors.APIError as e:
            logger.debug(f"generation api error group={group_name} code={e.code}: {e.message}")
            raise classify_generation_error(e) from e
        except (ConnectionError, TimeoutError, OSError) as e:
            raise classify_generation_error(e) from e
        body = clean_html_body(response.text or "")
        if not body:
            raise GenerationError(GenerationErrorKind.UNSPECIFIED, "The AI service returned an empty draft.")
        return EmailDraft(subject=build_subject(group_name), body=body)
