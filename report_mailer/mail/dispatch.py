from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import requests

from report_mailer.mail.recipients import parse_valid_recipients
from report_mailer.models.config_models import DispatchConfig
from report_mailer.models.draft import DraftState, EmailDraft

"""Dispatch gateway adapter.

Three ways a finished draft leaves the system:

- ``dispatch_group``: send through the transactional email API (Resend) to
  every valid recipient
- ``compose_mailto_link``: default mail client; mailto handles multiple
  recipients poorly, so only the first valid address is used
- ``compose_gmail_link``: Gmail compose window with all valid recipients

All three require a ``ready`` draft and at least one valid recipient.
"""

__all__ = [
    "DispatchError",
    "ResendDispatcher",
    "dispatch_group",
    "compose_mailto_link",
    "compose_gmail_link",
]

logger = logging.getLogger(__name__)

GMAIL_COMPOSE_URL = "https://mail.google.com/mail/?view=cm&fs=1"
NO_RECIPIENTS_MESSAGE = "Please set at least one valid recipient email first."
DRAFT_NOT_READY_MESSAGE = "Email draft is not ready."


class DispatchError(Exception):
    """Raised when a draft cannot be dispatched or the provider rejects it."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResendDispatcher:
    """Send drafts through the Resend HTTP API."""

    def __init__(self, config: DispatchConfig | None = None, session: requests.Session | None = None) -> None:
        self.config = config or DispatchConfig()
        self.session = session or requests.Session()

    def _api_key(self) -> str:
        api_key = os.getenv(self.config.api_key_env, "").strip()
        if not api_key:
            raise DispatchError(f"{self.config.api_key_env} environment variable not set")
        return api_key

    def send(self, draft: EmailDraft, recipients: Sequence[str]) -> str:
        """Send one draft; returns the provider's message id.

        Raises:
            DispatchError: missing recipients / API key, transport failure or
                a non-2xx provider response
        """
        if not recipients:
            raise DispatchError("Missing draft or recipient email")
        payload: dict[str, Any] = {
            "from": self.config.from_address,
            "to": list(recipients),
            "subject": draft.subject,
            "html": draft.body,
        }
        headers = {"Authorization": f"Bearer {self._api_key()}"}
        try:
            response = self.session.post(
                self.config.api_url, json=payload, headers=headers, timeout=self.config.timeout_seconds
            )
        except requests.RequestException as e:
            raise DispatchError(f"Failed to send email: {e}") from e

        if not response.ok:
            message = "Failed to send email"
            try:
                body = response.json()
                message = body.get("message") or body.get("error") or message
            except ValueError:
                pass
            logger.debug(f"dispatch rejected status={response.status_code} body={response.text[:200]}")
            raise DispatchError(message, status_code=response.status_code)

        try:
            return str(response.json().get("id", ""))
        except ValueError:
            return ""


def _ready_draft(state: DraftState | None) -> EmailDraft:
    if state is None or not state.is_ready or state.draft is None:
        raise DispatchError(DRAFT_NOT_READY_MESSAGE)
    return state.draft


def dispatch_group(
    dispatcher: ResendDispatcher,
    group_name: str,
    state: DraftState | None,
    raw_recipients: str | None,
) -> str:
    """Send a group's ready draft to every valid recipient in ``raw_recipients``."""
    recipients = parse_valid_recipients(raw_recipients)
    if not recipients:
        raise DispatchError(NO_RECIPIENTS_MESSAGE)
    draft = _ready_draft(state)
    message_id = dispatcher.send(draft, recipients)
    logger.info(f"sent draft group={group_name} recipients={len(recipients)}")
    return message_id


def compose_mailto_link(state: DraftState | None, raw_recipients: str | None) -> str:
    recipients = parse_valid_recipients(raw_recipients)
    if not recipients or state is None or not state.is_ready:
        raise DispatchError(NO_RECIPIENTS_MESSAGE)
    draft = _ready_draft(state)
    return f"mailto:{recipients[0]}?subject={quote(draft.subject, safe='')}"


def compose_gmail_link(state: DraftState | None, raw_recipients: str | None) -> str:
    recipients = parse_valid_recipients(raw_recipients)
    if not recipients or state is None or not state.is_ready:
        raise DispatchError(NO_RECIPIENTS_MESSAGE)
    draft = _ready_draft(state)
    to = quote(",".join(recipients), safe="")
    return f"{GMAIL_COMPOSE_URL}&to={to}&su={quote(draft.subject, safe='')}"
