from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

"""Draft lifecycle models.

State transitions (per group):

    pending -> ready(subject, body)
    pending -> failed
    ready | failed -> pending      (explicit regeneration only)

There is no terminal state; ``ready`` and ``failed`` can both be re-triggered.
"""

__all__ = [
    "DraftStatus",
    "EmailDraft",
    "DraftState",
]


class DraftStatus(Enum):
    """Lifecycle status of one group's draft.

    - PENDING: generation in flight or not yet started
    - READY: a draft was generated successfully
    - FAILED: generation was attempted and errored
    """
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class EmailDraft:
    """AI-authored subject / HTML body pair."""
    subject: str
    body: str  # HTML


@dataclass(frozen=True)
class DraftState:
    """Current state of one group's draft.

    ``epoch`` identifies the generation attempt that owns the state; a
    completion carrying an older epoch is discarded by the store.
    """
    status: DraftStatus = DraftStatus.PENDING
    draft: EmailDraft | None = None
    error: str | None = None
    epoch: int = 0

    @property
    def is_ready(self) -> bool:
        return self.status is DraftStatus.READY and self.draft is not None
