from __future__ import annotations

import logging
from collections.abc import Iterable

from report_mailer.models.draft import DraftState, DraftStatus, EmailDraft

"""Draft state store.

Owns one ``DraftState`` per group name. The key set is fixed by ``reset()``
to exactly the groups of the current dataset; every later mutation is a
single-key upsert through one of the transitions below.

    begin(name)            any state     -> pending   (bumps the generation epoch)
    complete(name, epoch)  pending       -> ready
    fail(name, epoch)      pending       -> failed

Epochs come from one store-wide counter that is never rewound, not even by
``reset()``. A completion whose epoch is not the group's current epoch belongs
to a superseded generation (a single-group regeneration started while a batch
run was still in flight, or a generation of a dataset that has since been
replaced) and is discarded, so the last generation started always owns the
final state. ``dataset_id`` changes on every ``reset()`` so a running batch can
tell that its groups were replaced.

Mutations happen from coroutines on a single event loop and never interleave
inside a method, so no lock is taken.
"""

__all__ = [
    "DraftStateStore",
    "InvalidTransitionError",
    "UnknownGroupError",
]

logger = logging.getLogger(__name__)


class UnknownGroupError(KeyError):
    """Raised for a group name outside the store's key set."""


class InvalidTransitionError(Exception):
    """Raised for a transition the draft lifecycle does not allow."""


class DraftStateStore:
    def __init__(self, group_names: Iterable[str] = ()) -> None:
        self._states: dict[str, DraftState] = {}
        self._epochs: dict[str, int] = {}
        self._epoch_counter = 0
        self.dataset_id = 0
        self.reset(group_names)

    def reset(self, group_names: Iterable[str] = ()) -> None:
        """Discard every state and start each given group at ``pending``."""
        self._states = {name: DraftState() for name in group_names}
        self._epochs = {name: 0 for name in self._states}
        self.dataset_id += 1

    def _require(self, name: str) -> DraftState:
        try:
            return self._states[name]
        except KeyError:
            raise UnknownGroupError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._states

    def __len__(self) -> int:
        return len(self._states)

    def names(self) -> list[str]:
        return list(self._states)

    def get(self, name: str) -> DraftState:
        return self._require(name)

    def current_epoch(self, name: str) -> int:
        self._require(name)
        return self._epochs[name]

    def begin(self, name: str) -> int:
        """Enter ``pending`` for a new generation attempt and return its epoch."""
        self._require(name)
        self._epoch_counter += 1
        epoch = self._epoch_counter
        self._epochs[name] = epoch
        self._states[name] = DraftState(status=DraftStatus.PENDING, epoch=epoch)
        return epoch

    def _accepts(self, name: str, epoch: int) -> bool:
        current = self._epochs.get(name)
        if epoch != current:
            # 別 dataset で消えたグループも stale 扱い
            logger.debug(f"discarding stale completion group={name} epoch={epoch} current={current}")
            return False
        state = self._states[name]
        if state.status is not DraftStatus.PENDING:
            raise InvalidTransitionError(
                f"group '{name}' is {state.status.value}; only pending drafts can settle"
            )
        return True

    def complete(self, name: str, epoch: int, draft: EmailDraft) -> bool:
        """pending -> ready. Returns False when the completion was stale."""
        if not self._accepts(name, epoch):
            return False
        self._states[name] = DraftState(status=DraftStatus.READY, draft=draft, epoch=epoch)
        return True

    def fail(self, name: str, epoch: int, message: str) -> bool:
        """pending -> failed. Returns False when the failure was stale."""
        if not self._accepts(name, epoch):
            return False
        self._states[name] = DraftState(status=DraftStatus.FAILED, error=message, epoch=epoch)
        return True

    def snapshot(self) -> dict[str, DraftState]:
        return dict(self._states)

    def counts(self) -> dict[DraftStatus, int]:
        result = {status: 0 for status in DraftStatus}
        for state in self._states.values():
            result[state.status] += 1
        return result
