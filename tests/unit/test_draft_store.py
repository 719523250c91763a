from __future__ import annotations

import pytest

from report_mailer.models.draft import DraftState, DraftStatus, EmailDraft
from report_mailer.services.draft_store import DraftStateStore, InvalidTransitionError, UnknownGroupError

DRAFT = EmailDraft(subject="Weekly Report for North", body="<p>hi</p>")


def test_initial_state_is_pending_for_every_group():
    store = DraftStateStore(["North", "South"])
    assert store.names() == ["North", "South"]
    assert all(s.status is DraftStatus.PENDING for s in store.snapshot().values())
    assert store.counts()[DraftStatus.PENDING] == 2


def test_pending_to_ready():
    store = DraftStateStore(["North"])
    epoch = store.begin("North")
    assert store.complete("North", epoch, DRAFT) is True
    state = store.get("North")
    assert state.status is DraftStatus.READY
    assert state.draft == DRAFT
    assert state.is_ready


def test_pending_to_failed_then_regenerate():
    store = DraftStateStore(["North"])
    epoch = store.begin("North")
    assert store.fail("North", epoch, "quota") is True
    assert store.get("North").status is DraftStatus.FAILED
    assert store.get("North").error == "quota"

    epoch2 = store.begin("North")
    assert epoch2 == epoch + 1
    assert store.get("North").status is DraftStatus.PENDING
    assert store.get("North").error is None
    store.complete("North", epoch2, DRAFT)
    assert store.get("North").status is DraftStatus.READY


def test_no_direct_ready_to_failed():
    store = DraftStateStore(["North"])
    epoch = store.begin("North")
    store.complete("North", epoch, DRAFT)
    with pytest.raises(InvalidTransitionError):
        store.fail("North", epoch, "late")
    assert store.get("North").status is DraftStatus.READY


def test_stale_completion_is_discarded():
    store = DraftStateStore(["North"])
    old = store.begin("North")
    new = store.begin("North")
    assert store.complete("North", old, EmailDraft("old", "<p>old</p>")) is False
    assert store.get("North").status is DraftStatus.PENDING
    assert store.complete("North", new, DRAFT) is True
    assert store.fail("North", old, "stale failure") is False
    assert store.get("North").draft == DRAFT


def test_unknown_group():
    store = DraftStateStore(["North"])
    with pytest.raises(UnknownGroupError):
        store.begin("Elsewhere")
    with pytest.raises(KeyError):
        store.get("Elsewhere")


def test_updates_touch_only_their_key():
    store = DraftStateStore(["A", "B"])
    ea = store.begin("A")
    store.begin("B")
    store.fail("A", ea, "boom")
    assert store.get("B").status is DraftStatus.PENDING


def test_reset_rebuilds_key_set():
    store = DraftStateStore(["A", "B"])
    store.complete("A", store.begin("A"), DRAFT)
    store.reset(["C"])
    assert store.names() == ["C"]
    assert "A" not in store
    assert store.get("C").status is DraftStatus.PENDING
    store.reset()
    assert len(store) == 0


def test_completion_from_replaced_dataset_is_discarded():
    store = DraftStateStore(["A"])
    old = store.begin("A")
    store.reset(["A"])
    new = store.begin("A")
    assert new > old
    assert store.complete("A", old, EmailDraft("old", "<p>old dataset</p>")) is False
    assert store.fail("A", old, "old failure") is False
    assert store.get("A") == DraftState(status=DraftStatus.PENDING, epoch=new)
    assert store.complete("A", new, DRAFT) is True


def test_completion_for_group_no_longer_in_store_is_stale():
    store = DraftStateStore(["A"])
    epoch = store.begin("A")
    first_dataset = store.dataset_id
    store.reset(["B"])
    assert store.dataset_id != first_dataset
    assert store.complete("A", epoch, DRAFT) is False
    assert store.fail("A", epoch, "late") is False
    assert "A" not in store
