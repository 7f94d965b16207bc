from __future__ import annotations

import itertools

import pytest

from git_audit.core import classify
from git_audit.models import SyncState

from conftest import COMMIT_A, COMMIT_B, COMMIT_C, mk_snapshot

REMOTE_STATES = {
    SyncState.UP_TO_DATE,
    SyncState.NEEDS_PULL,
    SyncState.NEEDS_PUSH,
    SyncState.DIVERGED,
}


@pytest.mark.parametrize(
    ("local", "upstream", "base", "staged"),
    [
        (COMMIT_A, COMMIT_A, COMMIT_A, False),
        (COMMIT_A, COMMIT_B, COMMIT_C, True),
        (COMMIT_A, None, None, False),
        (COMMIT_A, COMMIT_B, COMMIT_A, True),
    ],
)
def test_uncommitted_changes_dominate_everything(local, upstream, base, staged) -> None:
    snapshot = mk_snapshot(
        local_commit=local,
        upstream_commit=upstream,
        merge_base=base,
        has_uncommitted_changes=True,
        has_staged_changes=staged,
    )

    assert classify(snapshot)[0] == SyncState.UNCOMMITTED_CHANGES


def test_staged_changes_win_over_remote_comparison() -> None:
    snapshot = mk_snapshot(upstream_commit=COMMIT_B, merge_base=COMMIT_C, has_staged_changes=True)

    state, annotation = classify(snapshot)

    assert state == SyncState.STAGED_CHANGES
    assert "ready to commit" in annotation


def test_missing_upstream_is_no_upstream() -> None:
    snapshot = mk_snapshot(upstream_commit=None, merge_base=None, upstream_ref=None)

    assert classify(snapshot) == (SyncState.NO_UPSTREAM, "no upstream configured")


def test_detached_head_is_no_upstream_with_its_own_annotation() -> None:
    snapshot = mk_snapshot(branch=None, upstream_commit=None, merge_base=None, upstream_ref=None)

    assert classify(snapshot) == (SyncState.NO_UPSTREAM, "detached HEAD")


def test_remote_states_and_annotations() -> None:
    assert classify(mk_snapshot()) == (SyncState.UP_TO_DATE, "up to date with origin/main")
    assert classify(mk_snapshot(upstream_commit=COMMIT_B, merge_base=COMMIT_A)) == (
        SyncState.NEEDS_PULL,
        "behind origin/main, fast-forward available",
    )
    assert classify(mk_snapshot(upstream_commit=COMMIT_B, merge_base=COMMIT_B)) == (
        SyncState.NEEDS_PUSH,
        "ahead of origin/main, needs push",
    )
    assert classify(mk_snapshot(upstream_commit=COMMIT_B, merge_base=COMMIT_C)) == (
        SyncState.DIVERGED,
        "diverged from origin/main",
    )


def test_annotation_falls_back_to_short_upstream_id() -> None:
    _, annotation = classify(mk_snapshot(upstream_ref=None))
    assert annotation == "up to date with aaaaaaa"


def test_unrelated_histories_are_diverged() -> None:
    snapshot = mk_snapshot(upstream_commit=COMMIT_B, merge_base=None)
    assert classify(snapshot)[0] == SyncState.DIVERGED


def test_classify_is_pure() -> None:
    snapshot = mk_snapshot(upstream_commit=COMMIT_B, merge_base=COMMIT_A)
    assert classify(snapshot) == classify(snapshot)


@pytest.mark.parametrize(
    ("local", "upstream", "base"),
    list(itertools.product([COMMIT_A, COMMIT_B, COMMIT_C], repeat=3)),
)
def test_every_equality_pattern_maps_to_one_remote_state(local, upstream, base) -> None:
    state, _ = classify(mk_snapshot(local_commit=local, upstream_commit=upstream, merge_base=base))

    assert state in REMOTE_STATES
    if local == upstream:
        assert state == SyncState.UP_TO_DATE
    elif local == base:
        assert state == SyncState.NEEDS_PULL
    elif upstream == base:
        assert state == SyncState.NEEDS_PUSH
    else:
        assert state == SyncState.DIVERGED
