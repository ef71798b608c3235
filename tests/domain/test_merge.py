from __future__ import annotations

import pytest

from bubblesync.domain.merge import MergeAction, MergePolicy, decide, resolve_merge


@pytest.mark.parametrize(
    ("local", "incoming"),
    [
        ("existing", "incoming"),
        (12.5, 99.0),
        (["a.jpg"], ["b.jpg"]),
        (False, True),
        (0, 5),
    ],
)
def test_merge_only_empty_never_changes_non_empty_local(local: object, incoming: object) -> None:
    diff = resolve_merge({"value": local}, {"value": incoming})

    assert diff.is_empty
    assert diff.skipped == ["value"]


@pytest.mark.parametrize("local", [None, "", []])
def test_merge_only_empty_fills_empty_local(local: object) -> None:
    diff = resolve_merge({"value": local}, {"value": "filled"})

    assert diff.changes == {"value": "filled"}
    assert diff.filled == ["value"]


def test_empty_incoming_never_clears_local() -> None:
    diff = resolve_merge(
        {"name": "Ali", "roof_images": ["a.jpg"]},
        {"name": "", "roof_images": []},
        policy=MergePolicy.FULL_OVERWRITE,
    )

    assert diff.is_empty


def test_full_overwrite_replaces_differing_values_only() -> None:
    diff = resolve_merge(
        {"status": "draft", "amount": 10.0},
        {"status": "paid", "amount": 10.0},
        policy=MergePolicy.FULL_OVERWRITE,
    )

    assert diff.changes == {"status": "paid"}
    assert diff.skipped == ["amount"]


def test_force_fields_win_under_default_policy() -> None:
    diff = resolve_merge(
        {"status": "draft", "dealercode": "D1"},
        {"status": "paid", "dealercode": "D2"},
        force_fields={"status"},
    )

    assert diff.changes == {"status": "paid"}


def test_force_field_may_clear_a_value() -> None:
    action = decide(
        "status",
        "draft",
        None,
        policy=MergePolicy.MERGE_ONLY_EMPTY,
        force_fields={"status"},
    )

    assert action is MergeAction.FORCE


def test_new_row_takes_every_non_empty_value() -> None:
    diff = resolve_merge(None, {"external_id": "X1", "name": "Ali", "email": None})

    assert diff.changes == {"name": "Ali"}
    assert "external_id" not in diff.changes


def test_bookkeeping_columns_are_ignored() -> None:
    diff = resolve_merge(
        {"is_deleted": False},
        {"is_deleted": True, "last_synced_at": "x"},
        policy=MergePolicy.FULL_OVERWRITE,
    )

    assert diff.is_empty


def test_decide_covers_every_combination() -> None:
    assert decide("c", None, "x", policy=MergePolicy.MERGE_ONLY_EMPTY) is MergeAction.FILL
    assert decide("c", "y", "x", policy=MergePolicy.MERGE_ONLY_EMPTY) is MergeAction.SKIP
    assert decide("c", "y", "x", policy=MergePolicy.FULL_OVERWRITE) is MergeAction.OVERWRITE
    assert decide("c", "y", "", policy=MergePolicy.FULL_OVERWRITE) is MergeAction.SKIP
