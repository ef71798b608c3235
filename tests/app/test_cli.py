from __future__ import annotations

from datetime import UTC, datetime

import pytest

from bubblesync.domain.checkpoints import CheckpointReport
from bubblesync.domain.entities import EntityKind
from bubblesync.domain.linking import LinkPolicy, RelinkResult
from bubblesync.domain.maintenance import PruneReport
from bubblesync.domain.merge import MergePolicy
from bubblesync.ui import cli as cli_module


def _capture_sync(monkeypatch: pytest.MonkeyPatch) -> dict[str, object]:
    captured: dict[str, object] = {}

    def fake_sync(entity_kind: EntityKind | None = None, **kwargs: object) -> str:
        captured["entity_kind"] = entity_kind
        captured.update(kwargs)
        return "session-1"

    monkeypatch.setattr(cli_module, "trigger_sync", fake_sync)
    monkeypatch.setattr(cli_module, "get_sync_progress", lambda _session_id: None)
    return captured


def test_sync_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _capture_sync(monkeypatch)

    cli_module.main(["sync"])

    assert captured["entity_kind"] is None
    assert captured["since"] is None
    assert captured["force"] is False
    assert captured["skip_kinds"] == []
    assert captured["policy"] is MergePolicy.MERGE_ONLY_EMPTY
    assert captured["force_fields"] == []
    assert captured["follow_relations"] is True
    assert captured["relink"] is None
    assert captured["background"] is False


def test_sync_with_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = _capture_sync(monkeypatch)

    cli_module.main(
        [
            "--log-level",
            "debug",
            "sync",
            "--kind",
            "Invoice",
            "--since",
            "2024-05-01T08:00:00+08:00",
            "--skip",
            "payment",
            "--policy",
            "full_overwrite",
            "--force-field",
            "status",
            "--no-follow",
            "--relink",
            "closest_timestamp",
        ]
    )

    assert captured["entity_kind"] is EntityKind.INVOICE
    assert captured["since"] == datetime(2024, 5, 1, 0, 0, tzinfo=UTC)
    assert captured["skip_kinds"] == [EntityKind.PAYMENT]
    assert captured["policy"] is MergePolicy.FULL_OVERWRITE
    assert captured["force_fields"] == ["status"]
    assert captured["follow_relations"] is False
    assert captured["relink"] is LinkPolicy.CLOSEST_TIMESTAMP


@pytest.mark.parametrize(
    "argv",
    [
        ["sync", "--kind", "spaceship"],
        ["sync", "--relink", "loose"],
        ["sync", "--since", "not-a-date"],
        ["sync", "--force", "--since", "2024-01-01"],
        ["migrate-files", "--created-after", "yesterday"],
        ["activity", "--limit", "0"],
        ["--log-level", "chatty", "activity"],
    ],
)
def test_invalid_arguments_exit_with_usage_code(
    monkeypatch: pytest.MonkeyPatch,
    argv: list[str],
) -> None:
    _capture_sync(monkeypatch)

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(argv)

    assert excinfo.value.code == 2


def test_relink_dispatch(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[EntityKind | None, LinkPolicy]] = []

    def fake_relink(kind: EntityKind | None, policy: LinkPolicy) -> RelinkResult:
        calls.append((kind, policy))
        return RelinkResult(policy=policy)

    monkeypatch.setattr(cli_module, "trigger_relink", fake_relink)

    cli_module.main(["relink"])
    cli_module.main(["relink", "--kind", "payment", "--policy", "closest_timestamp"])

    assert calls == [
        (None, LinkPolicy.STRICT),
        (EntityKind.PAYMENT, LinkPolicy.CLOSEST_TIMESTAMP),
    ]


def test_migrate_files_dispatch(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_stats(**kwargs: object) -> dict[str, int]:
        captured.update(kwargs)
        return {"customer.ic_front": 2}

    monkeypatch.setattr(cli_module, "file_migration_stats", fake_stats)

    cli_module.main(
        ["migrate-files", "--stats", "--kind", "customer", "--created-after", "2024-01-01"]
    )

    assert captured == {
        "kinds": [EntityKind.CUSTOMER],
        "created_after": datetime(2024, 1, 1, tzinfo=UTC),
    }


def test_prune_defaults_to_dry_run(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[bool] = []

    def fake_prune(*, dry_run: bool) -> PruneReport:
        calls.append(dry_run)
        return PruneReport(dry_run=dry_run)

    monkeypatch.setattr(cli_module, "prune_demo_invoices", fake_prune)

    cli_module.main(["prune-demo"])
    cli_module.main(["prune-demo", "--apply"])

    assert calls == [True, False]


def test_checkpoints_dispatch(monkeypatch: pytest.MonkeyPatch) -> None:
    requested: list[str] = []

    def fake_checkpoints(registration_id: str) -> CheckpointReport:
        requested.append(registration_id)
        return CheckpointReport(checkpoints={"name": True, "tnb_meter": False})

    monkeypatch.setattr(cli_module, "get_checkpoints", fake_checkpoints)

    cli_module.main(["checkpoints", "R1"])

    assert requested == ["R1"]


def test_runtime_error_exits_with_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_activity(_limit: int) -> list[object]:
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(cli_module, "recent_activity", broken_activity)

    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["activity"])

    assert excinfo.value.code == 1
