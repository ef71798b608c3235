from __future__ import annotations

import logging

import pytest

from bubblesync.common.logging import parse_log_level
from bubblesync.config import (
    ConfigurationError,
    MissingConfigurationError,
    RateLimit,
    RetryPolicy,
    get_bubble_config,
    get_file_migration_config,
    get_sync_config,
    require_env_vars,
)
from bubblesync.config.env import env_float, env_int, optional_env_var


def test_require_env_vars_returns_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", " value ")

    result = require_env_vars(["EXAMPLE_VAR"])

    assert result["EXAMPLE_VAR"] == "value"


def test_require_env_vars_lists_every_missing_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSING_B", raising=False)
    monkeypatch.setenv("MISSING_A", "   ")

    with pytest.raises(MissingConfigurationError) as exc:
        require_env_vars(["MISSING_B", "MISSING_A"])

    assert "MISSING_A, MISSING_B" in str(exc.value)
    assert exc.value.settings == ("MISSING_A", "MISSING_B")
    assert exc.value.setting == "MISSING_A"


def test_optional_env_var_treats_blank_as_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", "  ")

    assert optional_env_var("EXAMPLE_VAR") is None


def test_numeric_env_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_INT", "6")
    monkeypatch.setenv("EXAMPLE_FLOAT", "2.5")
    monkeypatch.delenv("EXAMPLE_UNSET", raising=False)

    assert env_int("EXAMPLE_INT", 1) == 6
    assert env_float("EXAMPLE_FLOAT", 1.0) == 2.5
    assert env_int("EXAMPLE_UNSET", 3) == 3


@pytest.mark.parametrize("raw", ["many", "0", "-2"])
def test_invalid_numeric_env_values(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("EXAMPLE_INT", raw)

    with pytest.raises(ConfigurationError) as exc:
        env_int("EXAMPLE_INT", 1)

    assert exc.value.setting == "EXAMPLE_INT"


def test_sync_config_reads_worker_count(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BUBBLESYNC_SYNC_WORKERS", "2")

    assert get_sync_config().workers == 2


def test_file_migration_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FILE_BASE_URL", "https://files.example.com/")
    monkeypatch.setenv("BUBBLESYNC_DOWNLOAD_CONCURRENCY", "8")

    config = get_file_migration_config()

    assert config.file_base_url == "https://files.example.com"
    assert config.concurrency == 8
    assert config.download_timeout_seconds == 30.0


def test_bubble_config_reads_limits(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BUBBLE_API_KEY", "secret")
    monkeypatch.setenv("BUBBLE_APP_NAME", "atap")
    monkeypatch.setenv("BUBBLE_MAX_CALLS_PER_SECOND", "0.5")
    monkeypatch.setenv("BUBBLE_MAX_RETRIES", "2")
    monkeypatch.delenv("BUBBLE_BASE_URL", raising=False)

    config = get_bubble_config()

    assert config.base_url == "https://atap.bubbleapps.io/api/1.1/obj"
    assert config.resilience.ratelimit == RateLimit(max_calls=1, per_seconds=2.0)
    assert config.resilience.retry.total == 2
    assert config.lookup_resilience.retry.total == 2
    assert config.lookup_resilience.cache is not None
    assert config.resilience.cache is None


def test_missing_app_name_names_the_alternative(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BUBBLE_API_KEY", "secret")
    monkeypatch.delenv("BUBBLE_APP_NAME", raising=False)
    monkeypatch.delenv("BUBBLE_BASE_URL", raising=False)

    with pytest.raises(MissingConfigurationError) as exc:
        get_bubble_config()

    assert str(exc.value) == "Missing configuration for: BUBBLE_APP_NAME (or BUBBLE_BASE_URL)"
    assert exc.value.alternative == "BUBBLE_BASE_URL"


@pytest.mark.parametrize(
    ("calls", "expected"),
    [(8.0, RateLimit(8, 1.0)), (2.7, RateLimit(2, 1.0)), (0.25, RateLimit(1, 4.0))],
)
def test_rate_limit_per_second(calls: float, expected: RateLimit) -> None:
    assert RateLimit.per_second(calls) == expected


def test_download_retries_cover_gateway_timeouts() -> None:
    policy = RetryPolicy.for_downloads()

    assert policy.total == 2
    assert 408 in policy.status_forcelist
    assert 408 not in RetryPolicy().status_forcelist
    assert policy.allowed_methods == frozenset({"GET", "HEAD"})


@pytest.mark.parametrize(
    ("name", "expected"),
    [("debug", logging.DEBUG), (" Warning ", logging.WARNING), ("ERROR", logging.ERROR)],
)
def test_parse_log_level(name: str, expected: int) -> None:
    assert parse_log_level(name) == expected


def test_parse_log_level_rejects_unknown_names() -> None:
    with pytest.raises(ValueError, match="chatty"):
        parse_log_level("chatty")
