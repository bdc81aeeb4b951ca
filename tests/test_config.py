"""Tests for Config defaults, env overrides and duration parsing."""

from __future__ import annotations

import pytest

from ledgerun.config import DEFAULT_TASK_TIMEOUT, Config, parse_duration


class TestDefaults:
    def test_defaults(self) -> None:
        cfg = Config()
        assert cfg.engine == "claude"
        assert cfg.max_parallel == 4
        assert cfg.max_retries == 15
        assert cfg.task_timeout == "30m"
        assert cfg.task_timeout_seconds == 1800
        assert cfg.lock_timeout == 5.0
        assert cfg.task_briefing is True

    def test_bounds(self) -> None:
        cfg = Config(max_parallel=0, max_retries=-3)
        assert cfg.max_parallel == 1
        assert cfg.max_retries == 0

    def test_review_model_falls_back_to_primary(self) -> None:
        assert Config(primary_model="a/b").review_model == "a/b"
        assert Config(primary_model="a/b", secondary_model="c/d").review_model == "c/d"


class TestEnvOverrides:
    def test_env_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LEDGERUN_ENGINE", "opencode")
        monkeypatch.setenv("LEDGERUN_MAX_PARALLEL", "2")
        monkeypatch.setenv("LEDGERUN_MAX_RETRIES", "1")
        monkeypatch.setenv("LEDGERUN_TASK_TIMEOUT", "90s")
        monkeypatch.setenv("LEDGERUN_TASK_BRIEFING", "false")
        monkeypatch.setenv("LEDGERUN_SECONDARY_MODEL", "anthropic/claude-sonnet")
        cfg = Config()
        assert cfg.engine == "opencode"
        assert cfg.max_parallel == 2
        assert cfg.max_retries == 1
        assert cfg.task_timeout_seconds == 90
        assert cfg.task_briefing is False
        assert cfg.secondary_model == "anthropic/claude-sonnet"

    def test_bad_env_values_are_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LEDGERUN_MAX_PARALLEL", "many")
        monkeypatch.setenv("LEDGERUN_TASK_BRIEFING", "maybe")
        cfg = Config()
        assert cfg.max_parallel == 4
        assert cfg.task_briefing is True


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("90s", 90),
        ("5m", 300),
        ("1h30m", 5400),
        ("45", 45),
        ("2.5m", 150),
        (120, 120),
    ],
)
def test_parse_duration(raw, expected) -> None:
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["", "soon", "10x", "-5", "0", None, "5m extra"])
def test_parse_duration_falls_back(raw) -> None:
    assert parse_duration(raw) == DEFAULT_TASK_TIMEOUT
