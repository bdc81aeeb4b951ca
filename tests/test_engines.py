"""Tests for engine adapters, the registry and the session client."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from ledgerun.client import ModelRef
from ledgerun.context import RunContext
from ledgerun.engines.base import ERROR_CANCELLED, ERROR_TIMEOUT, EngineBase, EngineResult
from ledgerun.engines.claude import ClaudeEngine
from ledgerun.engines.opencode import OpenCodeEngine
from ledgerun.engines.registry import ENGINE_NAMES, get_engine
from ledgerun.engines.session import EngineClient
from ledgerun.errors import Cancelled, EngineError, TaskTimeout


class TestEngineRegistry:
    @pytest.mark.parametrize(
        ("name", "expected_cls"),
        [
            ("claude", ClaudeEngine),
            ("opencode", OpenCodeEngine),
        ],
    )
    def test_get_engine_returns_expected_adapter(self, name: str, expected_cls: type) -> None:
        assert isinstance(get_engine(name), expected_cls)

    def test_engine_names(self) -> None:
        assert set(ENGINE_NAMES) == {"claude", "opencode"}

    def test_unknown_engine_raises(self) -> None:
        with pytest.raises(ValueError):
            get_engine("unknown-provider")


class TestClaudeEngine:
    def test_build_cmd_uses_resolved_path_when_available(self) -> None:
        with patch("ledgerun.engines.claude.shutil.which", return_value="/usr/bin/claude"):
            cmd = ClaudeEngine().build_cmd("hello")

        assert cmd[0] == "/usr/bin/claude"
        assert "stream-json" in cmd
        assert "--model" not in cmd

    def test_build_cmd_passes_model(self) -> None:
        cmd = ClaudeEngine().build_cmd("hello", model="claude-opus")
        assert cmd[cmd.index("--model") + 1] == "claude-opus"

    def test_parse_output_extracts_result_and_usage(self) -> None:
        raw = (
            '{"type":"system","subtype":"init"}\n'
            '{"type":"result","result":"done","usage":{"input_tokens":12,"output_tokens":7}}'
        )
        result = ClaudeEngine().parse_output(raw)

        assert result.text == "done"
        assert result.input_tokens == 12
        assert result.output_tokens == 7
        assert result.ok

    def test_parse_output_flags_error_result(self) -> None:
        raw = '{"type":"result","result":"Credit balance is too low","is_error":true}'
        result = ClaudeEngine().parse_output(raw)
        assert result.error == "Credit balance is too low"


class TestOpenCodeEngine:
    def test_build_cmd_prefers_explicit_model(self) -> None:
        engine = OpenCodeEngine(default_model="openai/gpt-5")
        assert "openai/gpt-5" in engine.build_cmd("hi")
        cmd = engine.build_cmd("hi", model="anthropic/claude-sonnet")
        assert cmd[cmd.index("--model") + 1] == "anthropic/claude-sonnet"
        assert cmd[-1] == "hi"

    def test_env_grants_permissions(self) -> None:
        assert OpenCodeEngine().env()["OPENCODE_PERMISSION"] == '{"*":"allow"}'

    def test_parse_output_collects_text_and_tokens(self) -> None:
        raw = "\n".join(
            [
                '{"type":"text","part":{"text":"Hello "}}',
                '{"type":"text","part":{"text":"world"}}',
                '{"type":"step_finish","part":{"tokens":{"input":3,"output":4}}}',
                '{"type":"step_finish","part":{"tokens":{"input":1,"output":1}}}',
            ]
        )
        result = OpenCodeEngine().parse_output(raw)
        assert result.text == "Hello world"
        assert result.input_tokens == 4
        assert result.output_tokens == 5


class TestCheckErrors:
    def test_rate_limit_error_object(self) -> None:
        raw = '{"error":{"type":"rate_limit_error","message":""}}'
        assert EngineBase._check_errors(raw) == "Rate limit exceeded"

    def test_error_event(self) -> None:
        assert EngineBase._check_errors('{"type":"error","message":"bad auth"}') == "bad auth"

    def test_clean_output(self) -> None:
        assert EngineBase._check_errors('{"type":"result"}\nnot json') == ""


class TestRunSync:
    def test_missing_binary(self) -> None:
        engine = ClaudeEngine()
        with patch("ledgerun.engines.base.subprocess.Popen", side_effect=FileNotFoundError):
            result = engine.run_sync("hi")
        assert not result.ok
        assert "not found" in result.error

    def test_nonzero_exit_uses_stderr(self) -> None:
        proc = MagicMock()
        proc.communicate.return_value = ("", "error: unknown option --foo\nmore detail")
        proc.returncode = 2
        with patch("ledgerun.engines.base.subprocess.Popen", return_value=proc):
            result = ClaudeEngine().run_sync("hi")
        assert result.error == "error: unknown option --foo"
        assert result.return_code == 2

    def test_timeout_terminates_process(self) -> None:
        proc = MagicMock()
        proc.args = ["claude"]
        proc.communicate.side_effect = subprocess.TimeoutExpired(["claude"], 0.2)
        proc.poll.return_value = None
        with patch("ledgerun.engines.base.subprocess.Popen", return_value=proc):
            result = ClaudeEngine().run_sync("hi", timeout=0.3)
        assert result.error == ERROR_TIMEOUT
        proc.terminate.assert_called_once()

    def test_cancel_terminates_process(self) -> None:
        proc = MagicMock()
        proc.poll.return_value = None
        with patch("ledgerun.engines.base.subprocess.Popen", return_value=proc):
            result = ClaudeEngine().run_sync("hi", should_cancel=lambda: True)
        assert result.error == ERROR_CANCELLED
        proc.terminate.assert_called_once()


# ── Session client ───────────────────────────────────────────────────


class TestEngineClient:
    def _client(self, result: EngineResult) -> tuple[EngineClient, MagicMock]:
        engine = ClaudeEngine()
        run_sync = MagicMock(return_value=result)
        engine.run_sync = run_sync
        return EngineClient(engine), run_sync

    def test_prompt_records_transcript(self, tmp_path) -> None:
        client, run_sync = self._client(EngineResult(text="all done", input_tokens=5))
        ctx = RunContext(timeout=60)
        session = client.create_session(ctx, "task-a", str(tmp_path))

        resp = client.send_prompt(ctx, session.id, "do it", ModelRef.parse("anthropic/claude-opus"), str(tmp_path))

        assert resp.text == "all done"
        assert resp.input_tokens == 5
        kwargs = run_sync.call_args.kwargs
        assert kwargs["model"] == "claude-opus"
        assert kwargs["cwd"] == tmp_path
        assert 0 < kwargs["timeout"] <= 60
        messages = client.get_messages(ctx, session.id, str(tmp_path))
        assert [(m.role, m.text) for m in messages] == [("user", "do it"), ("assistant", "all done")]

    def test_engine_error(self, tmp_path) -> None:
        client, _ = self._client(EngineResult(error="exit code 1"))
        ctx = RunContext()
        session = client.create_session(ctx, "t", str(tmp_path))
        with pytest.raises(EngineError, match="exit code 1"):
            client.send_prompt(ctx, session.id, "x", ModelRef(), str(tmp_path))

    def test_timeout_maps_to_task_timeout(self, tmp_path) -> None:
        client, _ = self._client(EngineResult(error=ERROR_TIMEOUT))
        ctx = RunContext()
        session = client.create_session(ctx, "t", str(tmp_path))
        with pytest.raises(TaskTimeout):
            client.send_prompt(ctx, session.id, "x", ModelRef(), str(tmp_path))

    def test_cancel_maps_to_cancelled(self, tmp_path) -> None:
        client, _ = self._client(EngineResult(error=ERROR_CANCELLED))
        ctx = RunContext()
        session = client.create_session(ctx, "t", str(tmp_path))
        with pytest.raises(Cancelled):
            client.send_prompt(ctx, session.id, "x", ModelRef(), str(tmp_path))

    def test_abort_session_is_seen_by_cancel_poll(self, tmp_path) -> None:
        client, run_sync = self._client(EngineResult(text="ok"))
        ctx = RunContext()
        session = client.create_session(ctx, "t", str(tmp_path))
        client.send_prompt(ctx, session.id, "x", ModelRef(), str(tmp_path))
        should_cancel = run_sync.call_args.kwargs["should_cancel"]

        assert should_cancel() is False
        client.abort_session(ctx, session.id, str(tmp_path))
        assert should_cancel() is True

    def test_deleted_session_is_unknown(self, tmp_path) -> None:
        client, _ = self._client(EngineResult(text="ok"))
        ctx = RunContext()
        session = client.create_session(ctx, "t", str(tmp_path))
        client.delete_session(ctx, session.id, str(tmp_path))
        with pytest.raises(EngineError, match="unknown session"):
            client.send_prompt(ctx, session.id, "x", ModelRef(), str(tmp_path))

    def test_cancelled_context_refuses_new_sessions(self, tmp_path) -> None:
        client, _ = self._client(EngineResult(text="ok"))
        ctx = RunContext()
        ctx.cancel()
        with pytest.raises(Cancelled):
            client.create_session(ctx, "t", str(tmp_path))


@pytest.mark.parametrize(
    ("raw", "expected", "text"),
    [
        ("", ModelRef(), ""),
        ("opus", ModelRef(model="opus"), "opus"),
        ("anthropic/claude-opus", ModelRef(provider="anthropic", model="claude-opus"), "anthropic/claude-opus"),
    ],
)
def test_model_ref_parse(raw: str, expected: ModelRef, text: str) -> None:
    ref = ModelRef.parse(raw)
    assert ref == expected
    assert str(ref) == text
