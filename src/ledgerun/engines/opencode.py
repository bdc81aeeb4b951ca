"""OpenCode engine adapter."""

from __future__ import annotations

import json
import os
import shutil

from ledgerun.engines.base import EngineBase, EngineResult


class OpenCodeEngine(EngineBase):
    name = "opencode"

    def __init__(self, default_model: str = "") -> None:
        self.default_model = default_model

    def build_cmd(self, prompt: str, model: str = "") -> list[str]:
        opencode = shutil.which("opencode") or "opencode"
        cmd = [opencode, "run", "--format", "json"]
        model = model or self.default_model
        if model:
            cmd += ["--model", model]
        cmd.append(prompt)
        return cmd

    def env(self) -> dict[str, str] | None:
        env = os.environ.copy()
        env["OPENCODE_PERMISSION"] = '{"*":"allow"}'
        return env

    def parse_output(self, raw: str) -> EngineResult:
        result = EngineResult()
        parts: list[str] = []
        for line in raw.splitlines():
            if '"type":"text"' not in line and '"type":"step_finish"' not in line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            part = obj.get("part", {}) or {}
            if obj.get("type") == "text":
                text = part.get("text", "")
                if text:
                    parts.append(text)
            elif obj.get("type") == "step_finish":
                tokens = part.get("tokens", {}) or {}
                try:
                    result.input_tokens += int(tokens.get("input", 0))
                    result.output_tokens += int(tokens.get("output", 0))
                except (ValueError, TypeError):
                    pass
        result.text = "".join(parts)
        return result

    def check_available(self) -> str | None:
        if not shutil.which("opencode"):
            return "OpenCode CLI not found. Install from https://opencode.ai/docs/"
        return None
