from __future__ import annotations

import json
from typing import Any

from nightshift.backends.base import (
    AgentAdapter,
    CliResponse,
    optional_float,
    optional_int,
)
from nightshift.models import SafetyLimits


class ClaudeAdapter(AgentAdapter):
    """`claude -p ... --output-format json` returning a single JSON object."""

    name = "claude"
    default_output_flags = ("--output-format", "json")

    def limit_args(self, safety: SafetyLimits) -> list[str]:
        if safety.max_turns is None:
            return []
        return ["--max-turns", str(safety.max_turns)]

    @staticmethod
    def _extract_content(payload: dict[str, Any]) -> str:
        result = payload.get("result")
        if isinstance(result, str):
            return result
        content = payload.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts: list[str] = []
            for item in content:
                if isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        parts.append(text)
            return "".join(parts)
        return ""

    def parse_response(self, stdout: str, exit_code: int) -> CliResponse:
        trimmed = stdout.strip()
        if not trimmed:
            return self.no_output_response(exit_code)

        try:
            payload = json.loads(trimmed)
        except json.JSONDecodeError:
            return CliResponse(
                success=False,
                result=trimmed,
                error=f"Failed to parse CLI output as JSON: {trimmed[:200]}",
                parse_failed=True,
            )
        if not isinstance(payload, dict):
            return CliResponse(
                success=False,
                result=trimmed,
                error="Claude output was not a JSON object",
                parse_failed=True,
            )

        usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
        content = self._extract_content(payload)
        is_error = bool(payload.get("is_error")) or exit_code != 0
        return CliResponse(
            success=not is_error,
            result=content,
            error=(content or f"CLI exited with code {exit_code}") if is_error else None,
            session_id=payload.get("session_id") if isinstance(payload.get("session_id"), str) else None,
            cost_usd=optional_float(payload.get("total_cost_usd")),
            turns=optional_int(payload.get("num_turns")),
            tokens_in=optional_int(usage.get("input_tokens")),
            tokens_out=optional_int(usage.get("output_tokens")),
        )
