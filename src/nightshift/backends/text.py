from __future__ import annotations

from nightshift.backends.base import AgentAdapter, CliResponse
from nightshift.models import SafetyLimits


class PlainTextAdapter(AgentAdapter):
    """Any CLI whose stdout is the agent's final answer as plain text."""

    name = "text"

    def parse_response(self, stdout: str, exit_code: int) -> CliResponse:
        trimmed = stdout.strip()
        if not trimmed:
            return self.no_output_response(exit_code)
        if exit_code != 0:
            return CliResponse(
                success=False,
                result=trimmed,
                error=f"CLI exited with code {exit_code}: {trimmed[:200]}",
            )
        return CliResponse(success=True, result=trimmed)


class KimiAdapter(PlainTextAdapter):
    """KIMI one-shot mode (`--print --quiet`) prints plain text."""

    name = "kimi"

    def limit_args(self, safety: SafetyLimits) -> list[str]:
        if safety.max_turns is None:
            return []
        return ["--max-steps-per-turn", str(safety.max_turns)]
