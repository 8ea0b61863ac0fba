from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from nightshift.models import AgentProfile, SafetyLimits


class AgentExecutionError(RuntimeError):
    """Raised when one agent CLI attempt cannot produce a usable result."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        exit_code: int | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.exit_code = exit_code
        self.retriable = retriable


class ProcessLaunchError(AgentExecutionError):
    """Raised when the CLI process could not be spawned at all."""


class UnsupportedCliError(ProcessLaunchError):
    """Raised when no adapter knows how to drive the configured CLI."""


class ProcessTimeoutError(AgentExecutionError):
    """Raised when the CLI process exceeds its wall-clock limit."""


class LimitExceededError(AgentExecutionError):
    """Raised when reported turns or spend exceed the profile's safety limits."""


class UnparsableOutputError(AgentExecutionError):
    """Raised when the CLI output cannot be read as the adapter's format."""


@dataclass(slots=True)
class CliCommand:
    argv: list[str]
    stdin: str | None = None


@dataclass(slots=True)
class CliResponse:
    success: bool
    result: str
    error: str | None = None
    session_id: str | None = None
    cost_usd: float | None = None
    turns: int | None = None
    tokens_in: int | None = None
    tokens_out: int | None = None
    parse_failed: bool = False


def appears_partial_json(raw: str) -> bool:
    return raw.count("{") > raw.count("}") or raw.count("[") > raw.count("]")


def iter_json_lines(stdout: str) -> Iterator[dict[str, Any] | str]:
    """Yield decoded JSON objects, or the raw line when it is not JSON."""
    parse_buffer = ""
    for raw_line in stdout.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        candidate = f"{parse_buffer}{line}" if parse_buffer else line
        try:
            event = json.loads(candidate)
            parse_buffer = ""
        except json.JSONDecodeError:
            if appears_partial_json(candidate):
                parse_buffer = candidate
                continue
            parse_buffer = ""
            yield line
            continue
        if isinstance(event, dict):
            yield event
        else:
            yield line
    if parse_buffer:
        yield parse_buffer


def optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def optional_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class AgentAdapter(ABC):
    """Builds the argv for one CLI and reads its output back."""

    name: str = "agent"
    prompt_flag: str = "-p"
    model_flag: str = "--model"
    default_output_flags: tuple[str, ...] = ()
    dropped_unattended_flags: frozenset[str] = frozenset()

    def limit_args(self, safety: SafetyLimits) -> list[str]:
        _ = safety
        return []

    def build_command(self, profile: AgentProfile, prompt: str) -> CliCommand:
        argv = [profile.cli]
        if profile.subcommand:
            argv.append(profile.subcommand)
        argv.extend(
            flag for flag in profile.unattended_flags if flag not in self.dropped_unattended_flags
        )
        if profile.model and self.model_flag:
            argv.extend([self.model_flag, profile.model])
        argv.extend(profile.output_flags or self.default_output_flags)
        argv.extend(self.limit_args(profile.safety))

        if profile.prompt_style == "stdin":
            return CliCommand(argv=argv, stdin=prompt)
        if profile.prompt_style == "flag":
            argv.extend([self.prompt_flag, prompt])
        else:
            argv.append(prompt)
        return CliCommand(argv=argv)

    @abstractmethod
    def parse_response(self, stdout: str, exit_code: int) -> CliResponse:
        """Turn raw stdout and the exit code into a structured response."""

    @staticmethod
    def no_output_response(exit_code: int) -> CliResponse:
        return CliResponse(
            success=False,
            result="",
            error=f"CLI exited with code {exit_code} and no output",
        )
