from __future__ import annotations

from pathlib import PurePath

from nightshift.backends.base import (
    AgentAdapter,
    AgentExecutionError,
    CliCommand,
    CliResponse,
    LimitExceededError,
    ProcessLaunchError,
    ProcessTimeoutError,
    UnparsableOutputError,
    UnsupportedCliError,
)
from nightshift.backends.claude import ClaudeAdapter
from nightshift.backends.codex import CodexAdapter
from nightshift.backends.kilo import KiloAdapter
from nightshift.backends.text import KimiAdapter, PlainTextAdapter
from nightshift.models import AgentProfile

ADAPTERS: dict[str, type[AgentAdapter]] = {
    "claude": ClaudeAdapter,
    "codex": CodexAdapter,
    "kilo": KiloAdapter,
    "kimi": KimiAdapter,
    "text": PlainTextAdapter,
}


def adapter_for_profile(profile: AgentProfile) -> AgentAdapter:
    key = profile.adapter or PurePath(profile.cli).name.lower().removesuffix(".exe")
    adapter_cls = ADAPTERS.get(key)
    if adapter_cls is None:
        raise UnsupportedCliError(
            f"Unsupported CLI adapter: {key}",
            backend=profile.cli,
            retriable=False,
        )
    return adapter_cls()


__all__ = [
    "ADAPTERS",
    "AgentAdapter",
    "AgentExecutionError",
    "ClaudeAdapter",
    "CliCommand",
    "CliResponse",
    "CodexAdapter",
    "KiloAdapter",
    "KimiAdapter",
    "LimitExceededError",
    "PlainTextAdapter",
    "ProcessLaunchError",
    "ProcessTimeoutError",
    "UnparsableOutputError",
    "UnsupportedCliError",
    "adapter_for_profile",
]
