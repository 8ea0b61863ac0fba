from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Stage = Literal["inbox", "plan", "code", "audit", "completed"]
PipelineStage = Literal["plan", "code", "audit"]
PromptStyle = Literal["flag", "stdin", "positional"]
AttemptOutcome = Literal["completed", "failed", "crashed"]
TaskStatus = Literal["completed", "failed", "crashed"]
FinishReason = Literal["completed", "stopped", "failed"]
RunStatus = Literal["completed", "failed", "stopped"]

STAGES: tuple[Stage, ...] = ("inbox", "plan", "code", "audit", "completed")
PIPELINE_STAGES: tuple[PipelineStage, ...] = ("plan", "code", "audit")
PROMPT_STYLES: tuple[PromptStyle, ...] = ("flag", "stdin", "positional")


def is_stage(value: object) -> bool:
    return isinstance(value, str) and value in STAGES


@dataclass(slots=True)
class Task:
    id: str
    file_path: str
    title: str
    stage: Stage = "inbox"
    project: str | None = None
    phase: str | None = None
    agent: str | None = None
    provider: str | None = None
    parent: str | None = None
    tags: list[str] = field(default_factory=list)
    contexts: list[str] = field(default_factory=list)
    skills: list[str] = field(default_factory=list)
    attempts: int = 0
    order: float | None = None
    content: str = ""


@dataclass(slots=True, frozen=True)
class SafetyLimits:
    max_turns: int | None = None
    max_budget_usd: float | None = None
    timeout_seconds: float | None = None


@dataclass(slots=True, frozen=True)
class AgentProfile:
    """A resolved CLI invocation profile. Read-only for the length of a run."""

    name: str
    cli: str
    model: str
    subcommand: str | None = None
    unattended_flags: tuple[str, ...] = ()
    output_flags: tuple[str, ...] = ()
    prompt_style: PromptStyle = "flag"
    safety: SafetyLimits = field(default_factory=SafetyLimits)
    adapter: str | None = None


@dataclass(slots=True)
class RunAttempt:
    stage: PipelineStage
    outcome: AttemptOutcome
    output: str = ""
    error: str | None = None
    exit_code: int | None = None
    files_changed: list[str] = field(default_factory=list)
    commit: str | None = None
    tokens_in: int | None = None
    tokens_out: int | None = None
    cost_usd: float | None = None
    turns: int | None = None
    duration_ms: int = 0
    audit_rating: int | None = None
    audit_verdict: str | None = None
    audit_report: str | None = None


@dataclass(slots=True, frozen=True)
class StageRecord:
    stage: PipelineStage
    stage_transition: Stage
    files_changed: tuple[str, ...] = ()
    audit_rating: int | None = None
    audit_verdict: str | None = None
    output_file: str | None = None
    audit_report: str | None = None


@dataclass(slots=True, frozen=True)
class RunnerTaskResult:
    task_id: str
    title: str
    status: TaskStatus
    provider: str | None = None
    agent: str | None = None
    tokens_in: int | None = None
    tokens_out: int | None = None
    duration_ms: int | None = None
    commit: str | None = None
    attempts: int | None = None
    error: str | None = None
    stages: tuple[StageRecord, ...] = ()
