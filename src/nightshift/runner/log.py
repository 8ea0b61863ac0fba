from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Literal

from nightshift.models import FinishReason, RunnerTaskResult, StageRecord

logger = logging.getLogger(__name__)

KANBAN_FOLDER = ".kanban2code"
LOGS_FOLDER = "_logs"
EMPTY_RUN_LINE = "_No tasks were processed in this run._"

LogState = Literal["idle", "running", "sealed"]


class RunnerLogError(RuntimeError):
    """Raised when the log is used out of its idle/running/sealed order."""


def format_report_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


def format_file_timestamp(value: datetime) -> str:
    return value.strftime("%Y%m%d-%H%M%S")


def format_duration(ms: float) -> str:
    total_seconds = int(max(0, ms)) // 1000
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}m {seconds:02d}s"


def format_tokens(tokens_in: int | None, tokens_out: int | None) -> str:
    if tokens_in is None and tokens_out is None:
        return "-"
    return f"{tokens_in or 0:,} in / {tokens_out or 0:,} out"


def format_stage(record: StageRecord) -> str:
    parts = [f"{record.stage} -> {record.stage_transition}"]
    if record.stage == "audit":
        if record.audit_rating is not None:
            parts.append(f"rating: {record.audit_rating}/10")
        if record.audit_verdict:
            parts.append(f"verdict: {record.audit_verdict}")
        if record.audit_report:
            parts.append(f"report: {record.audit_report}")
    if record.files_changed:
        parts.append("files: " + ", ".join(record.files_changed))
    if record.output_file:
        parts.append(f"output: {record.output_file}")
    return "; ".join(parts)


def resolve_logs_directory(root: Path, kanban_folder: str = KANBAN_FOLDER) -> Path:
    if root.name == kanban_folder:
        return root / LOGS_FOLDER
    return root / kanban_folder / LOGS_FOLDER


class RunnerLog:
    """Per-run task results, rendered as the Night Shift markdown report."""

    def __init__(
        self,
        *,
        now: Callable[[], datetime] | None = None,
        kanban_folder: str = KANBAN_FOLDER,
    ) -> None:
        self._now = now or datetime.now
        self.kanban_folder = kanban_folder
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None
        self.finish_reason: FinishReason | None = None
        self._tasks: list[RunnerTaskResult] = []

    @property
    def state(self) -> LogState:
        if self.started_at is None:
            return "idle"
        if self.finish_reason is None:
            return "running"
        return "sealed"

    @property
    def tasks(self) -> tuple[RunnerTaskResult, ...]:
        return tuple(self._tasks)

    def start_run(self) -> None:
        self.started_at = self._now()
        self.finished_at = None
        self.finish_reason = None
        self._tasks.clear()

    def record_task(self, result: RunnerTaskResult) -> None:
        if self.state != "running":
            raise RunnerLogError(f"Cannot record a task while the log is {self.state}")
        self._tasks.append(result)

    def finish_run(self, reason: FinishReason) -> None:
        if self.started_at is None:
            self.started_at = self._now()
        self.finished_at = self._now()
        self.finish_reason = reason

    def counts(self) -> dict[str, int]:
        counts = {"completed": 0, "failed": 0, "crashed": 0}
        for task in self._tasks:
            counts[task.status] += 1
        return counts

    def to_markdown(self) -> str:
        start = self.started_at or self._now()
        end = self.finished_at or self._now()
        counts = self.counts()

        lines = [
            f"# Night Shift Report — {format_report_timestamp(start)}",
            "",
            "## Summary",
            "| Metric | Value |",
            "| --- | --- |",
            f"| Tasks processed | {len(self._tasks)} |",
            f"| Completed | {counts['completed']} |",
            f"| Failed | {counts['failed']} |",
            f"| Crashed | {counts['crashed']} |",
            f"| Total time | {format_duration((end - start).total_seconds() * 1000)} |",
            f"| Finish reason | {self.finish_reason or 'in-progress'} |",
            "",
            "## Tasks",
        ]

        if not self._tasks:
            lines.append(EMPTY_RUN_LINE)
            lines.append("")
            return "\n".join(lines)

        for task in self._tasks:
            duration = format_duration(task.duration_ms) if task.duration_ms is not None else "-"
            lines.extend(
                [
                    "",
                    f"### {task.title or task.task_id}",
                    f"- Task: {task.task_id}",
                    f"- Status: {task.status}",
                    f"- Provider: {task.provider or '-'}",
                    f"- Agent: {task.agent or '-'}",
                    f"- Tokens: {format_tokens(task.tokens_in, task.tokens_out)}",
                    f"- Time: {duration}",
                    f"- Commit: {task.commit or '-'}",
                    f"- Attempts: {task.attempts or 0}",
                    f"- Error: {task.error or '-'}",
                ]
            )
            if task.stages:
                lines.append("")
                lines.append("**Stages:**")
                lines.extend(f"- {format_stage(record)}" for record in task.stages)

        lines.append("")
        return "\n".join(lines)

    def run_directory(self, root: Path) -> Path:
        start = self.started_at or self._now()
        name = f"run-{format_file_timestamp(start)}"
        return resolve_logs_directory(root, self.kanban_folder) / name

    def save(self, root: Path) -> Path:
        run_dir = self.run_directory(root)
        run_dir.mkdir(parents=True, exist_ok=True)
        file_path = run_dir / f"{run_dir.name}.md"
        file_path.write_text(self.to_markdown(), encoding="utf-8")
        logger.info("Saved runner report to %s", file_path)
        return file_path
