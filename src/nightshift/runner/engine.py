from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from nightshift.config import NightshiftConfig
from nightshift.models import (
    PIPELINE_STAGES,
    AgentProfile,
    FinishReason,
    RunAttempt,
    RunnerTaskResult,
    RunStatus,
    Stage,
    StageRecord,
    Task,
    TaskStatus,
    is_stage,
)
from nightshift.profiles import ProfileError, ProfileResolver
from nightshift.prompt import PromptBuilder
from nightshift.runner import git_ops
from nightshift.runner.log import RunnerLog
from nightshift.runner.process import CancellationRequested, CancellationToken, ProcessSupervisor
from nightshift.runner.state import RunnerStateChannel, RunnerStateSnapshot
from nightshift.runner.transitions import TransitionDecision, TransitionPolicy
from nightshift.store import MarkdownTaskStore

logger = logging.getLogger(__name__)

RunnerEventHook = Callable[[dict[str, Any]], None]

STOPPED_ERROR = "Run stopped before the task completed"


class RunnerAlreadyActiveError(RuntimeError):
    """Raised when a run is requested while another one is still in flight."""


class WorkingTreeError(RuntimeError):
    """Raised when the git working tree is not safe to run agents against."""


@dataclass(slots=True, frozen=True)
class RunResult:
    status: RunStatus
    error: str | None = None
    report_path: Path | None = None
    tasks: tuple[RunnerTaskResult, ...] = ()


@dataclass(slots=True)
class _TaskProgress:
    task: Task
    started: float = field(default_factory=time.monotonic)
    providers: list[str] = field(default_factory=list)
    agents: list[str] = field(default_factory=list)
    stages: list[StageRecord] = field(default_factory=list)
    tokens_in: int | None = None
    tokens_out: int | None = None
    commit: str | None = None

    def use(self, provider: str, agent: str | None) -> None:
        if not self.providers or self.providers[-1] != provider:
            self.providers.append(provider)
        if agent and (not self.agents or self.agents[-1] != agent):
            self.agents.append(agent)

    def add_usage(self, attempt: RunAttempt) -> None:
        if attempt.tokens_in is not None:
            self.tokens_in = (self.tokens_in or 0) + attempt.tokens_in
        if attempt.tokens_out is not None:
            self.tokens_out = (self.tokens_out or 0) + attempt.tokens_out
        if attempt.commit:
            self.commit = attempt.commit

    def finish(self, status: TaskStatus, attempts: int, error: str | None) -> RunnerTaskResult:
        return RunnerTaskResult(
            task_id=self.task.id,
            title=self.task.title,
            status=status,
            provider=" -> ".join(self.providers) or self.task.provider,
            agent=" -> ".join(self.agents) or self.task.agent,
            tokens_in=self.tokens_in,
            tokens_out=self.tokens_out,
            duration_ms=int((time.monotonic() - self.started) * 1000),
            commit=self.commit,
            attempts=attempts,
            error=error,
            stages=tuple(self.stages),
        )


class RunnerEngine:
    """Drives tasks through plan/code/audit with one unattended agent run at a time.

    Only one ``run_task``/``run_column`` may be in flight per engine. The guard is
    claimed on the first step of the coroutine, before any suspension point, so a
    second caller gets ``RunnerAlreadyActiveError`` immediately.
    """

    def __init__(
        self,
        *,
        store: MarkdownTaskStore,
        profiles: ProfileResolver,
        prompts: PromptBuilder,
        supervisor: ProcessSupervisor,
        workspace_root: Path,
        config: NightshiftConfig | None = None,
        log: RunnerLog | None = None,
        state: RunnerStateChannel | None = None,
        event_hook: RunnerEventHook | None = None,
    ) -> None:
        self.store = store
        self.profiles = profiles
        self.prompts = prompts
        self.supervisor = supervisor
        self.workspace_root = workspace_root.resolve()
        self.config = config or NightshiftConfig.default()
        self.kanban_root = self.config.kanban_root(self.workspace_root)
        self.log = log or RunnerLog(kanban_folder=self.kanban_root.name)
        self.state = state or RunnerStateChannel()
        self.event_hook = event_hook
        self.policy = TransitionPolicy(
            retry_ceiling=self.config.runner.retry_ceiling,
            audit_pass_rating=self.config.runner.audit_pass_rating,
        )
        self._guard = threading.Lock()
        self._token: CancellationToken | None = None

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    def _claim(self) -> CancellationToken:
        if not self._guard.acquire(blocking=False):
            raise RunnerAlreadyActiveError("Runner is already active")
        token = CancellationToken(asyncio.get_running_loop())
        self._token = token
        return token

    def _release(self) -> None:
        self._token = None
        self._guard.release()

    def stop(self) -> bool:
        """Signal the active run to stop. Returns False when there is nothing to stop."""
        token = self._token
        if token is None or not self._guard.locked():
            return False
        signaled = token.cancel()
        if signaled:
            logger.info("Stop requested; terminating the active agent")
        return signaled

    async def run_task(self, task_id: str) -> RunResult:
        token = self._claim()
        try:
            task = self.store.load_task(task_id)
            run = await self._run([task], token)
        finally:
            self._release()

        if run.status != "completed":
            return run
        if run.tasks:
            result = run.tasks[0]
            if result.status == "completed":
                return run
            return replace(run, status="failed", error=result.error)
        if task.stage == "completed":
            return run
        return replace(
            run,
            status="failed",
            error=f"Runner cannot execute task from stage '{task.stage}'",
        )

    async def run_column(self, stage: Stage) -> RunResult:
        token = self._claim()
        try:
            if not is_stage(stage):
                raise ValueError(f"Unknown stage: {stage}")
            tasks = self.store.list_tasks_in_stage(stage)
            return await self._run(tasks, token)
        finally:
            self._release()

    def _check_worktree(self) -> None:
        if not self.config.runner.require_clean_worktree:
            return
        try:
            clean = git_ops.is_working_tree_clean(self.workspace_root)
        except git_ops.GitOperationError as exc:
            raise WorkingTreeError(f"Unable to check git working tree: {exc}") from exc
        if not clean:
            raise WorkingTreeError(
                "Refusing to run: git working tree is dirty. Commit or stash changes first."
            )

    def _set_state(self, running: bool, task_id: str | None = None, stage: Stage | None = None) -> None:
        self.state.set(RunnerStateSnapshot(is_running=running, active_task_id=task_id, active_stage=stage))

    async def _run(self, tasks: list[Task], token: CancellationToken) -> RunResult:
        self.log.start_run()
        self._set_state(True)
        self._emit({"event": "runner_started", "tasks": [task.id for task in tasks]})
        reason: FinishReason = "completed"
        error: str | None = None
        try:
            self._check_worktree()
            for task in tasks:
                if token.cancelled:
                    reason = "stopped"
                    break
                result = await self._run_one(task, token)
                if result is not None:
                    self.log.record_task(result)
                if token.cancelled:
                    reason = "stopped"
                    break
        except WorkingTreeError as exc:
            reason = "failed"
            error = str(exc)
            logger.error("%s", exc)
        except asyncio.CancelledError:
            reason = "stopped"
            raise
        except Exception:
            reason = "failed"
            raise
        finally:
            self.log.finish_run(reason)
            self._set_state(False)
            self._emit({"event": "runner_stopped", "reason": reason, "error": error})
            logger.info("Runner finished: %s", reason)
            report_path = self._save_report()

        return RunResult(status=reason, error=error, report_path=report_path, tasks=self.log.tasks)

    def _save_report(self) -> Path | None:
        if not self.config.runner.save_report:
            return None
        try:
            return self.log.save(self.kanban_root)
        except OSError as exc:
            logger.warning("Failed to save run report under %s: %s", self.kanban_root, exc)
            return None

    def _agent_for(self, task: Task, stage: Stage) -> str | None:
        return self.config.stages.agent_for(stage) or task.agent

    def _profile_name(self, task: Task, agent: str | None) -> str:
        return task.provider or self.config.providers.provider_for(agent)

    def _write_stage_output(self, task_id: str, stage: Stage, index: int, output: str) -> str | None:
        if not self.config.runner.save_stage_output:
            return None
        run_dir = self.log.run_directory(self.kanban_root)
        path = run_dir / f"{task_id}-{stage}-{index}.md"
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(output, encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to write stage output %s: %s", path, exc)
            return None
        return path.name

    def _auto_commit(self, task: Task) -> str | None:
        if not self.config.runner.auto_commit:
            return None
        try:
            return git_ops.commit_runner_changes(self.workspace_root, task.title)
        except git_ops.GitOperationError as exc:
            logger.warning("Auto-commit failed for %s: %s", task.id, exc)
            return None

    async def _run_stage(
        self,
        task: Task,
        stage: Stage,
        attempts: int,
        agent: str | None,
        profile: AgentProfile,
        progress: _TaskProgress,
        token: CancellationToken,
    ) -> TransitionDecision:
        prompt = self.prompts.build_prompt(replace(task, stage=stage, attempts=attempts, agent=agent))
        attempt = await self.supervisor.run(profile, prompt, stage, token)

        progress.add_usage(attempt)
        decision = self.policy.decide(
            stage,
            attempt.outcome,
            attempts,
            verdict=attempt.audit_verdict,
            rating=attempt.audit_rating,
            error=attempt.error,
        )
        output_file = self._write_stage_output(task.id, stage, len(progress.stages) + 1, attempt.output)
        progress.stages.append(
            StageRecord(
                stage=stage,
                stage_transition=decision.next_stage,
                files_changed=tuple(attempt.files_changed),
                audit_rating=attempt.audit_rating,
                audit_verdict=attempt.audit_verdict,
                output_file=output_file,
                audit_report=attempt.audit_report,
            )
        )
        self.store.save_task_stage(task.id, decision.next_stage, decision.attempts)
        self._emit(
            {
                "event": "stage_completed",
                "task_id": task.id,
                "stage": stage,
                "outcome": attempt.outcome,
                "transition": decision.next_stage,
                "attempts": decision.attempts,
                "files_changed": list(attempt.files_changed),
                "audit_rating": attempt.audit_rating,
                "audit_verdict": attempt.audit_verdict,
                "audit_report": attempt.audit_report,
            }
        )
        return decision

    async def _run_one(self, task: Task, token: CancellationToken) -> RunnerTaskResult | None:
        if task.stage not in PIPELINE_STAGES:
            logger.info("Skipping %s: stage '%s' is not executable", task.id, task.stage)
            return None

        progress = _TaskProgress(task=task)
        stage: Stage = task.stage
        attempts = task.attempts
        status: TaskStatus | None = None
        error: str | None = None
        self._emit({"event": "task_started", "task_id": task.id, "stage": stage})

        while status is None:
            if token.cancelled:
                status, error = "failed", STOPPED_ERROR
                break

            agent = self._agent_for(task, stage)
            profile_name = self._profile_name(task, agent)
            self._set_state(True, task.id, stage)
            try:
                profile = self.profiles.resolve(profile_name, stage)
            except ProfileError as exc:
                status, error = "crashed", str(exc)
                break
            progress.use(profile.name, agent)

            self._emit(
                {
                    "event": "stage_started",
                    "task_id": task.id,
                    "stage": stage,
                    "provider": profile.name,
                    "agent": agent,
                    "attempts": attempts,
                }
            )
            try:
                decision = await self._run_stage(task, stage, attempts, agent, profile, progress, token)
            except CancellationRequested:
                status, error = "failed", STOPPED_ERROR
                break
            except Exception as exc:
                logger.exception("Task %s crashed at stage %s", task.id, stage)
                status, error = "crashed", str(exc) or type(exc).__name__
                break

            if decision.reason and decision.status == "continue":
                logger.info("%s: %s; retrying at %s", task.id, decision.reason, decision.next_stage)
            stage, attempts = decision.next_stage, decision.attempts

            if decision.status == "completed":
                status = "completed"
            elif decision.status in ("failed", "crashed"):
                status, error = decision.status, decision.reason

        if status == "completed":
            progress.commit = self._auto_commit(task) or progress.commit
            self._emit({"event": "task_completed", "task_id": task.id})
        else:
            logger.warning("Task %s %s: %s", task.id, status, error)
            self._emit({"event": "task_failed", "task_id": task.id, "status": status, "error": error})
        return progress.finish(status, attempts, error)
