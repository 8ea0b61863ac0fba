from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from nightshift.backends import (
    AgentAdapter,
    CliCommand,
    CliResponse,
    LimitExceededError,
    ProcessLaunchError,
    ProcessTimeoutError,
    UnparsableOutputError,
    UnsupportedCliError,
    adapter_for_profile,
)
from nightshift.models import AgentProfile, AttemptOutcome, PipelineStage, RunAttempt, SafetyLimits
from nightshift.runner.output_parser import (
    parse_audit_rating,
    parse_audit_report,
    parse_audit_verdict,
    parse_commit,
    parse_files_changed,
)

logger = logging.getLogger(__name__)

ProcessEventHook = Callable[[dict[str, Any]], None]


class CancellationRequested(Exception):
    """Controlled unwind raised once a stop request has terminated the running agent."""


class CancellationToken:
    """A stop flag the engine flips and the supervisor can await.

    ``cancel`` may be called from a signal handler or another thread; the event
    is set on the owning loop.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._cancelled = False
        self._event = asyncio.Event()
        self._loop = loop

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        if self._cancelled:
            return False
        self._cancelled = True
        loop = self._loop
        if loop is None or loop.is_closed():
            self._event.set()
            return True
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._event.set()
        else:
            loop.call_soon_threadsafe(self._event.set)
        return True

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancellationRequested("Run was stopped")


def _decode(raw: bytes | None) -> str:
    if not raw:
        return ""
    return raw.decode("utf-8", errors="replace")


def check_limits(response: CliResponse, safety: SafetyLimits) -> None:
    """Raise when the CLI reported usage beyond the profile's turn or budget limit."""
    if safety.max_turns is not None and response.turns is not None:
        if response.turns > safety.max_turns:
            raise LimitExceededError(
                f"Turn limit exceeded: {response.turns} turns (max {safety.max_turns})"
            )
    if safety.max_budget_usd is not None and response.cost_usd is not None:
        if response.cost_usd > safety.max_budget_usd:
            raise LimitExceededError(
                f"Budget exceeded: ${response.cost_usd:.2f} (max ${safety.max_budget_usd:.2f})"
            )


class ProcessSupervisor:
    """Runs one agent CLI invocation per task-stage attempt."""

    def __init__(
        self,
        *,
        cwd: Path | None = None,
        default_timeout_seconds: float = 1800.0,
        terminate_grace_seconds: float = 5.0,
        event_hook: ProcessEventHook | None = None,
    ) -> None:
        self.cwd = cwd
        self.default_timeout_seconds = default_timeout_seconds
        self.terminate_grace_seconds = terminate_grace_seconds
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    def timeout_for(self, profile: AgentProfile) -> float:
        return profile.safety.timeout_seconds or self.default_timeout_seconds

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, sig: signal.Signals) -> bool:
        # Agents spawn helpers that inherit our pipes; signal the whole session.
        try:
            if os.name == "posix":
                os.killpg(process.pid, sig)
            else:
                process.send_signal(sig)
        except ProcessLookupError:
            return False
        return True

    async def terminate(self, process: asyncio.subprocess.Process, reason: str) -> bool:
        """SIGTERM, then SIGKILL after the grace period. Returns False if already exited."""
        if process.returncode is not None:
            return False
        if not self._signal(process, signal.SIGTERM):
            return False
        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_grace_seconds)
        except TimeoutError:
            logger.warning("Process %s ignored SIGTERM; killing", process.pid)
            self._signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
            await process.wait()
        self._emit({"event": "process_terminated", "pid": process.pid, "reason": reason})
        return True

    async def _spawn(self, command: CliCommand) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *command.argv,
                cwd=str(self.cwd) if self.cwd else None,
                stdin=asyncio.subprocess.PIPE
                if command.stdin is not None
                else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=os.name == "posix",
            )
        except FileNotFoundError as exc:
            raise ProcessLaunchError(
                f"CLI executable not found: {command.argv[0]}",
                backend=command.argv[0],
                retriable=False,
            ) from exc
        except OSError as exc:
            raise ProcessLaunchError(
                f"Could not launch {command.argv[0]}: {exc}",
                backend=command.argv[0],
                retriable=False,
            ) from exc

    async def execute(
        self,
        command: CliCommand,
        timeout_seconds: float,
        token: CancellationToken | None = None,
    ) -> tuple[str, str, int]:
        """Run the command to completion; returns (stdout, stderr, exit code)."""
        if token is not None:
            token.raise_if_cancelled()
        process = await self._spawn(command)
        self._emit({"event": "process_start", "pid": process.pid, "cli": command.argv[0]})

        stdin_bytes = command.stdin.encode("utf-8") if command.stdin is not None else None
        communicate_task = asyncio.ensure_future(process.communicate(stdin_bytes))
        waiters: set[asyncio.Future[Any]] = {communicate_task}
        cancel_task: asyncio.Future[Any] | None = None
        if token is not None:
            cancel_task = asyncio.ensure_future(token.wait())
            waiters.add(cancel_task)

        try:
            done, _pending = await asyncio.wait(
                waiters,
                timeout=timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await self.terminate(process, "cancelled")
            communicate_task.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if communicate_task in done:
            stdout, stderr = communicate_task.result()
            exit_code = process.returncode if process.returncode is not None else -1
            self._emit({"event": "process_exit", "pid": process.pid, "exit_code": exit_code})
            return _decode(stdout), _decode(stderr), exit_code

        stopped = token is not None and token.cancelled
        await self.terminate(process, "stopped" if stopped else "timeout")
        await communicate_task
        if stopped:
            raise CancellationRequested("Run was stopped while the agent was running")
        raise ProcessTimeoutError(
            f"Timed out after {timeout_seconds:g}s",
            backend=command.argv[0],
            retriable=True,
        )

    @staticmethod
    def _attempt(
        stage: PipelineStage,
        outcome: AttemptOutcome,
        started: float,
        **fields: Any,
    ) -> RunAttempt:
        duration_ms = int((time.monotonic() - started) * 1000)
        return RunAttempt(stage=stage, outcome=outcome, duration_ms=duration_ms, **fields)

    def interpret(
        self,
        adapter: AgentAdapter,
        profile: AgentProfile,
        stage: PipelineStage,
        stdout: str,
        stderr: str,
        exit_code: int,
        started: float,
    ) -> RunAttempt:
        response = adapter.parse_response(stdout, exit_code)
        usage = {
            "tokens_in": response.tokens_in,
            "tokens_out": response.tokens_out,
            "cost_usd": response.cost_usd,
            "turns": response.turns,
        }
        output = response.result or stdout

        try:
            if response.parse_failed:
                raise UnparsableOutputError(
                    f"Unparsable output from {adapter.name}: {stdout.strip()[:200]}",
                    backend=adapter.name,
                    exit_code=exit_code,
                )
            check_limits(response, profile.safety)
        except (UnparsableOutputError, LimitExceededError) as exc:
            return self._attempt(
                stage, "failed", started, output=output, error=str(exc), exit_code=exit_code, **usage
            )

        if not response.success or exit_code != 0:
            error = response.error or f"CLI exited with code {exit_code}"
            detail = stderr.strip()
            if detail and detail not in error:
                error = f"{error}: {detail[:200]}"
            return self._attempt(
                stage, "failed", started, output=output, error=error, exit_code=exit_code, **usage
            )

        attempt = self._attempt(
            stage,
            "completed",
            started,
            output=output,
            exit_code=exit_code,
            files_changed=parse_files_changed(output),
            commit=parse_commit(output),
            **usage,
        )
        if stage == "audit":
            attempt.audit_rating = parse_audit_rating(output)
            attempt.audit_verdict = parse_audit_verdict(output)
            attempt.audit_report = parse_audit_report(output)
        return attempt

    async def run(
        self,
        profile: AgentProfile,
        prompt: str,
        stage: PipelineStage,
        token: CancellationToken | None = None,
    ) -> RunAttempt:
        """Execute one attempt. Only ``CancellationRequested`` escapes; everything else is an outcome."""
        started = time.monotonic()
        try:
            adapter = adapter_for_profile(profile)
        except UnsupportedCliError as exc:
            return self._attempt(stage, "crashed", started, error=str(exc))

        command = adapter.build_command(profile, prompt)
        timeout_seconds = self.timeout_for(profile)
        logger.debug("Running %s for %s stage (timeout %ss)", command.argv[0], stage, timeout_seconds)
        try:
            stdout, stderr, exit_code = await self.execute(command, timeout_seconds, token)
        except ProcessLaunchError as exc:
            return self._attempt(stage, "crashed", started, error=str(exc))
        except ProcessTimeoutError as exc:
            return self._attempt(stage, "failed", started, error=str(exc))

        return self.interpret(adapter, profile, stage, stdout, stderr, exit_code, started)
