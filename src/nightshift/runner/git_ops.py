from __future__ import annotations

import re
import subprocess
from pathlib import Path


class GitOperationError(RuntimeError):
    """Raised when a git command the runner depends on fails."""


def _run_git(repo_root: Path, args: list[str]) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(
            ["git", "--no-pager", *args],
            cwd=repo_root,
            text=True,
            capture_output=True,
        )
    except FileNotFoundError as exc:
        raise GitOperationError("git executable not found in PATH.") from exc


def _checked(repo_root: Path, args: list[str], action: str) -> str:
    proc = _run_git(repo_root, args)
    if proc.returncode != 0:
        detail = proc.stderr.strip() or proc.stdout.strip() or "unknown error"
        raise GitOperationError(f"Failed to {action}: {detail}")
    return proc.stdout


def dirty_paths(repo_root: Path) -> list[str]:
    output = _checked(repo_root, ["status", "--porcelain"], "check git working tree")
    return [line[3:].strip() for line in output.splitlines() if line.strip()]


def is_working_tree_clean(repo_root: Path) -> bool:
    return not dirty_paths(repo_root)


def normalize_task_title(title: str) -> str:
    normalized = re.sub(r"\s+", " ", title.strip())
    return normalized or "untitled-task"


def commit_runner_changes(repo_root: Path, task_title: str) -> str | None:
    """Stage and commit everything; returns the new commit hash, or None if nothing changed."""
    if is_working_tree_clean(repo_root):
        return None
    message = f"feat(runner): {normalize_task_title(task_title)} [auto]"
    _checked(repo_root, ["add", "-A"], "stage changes")
    _checked(repo_root, ["commit", "-m", message], "commit runner changes")
    commit_hash = _checked(repo_root, ["rev-parse", "HEAD"], "read commit hash").strip()
    if not commit_hash:
        raise GitOperationError("Failed to read commit hash: empty output")
    return commit_hash
