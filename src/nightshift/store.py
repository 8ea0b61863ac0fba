from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from nightshift.frontmatter import FrontmatterError, compose_frontmatter, parse_frontmatter
from nightshift.models import Stage, Task, is_stage

logger = logging.getLogger(__name__)

INBOX_FOLDER = "inbox"
PROJECTS_FOLDER = "projects"
CONTEXT_FILE = "_context.md"
TITLE_PATTERN = re.compile(r"^#\s+(.+?)\s*$", re.MULTILINE)


class TaskNotFoundError(LookupError):
    """Raised when no task file matches the requested id."""


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()]


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class MarkdownTaskStore:
    """Tasks stored as markdown files with YAML frontmatter under the kanban root."""

    def __init__(self, kanban_root: Path) -> None:
        self.kanban_root = kanban_root.resolve()

    def _task_files(self) -> list[Path]:
        files: list[Path] = []
        files.extend(sorted((self.kanban_root / INBOX_FOLDER).glob("*.md")))
        files.extend(sorted((self.kanban_root / PROJECTS_FOLDER).glob("**/*.md")))
        for phase_dir in sorted(self.kanban_root.glob("phase-*")):
            if phase_dir.is_dir():
                files.extend(sorted(phase_dir.glob("*.md")))
        return [path for path in files if path.is_file() and path.name != CONTEXT_FILE]

    def _infer_location(self, path: Path) -> tuple[str | None, str | None]:
        parts = path.relative_to(self.kanban_root).parts
        if parts[0] == PROJECTS_FOLDER and len(parts) >= 3:
            project = parts[1]
            phase = parts[2] if len(parts) >= 4 else None
            return project, phase
        if parts[0].startswith("phase-") and len(parts) == 2:
            return None, parts[0]
        return None, None

    def parse_task(self, path: Path) -> Task:
        data, body = parse_frontmatter(path.read_text(encoding="utf-8"))
        stage: Stage = data["stage"] if is_stage(data.get("stage")) else "inbox"
        project, phase = self._infer_location(path)
        title_match = TITLE_PATTERN.search(body)
        attempts = data.get("attempts", 0)
        order = data.get("order")
        return Task(
            id=path.stem,
            file_path=str(path),
            title=title_match.group(1) if title_match else path.stem,
            stage=stage,
            project=project,
            phase=phase,
            agent=_optional_str(data.get("agent")),
            provider=_optional_str(data.get("provider")),
            parent=_optional_str(data.get("parent")),
            tags=_string_list(data.get("tags")),
            contexts=_string_list(data.get("contexts")),
            skills=_string_list(data.get("skills")),
            attempts=attempts if isinstance(attempts, int) and attempts >= 0 else 0,
            order=float(order) if isinstance(order, (int, float)) else None,
            content=body,
        )

    def list_tasks(self) -> list[Task]:
        tasks: list[Task] = []
        seen: dict[str, Path] = {}
        for path in self._task_files():
            if path.stem in seen:
                # Ids are file stems; the first file wins, matching _find_path.
                logger.warning("Ignoring %s: task id %r is already used by %s", path, path.stem, seen[path.stem])
                continue
            seen[path.stem] = path
            try:
                tasks.append(self.parse_task(path))
            except (OSError, UnicodeDecodeError, FrontmatterError) as exc:
                logger.warning("Skipping unreadable task file %s: %s", path, exc)
        return tasks

    def list_tasks_in_stage(self, stage: Stage) -> list[Task]:
        tasks = [task for task in self.list_tasks() if task.stage == stage]
        return sorted(
            tasks,
            key=lambda task: (task.order is None, task.order or 0.0, task.id),
        )

    def _find_path(self, task_id: str) -> Path:
        for path in self._task_files():
            if path.stem == task_id:
                return path
        raise TaskNotFoundError(f"Task not found: {task_id}")

    def load_task(self, task_id: str) -> Task:
        return self.parse_task(self._find_path(task_id))

    def save_task_stage(self, task_id: str, stage: Stage, attempts: int) -> None:
        path = self._find_path(task_id)
        data, body = parse_frontmatter(path.read_text(encoding="utf-8"))
        data["stage"] = stage
        if attempts or "attempts" in data:
            data["attempts"] = attempts
        path.write_text(compose_frontmatter(data, body), encoding="utf-8")
        logger.debug("Persisted task %s stage=%s attempts=%s", task_id, stage, attempts)
