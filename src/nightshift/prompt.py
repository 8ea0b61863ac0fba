from __future__ import annotations

import logging
from pathlib import Path
from xml.sax.saxutils import escape

from nightshift.frontmatter import split_frontmatter
from nightshift.models import Task

logger = logging.getLogger(__name__)

GLOBAL_CONTEXT_FILES = ("how-it-works.md", "architecture.md", "project-details.md")
AGENTS_FOLDER = "_agents"
CONTEXT_FOLDER = "_context"
SKILLS_FOLDER = "_skills"
STAGE_TEMPLATES_FOLDER = "_templates/stages"

RUNNER_INSTRUCTIONS = {
    "plan": (
        "You are running unattended. Refine the task into a concrete implementation plan "
        "and write it into the task file. Do not implement code in this stage."
    ),
    "code": (
        "You are running unattended. Implement the task. When you finish, list every file "
        "you modified in a FILES_CHANGED marker."
    ),
    "audit": (
        "You are running unattended. Review the implementation against the task. Emit an "
        "AUDIT_RATING marker (0-10) and an AUDIT_VERDICT marker (ACCEPTED or NEEDS_WORK). "
        "If you write a detailed report, reference it with an AUDIT_REPORT marker."
    ),
}

MARKER_REFERENCE = """Report results with HTML comment markers on their own lines:
<!-- FILES_CHANGED: path/one.py, path/two.py -->
<!-- COMMIT: <hash> -->
<!-- AUDIT_RATING: 8 -->
<!-- AUDIT_VERDICT: ACCEPTED -->
<!-- AUDIT_REPORT: path/to/report.md -->"""


def _ensure_extension(name: str) -> str:
    return name if name.endswith(".md") else f"{name}.md"


def _section(name: str, content: str) -> str:
    if not content.strip():
        return ""
    return f'<section name="{name}">{escape(content)}</section>'


class PromptBuilder:
    """Assembles the layered runner prompt for a task at its current stage."""

    def __init__(self, kanban_root: Path) -> None:
        self.kanban_root = kanban_root.resolve()

    def _read(self, relative_path: str | Path) -> str:
        target = (self.kanban_root / relative_path).resolve()
        if not target.is_relative_to(self.kanban_root):
            logger.warning("Refusing to read context outside the kanban root: %s", target)
            return ""
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read context file %s: %s", target, exc)
            return ""

    def global_context(self) -> str:
        parts = [self._read(name) for name in GLOBAL_CONTEXT_FILES]
        return "\n\n".join(part for part in parts if part)

    def agent_instructions(self, agent: str | None) -> str:
        if not agent:
            return ""
        raw = self._read(Path(AGENTS_FOLDER) / _ensure_extension(agent))
        _fm, body = split_frontmatter(raw)
        return body.strip()

    def project_context(self, task: Task) -> str:
        if not task.project:
            return ""
        return self._read(Path("projects") / task.project / "_context.md")

    def phase_context(self, task: Task) -> str:
        if not task.phase:
            return ""
        if task.project:
            return self._read(Path("projects") / task.project / task.phase / "_context.md")
        return self._read(Path(task.phase) / "_context.md")

    def custom_contexts(self, names: list[str]) -> str:
        parts: list[str] = []
        for name in names:
            normalized = _ensure_extension(name)
            if "/" in normalized or "\\" in normalized:
                parts.append(self._read(normalized))
                continue
            content = self._read(Path(CONTEXT_FOLDER) / normalized)
            parts.append(content or self._read(normalized))
        return "\n\n".join(part for part in parts if part)

    def skills(self, names: list[str]) -> str:
        parts = [self._read(Path(SKILLS_FOLDER) / _ensure_extension(name)) for name in names]
        return "\n\n".join(part for part in parts if part)

    def stage_template(self, stage: str) -> str:
        content = self._read(Path(STAGE_TEMPLATES_FOLDER) / f"{stage}.md")
        if not content.strip():
            return f"## Stage: {stage}\nNo stage template was found for this stage."
        return content

    @staticmethod
    def _metadata(task: Task) -> str:
        parts = [
            f"<id>{escape(task.id)}</id>",
            f"<filePath>{escape(task.file_path)}</filePath>",
            f"<title>{escape(task.title)}</title>",
            f"<stage>{escape(task.stage)}</stage>",
            f"<attempts>{task.attempts}</attempts>",
        ]
        for tag_name, value in (
            ("project", task.project),
            ("phase", task.phase),
            ("agent", task.agent),
            ("parent", task.parent),
        ):
            if value:
                parts.append(f"<{tag_name}>{escape(value)}</{tag_name}>")
        parts.append("<tags>" + "".join(f"<tag>{escape(t)}</tag>" for t in task.tags) + "</tags>")
        return "<metadata>" + "".join(parts) + "</metadata>"

    def build_prompt(self, task: Task) -> str:
        layers = [
            _section("global", self.global_context()),
            _section("agent", self.agent_instructions(task.agent)),
            _section("project", self.project_context(task)),
            _section("phase", self.phase_context(task)),
            _section("stage", self.stage_template(task.stage)),
            _section("custom", self.custom_contexts(task.contexts)),
            _section("skills", self.skills(task.skills)),
        ]
        instructions = RUNNER_INSTRUCTIONS.get(task.stage, "")
        runner = (
            f'<runner automated="true" stage="{escape(task.stage)}">'
            f"{escape(instructions)}\n\n{escape(MARKER_REFERENCE)}</runner>"
        )
        context = "<context>" + "".join(layer for layer in layers if layer) + runner + "</context>"
        body = f"<task>{self._metadata(task)}<content>{escape(task.content)}</content></task>"
        return f"<system>{context}{body}</system>"
