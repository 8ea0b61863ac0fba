from pathlib import Path

import pytest

from nightshift.models import Task
from nightshift.prompt import PromptBuilder


@pytest.fixture
def kanban(tmp_path: Path) -> Path:
    root = tmp_path / ".kanban2code"
    files = {
        "how-it-works.md": "Global rules",
        "_agents/auditor.md": "---\ndescription: reviewer\n---\nBe strict & thorough.",
        "projects/web/_context.md": "Web project context",
        "projects/web/phase-1/_context.md": "Phase one context",
        "_templates/stages/audit.md": "Audit stage template",
        "_context/api-guide.md": "API guide",
        "_skills/testing.md": "Testing skill",
    }
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    (tmp_path / "secret.md").write_text("do not leak", encoding="utf-8")
    return root


def _task(**fields: object) -> Task:
    values: dict[str, object] = {
        "id": "api",
        "file_path": "projects/web/phase-1/api.md",
        "title": "Build <API>",
        "stage": "audit",
        "project": "web",
        "phase": "phase-1",
        "agent": "auditor",
        "contexts": ["api-guide"],
        "skills": ["testing"],
        "content": "# Build API\nUse a < b",
    }
    values.update(fields)
    return Task(**values)  # type: ignore[arg-type]


def test_prompt_contains_every_context_layer_in_order(kanban: Path) -> None:
    prompt = PromptBuilder(kanban).build_prompt(_task())

    expected = [
        "Global rules",
        "Be strict &amp; thorough.",
        "Web project context",
        "Phase one context",
        "Audit stage template",
        "API guide",
        "Testing skill",
        '<runner automated="true" stage="audit">',
    ]
    positions = [prompt.index(marker) for marker in expected]
    assert positions == sorted(positions)
    assert "description: reviewer" not in prompt


def test_task_metadata_and_body_are_escaped(kanban: Path) -> None:
    prompt = PromptBuilder(kanban).build_prompt(_task())

    assert prompt.startswith("<system><context>")
    assert prompt.endswith("</task></system>")
    assert "<title>Build &lt;API&gt;</title>" in prompt
    assert "<stage>audit</stage>" in prompt
    assert "<attempts>0</attempts>" in prompt
    assert "<content># Build API\nUse a &lt; b</content>" in prompt


def test_runner_instructions_mention_audit_markers(kanban: Path) -> None:
    prompt = PromptBuilder(kanban).build_prompt(_task())

    assert "AUDIT_VERDICT" in prompt
    assert "&lt;!-- FILES_CHANGED" in prompt


def test_missing_stage_template_gets_placeholder(kanban: Path) -> None:
    prompt = PromptBuilder(kanban).build_prompt(_task(stage="plan", agent=None, contexts=[], skills=[]))

    assert "No stage template was found for this stage." in prompt
    assert "Audit stage template" not in prompt


def test_context_outside_the_kanban_root_is_not_read(kanban: Path) -> None:
    prompt = PromptBuilder(kanban).build_prompt(_task(contexts=["../secret"]))

    assert "do not leak" not in prompt


def test_undecodable_context_file_is_skipped(kanban: Path, caplog: pytest.LogCaptureFixture) -> None:
    (kanban / "_context" / "bad.md").write_bytes(b"\xff\xfe bad")

    with caplog.at_level("WARNING", logger="nightshift.prompt"):
        prompt = PromptBuilder(kanban).build_prompt(_task(contexts=["bad", "api-guide"]))

    assert "API guide" in prompt
    assert "Failed to read context file" in caplog.text
