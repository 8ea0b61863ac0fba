from pathlib import Path

import pytest

from nightshift.frontmatter import FrontmatterError, compose_frontmatter, parse_frontmatter
from nightshift.store import MarkdownTaskStore, TaskNotFoundError


def _write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def kanban(tmp_path: Path) -> Path:
    root = tmp_path / ".kanban2code"
    _write(
        root / "inbox" / "login.md",
        "---\nstage: code\nagent: coder\ntags: [auth, ui]\norder: 2\n---\n\n# Add login form\n\nBody text.\n",
    )
    _write(root / "inbox" / "idea.md", "No frontmatter, no heading.\n")
    _write(
        root / "projects" / "web" / "phase-1" / "api.md",
        "---\nstage: code\norder: 1\nprovider: opus\ncontexts: [api-guide]\n---\n# Build API\n",
    )
    _write(root / "projects" / "web" / "_context.md", "Project context")
    _write(root / "projects" / "web" / "audit-me.md", "---\nstage: audit\nattempts: 1\n---\n# Audit me\n")
    _write(root / "phase-2" / "cleanup.md", "---\nstage: code\n---\n# Cleanup\n")
    return root


def test_parse_task_reads_frontmatter_and_title(kanban: Path) -> None:
    task = MarkdownTaskStore(kanban).load_task("login")

    assert task.title == "Add login form"
    assert task.stage == "code"
    assert task.agent == "coder"
    assert task.tags == ["auth", "ui"]
    assert task.order == 2.0
    assert task.project is None
    assert "Body text." in task.content


def test_defaults_for_plain_markdown(kanban: Path) -> None:
    task = MarkdownTaskStore(kanban).load_task("idea")

    assert task.title == "idea"
    assert task.stage == "inbox"
    assert task.attempts == 0


def test_project_and_phase_inferred_from_location(kanban: Path) -> None:
    store = MarkdownTaskStore(kanban)

    api = store.load_task("api")
    audit = store.load_task("audit-me")
    cleanup = store.load_task("cleanup")

    assert (api.project, api.phase) == ("web", "phase-1")
    assert (audit.project, audit.phase) == ("web", None)
    assert (cleanup.project, cleanup.phase) == (None, "phase-2")
    assert audit.attempts == 1


def test_context_files_are_not_tasks(kanban: Path) -> None:
    ids = {task.id for task in MarkdownTaskStore(kanban).list_tasks()}

    assert "_context" not in ids
    assert ids == {"login", "idea", "api", "audit-me", "cleanup"}


def test_column_order_uses_order_then_id(kanban: Path) -> None:
    tasks = MarkdownTaskStore(kanban).list_tasks_in_stage("code")

    assert [task.id for task in tasks] == ["api", "login", "cleanup"]


def test_save_task_stage_keeps_other_frontmatter(kanban: Path) -> None:
    store = MarkdownTaskStore(kanban)

    store.save_task_stage("login", "audit", 1)

    data, body = parse_frontmatter((kanban / "inbox" / "login.md").read_text(encoding="utf-8"))
    assert data["stage"] == "audit"
    assert data["attempts"] == 1
    assert data["agent"] == "coder"
    assert data["tags"] == ["auth", "ui"]
    assert "# Add login form" in body
    assert store.load_task("login").stage == "audit"


def test_unreadable_task_is_skipped_when_listing(kanban: Path) -> None:
    _write(kanban / "inbox" / "broken.md", "---\nstage: [unclosed\n---\n# Broken\n")

    ids = {task.id for task in MarkdownTaskStore(kanban).list_tasks()}

    assert "broken" not in ids
    assert "login" in ids


def test_unknown_task_id(kanban: Path) -> None:
    with pytest.raises(TaskNotFoundError):
        MarkdownTaskStore(kanban).load_task("nope")


def test_frontmatter_round_trip_and_errors() -> None:
    text = compose_frontmatter({"stage": "plan", "tags": ["a"]}, "# Title\n")

    assert text.startswith("---\nstage: plan\n")
    assert parse_frontmatter(text) == ({"stage": "plan", "tags": ["a"]}, "# Title\n")
    assert parse_frontmatter("just body") == ({}, "just body")
    with pytest.raises(FrontmatterError):
        parse_frontmatter("---\n- a list\n---\nbody")


def test_duplicate_task_ids_keep_the_first_file(kanban: Path, caplog: pytest.LogCaptureFixture) -> None:
    _write(kanban / "projects" / "web" / "phase-1" / "login.md", "---\nstage: audit\n---\n# Other login\n")
    store = MarkdownTaskStore(kanban)

    with caplog.at_level("WARNING", logger="nightshift.store"):
        tasks = [task for task in store.list_tasks() if task.id == "login"]

    assert len(tasks) == 1
    assert tasks[0].file_path == str((kanban / "inbox" / "login.md").resolve())
    assert store.load_task("login").title == "Add login form"
    assert "already used" in caplog.text
    assert [task.id for task in store.list_tasks_in_stage("audit")] == ["audit-me"]


def test_undecodable_task_is_skipped_when_listing(kanban: Path) -> None:
    (kanban / "inbox" / "binary.md").write_bytes(b"\xff\xfe---\n")

    ids = {task.id for task in MarkdownTaskStore(kanban).list_tasks()}

    assert "binary" not in ids
    assert "login" in ids
