import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

from nightshift.cli import cli
from nightshift.config import load_config
from nightshift.frontmatter import compose_frontmatter, parse_frontmatter

AUDIT_AGENT = (
    "import sys\n"
    "sys.stdin.read()\n"
    "print('Looks good.')\n"
    "print('<!-- AUDIT_RATING: 9 -->')\n"
    "print('<!-- AUDIT_VERDICT: ACCEPTED -->')\n"
)


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    kanban = tmp_path / ".kanban2code"
    _write(
        kanban / "_providers" / "python.md",
        compose_frontmatter(
            {
                "cli": sys.executable,
                "model": "",
                "adapter": "text",
                "unattended_flags": ["-c", AUDIT_AGENT],
                "prompt_style": "stdin",
                "safety": {"timeout": 60},
            },
            "Local python agent.\n",
        ),
    )
    _write(kanban / "_providers" / "broken.md", "---\nmodel: x\n---\n")
    _write(kanban / "inbox" / "t1.md", "---\nstage: audit\n---\n# Review login\n")
    _write(kanban / "inbox" / "t2.md", "---\nstage: code\n---\n# Write docs\n")
    _write(
        tmp_path / "nightshift.toml",
        '[runner]\nrequire_clean_worktree = false\n\n[providers]\ndefault = "python"\n',
    )
    return tmp_path


def test_tasks_lists_tasks_and_filters_by_stage(workspace: Path) -> None:
    runner = CliRunner()

    all_tasks = runner.invoke(cli, ["tasks"])
    audit_only = runner.invoke(cli, ["tasks", "--stage", "audit"])

    assert all_tasks.exit_code == 0, all_tasks.output
    assert "Review login" in all_tasks.output
    assert "Write docs" in all_tasks.output
    assert "Review login" in audit_only.output
    assert "Write docs" not in audit_only.output


def test_profiles_lists_valid_and_invalid_providers(workspace: Path) -> None:
    result = CliRunner().invoke(cli, ["profiles"])

    assert result.exit_code == 0, result.output
    assert "python" in result.output
    assert "broken" in result.output
    assert "invalid" in result.output


def test_config_prints_and_writes(workspace: Path) -> None:
    runner = CliRunner()

    shown = runner.invoke(cli, ["config"])
    written = runner.invoke(cli, ["config", "--write", "--config", "written.toml"])

    assert shown.exit_code == 0, shown.output
    assert 'default = "python"' in shown.output
    assert written.exit_code == 0, written.output
    assert load_config(workspace / "written.toml").runner.retry_ceiling == 2


def test_run_column_drives_tasks_and_saves_report(workspace: Path) -> None:
    result = CliRunner().invoke(cli, ["run-column", "audit"])

    assert result.exit_code == 0, result.output
    assert "Run completed: 1 task(s) processed" in result.output
    assert "Report:" in result.output
    data, _body = parse_frontmatter((workspace / ".kanban2code" / "inbox" / "t1.md").read_text(encoding="utf-8"))
    assert data["stage"] == "completed"
    reports = list((workspace / ".kanban2code" / "_logs").glob("run-*/run-*.md"))
    assert len(reports) == 1
    assert "- Status: completed" in reports[0].read_text(encoding="utf-8")


def test_run_task_unknown_id_is_an_error(workspace: Path) -> None:
    result = CliRunner().invoke(cli, ["run-task", "nope"])

    assert result.exit_code != 0
    assert "Task not found: nope" in result.output


def test_run_refuses_without_git_checks(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(workspace.parent))
    (workspace / "nightshift.toml").write_text('[providers]\ndefault = "python"\n', encoding="utf-8")

    result = CliRunner().invoke(cli, ["run-task", "t1"])

    assert result.exit_code != 0
    assert "git working tree" in result.output


def test_run_column_rejects_unknown_stage(workspace: Path) -> None:
    result = CliRunner().invoke(cli, ["run-column", "review"])

    assert result.exit_code == 2


def test_run_task_with_undecodable_file_is_an_error(workspace: Path) -> None:
    (workspace / ".kanban2code" / "inbox" / "t3.md").write_bytes(b"\xff\xfe---\n")

    result = CliRunner().invoke(cli, ["run-task", "t3"])

    assert result.exit_code == 1
    assert "Unable to read task" in result.output
