from pathlib import Path

import pytest

from nightshift.profiles import (
    InvalidProfileError,
    ProfileNotFoundError,
    ProfileResolver,
    profile_from_mapping,
)

CODEX_PROVIDER = """---
name: Codex CLI
cli: codex
model: gpt-5-codex
subcommand: exec
unattended_flags: ["--full-auto"]
prompt_style: stdin
safety:
  max_turns: 30
  timeout: 900
stages:
  audit:
    model: gpt-5
    safety:
      max_budget_usd: 2.5
---
Codex provider notes.
"""


@pytest.fixture
def kanban(tmp_path: Path) -> Path:
    root = tmp_path / ".kanban2code"
    (root / "_providers").mkdir(parents=True)
    (root / "_agents").mkdir(parents=True)
    (root / "_providers" / "codex.md").write_text(CODEX_PROVIDER, encoding="utf-8")
    (root / "_providers" / "broken.md").write_text("---\ncli: ''\nmodel: x\n---\n", encoding="utf-8")
    (root / "_agents" / "coder.md").write_text("---\ndescription: persona only\n---\nWrite code.\n", encoding="utf-8")
    (root / "_agents" / "legacy.md").write_text("---\ncli: claude\nmodel: opus\n---\n", encoding="utf-8")
    return root


def test_resolve_by_id_reads_profile(kanban: Path) -> None:
    profile = ProfileResolver(kanban).resolve("codex", "code")

    assert profile.name == "codex"
    assert profile.cli == "codex"
    assert profile.model == "gpt-5-codex"
    assert profile.subcommand == "exec"
    assert profile.unattended_flags == ("--full-auto",)
    assert profile.prompt_style == "stdin"
    assert profile.safety.max_turns == 30
    assert profile.safety.timeout_seconds == 900.0
    assert profile.safety.max_budget_usd is None


def test_resolve_by_display_name(kanban: Path) -> None:
    assert ProfileResolver(kanban).resolve("Codex CLI", "plan").cli == "codex"


def test_stage_overrides_merge_into_base_profile(kanban: Path) -> None:
    profile = ProfileResolver(kanban).resolve("codex", "audit")

    assert profile.model == "gpt-5"
    assert profile.safety.max_budget_usd == 2.5
    assert profile.safety.max_turns == 30


def test_legacy_agents_only_count_when_they_name_a_cli(kanban: Path) -> None:
    resolver = ProfileResolver(kanban)
    ids = [item.id for item in resolver.list_profiles()]

    assert "legacy" in ids
    assert "coder" not in ids
    assert resolver.resolve("legacy", "code").cli == "claude"


def test_missing_profile_is_not_guessed(kanban: Path) -> None:
    with pytest.raises(ProfileNotFoundError):
        ProfileResolver(kanban).resolve("coder", "code")


def test_invalid_profile_raises(kanban: Path) -> None:
    with pytest.raises(InvalidProfileError):
        ProfileResolver(kanban).resolve("broken", "code")


@pytest.mark.parametrize(
    "data",
    [
        {"cli": "claude"},
        {"cli": "claude", "model": "x", "prompt_style": "pipe"},
        {"cli": "claude", "model": "x", "unattended_flags": "--yolo"},
        {"cli": "claude", "model": "x", "safety": {"max_turns": -1}},
        {"cli": "claude", "model": "x", "safety": {"max_turns": 2.5}},
    ],
)
def test_profile_validation(data: dict) -> None:
    with pytest.raises(InvalidProfileError):
        profile_from_mapping("bad", data)
