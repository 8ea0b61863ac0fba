import tomllib
from pathlib import Path

from nightshift import __version__
from nightshift.config import NightshiftConfig, dumps_toml, load_config, save_config


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "nightshift.toml"
    config = NightshiftConfig.default()
    config.workspace.kanban_dir = "board"
    config.runner.retry_ceiling = 4
    config.runner.audit_pass_rating = 7
    config.runner.default_timeout_seconds = 600.5
    config.runner.auto_commit = True
    config.runner.require_clean_worktree = False
    config.stages.audit = "reviewer"
    config.providers.default = "claude"
    config.providers.agents = {"reviewer": "opus", "coder": "codex"}

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.workspace.kanban_dir == "board"
    assert loaded.runner.retry_ceiling == 4
    assert loaded.runner.audit_pass_rating == 7
    assert loaded.runner.default_timeout_seconds == 600.5
    assert loaded.runner.terminate_grace_seconds == 5.0
    assert loaded.runner.auto_commit is True
    assert loaded.runner.require_clean_worktree is False
    assert loaded.runner.save_stage_output is True
    assert loaded.stages.audit == "reviewer"
    assert loaded.providers.default == "claude"
    assert loaded.providers.agents == {"reviewer": "opus", "coder": "codex"}


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.toml")

    assert config.workspace.kanban_dir == ".kanban2code"
    assert config.runner.retry_ceiling == 2
    assert config.runner.audit_pass_rating == 8
    assert config.stages.agent_for("plan") == "planner"
    assert config.stages.agent_for("inbox") is None


def test_partial_file_keeps_other_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "nightshift.toml"
    config_path.write_text('[providers]\ndefault = "kilo"\n', encoding="utf-8")

    config = load_config(config_path)

    assert config.providers.default == "kilo"
    assert config.providers.provider_for("auditor") == "kilo"
    assert config.runner.save_report is True


def test_provider_for_agent_prefers_override() -> None:
    config = NightshiftConfig.default()
    config.providers.agents = {"auditor": "opus"}

    assert config.providers.provider_for("auditor") == "opus"
    assert config.providers.provider_for("coder") == "codex"
    assert config.providers.provider_for(None) == "codex"


def test_toml_dump_contains_runner_fields() -> None:
    rendered = dumps_toml(NightshiftConfig.default())
    parsed = tomllib.loads(rendered)

    assert "[runner]" in rendered
    assert "retry_ceiling = 2" in rendered
    assert "terminate_grace_seconds = 5.0" in rendered
    assert "agents = {}" in rendered
    assert parsed["runner"]["default_timeout_seconds"] == 1800.0


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
