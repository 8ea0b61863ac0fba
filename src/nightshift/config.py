from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_FILE = "nightshift.toml"


@dataclass(slots=True)
class WorkspaceConfig:
    kanban_dir: str = ".kanban2code"


@dataclass(slots=True)
class RunnerConfig:
    retry_ceiling: int = 2
    audit_pass_rating: int = 8
    default_timeout_seconds: float = 1800.0
    terminate_grace_seconds: float = 5.0
    require_clean_worktree: bool = True
    auto_commit: bool = False
    save_report: bool = True
    save_stage_output: bool = True


@dataclass(slots=True)
class StagesConfig:
    plan: str = "planner"
    code: str = "coder"
    audit: str = "auditor"

    def agent_for(self, stage: str) -> str | None:
        return {"plan": self.plan, "code": self.code, "audit": self.audit}.get(stage)


@dataclass(slots=True)
class ProvidersConfig:
    default: str = "codex"
    agents: dict[str, str] = field(default_factory=dict)

    def provider_for(self, agent: str | None) -> str:
        if agent and agent in self.agents:
            return self.agents[agent]
        return self.default


@dataclass(slots=True)
class NightshiftConfig:
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    stages: StagesConfig = field(default_factory=StagesConfig)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)

    @classmethod
    def default(cls) -> NightshiftConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> NightshiftConfig:
        return cls(
            workspace=WorkspaceConfig(**data.get("workspace", {})),
            runner=RunnerConfig(**data.get("runner", {})),
            stages=StagesConfig(**data.get("stages", {})),
            providers=ProvidersConfig(**data.get("providers", {})),
        )

    def to_dict(self) -> dict:
        return {
            "workspace": {
                "kanban_dir": self.workspace.kanban_dir,
            },
            "runner": {
                "retry_ceiling": self.runner.retry_ceiling,
                "audit_pass_rating": self.runner.audit_pass_rating,
                "default_timeout_seconds": self.runner.default_timeout_seconds,
                "terminate_grace_seconds": self.runner.terminate_grace_seconds,
                "require_clean_worktree": self.runner.require_clean_worktree,
                "auto_commit": self.runner.auto_commit,
                "save_report": self.runner.save_report,
                "save_stage_output": self.runner.save_stage_output,
            },
            "stages": {
                "plan": self.stages.plan,
                "code": self.stages.code,
                "audit": self.stages.audit,
            },
            "providers": {
                "default": self.providers.default,
                "agents": dict(self.providers.agents),
            },
        }

    def kanban_root(self, workspace_root: Path) -> Path:
        return (workspace_root / self.workspace.kanban_dir).resolve()


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        return rendered + "0" if rendered.endswith(".") else rendered
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    if isinstance(value, dict):
        items = ", ".join(
            f"{json.dumps(str(key))} = {_toml_value(item)}" for key, item in value.items()
        )
        return "{ " + items + " }" if items else "{}"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: NightshiftConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in ("workspace", "runner", "stages", "providers"):
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> NightshiftConfig:
    if not path.exists():
        return NightshiftConfig.default()
    return NightshiftConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: NightshiftConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
