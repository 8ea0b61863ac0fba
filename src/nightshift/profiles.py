from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from nightshift.frontmatter import FrontmatterError, parse_frontmatter
from nightshift.models import PROMPT_STYLES, AgentProfile, SafetyLimits

logger = logging.getLogger(__name__)

PROVIDERS_FOLDER = "_providers"
AGENTS_FOLDER = "_agents"


class ProfileError(LookupError):
    """Base class for provider profile resolution failures."""


class ProfileNotFoundError(ProfileError):
    """Raised when no provider file matches the requested name."""


class InvalidProfileError(ProfileError):
    """Raised when a provider file exists but does not describe a usable CLI."""


@dataclass(slots=True)
class ProfileFile:
    id: str
    name: str
    path: Path
    data: dict[str, Any]


def _positive_number(value: Any, field_name: str, *, integer: bool = False) -> float | int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise InvalidProfileError(f"safety.{field_name} must be a positive number")
    if integer and not isinstance(value, int):
        raise InvalidProfileError(f"safety.{field_name} must be an integer")
    return value


def _parse_safety(raw: Any) -> SafetyLimits:
    if raw is None:
        return SafetyLimits()
    if not isinstance(raw, dict):
        raise InvalidProfileError("safety must be a mapping")
    timeout = _positive_number(raw.get("timeout", raw.get("timeout_seconds")), "timeout")
    return SafetyLimits(
        max_turns=_positive_number(raw.get("max_turns"), "max_turns", integer=True),
        max_budget_usd=_positive_number(raw.get("max_budget_usd"), "max_budget_usd"),
        timeout_seconds=float(timeout) if timeout is not None else None,
    )


def _flag_list(raw: Any, field_name: str) -> tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise InvalidProfileError(f"{field_name} must be a list of strings")
    return tuple(str(item) for item in raw)


def profile_from_mapping(name: str, data: dict[str, Any]) -> AgentProfile:
    cli = data.get("cli")
    if not isinstance(cli, str) or not cli.strip():
        raise InvalidProfileError(f"Profile '{name}' has no cli executable")
    model = data.get("model")
    if not isinstance(model, str):
        raise InvalidProfileError(f"Profile '{name}' has no model")
    prompt_style = data.get("prompt_style", "flag")
    if prompt_style not in PROMPT_STYLES:
        raise InvalidProfileError(
            f"Profile '{name}' has unsupported prompt_style '{prompt_style}'"
        )
    subcommand = data.get("subcommand")
    adapter = data.get("adapter")
    return AgentProfile(
        name=name,
        cli=cli.strip(),
        model=model.strip(),
        subcommand=str(subcommand).strip() if subcommand else None,
        unattended_flags=_flag_list(data.get("unattended_flags"), "unattended_flags"),
        output_flags=_flag_list(data.get("output_flags"), "output_flags"),
        prompt_style=prompt_style,
        safety=_parse_safety(data.get("safety")),
        adapter=str(adapter).strip().lower() if adapter else None,
    )


def _apply_stage_overrides(profile: AgentProfile, data: dict[str, Any], stage: str) -> AgentProfile:
    stages = data.get("stages")
    if not isinstance(stages, dict):
        return profile
    override = stages.get(stage)
    if not isinstance(override, dict):
        return profile
    updated = profile
    model = override.get("model")
    if isinstance(model, str) and model.strip():
        updated = replace(updated, model=model.strip())
    if "safety" in override:
        base = updated.safety
        extra = _parse_safety(override["safety"])
        updated = replace(
            updated,
            safety=SafetyLimits(
                max_turns=extra.max_turns if extra.max_turns is not None else base.max_turns,
                max_budget_usd=(
                    extra.max_budget_usd
                    if extra.max_budget_usd is not None
                    else base.max_budget_usd
                ),
                timeout_seconds=(
                    extra.timeout_seconds
                    if extra.timeout_seconds is not None
                    else base.timeout_seconds
                ),
            ),
        )
    return updated


class ProfileResolver:
    """Looks up provider profiles stored as frontmatter in the kanban root."""

    def __init__(self, kanban_root: Path) -> None:
        self.kanban_root = kanban_root.resolve()

    def _scan_folder(self, folder: str) -> list[ProfileFile]:
        base = self.kanban_root / folder
        found: list[ProfileFile] = []
        for path in sorted(base.glob("**/*.md")):
            if not path.is_file():
                continue
            relative = path.relative_to(base)
            profile_id = (
                path.stem
                if len(relative.parts) == 1
                else path.relative_to(self.kanban_root).as_posix()
            )
            try:
                data, _body = parse_frontmatter(path.read_text(encoding="utf-8"))
            except (OSError, FrontmatterError) as exc:
                logger.warning("Ignoring unreadable profile file %s: %s", path, exc)
                data = {}
            raw_name = data.get("name")
            found.append(
                ProfileFile(
                    id=profile_id,
                    name=raw_name if isinstance(raw_name, str) else profile_id,
                    path=path,
                    data=data,
                )
            )
        return found

    def list_profiles(self) -> list[ProfileFile]:
        providers = self._scan_folder(PROVIDERS_FOLDER)
        legacy = [item for item in self._scan_folder(AGENTS_FOLDER) if "cli" in item.data]
        return providers + legacy

    def resolve(self, name: str, stage: str) -> AgentProfile:
        for item in self.list_profiles():
            if name in (item.id, item.name):
                profile = profile_from_mapping(item.id, item.data)
                return _apply_stage_overrides(profile, item.data, stage)
        raise ProfileNotFoundError(f"Provider profile not found: '{name}'")
