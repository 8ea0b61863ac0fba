"""Markdown documents with a leading YAML frontmatter block."""

from __future__ import annotations

import re
from typing import Any

import yaml

FRONTMATTER_PATTERN = re.compile(r"\A---\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


class FrontmatterError(ValueError):
    """Raised when a frontmatter block is not a YAML mapping."""


def split_frontmatter(raw: str) -> tuple[str | None, str]:
    match = FRONTMATTER_PATTERN.match(raw)
    if match is None:
        return None, raw
    return match.group(1), raw[match.end() :]


def parse_frontmatter(raw: str) -> tuple[dict[str, Any], str]:
    fm_yaml, body = split_frontmatter(raw)
    if fm_yaml is None:
        return {}, raw
    try:
        data = yaml.safe_load(fm_yaml)
    except yaml.YAMLError as exc:
        raise FrontmatterError(f"Invalid YAML frontmatter: {exc}") from exc
    if data is None:
        return {}, body
    if not isinstance(data, dict):
        raise FrontmatterError("Frontmatter must be a YAML mapping.")
    return data, body


def compose_frontmatter(data: dict[str, Any], body: str) -> str:
    if not data:
        return body
    rendered = yaml.safe_dump(data, sort_keys=False, allow_unicode=True).rstrip("\n")
    return f"---\n{rendered}\n---\n{body}"
