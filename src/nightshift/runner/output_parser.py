"""Markers the agents leave in their final answer for the runner to pick up."""

from __future__ import annotations

import re

AUDIT_VERDICTS = ("ACCEPTED", "NEEDS_WORK")
RATING_PATTERNS = (
    re.compile(r"\b(?:audit\s*)?rating\b\s*[:=-]?\s*\**\s*(\d{1,2})\s*/\s*10\b", re.IGNORECASE),
    re.compile(r"\b(?:audit\s*)?rating\b\s*[:=-]?\s*\**\s*(\d{1,2})\b", re.IGNORECASE),
)
FILES_SPLIT_PATTERN = re.compile(r"[\n,]+")
COMMIT_PATTERN = re.compile(r"^[0-9a-f]{7,40}$", re.IGNORECASE)


def parse_marker(output: str, marker: str) -> str | None:
    pattern = re.compile(rf"<!--\s*{marker}\s*:\s*(.*?)\s*-->", re.IGNORECASE | re.DOTALL)
    match = pattern.search(output)
    if match is None:
        return None
    return match.group(1).strip()


def parse_audit_rating(output: str) -> int | None:
    value = parse_marker(output, "AUDIT_RATING")
    if value:
        match = re.match(r"\d+", value)
        if match:
            return int(match.group(0))

    for pattern in RATING_PATTERNS:
        match = pattern.search(output)
        if match:
            return int(match.group(1))
    return None


def parse_audit_verdict(output: str) -> str | None:
    value = parse_marker(output, "AUDIT_VERDICT")
    if value and value.upper() in AUDIT_VERDICTS:
        return value.upper()
    # NEEDS_WORK wins when prose mentions both, e.g. "not ACCEPTED, NEEDS_WORK".
    if re.search(r"\bNEEDS_WORK\b", output, re.IGNORECASE):
        return "NEEDS_WORK"
    if re.search(r"\bACCEPTED\b", output, re.IGNORECASE):
        return "ACCEPTED"
    return None


def parse_files_changed(output: str) -> list[str]:
    value = parse_marker(output, "FILES_CHANGED")
    if not value:
        return []
    files: list[str] = []
    for part in FILES_SPLIT_PATTERN.split(value):
        cleaned = re.sub(r"^[-*]\s*", "", part.strip()).strip("`").strip()
        if cleaned and cleaned not in files:
            files.append(cleaned)
    return files


def parse_commit(output: str) -> str | None:
    value = parse_marker(output, "COMMIT")
    if value and COMMIT_PATTERN.match(value):
        return value
    return None


def parse_audit_report(output: str) -> str | None:
    value = parse_marker(output, "AUDIT_REPORT")
    return value or None
