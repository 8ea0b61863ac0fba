from nightshift.runner.output_parser import (
    parse_audit_rating,
    parse_audit_report,
    parse_audit_verdict,
    parse_commit,
    parse_files_changed,
    parse_marker,
)

AUDIT_OUTPUT = """Reviewed the change.

<!-- AUDIT_RATING: 6 -->
<!-- AUDIT_VERDICT: needs_work -->
<!-- AUDIT_REPORT: .kanban2code/_logs/audit-task-1.md -->
"""


def test_markers_are_case_insensitive_and_trimmed() -> None:
    assert parse_marker("<!--  audit_verdict :  Accepted  -->", "AUDIT_VERDICT") == "Accepted"
    assert parse_marker("nothing here", "AUDIT_VERDICT") is None


def test_audit_markers() -> None:
    assert parse_audit_rating(AUDIT_OUTPUT) == 6
    assert parse_audit_verdict(AUDIT_OUTPUT) == "NEEDS_WORK"
    assert parse_audit_report(AUDIT_OUTPUT) == ".kanban2code/_logs/audit-task-1.md"


def test_rating_and_verdict_fall_back_to_prose() -> None:
    prose = "Overall Rating: **9/10**. The work is ACCEPTED."

    assert parse_audit_rating(prose) == 9
    assert parse_audit_verdict(prose) == "ACCEPTED"
    assert parse_audit_rating("no score given") is None
    assert parse_audit_verdict("no verdict given") is None


def test_needs_work_wins_when_prose_mentions_both() -> None:
    assert parse_audit_verdict("Not ACCEPTED yet: NEEDS_WORK on error handling") == "NEEDS_WORK"


def test_files_changed_splits_and_dedupes() -> None:
    output = """<!-- FILES_CHANGED:
- `src/app.py`
- src/util.py, src/app.py
-->"""

    assert parse_files_changed(output) == ["src/app.py", "src/util.py"]
    assert parse_files_changed("no marker") == []


def test_commit_requires_a_hex_hash() -> None:
    assert parse_commit("<!-- COMMIT: 3f9a2c1 -->") == "3f9a2c1"
    assert parse_commit("<!-- COMMIT: not-a-hash -->") is None
