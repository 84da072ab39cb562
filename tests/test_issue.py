from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from tbd.errors import InvalidIssueError, TbdError, VersionConflictError
from tbd.ids import generate_internal_id
from tbd.issue import (
    DependencyEdge,
    Issue,
    create_issue,
    find_issue,
    issue_path,
    list_issues,
    parse_issue,
    read_issue,
    serialize_issue,
    write_issue,
)


def new_issue(**kwargs: object) -> Issue:
    defaults: dict[str, object] = {"id": generate_internal_id(), "title": "Fix login redirect"}
    defaults.update(kwargs)
    return Issue(**defaults)  # type: ignore[arg-type]


class TestSerialization:
    def test_round_trip(self) -> None:
        target = generate_internal_id()
        issue = new_issue(
            kind="bug",
            priority=1,
            assignee="sam",
            labels=["auth", "web"],
            dependencies=[DependencyEdge("blocks", target)],
            description="Steps:\n\n1. Log in\n2. See 404",
            created_at=datetime(2026, 10, 1, 12, 0, tzinfo=UTC),
            updated_at=datetime(2026, 10, 2, 8, 30, tzinfo=UTC),
        )

        parsed = parse_issue(serialize_issue(issue))

        assert parsed == issue

    def test_timestamps_written_as_utc_strings(self) -> None:
        issue = new_issue(created_at=datetime(2026, 10, 1, 12, 0, tzinfo=UTC))
        assert "created_at: '2026-10-01T12:00:00Z'" in serialize_issue(issue)

    def test_title_with_colon(self) -> None:
        issue = new_issue(title="API: handle 429")
        assert parse_issue(serialize_issue(issue)).title == "API: handle 429"

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("kind", "story"),
            ("status", "in_review"),
            ("priority", 5),
            ("priority", -1),
            ("title", "  "),
            ("id", "kin-1234"),
        ],
    )
    def test_invalid_fields_rejected(self, field: str, value: object) -> None:
        issue = new_issue()
        setattr(issue, field, value)
        with pytest.raises(InvalidIssueError):
            parse_issue(serialize_issue(issue))

    def test_bad_dependency_target(self) -> None:
        issue = new_issue(dependencies=[DependencyEdge("blocks", "proj-a1b2")])
        with pytest.raises(InvalidIssueError, match="not an internal id"):
            parse_issue(serialize_issue(issue))


class TestStorage:
    def test_create_and_find(self, tmp_path: Path) -> None:
        issue = new_issue()
        path = create_issue(tmp_path, issue)

        assert path == issue_path(tmp_path, issue.id)
        assert find_issue(tmp_path, issue.id) == issue
        assert find_issue(tmp_path, generate_internal_id()) is None

    def test_create_refuses_existing(self, tmp_path: Path) -> None:
        issue = new_issue()
        create_issue(tmp_path, issue)
        with pytest.raises(TbdError, match="already exists"):
            create_issue(tmp_path, issue)

    def test_read_rejects_mismatched_file_name(self, tmp_path: Path) -> None:
        issue = new_issue()
        create_issue(tmp_path, issue)
        other = issue_path(tmp_path, generate_internal_id())
        issue_path(tmp_path, issue.id).rename(other)
        with pytest.raises(InvalidIssueError, match="does not match"):
            read_issue(other)

    def test_list_sorted_and_skips_invalid(self, tmp_path: Path) -> None:
        low = new_issue(priority=3)
        high = new_issue(priority=0)
        create_issue(tmp_path, low)
        create_issue(tmp_path, high)
        issue_path(tmp_path, generate_internal_id()).write_text("not frontmatter")

        assert [i.id for i in list_issues(tmp_path)] == [high.id, low.id]

    def test_list_missing_dir(self, tmp_path: Path) -> None:
        assert list_issues(tmp_path / "nope") == []


class TestWriteIssue:
    def test_increments_version(self, tmp_path: Path) -> None:
        issue = new_issue()
        create_issue(tmp_path, issue)

        issue.status = "in_progress"
        write_issue(tmp_path, issue)

        stored = find_issue(tmp_path, issue.id)
        assert stored is not None
        assert stored.version == 2
        assert stored.status == "in_progress"
        assert issue.version == 2

    def test_stale_version_conflicts(self, tmp_path: Path) -> None:
        issue = new_issue()
        create_issue(tmp_path, issue)
        first = find_issue(tmp_path, issue.id)
        second = find_issue(tmp_path, issue.id)
        assert first is not None and second is not None

        first.title = "First writer"
        write_issue(tmp_path, first)

        second.title = "Second writer"
        with pytest.raises(VersionConflictError) as exc_info:
            write_issue(tmp_path, second)
        assert (exc_info.value.expected, exc_info.value.found) == (1, 2)

        stored = find_issue(tmp_path, issue.id)
        assert stored is not None
        assert stored.title == "First writer"

    def test_rejects_invalid_update(self, tmp_path: Path) -> None:
        issue = new_issue()
        create_issue(tmp_path, issue)
        issue.priority = 9
        with pytest.raises(InvalidIssueError):
            write_issue(tmp_path, issue)
