"""Issue model and persistence.

Each issue is one file, ``<sync>/issues/<internal-id>.md``::

    ---
    id: is-01j5m3x0c9r7w2b4k8n6p1q3s5
    title: Fix login redirect
    kind: bug
    status: open
    priority: 1
    assignee: null
    labels: []
    dependencies:
    - type: blocks
      target: is-01j5m3x2aa0000000000000000
    version: 1
    created_at: '2026-10-18T09:00:00Z'
    updated_at: '2026-10-18T09:00:00Z'
    closed_at: null
    close_reason: null
    ---
    Markdown description.

Mutations go through :func:`write_issue`, which holds a per-issue lock and
refuses to write if the on-disk version moved since the caller read it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tbd.errors import InvalidIssueError, TbdError, VersionConflictError
from tbd.ids import is_internal_id
from tbd.parsing import parse_frontmatter, serialize_frontmatter
from tbd.paths import atomic_write_text, flock, issues_dir, lock_path_for

logger = logging.getLogger(__name__)

KINDS = ("bug", "feature", "task", "epic", "chore")
STATUSES = ("open", "in_progress", "closed")
DEP_TYPES = ("blocks",)
MIN_PRIORITY = 0
MAX_PRIORITY = 4
DEFAULT_PRIORITY = 2


def utcnow() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


@dataclass
class DependencyEdge:
    """Directed edge owned by the source issue: source ``blocks`` target."""

    type: str
    target: str


@dataclass
class Issue:
    id: str
    title: str
    kind: str = "task"
    status: str = "open"
    priority: int = DEFAULT_PRIORITY
    assignee: str | None = None
    labels: list[str] = field(default_factory=list)
    dependencies: list[DependencyEdge] = field(default_factory=list)
    description: str = ""
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    closed_at: datetime | None = None
    close_reason: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    def blocks(self) -> list[str]:
        return [edge.target for edge in self.dependencies if edge.type == "blocks"]


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: object, name: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"{name} is not an ISO timestamp: {value!r}") from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    raise ValueError(f"{name} must be a timestamp, got {type(value).__name__}")


def validate_fields(issue: Issue) -> None:
    """Raise ValueError if any field is out of range."""
    if not is_internal_id(issue.id):
        raise ValueError(f"invalid id {issue.id!r}")
    if not issue.title.strip():
        raise ValueError("title must not be empty")
    if issue.kind not in KINDS:
        raise ValueError(f"kind must be one of {', '.join(KINDS)}, got {issue.kind!r}")
    if issue.status not in STATUSES:
        raise ValueError(f"status must be one of {', '.join(STATUSES)}, got {issue.status!r}")
    if not MIN_PRIORITY <= issue.priority <= MAX_PRIORITY:
        raise ValueError(f"priority must be {MIN_PRIORITY}-{MAX_PRIORITY}, got {issue.priority}")
    if issue.version < 1:
        raise ValueError(f"version must be >= 1, got {issue.version}")
    for edge in issue.dependencies:
        if edge.type not in DEP_TYPES:
            raise ValueError(f"unknown dependency type {edge.type!r}")
        if not is_internal_id(edge.target):
            raise ValueError(f"dependency target {edge.target!r} is not an internal id")


def parse_edges(raw: object) -> list[DependencyEdge]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("dependencies must be a list")
    edges = []
    for item in raw:
        if not isinstance(item, dict) or "target" not in item:
            raise ValueError(f"malformed dependency {item!r}")
        edges.append(DependencyEdge(type=str(item.get("type", "blocks")), target=str(item["target"])))
    return edges


def parse_issue(content: str, path: Path | None = None) -> Issue:
    try:
        data, body = parse_frontmatter(content)
        labels = data.get("labels") or []
        if not isinstance(labels, list):
            raise ValueError("labels must be a list")
        priority = data.get("priority", DEFAULT_PRIORITY)
        version = data.get("version", 1)
        if not isinstance(priority, int) or not isinstance(version, int):
            raise ValueError("priority and version must be integers")
        issue = Issue(
            id=str(data.get("id", "")),
            title=str(data.get("title") or ""),
            kind=str(data.get("kind", "task")),
            status=str(data.get("status", "open")),
            priority=priority,
            assignee=str(data["assignee"]) if data.get("assignee") else None,
            labels=[str(label) for label in labels],
            dependencies=parse_edges(data.get("dependencies")),
            description=body,
            version=version,
            created_at=parse_timestamp(data.get("created_at"), "created_at") or utcnow(),
            updated_at=parse_timestamp(data.get("updated_at"), "updated_at") or utcnow(),
            closed_at=parse_timestamp(data.get("closed_at"), "closed_at"),
            close_reason=str(data["close_reason"]) if data.get("close_reason") else None,
        )
        validate_fields(issue)
    except ValueError as exc:
        raise InvalidIssueError(path or "<string>", str(exc)) from exc
    return issue


def issue_to_dict(issue: Issue) -> dict[str, Any]:
    return {
        "id": issue.id,
        "title": issue.title,
        "kind": issue.kind,
        "status": issue.status,
        "priority": issue.priority,
        "assignee": issue.assignee,
        "labels": list(issue.labels),
        "dependencies": [{"type": e.type, "target": e.target} for e in issue.dependencies],
        "version": issue.version,
        "created_at": format_timestamp(issue.created_at),
        "updated_at": format_timestamp(issue.updated_at),
        "closed_at": format_timestamp(issue.closed_at),
        "close_reason": issue.close_reason,
    }


def serialize_issue(issue: Issue) -> str:
    return serialize_frontmatter(issue_to_dict(issue), issue.description)


def issue_path(sync_dir: Path, internal_id: str) -> Path:
    return issues_dir(sync_dir) / f"{internal_id}.md"


def read_issue(path: Path) -> Issue:
    if not path.exists():
        raise FileNotFoundError(f"Issue file not found: {path}")
    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidIssueError(path, str(exc)) from exc
    issue = parse_issue(content, path)
    if issue.id != path.stem:
        raise InvalidIssueError(path, f"id {issue.id} does not match file name")
    return issue


def find_issue(sync_dir: Path, internal_id: str) -> Issue | None:
    """Return the issue stored for *internal_id*, or None if there is no file."""
    path = issue_path(sync_dir, internal_id)
    if not path.exists():
        return None
    return read_issue(path)


def list_issues(sync_dir: Path) -> list[Issue]:
    """All readable issues, sorted by priority then creation time.

    Invalid files are skipped with a warning; ``tbd doctor`` reports them.
    """
    directory = issues_dir(sync_dir)
    if not directory.exists():
        return []

    issues: list[Issue] = []
    for path in sorted(directory.glob("*.md")):
        try:
            issues.append(read_issue(path))
        except (InvalidIssueError, FileNotFoundError) as exc:
            logger.warning("Skipping %s: %s", path.name, exc)

    issues.sort(key=lambda i: (i.priority, i.created_at))
    return issues


def create_issue(sync_dir: Path, issue: Issue) -> Path:
    """Write a brand-new issue file. Fails if the file already exists."""
    try:
        validate_fields(issue)
    except ValueError as exc:
        raise InvalidIssueError(issue.id, str(exc)) from exc
    path = issue_path(sync_dir, issue.id)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with path.open("x", encoding="utf-8") as handle:
            handle.write(serialize_issue(issue))
    except FileExistsError as exc:
        raise TbdError(f"Issue {issue.id} already exists") from exc
    return path


def write_issue(sync_dir: Path, issue: Issue) -> Issue:
    """Persist a mutation of *issue* under the optimistic version guard.

    *issue.version* must be the version the caller read. On success the
    stored version is exactly one higher and *issue* is updated in place.
    """
    try:
        validate_fields(issue)
    except ValueError as exc:
        raise InvalidIssueError(issue.id, str(exc)) from exc

    path = issue_path(sync_dir, issue.id)
    with flock(lock_path_for(path)):
        on_disk = read_issue(path)
        if on_disk.version != issue.version:
            raise VersionConflictError(issue.id, issue.version, on_disk.version)
        issue.version = on_disk.version + 1
        issue.updated_at = utcnow()
        atomic_write_text(path, serialize_issue(issue))
    logger.debug("Wrote %s at version %d", issue.id, issue.version)
    return issue
