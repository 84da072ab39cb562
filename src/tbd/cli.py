"""Command-line interface for tbd.

Usage example:
    tbd init --prefix proj
    tbd create "Fix login redirect" -t bug -p 1
    tbd ready
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import sys
from collections import Counter
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console, Group
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tbd import __version__
from tbd.config import TbdConfig, load_config, validate_branch, validate_prefix, validate_remote, write_config
from tbd.context import DataContext, find_tbd_root, load_context
from tbd.deps import blocked_by, blocks_of, find_newly_unblocked, live_blockers, ready_issues
from tbd.errors import (
    AlreadyInitializedError,
    AmbiguousIdError,
    ConfigError,
    CorruptMappingError,
    GitUnavailableError,
    InvalidIssueError,
    TbdError,
    ValidationError,
    VersionUnsupportedError,
    WorktreeCreationError,
    WorktreeMissingError,
    WorktreeUnhealthyError,
)
from tbd.git import detect_repository, is_supported, min_version_str, probe_version
from tbd.ids import generate_internal_id
from tbd.issue import (
    DEFAULT_PRIORITY,
    KINDS,
    MAX_PRIORITY,
    MIN_PRIORITY,
    STATUSES,
    DependencyEdge,
    Issue,
    create_issue,
    issue_to_dict,
    read_issue,
    utcnow,
    write_issue,
)
from tbd.mapping import Mapping, allocate, load_mapping, retire, save_mapping
from tbd.paths import (
    config_path,
    ensure_base_layout,
    ensure_data_layout,
    ids_path,
    issues_dir,
    local_data_dir,
    worktree_data_dir,
)
from tbd.worktree import (
    DEFAULT_BRANCH,
    DEFAULT_REMOTE,
    HealthStatus,
    bootstrap,
    check_health,
    check_version,
    repair_worktree,
    resolve_sync_dir,
)

logger = logging.getLogger(__name__)

error_console = Console(stderr=True)


def print_error(message: str) -> None:
    """Print a consistently styled error message to stderr."""
    error_console.print(f"[bold red]Error:[/bold red] {message}")


def print_warning(message: str) -> None:
    error_console.print(f"[yellow]Warning:[/yellow] {message}")


@contextlib.contextmanager
def command_errors() -> Iterator[None]:
    """Turn TbdError into a styled message and exit code at the command boundary."""
    try:
        yield
    except AmbiguousIdError as exc:
        logger.debug("%s", exc)
        print_error(f"Issue not found: {exc.token}")
        raise typer.Exit(code=1) from None
    except TbdError as exc:
        print_error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


app = typer.Typer(
    name="tbd",
    help="Git-native issue tracker.",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tbd {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    debug: Annotated[bool, typer.Option("--debug", help="Show internal ids and debug logging.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show progress logging.")] = False,
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, is_eager=True, help="Print version and exit."),
    ] = None,
) -> None:
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = {"debug": debug}


def open_context(ctx: typer.Context) -> DataContext:
    debug = bool((ctx.obj or {}).get("debug"))
    return load_context(Path.cwd(), debug=debug)


def parse_priority(priority: int) -> int:
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValidationError(f"Priority must be {MIN_PRIORITY}-{MAX_PRIORITY} (0 is highest), got {priority}")
    return priority


def parse_choice(value: str, choices: tuple[str, ...], label: str) -> str:
    value = value.lower()
    if value not in choices:
        raise ValidationError(f"Invalid {label} '{value}'. Valid values: {', '.join(choices)}")
    return value


def echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------


@app.command(help="Initialize tbd in this repository.")
def init(
    prefix: Annotated[str | None, typer.Option("--prefix", help="Display id prefix, e.g. 'proj'.")] = None,
    force: Annotated[bool, typer.Option("--force", help="Reinitialize an existing setup.")] = False,
    sync_branch: Annotated[str, typer.Option("--sync-branch", help="Branch holding issue data.")] = DEFAULT_BRANCH,
    remote: Annotated[str, typer.Option("--remote", help="Remote to look for the sync branch on.")] = DEFAULT_REMOTE,
) -> None:
    """Create .tbd/, the sync worktree and an empty id mapping."""
    with command_errors():
        if not prefix:
            raise ValidationError("--prefix is required (e.g. `tbd init --prefix proj`)")
        try:
            cfg = TbdConfig()
            cfg.display.id_prefix = validate_prefix(prefix.lower())
            cfg.sync.branch = validate_branch(sync_branch)
            cfg.sync.remote = validate_remote(remote)
        except ConfigError as exc:
            raise ValidationError(str(exc)) from None

        root = detect_repository(Path.cwd())
        if config_path(root).exists() and not force:
            raise AlreadyInitializedError()

        check_version(root, probe_version)
        ensure_base_layout(root)

        fallback = False
        try:
            result = bootstrap(root, cfg.sync.remote, cfg.sync.branch)
        except WorktreeCreationError as exc:
            print_warning(f"{exc}. Storing issues locally in {local_data_dir(root)}.")
            fallback = True
            sync_dir: Path | None = local_data_dir(root)
            ensure_data_layout(sync_dir)
        else:
            # Only write into a worktree that is fully set up; a directory
            # that failed the health check may belong to a bootstrap in progress.
            health = check_health(root, cfg.sync.branch)
            sync_dir = worktree_data_dir(root) if health.healthy else None

        write_config(root, cfg)
        if sync_dir is not None and not ids_path(sync_dir).exists():
            save_mapping(Mapping(path=ids_path(sync_dir)))

        typer.echo(f"Initialized tbd in {root} (prefix: {cfg.display.id_prefix})")
        if fallback:
            return

        if result.created:
            typer.echo(f"Created sync worktree on branch {cfg.sync.branch}")
        else:
            typer.echo("Sync worktree already present")

        if not health.healthy:
            print_warning(str(WorktreeUnhealthyError(health.status.value, health.detail)))


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

STATUS_STYLES = {
    "open": "green",
    "in_progress": "yellow",
    "closed": "dim",
}


def console_width() -> int:
    """Get the current terminal width, defaulting to 120 if unavailable."""
    try:
        return os.get_terminal_size().columns
    except (ValueError, OSError):
        return 120


def styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "")
    return f"[{style}]{status}[/{style}]" if style else status


def issue_json(dctx: DataContext, issue: Issue) -> dict[str, Any]:
    data = issue_to_dict(issue)
    data["display_id"] = dctx.display_id(issue.id)
    data["description"] = issue.description
    return data


def format_issue_line(dctx: DataContext, issue: Issue) -> str:
    assignee = f" @{issue.assignee}" if issue.assignee else ""
    return f"{dctx.display_id(issue.id)} [P{issue.priority}][{issue.status}]{assignee} - {issue.title}"


def render_issue_table(dctx: DataContext, issues: list[Issue], blockers: dict[str, list[str]] | None = None) -> None:
    """Render issues as a Rich table, hiding empty Assignee/Blocked-by columns."""
    blockers = blockers or {}
    has_assignee = any(i.assignee for i in issues)
    has_blockers = any(blockers.get(i.id) for i in issues)

    console = Console(width=max(console_width(), 120))
    table = Table(show_header=True, header_style="bold", padding=(0, 1))
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("P", justify="center", no_wrap=True)
    table.add_column("Kind", no_wrap=True)
    table.add_column("Status", no_wrap=True, min_width=11)
    if has_assignee:
        table.add_column("Assignee", no_wrap=True)
    table.add_column("Title")
    if has_blockers:
        table.add_column("Blocked by", style="dim", no_wrap=True)

    for issue in issues:
        row = [dctx.display_id(issue.id), f"P{issue.priority}", issue.kind, styled_status(issue.status)]
        if has_assignee:
            row.append(f"@{issue.assignee}" if issue.assignee else "")
        row.append(issue.title)
        if has_blockers:
            row.append(", ".join(dctx.display_id(b) for b in blockers.get(issue.id, [])))
        table.add_row(*row)

    console.print(table)


def render_issue_panel(dctx: DataContext, issue: Issue, issues: list[Issue]) -> Panel:
    meta = Table.grid(padding=(0, 2))
    meta.add_column("label", style="dim", no_wrap=True)
    meta.add_column("value")

    meta.add_row("status", styled_status(issue.status))
    meta.add_row("priority", f"P{issue.priority}")
    meta.add_row("kind", issue.kind)
    if issue.assignee:
        meta.add_row("assignee", issue.assignee)
    if issue.labels:
        meta.add_row("labels", ", ".join(issue.labels))
    meta.add_row("created", issue.created_at.strftime("%Y-%m-%d %H:%M"))
    meta.add_row("updated", issue.updated_at.strftime("%Y-%m-%d %H:%M"))
    if issue.closed_at:
        meta.add_row("closed", issue.closed_at.strftime("%Y-%m-%d %H:%M"))
    if issue.close_reason:
        meta.add_row("reason", issue.close_reason)

    by_id = {i.id: i for i in issues}
    blocks = blocks_of(issue, issues)
    if blocks:
        meta.add_row("blocks", ", ".join(dctx.display_id(t) for t in blocks))
    sources = blocked_by(issues).get(issue.id, [])
    if sources:
        parts = []
        for source in sources:
            status = by_id[source].status
            parts.append(f"{dctx.display_id(source)} {styled_status(status)}")
        meta.add_row("blocked by", ", ".join(parts))

    parts_: list[object] = [meta]
    if issue.description.strip():
        parts_.append(Text())
        parts_.append(Markdown(issue.description))

    return Panel(
        Group(*parts_),
        title=f"[bold]{dctx.display_id(issue.id)}[/bold]  {issue.title}",
        subtitle=f"[dim]{issue.id} v{issue.version}[/dim]",
        border_style="dim",
        padding=(1, 2),
    )


# ---------------------------------------------------------------------------
# Issues
# ---------------------------------------------------------------------------


@app.command(help="Create a new issue.")
def create(
    ctx: typer.Context,
    title: Annotated[str, typer.Argument(help="Issue title.")],
    kind: Annotated[str, typer.Option("-t", "--type", help=f"Issue kind ({', '.join(KINDS)}).")] = "task",
    priority: Annotated[int, typer.Option("-p", "--priority", help="Priority (0-4, 0 is highest).")] = DEFAULT_PRIORITY,
    description: Annotated[str | None, typer.Option("-d", "--description", help="Issue description.")] = None,
    assignee: Annotated[str | None, typer.Option("--assignee", help="Assignee.")] = None,
    label: Annotated[list[str] | None, typer.Option("-l", "--label", help="Label (repeatable).")] = None,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    """Create an issue and allocate its display id."""
    with command_errors():
        if not title.strip():
            raise ValidationError("Title must not be empty")
        kind = parse_choice(kind, KINDS, "kind")
        priority = parse_priority(priority)
        dctx = open_context(ctx)

        issue = Issue(
            id=generate_internal_id(),
            title=title.strip(),
            kind=kind,
            priority=priority,
            assignee=assignee,
            labels=list(label or []),
            description=description or "",
        )
        create_issue(dctx.sync_dir, issue)
        allocate(dctx.mapping, issue.id, dctx.prefix)

        if output_json:
            echo_json(issue_json(dctx, issue))
            return
        typer.echo(f"Created {dctx.display_id(issue.id)}: {issue.title}")


SORT_FIELDS = ("priority", "created", "updated")


def sort_issues(dctx: DataContext, issues: list[Issue], field: str) -> list[Issue]:
    """Order by *field*, ties broken by display id. Newest first for timestamps."""

    def tiebreak(issue: Issue) -> tuple[int, str]:
        display = dctx.display_id(issue.id)
        return len(display), display

    ordered = sorted(issues, key=tiebreak)
    if field == "created":
        return sorted(ordered, key=lambda i: i.created_at, reverse=True)
    if field == "updated":
        return sorted(ordered, key=lambda i: i.updated_at, reverse=True)
    return sorted(ordered, key=lambda i: i.priority)


@app.command("list", help="List issues.")
def list_cmd(
    ctx: typer.Context,
    status: Annotated[
        str | None, typer.Option("--status", "-s", help=f"Filter by status ({', '.join(STATUSES)}).")
    ] = None,
    kind: Annotated[str | None, typer.Option("--type", "-t", help="Filter by kind.")] = None,
    priority: Annotated[int | None, typer.Option("--priority", "-p", help="Filter by priority (0-4).")] = None,
    assignee: Annotated[str | None, typer.Option("--assignee", help="Filter by assignee.")] = None,
    label: Annotated[
        list[str] | None, typer.Option("--label", "-l", help="Filter by label (repeatable, all must match).")
    ] = None,
    include_closed: Annotated[bool, typer.Option("--all", "-a", help="Include closed issues.")] = False,
    sort: Annotated[str, typer.Option("--sort", help=f"Sort by: {', '.join(SORT_FIELDS)}.")] = "priority",
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Show at most N issues.")] = None,
    count: Annotated[bool, typer.Option("--count", help="Print only the number of matching issues.")] = False,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    """List issues, open and in progress by default."""
    with command_errors():
        if status is not None:
            status = parse_choice(status, STATUSES, "status")
        if kind is not None:
            kind = parse_choice(kind, KINDS, "kind")
        if priority is not None:
            priority = parse_priority(priority)
        sort = parse_choice(sort, SORT_FIELDS, "sort field")
        if limit is not None and limit < 1:
            raise ValidationError(f"--limit must be positive, got {limit}")
        labels = set(label or [])
        dctx = open_context(ctx)
        issues = dctx.issues()

        selected = [
            i
            for i in issues
            if (status is None or i.status == status)
            and (status is not None or include_closed or not i.is_closed)
            and (kind is None or i.kind == kind)
            and (priority is None or i.priority == priority)
            and (assignee is None or i.assignee == assignee)
            and labels <= set(i.labels)
        ]
        selected = sort_issues(dctx, selected, sort)[:limit]

        if count:
            if output_json:
                echo_json({"count": len(selected)})
            else:
                typer.echo(str(len(selected)))
            return
        if output_json:
            echo_json([issue_json(dctx, i) for i in selected])
            return
        if not selected:
            typer.echo("No issues found.")
            return
        render_issue_table(dctx, selected, blocked_by(issues))


@app.command(help="Show an issue.")
def show(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue id (display, internal or unique prefix).")],
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    with command_errors():
        dctx = open_context(ctx)
        issue = dctx.require_issue(issue_id)
        if output_json:
            echo_json(issue_json(dctx, issue))
            return
        Console().print(render_issue_panel(dctx, issue, dctx.issues()))


def apply_status(issue: Issue, status: str, reason: str | None = None) -> None:
    """Set *status*, keeping closed_at and close_reason consistent with it."""
    issue.status = status
    if status == "closed":
        issue.closed_at = issue.closed_at or utcnow()
        issue.close_reason = reason or issue.close_reason
    else:
        issue.closed_at = None
        issue.close_reason = None


def report_unblocked(dctx: DataContext, closed_id: str) -> None:
    unblocked = find_newly_unblocked(closed_id, dctx.issues())
    if unblocked:
        typer.echo("")
        typer.echo(f"Unblocked {len(unblocked)} issue(s):")
        for issue in unblocked:
            typer.echo(f"  {dctx.display_id(issue.id)} [P{issue.priority}] {issue.title}")


@app.command(help="Update fields of an issue.")
def update(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue id.")],
    status: Annotated[str | None, typer.Option("--status", "-s", help="New status.")] = None,
    priority: Annotated[int | None, typer.Option("--priority", "-p", help="New priority (0-4).")] = None,
    assignee: Annotated[str | None, typer.Option("--assignee", help="New assignee ('' to clear).")] = None,
    title: Annotated[str | None, typer.Option("--title", help="New title.")] = None,
    kind: Annotated[str | None, typer.Option("--type", "-t", help="New kind.")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d", help="New description.")] = None,
    add_label: Annotated[list[str] | None, typer.Option("--add-label", help="Add a label.")] = None,
    remove_label: Annotated[list[str] | None, typer.Option("--remove-label", help="Remove a label.")] = None,
) -> None:
    with command_errors():
        if all(v is None for v in (status, priority, assignee, title, kind, description, add_label, remove_label)):
            raise ValidationError("Nothing to update. Pass at least one field option.")
        if status is not None:
            status = parse_choice(status, STATUSES, "status")
        if priority is not None:
            priority = parse_priority(priority)
        if kind is not None:
            kind = parse_choice(kind, KINDS, "kind")
        if title is not None and not title.strip():
            raise ValidationError("Title must not be empty")

        dctx = open_context(ctx)
        issue = dctx.require_issue(issue_id)
        was_closed = issue.is_closed

        if status is not None:
            apply_status(issue, status)
        if priority is not None:
            issue.priority = priority
        if assignee is not None:
            issue.assignee = assignee or None
        if title is not None:
            issue.title = title.strip()
        if kind is not None:
            issue.kind = kind
        if description is not None:
            issue.description = description
        for name in add_label or []:
            if name not in issue.labels:
                issue.labels.append(name)
        for name in remove_label or []:
            if name in issue.labels:
                issue.labels.remove(name)

        write_issue(dctx.sync_dir, issue)
        typer.echo(f"Updated {dctx.display_id(issue.id)}")
        if issue.is_closed and not was_closed:
            report_unblocked(dctx, issue.id)


@app.command(help="Close an issue.")
def close(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue id.")],
    reason: Annotated[str | None, typer.Option("--reason", "-m", help="Reason for closing.")] = None,
) -> None:
    with command_errors():
        dctx = open_context(ctx)
        issue = dctx.require_issue(issue_id)
        display = dctx.display_id(issue.id)
        if issue.is_closed:
            typer.echo(f"{display} is already closed")
            return

        apply_status(issue, "closed", reason)
        write_issue(dctx.sync_dir, issue)
        typer.echo(f"Closed {display}: {issue.title}")
        report_unblocked(dctx, issue.id)


@app.command(help="Reopen a closed issue.")
def reopen(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue id.")],
) -> None:
    with command_errors():
        dctx = open_context(ctx)
        issue = dctx.require_issue(issue_id)
        display = dctx.display_id(issue.id)
        if not issue.is_closed:
            typer.echo(f"{display} is not closed")
            return

        apply_status(issue, "open")
        write_issue(dctx.sync_dir, issue)
        typer.echo(f"Reopened {display}: {issue.title}")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

dep_app = typer.Typer(name="dep", help="Manage blocking dependencies.")
app.add_typer(dep_app, name="dep")


@dep_app.command("add", help="Record that ISSUE depends on DEPENDS_ON.")
def dep_add(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="The blocked issue.")],
    depends_on: Annotated[str, typer.Argument(help="The issue it waits for.")],
) -> None:
    """Store a ``blocks`` edge on DEPENDS_ON targeting ISSUE."""
    with command_errors():
        dctx = open_context(ctx)
        issue = dctx.require_issue(issue_id)
        blocker = dctx.require_issue(depends_on)
        if issue.id == blocker.id:
            raise ValidationError("An issue cannot depend on itself")

        if issue.id in blocker.blocks():
            typer.echo("Dependency already exists")
            return

        blocker.dependencies.append(DependencyEdge(type="blocks", target=issue.id))
        write_issue(dctx.sync_dir, blocker)
        typer.echo(f"{dctx.display_id(issue.id)} now depends on {dctx.display_id(blocker.id)}")


@dep_app.command("remove", help="Remove the dependency of ISSUE on DEPENDS_ON.")
def dep_remove(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="The blocked issue.")],
    depends_on: Annotated[str, typer.Argument(help="The issue it waits for.")],
) -> None:
    with command_errors():
        dctx = open_context(ctx)
        issue = dctx.require_issue(issue_id)
        blocker = dctx.require_issue(depends_on)

        kept = [e for e in blocker.dependencies if not (e.type == "blocks" and e.target == issue.id)]
        if len(kept) == len(blocker.dependencies):
            raise TbdError(f"{dctx.display_id(issue.id)} does not depend on {dctx.display_id(blocker.id)}")

        blocker.dependencies = kept
        write_issue(dctx.sync_dir, blocker)
        typer.echo(f"{dctx.display_id(issue.id)} no longer depends on {dctx.display_id(blocker.id)}")


@dep_app.command("list", help="Show what an issue blocks and what blocks it.")
def dep_list(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue id.")],
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    with command_errors():
        dctx = open_context(ctx)
        issue = dctx.require_issue(issue_id)
        issues = dctx.issues()
        by_id = {i.id: i for i in issues}

        blocks = blocks_of(issue, issues)
        incoming = [i.id for i in issues if issue.id in i.blocks()]

        if output_json:
            echo_json(
                {
                    "id": dctx.display_id(issue.id),
                    "blocks": [dctx.display_id(t) for t in blocks],
                    "blocked_by": [dctx.display_id(s) for s in incoming],
                }
            )
            return

        typer.echo(f"Blocks: {len(blocks)}")
        for target in blocks:
            typer.echo(f"  {format_issue_line(dctx, by_id[target])}")
        typer.echo(f"Blocked by: {len(incoming)}")
        for source in incoming:
            typer.echo(f"  {format_issue_line(dctx, by_id[source])}")


# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------

label_app = typer.Typer(name="label", help="Manage issue labels.")
app.add_typer(label_app, name="label")


def clean_labels(labels: list[str]) -> list[str]:
    cleaned: list[str] = []
    for name in labels:
        name = name.strip()
        if not name:
            raise ValidationError("Labels must not be empty")
        if name not in cleaned:
            cleaned.append(name)
    return cleaned


@label_app.command("add", help="Add labels to an issue.")
def label_add(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue id.")],
    labels: Annotated[list[str], typer.Argument(help="Labels to add.")],
) -> None:
    with command_errors():
        names = clean_labels(labels)
        dctx = open_context(ctx)
        issue = dctx.require_issue(issue_id)
        display = dctx.display_id(issue.id)

        added = [name for name in names if name not in issue.labels]
        if not added:
            typer.echo("All labels already present")
            return
        issue.labels.extend(added)
        write_issue(dctx.sync_dir, issue)
        typer.echo(f"Added labels to {display}: {', '.join(added)}")


@label_app.command("remove", help="Remove labels from an issue.")
def label_remove(
    ctx: typer.Context,
    issue_id: Annotated[str, typer.Argument(help="Issue id.")],
    labels: Annotated[list[str], typer.Argument(help="Labels to remove.")],
) -> None:
    with command_errors():
        names = clean_labels(labels)
        dctx = open_context(ctx)
        issue = dctx.require_issue(issue_id)
        display = dctx.display_id(issue.id)

        removed = [name for name in names if name in issue.labels]
        if not removed:
            typer.echo("No matching labels found")
            return
        issue.labels = [name for name in issue.labels if name not in removed]
        write_issue(dctx.sync_dir, issue)
        typer.echo(f"Removed labels from {display}: {', '.join(removed)}")


@label_app.command("list", help="List labels in use, most used first.")
def label_list(
    ctx: typer.Context,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    with command_errors():
        dctx = open_context(ctx)
        counts = Counter(name for issue in dctx.issues() for name in issue.labels)
        rows = sorted(counts.items(), key=lambda item: (-item[1], item[0]))

        if output_json:
            echo_json([{"label": name, "count": n} for name, n in rows])
            return
        if not rows:
            typer.echo("No labels in use")
            return
        table = Table(show_header=True, header_style="bold", padding=(0, 1))
        table.add_column("Label", style="cyan")
        table.add_column("Count", justify="right")
        for name, n in rows:
            table.add_row(name, str(n))
        Console().print(table)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@app.command(help="List issues with an unresolved blocker.")
def blocked(
    ctx: typer.Context,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Show at most N issues.")] = None,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    with command_errors():
        dctx = open_context(ctx)
        issues = dctx.issues()
        blockers = blocked_by(issues)
        selected = [i for i in issues if not i.is_closed and i.id in blockers][:limit]

        if output_json:
            echo_json(
                [
                    {**issue_json(dctx, i), "blocked_by": [dctx.display_id(b) for b in blockers[i.id]]}
                    for i in selected
                ]
            )
            return
        if not selected:
            typer.echo("No blocked issues.")
            return
        render_issue_table(dctx, selected, blockers)


@app.command(help="List issues ready to work on.")
def ready(
    ctx: typer.Context,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Show at most N issues.")] = None,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    """Open, unassigned issues with no unresolved blocker."""
    with command_errors():
        dctx = open_context(ctx)
        selected = ready_issues(dctx.issues())[:limit]

        if output_json:
            echo_json([issue_json(dctx, i) for i in selected])
            return
        if not selected:
            typer.echo('No ready issues. Create one with `tbd create "title"` or check `tbd blocked`.')
            return
        for issue in selected:
            typer.echo(format_issue_line(dctx, issue))


@app.command(help="List issues not updated recently.")
def stale(
    ctx: typer.Context,
    days: Annotated[int, typer.Option("--days", help="Minimum days since last update.")] = 7,
    status: Annotated[
        str, typer.Option("--status", help="Comma-separated statuses to include.")
    ] = "open,in_progress",
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Show at most N issues.")] = None,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    """Issues whose last update is at least DAYS old, most stale first."""
    with command_errors():
        if days < 0:
            raise ValidationError(f"--days must be non-negative, got {days}")
        statuses = {parse_choice(s.strip(), STATUSES, "status") for s in status.split(",") if s.strip()}
        dctx = open_context(ctx)

        now = datetime.now(UTC)
        cutoff = now - timedelta(days=days)
        selected = [i for i in dctx.issues() if i.status in statuses and i.updated_at <= cutoff]
        selected.sort(key=lambda i: i.updated_at)
        selected = selected[:limit]

        if output_json:
            echo_json([{**issue_json(dctx, i), "days_stale": (now - i.updated_at).days} for i in selected])
            return
        if not selected:
            typer.echo(f"No issues stale for {days}+ days.")
            return
        for issue in selected:
            typer.echo(f"{format_issue_line(dctx, issue)}  ({(now - issue.updated_at).days}d)")


@app.command(help="Show issue counts.")
def stats(
    ctx: typer.Context,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    with command_errors():
        dctx = open_context(ctx)
        issues = dctx.issues()
        blockers = live_blockers(issues)

        by_status = Counter(i.status for i in issues)
        by_kind = Counter(i.kind for i in issues)
        by_priority = Counter(f"P{i.priority}" for i in issues if not i.is_closed)
        data = {
            "total": len(issues),
            "by_status": {s: by_status[s] for s in STATUSES},
            "by_kind": {k: by_kind[k] for k in KINDS if by_kind[k]},
            "open_by_priority": {f"P{p}": by_priority[f"P{p}"] for p in range(MIN_PRIORITY, MAX_PRIORITY + 1)},
            "blocked": sum(1 for i in issues if not i.is_closed and i.id in blockers),
            "ready": len(ready_issues(issues)),
        }

        if output_json:
            echo_json(data)
            return

        table = Table(show_header=True, header_style="bold", padding=(0, 1))
        table.add_column("Metric")
        table.add_column("Count", justify="right")
        table.add_row("Total", str(data["total"]))
        for name, count in data["by_status"].items():
            table.add_row(f"  {styled_status(name)}", str(count))
        for name, count in data["by_kind"].items():
            table.add_row(f"  {name}", str(count))
        for name, count in data["open_by_priority"].items():
            table.add_row(f"  open {name}", str(count))
        table.add_row("Blocked", str(data["blocked"]))
        table.add_row("Ready", str(data["ready"]))
        Console().print(table)


@app.command(help="Show repository and sync status.")
def status(
    ctx: typer.Context,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    with command_errors():
        dctx = open_context(ctx)
        health = check_health(dctx.root, dctx.config.sync.branch)
        issues = dctx.issues()
        counts = Counter(i.status for i in issues)
        try:
            git_version: str | None = str(probe_version(dctx.root))
        except GitUnavailableError:
            git_version = None

        data = {
            "root": str(dctx.root),
            "prefix": dctx.prefix,
            "sync_branch": dctx.config.sync.branch,
            "sync_dir": str(dctx.sync_dir),
            "worktree": health.status.value,
            "git_version": git_version,
            "issues": {s: counts[s] for s in STATUSES},
        }
        if output_json:
            echo_json(data)
            return

        typer.echo(f"Repository: {data['root']}")
        typer.echo(f"Prefix:     {dctx.prefix}")
        typer.echo(f"Sync:       {dctx.config.sync.branch} ({dctx.sync_dir})")
        typer.echo(f"Worktree:   {health.status.value}{f' - {health.detail}' if health.detail else ''}")
        typer.echo(f"Git:        {git_version or 'unavailable'}")
        typer.echo(f"Issues:     {' · '.join(f'{counts[s]} {s}' for s in STATUSES)} · {len(issues)} total")


# ---------------------------------------------------------------------------
# Doctor
# ---------------------------------------------------------------------------


class DoctorCheck:
    """One doctor result line: ok, warn (informational) or fail."""

    def __init__(self, name: str, state: str, message: str, fixed: bool = False) -> None:
        self.name = name
        self.state = state
        self.message = message
        self.fixed = fixed

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "state": self.state, "message": self.message, "fixed": self.fixed}


def check_git(root: Path) -> DoctorCheck:
    try:
        version = probe_version(root)
    except GitUnavailableError as exc:
        return DoctorCheck("git", "warn", f"git unavailable ({exc})")
    if not is_supported(version):
        return DoctorCheck("git", "fail", f"git {version} is too old (need {min_version_str()}+)")
    return DoctorCheck("git", "ok", f"git {version}")


def check_worktree(root: Path, cfg: TbdConfig, fix: bool) -> DoctorCheck:
    health = check_health(root, cfg.sync.branch)
    if health.healthy:
        return DoctorCheck("worktree", "ok", f"healthy at {health.commit[:8] if health.commit else '?'}")
    if health.status is HealthStatus.MISSING and local_data_dir(root).is_dir():
        return DoctorCheck("worktree", "warn", f"no worktree, using local {local_data_dir(root)}")
    if health.status is HealthStatus.MISSING and fix:
        try:
            bootstrap(root, cfg.sync.remote, cfg.sync.branch)
        except (WorktreeCreationError, VersionUnsupportedError) as exc:
            return DoctorCheck("worktree", "fail", f"missing; recreate failed: {exc}")
        return DoctorCheck("worktree", "ok", "recreated", fixed=True)
    if health.status is HealthStatus.CORRUPT and fix:
        try:
            backup = repair_worktree(root, cfg.sync.remote, cfg.sync.branch)
        except (WorktreeCreationError, VersionUnsupportedError, OSError) as exc:
            return DoctorCheck("worktree", "fail", f"corrupt; repair failed: {exc}")
        message = f"repaired (backed up to {backup})" if backup else "repaired"
        return DoctorCheck("worktree", "ok", message, fixed=True)
    return DoctorCheck("worktree", "fail", f"{health.status.value}: {health.detail}")


def find_temp_files(sync_dir: Path) -> list[Path]:
    return sorted(p for p in sync_dir.rglob("*.tmp") if p.is_file())


def check_issues(sync_dir: Path, mapping: Mapping, prefix: str, fix: bool) -> list[DoctorCheck]:
    """Validate issue files against each other and against the id mapping."""
    checks: list[DoctorCheck] = []
    directory = issues_dir(sync_dir)
    if not directory.is_dir():
        return [DoctorCheck("issues", "fail", f"{directory} does not exist")]
    checks.append(DoctorCheck("issues", "ok", f"{directory}"))

    issues: list[Issue] = []
    invalid: list[str] = []
    for path in sorted(directory.glob("*.md")):
        try:
            issues.append(read_issue(path))
        except (InvalidIssueError, FileNotFoundError) as exc:
            invalid.append(str(exc))
    if invalid:
        checks.append(DoctorCheck("issue files", "fail", "; ".join(invalid)))
    else:
        checks.append(DoctorCheck("issue files", "ok", f"{len(issues)} valid"))

    known = {i.id for i in issues}

    unmapped = [i.id for i in issues if mapping.entry_for(i.id) is None]
    if unmapped and fix:
        for internal_id in unmapped:
            allocate(mapping, internal_id, prefix)
        checks.append(DoctorCheck("unmapped issues", "ok", f"allocated ids for {len(unmapped)}", fixed=True))
    elif unmapped:
        checks.append(DoctorCheck("unmapped issues", "fail", f"{len(unmapped)} issue(s) without a display id"))
    else:
        checks.append(DoctorCheck("unmapped issues", "ok", "none"))

    dangling = [e.internal_id for e in mapping.live_entries() if e.internal_id not in known]
    if dangling and fix:
        for internal_id in dangling:
            retire(mapping, internal_id)
        checks.append(DoctorCheck("dangling ids", "ok", f"retired {len(dangling)}", fixed=True))
    elif dangling:
        checks.append(DoctorCheck("dangling ids", "fail", f"{len(dangling)} id(s) with no issue file"))
    else:
        checks.append(DoctorCheck("dangling ids", "ok", "none"))

    orphaned = [(i, e) for i in issues for e in i.dependencies if e.target not in known]
    if orphaned and fix:
        for issue in {i.id: i for i, _ in orphaned}.values():
            issue.dependencies = [e for e in issue.dependencies if e.target in known]
            write_issue(sync_dir, issue)
        checks.append(DoctorCheck("orphaned deps", "ok", f"removed {len(orphaned)}", fixed=True))
    elif orphaned:
        checks.append(DoctorCheck("orphaned deps", "fail", f"{len(orphaned)} edge(s) to unknown issues"))
    else:
        checks.append(DoctorCheck("orphaned deps", "ok", "none"))

    temp_files = find_temp_files(sync_dir)
    if temp_files and fix:
        for path in temp_files:
            path.unlink(missing_ok=True)
        checks.append(DoctorCheck("temp files", "ok", f"removed {len(temp_files)}", fixed=True))
    elif temp_files:
        checks.append(DoctorCheck("temp files", "fail", f"{len(temp_files)} leftover temp file(s)"))
    else:
        checks.append(DoctorCheck("temp files", "ok", "none"))

    return checks


def run_doctor(root: Path, fix: bool) -> list[DoctorCheck]:
    checks = [check_git(root)]

    try:
        cfg = load_config(root)
    except ConfigError as exc:
        checks.append(DoctorCheck("config", "fail", str(exc)))
        return checks
    checks.append(DoctorCheck("config", "ok", f"prefix {cfg.display.id_prefix}, branch {cfg.sync.branch}"))

    checks.append(check_worktree(root, cfg, fix))

    try:
        sync_dir = resolve_sync_dir(root)
    except WorktreeMissingError as exc:
        checks.append(DoctorCheck("data", "fail", str(exc)))
        return checks

    try:
        mapping = load_mapping(sync_dir)
    except CorruptMappingError as exc:
        checks.append(DoctorCheck("id mapping", "fail", str(exc)))
        return checks
    checks.append(DoctorCheck("id mapping", "ok", f"{len(mapping.live_entries())} live id(s)"))

    checks.extend(check_issues(sync_dir, mapping, cfg.display.id_prefix, fix))
    return checks


@app.command(help="Check the tbd setup and optionally repair it.")
def doctor(
    fix: Annotated[bool, typer.Option("--fix", help="Repair what can be repaired safely.")] = False,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON.")] = False,
) -> None:
    with command_errors():
        root = find_tbd_root(Path.cwd())
        checks = run_doctor(root, fix)

    failed = any(c.state == "fail" for c in checks)
    if output_json:
        Console().print_json(json.dumps({"ok": not failed, "checks": [c.as_dict() for c in checks]}, indent=2))
    else:
        for check in checks:
            suffix = " (fixed)" if check.fixed else ""
            if check.state == "ok":
                typer.secho(f"  ✓ {check.name:16} {check.message}{suffix}", fg=typer.colors.GREEN)
            elif check.state == "warn":
                typer.secho(f"  ○ {check.name:16} {check.message}", fg=typer.colors.YELLOW)
            else:
                typer.secho(f"  ✗ {check.name:16} {check.message}", fg=typer.colors.RED)
        if failed and not fix:
            typer.echo("\nRun `tbd doctor --fix` to repair what can be fixed automatically.")

    if failed:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
