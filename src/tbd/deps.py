"""Derived blocking status from ``blocks`` edges.

An issue is blocked when some non-closed issue holds a ``blocks`` edge
targeting it. Only direct blockers count: if A blocks B and B blocks C, C is
blocked by B alone and closing A does not unblock C. Cycles are legal; every
issue on an open cycle is simply blocked.
"""

from __future__ import annotations

from collections.abc import Iterable

from tbd.issue import Issue


def live_blockers(issues: Iterable[Issue]) -> set[str]:
    """Ids targeted by at least one ``blocks`` edge from a non-closed issue."""
    targets: set[str] = set()
    for issue in issues:
        if issue.is_closed:
            continue
        targets.update(issue.blocks())
    return targets


def is_blocked(issue: Issue, all_issues: Iterable[Issue]) -> bool:
    return issue.id in live_blockers(all_issues)


def blocked_by(issues: Iterable[Issue]) -> dict[str, list[str]]:
    """Map each blocked id to the ids of its live blockers, in input order."""
    result: dict[str, list[str]] = {}
    for issue in issues:
        if issue.is_closed:
            continue
        for target in issue.blocks():
            sources = result.setdefault(target, [])
            if issue.id not in sources:
                sources.append(issue.id)
    return result


def blocks_of(issue: Issue, issues: Iterable[Issue]) -> list[str]:
    """Ids *issue* blocks (its own outgoing edges)."""
    known = {i.id for i in issues}
    return [target for target in issue.blocks() if target in known]


def find_newly_unblocked(closed_id: str, issues: list[Issue]) -> list[Issue]:
    """Issues that lose their last live blocker when *closed_id* closes.

    An issue is newly unblocked if it is not closed, *closed_id* blocked it,
    and no other non-closed issue still blocks it.
    """
    closed = next((i for i in issues if i.id == closed_id), None)
    if closed is None:
        return []
    targets = set(closed.blocks())
    still_blocked = live_blockers(i for i in issues if i.id != closed_id)
    return [i for i in issues if i.id in targets and not i.is_closed and i.id not in still_blocked]


def ready_issues(issues: list[Issue]) -> list[Issue]:
    """Open, unassigned and unblocked, by priority then age."""
    blocked = live_blockers(issues)
    ready = [i for i in issues if i.status == "open" and not i.assignee and i.id not in blocked]
    ready.sort(key=lambda i: (i.priority, i.created_at))
    return ready
