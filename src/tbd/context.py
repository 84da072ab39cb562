"""Per-command data context.

Built once at the start of a command from an explicit root and threaded
through the command; there is no module-level cache.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tbd.config import TbdConfig, load_config
from tbd.errors import NotInitializedError, UnresolvedIdError
from tbd.issue import Issue, find_issue, list_issues
from tbd.mapping import Mapping, load_mapping
from tbd.paths import config_path
from tbd.resolver import format_debug_id, format_display_id, resolve_to_internal_id
from tbd.worktree import resolve_sync_dir


def find_tbd_root(start: Path) -> Path:
    """Closest ancestor of *start* (inclusive) with a ``.tbd/config.yml``."""
    start = start.resolve()
    for candidate in (start, *start.parents):
        if config_path(candidate).exists():
            return candidate
    raise NotInitializedError()


@dataclass
class DataContext:
    root: Path
    sync_dir: Path
    config: TbdConfig
    mapping: Mapping
    debug: bool = False

    @property
    def prefix(self) -> str:
        return self.config.display.id_prefix

    def resolve(self, token: str) -> str:
        return resolve_to_internal_id(token, self.mapping, self.prefix)

    def require_issue(self, token: str) -> Issue:
        """Resolve *token* and load its issue, or raise UnresolvedIdError."""
        internal_id = self.resolve(token)
        issue = find_issue(self.sync_dir, internal_id)
        if issue is None:
            raise UnresolvedIdError(token)
        return issue

    def issues(self) -> list[Issue]:
        return list_issues(self.sync_dir)

    def display_id(self, internal_id: str) -> str:
        """Display form of *internal_id*; debug form when ``--debug`` is on."""
        if self.mapping.entry_for(internal_id) is None:
            return internal_id
        if self.debug:
            return format_debug_id(internal_id, self.mapping, self.prefix)
        return format_display_id(internal_id, self.mapping, self.prefix)


def load_context(start: Path, debug: bool = False) -> DataContext:
    root = find_tbd_root(start)
    cfg = load_config(root)
    sync_dir = resolve_sync_dir(root)
    return DataContext(root=root, sync_dir=sync_dir, config=cfg, mapping=load_mapping(sync_dir), debug=debug)
