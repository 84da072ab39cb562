"""Bootstrap and health-check the hidden sync worktree.

The issue store lives on a dedicated branch (``tbd-sync`` by default) checked
out at ``.tbd/data-sync-worktree/``, away from the user's working tree.

Creation is gated by ``os.mkdir`` on the worktree directory: whichever process
creates the directory owns the bootstrap and every other caller reports
``created=False``. The initial commit on the sync branch is the completion
marker, so a bootstrap killed part way leaves a directory that
:func:`check_health` reports as ``CORRUPT`` and never as ``HEALTHY``.
"""

from __future__ import annotations

import enum
import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from tbd.errors import (
    GitUnavailableError,
    TbdError,
    VersionUnsupportedError,
    WorktreeCreationError,
    WorktreeMissingError,
)
from tbd.git import (
    GitVersion,
    branch_exists,
    is_supported,
    min_version_str,
    probe_version,
    remote_branch_exists,
    rev_parse,
    run_git,
)
from tbd.paths import (
    backups_root,
    data_dir_in,
    ensure_data_layout,
    issues_dir,
    local_data_dir,
    mappings_dir,
    state_root,
    worktree_data_dir,
    worktree_path,
)

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "tbd-sync"
DEFAULT_REMOTE = "origin"
INIT_COMMIT_MESSAGE = "Initialize tbd-sync branch"
WORKTREE_BACKUP_NAME = "data-sync-worktree"

VersionProbe = Callable[[Path], GitVersion]


class HealthStatus(enum.Enum):
    HEALTHY = "healthy"
    MISSING = "missing"
    CORRUPT = "corrupt"
    VERSION_UNSUPPORTED = "version_unsupported"


@dataclass
class WorktreeHealth:
    status: HealthStatus
    path: Path
    branch: str
    commit: str | None = None
    detail: str = ""

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY


@dataclass
class BootstrapResult:
    created: bool
    path: Path


def check_version(root: Path, version_probe: VersionProbe) -> GitVersion | None:
    """Return the probed version, or None when git cannot be probed.

    Raises VersionUnsupportedError when git is present but too old.
    """
    try:
        version = version_probe(root)
    except GitUnavailableError as exc:
        logger.warning("Skipping git version check: %s", exc)
        return None
    if not is_supported(version):
        raise VersionUnsupportedError(str(version), min_version_str())
    return version


def bootstrap(
    root: Path,
    remote: str = DEFAULT_REMOTE,
    branch: str = DEFAULT_BRANCH,
    version_probe: VersionProbe = probe_version,
) -> BootstrapResult:
    """Ensure the sync worktree exists, creating it if needed.

    Returns ``created=True`` only for the call that created the checkout.
    Raises VersionUnsupportedError before touching anything, and
    WorktreeCreationError (after rolling back) if git refuses to create it.
    """
    check_version(root, version_probe)

    path = worktree_path(root)
    state_root(root).mkdir(parents=True, exist_ok=True)
    try:
        os.mkdir(path)
    except FileExistsError:
        logger.info("Sync worktree already present at %s", path)
        return BootstrapResult(created=False, path=path)

    try:
        create_checkout(root, path, remote, branch)
    except (TbdError, OSError) as exc:
        logger.info("Worktree creation failed, rolling back %s", path)
        remove_worktree(root, path)
        raise WorktreeCreationError(f"Could not create sync worktree at {path}: {exc}") from exc

    return BootstrapResult(created=True, path=path)


def create_checkout(root: Path, path: Path, remote: str, branch: str) -> None:
    # A previous checkout deleted by hand still holds the branch in git's eyes.
    run_git("worktree", "prune", cwd=root, check=False)

    if branch_exists(root, branch):
        logger.info("Checking out existing branch %s", branch)
        run_git("worktree", "add", str(path), branch, cwd=root)
    elif remote_branch_exists(root, remote, branch):
        logger.info("Fetching %s/%s", remote, branch)
        run_git("fetch", remote, f"+refs/heads/{branch}:refs/remotes/{remote}/{branch}", cwd=root)
        run_git("worktree", "add", "-b", branch, str(path), f"{remote}/{branch}", cwd=root)
    else:
        logger.info("Creating orphan branch %s", branch)
        run_git("worktree", "add", "--orphan", "-b", branch, str(path), cwd=root)
        initialize_orphan(path)

    # A branch from elsewhere may predate the data layout.
    sync_dir = data_dir_in(path)
    if not sync_dir.is_dir():
        ensure_data_layout(sync_dir)


def initialize_orphan(path: Path) -> None:
    """Lay out the data directory on a fresh orphan checkout and commit it."""
    sync_dir = data_dir_in(path)
    ensure_data_layout(sync_dir)
    for directory in (issues_dir(sync_dir), mappings_dir(sync_dir)):
        (directory / ".gitkeep").touch()

    run_git("add", ".", cwd=path)
    run_git(*identity_args(path), "commit", "--no-verify", "-q", "-m", INIT_COMMIT_MESSAGE, cwd=path)


def identity_args(cwd: Path) -> list[str]:
    """Fallback committer identity when the user has none configured."""
    args: list[str] = []
    if run_git("config", "user.name", cwd=cwd, check=False).returncode != 0:
        args += ["-c", "user.name=tbd"]
    if run_git("config", "user.email", cwd=cwd, check=False).returncode != 0:
        args += ["-c", "user.email=tbd@localhost"]
    return args


def remove_worktree(root: Path, path: Path | None = None) -> None:
    """Remove the sync worktree directory and git's record of it."""
    path = path or worktree_path(root)
    try:
        run_git("worktree", "remove", "--force", str(path), cwd=root, check=False)
        run_git("worktree", "prune", cwd=root, check=False)
    except GitUnavailableError:
        logger.debug("git unavailable while removing %s", path)
    if path.exists():
        shutil.rmtree(path, ignore_errors=True)


def backup_worktree(root: Path) -> Path:
    """Move the worktree directory to a timestamped folder under ``.tbd/backups/``."""
    path = worktree_path(root)
    stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    target = backups_root(root) / f"{WORKTREE_BACKUP_NAME}-{stamp}"
    suffix = 1
    while target.exists():
        target = backups_root(root) / f"{WORKTREE_BACKUP_NAME}-{stamp}-{suffix}"
        suffix += 1
    target.parent.mkdir(parents=True, exist_ok=True)
    os.rename(path, target)
    logger.info("Backed up %s to %s", path, target)
    return target


def repair_worktree(
    root: Path,
    remote: str = DEFAULT_REMOTE,
    branch: str = DEFAULT_BRANCH,
    version_probe: VersionProbe = probe_version,
) -> Path | None:
    """Set aside a broken worktree and bootstrap a fresh one in its place.

    Returns the backup location, or None when there was no directory to move.
    Uncommitted files from the broken checkout stay in the backup.
    """
    check_version(root, version_probe)
    backup = backup_worktree(root) if worktree_path(root).exists() else None
    remove_worktree(root)
    result = bootstrap(root, remote, branch, version_probe)
    if not result.created:
        raise WorktreeCreationError(f"{result.path} reappeared during repair")
    return backup


def check_health(
    root: Path,
    branch: str = DEFAULT_BRANCH,
    version_probe: VersionProbe = probe_version,
) -> WorktreeHealth:
    """Probe the sync worktree from scratch. Nothing is cached between calls."""
    path = worktree_path(root)

    def result(status: HealthStatus, detail: str = "", commit: str | None = None) -> WorktreeHealth:
        return WorktreeHealth(status=status, path=path, branch=branch, commit=commit, detail=detail)

    try:
        check_version(root, version_probe)
    except VersionUnsupportedError as exc:
        return result(HealthStatus.VERSION_UNSUPPORTED, str(exc))

    if not path.is_dir():
        return result(HealthStatus.MISSING, f"{path} does not exist")
    if not (path / ".git").is_file():
        return result(HealthStatus.CORRUPT, "worktree .git link is missing")

    try:
        head = rev_parse(path, "HEAD")
        if head is None:
            return result(HealthStatus.CORRUPT, "HEAD does not resolve to a commit")

        symbolic = run_git("symbolic-ref", "-q", "HEAD", cwd=path, check=False)
        if symbolic.returncode == 0:
            ref = symbolic.stdout.strip()
            if ref != f"refs/heads/{branch}":
                return result(HealthStatus.CORRUPT, f"worktree is on {ref}, expected {branch}", head)
        elif rev_parse(root, f"refs/heads/{branch}") != head:
            return result(HealthStatus.CORRUPT, f"detached HEAD does not match {branch}", head)
    except GitUnavailableError as exc:
        return result(HealthStatus.CORRUPT, f"cannot verify worktree: {exc}")

    sync_dir = data_dir_in(path)
    if not sync_dir.is_dir() or not os.access(sync_dir, os.R_OK | os.X_OK):
        return result(HealthStatus.CORRUPT, f"data directory {sync_dir} is missing or unreadable", head)

    return result(HealthStatus.HEALTHY, commit=head)


def resolve_sync_dir(root: Path) -> Path:
    """Return the directory holding issues and mappings for *root*.

    Prefers the sync worktree; falls back to the local ``.tbd/data-sync/``
    used when no worktree could be created.
    """
    candidate = worktree_data_dir(root)
    if candidate.is_dir():
        return candidate
    fallback = local_data_dir(root)
    if fallback.is_dir():
        return fallback
    raise WorktreeMissingError(candidate)
