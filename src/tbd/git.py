"""Git environment probing.

Finds the repository root, reads the installed git version and gates
operations on the minimum version tbd needs (``git worktree add --orphan``
first shipped in 2.42).
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from tbd.errors import GitCommandError, GitUnavailableError, NotAGitRepositoryError

logger = logging.getLogger(__name__)

MIN_GIT_VERSION = (2, 42, 0)
NON_INTERACTIVE_ENV = {"GIT_TERMINAL_PROMPT": "0"}

VERSION_RE = re.compile(r"git version (\d+)\.(\d+)(?:\.(\d+))?")


@dataclass(frozen=True)
class GitVersion:
    major: int
    minor: int
    patch: int
    raw: str = ""

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def min_version_str() -> str:
    return ".".join(str(part) for part in MIN_GIT_VERSION)


def parse_version(output: str) -> GitVersion:
    """Parse ``git --version`` output, e.g. ``git version 2.43.0.windows.1``."""
    match = VERSION_RE.search(output)
    if match is None:
        raise GitUnavailableError(f"Unrecognized git version output: {output.strip()!r}")
    major, minor, patch = match.groups()
    return GitVersion(int(major), int(minor), int(patch or 0), raw=output.strip())


def probe_version(cwd: Path | None = None) -> GitVersion:
    try:
        result = subprocess.run(["git", "--version"], capture_output=True, text=True, cwd=cwd)
    except OSError as exc:
        raise GitUnavailableError(f"git could not be run: {exc}") from exc
    if result.returncode != 0:
        raise GitUnavailableError(result.stderr.strip() or "git --version failed")
    return parse_version(result.stdout)


def is_supported(version: GitVersion) -> bool:
    return (version.major, version.minor) >= MIN_GIT_VERSION[:2]


def detect_repository(start: Path) -> Path:
    """Return the closest ancestor of *start* (inclusive) holding a ``.git`` entry.

    ``.git`` may be a directory or, inside linked worktrees and submodules, a
    file. No git binary is needed.
    """
    start = start.resolve()
    for candidate in (start, *start.parents):
        if (candidate / ".git").exists():
            return candidate
    raise NotAGitRepositoryError(start)


def run_git(
    *args: str, cwd: Path, check: bool = True, env: dict[str, str] | None = None
) -> subprocess.CompletedProcess[str]:
    """Run ``git <args>`` in *cwd*, raising GitCommandError on failure when *check*.

    *env* entries are added on top of the current environment.
    """
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    full_env = {**os.environ, **env} if env else None
    try:
        result = subprocess.run(["git", *args], capture_output=True, text=True, cwd=cwd, env=full_env)
    except OSError as exc:
        raise GitUnavailableError(f"git could not be run: {exc}") from exc
    if check and result.returncode != 0:
        raise GitCommandError(list(args), result.returncode, result.stderr)
    return result


def branch_exists(root: Path, branch: str) -> bool:
    result = run_git("rev-parse", "--verify", "--quiet", f"refs/heads/{branch}", cwd=root, check=False)
    return result.returncode == 0


def remote_branch_exists(root: Path, remote: str, branch: str) -> bool:
    """Check the remote for *branch*; any failure (no remote, offline) counts as absent."""
    # Never block on a credential prompt; an auth failure counts as absent.
    result = run_git(
        "ls-remote", "--exit-code", "--heads", remote, branch, cwd=root, check=False, env=NON_INTERACTIVE_ENV
    )
    return result.returncode == 0


def rev_parse(cwd: Path, ref: str) -> str | None:
    result = run_git("rev-parse", "--verify", "--quiet", ref, cwd=cwd, check=False)
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None
