"""Path layout helpers for tbd state.

Example:
    from pathlib import Path
    from tbd.paths import ensure_base_layout, worktree_data_dir

    root = Path(".")
    ensure_base_layout(root)
    worktree_data_dir(root)
"""

from __future__ import annotations

import fcntl
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

TBD_DIR = ".tbd"
WORKTREE_DIR = "data-sync-worktree"
DATA_SYNC_DIR = "data-sync"
CACHE_DIR = "cache"
BACKUPS_DIR = "backups"

GITIGNORE_CONTENT = """# Local state (not tracked on the working branch)
cache/
backups/
data-sync-worktree/
data-sync/
*.tmp
"""


def state_root(root: Path) -> Path:
    return root / TBD_DIR


def config_path(root: Path) -> Path:
    return state_root(root) / "config.yml"


def cache_root(root: Path) -> Path:
    return state_root(root) / CACHE_DIR


def backups_root(root: Path) -> Path:
    return state_root(root) / BACKUPS_DIR


def worktree_path(root: Path) -> Path:
    """Hidden checkout of the sync branch."""
    return state_root(root) / WORKTREE_DIR


def worktree_data_dir(root: Path) -> Path:
    """Data directory inside the sync worktree."""
    return data_dir_in(worktree_path(root))


def local_data_dir(root: Path) -> Path:
    """Fallback data directory used when no worktree could be created."""
    return state_root(root) / DATA_SYNC_DIR


def data_dir_in(checkout: Path) -> Path:
    return checkout / TBD_DIR / DATA_SYNC_DIR


def issues_dir(sync_dir: Path) -> Path:
    return sync_dir / "issues"


def mappings_dir(sync_dir: Path) -> Path:
    return sync_dir / "mappings"


def ids_path(sync_dir: Path) -> Path:
    return mappings_dir(sync_dir) / "ids.yml"


def meta_path(sync_dir: Path) -> Path:
    return sync_dir / "meta.yml"


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def atomic_write_text(path: Path, content: str) -> None:
    """Atomically replace *path* with *content*.

    Writes a per-process temp file in the same directory, fsyncs it, then
    renames it into place so readers never observe a partial file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.rename(tmp, path)


def lock_path_for(path: Path) -> Path:
    return path.parent / f".{path.name}.lock"


@contextmanager
def flock(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock on *lock_path* for the duration of the block."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fp = open(lock_path, "a+b")  # noqa: SIM115
    try:
        fcntl.flock(fp.fileno(), fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
        fp.close()


def ensure_base_layout(root: Path) -> dict[str, Path]:
    """Create the local ``.tbd/`` structure. Idempotent."""
    ensure_dir(state_root(root))
    ensure_dir(cache_root(root))

    gitignore_path = state_root(root) / ".gitignore"
    if not gitignore_path.exists():
        gitignore_path.write_text(GITIGNORE_CONTENT, encoding="utf-8")

    return {
        "state_root": state_root(root),
        "cache_root": cache_root(root),
        "gitignore": gitignore_path,
    }


def ensure_data_layout(sync_dir: Path) -> None:
    """Create ``issues/`` and ``mappings/`` plus ``meta.yml`` under *sync_dir*. Idempotent."""
    ensure_dir(issues_dir(sync_dir))
    ensure_dir(mappings_dir(sync_dir))
    meta = meta_path(sync_dir)
    if not meta.exists():
        meta.write_text("schema_version: 1\n", encoding="utf-8")
    ignore = sync_dir / ".gitignore"
    if not ignore.exists():
        ignore.write_text("*.lock\n*.tmp\n", encoding="utf-8")
