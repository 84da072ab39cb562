"""Configuration for tbd.

Loaded from ``.tbd/config.yml``::

    tbd_version: 0.1.0
    sync:
      branch: tbd-sync
      remote: origin
    display:
      id_prefix: proj
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from tbd import __version__
from tbd.errors import ConfigError, NotInitializedError
from tbd.paths import atomic_write_text, config_path
from tbd.worktree import DEFAULT_BRANCH, DEFAULT_REMOTE

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class SyncConfig:
    branch: str = DEFAULT_BRANCH
    remote: str = DEFAULT_REMOTE


@dataclass
class DisplayConfig:
    id_prefix: str = ""


@dataclass
class TbdConfig:
    """Top-level configuration, loaded from .tbd/config.yml."""

    tbd_version: str = __version__
    sync: SyncConfig = field(default_factory=SyncConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

PREFIX_RE = re.compile(r"^[a-z][a-z0-9]{0,19}$")
BRANCH_RE = re.compile(r"^[a-zA-Z0-9._/-]+$")
REMOTE_RE = re.compile(r"^[a-zA-Z0-9._-]+$")

VALID_TOP_KEYS = {"tbd_version", "sync", "display"}
VALID_SYNC_KEYS = {"branch", "remote"}
VALID_DISPLAY_KEYS = {"id_prefix"}


def check_unknown_keys(data: dict, valid: set[str], context: str) -> None:
    """Raise ConfigError if data contains keys not in valid set."""
    unknown = set(data) - valid
    if unknown:
        raise ConfigError(f"Unknown keys in {context}: {', '.join(sorted(unknown))}")


def validate_prefix(prefix: object) -> str:
    if not isinstance(prefix, str) or not PREFIX_RE.match(prefix):
        raise ConfigError(
            f"Invalid id prefix {prefix!r}: use 1-20 lowercase letters or digits, starting with a letter"
        )
    return prefix


def validate_branch(branch: object) -> str:
    if not isinstance(branch, str) or not BRANCH_RE.match(branch) or ".." in branch or branch.endswith("/"):
        raise ConfigError(f"Invalid sync branch name {branch!r}")
    return branch


def validate_remote(remote: object) -> str:
    if not isinstance(remote, str) or not REMOTE_RE.match(remote):
        raise ConfigError(f"Invalid remote name {remote!r}")
    return remote


def validate_section(data: object, name: str, valid: set[str]) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(data).__name__}")
    check_unknown_keys(data, valid, name)
    return data


def validate_config(data: dict) -> TbdConfig:
    """Validate a raw config dict and return a TbdConfig."""
    check_unknown_keys(data, VALID_TOP_KEYS, "config")

    sync = validate_section(data.get("sync"), "sync", VALID_SYNC_KEYS)
    display = validate_section(data.get("display"), "display", VALID_DISPLAY_KEYS)

    if "id_prefix" not in display:
        raise ConfigError("display.id_prefix is required")

    version = data.get("tbd_version", __version__)
    if not isinstance(version, str):
        version = str(version)

    return TbdConfig(
        tbd_version=version,
        sync=SyncConfig(
            branch=validate_branch(sync.get("branch", DEFAULT_BRANCH)),
            remote=validate_remote(sync.get("remote", DEFAULT_REMOTE)),
        ),
        display=DisplayConfig(id_prefix=validate_prefix(display["id_prefix"])),
    )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config(root: Path) -> TbdConfig:
    """Load .tbd/config.yml. Raises NotInitializedError if it is missing."""
    path = config_path(root)
    if not path.exists():
        raise NotInitializedError()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")

    return validate_config(data)


def write_config(root: Path, cfg: TbdConfig) -> Path:
    path = config_path(root)
    data = {
        "tbd_version": cfg.tbd_version,
        "sync": {"branch": cfg.sync.branch, "remote": cfg.sync.remote},
        "display": {"id_prefix": cfg.display.id_prefix},
    }
    atomic_write_text(path, yaml.safe_dump(data, sort_keys=False))
    return path
