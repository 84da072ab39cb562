"""Error types raised by tbd.

Library code raises these; the CLI catches them at the command boundary and
turns them into a styled ``Error:`` line and an exit code.
"""

from __future__ import annotations


class TbdError(Exception):
    """Base class for every error tbd raises on purpose."""

    exit_code = 1


class ValidationError(TbdError):
    """Bad user input (missing or malformed argument)."""

    exit_code = 2


class NotAGitRepositoryError(TbdError):
    def __init__(self, start: object) -> None:
        self.start = start
        super().__init__(f"Not a git repository (or any parent): {start}")


class GitUnavailableError(TbdError):
    """git could not be run or its version could not be read."""


class GitCommandError(TbdError):
    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit {returncode}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")


class VersionUnsupportedError(TbdError):
    def __init__(self, found: str, required: str) -> None:
        self.found = found
        self.required = required
        super().__init__(f"git {found} is not supported; tbd requires git {required} or newer")


class AlreadyInitializedError(TbdError):
    def __init__(self) -> None:
        super().__init__("tbd is already initialized in this directory (use --force to reinitialize)")


class NotInitializedError(TbdError):
    def __init__(self) -> None:
        super().__init__("tbd is not initialized. Run `tbd init --prefix <name>` first.")


class UnresolvedIdError(TbdError):
    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__(f"Issue not found: {token}")


class AmbiguousIdError(TbdError):
    """Raised when a partial display id matches more than one issue."""

    def __init__(self, token: str, candidates: list[str]) -> None:
        self.token = token
        self.candidates = candidates
        super().__init__(f"Partial ID '{token}' matches multiple issues: {', '.join(candidates)}")


class CorruptMappingError(TbdError):
    def __init__(self, path: object, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt id mapping {path}: {reason}")


class WorktreeCreationError(TbdError):
    """The sync worktree could not be created; partial state was rolled back."""


class WorktreeMissingError(TbdError):
    def __init__(self, path: object) -> None:
        self.path = path
        super().__init__(f"Sync data directory not found: {path}. Run `tbd doctor`.")


class WorktreeUnhealthyError(TbdError):
    """A worktree that exists but failed a health check. Reported as a warning, not raised."""

    def __init__(self, status: str, detail: str) -> None:
        self.status = status
        self.detail = detail
        super().__init__(f"Sync worktree is {status}: {detail}. Run `tbd doctor`.")


class VersionConflictError(TbdError):
    def __init__(self, internal_id: str, expected: int, found: int) -> None:
        self.internal_id = internal_id
        self.expected = expected
        self.found = found
        super().__init__(
            f"Issue {internal_id} was modified concurrently (expected version {expected}, found {found})"
        )


class InvalidIssueError(TbdError):
    def __init__(self, path: object, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid issue file {path}: {reason}")


class ConfigError(TbdError, ValueError):
    """Invalid ``.tbd/config.yml``."""
