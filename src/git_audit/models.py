"""Domain models shared by the resolver, walker and formatters."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

DEFAULT_MAX_DEPTH = 2
DEFAULT_FETCH_TIMEOUT = 30.0
DEFAULT_MAX_WORKERS = 8


class SyncState(StrEnum):
    """Sync state of a single working copy against its upstream."""

    CLEAN = "clean"
    UNCOMMITTED_CHANGES = "uncommitted_changes"
    STAGED_CHANGES = "staged_changes"
    UP_TO_DATE = "up_to_date"
    NEEDS_PULL = "needs_pull"
    NEEDS_PUSH = "needs_push"
    DIVERGED = "diverged"
    NO_UPSTREAM = "no_upstream"
    NOT_A_REPO = "not_a_repo"
    RESOLUTION_ERROR = "resolution_error"


class ResolutionReason(StrEnum):
    """Why git could not produce a snapshot."""

    NOT_A_REPOSITORY = "not_a_repository"
    NO_COMMITS = "no_commits"
    CORRUPT_REPOSITORY = "corrupt_repository"
    COMMAND_FAILED = "command_failed"
    INTERRUPTED = "interrupted"


# =============================================================================
# Errors
# =============================================================================


class ResolutionError(Exception):
    """Git could not answer for a working copy."""

    reason: ResolutionReason = ResolutionReason.COMMAND_FAILED

    def __init__(self, path: Path, message: str, reason: ResolutionReason | None = None):
        super().__init__(message)
        self.path = path
        if reason is not None:
            self.reason = reason


class NotARepositoryError(ResolutionError):
    """The path carries no git metadata, or git itself is unavailable."""

    reason = ResolutionReason.NOT_A_REPOSITORY


class NoCommitsError(ResolutionError):
    """The repository exists but HEAD points to an unborn branch."""

    reason = ResolutionReason.NO_COMMITS

    def __init__(self, path: Path, message: str, branch: str | None = None):
        super().__init__(path, message)
        self.branch = branch


class CommandInterruptedError(ResolutionError):
    """A git child process was killed by a signal before it could answer."""

    reason = ResolutionReason.INTERRUPTED


# =============================================================================
# Snapshots and report tree
# =============================================================================


@dataclass(frozen=True)
class RefSnapshot:
    """What git reports about one working copy at one point in time.

    upstream_commit and merge_base are both None when the current branch
    tracks nothing (detached HEAD or a local-only branch). merge_base alone
    is None when local and upstream share no history.
    """

    branch: str | None
    local_commit: str | None
    upstream_commit: str | None = None
    merge_base: str | None = None
    has_uncommitted_changes: bool = False
    has_staged_changes: bool = False
    last_log_line: str = ""
    upstream_ref: str | None = None
    fetch_error: str | None = None


@dataclass
class WorkingCopy:
    """A directory found during discovery.

    Only the root may have is_repo=False; every other WorkingCopy is a
    directory holding git metadata.
    """

    path: Path
    is_repo: bool
    depth: int = 0
    children: list[WorkingCopy] = field(default_factory=list)

    def iter_copies(self) -> Iterator[WorkingCopy]:
        """Yield this copy and all nested copies, depth-first."""
        yield self
        for child in self.children:
            yield from child.iter_copies()


@dataclass(frozen=True)
class ReportNode:
    """Classified working copy in the report tree."""

    path: Path
    depth: int
    state: SyncState
    branch: str | None = None
    annotation: str = ""
    children: tuple[ReportNode, ...] = ()
    last_log_line: str = ""
    fetch_error: str | None = None

    def iter_nodes(self) -> Iterator[ReportNode]:
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "path": str(self.path),
            "depth": self.depth,
            "state": self.state.value,
            "branch": self.branch,
            "annotation": self.annotation,
            "last_log_line": self.last_log_line,
            "fetch_error": self.fetch_error,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class AuditSummary:
    """Per-state counts over a report tree."""

    total: int = 0
    counts: dict[SyncState, int] = field(default_factory=dict)

    @classmethod
    def from_tree(cls, root: ReportNode) -> AuditSummary:
        summary = cls()
        for node in root.iter_nodes():
            summary.total += 1
            summary.counts[node.state] = summary.counts.get(node.state, 0) + 1
        return summary

    def count(self, state: SyncState) -> int:
        return self.counts.get(state, 0)

    def to_dict(self) -> dict:
        return {"total": self.total, **{state.value: self.count(state) for state in SyncState}}


# =============================================================================
# Run configuration
# =============================================================================


@dataclass(frozen=True)
class AuditConfig:
    """Options for one audit run, built once from the command line."""

    root: Path
    max_depth: int = DEFAULT_MAX_DEPTH
    online: bool = False
    color: bool | None = None  # None: detect from the output console
    json_output: bool = False
    sequential: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    show_log: bool = False
