"""
git-audit: Audit the sync state of every git repository under a directory tree.

Discovers nested working copies up to a bounded depth, compares each one's
HEAD, upstream and merge-base (plus index and working tree dirtiness), and
reports exactly one sync state per repository as a tree.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .formatters import OutputFormatter, PaletteConfig
from .log import configure_logging
from .models import (
    DEFAULT_FETCH_TIMEOUT,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_WORKERS,
    AuditConfig,
    CommandInterruptedError,
    NoCommitsError,
    NotARepositoryError,
    RefSnapshot,
    ReportNode,
    ResolutionError,
    ResolutionReason,
    SyncState,
    WorkingCopy,
)
from .schema import get_tool_schema

logger = logging.getLogger(__name__)

SHORT_ID_LENGTH = 7
EXIT_INTERRUPTED = 130

# Exported by git hooks; any of these would pin every query to one repository.
REPOSITORY_ENV_VARS = ("GIT_DIR", "GIT_WORK_TREE", "GIT_INDEX_FILE", "GIT_COMMON_DIR")


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


# =============================================================================
# Git Operations (Low-level)
# =============================================================================


class GitOperations:
    """Low-level, read-only git queries for a single working copy."""

    def __init__(self, repo_path: Path, fetch_timeout: float | None = DEFAULT_FETCH_TIMEOUT):
        self.repo_path = repo_path
        self.fetch_timeout = fetch_timeout
        # Pin repository discovery to repo_path: a broken nested .git must not
        # fall through to an enclosing repository.
        self._env = {
            **os.environ,
            "GIT_CEILING_DIRECTORIES": str(repo_path.parent),
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_OPTIONAL_LOCKS": "0",
            "LC_ALL": "C",
        }
        for name in REPOSITORY_ENV_VARS:
            self._env.pop(name, None)
        self._env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")

    def _run(self, *args: str, timeout: float | None = None) -> subprocess.CompletedProcess:
        """Run a git command in the repository."""
        logger.debug("%s: git %s", self.repo_path, " ".join(args))
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_path,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                check=False,
                env=self._env,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise NotARepositoryError(self.repo_path, f"cannot run git: {e}") from e
        except OSError as e:
            raise ResolutionError(self.repo_path, f"cannot run git: {e}") from e
        if result.returncode < 0:
            raise CommandInterruptedError(
                self.repo_path, f"git {args[0]} killed by signal {-result.returncode}"
            )
        return result

    def has_metadata(self) -> bool:
        """Check for a .git directory, or a .git file (worktrees, submodules)."""
        return (self.repo_path / ".git").exists()

    def check_repository(self) -> None:
        """Fail unless git accepts the metadata as a repository."""
        result = self._run("rev-parse", "--git-dir")
        if result.returncode != 0:
            raise ResolutionError(
                self.repo_path,
                _first_line(result.stderr) or "not a valid git repository",
                ResolutionReason.CORRUPT_REPOSITORY,
            )

    def get_head_commit(self) -> str | None:
        """Get the commit HEAD points to, None on an unborn branch."""
        result = self._run("rev-parse", "--verify", "--quiet", "HEAD^{commit}")
        if result.returncode == 0:
            return result.stdout.strip() or None
        if result.stderr.strip():
            raise ResolutionError(self.repo_path, _first_line(result.stderr))
        return None

    def get_current_branch(self) -> str | None:
        """Get current branch name, None when HEAD is detached."""
        result = self._run("symbolic-ref", "--quiet", "--short", "HEAD")
        if result.returncode == 0:
            return result.stdout.strip() or None
        return None

    def get_upstream_ref(self) -> str | None:
        """Get the upstream tracking reference, e.g. origin/main."""
        result = self._run("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}")
        if result.returncode == 0:
            return result.stdout.strip() or None
        return None

    def get_upstream_commit(self) -> str | None:
        """Get the commit of the locally recorded upstream reference."""
        result = self._run("rev-parse", "--verify", "--quiet", "@{upstream}^{commit}")
        if result.returncode == 0:
            return result.stdout.strip() or None
        return None

    def get_merge_base(self) -> str | None:
        """Get merge-base between HEAD and its upstream, None for unrelated histories."""
        result = self._run("merge-base", "HEAD", "@{upstream}")
        if result.returncode == 0:
            return result.stdout.strip() or None
        if result.returncode == 1:
            return None
        raise ResolutionError(
            self.repo_path,
            _first_line(result.stderr) or f"git merge-base exited with {result.returncode}",
        )

    def _diff_differs(self, *args: str) -> bool:
        result = self._run("diff", "--quiet", "--ignore-submodules", *args)
        if result.returncode == 0:
            return False
        if result.returncode == 1:
            return True
        raise ResolutionError(
            self.repo_path,
            _first_line(result.stderr) or f"git diff exited with {result.returncode}",
        )

    def has_unstaged_changes(self) -> bool:
        """Check whether the working tree differs from the index."""
        return self._diff_differs()

    def has_staged_changes(self) -> bool:
        """Check whether the index differs from HEAD."""
        return self._diff_differs("--cached")

    def get_last_log_line(self) -> str:
        result = self._run("log", "-1", "--format=%h %s")
        if result.returncode == 0:
            return result.stdout.strip()
        return ""

    def fetch(self) -> tuple[bool, str]:
        """Fetch the tracked remote, bounded by fetch_timeout."""
        try:
            result = self._run("fetch", "--quiet", timeout=self.fetch_timeout)
        except subprocess.TimeoutExpired:
            return False, f"timed out after {self.fetch_timeout:g}s"
        except CommandInterruptedError:
            raise
        except ResolutionError as e:
            return False, str(e)
        if result.returncode != 0:
            return False, _first_line(result.stderr) or f"git fetch exited with {result.returncode}"
        return True, ""


# =============================================================================
# Reference Resolver
# =============================================================================


class Resolver(Protocol):
    def resolve(self, path: Path) -> RefSnapshot: ...


class ReferenceResolver:
    """Resolve one working copy into a RefSnapshot.

    Raises NotARepositoryError when the path has no git metadata,
    NoCommitsError when HEAD is unborn, and ResolutionError for any other
    git failure. With online=True the tracked remote is fetched first; a
    failed fetch is recorded in the snapshot and the cached upstream is used.
    """

    def __init__(self, online: bool = False, fetch_timeout: float = DEFAULT_FETCH_TIMEOUT):
        self.online = online
        self.fetch_timeout = fetch_timeout

    def resolve(self, path: Path) -> RefSnapshot:
        path = Path(path).resolve()
        ops = GitOperations(path, fetch_timeout=self.fetch_timeout)
        if not ops.has_metadata():
            raise NotARepositoryError(path, "not a git repository")

        ops.check_repository()
        branch = ops.get_current_branch()
        local_commit = ops.get_head_commit()
        if local_commit is None:
            raise NoCommitsError(path, "no commits yet", branch=branch)

        upstream_ref = ops.get_upstream_ref()
        fetch_error = None
        if upstream_ref and self.online:
            success, error = ops.fetch()
            if not success:
                fetch_error = error
                logger.info("%s: fetch failed, using cached %s: %s", path, upstream_ref, error)

        upstream_commit = ops.get_upstream_commit() if upstream_ref else None
        merge_base = ops.get_merge_base() if upstream_commit else None

        return RefSnapshot(
            branch=branch,
            local_commit=local_commit,
            upstream_commit=upstream_commit,
            merge_base=merge_base,
            has_uncommitted_changes=ops.has_unstaged_changes(),
            has_staged_changes=ops.has_staged_changes(),
            last_log_line=ops.get_last_log_line(),
            upstream_ref=upstream_ref if upstream_commit else None,
            fetch_error=fetch_error,
        )


# =============================================================================
# State Classifier
# =============================================================================


def classify(snapshot: RefSnapshot) -> tuple[SyncState, str]:
    """Map a snapshot to exactly one sync state and a short annotation.

    Dirtiness is checked before any remote comparison. Of the remote states,
    "local is the merge base" and "upstream is the merge base" must be
    tested before falling back to diverged.
    """
    if snapshot.has_uncommitted_changes:
        return SyncState.UNCOMMITTED_CHANGES, "uncommitted changes"
    if snapshot.has_staged_changes:
        return SyncState.STAGED_CHANGES, "changes staged, ready to commit"
    if snapshot.upstream_commit is None:
        if snapshot.branch is None:
            return SyncState.NO_UPSTREAM, "detached HEAD"
        return SyncState.NO_UPSTREAM, "no upstream configured"

    upstream = snapshot.upstream_ref or snapshot.upstream_commit[:SHORT_ID_LENGTH]
    if snapshot.local_commit == snapshot.upstream_commit:
        return SyncState.UP_TO_DATE, f"up to date with {upstream}"
    if snapshot.local_commit == snapshot.merge_base:
        return SyncState.NEEDS_PULL, f"behind {upstream}, fast-forward available"
    if snapshot.upstream_commit == snapshot.merge_base:
        return SyncState.NEEDS_PUSH, f"ahead of {upstream}, needs push"
    return SyncState.DIVERGED, f"diverged from {upstream}"


# =============================================================================
# Repository Walker
# =============================================================================


def is_working_copy(path: Path) -> bool:
    return (path / ".git").exists()


def discover(root: Path, max_depth: int = DEFAULT_MAX_DEPTH) -> WorkingCopy:
    """Find working copies under root, at most max_depth levels below it.

    Entries are visited in directory listing order. Dot-prefixed directories
    and symlinks are never entered; plain directories are traversed but only
    directories holding git metadata become WorkingCopy nodes.
    """
    root = Path(root).resolve()
    tree = WorkingCopy(path=root, is_repo=is_working_copy(root), depth=0)
    tree.children = _scan(root, 0, max_depth)
    return tree


def _scan(directory: Path, depth: int, max_depth: int) -> list[WorkingCopy]:
    if depth >= max_depth:
        return []
    try:
        with os.scandir(directory) as entries:
            subdirs = [
                Path(entry.path)
                for entry in entries
                if not entry.name.startswith(".") and entry.is_dir(follow_symlinks=False)
            ]
    except OSError as e:
        logger.debug("skipping unreadable directory %s: %s", directory, e)
        return []

    found: list[WorkingCopy] = []
    for subdir in subdirs:
        child_depth = depth + 1
        if is_working_copy(subdir):
            found.append(
                WorkingCopy(
                    path=subdir,
                    is_repo=True,
                    depth=child_depth,
                    children=_scan(subdir, child_depth, max_depth),
                )
            )
        else:
            found.extend(_scan(subdir, child_depth, max_depth))
    return found


@dataclass(frozen=True)
class _Outcome:
    state: SyncState
    branch: str | None = None
    annotation: str = ""
    last_log_line: str = ""
    fetch_error: str | None = None


_INTERRUPTED = _Outcome(SyncState.RESOLUTION_ERROR, annotation="interrupted before resolution")


class RepositoryWalker:
    """Discover and classify every working copy under a root."""

    def __init__(
        self,
        resolver: Resolver | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_workers: int = DEFAULT_MAX_WORKERS,
        *,
        sequential: bool = False,
    ):
        self.resolver = resolver if resolver is not None else ReferenceResolver()
        self.max_depth = max_depth
        self.max_workers = max_workers
        self.sequential = sequential
        self.interrupted = False
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop starting new resolutions; in-flight ones finish as interrupted."""
        self._cancelled.set()

    def walk(self, root: Path) -> ReportNode:
        """Build the report tree for root.

        The root is always the top node, as NOT_A_REPO when it is not a
        working copy. Per-repository failures become RESOLUTION_ERROR nodes.
        """
        try:
            tree = discover(root, self.max_depth)
        except KeyboardInterrupt:
            self.cancel()
            self.interrupted = True
            logger.warning("interrupted during discovery under %s", root)
            return ReportNode(
                path=Path(root).resolve(),
                depth=0,
                state=_INTERRUPTED.state,
                annotation=_INTERRUPTED.annotation,
            )
        copies = list(tree.iter_copies())
        logger.info("found %d working copies under %s", sum(c.is_repo for c in copies), tree.path)
        outcomes = self._evaluate_all(copies)
        return self._assemble(tree, outcomes)

    def evaluate(self, copy: WorkingCopy) -> _Outcome:
        """Resolve and classify a single working copy."""
        if self._cancelled.is_set():
            return _INTERRUPTED
        if not copy.is_repo:
            return _Outcome(SyncState.NOT_A_REPO, annotation="not a git repository")

        try:
            snapshot = self.resolver.resolve(copy.path)
        except NoCommitsError as e:
            return _Outcome(SyncState.NO_UPSTREAM, branch=e.branch, annotation=str(e))
        except CommandInterruptedError as e:
            logger.info("%s: %s", copy.path, e)
            return _INTERRUPTED
        except NotARepositoryError as e:
            return _Outcome(SyncState.NOT_A_REPO, annotation=str(e))
        except ResolutionError as e:
            if self._cancelled.is_set():
                return _INTERRUPTED
            logger.info("%s: %s (%s)", copy.path, e, e.reason)
            return _Outcome(SyncState.RESOLUTION_ERROR, annotation=str(e))
        except Exception as e:
            # One repository must never abort the whole walk.
            if self._cancelled.is_set():
                return _INTERRUPTED
            logger.warning("%s: unexpected error during resolution", copy.path, exc_info=True)
            return _Outcome(SyncState.RESOLUTION_ERROR, annotation=str(e) or type(e).__name__)

        state, annotation = classify(snapshot)
        return _Outcome(
            state,
            branch=snapshot.branch,
            annotation=annotation,
            last_log_line=snapshot.last_log_line,
            fetch_error=snapshot.fetch_error,
        )

    def _evaluate_all(self, copies: list[WorkingCopy]) -> dict[Path, _Outcome]:
        """Evaluate copies in parallel or sequentially.

        On KeyboardInterrupt no further resolution starts; outcomes already
        computed are kept and the walker is marked interrupted.
        """
        outcomes: dict[Path, _Outcome] = {}
        try:
            if self.sequential or len(copies) <= 1:
                for copy in copies:
                    outcomes[copy.path] = self.evaluate(copy)
            else:
                with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                    futures = {executor.submit(self.evaluate, copy): copy for copy in copies}
                    try:
                        for future in as_completed(futures):
                            outcomes[futures[future].path] = future.result()
                    except KeyboardInterrupt:
                        self.cancel()
                        executor.shutdown(wait=True, cancel_futures=True)
                        for future, copy in futures.items():
                            if (
                                future.done()
                                and not future.cancelled()
                                and future.exception() is None
                            ):
                                outcomes.setdefault(copy.path, future.result())
                        raise
        except KeyboardInterrupt:
            self.cancel()
            self.interrupted = True
            logger.warning(
                "interrupted: %d of %d working copies resolved", len(outcomes), len(copies)
            )
        return outcomes

    def _assemble(self, copy: WorkingCopy, outcomes: dict[Path, _Outcome]) -> ReportNode:
        outcome = outcomes.get(copy.path, _INTERRUPTED)
        return ReportNode(
            path=copy.path,
            depth=copy.depth,
            state=outcome.state,
            branch=outcome.branch,
            annotation=outcome.annotation,
            children=tuple(self._assemble(child, outcomes) for child in copy.children),
            last_log_line=outcome.last_log_line,
            fetch_error=outcome.fetch_error,
        )


def walk(
    root: Path,
    max_depth: int = DEFAULT_MAX_DEPTH,
    *,
    online: bool = False,
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT,
    max_workers: int = DEFAULT_MAX_WORKERS,
    sequential: bool = False,
) -> ReportNode:
    """Audit root with a fresh git-backed walker."""
    walker = RepositoryWalker(
        ReferenceResolver(online=online, fetch_timeout=fetch_timeout),
        max_depth=max_depth,
        max_workers=max_workers,
        sequential=sequential,
    )
    return walker.walk(root)


def run(config: AuditConfig) -> int:
    """Audit config.root, print the report and return the exit status."""
    console, formatter = get_console_and_formatter(config.json_output, config.color)
    walker = RepositoryWalker(
        ReferenceResolver(online=config.online, fetch_timeout=config.fetch_timeout),
        max_depth=config.max_depth,
        max_workers=config.max_workers,
        sequential=config.sequential,
    )

    progress_console = Console(stderr=True)
    if not config.json_output and progress_console.is_terminal:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=progress_console,
            transient=True,
        ) as progress:
            progress.add_task(
                "Fetching and analyzing..." if config.online else "Analyzing...",
                total=None,
            )
            report = walker.walk(config.root)
    else:
        report = walker.walk(config.root)

    formatter.print_report(report, show_log=config.show_log, interrupted=walker.interrupted)
    return EXIT_INTERRUPTED if walker.interrupted else 0


# =============================================================================
# CLI Application
# =============================================================================


app = typer.Typer(
    name="git-audit",
    help="Audit the sync state of every git repository under a directory tree.",
    no_args_is_help=True,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"git-audit {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    schema: bool = typer.Option(
        False,
        "--schema",
        help="Output MCP-compatible tool schema for AI agents",
    ),
):
    """git-audit: Audit the sync state of every git repository under a directory tree."""
    if schema:
        print(json.dumps(get_tool_schema(), indent=2))
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def get_console_and_formatter(
    json_output: bool, color: bool | None = None
) -> tuple[Console, OutputFormatter]:
    """Create console and formatter; colors are decided here, once per run."""
    if color and not json_output:
        console = Console(highlight=False, force_terminal=True, color_system="standard")
    else:
        console = Console(highlight=False, no_color=True if color is False else None)
    palette = PaletteConfig.detect(console, None if json_output else color)
    formatter = OutputFormatter(console, palette, use_json=json_output)
    return console, formatter


@app.command()
def status(
    path: Path = typer.Argument(
        Path("."),
        exists=True,
        file_okay=False,
        dir_okay=True,
        readable=True,
        resolve_path=True,
        help="Root path to scan for repositories",
    ),
    depth: int = typer.Option(
        DEFAULT_MAX_DEPTH,
        "--depth",
        "-d",
        min=0,
        envvar="GIT_AUDIT_DEPTH",
        help="How many directory levels below the root to search",
    ),
    fetch: bool = typer.Option(
        False,
        "--fetch",
        "-f",
        envvar="GIT_AUDIT_FETCH",
        help="Fetch each upstream before comparing (best effort)",
    ),
    timeout: float = typer.Option(
        DEFAULT_FETCH_TIMEOUT,
        "--timeout",
        min=0.1,
        envvar="GIT_AUDIT_FETCH_TIMEOUT",
        help="Seconds allowed for each fetch",
    ),
    color: Optional[bool] = typer.Option(
        None,
        "--color/--no-color",
        help="Force colors on or off (default: auto-detect)",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
    sequential: bool = typer.Option(
        False,
        "--sequential",
        "-s",
        help="Run sequentially instead of parallel",
    ),
    workers: int = typer.Option(
        DEFAULT_MAX_WORKERS,
        "--workers",
        "-w",
        min=1,
        help="Maximum number of repositories resolved in parallel",
    ),
    show_log: bool = typer.Option(
        False,
        "--log",
        "-l",
        help="Show the last commit of each repository",
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Log more details to stderr (repeat for debug output)",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Only log errors to stderr",
    ),
):
    """Show the sync state of every repository under PATH as a tree."""
    configure_logging(verbose, quiet=quiet)
    config = AuditConfig(
        root=path,
        max_depth=depth,
        online=fetch,
        color=color,
        json_output=json_output,
        sequential=sequential,
        max_workers=workers,
        fetch_timeout=timeout,
        show_log=show_log,
    )
    raise typer.Exit(run(config))


@app.command(name="list")
def list_repos(
    path: Path = typer.Argument(
        Path("."),
        exists=True,
        file_okay=False,
        dir_okay=True,
        readable=True,
        resolve_path=True,
        help="Root path to scan for repositories",
    ),
    depth: int = typer.Option(
        DEFAULT_MAX_DEPTH,
        "--depth",
        "-d",
        min=0,
        envvar="GIT_AUDIT_DEPTH",
        help="How many directory levels below the root to search",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
    paths_only: bool = typer.Option(
        False,
        "--paths",
        "-p",
        help="Output only paths (one per line, for piping to fzf etc.)",
    ),
):
    """List discovered working copies without querying git."""
    _, formatter = get_console_and_formatter(json_output)
    tree = discover(path, depth)

    if paths_only:
        for copy in tree.iter_copies():
            if copy.is_repo:
                print(copy.path)
    else:
        formatter.print_repo_list(tree)
