"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from rich.console import Console
from rich.text import Text

from .models import AuditSummary, ReportNode, SyncState, WorkingCopy

INDENT = "  "

MARKERS: Mapping[SyncState, str] = MappingProxyType(
    {
        SyncState.CLEAN: "✓",
        SyncState.UP_TO_DATE: "✓",
        SyncState.NEEDS_PULL: "⬇",
        SyncState.NEEDS_PUSH: "⬆",
        SyncState.DIVERGED: "⬆⬇",
        SyncState.UNCOMMITTED_CHANGES: "✎",
        SyncState.STAGED_CHANGES: "+",
        SyncState.NO_UPSTREAM: "○",
        SyncState.NOT_A_REPO: "·",
        SyncState.RESOLUTION_ERROR: "✗",
    }
)

LABELS: Mapping[SyncState, str] = MappingProxyType(
    {
        SyncState.CLEAN: "Clean",
        SyncState.UP_TO_DATE: "Up to date",
        SyncState.NEEDS_PULL: "Need pull",
        SyncState.NEEDS_PUSH: "Need push",
        SyncState.DIVERGED: "Diverged",
        SyncState.UNCOMMITTED_CHANGES: "Uncommitted",
        SyncState.STAGED_CHANGES: "Staged",
        SyncState.NO_UPSTREAM: "No upstream",
        SyncState.NOT_A_REPO: "Not a repo",
        SyncState.RESOLUTION_ERROR: "Errors",
    }
)

# States without a meaningful branch to show
_BRANCHLESS = frozenset({SyncState.NOT_A_REPO, SyncState.RESOLUTION_ERROR})


@dataclass(frozen=True)
class StatePalette:
    """Rich styles for one sync state; empty strings mean unstyled."""

    path: str = ""
    branch: str = ""


_UNSTYLED = StatePalette()

DEFAULT_STYLES: Mapping[SyncState, StatePalette] = MappingProxyType(
    {
        SyncState.CLEAN: StatePalette("", "cyan"),
        SyncState.UP_TO_DATE: StatePalette("", "cyan"),
        SyncState.NEEDS_PULL: StatePalette("yellow", "yellow"),
        SyncState.NEEDS_PUSH: StatePalette("yellow", "yellow"),
        SyncState.STAGED_CHANGES: StatePalette("yellow", "cyan"),
        SyncState.DIVERGED: StatePalette("bold red", "red"),
        SyncState.UNCOMMITTED_CHANGES: StatePalette("bold red", "red"),
        SyncState.NO_UPSTREAM: StatePalette("magenta", "dim"),
        SyncState.NOT_A_REPO: StatePalette("dim", "dim"),
        SyncState.RESOLUTION_ERROR: StatePalette("red", "red"),
    }
)


@dataclass(frozen=True)
class PaletteConfig:
    """Color choices for a whole run, decided once before rendering."""

    enabled: bool = False
    styles: Mapping[SyncState, StatePalette] = field(
        default_factory=lambda: MappingProxyType({})
    )
    note: str = ""

    @classmethod
    def plain(cls) -> PaletteConfig:
        return cls()

    @classmethod
    def colored(cls) -> PaletteConfig:
        return cls(enabled=True, styles=DEFAULT_STYLES, note="dim")

    @classmethod
    def detect(cls, console: Console, override: bool | None = None) -> PaletteConfig:
        """Pick a palette for console.

        An explicit override wins. Otherwise colors are used only when the
        console is a terminal and that terminal advertises color support.
        """
        if override is not None:
            enabled = override
        else:
            enabled = (
                console.is_terminal
                and not console.is_dumb_terminal
                and console.color_system is not None
                and not console.no_color
            )
        return cls.colored() if enabled else cls.plain()

    def for_state(self, state: SyncState) -> StatePalette:
        return self.styles.get(state, _UNSTYLED)


def _display_path(path: Path, root: Path) -> str:
    if path == root:
        return str(path)
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


def _branch_display(node: ReportNode) -> str | None:
    if node.state in _BRANCHLESS:
        return None
    return node.branch or "detached"


def render_lines(
    node: ReportNode,
    palette: PaletteConfig,
    *,
    show_log: bool = False,
    root: Path | None = None,
) -> list[Text]:
    """Render node and its descendants, one Text per line, depth-first."""
    root = node.path if root is None else root
    colors = palette.for_state(node.state)

    line = Text(INDENT * node.depth)
    line.append(f"{MARKERS[node.state]} ", style=colors.path)
    line.append(_display_path(node.path, root), style=colors.path)
    branch = _branch_display(node)
    if branch:
        line.append(" ")
        line.append(f"[{branch}]", style=colors.branch)
    if node.annotation:
        line.append(" ")
        line.append(node.annotation, style=colors.path)
    if node.fetch_error:
        line.append(" ")
        line.append(f"(fetch failed: {node.fetch_error})", style=palette.note)
    if show_log and node.last_log_line:
        line.append(" - ")
        line.append(node.last_log_line, style=palette.note)

    lines = [line]
    for child in node.children:
        lines.extend(render_lines(child, palette, show_log=show_log, root=root))
    return lines


def render(node: ReportNode, palette: PaletteConfig, *, show_log: bool = False) -> Text:
    """Render the report tree as a single multi-line Text."""
    return Text("\n").join(render_lines(node, palette, show_log=show_log))


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(
        self,
        console: Console,
        palette: PaletteConfig | None = None,
        use_json: bool = False,
    ):
        self.console = console
        self.palette = palette if palette is not None else PaletteConfig.plain()
        self.use_json = use_json

    @property
    def _bold(self) -> str:
        return "bold" if self.palette.enabled else ""

    def print_report(
        self, report: ReportNode, *, show_log: bool = False, interrupted: bool = False
    ):
        """Print the audit tree followed by its summary."""
        summary = AuditSummary.from_tree(report)
        if self.use_json:
            self._print_report_json(report, summary, interrupted)
            return

        self.console.print(render(report, self.palette, show_log=show_log), soft_wrap=True)
        self.console.print()
        self._print_summary(summary)
        if interrupted:
            style = self.palette.for_state(SyncState.RESOLUTION_ERROR).path
            self.console.print(Text("Interrupted: report is partial", style=style))

    def _print_summary(self, summary: AuditSummary):
        line = Text(f"Total: {summary.total}", style=self._bold)
        for state, label in LABELS.items():
            count = summary.count(state)
            if count == 0:
                continue
            line.append(" | ")
            line.append(f"{MARKERS[state]} {label}:", style=self.palette.for_state(state).path)
            line.append(f" {count}")
        self.console.print(line, soft_wrap=True)

    def _print_report_json(self, report: ReportNode, summary: AuditSummary, interrupted: bool):
        output = {
            "root": str(report.path),
            "interrupted": interrupted,
            "tree": report.to_dict(),
            "summary": summary.to_dict(),
        }
        self.console.print(
            json.dumps(output, indent=2),
            markup=False,
            highlight=False,
            emoji=False,
            soft_wrap=True,
        )

    def print_repo_list(self, tree: WorkingCopy):
        """Print discovered working copies as an indented tree."""
        repos = [copy for copy in tree.iter_copies() if copy.is_repo]
        if self.use_json:
            output = {
                "root": str(tree.path),
                "count": len(repos),
                "repositories": [
                    {"path": str(copy.path), "depth": copy.depth} for copy in repos
                ],
            }
            self.console.print(
                json.dumps(output, indent=2),
                markup=False,
                highlight=False,
                emoji=False,
                soft_wrap=True,
            )
            return

        self.console.print(
            Text(f"Found {len(repos)} repositories in {tree.path}", style=self._bold),
            soft_wrap=True,
        )
        for copy in tree.iter_copies():
            if copy.depth == 0:
                continue
            self.console.print(
                Text(INDENT * copy.depth + _display_path(copy.path, tree.path)),
                soft_wrap=True,
            )
