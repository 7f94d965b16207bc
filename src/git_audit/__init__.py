"""git-audit: Audit the sync state of every git repository under a directory tree."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .core import (
    GitOperations,
    ReferenceResolver,
    RepositoryWalker,
    app,
    classify,
    discover,
    run,
    walk,
)
from .formatters import OutputFormatter, PaletteConfig, render
from .models import (
    AuditConfig,
    AuditSummary,
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

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    "run",
    # Models
    "AuditConfig",
    "AuditSummary",
    "RefSnapshot",
    "ReportNode",
    "SyncState",
    "WorkingCopy",
    # Errors
    "CommandInterruptedError",
    "NoCommitsError",
    "NotARepositoryError",
    "ResolutionError",
    "ResolutionReason",
    # Operations
    "GitOperations",
    "ReferenceResolver",
    "RepositoryWalker",
    "classify",
    "discover",
    "walk",
    # Formatters
    "OutputFormatter",
    "PaletteConfig",
    "render",
    # Functions
    "get_tool_schema",
]
