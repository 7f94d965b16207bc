"""Logging setup for the CLI: plain diagnostics on stderr, never on stdout."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "git_audit"


def _resolve_level() -> int:
    raw = os.environ.get("GIT_AUDIT_LOG_LEVEL", "").strip().upper()
    if raw:
        return getattr(logging, raw, logging.WARNING)
    return logging.WARNING


def configure_logging(verbosity: int = 0, *, quiet: bool = False) -> None:
    """Set git_audit.* logger level from CLI flags.

    --quiet wins over --verbose; -v gives INFO, -vv and more give DEBUG.
    Without flags the level comes from $GIT_AUDIT_LOG_LEVEL (default WARNING).
    """
    if quiet:
        level = logging.ERROR
    elif verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = _resolve_level()

    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(level)
    if not root.handlers:
        handler = RichHandler(
            console=Console(stderr=True),
            show_time=False,
            show_path=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
        root.propagate = False
