"""MCP-compatible tool schema for AI agents."""

from __future__ import annotations

from ._version import __version__
from .models import DEFAULT_FETCH_TIMEOUT, DEFAULT_MAX_DEPTH, DEFAULT_MAX_WORKERS, SyncState

_REPORT_NODE = {
    "type": "object",
    "properties": {
        "path": {"type": "string"},
        "depth": {"type": "integer"},
        "state": {"type": "string", "enum": [state.value for state in SyncState]},
        "branch": {"type": ["string", "null"]},
        "annotation": {"type": "string"},
        "last_log_line": {"type": "string"},
        "fetch_error": {"type": ["string", "null"]},
        "children": {"type": "array", "items": {"$ref": "#/definitions/report_node"}},
    },
}


def get_tool_schema() -> dict:
    """Generate MCP-compatible tool schema for AI agents."""
    return {
        "name": "git-audit",
        "version": __version__,
        "description": "Audit the sync state of every git repository under a directory tree. Read-only: nothing is pulled, pushed or committed. Each repository gets exactly one state: uncommitted or staged changes first, then its relation to the upstream (up to date, needs pull, needs push, diverged) or no upstream.",
        "usage": "git-audit <command> [path] [options]",
        "definitions": {"report_node": _REPORT_NODE},
        "tools": [
            {
                "name": "status",
                "description": "Discover git working copies up to --depth levels below the path (hidden directories skipped) and report each one's sync state as a tree. Failures of a single repository are reported inline and never stop the run.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "path": {
                            "type": "string",
                            "description": "Root path to scan for repositories (default: current directory)",
                            "default": ".",
                        },
                        "depth": {
                            "type": "integer",
                            "description": "How many directory levels below the root to search",
                            "default": DEFAULT_MAX_DEPTH,
                        },
                        "fetch": {
                            "type": "boolean",
                            "description": "Fetch each upstream before comparing; failures fall back to the cached upstream",
                            "default": False,
                        },
                        "timeout": {
                            "type": "number",
                            "description": "Seconds allowed for each fetch",
                            "default": DEFAULT_FETCH_TIMEOUT,
                        },
                        "json": {
                            "type": "boolean",
                            "description": "Output as JSON for machine parsing",
                            "default": False,
                        },
                        "sequential": {
                            "type": "boolean",
                            "description": "Run sequentially instead of parallel",
                            "default": False,
                        },
                        "workers": {
                            "type": "integer",
                            "description": "Maximum number of repositories resolved in parallel",
                            "default": DEFAULT_MAX_WORKERS,
                        },
                    },
                    "required": [],
                },
                "outputSchema": {
                    "type": "object",
                    "properties": {
                        "root": {"type": "string"},
                        "interrupted": {"type": "boolean"},
                        "tree": {"$ref": "#/definitions/report_node"},
                        "summary": {
                            "type": "object",
                            "properties": {
                                "total": {"type": "integer"},
                                **{state.value: {"type": "integer"} for state in SyncState},
                            },
                        },
                    },
                },
                "examples": [
                    {
                        "description": "Check every repository in ~/Development",
                        "command": "git-audit status ~/Development --json",
                    },
                    {
                        "description": "Fetch first, with a short timeout per remote",
                        "command": "git-audit status --fetch --timeout 10 --json",
                    },
                ],
            },
            {
                "name": "list",
                "description": "List discovered working copies without running git.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "path": {
                            "type": "string",
                            "description": "Root path to scan for repositories (default: current directory)",
                            "default": ".",
                        },
                        "depth": {
                            "type": "integer",
                            "description": "How many directory levels below the root to search",
                            "default": DEFAULT_MAX_DEPTH,
                        },
                        "json": {
                            "type": "boolean",
                            "description": "Output as JSON for machine parsing",
                            "default": False,
                        },
                        "paths": {
                            "type": "boolean",
                            "description": "Output only paths, one per line",
                            "default": False,
                        },
                    },
                    "required": [],
                },
                "outputSchema": {
                    "type": "object",
                    "properties": {
                        "root": {"type": "string"},
                        "count": {"type": "integer"},
                        "repositories": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "path": {"type": "string"},
                                    "depth": {"type": "integer"},
                                },
                            },
                        },
                    },
                },
            },
        ],
    }
