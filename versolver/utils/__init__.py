"""
Utility helpers for versolver.

This package provides reusable utilities used across versolver:

- Console output helpers (Rich-based)
- Logging configuration and retrieval
- Filesystem safety helpers
- Async HTTP client

Only symbols listed in ``__all__`` are considered part of the public API.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Filesystem utilities
# ---------------------------------------------------------------------------

from versolver.utils.filesystem import (
    find_project_root,
    safe_read_file,
    safe_write_file,
)

# ---------------------------------------------------------------------------
# Logging utilities
# ---------------------------------------------------------------------------

from versolver.utils.logger import (
    get_logger,
    level_for_verbosity,
    setup_logging,
)

# ---------------------------------------------------------------------------
# Console utilities
# ---------------------------------------------------------------------------

from versolver.utils.console import (
    colorize_change,
    print_error,
    print_lines,
    print_success,
    print_table,
    print_warning,
    reconfigure_console,
)

# ---------------------------------------------------------------------------
# HTTP utilities
# ---------------------------------------------------------------------------

from versolver.utils.http import HTTPClient

__all__ = [
    # Console
    "print_error",
    "print_lines",
    "print_table",
    "print_success",
    "print_warning",
    "colorize_change",
    "reconfigure_console",
    # Logging
    "get_logger",
    "setup_logging",
    "level_for_verbosity",
    # Filesystem
    "safe_read_file",
    "safe_write_file",
    "find_project_root",
    # HTTP
    "HTTPClient",
]
