"""
Console output utilities for versolver using Rich.

User-facing output for CLI commands goes through this module. Diagnostic
output goes through :mod:`versolver.utils.logger` instead.
"""

from __future__ import annotations

import os
import sys
import threading
from typing import Any, Dict, Iterable, List, Optional

from rich.table import Table
from rich.text import Text
from rich.theme import Theme
from rich.console import Console

# ---------------------------------------------------------------------------
# Theme configuration
# ---------------------------------------------------------------------------

VERSOLVER_THEME = Theme(
    {
        "success": "bold green",
        "error": "bold red",
        "warning": "bold yellow",
        "info": "bold cyan",
        "dim": "dim",
        "highlight": "bold magenta",
    }
)

# ---------------------------------------------------------------------------
# Console lifecycle management
# ---------------------------------------------------------------------------

_console: Optional[Console] = None
_color_override: Optional[bool] = None
_console_lock = threading.Lock()


def _should_use_color() -> bool:
    if _color_override is not None:
        return _color_override
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("CI"):
        return False
    try:
        return sys.stdout.isatty()
    except (AttributeError, OSError):
        return False


def _get_console() -> Console:
    """Return the singleton Rich Console."""
    global _console

    if _console is None:
        with _console_lock:
            if _console is None:
                use_color = _should_use_color()
                _console = Console(
                    theme=VERSOLVER_THEME,
                    no_color=not use_color,
                    highlight=use_color,
                )
    return _console


def reconfigure_console(*, color: Optional[bool] = None) -> None:
    """Drop the cached console so the next call rebuilds it.

    Args:
        color: Force colour on or off; ``None`` goes back to detection.
    """
    global _console, _color_override
    with _console_lock:
        _console = None
        _color_override = color


# ---------------------------------------------------------------------------
# Status message helpers
# ---------------------------------------------------------------------------


def print_success(message: str, *, prefix: str = "[OK]") -> None:
    _get_console().print(f"{prefix} {message}", style="success", markup=False)


def print_error(message: str, *, prefix: str = "[ERROR]") -> None:
    _get_console().print(f"{prefix} {message}", style="error", markup=False)


def print_warning(message: str, *, prefix: str = "[WARNING]") -> None:
    _get_console().print(f"{prefix} {message}", style="warning", markup=False)


def print_lines(lines: Iterable[str], *, style: Optional[str] = None) -> None:
    """Print pre-formatted lines verbatim, without markup or wrapping.

    Used for conflict explanations, whose line structure carries meaning.
    """
    console = _get_console()
    for line in lines:
        console.print(Text(line, style=style or ""), soft_wrap=True)


# ---------------------------------------------------------------------------
# Structured output
# ---------------------------------------------------------------------------


def print_table(
    data: List[Dict[str, Any]],
    *,
    headers: Optional[List[str]] = None,
    title: Optional[str] = None,
    caption: Optional[str] = None,
    column_styles: Optional[Dict[str, Dict[str, Any]]] = None,
) -> None:
    """Render row dictionaries as a Rich table.

    Args:
        data: List of row dictionaries.
        headers: Column order. Defaults to the keys of the first row.
        title: Optional table title.
        caption: Optional table caption.
        column_styles: Per-column style configuration.
    """
    if not data:
        return

    if headers is None:
        headers = list(data[0].keys())

    table = Table(
        title=title,
        caption=caption,
        show_header=True,
        header_style="bold",
    )

    column_styles = column_styles or {}
    for header in headers:
        config = column_styles.get(header, {})
        table.add_column(
            header,
            style=config.get("style"),
            justify=config.get("justify", "default"),
            no_wrap=config.get("no_wrap", False),
            overflow=config.get("overflow", "fold"),
        )

    for row in data:
        table.add_row(*(str(row.get(h, "")) for h in headers))

    _get_console().print(table)


def colorize_change(change: str) -> str:
    """Return Rich markup for a lockfile change label."""
    color_map = {
        "new": "cyan",
        "upgraded": "green",
        "downgraded": "yellow",
        "removed": "red",
        "changed": "magenta",
    }
    color = color_map.get(change.lower())
    return f"[{color}]{change}[/{color}]" if color else change
