"""
Console output utilities for toolkeeper using Rich.

User-facing progress and reports for the CLI commands. Diagnostics belong
in :mod:`toolkeeper.utils.logger` and never go through this module.

Guidelines:
- print_* functions: one-line status messages
- print_section: the ``[backend]`` header opening each backend's output
- print_table / print_dotted / confirm: structured or interactive output
"""

from __future__ import annotations

import os
import sys
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from rich.table import Table
from rich.theme import Theme
from rich.markup import escape
from rich.console import Console

TOOLKEEPER_THEME = Theme(
    {
        "success": "bold green",
        "error": "bold red",
        "warning": "bold yellow",
        "info": "cyan",
        "section": "bold magenta",
        "dim": "dim",
    }
)

_console: Optional[Console] = None
_console_lock = threading.Lock()


def _should_use_color() -> bool:
    if os.environ.get("NO_COLOR") or os.environ.get("CI"):
        return False
    try:
        return sys.stdout.isatty()
    except (AttributeError, OSError):
        return False


def _get_console() -> Console:
    """Return the process-wide Rich console, creating it on first use."""
    global _console

    if _console is None:
        with _console_lock:
            if _console is None:
                use_color = _should_use_color()
                _console = Console(
                    theme=TOOLKEEPER_THEME,
                    no_color=not use_color,
                    highlight=False,
                )
    return _console


def reconfigure_console() -> None:
    """Drop the cached console so the next call honours new env settings."""
    global _console
    with _console_lock:
        _console = None


# ---------------------------------------------------------------------------
# Status message helpers
# ---------------------------------------------------------------------------


def print_section(name: str, message: str) -> None:
    """Print a ``[name] message`` header line."""
    _get_console().print(f"[section]\\[{escape(name)}][/section] {escape(message)}")


def print_success(message: str, *, prefix: str = "  SUCCESS:") -> None:
    _get_console().print(f"{escape(prefix)} {escape(message)}", style="success")


def print_error(message: str, *, prefix: str = "[ERROR]") -> None:
    _get_console().print(f"{escape(prefix)} {escape(message)}", style="error")


def print_warning(message: str, *, prefix: str = "  WARNING:") -> None:
    _get_console().print(f"{escape(prefix)} {escape(message)}", style="warning")


def print_info(message: str, *, prefix: str = "  INFO:") -> None:
    _get_console().print(f"{escape(prefix)} {escape(message)}", style="info")


# ---------------------------------------------------------------------------
# Structured output
# ---------------------------------------------------------------------------


def print_table(
    data: List[Dict[str, Any]],
    *,
    headers: Optional[List[str]] = None,
    title: Optional[str] = None,
    column_styles: Optional[Dict[str, Dict[str, Any]]] = None,
    row_styler: Optional[Callable[[Dict[str, Any]], Optional[str]]] = None,
) -> None:
    """Render rows of dictionaries as a Rich table.

    Args:
        data: List of row dictionaries.
        headers: Column order. Defaults to keys of the first row.
        title: Optional table title.
        column_styles: Per-column ``style``/``justify``/``no_wrap`` settings.
        row_styler: Optional callback returning a style for a row.
    """
    if not data:
        return

    if headers is None:
        headers = list(data[0].keys())

    table = Table(title=title, show_header=True, header_style="bold")

    column_styles = column_styles or {}
    for header in headers:
        config = column_styles.get(header, {})
        table.add_column(
            header,
            style=config.get("style"),
            justify=config.get("justify", "left"),
            no_wrap=config.get("no_wrap", False),
            overflow="fold",
        )

    for row in data:
        values = [str(row.get(h, "")) for h in headers]
        table.add_row(*values, style=row_styler(row) if row_styler else None)

    _get_console().print(table)


def print_dotted(rows: Sequence[Tuple[str, str]], *, width: int = 16) -> None:
    """Print ``label ........ value`` lines, the dense ``versions`` layout."""
    console = _get_console()
    for label, value in rows:
        dots = "." * max(3, width - len(label))
        console.print(f"{escape(label)} {dots} {escape(value)}")


# ---------------------------------------------------------------------------
# User interaction
# ---------------------------------------------------------------------------


def confirm(message: str, *, default: bool = False) -> bool:
    """Prompt the user for a yes/no confirmation.

    - "y", "yes"   -> True
    - "n", "no"    -> False
    - empty or unrecognized input -> ``default``
    - Ctrl+C / EOF -> False

    Args:
        message: Prompt shown to the user.
        default: Answer used for empty or unrecognized input.
    """
    console = _get_console()
    suffix = " [Y/n]: " if default else " [y/N]: "
    console.print(f"{escape(message)}{suffix}", end="", style="warning")

    try:
        response = input().strip().lower()
    except (KeyboardInterrupt, EOFError):
        console.print()
        return False

    if response in ("y", "yes"):
        return True
    if response in ("n", "no"):
        return False
    return default


def get_raw_console() -> Console:
    """Return the underlying Rich Console instance."""
    return _get_console()


def colorize_outcome(outcome: str) -> str:
    """Return a Rich-markup colored upgrade outcome label."""
    color_map = {
        "upgraded": "green",
        "already-current": "dim",
        "upgrade-skipped-protected": "cyan",
        "upgrade-skipped-incompatible": "yellow",
        "skipped-unavailable": "dim",
        "failed": "red",
    }

    color = color_map.get(outcome.lower())
    return f"[{color}]{outcome}[/{color}]" if color else outcome
