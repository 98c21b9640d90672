"""Versions command implementation for toolkeeper.

Prints a dense, read-only listing of the active version of each toolchain
together with the size of its package or tool inventory::

    Python .......... 3.12.1 (pip 42, pipx 5)
    Node.js ......... v20.11.0 (npm 7)
    Ruby ............ not installed
"""

from __future__ import annotations

from typing import Dict, Tuple

import click

from toolkeeper.backends import Backend, create_backends
from toolkeeper.constants import BACKEND_ORDER
from toolkeeper.context import ToolKeeperContext, pass_context
from toolkeeper.exceptions import ToolKeeperError
from toolkeeper.models import ActiveToolchainState
from toolkeeper.utils import CommandRunner, get_logger, print_dotted

logger = get_logger("commands.versions")


@click.command()
@click.option(
    "--only",
    "-o",
    "only",
    multiple=True,
    type=click.Choice(list(BACKEND_ORDER)),
    help="Restrict the listing to these backends (can be repeated).",
)
@pass_context
def versions(ctx: ToolKeeperContext, only: Tuple[str, ...]) -> None:
    """List active toolchain versions and package counts."""
    config = ctx.config
    runner = CommandRunner(default_timeout=config.lookup_timeout)
    state = ActiveToolchainState()

    rows = [
        (backend.label, describe_backend(backend, state))
        for backend in create_backends(config, runner, only=only)
    ]
    print_dotted(rows)


def describe_backend(backend: Backend, state: ActiveToolchainState) -> str:
    """One-line description of a backend's active version."""
    try:
        if not backend.is_available():
            return "not installed"
        current = backend.detect(state)
        if current is None:
            return "not installed"
        counts = backend.package_counts(state)
    except (ToolKeeperError, OSError) as exc:
        logger.debug("versions %s failed", backend.name, exc_info=True)
        return f"error: {exc}"

    return f"{current.identifier}{format_counts(counts)}"


def format_counts(counts: Dict[str, int]) -> str:
    if not counts:
        return ""
    return " (" + ", ".join(f"{name} {count}" for name, count in counts.items()) + ")"
