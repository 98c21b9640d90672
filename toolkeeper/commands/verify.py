"""Verify command implementation for toolkeeper.

Read-only health check of every toolchain: what is installed, what is
active, and whether the active version is the newest one installed. The
latest-version column comes from the cache only; ``verify`` never asks
upstream and never changes anything.

Typical usage::

    $ toolkeeper verify
    $ toolkeeper verify --only rustup
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import click

from toolkeeper.backends import Backend, create_backends
from toolkeeper.constants import BACKEND_ORDER
from toolkeeper.context import ToolKeeperContext, pass_context
from toolkeeper.core.protection import ProtectionClassifier
from toolkeeper.core.version_cache import VersionCache
from toolkeeper.exceptions import ToolKeeperError
from toolkeeper.models import ActiveToolchainState, InstalledVersion
from toolkeeper.utils import (
    CommandRunner,
    get_logger,
    is_newer,
    latest_of,
    print_success,
    print_table,
    print_warning,
)

logger = get_logger("commands.verify")

STATUS_OK = "OK"
STATUS_WARN = "WARN"
STATUS_MISSING = "Not installed"
STATUS_ERROR = "ERROR"

_STATUS_STYLES = {
    STATUS_OK: "green",
    STATUS_WARN: "yellow",
    STATUS_MISSING: "dim",
    STATUS_ERROR: "red",
}


@click.command()
@click.option(
    "--only",
    "-o",
    "only",
    multiple=True,
    type=click.Choice(list(BACKEND_ORDER)),
    help="Restrict the check to these backends (can be repeated).",
)
@pass_context
def verify(ctx: ToolKeeperContext, only: Tuple[str, ...]) -> None:
    """Show installed and active toolchain versions without changing anything."""
    config = ctx.config
    runner = CommandRunner(default_timeout=config.lookup_timeout)
    classifier = ProtectionClassifier(config.protected_paths)
    cache = VersionCache(config.cache_dir)
    state = ActiveToolchainState()

    rows = [
        inspect_backend(backend, classifier, cache, state)
        for backend in create_backends(config, runner, only=only)
    ]
    attention = [row for row in rows if row["Status"] in (STATUS_WARN, STATUS_ERROR)]

    print_table(
        [_styled(row) for row in rows],
        headers=["Backend", "Status", "Active", "Newest installed", "Latest", "Note"],
        title="Toolchain verification",
        column_styles={"Backend": {"style": "bold"}},
    )

    if attention:
        print_warning(f"{len(attention)} toolchain(s) need attention")
    else:
        print_success("All installed toolchains look healthy")


def inspect_backend(
    backend: Backend,
    classifier: ProtectionClassifier,
    cache: VersionCache,
    state: ActiveToolchainState,
) -> Dict[str, str]:
    """Build one ``verify`` row; errors become an ``ERROR`` row."""
    row = {
        "Backend": backend.label,
        "Status": STATUS_MISSING,
        "Active": "-",
        "Newest installed": "-",
        "Latest": "-",
        "Note": "",
    }

    try:
        if not backend.is_available():
            row["Note"] = f"{backend.executable} not found"
            return row

        current = backend.detect(state)
        installed = backend.list_installed(state)
        entry = cache.peek(backend.cache_key)
    except (ToolKeeperError, OSError) as exc:
        logger.debug("verify %s failed", backend.name, exc_info=True)
        row["Status"] = STATUS_ERROR
        row["Note"] = str(exc)
        return row

    if entry is not None:
        row["Latest"] = entry.value

    newest = _newest(installed)
    if newest is not None:
        row["Newest installed"] = newest

    if current is None:
        if installed:
            row["Status"] = STATUS_WARN
            row["Note"] = "no version is active"
        return row

    row["Active"] = current.version

    if classifier.is_protected(current.handle):
        row["Status"] = STATUS_OK
        row["Note"] = f"system ({classifier.matching_root(current.handle)})"
        return row

    status, note = evaluate(current, newest, entry.value if entry else None)
    row["Status"] = status
    row["Note"] = note
    return row


def evaluate(
    current: InstalledVersion,
    newest_installed: Optional[str],
    cached_latest: Optional[str],
) -> Tuple[str, str]:
    """Return ``(status, note)`` for an active, unprotected toolchain."""
    notes: List[str] = []
    if newest_installed is not None and is_newer(newest_installed, current.version):
        notes.append(f"{newest_installed} is installed but not active")
    if cached_latest is not None and is_newer(cached_latest, current.version):
        notes.append(f"{cached_latest} is available")

    if notes:
        return STATUS_WARN, "; ".join(notes)
    return STATUS_OK, ""


def _newest(installed: List[InstalledVersion]) -> Optional[str]:
    return latest_of([v.version for v in installed], include_snapshots=True)


def _styled(row: Dict[str, str]) -> Dict[str, str]:
    color = _STATUS_STYLES.get(row["Status"])
    if not color:
        return row
    return {**row, "Status": f"[{color}]{row['Status']}[/{color}]"}
