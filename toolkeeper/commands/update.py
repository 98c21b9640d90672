"""Update command implementation for toolkeeper.

Runs every toolchain backend through the upgrade lifecycle, in a fixed
order, and prints a summary at the end:

1. **VersionCache**: memoized "latest available" lookups (24 h by default)
2. **ProtectionClassifier**: OS-owned installations are never touched
3. **CompatibilityGate**: interpreter upgrades that would break installed
   packages are skipped (or confirmed interactively)
4. **UpgradeOrchestrator**: install, activate, verify, then refresh tools
5. **RetentionSweeper**: old versions removed, keep-lists honoured

A failing backend never stops the others; failures are listed at the end
and the exit status stays 0.

Typical usage::

    $ toolkeeper update
    $ toolkeeper update --only pyenv --only nvm
    $ toolkeeper update --refresh --non-interactive
"""

from __future__ import annotations

import sys
import signal
from typing import Optional, Tuple

import click

from toolkeeper.backends import Backend, create_backends
from toolkeeper.constants import BACKEND_LABELS, BACKEND_ORDER
from toolkeeper.context import ToolKeeperContext, pass_context
from toolkeeper.core.compatibility import GateReport
from toolkeeper.core.orchestrator import UpgradeOrchestrator
from toolkeeper.core.protection import ProtectionClassifier
from toolkeeper.core.version_cache import InstallHints, VersionCache
from toolkeeper.models import RunSummary, SweepReport, UpgradeOutcome, UpgradeResult
from toolkeeper.utils import (
    CancelToken,
    CommandRunner,
    colorize_outcome,
    confirm,
    get_logger,
    get_update_type,
    print_error,
    print_info,
    print_section,
    print_success,
    print_table,
    print_warning,
)

logger = get_logger("commands.update")


@click.command()
@click.option(
    "--only",
    "-o",
    "only",
    multiple=True,
    type=click.Choice(list(BACKEND_ORDER)),
    help="Restrict the run to these backends (can be repeated).",
)
@click.option(
    "--refresh",
    is_flag=True,
    help="Ignore cached latest versions and ask upstream again.",
)
@click.option(
    "--interactive/--non-interactive",
    default=None,
    help="Ask before risky upgrades (default: only when attached to a terminal).",
)
@pass_context
def update(
    ctx: ToolKeeperContext,
    only: Tuple[str, ...],
    refresh: bool,
    interactive: Optional[bool],
) -> None:
    """Upgrade toolchains, verify them and prune old versions.

    Exits:
        0 when the run completed (backend failures are reported, not fatal),
        130 when the run was cancelled.
    """
    if interactive is None:
        interactive = sys.stdin.isatty()

    config = ctx.config
    token = CancelToken()
    runner = CommandRunner(cancel_token=token, default_timeout=config.command_timeout)
    classifier = ProtectionClassifier(config.protected_paths)
    hints = InstallHints(config.cache_dir)
    backends = create_backends(config, runner, only=only, hints=hints)

    orchestrator = UpgradeOrchestrator(
        VersionCache(config.cache_dir),
        classifier,
        config,
        confirm=_confirm_gate,
        interactive=interactive,
        refresh=refresh,
        cancel_token=token,
        on_result=_report_result,
    )

    logger.info(
        "Updating %s (interactive=%s, refresh=%s)",
        ", ".join(b.name for b in backends),
        interactive,
        refresh,
    )

    previous = _install_sigterm_handler(token)
    try:
        summary = orchestrator.run(backends)
    finally:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)

    _print_summary(summary)
    if summary.cancelled:
        print_warning("Run cancelled; remaining backends were not processed")
        sys.exit(130)


def _install_sigterm_handler(token: CancelToken):
    def _handler(signum, frame) -> None:
        logger.warning("SIGTERM received, cancelling after the current step")
        token.cancel()

    try:
        return signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # not in the main thread
        return None


# ---------------------------------------------------------------------------
# Interaction
# ---------------------------------------------------------------------------


def _confirm_gate(backend: Backend, report: GateReport) -> bool:
    print_warning(
        f"{backend.label} {report.candidate} is incompatible with "
        f"{len(report.incompatible)} installed package(s):"
    )
    for item in report.incompatible:
        print_warning(f"  - {item}", prefix="   ")
    return confirm(f"Do you want to continue with the {backend.label} upgrade?", default=False)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def _report_result(result: UpgradeResult, sweep: Optional[SweepReport]) -> None:
    name = result.backend
    outcome = result.outcome

    if outcome is UpgradeOutcome.UPGRADED:
        print_section(
            name, f"Upgraded {result.previous_version or 'none'} -> {result.active_version}"
        )
        if result.via:
            print_info(f"installed via {result.via}")
    elif outcome is UpgradeOutcome.ALREADY_CURRENT:
        print_section(name, f"Already current ({result.active_version})")
    elif outcome is UpgradeOutcome.SKIPPED_UNAVAILABLE:
        print_section(name, "Not installed, skipping")
    elif outcome is UpgradeOutcome.SKIPPED_PROTECTED:
        print_section(name, "Protected installation, skipping")
        print_info(result.error_detail or "")
    elif outcome is UpgradeOutcome.SKIPPED_INCOMPATIBLE:
        print_section(name, f"Upgrade to {result.target_version} skipped")
        print_warning(result.error_detail or "incompatible packages")
    else:
        print_section(name, "Failed")
        print_error(result.error_detail or "unknown error", prefix="  ERROR:")

    if result.tools is not None:
        print_info(f"tools: {result.tools.summary()}")

    if sweep is not None:
        if not sweep.enabled:
            print_info("cleanup disabled")
        elif sweep.removed:
            print_success(f"removed {', '.join(sweep.removed)}")
        for version, reason in sweep.failed.items():
            print_warning(f"could not remove {version}: {reason}")


def _print_summary(summary: RunSummary) -> None:
    if not summary.results:
        print_warning("No backends were processed")
        return

    rows = [
        {
            "Toolchain": BACKEND_LABELS.get(r.backend, r.backend),
            "Outcome": colorize_outcome(r.outcome.value),
            "Previous": r.previous_version or "-",
            "Active": r.active_version or "-",
            "Change": get_update_type(r.previous_version, r.active_version)
            if r.outcome is UpgradeOutcome.UPGRADED
            else "-",
        }
        for r in summary.results
    ]
    print_table(
        rows,
        headers=["Toolchain", "Outcome", "Previous", "Active", "Change"],
        title="Update summary",
        column_styles={"Toolchain": {"style": "bold"}},
    )

    issues = summary.issues()
    if issues:
        print_warning(f"{len(issues)} issue(s) need attention:")
        for backend, message in issues:
            print_warning(f"[{backend}] {message}", prefix="   ")
    else:
        print_success("All toolchains processed without issues")
