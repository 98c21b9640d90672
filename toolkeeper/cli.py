"""
Command-line interface for toolkeeper.

The ``toolkeeper`` group resolves the global options once per invocation
(color, verbosity, configuration, log file) and stores the result in a
:class:`~toolkeeper.context.ToolKeeperContext` that every subcommand
receives through ``pass_context``.
"""

from __future__ import annotations

import os
import sys
import logging
from pathlib import Path
from typing import Optional

import click

from toolkeeper.config import load_config
from toolkeeper.__version__ import __version__
from toolkeeper.context import ToolKeeperContext
from toolkeeper.exceptions import ConfigError, ToolKeeperError
from toolkeeper.utils.logger import get_logger, setup_logging
from toolkeeper.utils.console import print_error, print_warning, reconfigure_console

logger = get_logger("cli")

# -v count -> console level
_VERBOSITY_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="TOOLKEEPER_CONFIG",
    help="Configuration file (default: toolkeeper.toml or [tool.toolkeeper]).",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Show diagnostics on stderr (-v info, -vv debug).",
)
@click.option(
    "--color/--no-color",
    default=True,
    envvar="TOOLKEEPER_COLOR",
    help="Enable or disable colored output.",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write a debug log to this file (overrides log_file in the config).",
)
@click.version_option(
    version=__version__,
    prog_name="toolkeeper",
    message="%(prog)s %(version)s",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: int,
    color: bool,
    log_file: Optional[Path],
) -> None:
    """toolkeeper: keep language toolchains current without breaking them.

    \b
    Commands:
      update      Upgrade toolchains, refresh tools, prune old versions
      verify      Check what is installed and active (read-only)
      versions    One line per toolchain with package counts (read-only)

    \b
    Examples:
      toolkeeper update --non-interactive
      toolkeeper update --only pyenv --refresh
      toolkeeper -v verify
    """
    if color:
        os.environ.pop("NO_COLOR", None)
    else:
        os.environ["NO_COLOR"] = "1"
    reconfigure_console()
    _configure_logging(verbose)

    try:
        loaded = load_config(config)
    except ConfigError as exc:
        print_error(str(exc))
        raise SystemExit(EXIT_ERROR) from exc

    audit_log = log_file or loaded.log_file
    if audit_log is not None:
        loaded.log_file = audit_log
        _configure_logging(verbose, audit_log)

    state = ctx.ensure_object(ToolKeeperContext)
    state.config = loaded
    state.config_path = config or loaded.source_path
    state.verbose = verbose
    state.color = color

    logger.debug(
        "toolkeeper %s (config=%s, cache_dir=%s)",
        __version__,
        state.config_path or "<defaults>",
        loaded.cache_dir,
    )


def _configure_logging(verbose: int, log_file: Optional[Path] = None) -> None:
    """Install handlers for the given ``-v`` count and optional log file."""
    level = _VERBOSITY_LEVELS[min(max(verbose, 0), len(_VERBOSITY_LEVELS) - 1)]
    setup_logging(level=level, verbose=verbose >= 2, log_file=log_file)


from toolkeeper.commands.update import update  # noqa: E402
from toolkeeper.commands.verify import verify  # noqa: E402
from toolkeeper.commands.versions import versions  # noqa: E402

for _command in (update, verify, versions):
    cli.add_command(_command)


def main() -> int:
    """Run the CLI and translate the outcome into a process exit code.

    Returns:
        0 on success, including runs where individual backends failed;
        1 for usage, configuration and unexpected errors; 130 when the
        user interrupted the run.
    """
    try:
        cli(standalone_mode=False)
    except (click.exceptions.Abort, KeyboardInterrupt):
        print_warning("Interrupted")
        return EXIT_INTERRUPTED
    except click.ClickException as exc:
        exc.show()
        return EXIT_ERROR
    except ToolKeeperError as exc:
        print_error(str(exc))
        logger.debug("%s error details: %s", exc.kind, exc.details, exc_info=True)
        return EXIT_ERROR
    except Exception as exc:
        print_error(f"Unexpected error: {exc}")
        logger.exception("Unhandled exception in CLI")
        return EXIT_ERROR
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
