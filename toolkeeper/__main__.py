"""
Executable module for toolkeeper.

Running:
    python -m toolkeeper

is equivalent to:
    toolkeeper

This module simply forwards execution to the CLI entrypoint defined in
`toolkeeper.cli`.
"""

from __future__ import annotations

import sys


def main() -> int:
    """
    Main entrypoint when executing `python -m toolkeeper`.

    Returns:
        Exit code returned by the CLI.
    """
    # Import lazily so dependencies are only loaded during CLI use
    from toolkeeper.cli import main as cli_main

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
