"""
Shared helpers for the toolkeeper commands and backends.

- ``console``: Rich output for users (sections, tables, prompts)
- ``logger``: diagnostics under the ``toolkeeper`` logger namespace
- ``process``: external commands with timeouts and cancellation
- ``http``: JSON lookups with retry
- ``filesystem``: atomic writes and guarded directory removal
- ``version_utils``: ordering of manager-specific version strings
"""

from __future__ import annotations

from toolkeeper.utils.http import HTTPClient
from toolkeeper.utils.process import CancelToken, CommandResult, CommandRunner
from toolkeeper.utils.logger import (
    disable_logging,
    get_logger,
    is_logging_configured,
    setup_logging,
)
from toolkeeper.utils.filesystem import (
    atomic_write_text,
    is_within,
    read_text,
    real_path,
    remove_tree,
    validate_path,
)
from toolkeeper.utils.console import (
    colorize_outcome,
    confirm,
    get_raw_console,
    print_dotted,
    print_error,
    print_info,
    print_section,
    print_success,
    print_table,
    print_warning,
    reconfigure_console,
)
from toolkeeper.utils.version_utils import (
    get_update_type,
    is_newer,
    latest_of,
    normalize_version,
    versions_match,
)

__all__ = [
    "CancelToken",
    "CommandResult",
    "CommandRunner",
    "HTTPClient",
    "atomic_write_text",
    "colorize_outcome",
    "confirm",
    "disable_logging",
    "get_logger",
    "get_raw_console",
    "get_update_type",
    "is_logging_configured",
    "is_newer",
    "is_within",
    "latest_of",
    "normalize_version",
    "print_dotted",
    "print_error",
    "print_info",
    "print_section",
    "print_success",
    "print_table",
    "print_warning",
    "read_text",
    "real_path",
    "reconfigure_console",
    "remove_tree",
    "setup_logging",
    "validate_path",
    "versions_match",
]
