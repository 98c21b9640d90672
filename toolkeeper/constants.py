"""
Centralized constants for toolkeeper.

This module defines immutable configuration values used across toolkeeper,
including backend ordering, cache settings, subprocess timeouts, protected
filesystem roots, environment variable names and logging formats. All values
are intended to be treated as read-only.
"""

from typing import Final, FrozenSet, Mapping, Sequence

# ---------------------------------------------------------------------------
# Project metadata
# ---------------------------------------------------------------------------

#: HTTP User-Agent template used for outbound requests.
USER_AGENT_TEMPLATE: Final[str] = (
    "toolkeeper/{version} (https://github.com/toolkeeper/toolkeeper)"
)

# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

#: Fixed order in which backends are driven by ``update``.
BACKEND_ORDER: Final[Sequence[str]] = (
    "pyenv",
    "nvm",
    "chruby",
    "go",
    "rustup",
    "swiftly",
)

#: Human-readable labels used in console output.
BACKEND_LABELS: Final[Mapping[str, str]] = {
    "pyenv": "Python",
    "nvm": "Node.js",
    "chruby": "Ruby",
    "go": "Go",
    "rustup": "Rust",
    "swiftly": "Swift",
}

# ---------------------------------------------------------------------------
# Version cache
# ---------------------------------------------------------------------------

#: Default time-to-live for "latest available" lookups (24 hours).
DEFAULT_CACHE_TTL: Final[int] = 24 * 60 * 60

#: Suffix of the one-file-per-backend cache entries.
CACHE_FILE_SUFFIX: Final[str] = ".latest"

#: Suffix of the per-backend install variant hint files.
HINTS_FILE_SUFFIX: Final[str] = ".hints.json"

#: Directory name under the XDG cache home.
CACHE_DIR_NAME: Final[str] = "toolkeeper"

# ---------------------------------------------------------------------------
# Subprocess configuration
# ---------------------------------------------------------------------------

#: Default timeout in seconds for mutating commands (installs may compile).
DEFAULT_COMMAND_TIMEOUT: Final[int] = 30 * 60

#: Timeout in seconds for read-only queries and "latest" lookups.
DEFAULT_LOOKUP_TIMEOUT: Final[int] = 120

#: Polling interval used to honour cancellation while a command runs.
CANCEL_POLL_INTERVAL: Final[float] = 0.5

# ---------------------------------------------------------------------------
# HTTP configuration
# ---------------------------------------------------------------------------

#: Default network timeout in seconds.
DEFAULT_TIMEOUT: Final[int] = 30

#: Maximum number of retries for failed HTTP requests.
DEFAULT_MAX_RETRIES: Final[int] = 3

#: Go release feed (JSON, newest first).
GO_RELEASES_URL: Final[str] = "https://go.dev/dl/?mode=json"

# ---------------------------------------------------------------------------
# Protection
# ---------------------------------------------------------------------------

#: Directories owned by the operating system; never mutated.
OS_PROTECTED_ROOTS: Final[Sequence[str]] = (
    "/usr/bin",
    "/usr/sbin",
    "/bin",
    "/sbin",
    "/usr/lib",
    "/usr/libexec",
    "/usr/share",
    "/System",
    "/Library/Developer/CommandLineTools",
    "/Applications/Xcode.app",
)

#: Homebrew prefixes checked in order.
HOMEBREW_PREFIXES: Final[Sequence[str]] = (
    "/opt/homebrew",
    "/usr/local",
    "/home/linuxbrew/.linuxbrew",
)

# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------

#: Prefix shared by every recognized environment variable.
ENV_PREFIX: Final[str] = "TOOLKEEPER_"

#: Values that switch a boolean option off.
DISABLED_VALUES: Final[FrozenSet[str]] = frozenset(
    {"0", "false", "no", "off", "disable", "disabled"}
)

#: Values that switch a boolean option on.
ENABLED_VALUES: Final[FrozenSet[str]] = frozenset(
    {"1", "true", "yes", "on", "enable", "enabled"}
)

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

#: Timestamp format for verbose logging.
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Default log format (non-verbose).
LOG_DEFAULT_FORMAT: Final[str] = "%(levelname)s: %(message)s"

#: Verbose log format including timestamp and logger name.
LOG_VERBOSE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
