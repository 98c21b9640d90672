"""
toolkeeper: toolchain version lifecycle manager

toolkeeper keeps the language toolchains on a developer machine current
without breaking them. For each supported version manager it:

    • Detects the active version and skips OS-owned installations
    • Resolves the newest release, memoized in an on-disk cache
    • Refuses interpreter upgrades that installed packages cannot survive
    • Installs, activates and re-verifies the new version
    • Refreshes user tools and prunes superseded versions

Supported backends: pyenv, nvm, chruby, Go, rustup and swiftly, with a
Homebrew fast path where one exists.
"""

from __future__ import annotations

from toolkeeper.__version__ import __version__

# ---------------------------------------------------------------------------
# Package Metadata
# ---------------------------------------------------------------------------

__author__ = "toolkeeper Contributors"
__license__ = "Apache-2.0"
__description__ = "Keep language toolchains current without breaking them."

# ---------------------------------------------------------------------------
# Public API
#
# Only expose stable, documented interfaces here.
# ---------------------------------------------------------------------------

__all__ = [
    "__version__",
]
