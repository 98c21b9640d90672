"""
toolkeeper version information.

Single source of truth for the package version, following PEP 440 so the
same parser that orders toolchain versions can describe toolkeeper itself.
"""

from __future__ import annotations

from typing import Any, Dict

from packaging.version import Version

__version__ = "0.1.0.dev0"


def _version_info(version: str) -> Dict[str, Any]:
    """Break ``version`` into the fields shown by ``toolkeeper --version -v``."""
    parsed = Version(version)
    major, minor, patch = (tuple(parsed.release) + (0, 0, 0))[:3]
    return {
        "major": major,
        "minor": minor,
        "patch": patch,
        "prerelease": parsed.is_prerelease,
        "is_dev": parsed.is_devrelease,
    }


VERSION_INFO = _version_info(__version__)

VERSION_STRING = f"toolkeeper {__version__}"
