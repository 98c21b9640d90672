"""
Homebrew client.

Used by the pyenv adapter (pre-built Python kegs) and the Go adapter (the
``go`` formula). Whether an install or upgrade changed anything is decided
structurally, by comparing ``brew list --versions`` before and after, rather
than by parsing Homebrew's human-oriented output.
"""

from __future__ import annotations

import os
import re
from typing import List, Optional

from toolkeeper.constants import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_LOOKUP_TIMEOUT,
    HOMEBREW_PREFIXES,
)
from toolkeeper.models import ActionResult
from toolkeeper.utils.logger import get_logger
from toolkeeper.utils.filesystem import is_within, real_path
from toolkeeper.utils.process import CommandRunner
from toolkeeper.utils.version_utils import latest_of

logger = get_logger("backends.homebrew")

_REVISION_RE = re.compile(r"_\d+$")


class HomebrewClient:
    """Thin wrapper over the ``brew`` command line."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT,
        install_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.runner = runner
        self.lookup_timeout = lookup_timeout
        self.install_timeout = install_timeout
        self._brew: Optional[str] = None
        self._prefix: Optional[str] = None

    @property
    def brew(self) -> Optional[str]:
        """Path of the ``brew`` executable, searched on PATH then known prefixes."""
        if self._brew is None:
            found = self.runner.which("brew")
            if found is None:
                for prefix in HOMEBREW_PREFIXES:
                    candidate = os.path.join(prefix, "bin", "brew")
                    if os.access(candidate, os.X_OK):
                        found = candidate
                        break
            self._brew = found
        return self._brew

    def is_available(self) -> bool:
        return self.brew is not None

    def _cmd(self, *args: str) -> List[str]:
        return [self.brew or "brew", *args]

    def prefix(self, formula: Optional[str] = None) -> Optional[str]:
        """``brew --prefix [formula]``; ``None`` when unavailable."""
        if not self.is_available():
            return None
        if formula is None and self._prefix is not None:
            return self._prefix

        args = self._cmd("--prefix") + ([formula] if formula else [])
        result = self.runner.run(args, timeout=self.lookup_timeout)
        value = result.stdout.strip() if result.ok else ""
        if formula is None and value:
            self._prefix = value
        return value or None

    def owns(self, path: Optional[str]) -> bool:
        """Return True if ``path`` resolves into the Homebrew prefix."""
        base = self.prefix()
        if not path or not base:
            return False
        return is_within(real_path(path), real_path(base))

    def formula_exists(self, formula: str) -> bool:
        if not self.is_available():
            return False
        result = self.runner.run(
            self._cmd("info", "--formula", formula), timeout=self.lookup_timeout
        )
        return result.ok

    def installed_version(self, formula: str) -> Optional[str]:
        """Newest installed version of ``formula`` (revision suffix dropped)."""
        if not self.is_available():
            return None
        result = self.runner.run(
            self._cmd("list", "--versions", formula), timeout=self.lookup_timeout
        )
        if not result.ok:
            return None

        tokens = result.stdout.split()
        versions = [_REVISION_RE.sub("", token) for token in tokens[1:]]
        return latest_of(versions, include_snapshots=True)

    def install_or_upgrade(self, formula: str) -> ActionResult:
        """Install ``formula``, or upgrade it if it is already present."""
        if not self.is_available():
            return ActionResult.failed("Homebrew is not installed")

        before = self.installed_version(formula)
        verb = "upgrade" if before else "install"
        logger.info("brew %s %s", verb, formula)

        result = self.runner.run(self._cmd(verb, formula), timeout=self.install_timeout)
        after = self.installed_version(formula)

        via = f"homebrew:{formula}"
        if not result.ok and after == before:
            lines = result.stderr.strip().splitlines() or [f"exit status {result.returncode}"]
            return ActionResult.failed(f"brew {verb} {formula} failed: {lines[-1]}", via=via)

        if after is not None and after != before:
            return ActionResult.changed(f"{formula} {before or 'none'} -> {after}", via=via)
        return ActionResult.unchanged(f"{formula} {after or before} already current", via=via)
