"""
Backend adapter contract.

A backend wraps one toolchain family (interpreter or compiler, its version
manager and its package ecosystem) behind a uniform interface so the
orchestrator can drive detect / resolve / install / activate / verify /
cleanup without knowing how ``pyenv`` differs from ``swiftly``.

Rules every adapter follows:
- parsing of unstructured tool output stays inside the adapter;
- mutations return an :class:`~toolkeeper.models.ActionResult` instead of
  raising for ordinary failures;
- every subprocess runs through the shared
  :class:`~toolkeeper.utils.process.CommandRunner` with the state's
  environment overlay.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional, Sequence

from toolkeeper.config import BackendSettings
from toolkeeper.constants import (
    BACKEND_LABELS,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_LOOKUP_TIMEOUT,
)
from toolkeeper.models import (
    ActionResult,
    ActiveToolchainState,
    InstalledPackage,
    InstalledVersion,
    ToolReport,
)
from toolkeeper.utils.logger import get_logger
from toolkeeper.utils.process import CommandResult, CommandRunner

if TYPE_CHECKING:
    from toolkeeper.backends.homebrew import HomebrewClient
    from toolkeeper.core.version_cache import InstallHints


class Backend(ABC):
    """Base class of all toolchain adapters.

    Args:
        runner: Shared command runner.
        settings: This backend's configuration.
        brew: Homebrew client, for backends with a Homebrew path.
        hints: Install variant memory.
        lookup_timeout: Timeout for read-only commands.
        install_timeout: Timeout for mutating commands.
    """

    #: Short identifier (``pyenv``); also the default cache key.
    name: str = ""
    #: Executable looked up by :meth:`is_available`.
    executable: str = ""
    #: Whether the compatibility gate applies before upgrades.
    gate_applicable: bool = False
    #: Whether old versions may be swept after a successful pass.
    supports_retention: bool = False
    #: Whether development snapshots can be upgrade targets.
    supports_snapshots: bool = False
    #: Implicit keep-set entries (e.g. ``system`` for pyenv).
    default_keep: FrozenSet[str] = frozenset()

    def __init__(
        self,
        runner: CommandRunner,
        settings: Optional[BackendSettings] = None,
        *,
        brew: Optional["HomebrewClient"] = None,
        hints: Optional["InstallHints"] = None,
        lookup_timeout: float = DEFAULT_LOOKUP_TIMEOUT,
        install_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.runner = runner
        self.settings = settings or BackendSettings()
        self.brew = brew
        self.hints = hints
        self.lookup_timeout = lookup_timeout
        self.install_timeout = install_timeout
        self.logger = get_logger(f"backends.{self.name}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def label(self) -> str:
        return BACKEND_LABELS.get(self.name, self.name)

    @property
    def cache_key(self) -> str:
        """Cache key for the latest-version entry (one per backend)."""
        return self.name

    def normalize_identifier(self, value: str) -> str:
        """Map an operator-supplied version to this backend's identifier."""
        return value.strip()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        """Return True when the version manager is installed."""
        return self.runner.which(self.executable) is not None

    @abstractmethod
    def detect(self, state: ActiveToolchainState) -> Optional[InstalledVersion]:
        """Return the currently selected version, or ``None``."""

    @abstractmethod
    def list_installed(self, state: ActiveToolchainState) -> List[InstalledVersion]:
        """Return every installed version managed by this backend."""

    def manages(self, version: InstalledVersion, state: ActiveToolchainState) -> bool:
        """Return True when ``version`` lives under this manager's own tree.

        ``system`` selections and interpreters found on ``PATH`` are not
        managed; retention never runs against them.
        """
        if version.identifier in self.default_keep:
            return False
        return any(v.identifier == version.identifier for v in self.list_installed(state))

    @abstractmethod
    def resolve_latest(self) -> Optional[str]:
        """Ask upstream for the newest installable version (expensive)."""

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    @abstractmethod
    def install(self, version: str, state: ActiveToolchainState) -> ActionResult:
        """Install ``version``."""

    @abstractmethod
    def activate(self, version: str, state: ActiveToolchainState) -> ActionResult:
        """Make ``version`` the default and return the updated state."""

    def uninstall(
        self,
        version: InstalledVersion,
        state: ActiveToolchainState,
    ) -> ActionResult:
        return ActionResult.failed(f"{self.name} does not support uninstalling versions")

    # ------------------------------------------------------------------
    # Packages and tools
    # ------------------------------------------------------------------

    def installed_packages(self, state: ActiveToolchainState) -> List[InstalledPackage]:
        """Packages the compatibility gate should check (gated backends)."""
        return []

    def package_counts(self, state: ActiveToolchainState) -> Dict[str, int]:
        """Counts shown by ``toolkeeper versions`` (e.g. ``{"pipx": 4}``)."""
        return {}

    def refresh_tools(self, state: ActiveToolchainState) -> Optional[ToolReport]:
        """Re-install or upgrade user tools built against this toolchain.

        Returns ``None`` when the backend has no tool inventory.
        """
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run(
        self,
        args: Sequence[str],
        state: Optional[ActiveToolchainState] = None,
        *,
        timeout: Optional[float] = None,
        check: bool = False,
        input: Optional[str] = None,
    ) -> CommandResult:
        return self.runner.run(
            args,
            timeout=self.lookup_timeout if timeout is None else timeout,
            env=state.env if state is not None else None,
            check=check,
            input=input,
        )

    def _mutate(
        self,
        args: Sequence[str],
        state: Optional[ActiveToolchainState] = None,
        *,
        check: bool = False,
    ) -> CommandResult:
        """Run a mutating command with the install timeout."""
        return self._run(args, state, timeout=self.install_timeout, check=check)

    @staticmethod
    def _with_bin_dir(bin_dir: Path, state: ActiveToolchainState) -> ActiveToolchainState:
        """Return ``state`` with ``bin_dir`` first on ``PATH``."""
        inherited = state.env.get("PATH") or os.environ.get("PATH", "")
        return state.with_env(PATH=os.pathsep.join(filter(None, [str(bin_dir), inherited])))

    @staticmethod
    def _failure_detail(result: CommandResult, action: str) -> str:
        lines = [line for line in result.stderr.strip().splitlines() if line.strip()]
        tail = lines[-1].strip() if lines else f"exit status {result.returncode}"
        return f"{action} failed: {tail}"
