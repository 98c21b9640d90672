"""
Go toolchain provided by Homebrew.

Go itself is only ever upgraded with ``brew upgrade go``; toolkeeper never
installs a private copy. The latest release comes from the go.dev JSON
feed. After a pass, user tools in ``GOBIN``, ``GOPATH/bin`` and
``~/go/bin`` are rebuilt from the module path embedded in each binary.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from toolkeeper.backends.base import Backend
from toolkeeper.constants import DEFAULT_TIMEOUT, GO_RELEASES_URL
from toolkeeper.exceptions import NetworkError
from toolkeeper.models import (
    ActionResult,
    ActiveToolchainState,
    InstalledVersion,
    ToolReport,
)
from toolkeeper.utils.http import HTTPClient
from toolkeeper.utils.version_utils import normalize_version, versions_match

MANUAL_DOWNLOAD_URL = "https://go.dev/dl/"

_STDLIB_PREFIXES = ("std", "cmd/")


def is_stdlib_module(module: str) -> bool:
    return module == "main" or module.startswith(_STDLIB_PREFIXES)


class GoBackend(Backend):
    name = "go"
    executable = "go"

    def __init__(
        self,
        *args,
        http_factory: Callable[[], HTTPClient] = lambda: HTTPClient(timeout=DEFAULT_TIMEOUT),
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.http_factory = http_factory

    def _go_env(self, key: str, state: Optional[ActiveToolchainState] = None) -> str:
        result = self._run(["go", "env", key], state)
        return result.stdout.strip() if result.ok else ""

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(self, state: ActiveToolchainState) -> Optional[InstalledVersion]:
        result = self._run(["go", "version"], state)
        tokens = result.stdout.split()
        if not result.ok or len(tokens) < 3 or not tokens[2].startswith("go"):
            return None

        goroot = self._go_env("GOROOT", state) or None
        return InstalledVersion.from_identifier(tokens[2], handle=goroot)

    def list_installed(self, state: ActiveToolchainState) -> List[InstalledVersion]:
        current = self.detect(state)
        return [current] if current is not None else []

    def resolve_latest(self) -> Optional[str]:
        with self.http_factory() as client:
            releases = client.get_json(GO_RELEASES_URL)

        if not isinstance(releases, list):
            raise NetworkError("Unexpected go.dev release feed format", url=GO_RELEASES_URL)

        for release in releases:
            if isinstance(release, dict) and release.get("stable"):
                return normalize_version(str(release.get("version", ""))) or None
        return None

    def _brew_managed(self) -> bool:
        return (
            self.brew is not None
            and self.brew.is_available()
            and self.brew.installed_version("go") is not None
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def install(self, version: str, state: ActiveToolchainState) -> ActionResult:
        if not self._brew_managed():
            return ActionResult.failed(
                f"Go is not managed by Homebrew; install go{version} manually "
                f"from {MANUAL_DOWNLOAD_URL} or run 'brew install go'"
            )

        outcome = self.brew.install_or_upgrade("go")
        if not outcome.ok:
            return outcome

        brewed = self.brew.installed_version("go")
        if not versions_match(brewed, version):
            return ActionResult.failed(
                f"Homebrew provides go {brewed}, go.dev has {version}; "
                "the formula has not caught up yet",
                via=outcome.via,
            )
        return outcome

    def activate(self, version: str, state: ActiveToolchainState) -> ActionResult:
        # Homebrew relinks the go binary on upgrade
        return ActionResult.unchanged(
            "linked by Homebrew", state=state.with_selection(self.name, f"go{version}")
        )

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def bin_dirs(self, state: ActiveToolchainState) -> List[Path]:
        candidates = []
        gobin = self._go_env("GOBIN", state)
        if gobin:
            candidates.append(Path(gobin))
        gopath = self._go_env("GOPATH", state)
        for entry in gopath.split(os.pathsep) if gopath else []:
            candidates.append(Path(entry) / "bin")
        candidates.append(Path.home() / "go" / "bin")

        seen = set()
        dirs = []
        for candidate in candidates:
            resolved = candidate.expanduser().resolve()
            if resolved in seen or not resolved.is_dir():
                continue
            seen.add(resolved)
            dirs.append(resolved)
        return dirs

    def _tool_binaries(self, state: ActiveToolchainState) -> List[Path]:
        binaries = []
        for directory in self.bin_dirs(state):
            for entry in sorted(directory.iterdir()):
                if entry.name == "go" or not entry.is_file():
                    continue
                if os.access(entry, os.X_OK):
                    binaries.append(entry)
        return binaries

    def recover_module(
        self,
        binary: Path,
        state: ActiveToolchainState,
    ) -> Optional[Tuple[str, str]]:
        """Return ``(module path, module version)`` embedded in ``binary``."""
        result = self._run(["go", "version", "-m", str(binary)], state)
        if not result.ok:
            return None
        for line in result.stdout.splitlines():
            fields = line.split()
            if len(fields) >= 2 and fields[0] == "mod":
                return fields[1], fields[2] if len(fields) > 2 else ""
        return None

    def install_variants(self, module: str, tool: str) -> List[str]:
        variants = [
            f"{module}@latest",
            f"{module}/cmd/{tool}@latest",
            f"{module}/{tool}@latest",
        ]
        if self.hints is not None:
            variants = self.hints.order(self.name, tool, variants)
        return variants

    def refresh_tools(self, state: ActiveToolchainState) -> Optional[ToolReport]:
        report = ToolReport()
        for binary in self._tool_binaries(state):
            tool = binary.name
            recovered = self.recover_module(binary, state)
            if recovered is None or is_stdlib_module(recovered[0]):
                self.logger.debug("Skipping %s: no installable module path", tool)
                report.skipped += 1
                continue

            module, before = recovered
            report.found += 1

            for variant in self.install_variants(module, tool):
                result = self._mutate(["go", "install", variant], state)
                if result.ok:
                    if self.hints is not None:
                        self.hints.remember(self.name, tool, variant)
                    after = self.recover_module(binary, state)
                    if after is not None and after[1] != before:
                        report.updated += 1
                    break
            else:
                self.logger.warning("Could not determine install path for %s (%s)", tool, module)
                report.record_failure(tool)
        return report

    def package_counts(self, state: ActiveToolchainState) -> Dict[str, int]:
        return {"tools": len(self._tool_binaries(state))}
