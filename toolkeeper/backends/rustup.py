"""
Rust toolchains managed by rustup (stable channel), plus cargo-installed
binaries as the tool inventory.

A nightly or pinned default toolchain belongs to the user: the stable channel
is still updated beside it, but the default is never switched.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from toolkeeper.backends.base import Backend
from toolkeeper.models import (
    ActionResult,
    ActiveToolchainState,
    InstalledVersion,
    ToolReport,
)

CHANNEL = "stable"
COMPONENTS = ("rustfmt", "clippy")

_VERSION_RE = re.compile(r"(\d+\.\d+\.\d+)")
_CARGO_LIST_RE = re.compile(r"^([A-Za-z0-9_-]+) v(\S+?):?$")


def parse_rustup_check(output: str, channel: str = CHANNEL) -> Optional[str]:
    """Extract the newest version for ``channel`` from ``rustup check``.

    Lines look like ``stable-x86_64-unknown-linux-gnu - Update available :
    1.75.0 (...) -> 1.76.0 (...)`` or ``... - Up to date : 1.76.0 (...)``.
    """
    for line in output.splitlines():
        if not line.startswith(channel):
            continue
        tail = line.split("->")[-1] if "->" in line else line.split(":", 1)[-1]
        match = _VERSION_RE.search(tail)
        if match:
            return match.group(1)
    return None


def parse_cargo_list(output: str) -> Dict[str, str]:
    """Map crate name -> version from ``cargo install --list``."""
    crates = {}
    for line in output.splitlines():
        # binaries are listed indented under each crate
        if not line or line[0].isspace():
            continue
        match = _CARGO_LIST_RE.match(line.strip())
        if match:
            crates[match.group(1)] = match.group(2)
    return crates


class RustupBackend(Backend):
    name = "rustup"
    executable = "rustup"

    def _default_toolchain(self, state: ActiveToolchainState) -> Optional[str]:
        active = self._run(["rustup", "show", "active-toolchain"], state)
        words = active.stdout.split()
        return words[0] if active.ok and words else None

    @staticmethod
    def _tracks_channel(toolchain: Optional[str]) -> bool:
        return toolchain is None or toolchain.startswith(CHANNEL)

    def detect(self, state: ActiveToolchainState) -> Optional[InstalledVersion]:
        toolchain = self._default_toolchain(state)
        if self._tracks_channel(toolchain):
            which = self._run(["rustup", "which", "rustc"], state)
        else:
            # nightly or pinned default: report the stable toolchain beside it
            which = self._run(["rustup", "which", "--toolchain", CHANNEL, "rustc"], state)
            toolchain = None
        rustc = which.stdout.strip()
        if not which.ok or not rustc:
            return None

        reported = self._run([rustc, "--version"], state)
        match = _VERSION_RE.search(reported.stdout)
        if not reported.ok or not match:
            return None
        return InstalledVersion(
            version=match.group(1), identifier=toolchain or CHANNEL, handle=rustc
        )

    def list_installed(self, state: ActiveToolchainState) -> List[InstalledVersion]:
        result = self._run(["rustup", "toolchain", "list"], state)
        if not result.ok:
            return []
        installed = []
        for line in result.lines():
            name = line.split()[0]
            match = _VERSION_RE.match(name)
            installed.append(
                InstalledVersion(version=match.group(1) if match else name, identifier=name)
            )
        return installed

    def resolve_latest(self) -> Optional[str]:
        result = self._run(["rustup", "check"])
        return parse_rustup_check(result.stdout)

    def install(self, version: str, state: ActiveToolchainState) -> ActionResult:
        self_update = self._mutate(["rustup", "self", "update"], state)
        if not self_update.ok:
            # rustup from a package manager refuses self-update
            self.logger.info("rustup self update skipped: %s", self_update.stderr.strip())

        result = self._mutate(["rustup", "update", CHANNEL], state)
        if not result.ok:
            return ActionResult.failed(
                self._failure_detail(result, f"rustup update {CHANNEL}"), via="rustup update"
            )

        components = self._mutate(
            ["rustup", "component", "add", "--toolchain", CHANNEL, *COMPONENTS], state
        )
        if not components.ok:
            self.logger.warning("Could not add components %s", ", ".join(COMPONENTS))
        return ActionResult.changed(f"updated {CHANNEL} toolchain", via="rustup update")

    def activate(self, version: str, state: ActiveToolchainState) -> ActionResult:
        toolchain = self._default_toolchain(state)
        if not self._tracks_channel(toolchain):
            self.logger.info(
                "Keeping default toolchain %s; %s updated beside it", toolchain, CHANNEL
            )
            return ActionResult.unchanged(f"default stays {toolchain}")

        result = self._mutate(["rustup", "default", CHANNEL], state)
        if not result.ok:
            return ActionResult.failed(self._failure_detail(result, "rustup default"))
        return ActionResult.changed(
            f"default -> {CHANNEL}", state=state.with_selection(self.name, CHANNEL)
        )

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _cargo_crates(self, state: ActiveToolchainState) -> Optional[Dict[str, str]]:
        if self.runner.which("cargo", state.env) is None:
            return None
        result = self._run(["cargo", "install", "--list"], state)
        return parse_cargo_list(result.stdout) if result.ok else None

    def refresh_tools(self, state: ActiveToolchainState) -> Optional[ToolReport]:
        before = self._cargo_crates(state)
        if before is None:
            return None

        report = ToolReport(found=len(before))
        for crate in sorted(before):
            result = self._mutate(["cargo", "install", "--force", crate], state)
            if not result.ok:
                self.logger.warning("cargo install %s failed", crate)
                report.record_failure(crate)

        after = self._cargo_crates(state) or {}
        report.updated = sum(
            1 for crate, version in before.items() if after.get(crate, version) != version
        )
        return report

    def package_counts(self, state: ActiveToolchainState) -> Dict[str, int]:
        crates = self._cargo_crates(state)
        return {"cargo": len(crates)} if crates is not None else {}
