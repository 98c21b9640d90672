"""
Node.js versions managed by nvm.

nvm is a shell function, so every call sources ``$NVM_DIR/nvm.sh`` inside a
``bash -c`` subprocess with ``--no-use`` (nothing is activated implicitly).
Installed versions are read from ``$NVM_DIR/versions/node`` directly. The
tool refresh updates npm itself and then the global packages of the default
node.
"""

from __future__ import annotations

import os
import json
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from toolkeeper.backends.base import Backend
from toolkeeper.models import (
    ActionResult,
    ActiveToolchainState,
    InstalledVersion,
    ToolReport,
)
from toolkeeper.utils.process import CommandResult
from toolkeeper.utils.version_utils import sort_versions

_NVM_SCRIPT = '. "$NVM_DIR/nvm.sh" --no-use && nvm "$@"'


class NvmBackend(Backend):
    name = "nvm"
    executable = "bash"
    supports_retention = True

    def nvm_dir(self) -> Path:
        return Path(os.environ.get("NVM_DIR") or Path.home() / ".nvm").expanduser()

    def node_dir(self) -> Path:
        return self.nvm_dir() / "versions" / "node"

    def is_available(self) -> bool:
        return (self.nvm_dir() / "nvm.sh").is_file() and super().is_available()

    def normalize_identifier(self, value: str) -> str:
        value = value.strip()
        if value[:1].isdigit():
            return f"v{value}"
        return value

    def _nvm(
        self,
        args: Sequence[str],
        state: Optional[ActiveToolchainState] = None,
        *,
        mutate: bool = False,
    ) -> CommandResult:
        env = dict(state.env) if state is not None else {}
        env["NVM_DIR"] = str(self.nvm_dir())
        return self.runner.run(
            ["bash", "-c", _NVM_SCRIPT, "nvm", *args],
            timeout=self.install_timeout if mutate else self.lookup_timeout,
            env=env,
        )

    def _installed(self, identifier: str) -> InstalledVersion:
        return InstalledVersion.from_identifier(
            identifier, handle=str(self.node_dir() / identifier)
        )

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(self, state: ActiveToolchainState) -> Optional[InstalledVersion]:
        result = self._nvm(["version", "default"], state)
        selected = result.stdout.strip() if result.ok else ""

        if not selected or selected in ("N/A", "none"):
            return None
        if selected == "system":
            path = self.runner.which("node", state.env)
            if path is None:
                return None
            version = self._run([path, "--version"], state).stdout.strip()
            return InstalledVersion.from_identifier(version or "system", handle=path)
        return self._installed(selected)

    def list_installed(self, state: ActiveToolchainState) -> List[InstalledVersion]:
        root = self.node_dir()
        if not root.is_dir():
            return []
        names = [entry.name for entry in root.iterdir() if entry.name.startswith("v")]
        return [self._installed(name) for name in sort_versions(names)]

    def resolve_latest(self) -> Optional[str]:
        result = self._nvm(["version-remote", "--lts"])
        value = result.stdout.strip()
        if not result.ok or not value.startswith("v"):
            return None
        return value

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def install(self, version: str, state: ActiveToolchainState) -> ActionResult:
        target = self.normalize_identifier(version)
        args = ["install", target, "--latest-npm"]

        current = self.detect(state)
        if current is not None and current.identifier.startswith("v"):
            args.append(f"--reinstall-packages-from={current.identifier}")

        result = self._nvm(args, state, mutate=True)
        if not result.ok:
            return ActionResult.failed(self._failure_detail(result, f"nvm install {target}"))
        return ActionResult.changed(f"installed Node.js {target}", via="nvm install")

    def activate(self, version: str, state: ActiveToolchainState) -> ActionResult:
        target = self.normalize_identifier(version)
        result = self._nvm(["alias", "default", target], state, mutate=True)
        if not result.ok:
            return ActionResult.failed(self._failure_detail(result, "nvm alias default"))

        bin_dir = self.node_dir() / target / "bin"
        new_state = state.with_selection(self.name, target).with_env(NVM_BIN=str(bin_dir))
        return ActionResult.changed(f"default -> {target}", state=new_state)

    def uninstall(
        self,
        version: InstalledVersion,
        state: ActiveToolchainState,
    ) -> ActionResult:
        result = self._nvm(["uninstall", version.identifier], state, mutate=True)
        if not result.ok:
            return ActionResult.failed(self._failure_detail(result, "nvm uninstall"))
        return ActionResult.changed(f"uninstalled {version.identifier}")

    # ------------------------------------------------------------------
    # Packages and tools
    # ------------------------------------------------------------------

    def package_counts(self, state: ActiveToolchainState) -> Dict[str, int]:
        current = self.detect(state)
        if current is None or not current.handle:
            return {}
        modules = Path(current.handle) / "lib" / "node_modules"
        if not modules.is_dir():
            return {"npm": 0}

        count = 0
        for entry in modules.iterdir():
            if entry.name.startswith("@"):
                count += sum(1 for _ in entry.iterdir())
            elif not entry.name.startswith("."):
                count += 1
        return {"npm": count}

    def _npm_executable(self, state: ActiveToolchainState) -> Optional[Path]:
        """``npm`` next to the default node (nvm tree or the system binary)."""
        current = self.detect(state)
        if current is None or not current.handle:
            return None
        handle = Path(current.handle)
        npm = handle / "bin" / "npm" if handle.is_dir() else handle.parent / "npm"
        return npm if npm.exists() else None

    def _global_packages(self, npm: Path, state: ActiveToolchainState) -> Dict[str, str]:
        # npm ls exits non-zero on peer problems but still prints the tree
        result = self._run([str(npm), "ls", "-g", "--depth=0", "--json"], state)
        try:
            dependencies = json.loads(result.stdout or "{}").get("dependencies") or {}
        except (ValueError, AttributeError):
            self.logger.warning("Unreadable 'npm ls -g' output")
            return {}
        return {
            name: info.get("version", "")
            for name, info in dependencies.items()
            if isinstance(info, dict)
        }

    def refresh_tools(self, state: ActiveToolchainState) -> Optional[ToolReport]:
        npm = self._npm_executable(state)
        if npm is None:
            return None

        npm_state = self._with_bin_dir(npm.parent, state)
        before = self._global_packages(npm, npm_state)
        report = ToolReport(found=len(before))

        for args, label in (
            (["install", "-g", "npm"], "npm"),
            (["update", "-g"], "global packages"),
        ):
            result = self._mutate([str(npm), *args], npm_state)
            if not result.ok:
                self.logger.warning("%s", self._failure_detail(result, "npm " + " ".join(args)))
                report.record_failure(label)

        after = self._global_packages(npm, npm_state)
        report.updated = sum(
            1 for name, version in before.items() if after.get(name, version) != version
        )
        return report
