"""
Python interpreters managed by pyenv.

Install strategy, skipped entirely when ``$PYENV_ROOT/versions/<target>`` exists:

1. Homebrew fast path: try ``python@X.Y``, ``python@X`` and ``python``
   (the variant that worked last time first). If the keg's version is
   exactly the target, link it into ``$PYENV_ROOT/versions/<target>``.
2. Fallback: ``pyenv install`` compiles from source.

The compatibility gate inspects ``Requires-Python`` of every distribution
installed in the current interpreter; pipx applications live in their own
virtualenvs and are reported as isolated.

The tool refresh upgrades pip, setuptools and wheel in pyenv-built
interpreters (never in Homebrew-linked ones), then every pipx application.
"""

from __future__ import annotations

import os
import re
import json
from pathlib import Path
from typing import Dict, List, Optional, Set

from toolkeeper.backends.base import Backend
from toolkeeper.exceptions import CommandError, FileOperationError
from toolkeeper.models import (
    ActionResult,
    ActiveToolchainState,
    InstalledPackage,
    InstalledVersion,
    ToolReport,
)
from toolkeeper.utils.filesystem import remove_tree
from toolkeeper.utils.version_utils import (
    latest_of,
    major_minor,
    normalize_version,
    versions_match,
)

_STABLE_RE = re.compile(r"^\d+\.\d+\.\d+$")
_PYTHON_VERSION_RE = re.compile(r"Python\s+(\S+)")
_PIP_INSTALLED_RE = re.compile(r"^Successfully installed (.+)$", re.MULTILINE)

_BOOTSTRAP_PACKAGES = ("pip", "setuptools", "wheel")

_PACKAGES_SCRIPT = (
    "import json, importlib.metadata as m\n"
    "print(json.dumps([{'name': d.metadata['Name'], 'version': d.version,"
    " 'requires_python': d.metadata.get('Requires-Python')}"
    " for d in m.distributions()]))"
)


def pip_installed(output: str) -> Set[str]:
    """Distribution names from pip's ``Successfully installed a-1.0 b-2.0`` line.

    Examples:
        >>> sorted(pip_installed("Successfully installed pip-24.0 wheel-0.42.0"))
        ['pip', 'wheel']
    """
    match = _PIP_INSTALLED_RE.search(output)
    if not match:
        return set()
    return {item.rsplit("-", 1)[0].lower() for item in match.group(1).split()}


class PyenvBackend(Backend):
    name = "pyenv"
    executable = "pyenv"
    gate_applicable = True
    supports_retention = True
    default_keep = frozenset({"system"})

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def root(self) -> Path:
        """``$PYENV_ROOT``, asking pyenv when the variable is unset."""
        env_root = os.environ.get("PYENV_ROOT")
        if env_root:
            return Path(env_root).expanduser()
        result = self._run(["pyenv", "root"])
        if result.ok and result.stdout.strip():
            return Path(result.stdout.strip())
        return Path.home() / ".pyenv"

    def versions_dir(self) -> Path:
        return self.root() / "versions"

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def _python_path(self, state: ActiveToolchainState) -> Optional[str]:
        result = self._run(["pyenv", "which", "python3"], state)
        path = result.stdout.strip()
        return path if result.ok and path else None

    def detect(self, state: ActiveToolchainState) -> Optional[InstalledVersion]:
        result = self._run(["pyenv", "version-name"], state)
        name = result.stdout.strip()
        if not result.ok or not name:
            return None

        executable = self._python_path(state)
        if name != "system":
            return InstalledVersion(version=name, identifier=name, handle=executable)

        if executable is None:
            return None
        reported = self._run([executable, "--version"], state)
        match = _PYTHON_VERSION_RE.search(reported.stdout + reported.stderr)
        version = match.group(1) if match else "system"
        return InstalledVersion(version=version, identifier="system", handle=executable)

    def list_installed(self, state: ActiveToolchainState) -> List[InstalledVersion]:
        result = self._run(["pyenv", "versions", "--bare", "--skip-aliases"], state)
        if not result.ok:
            return []

        versions_dir = self.versions_dir()
        installed = []
        for line in result.lines():
            # virtualenvs show up as "<version>/envs/<name>"
            if "/" in line:
                continue
            installed.append(
                InstalledVersion(
                    version=line, identifier=line, handle=str(versions_dir / line)
                )
            )
        return installed

    def resolve_latest(self) -> Optional[str]:
        result = self._run(["pyenv", "install", "--list"], check=True)
        return latest_of(line for line in result.lines() if _STABLE_RE.match(line))

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def _formula_variants(self, version: str) -> List[str]:
        series = major_minor(version) or version
        variants = [f"python@{series}", f"python@{series.split('.')[0]}", "python"]
        if self.hints is not None:
            variants = self.hints.order(self.name, series, variants)
        return variants

    def _link_keg(self, keg: str, version: str) -> None:
        target = self.versions_dir() / version
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink():
            target.unlink()
        elif target.exists():
            return
        os.symlink(keg, target)
        self.logger.info("Linked %s -> %s", target, keg)

    def _install_from_homebrew(self, version: str) -> Optional[ActionResult]:
        if self.brew is None or not self.brew.is_available():
            return None

        series = major_minor(version) or version
        for formula in self._formula_variants(version):
            if not self.brew.formula_exists(formula):
                self.logger.debug("Formula %s not available", formula)
                continue

            outcome = self.brew.install_or_upgrade(formula)
            if not outcome.ok:
                self.logger.warning("%s", outcome.detail)
                continue

            keg_version = self.brew.installed_version(formula)
            if not versions_match(keg_version, version):
                self.logger.info(
                    "%s provides %s, not %s; trying next variant",
                    formula,
                    keg_version,
                    version,
                )
                continue

            keg = self.brew.prefix(formula)
            if not keg:
                continue

            self._link_keg(keg, version)
            self._run(["pyenv", "rehash"])
            if self.hints is not None:
                self.hints.remember(self.name, series, formula)
            return ActionResult.changed(
                f"linked Homebrew {formula} {keg_version}", via=f"homebrew:{formula}"
            )
        return None

    def install(self, version: str, state: ActiveToolchainState) -> ActionResult:
        existing = self.versions_dir() / version
        if existing.is_dir():
            self.logger.info("Python %s already present at %s", version, existing)
            return ActionResult.unchanged(
                f"Python {version} already installed", via="already installed"
            )

        try:
            fast = self._install_from_homebrew(version)
        except OSError as exc:
            self.logger.warning("Homebrew fast path failed: %s", exc)
            fast = None
        if fast is not None:
            return fast

        self.logger.info("Building Python %s from source with pyenv", version)
        result = self._mutate(["pyenv", "install", "--skip-existing", version], state)
        if not result.ok:
            return ActionResult.failed(
                self._failure_detail(result, f"pyenv install {version}"), via="pyenv install"
            )
        return ActionResult.changed(f"built Python {version}", via="pyenv install")

    # ------------------------------------------------------------------
    # Activate / uninstall
    # ------------------------------------------------------------------

    def _ensure_python_link(self, version: str) -> Optional[Path]:
        """Create ``bin/python -> python3`` inside the version; return python3."""
        bin_dir = self.versions_dir() / version / "bin"
        python3 = bin_dir / "python3"
        python = bin_dir / "python"
        if python3.exists() and not python.exists():
            try:
                python.symlink_to("python3")
            except OSError as exc:
                self.logger.warning("Could not create %s: %s", python, exc)
        return python3 if python3.exists() else None

    def activate(self, version: str, state: ActiveToolchainState) -> ActionResult:
        result = self._mutate(["pyenv", "global", version], state)
        if not result.ok:
            return ActionResult.failed(self._failure_detail(result, "pyenv global"))
        self._run(["pyenv", "rehash"], state)

        new_state = state.with_selection(self.name, version)
        python3 = self._ensure_python_link(version)
        if python3 is not None:
            new_state = new_state.with_env(PIPX_DEFAULT_PYTHON=str(python3.resolve()))
        return ActionResult.changed(f"pyenv global {version}", state=new_state)

    def uninstall(
        self,
        version: InstalledVersion,
        state: ActiveToolchainState,
    ) -> ActionResult:
        path = Path(version.handle) if version.handle else self.versions_dir() / version.identifier
        if path.is_symlink():
            # Homebrew-linked: drop the link, leave the keg to Homebrew
            try:
                remove_tree(path, base_dir=self.versions_dir())
            except FileOperationError as exc:
                return ActionResult.failed(str(exc))
            return ActionResult.changed(f"unlinked {version.identifier}")

        result = self._mutate(["pyenv", "uninstall", "--force", version.identifier], state)
        if not result.ok:
            return ActionResult.failed(self._failure_detail(result, "pyenv uninstall"))
        return ActionResult.changed(f"uninstalled {version.identifier}")

    # ------------------------------------------------------------------
    # Packages and tools
    # ------------------------------------------------------------------

    def _pipx_venvs(self, state: ActiveToolchainState) -> Dict[str, Dict]:
        if self.runner.which("pipx", state.env) is None:
            return {}
        result = self._run(["pipx", "list", "--json"], state)
        if not result.ok:
            return {}
        try:
            venvs = json.loads(result.stdout).get("venvs", {})
        except (ValueError, AttributeError):
            self.logger.warning("Unreadable 'pipx list --json' output")
            return {}
        return venvs if isinstance(venvs, dict) else {}

    @staticmethod
    def _pipx_version(venv: Dict) -> Optional[str]:
        main = venv.get("metadata", {}).get("main_package", {})
        return main.get("package_version")

    def _pip_packages(self, state: ActiveToolchainState) -> List[InstalledPackage]:
        python = self._python_path(state)
        if python is None:
            return []
        result = self._run([python, "-c", _PACKAGES_SCRIPT], state, check=True)
        try:
            records = json.loads(result.stdout)
        except ValueError as exc:
            raise CommandError(
                "Unreadable package metadata from the current interpreter",
                args=[python, "-c", "<metadata>"],
            ) from exc
        return [
            InstalledPackage(
                name=record.get("name") or "?",
                version=record.get("version"),
                requires=record.get("requires_python") or None,
            )
            for record in records
            if isinstance(record, dict)
        ]

    def installed_packages(self, state: ActiveToolchainState) -> List[InstalledPackage]:
        packages = self._pip_packages(state)
        for name, venv in self._pipx_venvs(state).items():
            packages.append(
                InstalledPackage(name=name, version=self._pipx_version(venv), isolated=True)
            )
        return packages

    def package_counts(self, state: ActiveToolchainState) -> Dict[str, int]:
        counts = {}
        try:
            counts["pip"] = len(self._pip_packages(state))
        except CommandError as exc:
            self.logger.debug("Cannot count pip packages: %s", exc)
        counts["pipx"] = len(self._pipx_venvs(state))
        return counts

    def _upgrade_bootstrap(self, state: ActiveToolchainState, report: ToolReport) -> bool:
        """Upgrade pip, setuptools and wheel in the current pyenv-built interpreter.

        Returns False when the interpreter is not pyenv's to modify: ``system``
        or a Homebrew keg linked into the versions directory.
        """
        current = self.detect(state)
        if current is None or not current.handle or current.identifier in self.default_keep:
            return False
        version_dir = self.versions_dir() / current.identifier
        if version_dir.is_symlink():
            self.logger.info(
                "Python %s is a Homebrew keg; pip is left to Homebrew", current.identifier
            )
            return False
        if not version_dir.is_dir():
            return False

        python = current.handle
        ensured = self._mutate([python, "-m", "ensurepip", "--upgrade"], state)
        if not ensured.ok:
            self.logger.warning("%s", self._failure_detail(ensured, "ensurepip --upgrade"))

        report.found += len(_BOOTSTRAP_PACKAGES)
        result = self._mutate(
            [python, "-m", "pip", "install", "--upgrade", *_BOOTSTRAP_PACKAGES], state
        )
        if not result.ok:
            self.logger.warning("%s", self._failure_detail(result, "pip install --upgrade"))
            report.record_failure("pip")
        else:
            report.updated += len(pip_installed(result.stdout) & set(_BOOTSTRAP_PACKAGES))
        return True

    def _upgrade_pipx(self, state: ActiveToolchainState, report: ToolReport) -> bool:
        before = self._pipx_venvs(state)
        if not before:
            return False

        report.found += len(before)
        for name in sorted(before):
            result = self._mutate(["pipx", "upgrade", name], state)
            if not result.ok:
                self.logger.warning("pipx upgrade %s failed: %s", name, result.stderr.strip())
                report.record_failure(name)

        after = self._pipx_venvs(state)
        for name, venv in before.items():
            old, new = self._pipx_version(venv), self._pipx_version(after.get(name, {}))
            if old and new and normalize_version(old) != normalize_version(new):
                report.updated += 1
        return True

    def refresh_tools(self, state: ActiveToolchainState) -> Optional[ToolReport]:
        report = ToolReport()
        bootstrapped = self._upgrade_bootstrap(state, report)
        upgraded = self._upgrade_pipx(state, report)
        return report if bootstrapped or upgraded else None
