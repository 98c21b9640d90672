"""
Ruby installations under ``~/.rubies`` (chruby layout, built by ruby-install).

The default ruby is the one named in ``~/.ruby-version``, which chruby's
auto-switching picks up in new shells. Removal is a directory delete,
guarded so it can never leave the rubies root.
"""

from __future__ import annotations

import os
import re
import json
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from toolkeeper.backends.base import Backend
from toolkeeper.exceptions import CommandError, FileOperationError
from toolkeeper.models import (
    ActionResult,
    ActiveToolchainState,
    InstalledPackage,
    InstalledVersion,
    ToolReport,
)
from toolkeeper.utils.filesystem import atomic_write_text, read_text, remove_tree
from toolkeeper.utils.version_utils import latest_of, normalize_version, sort_versions

_LIST_RE = re.compile(r"^(?:ruby\s+)?(\d+\.\d+\.\d+)$")
_REQUIREMENT_RE = re.compile(r"^\s*(~>|>=|<=|!=|>|<|=)?\s*([0-9][0-9A-Za-z.]*)\s*$")

_GEMS_SCRIPT = (
    "require 'json'; "
    "puts Gem::Specification.map { |s| {name: s.name, version: s.version.to_s, "
    "required_ruby_version: s.required_ruby_version.to_s, executables: s.executables, "
    "default: s.default_gem?} }.to_json"
)

# A gem executable is healthy when any of these succeeds
_HEALTH_FLAGS = ("--version", "-v", "--help")


def ruby_requirement_to_pep440(requirement: str) -> str:
    """Translate a RubyGems requirement into a PEP 440 specifier string.

    ``~>`` is the pessimistic operator: ``~> 3.1`` means ``>=3.1, <4``,
    ``~> 3.1.2`` means ``>=3.1.2, <3.2`` and ``~> 3`` means ``>=3, <4``.
    Anything unrecognized is returned unchanged so specifier parsing
    rejects it.

    Examples:
        >>> ruby_requirement_to_pep440(">= 2.7.0")
        '>=2.7.0'
        >>> ruby_requirement_to_pep440("~> 3.1")
        '>=3.1,<4'
    """
    parts = []
    for clause in requirement.split(","):
        if not clause.strip():
            continue
        match = _REQUIREMENT_RE.match(clause)
        if not match:
            return requirement
        op, version = match.group(1) or "=", match.group(2)

        if op == "~>":
            segments = [int(s) for s in version.split(".") if s.isdigit()]
            if not segments:
                return requirement
            upper = segments[:-1] if len(segments) > 1 else list(segments)
            upper[-1] += 1
            parts.append(f">={version}")
            parts.append("<" + ".".join(str(s) for s in upper))
        elif op == "=":
            parts.append(f"=={version}")
        else:
            parts.append(f"{op}{version}")
    return ",".join(parts)


class ChrubyBackend(Backend):
    name = "chruby"
    executable = "ruby-install"
    gate_applicable = True
    supports_retention = True

    def rubies_root(self) -> Path:
        return Path(os.environ.get("RUBIES_ROOT") or Path.home() / ".rubies").expanduser()

    def version_file(self) -> Path:
        return Path.home() / ".ruby-version"

    def is_available(self) -> bool:
        return self.rubies_root().is_dir() or super().is_available()

    def normalize_identifier(self, value: str) -> str:
        value = value.strip()
        return value if value.startswith("ruby-") else f"ruby-{value}"

    def _installed(self, identifier: str) -> InstalledVersion:
        return InstalledVersion.from_identifier(
            identifier, handle=str(self.rubies_root() / identifier)
        )

    def _ruby_executable(self, state: ActiveToolchainState) -> Optional[str]:
        current = self.detect(state)
        if current is None or not current.handle:
            return None
        handle = Path(current.handle)
        if handle.is_dir():
            return str(handle / "bin" / "ruby")
        return str(handle)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(self, state: ActiveToolchainState) -> Optional[InstalledVersion]:
        try:
            selected = read_text(self.version_file())
        except FileOperationError as exc:
            self.logger.warning("%s", exc)
            selected = None

        if selected:
            identifier = self.normalize_identifier(selected.splitlines()[0])
            if (self.rubies_root() / identifier).is_dir():
                return self._installed(identifier)

        path = self.runner.which("ruby", state.env)
        if path is None:
            return None
        reported = self._run([path, "-e", "print RUBY_VERSION"], state)
        if not reported.ok or not reported.stdout.strip():
            return None
        return InstalledVersion(
            version=reported.stdout.strip(),
            identifier=f"ruby-{reported.stdout.strip()}",
            handle=path,
        )

    def list_installed(self, state: ActiveToolchainState) -> List[InstalledVersion]:
        root = self.rubies_root()
        if not root.is_dir():
            return []
        names = [
            entry.name
            for entry in root.iterdir()
            if entry.name.startswith("ruby-") and entry.is_dir()
        ]
        return [self._installed(name) for name in sort_versions(names)]

    def resolve_latest(self) -> Optional[str]:
        result = self._run(["ruby-install", "--list", "ruby"], check=True)
        versions = []
        for line in result.lines():
            match = _LIST_RE.match(line)
            if match:
                versions.append(match.group(1))
        return latest_of(versions)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def install(self, version: str, state: ActiveToolchainState) -> ActionResult:
        plain = normalize_version(version)
        result = self._mutate(
            [
                "ruby-install",
                "--rubies-dir",
                str(self.rubies_root()),
                "--no-reinstall",
                "ruby",
                plain,
            ],
            state,
        )
        if not result.ok:
            return ActionResult.failed(
                self._failure_detail(result, f"ruby-install ruby {plain}"), via="ruby-install"
            )
        return ActionResult.changed(f"installed ruby-{plain}", via="ruby-install")

    def activate(self, version: str, state: ActiveToolchainState) -> ActionResult:
        identifier = self.normalize_identifier(version)
        ruby_root = self.rubies_root() / identifier
        if not ruby_root.is_dir():
            return ActionResult.failed(f"{ruby_root} does not exist")

        try:
            atomic_write_text(self.version_file(), identifier + "\n")
        except FileOperationError as exc:
            return ActionResult.failed(str(exc))

        new_state = state.with_selection(self.name, identifier).with_env(
            RUBY_ROOT=str(ruby_root)
        )
        return ActionResult.changed(f"{self.version_file()} -> {identifier}", state=new_state)

    def uninstall(
        self,
        version: InstalledVersion,
        state: ActiveToolchainState,
    ) -> ActionResult:
        path = version.handle or str(self.rubies_root() / version.identifier)
        try:
            remove_tree(path, base_dir=self.rubies_root())
        except FileOperationError as exc:
            return ActionResult.failed(str(exc))
        return ActionResult.changed(f"removed {version.identifier}")

    # ------------------------------------------------------------------
    # Packages and tools
    # ------------------------------------------------------------------

    def _gems(self, state: ActiveToolchainState) -> List[Dict]:
        ruby = self._ruby_executable(state)
        if ruby is None:
            return []
        result = self._run([ruby, "-e", _GEMS_SCRIPT], state, check=True)
        try:
            records = json.loads(result.stdout)
        except ValueError as exc:
            raise CommandError(
                "Unreadable gem metadata from the current ruby",
                args=[ruby, "-e", "<gems>"],
            ) from exc
        return [record for record in records if isinstance(record, dict)]

    def installed_packages(self, state: ActiveToolchainState) -> List[InstalledPackage]:
        packages = []
        for record in self._gems(state):
            raw = record.get("required_ruby_version") or ""
            packages.append(
                InstalledPackage(
                    name=record.get("name") or "?",
                    version=record.get("version"),
                    requires=ruby_requirement_to_pep440(raw) or None,
                )
            )
        return packages

    def package_counts(self, state: ActiveToolchainState) -> Dict[str, int]:
        try:
            return {"gems": len(self._gems(state))}
        except CommandError as exc:
            self.logger.debug("Cannot count gems: %s", exc)
            return {}

    @staticmethod
    def _gem_pairs(records: List[Dict]) -> Set[Tuple[str, str]]:
        return {(record.get("name") or "?", record.get("version") or "") for record in records}

    def _executable_works(self, path: Path, state: ActiveToolchainState) -> bool:
        if not path.exists():
            return False
        return any(self._run([str(path), flag], state).ok for flag in _HEALTH_FLAGS)

    def _repair_gems(
        self,
        gem: Path,
        records: List[Dict],
        state: ActiveToolchainState,
        report: ToolReport,
    ) -> None:
        """Reinstall gems whose first executable no longer runs."""
        checked: Set[str] = set()
        for record in records:
            name = record.get("name")
            executables = record.get("executables") or []
            if not name or name in checked or record.get("default") or not executables:
                continue
            checked.add(name)
            if self._executable_works(gem.parent / executables[0], state):
                continue

            self.logger.warning("%s: %s is broken; reinstalling", name, executables[0])
            self._mutate(
                [str(gem), "uninstall", name, "--all", "--ignore-dependencies", "--force"],
                state,
            )
            result = self._mutate([str(gem), "install", name, "--no-document"], state)
            if result.ok:
                report.updated += 1
            else:
                self.logger.warning("%s", self._failure_detail(result, f"gem install {name}"))
                report.record_failure(name)

    def refresh_tools(self, state: ActiveToolchainState) -> Optional[ToolReport]:
        ruby = self._ruby_executable(state)
        gem = Path(ruby).parent / "gem" if ruby else None
        if gem is None or not gem.exists():
            return None

        gem_state = self._with_bin_dir(gem.parent, state)
        before = self._gems(gem_state)
        report = ToolReport(found=len({name for name, _ in self._gem_pairs(before)}))

        result = self._mutate([str(gem), "update", "--silent", "--no-document"], gem_state)
        if not result.ok:
            self.logger.warning("%s", self._failure_detail(result, "gem update"))
            report.record_failure("gem update")

        after = self._gems(gem_state)
        report.updated = len(
            {name for name, _ in self._gem_pairs(after) - self._gem_pairs(before)}
        )
        self._repair_gems(gem, after, gem_state, report)

        result = self._mutate([str(gem), "cleanup"], gem_state)
        if not result.ok:
            self.logger.warning("%s", self._failure_detail(result, "gem cleanup"))
        return report
