"""
Swift toolchains managed by swiftly.

Release toolchains are the default upgrade target. Development snapshots
are only considered when the snapshot channel is enabled
(``TOOLKEEPER_SWIFTLY_SNAPSHOTS=1``) *and* the toolchain in use is itself a
snapshot; the snapshot family (``main`` or ``X.Y``) is preserved.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from toolkeeper.backends.base import Backend
from toolkeeper.models import ActionResult, ActiveToolchainState, InstalledVersion
from toolkeeper.utils.version_utils import is_snapshot, latest_of

_IN_USE_MARKERS = ("(in use)", "(default)")
_STABLE_RE = re.compile(r"^(?:Swift\s+)?(\d+\.\d+(?:\.\d+)?)\b")
_SNAPSHOT_RE = re.compile(r"\b((?:main|\d+\.\d+)-snapshot-\d{4}-\d{2}-\d{2})\b")


def parse_toolchain_line(line: str) -> Optional[Tuple[str, bool]]:
    """Return ``(identifier, in_use)`` for a ``swiftly list`` line."""
    text = line.strip()
    in_use = any(marker in text for marker in _IN_USE_MARKERS)
    snapshot = _SNAPSHOT_RE.search(text)
    if snapshot:
        return snapshot.group(1), in_use
    stable = _STABLE_RE.match(text)
    if stable:
        return stable.group(1), in_use
    return None


def snapshot_family(identifier: str) -> str:
    """``main-snapshot-2024-08-01`` -> ``main``; ``6.0-snapshot-...`` -> ``6.0``."""
    return identifier.split("-snapshot", 1)[0]


class SwiftlyBackend(Backend):
    name = "swiftly"
    executable = "swiftly"
    supports_retention = True
    supports_snapshots = True

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._channel: Optional[str] = None

    def normalize_identifier(self, value: str) -> str:
        value = value.strip()
        return value[len("Swift "):].strip() if value.startswith("Swift ") else value

    def _toolchains(self, state: ActiveToolchainState) -> List[Tuple[str, bool]]:
        result = self._run(["swiftly", "list"], state)
        if not result.ok:
            return []
        parsed = (parse_toolchain_line(line) for line in result.lines())
        return [entry for entry in parsed if entry is not None]

    # ------------------------------------------------------------------
    # Channel
    # ------------------------------------------------------------------

    def snapshot_channel(self) -> Optional[str]:
        """Snapshot family to follow, or ``None`` for release toolchains."""
        if self._channel is None:
            channel = ""
            if self.settings.snapshots:
                current = self.detect(ActiveToolchainState())
                if current is not None and is_snapshot(current.identifier):
                    channel = snapshot_family(current.identifier)
            self._channel = channel
        return self._channel or None

    @property
    def cache_key(self) -> str:
        channel = self.snapshot_channel()
        return f"{self.name}-{channel}-snapshot" if channel else self.name

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(self, state: ActiveToolchainState) -> Optional[InstalledVersion]:
        for identifier, in_use in self._toolchains(state):
            if in_use:
                handle = self.runner.which("swift", state.env)
                return InstalledVersion(version=identifier, identifier=identifier, handle=handle)
        return None

    def list_installed(self, state: ActiveToolchainState) -> List[InstalledVersion]:
        return [
            InstalledVersion(version=identifier, identifier=identifier)
            for identifier, _ in self._toolchains(state)
        ]

    def resolve_latest(self) -> Optional[str]:
        result = self._run(["swiftly", "list-available"], check=True)
        channel = self.snapshot_channel()

        if channel:
            snapshots = [
                match.group(1)
                for match in map(_SNAPSHOT_RE.search, result.lines())
                if match and snapshot_family(match.group(1)) == channel
            ]
            return latest_of(snapshots, include_snapshots=True)

        releases = []
        for line in result.lines():
            match = _STABLE_RE.match(line)
            if match and not _SNAPSHOT_RE.search(line):
                releases.append(match.group(1))
        return latest_of(releases)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def install(self, version: str, state: ActiveToolchainState) -> ActionResult:
        self_update = self._mutate(["swiftly", "self-update", "--assume-yes"], state)
        if not self_update.ok:
            self.logger.info("swiftly self-update failed: %s", self_update.stderr.strip())

        target = self.normalize_identifier(version)
        result = self._mutate(["swiftly", "install", target, "--assume-yes"], state)
        if not result.ok:
            return ActionResult.failed(
                self._failure_detail(result, f"swiftly install {target}"), via="swiftly install"
            )
        return ActionResult.changed(f"installed Swift {target}", via="swiftly install")

    def activate(self, version: str, state: ActiveToolchainState) -> ActionResult:
        target = self.normalize_identifier(version)
        result = self._mutate(
            ["swiftly", "use", "--global-default", "--assume-yes", target], state
        )
        if not result.ok:
            return ActionResult.failed(self._failure_detail(result, f"swiftly use {target}"))
        return ActionResult.changed(
            f"in use -> {target}", state=state.with_selection(self.name, target)
        )

    def uninstall(
        self,
        version: InstalledVersion,
        state: ActiveToolchainState,
    ) -> ActionResult:
        result = self._mutate(
            ["swiftly", "uninstall", version.identifier, "--assume-yes"], state
        )
        if not result.ok:
            return ActionResult.failed(self._failure_detail(result, "swiftly uninstall"))
        return ActionResult.changed(f"uninstalled {version.identifier}")
