"""
Result models for toolkeeper runs.

Backends report each mutation as an :class:`ActionResult`; the orchestrator
turns every backend pass into exactly one :class:`UpgradeResult`; the sweeper
produces a :class:`SweepReport`. A :class:`RunSummary` aggregates them for
the final report of ``toolkeeper update``. None of these are persisted.
"""

from __future__ import annotations

from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from toolkeeper.models.state import ActiveToolchainState


class ActionStatus(str, Enum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass(frozen=True)
class ActionResult:
    """Typed outcome of an install, activate or uninstall call.

    Attributes:
        status: Whether the action changed anything.
        detail: Human-readable explanation, mandatory for failures.
        via: Install path used (``homebrew:python@3.12``, ``pyenv install``).
        state: Updated toolchain state returned by ``activate``.
    """

    status: ActionStatus
    detail: Optional[str] = None
    via: Optional[str] = None
    state: Optional[ActiveToolchainState] = None

    @property
    def ok(self) -> bool:
        return self.status is not ActionStatus.FAILED

    @classmethod
    def changed(cls, detail: Optional[str] = None, **kwargs) -> "ActionResult":
        return cls(ActionStatus.CHANGED, detail, **kwargs)

    @classmethod
    def unchanged(cls, detail: Optional[str] = None, **kwargs) -> "ActionResult":
        return cls(ActionStatus.UNCHANGED, detail, **kwargs)

    @classmethod
    def failed(cls, detail: str, **kwargs) -> "ActionResult":
        return cls(ActionStatus.FAILED, detail, **kwargs)


class UpgradeOutcome(str, Enum):
    ALREADY_CURRENT = "already-current"
    UPGRADED = "upgraded"
    SKIPPED_PROTECTED = "upgrade-skipped-protected"
    SKIPPED_INCOMPATIBLE = "upgrade-skipped-incompatible"
    SKIPPED_UNAVAILABLE = "skipped-unavailable"
    FAILED = "failed"

    @property
    def is_success(self) -> bool:
        return self in (UpgradeOutcome.ALREADY_CURRENT, UpgradeOutcome.UPGRADED)


@dataclass
class ToolReport:
    """Counts from refreshing a backend's tool inventory (pipx, go, cargo)."""

    found: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    failures: List[str] = field(default_factory=list)

    def record_failure(self, tool: str) -> None:
        self.failed += 1
        self.failures.append(tool)

    def summary(self) -> str:
        return (
            f"{self.found} found, {self.updated} updated, "
            f"{self.failed} failed, {self.skipped} skipped"
        )


@dataclass
class UpgradeResult:
    """Terminal result of one backend pass."""

    backend: str
    outcome: UpgradeOutcome
    previous_version: Optional[str] = None
    active_version: Optional[str] = None
    target_version: Optional[str] = None
    via: Optional[str] = None
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None
    tools: Optional[ToolReport] = None

    @property
    def is_success(self) -> bool:
        return self.outcome.is_success

    def describe(self) -> str:
        """One-line explanation used in the run summary."""
        if self.outcome is UpgradeOutcome.UPGRADED:
            return f"{self.previous_version or 'none'} -> {self.active_version}"
        if self.outcome is UpgradeOutcome.ALREADY_CURRENT:
            return f"{self.active_version} is current"
        if self.error_detail:
            return self.error_detail
        return self.outcome.value


@dataclass
class SweepReport:
    """Result of one retention sweep."""

    backend: str
    enabled: bool = True
    removed: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped_protected: List[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        if not self.enabled:
            return "disabled"
        if self.failed:
            return "partial"
        return "ok"


@dataclass
class RunSummary:
    """Everything ``update`` reports at the end of a run."""

    results: List[UpgradeResult] = field(default_factory=list)
    sweeps: List[SweepReport] = field(default_factory=list)
    cancelled: bool = False

    def result_for(self, backend: str) -> Optional[UpgradeResult]:
        for result in self.results:
            if result.backend == backend:
                return result
        return None

    def issues(self) -> List[Tuple[str, str]]:
        """All non-success outcomes and sweep failures, in run order."""
        problems: List[Tuple[str, str]] = []
        for result in self.results:
            if not result.is_success:
                problems.append((result.backend, f"{result.outcome.value}: {result.describe()}"))
            if result.tools and result.tools.failures:
                problems.append(
                    (result.backend, "tool refresh failed: " + ", ".join(result.tools.failures))
                )
        for sweep in self.sweeps:
            for version, reason in sweep.failed.items():
                problems.append((sweep.backend, f"cleanup of {version} failed: {reason}"))
        return problems
