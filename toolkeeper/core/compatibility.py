"""
Compatibility gate for interpreter upgrades.

Before a gated backend installs a new interpreter, every package installed
against the current one is checked against the candidate version. A package
whose interpreter constraint (``Requires-Python``, ``required_ruby_version``)
excludes the candidate would break after the upgrade.

Rules:
- Constraints are evaluated as full PEP 440 specifier sets, pre-releases
  included.
- A constraint that cannot be parsed counts as incompatible.
- Isolated packages (pipx applications) are exempt.
- Any incompatibility blocks a non-interactive run; interactive runs ask.
"""

from __future__ import annotations

from enum import Enum
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from packaging.specifiers import InvalidSpecifier, SpecifierSet

from toolkeeper.models import InstalledPackage
from toolkeeper.utils.logger import get_logger
from toolkeeper.utils.version_utils import normalize_version, parse_version

logger = get_logger("core.compatibility")


class GateDecision(str, Enum):
    ALLOW = "allow"
    WARN_CONFIRM = "warn-confirm"
    BLOCK = "block"


@dataclass(frozen=True)
class Incompatibility:
    package: str
    requires: Optional[str]
    reason: str

    def __str__(self) -> str:
        return f"{self.package} ({self.reason})"


@dataclass
class GateReport:
    decision: GateDecision
    candidate: str
    incompatible: List[Incompatibility] = field(default_factory=list)

    @property
    def package_names(self) -> List[str]:
        return [item.package for item in self.incompatible]


def check_package(
    package: InstalledPackage,
    candidate: str,
) -> Optional[Incompatibility]:
    """Return why ``package`` cannot run on ``candidate``, or ``None``."""
    if package.isolated or not package.requires:
        return None

    try:
        specifiers = SpecifierSet(package.requires)
    except InvalidSpecifier:
        return Incompatibility(
            package.name, package.requires, f"unparseable constraint {package.requires!r}"
        )

    version = parse_version(candidate)
    if version is None:
        return Incompatibility(
            package.name, package.requires, f"cannot evaluate {candidate!r}"
        )

    if specifiers.contains(version, prereleases=True):
        return None
    return Incompatibility(package.name, package.requires, f"requires {package.requires}")


class CompatibilityGate:
    """Decides whether an interpreter upgrade may proceed."""

    def check_upgrade_safe(
        self,
        current: Optional[str],
        candidate: str,
        packages: Iterable[InstalledPackage],
        *,
        interactive: bool,
    ) -> GateReport:
        """Evaluate ``packages`` against ``candidate``.

        Args:
            current: Version being replaced (informational).
            candidate: Version about to be installed.
            packages: Packages installed against ``current``.
            interactive: Whether a human can confirm a risky upgrade.
        """
        incompatible: List[Incompatibility] = []
        for package in packages:
            problem = check_package(package, candidate)
            if problem is not None:
                incompatible.append(problem)

        if not incompatible:
            decision = GateDecision.ALLOW
        elif interactive:
            decision = GateDecision.WARN_CONFIRM
        else:
            decision = GateDecision.BLOCK

        logger.info(
            "Gate %s -> %s: %s (%d incompatible)",
            current or "none",
            normalize_version(candidate),
            decision.value,
            len(incompatible),
        )
        return GateReport(decision=decision, candidate=candidate, incompatible=incompatible)
