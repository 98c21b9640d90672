"""
Unified data model exports for toolkeeper.

Example:
    >>> from toolkeeper.models import InstalledVersion, UpgradeOutcome
"""

from __future__ import annotations

from toolkeeper.models.state import ActiveToolchainState
from toolkeeper.models.version import InstalledPackage, InstalledVersion
from toolkeeper.models.results import (
    ActionResult,
    ActionStatus,
    RunSummary,
    SweepReport,
    ToolReport,
    UpgradeOutcome,
    UpgradeResult,
)

__all__ = [
    "ActiveToolchainState",
    "InstalledVersion",
    "InstalledPackage",
    "ActionResult",
    "ActionStatus",
    "UpgradeOutcome",
    "UpgradeResult",
    "ToolReport",
    "SweepReport",
    "RunSummary",
]
