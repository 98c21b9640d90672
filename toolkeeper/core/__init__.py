"""
Core functionality exports for toolkeeper.

This module provides convenient access to the self-contained core
subsystems:

    from toolkeeper.core import VersionCache, ProtectionClassifier

The orchestrator and the retention sweeper depend on the backend adapters
and are imported from their own modules (``toolkeeper.core.orchestrator``,
``toolkeeper.core.sweeper``).
"""

from __future__ import annotations

from toolkeeper.core.protection import ProtectionClassifier
from toolkeeper.core.version_cache import CacheEntry, InstallHints, VersionCache
from toolkeeper.core.compatibility import (
    CompatibilityGate,
    GateDecision,
    GateReport,
    Incompatibility,
    check_package,
)

__all__ = [
    "VersionCache",
    "CacheEntry",
    "InstallHints",
    "ProtectionClassifier",
    "CompatibilityGate",
    "GateDecision",
    "GateReport",
    "Incompatibility",
    "check_package",
]
