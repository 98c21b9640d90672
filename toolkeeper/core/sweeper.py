"""
Retention sweeper: removes superseded toolchain versions.

The keep-set for one sweep is::

    {active version} | normalize(keep-list) | backend.default_keep

Every other installed version is uninstalled through the backend. A failed
removal is recorded and the sweep moves on; protected installations are
never touched.
"""

from __future__ import annotations

from typing import Iterable, Optional, Set

from toolkeeper.backends.base import Backend
from toolkeeper.core.protection import ProtectionClassifier
from toolkeeper.exceptions import OperationCancelledError, ToolKeeperError
from toolkeeper.models import ActiveToolchainState, InstalledVersion, SweepReport
from toolkeeper.utils.logger import get_logger
from toolkeeper.utils.version_utils import versions_match

logger = get_logger("core.sweeper")


class RetentionSweeper:
    """Applies the retention policy to one backend at a time."""

    def __init__(self, classifier: ProtectionClassifier) -> None:
        self.classifier = classifier

    @staticmethod
    def keep_set(
        backend: Backend,
        active: str,
        keep_list: Iterable[str],
    ) -> Set[str]:
        """Normalized identifiers that must survive the sweep."""
        keep = {backend.normalize_identifier(active)}
        keep.update(backend.normalize_identifier(item) for item in keep_list if item.strip())
        keep.update(backend.default_keep)
        return keep

    @staticmethod
    def _is_kept(version: InstalledVersion, keep: Set[str], active: str) -> bool:
        if version.identifier in keep:
            return True
        return versions_match(version.version, active) or versions_match(
            version.identifier, active
        )

    def sweep(
        self,
        backend: Backend,
        active_version: Optional[str],
        keep_list: Iterable[str],
        *,
        enabled: bool,
        state: ActiveToolchainState,
    ) -> SweepReport:
        """Remove every installed version outside the keep-set.

        Args:
            backend: Backend to sweep.
            active_version: Identifier of the version just activated.
            keep_list: Operator keep-list (un-normalized).
            enabled: Whether cleanup is enabled for this backend.
            state: Current toolchain state.

        Raises:
            OperationCancelledError: The run was cancelled mid-sweep.
        """
        report = SweepReport(backend=backend.name, enabled=enabled)
        if not enabled:
            logger.info("Cleanup disabled for %s", backend.name)
            return report
        if not active_version:
            logger.info("No active %s version; skipping cleanup", backend.name)
            return report

        keep = self.keep_set(backend, active_version, keep_list)
        logger.debug("Keep-set for %s: %s", backend.name, sorted(keep))

        for version in backend.list_installed(state):
            if self._is_kept(version, keep, active_version):
                report.kept.append(version.identifier)
                continue
            if self.classifier.is_protected(version.handle):
                report.skipped_protected.append(version.identifier)
                continue

            try:
                result = backend.uninstall(version, state)
            except OperationCancelledError:
                raise
            except ToolKeeperError as exc:
                report.failed[version.identifier] = str(exc)
                continue

            if result.ok:
                logger.info("Removed %s %s", backend.name, version.identifier)
                report.removed.append(version.identifier)
            else:
                report.failed[version.identifier] = result.detail or "uninstall failed"

        return report
