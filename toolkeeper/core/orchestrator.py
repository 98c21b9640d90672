"""
Upgrade orchestrator: drives each backend through its lifecycle.

Per backend::

    available? --no--> skipped-unavailable
    detect --> protected? --yes--> upgrade-skipped-protected
    fast path: cached latest == current --> already-current
    resolve latest (cache) --> unknown --> failed
    latest <= current --> already-current
    gate (gated backends) --> block / declined --> upgrade-skipped-incompatible
    install --> activate --> re-detect --> upgraded | failed

After ``already-current`` or ``upgraded`` the tool inventory is refreshed and
the retention sweeper runs, provided the active version is one the manager
owns. Every backend yields exactly one :class:`~toolkeeper.models.UpgradeResult`;
no exception other than cancellation escapes a backend pass.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional

from toolkeeper.backends.base import Backend
from toolkeeper.config import ToolKeeperConfig
from toolkeeper.core.compatibility import CompatibilityGate, GateDecision, GateReport
from toolkeeper.core.protection import ProtectionClassifier
from toolkeeper.core.sweeper import RetentionSweeper
from toolkeeper.core.version_cache import VersionCache
from toolkeeper.exceptions import (
    BackendUnavailableError,
    OperationCancelledError,
    ToolKeeperError,
    VerificationMismatchError,
)
from toolkeeper.models import (
    ActiveToolchainState,
    InstalledVersion,
    RunSummary,
    SweepReport,
    UpgradeOutcome,
    UpgradeResult,
)
from toolkeeper.utils.logger import get_logger
from toolkeeper.utils.process import CancelToken
from toolkeeper.utils.version_utils import is_newer, versions_match

logger = get_logger("core.orchestrator")

#: Called with (backend, gate report); returns True to proceed anyway.
ConfirmCallback = Callable[[Backend, GateReport], bool]
#: Called with each finished result (and sweep report, if any).
ProgressCallback = Callable[[UpgradeResult, Optional[SweepReport]], None]


def _decline(backend: Backend, report: GateReport) -> bool:
    return False


class UpgradeOrchestrator:
    """Runs the upgrade state machine for a sequence of backends.

    Args:
        cache: Latest-version cache.
        classifier: Protection classifier.
        config: Loaded configuration (TTLs, keep-lists, cleanup flags).
        gate: Compatibility gate.
        sweeper: Retention sweeper; built from ``classifier`` by default.
        confirm: Asked on a warn-confirm gate decision; defaults to "no".
        interactive: Whether a human can answer ``confirm``.
        refresh: Bypass the cache fast path and fresh entries.
        cancel_token: Checked between backends.
        on_result: Progress callback invoked after each backend.
    """

    def __init__(
        self,
        cache: VersionCache,
        classifier: ProtectionClassifier,
        config: Optional[ToolKeeperConfig] = None,
        *,
        gate: Optional[CompatibilityGate] = None,
        sweeper: Optional[RetentionSweeper] = None,
        confirm: ConfirmCallback = _decline,
        interactive: bool = False,
        refresh: bool = False,
        cancel_token: Optional[CancelToken] = None,
        on_result: Optional[ProgressCallback] = None,
    ) -> None:
        self.cache = cache
        self.classifier = classifier
        self.config = config or ToolKeeperConfig()
        self.gate = gate or CompatibilityGate()
        self.sweeper = sweeper or RetentionSweeper(classifier)
        self.confirm = confirm
        self.interactive = interactive
        self.refresh = refresh
        self.cancel_token = cancel_token or CancelToken()
        self.on_result = on_result
        self.state = ActiveToolchainState()
        self._active: Dict[str, InstalledVersion] = {}

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, backends: Iterable[Backend]) -> RunSummary:
        """Process ``backends`` in order; cancellation stops between them."""
        summary = RunSummary()

        for backend in backends:
            if self.cancel_token.cancelled:
                logger.warning("Run cancelled before %s", backend.name)
                summary.cancelled = True
                break

            try:
                result = self.upgrade(backend)
            except OperationCancelledError:
                logger.warning("Run cancelled during %s", backend.name)
                summary.results.append(
                    UpgradeResult(
                        backend=backend.name,
                        outcome=UpgradeOutcome.FAILED,
                        error_kind=OperationCancelledError.kind,
                        error_detail="cancelled",
                    )
                )
                summary.cancelled = True
                break

            sweep = None
            if result.is_success:
                try:
                    sweep = self._after_success(backend, result)
                except OperationCancelledError:
                    summary.results.append(result)
                    summary.cancelled = True
                    break

            summary.results.append(result)
            if sweep is not None:
                summary.sweeps.append(sweep)
            if self.on_result is not None:
                self.on_result(result, sweep)

        return summary

    def upgrade(self, backend: Backend) -> UpgradeResult:
        """Drive one backend to a terminal outcome.

        Raises:
            OperationCancelledError: The run was cancelled.
        """
        try:
            return self._upgrade(backend)
        except OperationCancelledError:
            raise
        except BackendUnavailableError as exc:
            logger.info("%s unavailable: %s", backend.name, exc)
            return UpgradeResult(
                backend=backend.name,
                outcome=UpgradeOutcome.SKIPPED_UNAVAILABLE,
                error_kind=exc.kind,
                error_detail=exc.message,
            )
        except ToolKeeperError as exc:
            logger.error("%s failed: %s", backend.name, exc)
            return UpgradeResult(
                backend=backend.name,
                outcome=UpgradeOutcome.FAILED,
                error_kind=exc.kind,
                error_detail=str(exc),
            )
        except Exception as exc:
            logger.exception("Unexpected error in %s", backend.name)
            return UpgradeResult(
                backend=backend.name,
                outcome=UpgradeOutcome.FAILED,
                error_kind="internal",
                error_detail=f"{type(exc).__name__}: {exc}",
            )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _upgrade(self, backend: Backend) -> UpgradeResult:
        name = backend.name
        if not backend.is_available():
            return UpgradeResult(
                backend=name,
                outcome=UpgradeOutcome.SKIPPED_UNAVAILABLE,
                error_kind=BackendUnavailableError.kind,
                error_detail=f"{backend.executable} not found",
            )

        current = backend.detect(self.state)
        current_version = current.version if current else None
        logger.info("%s current: %s", name, current_version or "none")

        if current is not None and self.classifier.is_protected(current.handle):
            root = self.classifier.matching_root(current.handle)
            logger.info("%s is protected (%s under %s)", name, current.handle, root)
            return UpgradeResult(
                backend=name,
                outcome=UpgradeOutcome.SKIPPED_PROTECTED,
                previous_version=current_version,
                active_version=current_version,
                error_detail=f"{current.handle} is owned by the system ({root})",
            )

        if current is not None and self._fast_path(backend, current):
            return self._already_current(backend, current, current_version)

        latest = self.cache.resolve_latest(
            backend.cache_key,
            backend.resolve_latest,
            self.config.ttl_for(name),
            force=self.refresh,
        )
        if latest is None:
            return UpgradeResult(
                backend=name,
                outcome=UpgradeOutcome.FAILED,
                previous_version=current_version,
                active_version=current_version,
                error_kind="transient",
                error_detail="latest version unknown (lookup failed and nothing cached)",
            )

        if not is_newer(latest, current_version):
            # Never downgrade: a lower "latest" also counts as current
            return self._already_current(backend, current, latest)

        if backend.gate_applicable and current is not None:
            skipped = self._check_gate(backend, current_version, latest)
            if skipped is not None:
                return skipped

        return self._install_and_verify(backend, current_version, latest)

    def _fast_path(self, backend: Backend, current: InstalledVersion) -> bool:
        """Trust a cached value equal to the installed version."""
        if self.refresh:
            return False
        entry = self.cache.peek(backend.cache_key)
        if entry is None:
            return False
        matched = versions_match(entry.value, current.version)
        if matched:
            logger.debug(
                "%s fast path: cached %s equals installed (age %.0fs)",
                backend.name,
                entry.value,
                entry.age,
            )
        return matched

    def _already_current(
        self,
        backend: Backend,
        current: Optional[InstalledVersion],
        latest: Optional[str],
    ) -> UpgradeResult:
        version = current.version if current else None
        if current is not None:
            self._active[backend.name] = current
        return UpgradeResult(
            backend=backend.name,
            outcome=UpgradeOutcome.ALREADY_CURRENT,
            previous_version=version,
            active_version=version,
            target_version=latest,
        )

    def _check_gate(
        self,
        backend: Backend,
        current_version: Optional[str],
        latest: str,
    ) -> Optional[UpgradeResult]:
        packages = backend.installed_packages(self.state)
        report = self.gate.check_upgrade_safe(
            current_version,
            latest,
            packages,
            interactive=self.interactive,
        )
        if report.decision is GateDecision.ALLOW:
            return None
        if report.decision is GateDecision.WARN_CONFIRM and self.confirm(backend, report):
            logger.warning(
                "%s: proceeding despite incompatible packages: %s",
                backend.name,
                ", ".join(report.package_names),
            )
            return None

        return UpgradeResult(
            backend=backend.name,
            outcome=UpgradeOutcome.SKIPPED_INCOMPATIBLE,
            previous_version=current_version,
            active_version=current_version,
            target_version=latest,
            error_detail="incompatible: " + ", ".join(str(p) for p in report.incompatible),
        )

    def _install_and_verify(
        self,
        backend: Backend,
        current_version: Optional[str],
        latest: str,
    ) -> UpgradeResult:
        name = backend.name
        result = UpgradeResult(
            backend=name,
            outcome=UpgradeOutcome.FAILED,
            previous_version=current_version,
            active_version=current_version,
            target_version=latest,
        )

        installed = backend.install(latest, self.state)
        result.via = installed.via
        if not installed.ok:
            result.error_kind = "install"
            result.error_detail = installed.detail
            return result
        logger.info("%s installed %s via %s", name, latest, installed.via or "default path")

        activated = backend.activate(latest, self.state)
        if not activated.ok:
            result.error_kind = "activate"
            result.error_detail = activated.detail
            return result
        if activated.state is not None:
            self.state = activated.state

        detected = backend.detect(self.state)
        detected_version = detected.version if detected else None
        if not versions_match(detected_version, latest):
            error = VerificationMismatchError(
                f"{name} reports {detected_version or 'nothing'} after installing {latest}",
                expected=latest,
                detected=detected_version,
            )
            logger.error("%s", error)
            result.active_version = detected_version
            result.error_kind = error.kind
            result.error_detail = str(error)
            return result

        self._active[name] = detected
        result.outcome = UpgradeOutcome.UPGRADED
        result.active_version = detected_version
        return result

    # ------------------------------------------------------------------
    # Post-success work
    # ------------------------------------------------------------------

    def _after_success(
        self,
        backend: Backend,
        result: UpgradeResult,
    ) -> Optional[SweepReport]:
        """Refresh tools, then sweep. Failures here never change the outcome."""
        if self.config.refresh_tools:
            try:
                result.tools = backend.refresh_tools(self.state)
            except OperationCancelledError:
                raise
            except (ToolKeeperError, OSError) as exc:
                logger.warning("%s tool refresh failed: %s", backend.name, exc)

        active = self._active.get(backend.name)
        if not backend.supports_retention or active is None:
            return None
        if self.classifier.is_protected(active.handle):
            return None

        settings = self.config.backend(backend.name)
        try:
            if not backend.manages(active, self.state):
                logger.info(
                    "%s %s is not managed by %s; skipping cleanup",
                    backend.name,
                    active.identifier,
                    backend.executable,
                )
                return None
            return self.sweeper.sweep(
                backend,
                active.identifier,
                settings.keep,
                enabled=settings.cleanup,
                state=self.state,
            )
        except OperationCancelledError:
            raise
        except (ToolKeeperError, OSError) as exc:
            logger.warning("%s cleanup failed: %s", backend.name, exc)
            return SweepReport(backend=backend.name, failed={"*": str(exc)})
