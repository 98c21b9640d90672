from __future__ import annotations

import pytest

from toolkeeper.models import (
    ActionResult,
    ActionStatus,
    ActiveToolchainState,
    RunSummary,
    SweepReport,
    ToolReport,
    UpgradeOutcome,
    UpgradeResult,
)


@pytest.mark.unit
class TestActionResult:
    def test_changed(self) -> None:
        state = ActiveToolchainState(selections={"pyenv": "3.12.1"})

        result = ActionResult.changed(via="homebrew:python@3.12", state=state)

        assert result.status is ActionStatus.CHANGED
        assert result.ok is True
        assert result.via == "homebrew:python@3.12"
        assert result.state is state

    def test_unchanged_is_ok(self) -> None:
        assert ActionResult.unchanged("already linked").ok is True

    def test_failed(self) -> None:
        result = ActionResult.failed("pyenv install 3.12.2 failed: BUILD FAILED")

        assert result.ok is False
        assert result.detail == "pyenv install 3.12.2 failed: BUILD FAILED"

    def test_status_values(self) -> None:
        assert [status.value for status in ActionStatus] == ["changed", "unchanged", "failed"]


@pytest.mark.unit
class TestUpgradeOutcome:
    @pytest.mark.parametrize(
        "outcome, success",
        [
            (UpgradeOutcome.ALREADY_CURRENT, True),
            (UpgradeOutcome.UPGRADED, True),
            (UpgradeOutcome.SKIPPED_PROTECTED, False),
            (UpgradeOutcome.SKIPPED_INCOMPATIBLE, False),
            (UpgradeOutcome.SKIPPED_UNAVAILABLE, False),
            (UpgradeOutcome.FAILED, False),
        ],
    )
    def test_is_success(self, outcome: UpgradeOutcome, success: bool) -> None:
        assert outcome.is_success is success

    def test_values_are_report_labels(self) -> None:
        assert UpgradeOutcome.SKIPPED_PROTECTED.value == "upgrade-skipped-protected"
        assert UpgradeOutcome("already-current") is UpgradeOutcome.ALREADY_CURRENT


@pytest.mark.unit
class TestToolReport:
    def test_record_failure(self) -> None:
        report = ToolReport(found=3, updated=1)

        report.record_failure("ruff")

        assert report.failed == 1
        assert report.failures == ["ruff"]
        assert report.summary() == "3 found, 1 updated, 1 failed, 0 skipped"


@pytest.mark.unit
class TestUpgradeResult:
    def test_describe_upgraded(self) -> None:
        result = UpgradeResult(
            "pyenv", UpgradeOutcome.UPGRADED, previous_version="3.11.8", active_version="3.12.1"
        )

        assert result.describe() == "3.11.8 -> 3.12.1"
        assert result.is_success is True

    def test_describe_first_install(self) -> None:
        result = UpgradeResult("go", UpgradeOutcome.UPGRADED, active_version="1.22.1")

        assert result.describe() == "none -> 1.22.1"

    def test_describe_current(self) -> None:
        result = UpgradeResult("nvm", UpgradeOutcome.ALREADY_CURRENT, active_version="20.11.0")

        assert result.describe() == "20.11.0 is current"

    def test_describe_failure_detail(self) -> None:
        result = UpgradeResult(
            "rustup",
            UpgradeOutcome.FAILED,
            error_kind="command",
            error_detail="rustup update stable failed",
        )

        assert result.describe() == "rustup update stable failed"
        assert result.is_success is False

    def test_describe_falls_back_to_outcome(self) -> None:
        result = UpgradeResult("pyenv", UpgradeOutcome.SKIPPED_PROTECTED)

        assert result.describe() == "upgrade-skipped-protected"


@pytest.mark.unit
class TestSweepReport:
    @pytest.mark.parametrize(
        "report, status",
        [
            (SweepReport("pyenv"), "ok"),
            (SweepReport("pyenv", enabled=False), "disabled"),
            (SweepReport("pyenv", failed={"3.11.8": "permission denied"}), "partial"),
        ],
    )
    def test_status(self, report: SweepReport, status: str) -> None:
        assert report.status == status


@pytest.mark.unit
class TestRunSummary:
    def test_result_for(self) -> None:
        current = UpgradeResult("nvm", UpgradeOutcome.ALREADY_CURRENT, active_version="20.11.0")
        summary = RunSummary(results=[current])

        assert summary.result_for("nvm") is current
        assert summary.result_for("go") is None

    def test_issues_in_run_order(self) -> None:
        tools = ToolReport(found=2, updated=1)
        tools.record_failure("ruff")
        summary = RunSummary(
            results=[
                UpgradeResult(
                    "pyenv", UpgradeOutcome.ALREADY_CURRENT, active_version="3.12.1", tools=tools
                ),
                UpgradeResult("go", UpgradeOutcome.FAILED, error_detail="formula behind"),
            ],
            sweeps=[SweepReport("nvm", failed={"v18.19.0": "in use"})],
        )

        assert summary.issues() == [
            ("pyenv", "tool refresh failed: ruff"),
            ("go", "failed: formula behind"),
            ("nvm", "cleanup of v18.19.0 failed: in use"),
        ]

    def test_no_issues(self) -> None:
        summary = RunSummary(
            results=[UpgradeResult("go", UpgradeOutcome.UPGRADED, "1.22.0", "1.22.1")],
            sweeps=[SweepReport("go")],
        )

        assert summary.issues() == []
