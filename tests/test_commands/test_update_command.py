"""Integration tests for ``toolkeeper update``.

Backends are replaced with in-memory fakes so the full command (config
loading, orchestrator, sweeper, reporting) runs without touching the
system.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import patch

import pytest
from click.testing import CliRunner, Result

from conftest import FakeBackend
from toolkeeper.cli import cli
from toolkeeper.exceptions import OperationCancelledError
from toolkeeper.models import ActionResult, InstalledPackage


@pytest.fixture
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Dict[str, str]:
    monkeypatch.chdir(tmp_path)
    return {
        "TOOLKEEPER_CACHE_DIR": str(tmp_path / "cache"),
        "XDG_CONFIG_HOME": str(tmp_path / "xdg"),
        "COLUMNS": "200",
    }


def run_update(
    backends: List[FakeBackend],
    env: Dict[str, str],
    args: Optional[List[str]] = None,
    input: Optional[str] = None,
) -> Result:
    with patch("toolkeeper.commands.update.create_backends", return_value=backends):
        return CliRunner().invoke(
            cli, ["update", "--non-interactive", *(args or [])], env=env, input=input
        )


@pytest.mark.integration
class TestUpdateCommand:
    def test_upgrades_and_sweeps(self, env: Dict[str, str], tmp_path: Path) -> None:
        python = FakeBackend("pyenv", current="3.11.8", latest="3.12.1")

        result = run_update([python], env)

        assert result.exit_code == 0, result.output
        assert "[pyenv] Upgraded 3.11.8 -> 3.12.1" in result.output
        assert "removed 3.11.8" in result.output
        assert "All toolchains processed without issues" in result.output
        assert python.installed == ["3.12.1"]
        assert (tmp_path / "cache" / "pyenv.latest").read_text(encoding="utf-8") == "3.12.1\n"

    def test_second_run_uses_cache(self, env: Dict[str, str]) -> None:
        python = FakeBackend("pyenv", current="3.12.1", latest="3.12.1")

        run_update([python], env)
        result = run_update([python], env)

        assert "[pyenv] Already current (3.12.1)" in result.output
        assert python.lookups == 1

    def test_refresh_bypasses_cache(self, env: Dict[str, str]) -> None:
        python = FakeBackend("pyenv", current="3.12.1", latest="3.12.1")

        run_update([python], env)
        run_update([python], env, ["--refresh"])

        assert python.lookups == 2

    def test_failures_are_reported_but_exit_zero(self, env: Dict[str, str]) -> None:
        go = FakeBackend(
            "go",
            current="1.21.0",
            latest="1.22.1",
            install_result=ActionResult.failed("formula has not caught up yet"),
        )
        rust = FakeBackend("rustup", current="1.76.0", latest="1.76.0")

        result = run_update([go, rust], env)

        assert result.exit_code == 0, result.output
        assert "formula has not caught up yet" in result.output
        assert "[rustup] Already current (1.76.0)" in result.output
        assert "1 issue(s) need attention" in result.output

    def test_incompatible_upgrade_is_skipped_non_interactively(
        self, env: Dict[str, str]
    ) -> None:
        python = FakeBackend(
            "pyenv",
            current="3.11.8",
            latest="3.12.1",
            packages=[InstalledPackage("legacy-lib", "1.0", requires="<3.12")],
        )

        result = run_update([python], env)

        assert "Upgrade to 3.12.1 skipped" in result.output
        assert python.actions == []

    def test_interactive_confirmation(self, env: Dict[str, str]) -> None:
        python = FakeBackend(
            "pyenv",
            current="3.11.8",
            latest="3.12.1",
            packages=[InstalledPackage("legacy-lib", "1.0", requires="<3.12")],
        )

        with patch("toolkeeper.commands.update.create_backends", return_value=[python]):
            result = CliRunner().invoke(cli, ["update", "--interactive"], env=env, input="y\n")

        assert "legacy-lib" in result.output
        assert ("install", "3.12.1") in python.actions

    def test_cleanup_disabled_by_environment(self, env: Dict[str, str]) -> None:
        python = FakeBackend("pyenv", current="3.11.8", latest="3.12.1")
        env["TOOLKEEPER_CLEAN_PYENV"] = "0"

        result = run_update([python], env)

        assert "cleanup disabled" in result.output
        assert python.installed == ["3.11.8", "3.12.1"]

    def test_cancelled_run_exits_130(self, env: Dict[str, str]) -> None:
        python = FakeBackend("pyenv")
        python.detect_error = OperationCancelledError("Run cancelled")
        node = FakeBackend("nvm")

        result = run_update([python, node], env)

        assert result.exit_code == 130
        assert "Run cancelled" in result.output
        assert node.actions == []
