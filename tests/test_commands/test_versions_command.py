from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from conftest import FakeBackend
from toolkeeper.cli import cli
from toolkeeper.commands.versions import describe_backend, format_counts
from toolkeeper.exceptions import CommandTimeoutError
from toolkeeper.models import ActiveToolchainState


class CountingBackend(FakeBackend):
    def __init__(self, *args, counts=None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.counts = counts or {}

    def package_counts(self, state):
        return dict(self.counts)


@pytest.mark.unit
class TestFormatCounts:
    def test_empty(self) -> None:
        assert format_counts({}) == ""

    def test_keeps_order(self) -> None:
        assert format_counts({"pip": 42, "pipx": 5}) == " (pip 42, pipx 5)"


@pytest.mark.unit
class TestDescribeBackend:
    def test_identifier_and_counts(self, state: ActiveToolchainState) -> None:
        backend = CountingBackend("nvm", current="v20.11.0", counts={"npm": 7})

        assert describe_backend(backend, state) == "v20.11.0 (npm 7)"

    def test_unavailable(self, state: ActiveToolchainState) -> None:
        assert describe_backend(FakeBackend("chruby", available=False), state) == "not installed"

    def test_nothing_active(self, state: ActiveToolchainState) -> None:
        assert describe_backend(FakeBackend("swiftly", current=None), state) == "not installed"

    def test_error(self, state: ActiveToolchainState) -> None:
        backend = FakeBackend("go")
        backend.detect_error = CommandTimeoutError("Command timed out after 120s")

        assert describe_backend(backend, state) == "error: Command timed out after 120s"

    def test_filesystem_error_stays_in_its_row(self, state: ActiveToolchainState) -> None:
        class UnreadableBackend(FakeBackend):
            def package_counts(self, state):
                raise PermissionError(13, "Permission denied", "/opt/node/lib/node_modules")

        row = describe_backend(UnreadableBackend("nvm", current="v20.11.0"), state)

        assert row.startswith("error: ")
        assert "Permission denied" in row


@pytest.mark.integration
class TestVersionsCommand:
    def test_dotted_listing(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        backends = [
            CountingBackend("pyenv", current="3.12.1", counts={"pip": 42, "pipx": 5}),
            FakeBackend("chruby", available=False),
        ]

        with patch("toolkeeper.commands.versions.create_backends", return_value=backends):
            result = CliRunner().invoke(
                cli, ["versions"], env={"XDG_CONFIG_HOME": str(tmp_path / "xdg")}
            )

        assert result.exit_code == 0, result.output
        assert "Python .......... 3.12.1 (pip 42, pipx 5)" in result.output
        assert "Ruby ............ not installed" in result.output
