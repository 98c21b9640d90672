from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from conftest import FakeRunner, fail, ok
from toolkeeper.backends.golang import GoBackend, is_stdlib_module
from toolkeeper.backends.homebrew import HomebrewClient
from toolkeeper.constants import GO_RELEASES_URL
from toolkeeper.core.version_cache import InstallHints
from toolkeeper.exceptions import NetworkError
from toolkeeper.models import ActionStatus, ActiveToolchainState


def http_factory(payload):
    client = MagicMock()
    client.__enter__.return_value = client
    client.get_json.return_value = payload
    return MagicMock(return_value=client), client


def module_info(binary: Path, module: str, version: str) -> str:
    return f"{binary}: go1.22.1\n\tpath\t{module}\n\tmod\t{module}\t{version}\th1:abc=\n"


def make_tool(directory: Path, name: str) -> Path:
    path = directory / name
    path.write_text("#!/bin/sh\n", encoding="utf-8")
    os.chmod(path, 0o755)
    return path


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner(executables={"go": "/opt/homebrew/bin/go"})


@pytest.mark.unit
class TestGoDetection:
    def test_detect(self, runner: FakeRunner, state: ActiveToolchainState) -> None:
        runner.on(["go", "version"], ok("go version go1.22.1 darwin/arm64\n"))
        runner.on(["go", "env", "GOROOT"], ok("/opt/homebrew/Cellar/go/1.22.1/libexec\n"))

        current = GoBackend(runner).detect(state)

        assert current.version == "1.22.1"
        assert current.identifier == "go1.22.1"
        assert current.handle == "/opt/homebrew/Cellar/go/1.22.1/libexec"

    def test_detect_unparseable(self, runner: FakeRunner, state: ActiveToolchainState) -> None:
        runner.on(["go", "version"], ok("go version devel +abc123 darwin/arm64"))

        assert GoBackend(runner).detect(state) is None

    def test_resolve_latest_picks_first_stable(self, runner: FakeRunner) -> None:
        factory, client = http_factory(
            [
                {"version": "go1.23rc1", "stable": False},
                {"version": "go1.22.1", "stable": True},
                {"version": "go1.21.8", "stable": True},
            ]
        )

        assert GoBackend(runner, http_factory=factory).resolve_latest() == "1.22.1"
        client.get_json.assert_called_once_with(GO_RELEASES_URL)
        client.__exit__.assert_called_once()

    def test_resolve_latest_rejects_unexpected_feed(self, runner: FakeRunner) -> None:
        factory, _ = http_factory({"error": "rate limited"})

        with pytest.raises(NetworkError):
            GoBackend(runner, http_factory=factory).resolve_latest()

    def test_network_errors_propagate(self, runner: FakeRunner) -> None:
        factory, client = http_factory(None)
        client.get_json.side_effect = NetworkError("offline", url=GO_RELEASES_URL)

        with pytest.raises(NetworkError):
            GoBackend(runner, http_factory=factory).resolve_latest()


@pytest.mark.unit
class TestGoInstall:
    def brewed(self, runner: FakeRunner) -> GoBackend:
        runner.executables["brew"] = "brew"
        return GoBackend(runner, brew=HomebrewClient(runner))

    def test_not_homebrew_managed(self, runner: FakeRunner, state: ActiveToolchainState) -> None:
        result = GoBackend(runner).install("1.22.1", state)

        assert result.status is ActionStatus.FAILED
        assert "https://go.dev/dl/" in result.detail

    def test_brew_upgrade(self, runner: FakeRunner, state: ActiveToolchainState) -> None:
        backend = self.brewed(runner)
        runner.on(
            ["brew", "list", "--versions", "go"],
            [ok("go 1.22.0"), ok("go 1.22.0"), ok("go 1.22.1")],
        )
        runner.on(["brew", "upgrade", "go"], ok())

        result = backend.install("1.22.1", state)

        assert result.status is ActionStatus.CHANGED
        assert result.via == "homebrew:go"

    def test_formula_behind_go_dev(self, runner: FakeRunner, state: ActiveToolchainState) -> None:
        backend = self.brewed(runner)
        runner.on(["brew", "list", "--versions", "go"], ok("go 1.22.0"))
        runner.on(["brew", "upgrade", "go"], ok())

        result = backend.install("1.22.1", state)

        assert result.status is ActionStatus.FAILED
        assert "has not caught up" in result.detail

    def test_brew_failure_is_returned(
        self, runner: FakeRunner, state: ActiveToolchainState
    ) -> None:
        backend = self.brewed(runner)
        runner.on(["brew", "list", "--versions", "go"], ok("go 1.22.0"))
        runner.on(["brew", "upgrade", "go"], fail("Error: cannot lock"))

        result = backend.install("1.22.1", state)

        assert result.detail == "brew upgrade go failed: Error: cannot lock"

    def test_activate_is_a_no_op(self, runner: FakeRunner, state: ActiveToolchainState) -> None:
        result = GoBackend(runner).activate("1.22.1", state)

        assert result.status is ActionStatus.UNCHANGED
        assert result.state.selection("go") == "go1.22.1"
        assert runner.calls == []


@pytest.mark.unit
class TestGoTools:
    @pytest.mark.parametrize(
        "module, expected",
        [("main", True), ("std", True), ("cmd/go", True), ("golang.org/x/tools/gopls", False)],
    )
    def test_is_stdlib_module(self, module: str, expected: bool) -> None:
        assert is_stdlib_module(module) is expected

    def test_recover_module(
        self, runner: FakeRunner, tmp_path: Path, state: ActiveToolchainState
    ) -> None:
        binary = tmp_path / "gopls"
        runner.on(
            ["go", "version", "-m", str(binary)],
            ok(module_info(binary, "golang.org/x/tools/gopls", "v0.15.1")),
        )

        recovered = GoBackend(runner).recover_module(binary, state)

        assert recovered == ("golang.org/x/tools/gopls", "v0.15.1")

    def test_install_variants_prefer_remembered(self, runner: FakeRunner, cache_dir: Path) -> None:
        hints = InstallHints(cache_dir)
        hints.remember("go", "stringer", "golang.org/x/tools/cmd/stringer@latest")
        backend = GoBackend(runner, hints=hints)

        variants = backend.install_variants("golang.org/x/tools", "stringer")

        assert variants[0] == "golang.org/x/tools/cmd/stringer@latest"
        assert len(variants) == 3

    def test_refresh_tools(
        self,
        runner: FakeRunner,
        tmp_path: Path,
        cache_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
        state: ActiveToolchainState,
    ) -> None:
        monkeypatch.setenv("HOME", str(tmp_path / "home"))
        bin_dir = tmp_path / "gobin"
        bin_dir.mkdir()
        resolved = bin_dir.resolve()
        for name in ("gopls", "broken", "stringer", "go"):
            make_tool(bin_dir, name)

        runner.on(["go", "env", "GOBIN"], ok(str(bin_dir)))
        gopls = resolved / "gopls"
        runner.on(
            ["go", "version", "-m", str(gopls)],
            [
                ok(module_info(gopls, "golang.org/x/tools/gopls", "v0.15.0")),
                ok(module_info(gopls, "golang.org/x/tools/gopls", "v0.15.1")),
            ],
        )
        runner.on(["go", "install", "golang.org/x/tools/gopls@latest"], ok())
        broken = resolved / "broken"
        runner.on(
            ["go", "version", "-m", str(broken)],
            ok(module_info(broken, "example.com/gone", "v1.0.0")),
        )
        hints = InstallHints(cache_dir)
        backend = GoBackend(runner, hints=hints)

        report = backend.refresh_tools(state)

        assert (report.found, report.updated, report.failed, report.skipped) == (2, 1, 1, 1)
        assert report.failures == ["broken"]
        assert hints.get("go", "gopls") == "golang.org/x/tools/gopls@latest"
        assert backend.package_counts(state) == {"tools": 3}
