from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import FakeRunner, fail, ok
from toolkeeper.backends.chruby import _GEMS_SCRIPT, ChrubyBackend, ruby_requirement_to_pep440
from toolkeeper.models import ActionStatus, ActiveToolchainState, InstalledVersion


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    monkeypatch.setenv("HOME", str(path))
    return path


@pytest.fixture
def rubies(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "rubies"
    root.mkdir()
    monkeypatch.setenv("RUBIES_ROOT", str(root))
    return root


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def backend(runner: FakeRunner, home: Path, rubies: Path) -> ChrubyBackend:
    return ChrubyBackend(runner)


@pytest.mark.unit
class TestRubyRequirementTranslation:
    @pytest.mark.parametrize(
        "requirement, expected",
        [
            (">= 2.7.0", ">=2.7.0"),
            (">= 0", ">=0"),
            ("~> 3.1", ">=3.1,<4"),
            ("~> 3.1.2", ">=3.1.2,<3.2"),
            ("~> 3", ">=3,<4"),
            (">= 2.7, < 4", ">=2.7,<4"),
            ("= 3.2.0", "==3.2.0"),
            ("3.2.0", "==3.2.0"),
            ("!= 3.0.0", "!=3.0.0"),
            ("", ""),
        ],
    )
    def test_translation(self, requirement: str, expected: str) -> None:
        assert ruby_requirement_to_pep440(requirement) == expected

    def test_unrecognized_is_returned_unchanged(self) -> None:
        assert ruby_requirement_to_pep440("whatever 1") == "whatever 1"


@pytest.mark.unit
class TestChrubyDetection:
    def test_detect_from_ruby_version_file(
        self, backend: ChrubyBackend, home: Path, rubies: Path, state: ActiveToolchainState
    ) -> None:
        (rubies / "ruby-3.3.0").mkdir()
        (home / ".ruby-version").write_text("3.3.0\n", encoding="utf-8")

        current = backend.detect(state)

        assert current == InstalledVersion("3.3.0", "ruby-3.3.0", str(rubies / "ruby-3.3.0"))

    def test_detect_falls_back_to_ruby_on_path(
        self,
        backend: ChrubyBackend,
        runner: FakeRunner,
        home: Path,
        state: ActiveToolchainState,
    ) -> None:
        (home / ".ruby-version").write_text("ruby-3.1.0\n", encoding="utf-8")
        runner.executables["ruby"] = "/usr/bin/ruby"
        runner.on(["/usr/bin/ruby", "-e", "print RUBY_VERSION"], ok("2.6.10"))

        current = backend.detect(state)

        assert current == InstalledVersion("2.6.10", "ruby-2.6.10", "/usr/bin/ruby")

    def test_detect_nothing(self, backend: ChrubyBackend, state: ActiveToolchainState) -> None:
        assert backend.detect(state) is None

    def test_list_installed(
        self, backend: ChrubyBackend, rubies: Path, state: ActiveToolchainState
    ) -> None:
        for name in ("ruby-3.3.0", "ruby-3.2.3", "jruby-9.4.5.0"):
            (rubies / name).mkdir()
        (rubies / "ruby-notes").write_text("", encoding="utf-8")

        installed = backend.list_installed(state)

        assert [v.identifier for v in installed] == ["ruby-3.2.3", "ruby-3.3.0"]
        assert installed[0].version == "3.2.3"

    def test_resolve_latest(self, backend: ChrubyBackend, runner: FakeRunner) -> None:
        runner.on(
            ["ruby-install", "--list", "ruby"],
            ok("ruby:\n  3.1.4\n  3.2.3\n  3.3.0\n  3.4.0-preview1\n"),
        )

        assert backend.resolve_latest() == "3.3.0"


@pytest.mark.unit
class TestChrubyMutation:
    def test_install_uses_rubies_dir(
        self, backend: ChrubyBackend, runner: FakeRunner, rubies: Path, state: ActiveToolchainState
    ) -> None:
        args = ["ruby-install", "--rubies-dir", str(rubies), "--no-reinstall", "ruby", "3.3.1"]
        runner.on(args, ok())

        result = backend.install("ruby-3.3.1", state)

        assert result.status is ActionStatus.CHANGED
        assert result.via == "ruby-install"
        assert runner.ran(*args)

    def test_install_failure(
        self, backend: ChrubyBackend, runner: FakeRunner, rubies: Path, state: ActiveToolchainState
    ) -> None:
        runner.on(
            ["ruby-install", "--rubies-dir", str(rubies), "--no-reinstall", "ruby", "3.3.1"],
            fail("!!! Compiling ruby 3.3.1 failed!"),
        )

        result = backend.install("3.3.1", state)

        assert result.status is ActionStatus.FAILED
        assert "Compiling ruby 3.3.1 failed" in result.detail

    def test_activate_writes_ruby_version(
        self, backend: ChrubyBackend, home: Path, rubies: Path, state: ActiveToolchainState
    ) -> None:
        (rubies / "ruby-3.3.1").mkdir()

        result = backend.activate("3.3.1", state)

        assert result.status is ActionStatus.CHANGED
        assert (home / ".ruby-version").read_text(encoding="utf-8") == "ruby-3.3.1\n"
        assert result.state.selection("chruby") == "ruby-3.3.1"
        assert result.state.env["RUBY_ROOT"] == str(rubies / "ruby-3.3.1")

    def test_activate_missing_ruby(
        self, backend: ChrubyBackend, home: Path, state: ActiveToolchainState
    ) -> None:
        result = backend.activate("3.3.1", state)

        assert result.status is ActionStatus.FAILED
        assert not (home / ".ruby-version").exists()

    def test_uninstall_removes_directory(
        self, backend: ChrubyBackend, rubies: Path, state: ActiveToolchainState
    ) -> None:
        (rubies / "ruby-3.2.3" / "bin").mkdir(parents=True)

        result = backend.uninstall(InstalledVersion.from_identifier("ruby-3.2.3"), state)

        assert result.status is ActionStatus.CHANGED
        assert not (rubies / "ruby-3.2.3").exists()

    def test_uninstall_refuses_paths_outside_rubies(
        self, backend: ChrubyBackend, tmp_path: Path, state: ActiveToolchainState
    ) -> None:
        outside = tmp_path / "opt" / "ruby-2.7.8"
        outside.mkdir(parents=True)

        result = backend.uninstall(
            InstalledVersion.from_identifier("ruby-2.7.8", handle=str(outside)), state
        )

        assert result.status is ActionStatus.FAILED
        assert outside.is_dir()


@pytest.mark.unit
class TestChrubyGems:
    def test_installed_packages_translate_requirements(
        self,
        backend: ChrubyBackend,
        runner: FakeRunner,
        home: Path,
        rubies: Path,
        state: ActiveToolchainState,
    ) -> None:
        (rubies / "ruby-3.3.0").mkdir()
        (home / ".ruby-version").write_text("ruby-3.3.0", encoding="utf-8")
        ruby = str(rubies / "ruby-3.3.0" / "bin" / "ruby")
        gems = [
            {"name": "rails", "version": "7.1.3", "required_ruby_version": ">= 2.7.0"},
            {"name": "nokogiri", "version": "1.16.2", "required_ruby_version": "~> 3.0"},
        ]
        runner.on([ruby, "-e", _GEMS_SCRIPT], ok(json.dumps(gems)))

        packages = {p.name: p for p in backend.installed_packages(state)}

        assert packages["rails"].requires == ">=2.7.0"
        assert packages["nokogiri"].requires == ">=3.0,<4"
        assert backend.package_counts(state) == {"gems": 2}

    def test_package_counts_when_ruby_fails(
        self,
        backend: ChrubyBackend,
        runner: FakeRunner,
        home: Path,
        rubies: Path,
        state: ActiveToolchainState,
    ) -> None:
        (rubies / "ruby-3.3.0").mkdir()
        (home / ".ruby-version").write_text("ruby-3.3.0", encoding="utf-8")

        assert backend.package_counts(state) == {}


@pytest.mark.unit
class TestChrubyTools:
    @pytest.fixture
    def bin_dir(self, home: Path, rubies: Path) -> Path:
        path = rubies / "ruby-3.3.0" / "bin"
        path.mkdir(parents=True)
        for name in ("ruby", "gem", "rails", "bundle"):
            (path / name).write_text("#!/usr/bin/env ruby\n", encoding="utf-8")
        (home / ".ruby-version").write_text("ruby-3.3.0\n", encoding="utf-8")
        return path

    @staticmethod
    def gem_listing(*gems: tuple) -> str:
        return json.dumps(
            [
                {"name": name, "version": version, "executables": executables, "default": default}
                for name, version, executables, default in gems
            ]
        )

    def script(self, runner: FakeRunner, bin_dir: Path, before: str, after: str) -> None:
        runner.on([str(bin_dir / "ruby"), "-e", _GEMS_SCRIPT], [ok(before), ok(after)])
        runner.on([str(bin_dir / "rails"), "--version"], ok("Rails 7.1.4"))
        runner.on([str(bin_dir / "bundle"), "--version"], ok("Bundler version 2.5.6"))
        runner.on([str(bin_dir / "gem"), "update", "--silent", "--no-document"], ok())
        runner.on([str(bin_dir / "gem"), "cleanup"], ok("Clean up complete"))

    def test_refresh_updates_and_cleans(
        self, backend: ChrubyBackend, runner: FakeRunner, bin_dir: Path, state: ActiveToolchainState
    ) -> None:
        before = self.gem_listing(
            ("rails", "7.1.3", ["rails"], False),
            ("bundler", "2.5.6", ["bundle"], False),
            ("json", "2.7.1", [], True),
        )
        after = self.gem_listing(
            ("rails", "7.1.3", ["rails"], False),
            ("rails", "7.1.4", ["rails"], False),
            ("bundler", "2.5.6", ["bundle"], False),
            ("json", "2.7.1", [], True),
        )
        self.script(runner, bin_dir, before, after)

        report = backend.refresh_tools(state)

        assert (report.found, report.updated, report.failed) == (3, 1, 0)
        assert runner.ran(str(bin_dir / "gem"), "cleanup")
        assert not any("uninstall" in call for call in runner.calls)

    def test_broken_executable_is_reinstalled(
        self, backend: ChrubyBackend, runner: FakeRunner, bin_dir: Path, state: ActiveToolchainState
    ) -> None:
        listing = self.gem_listing(("rails", "7.1.3", ["rails"], False))
        self.script(runner, bin_dir, listing, listing)
        (bin_dir / "rails").unlink()
        gem = str(bin_dir / "gem")
        runner.on([gem, "uninstall", "rails", "--all", "--ignore-dependencies", "--force"], ok())
        runner.on([gem, "install", "rails", "--no-document"], ok())

        report = backend.refresh_tools(state)

        assert report.updated == 1
        assert runner.ran(gem, "install", "rails", "--no-document")

    def test_failures_are_recorded(
        self, backend: ChrubyBackend, runner: FakeRunner, bin_dir: Path, state: ActiveToolchainState
    ) -> None:
        listing = self.gem_listing(("rails", "7.1.3", ["rails"], False))
        self.script(runner, bin_dir, listing, listing)
        gem = str(bin_dir / "gem")
        runner.on([gem, "update", "--silent", "--no-document"], fail("ERROR: network"))
        runner.on([str(bin_dir / "rails"), "--version"], fail("LoadError"))
        runner.on([gem, "install", "rails", "--no-document"], fail("ERROR: no such gem"))

        report = backend.refresh_tools(state)

        assert report.failures == ["gem update", "rails"]

    def test_refresh_without_gem(
        self, backend: ChrubyBackend, home: Path, rubies: Path, state: ActiveToolchainState
    ) -> None:
        (rubies / "ruby-3.3.0" / "bin").mkdir(parents=True)
        (home / ".ruby-version").write_text("ruby-3.3.0\n", encoding="utf-8")

        assert backend.refresh_tools(state) is None
