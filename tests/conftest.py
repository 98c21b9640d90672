from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import pytest

import toolkeeper.utils.logger as logger_module
from toolkeeper.backends.base import Backend
from toolkeeper.exceptions import CommandError
from toolkeeper.models import (
    ActionResult,
    ActiveToolchainState,
    InstalledPackage,
    InstalledVersion,
    ToolReport,
)
from toolkeeper.utils.logger import ROOT_LOGGER_NAME
from toolkeeper.utils.process import CommandResult

Response = Union[CommandResult, Exception, Callable[[Tuple[str, ...]], CommandResult]]


def ok(stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(args=(), returncode=0, stdout=stdout, stderr=stderr)


def fail(stderr: str = "boom", returncode: int = 1) -> CommandResult:
    return CommandResult(args=(), returncode=returncode, stdout="", stderr=stderr)


class FakeRunner:
    """Scripted stand-in for :class:`CommandRunner`.

    Responses are keyed by the exact argument tuple. A list of responses is
    consumed in order, the last one repeating. Unscripted commands exit 127.
    """

    def __init__(
        self,
        script: Optional[Mapping[Sequence[str], Union[Response, List[Response]]]] = None,
        executables: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.script: Dict[Tuple[str, ...], List[Response]] = {}
        for args, response in (script or {}).items():
            self.on(args, response)
        self.executables = dict(executables or {})
        self.calls: List[Tuple[str, ...]] = []
        self.envs: List[Optional[Mapping[str, str]]] = []

    def on(self, args: Sequence[str], response: Union[Response, List[Response]]) -> None:
        responses = response if isinstance(response, list) else [response]
        self.script[tuple(args)] = list(responses)

    def which(self, name: str, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
        return self.executables.get(name)

    def run(
        self,
        args: Sequence[str],
        *,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        input: Optional[str] = None,
        cwd: Optional[str] = None,
        check: bool = False,
    ) -> CommandResult:
        argv = tuple(str(arg) for arg in args)
        self.calls.append(argv)
        self.envs.append(env)

        responses = self.script.get(argv)
        if not responses:
            response: Response = CommandResult(argv, 127, "", f"unscripted: {' '.join(argv)}")
        elif len(responses) > 1:
            response = responses.pop(0)
        else:
            response = responses[0]

        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(argv)

        result = CommandResult(argv, response.returncode, response.stdout, response.stderr)
        if check and not result.ok:
            raise CommandError(
                f"Command failed with exit status {result.returncode}",
                args=argv,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    def ran(self, *args: str) -> bool:
        return tuple(args) in self.calls


class FakeBackend(Backend):
    """In-memory backend driven by plain attributes.

    ``detected`` is what :meth:`detect` reports before activation; after a
    successful :meth:`activate` it reports ``verify_as`` (the activated
    version unless overridden).
    """

    name = "fake"
    executable = "fake"
    gate_applicable = True
    supports_retention = True

    def __init__(
        self,
        name: str = "fake",
        *,
        current: Optional[str] = "1.0.0",
        handle: Optional[str] = "/home/user/.fake/versions/1.0.0",
        latest: Optional[str] = "1.0.0",
        installed: Sequence[str] = (),
        packages: Sequence[InstalledPackage] = (),
        available: bool = True,
        install_result: Optional[ActionResult] = None,
        activate_result: Optional[ActionResult] = None,
        verify_as: Optional[str] = None,
        gate_applicable: bool = True,
        supports_retention: bool = True,
        tools: Optional[ToolReport] = None,
    ) -> None:
        self.name = name
        self.gate_applicable = gate_applicable
        self.supports_retention = supports_retention
        super().__init__(runner=None)  # type: ignore[arg-type]
        self.available = available
        self.current = current
        self.handle = handle
        self.latest = latest
        self.installed = list(installed) or ([current] if current else [])
        self.packages = list(packages)
        self.install_result = install_result
        self.activate_result = activate_result
        self.verify_as = verify_as
        self.tools = tools
        self.lookups = 0
        self.actions: List[Tuple[str, str]] = []
        self.failing_uninstalls: Dict[str, Union[str, Exception]] = {}
        self.detect_error: Optional[Exception] = None

    def is_available(self) -> bool:
        return self.available

    def detect(self, state: ActiveToolchainState) -> Optional[InstalledVersion]:
        if self.detect_error is not None:
            raise self.detect_error
        if self.current is None:
            return None
        return InstalledVersion(self.current, handle=self.handle)

    def list_installed(self, state: ActiveToolchainState) -> List[InstalledVersion]:
        return [
            InstalledVersion(v, handle=f"/home/user/.fake/versions/{v}") for v in self.installed
        ]

    def resolve_latest(self) -> Optional[str]:
        self.lookups += 1
        return self.latest

    def install(self, version: str, state: ActiveToolchainState) -> ActionResult:
        self.actions.append(("install", version))
        if self.install_result is not None:
            return self.install_result
        if version not in self.installed:
            self.installed.append(version)
        return ActionResult.changed(via="fake install")

    def activate(self, version: str, state: ActiveToolchainState) -> ActionResult:
        self.actions.append(("activate", version))
        if self.activate_result is not None:
            return self.activate_result
        self.current = self.verify_as or version
        return ActionResult.changed(state=state.with_selection(self.name, version))

    def uninstall(self, version: InstalledVersion, state: ActiveToolchainState) -> ActionResult:
        self.actions.append(("uninstall", version.identifier))
        failure = self.failing_uninstalls.get(version.identifier)
        if isinstance(failure, Exception):
            raise failure
        if failure is not None:
            return ActionResult.failed(failure)
        self.installed.remove(version.identifier)
        return ActionResult.changed()

    def installed_packages(self, state: ActiveToolchainState) -> List[InstalledPackage]:
        return list(self.packages)

    def refresh_tools(self, state: ActiveToolchainState) -> Optional[ToolReport]:
        return self.tools


@pytest.fixture
def state() -> ActiveToolchainState:
    return ActiveToolchainState()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture(autouse=True)
def reset_toolkeeper_logging() -> Iterator[None]:
    """CLI invocations configure logging globally; undo it after each test."""
    yield
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(logging.NOTSET)
    root_logger.propagate = True
    logger_module._logging_configured = False
