"""
Subprocess execution for toolkeeper.

Every external command (version managers, Homebrew, ``go``, ``cargo``...)
goes through :class:`CommandRunner`, which enforces an explicit timeout,
merges the active toolchain's environment overlay and polls a
:class:`CancelToken` so that a SIGTERM stops the run promptly.
"""

from __future__ import annotations

import os
import time
import shutil
import threading
import subprocess
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

from toolkeeper.utils.logger import get_logger
from toolkeeper.constants import CANCEL_POLL_INTERVAL, DEFAULT_COMMAND_TIMEOUT
from toolkeeper.exceptions import (
    BackendUnavailableError,
    CommandError,
    CommandTimeoutError,
    OperationCancelledError,
)

logger = get_logger("process")


class CancelToken:
    """Cooperative cancellation flag shared by one ``update`` run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Run cancelled")


@dataclass(frozen=True)
class CommandResult:
    """Captured result of a finished command."""

    args: Tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def lines(self) -> List[str]:
        """Non-empty, stripped lines of standard output."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


class CommandRunner:
    """Runs external commands with timeouts, env overlays and cancellation.

    Args:
        cancel_token: Token polled while commands run.
        default_timeout: Timeout used when ``run`` is not given one.
        poll_interval: How often (seconds) the token is checked.
    """

    def __init__(
        self,
        *,
        cancel_token: Optional[CancelToken] = None,
        default_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        poll_interval: float = CANCEL_POLL_INTERVAL,
    ) -> None:
        self.cancel_token = cancel_token or CancelToken()
        self.default_timeout = default_timeout
        self.poll_interval = poll_interval

    def which(
        self,
        name: str,
        env: Optional[Mapping[str, str]] = None,
    ) -> Optional[str]:
        """Locate an executable on ``PATH`` (honouring an env overlay)."""
        merged = self._merge_env(env)
        return shutil.which(name, path=merged.get("PATH"))

    @staticmethod
    def _merge_env(env: Optional[Mapping[str, str]]) -> dict:
        merged = dict(os.environ)
        if env:
            merged.update(env)
        return merged

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
        """Run a command to completion and capture its output.

        Args:
            args: Command line.
            timeout: Seconds before the process is killed.
            env: Variables overlaid on the current environment.
            input: Text sent to standard input.
            cwd: Working directory.
            check: Raise :class:`CommandError` on a non-zero exit status.

        Raises:
            BackendUnavailableError: The executable does not exist.
            CommandTimeoutError: The timeout elapsed; the process was killed.
            OperationCancelledError: The cancel token fired.
            CommandError: Non-zero exit with ``check=True``, or the process
                could not be started.
        """
        argv = tuple(str(arg) for arg in args)
        limit = self.default_timeout if timeout is None else timeout
        self.cancel_token.raise_if_cancelled()

        logger.debug("Running: %s (timeout=%ss)", " ".join(argv), limit)

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=self._merge_env(env),
                cwd=cwd,
            )
        except FileNotFoundError as exc:
            raise BackendUnavailableError(
                f"Executable not found: {argv[0]}",
                executable=argv[0],
            ) from exc
        except OSError as exc:
            raise CommandError(
                f"Failed to start {argv[0]}: {exc}",
                args=argv,
            ) from exc

        stdout, stderr = self._wait(process, argv, limit, input)

        result = CommandResult(
            args=argv,
            returncode=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
        )
        logger.debug("Exit status %d: %s", result.returncode, " ".join(argv))

        if check and not result.ok:
            raise CommandError(
                f"Command failed with exit status {result.returncode}",
                args=argv,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    def _wait(
        self,
        process: "subprocess.Popen[str]",
        argv: Tuple[str, ...],
        limit: float,
        input: Optional[str],
    ) -> Tuple[str, str]:
        deadline = time.monotonic() + limit
        pending_input = input

        while True:
            remaining = deadline - time.monotonic()
            try:
                return process.communicate(
                    input=pending_input,
                    timeout=max(0.0, min(self.poll_interval, remaining)),
                )
            except subprocess.TimeoutExpired:
                # communicate() refuses input on a retry
                pending_input = None

            if self.cancel_token.cancelled:
                self._kill(process)
                raise OperationCancelledError(
                    f"Cancelled while running {argv[0]}",
                    {"command": " ".join(argv)},
                )

            if time.monotonic() >= deadline:
                self._kill(process)
                raise CommandTimeoutError(
                    f"Command timed out after {limit:g}s",
                    args=argv,
                    timeout=limit,
                )

    @staticmethod
    def _kill(process: "subprocess.Popen[str]") -> None:
        process.kill()
        try:
            process.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning("Process %d did not exit after kill", process.pid)
