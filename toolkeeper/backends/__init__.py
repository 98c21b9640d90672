"""
Toolchain backend adapters.

:func:`create_backends` builds one adapter per supported family, in the
fixed order ``update`` drives them, sharing a single command runner,
Homebrew client and install-hint store.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Type

from toolkeeper.backends.base import Backend
from toolkeeper.backends.chruby import ChrubyBackend
from toolkeeper.backends.golang import GoBackend
from toolkeeper.backends.homebrew import HomebrewClient
from toolkeeper.backends.nvm import NvmBackend
from toolkeeper.backends.pyenv import PyenvBackend
from toolkeeper.backends.rustup import RustupBackend
from toolkeeper.backends.swiftly import SwiftlyBackend
from toolkeeper.config import ToolKeeperConfig
from toolkeeper.constants import BACKEND_ORDER
from toolkeeper.core.version_cache import InstallHints
from toolkeeper.utils.process import CommandRunner

BACKEND_CLASSES: Dict[str, Type[Backend]] = {
    cls.name: cls
    for cls in (
        PyenvBackend,
        NvmBackend,
        ChrubyBackend,
        GoBackend,
        RustupBackend,
        SwiftlyBackend,
    )
}


def create_backends(
    config: ToolKeeperConfig,
    runner: CommandRunner,
    *,
    only: Optional[Iterable[str]] = None,
    hints: Optional[InstallHints] = None,
) -> List[Backend]:
    """Instantiate backends in run order.

    Args:
        config: Loaded configuration.
        runner: Command runner shared by every backend.
        only: Restrict to these backend names (order is still fixed).
        hints: Install variant memory; defaults to one under the cache dir.
    """
    selected = set(only) if only else set(BACKEND_ORDER)
    brew = HomebrewClient(
        runner,
        lookup_timeout=config.lookup_timeout,
        install_timeout=config.command_timeout,
    )
    hints = hints if hints is not None else InstallHints(config.cache_dir)

    return [
        BACKEND_CLASSES[name](
            runner,
            config.backend(name),
            brew=brew,
            hints=hints,
            lookup_timeout=config.lookup_timeout,
            install_timeout=config.command_timeout,
        )
        for name in BACKEND_ORDER
        if name in selected
    ]


__all__ = [
    "Backend",
    "BACKEND_CLASSES",
    "ChrubyBackend",
    "GoBackend",
    "HomebrewClient",
    "NvmBackend",
    "PyenvBackend",
    "RustupBackend",
    "SwiftlyBackend",
    "create_backends",
]
