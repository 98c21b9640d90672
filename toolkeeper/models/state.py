"""
Active toolchain state for toolkeeper.

Instead of mutating the process environment as backends switch versions,
the orchestrator threads an immutable :class:`ActiveToolchainState` through
every backend call. ``activate`` returns an updated copy; subprocesses run
with :attr:`ActiveToolchainState.env` overlaid on the inherited environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional


def _freeze(mapping: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ActiveToolchainState:
    """Per-backend selections and environment overrides for one run.

    Attributes:
        selections: Backend name -> identifier of the selected version.
        env: Environment variables exported by activated toolchains
            (e.g. ``PIPX_DEFAULT_PYTHON``).
    """

    selections: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "selections", _freeze(self.selections))
        object.__setattr__(self, "env", _freeze(self.env))

    def selection(self, backend: str) -> Optional[str]:
        return self.selections.get(backend)

    def with_selection(self, backend: str, identifier: str) -> "ActiveToolchainState":
        """Return a copy with ``backend`` pointing at ``identifier``."""
        selections = dict(self.selections)
        selections[backend] = identifier
        return ActiveToolchainState(selections=selections, env=self.env)

    def with_env(self, **overrides: str) -> "ActiveToolchainState":
        """Return a copy with extra environment variables."""
        env = dict(self.env)
        env.update(overrides)
        return ActiveToolchainState(selections=self.selections, env=env)
