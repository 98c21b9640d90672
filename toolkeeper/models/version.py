"""
Installed version and package models for toolkeeper.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from toolkeeper.utils.version_utils import normalize_version, version_sort_key


@dataclass(frozen=True)
class InstalledVersion:
    """One installed toolchain version.

    Attributes:
        version: Semantic version (``20.11.0``).
        identifier: The backend's own name for it (``v20.11.0``,
            ``ruby-3.3.0``, ``3.12.1``). Defaults to ``version``.
        handle: Installation path, used for protection checks and removal.
    """

    version: str
    identifier: str = ""
    handle: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.identifier:
            object.__setattr__(self, "identifier", self.version)

    @classmethod
    def from_identifier(
        cls,
        identifier: str,
        handle: Optional[str] = None,
    ) -> "InstalledVersion":
        """Build an instance whose version is the normalized identifier."""
        return cls(
            version=normalize_version(identifier),
            identifier=identifier,
            handle=handle,
        )

    def sort_key(self):
        return version_sort_key(self.version)

    def __str__(self) -> str:
        return self.identifier


@dataclass(frozen=True)
class InstalledPackage:
    """A package installed against a toolchain, as seen by the gate.

    Attributes:
        name: Package name.
        version: Installed package version, if known.
        requires: Interpreter constraint (PEP 440 specifier string), if any.
        isolated: True when the package runs in its own environment
            (pipx applications) and is unaffected by an interpreter upgrade.
    """

    name: str
    version: Optional[str] = None
    requires: Optional[str] = None
    isolated: bool = False
