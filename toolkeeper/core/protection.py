"""
Protection classification for toolchain installations.

An installation is *protected* when it belongs to the operating system
(``/usr/bin``, ``/System``, the Xcode command line tools...) or lives under
an operator-configured prefix. Protected installations are reported but
never passed to install, activate or uninstall.
"""

from __future__ import annotations

import os
from pathlib import PurePosixPath
from typing import Iterable, Optional, Tuple

from toolkeeper.constants import OS_PROTECTED_ROOTS


def _under(path: str, root: str) -> bool:
    candidate = PurePosixPath(os.path.normpath(path))
    base = PurePosixPath(os.path.normpath(root))
    return candidate == base or base in candidate.parents


class ProtectionClassifier:
    """Pure, path-based classifier.

    Args:
        extra_roots: Additional protected prefixes (e.g. a distro- or
            Homebrew-managed tree) from configuration.
        include_os_roots: Include the built-in OS roots.
    """

    def __init__(
        self,
        extra_roots: Iterable[str] = (),
        *,
        include_os_roots: bool = True,
    ) -> None:
        roots = list(OS_PROTECTED_ROOTS) if include_os_roots else []
        roots.extend(os.path.expanduser(root) for root in extra_roots)
        self.roots: Tuple[str, ...] = tuple(roots)

    def matching_root(self, path: Optional[str]) -> Optional[str]:
        """Return the protected root containing ``path``, if any.

        Both the literal path and its symlink-resolved real path are checked,
        so ``/usr/local/bin/python3 -> /System/...`` is caught.
        """
        if not path:
            return None

        literal = os.path.abspath(os.path.expanduser(path))
        candidates = [literal, os.path.realpath(literal)]
        for candidate in candidates:
            for root in self.roots:
                if _under(candidate, root):
                    return root
        return None

    def is_protected(self, path: Optional[str]) -> bool:
        return self.matching_root(path) is not None
