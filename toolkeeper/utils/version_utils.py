"""
Version comparison utilities for toolkeeper.

Toolchain managers spell versions differently (``v20.11.0``, ``ruby-3.3.0``,
``go1.22.1``, ``main-snapshot-2024-08-01``). These helpers strip the
manager-specific prefixes and order versions with PEP 440 parsing from
``packaging``, so that:

- ``3.12`` and ``3.12.0`` compare equal;
- pre-releases and snapshots sort *below* their corresponding stable
  release;
- snapshots are only picked as "latest" when the caller opts in.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

from packaging.version import InvalidVersion, Version, parse

_PREFIX_RE = re.compile(r"^(?:v|ruby-|go|swift-|swift\s+|rustc\s+)", re.IGNORECASE)
_RELEASE_RE = re.compile(r"^(\d+(?:\.\d+)*)")
_SNAPSHOT_MARKERS = ("snapshot", "nightly", "main-", "trunk")


def normalize_version(value: str) -> str:
    """Strip whitespace and manager prefixes from a version identifier.

    Examples:
        >>> normalize_version("v20.11.0")
        '20.11.0'
        >>> normalize_version("ruby-3.3.0")
        '3.3.0'
        >>> normalize_version("go1.22.1")
        '1.22.1'
    """
    return _PREFIX_RE.sub("", value.strip(), count=1).strip()


def parse_version(value: Optional[str]) -> Optional[Version]:
    """Parse a version identifier, returning ``None`` when it is not PEP 440."""
    if not value:
        return None
    try:
        parsed = parse(normalize_version(value))
    except InvalidVersion:
        return None
    return parsed if isinstance(parsed, Version) else None


def is_snapshot(value: str) -> bool:
    """Return True for pre-releases, dev builds and development snapshots."""
    lowered = value.lower()
    if any(marker in lowered for marker in _SNAPSHOT_MARKERS):
        return True
    parsed = parse_version(value)
    return parsed is not None and (parsed.is_prerelease or parsed.is_devrelease)


def _release_tuple(value: str) -> Tuple[int, ...]:
    """Leading dotted-numeric release with trailing zeros removed."""
    parsed = parse_version(value)
    if parsed is not None:
        release = list(parsed.release)
    else:
        match = _RELEASE_RE.match(normalize_version(value))
        release = [int(part) for part in match.group(1).split(".")] if match else []

    while release and release[-1] == 0:
        release.pop()
    return tuple(release)


def version_sort_key(value: str) -> Tuple[Tuple[int, ...], int, str]:
    """Sort key ordering releases numerically, snapshots below stable."""
    stable = 0 if is_snapshot(value) else 1
    return (_release_tuple(value), stable, normalize_version(value))


def sort_versions(values: Iterable[str]) -> List[str]:
    """Return ``values`` sorted oldest first."""
    return sorted(values, key=version_sort_key)


def latest_of(
    values: Iterable[str],
    *,
    include_snapshots: bool = False,
) -> Optional[str]:
    """Return the newest version, ignoring snapshots unless opted in."""
    candidates = [
        value for value in values if value and (include_snapshots or not is_snapshot(value))
    ]
    if not candidates:
        return None
    return max(candidates, key=version_sort_key)


def versions_match(first: Optional[str], second: Optional[str]) -> bool:
    """Return True when two identifiers denote the same version."""
    if not first or not second:
        return False

    left, right = parse_version(first), parse_version(second)
    if left is not None and right is not None:
        return left == right
    return normalize_version(first) == normalize_version(second)


def is_newer(candidate: Optional[str], current: Optional[str]) -> bool:
    """Return True if ``candidate`` should replace ``current``.

    A missing ``current`` means anything is newer; a missing ``candidate``
    never is.
    """
    if not candidate:
        return False
    if not current:
        return True
    if versions_match(candidate, current):
        return False
    return version_sort_key(candidate) > version_sort_key(current)


def major_minor(value: str) -> Optional[str]:
    """Return ``"X.Y"`` for a version, or ``None`` if it has no minor part."""
    release = _release_tuple(value) + (0, 0)
    if not _release_tuple(value):
        return None
    return f"{release[0]}.{release[1]}"


def get_update_type(
    current_version: Optional[str],
    target_version: Optional[str],
) -> str:
    """Classify the change between two versions for the run summary.

    Returns:
        One of ``"new"``, ``"same"``, ``"downgrade"``, ``"major"``,
        ``"minor"``, ``"patch"``, ``"update"`` or ``"unknown"``.

    Examples:
        >>> get_update_type("3.11.8", "3.12.1")
        'minor'
        >>> get_update_type(None, "20.11.0")
        'new'
    """
    if target_version is None:
        return "unknown"
    if current_version is None:
        return "new"

    current = parse_version(current_version)
    target = parse_version(target_version)
    if current is None or target is None:
        return "unknown"

    if target == current:
        return "same"
    if target < current:
        return "downgrade"

    current_release = (tuple(current.release) + (0, 0, 0))[:3]
    target_release = (tuple(target.release) + (0, 0, 0))[:3]
    for index, label in enumerate(("major", "minor", "patch")):
        if current_release[index] != target_release[index]:
            return label

    # Pre-release -> release or build-metadata-only changes
    return "update"
