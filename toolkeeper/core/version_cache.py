"""
Persistent cache of "latest available version" lookups.

Asking a version manager for its newest release is slow (``pyenv install
--list``, ``ruby-install --list``, a network round trip for Go), so results
are memoized on disk, one file per cache key::

    <cache_dir>/<key>.latest     -> "3.12.1\\n", timestamp = file mtime

An entry is fresh while ``now - mtime <= ttl``. Failed or empty lookups never
overwrite an entry (no negative caching) and fall back to the stale value.

The same directory holds :class:`InstallHints`, a small JSON record per
backend of which install variant last succeeded.
"""

from __future__ import annotations

import os
import re
import json
import time
from pathlib import Path
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from toolkeeper.utils.logger import get_logger
from toolkeeper.utils.filesystem import atomic_write_text, read_text
from toolkeeper.constants import CACHE_FILE_SUFFIX, HINTS_FILE_SUFFIX
from toolkeeper.exceptions import (
    FileOperationError,
    OperationCancelledError,
    ToolKeeperError,
)

logger = get_logger("core.version_cache")

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def _check_key(key: str) -> str:
    if not _KEY_RE.match(key):
        raise ValueError(f"Invalid cache key: {key!r}")
    return key


@dataclass(frozen=True)
class CacheEntry:
    """A memoized lookup result."""

    key: str
    value: str
    timestamp: float
    age: float

    def is_fresh(self, ttl: float) -> bool:
        """Fresh while the age has not exceeded the TTL (boundary inclusive)."""
        return self.age <= ttl


class VersionCache:
    """File-backed memo of latest-version lookups.

    Args:
        cache_dir: Directory holding the ``*.latest`` files.
        clock: Time source returning epoch seconds; replaceable in tests.
    """

    def __init__(
        self,
        cache_dir: Path,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self._clock = clock

    def path_for(self, key: str) -> Path:
        return self.cache_dir / f"{_check_key(key)}{CACHE_FILE_SUFFIX}"

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry (fresh or stale) without resolving."""
        path = self.path_for(key)
        try:
            value = read_text(path)
            if not value:
                return None
            timestamp = path.stat().st_mtime
        except (FileOperationError, OSError) as exc:
            logger.warning("Ignoring unreadable cache entry %s: %s", path, exc)
            return None

        return CacheEntry(
            key=key,
            value=value.splitlines()[0].strip(),
            timestamp=timestamp,
            age=max(0.0, self._clock() - timestamp),
        )

    def store(self, key: str, value: str) -> None:
        """Write ``value`` stamped with the current time. Never raises."""
        path = self.path_for(key)
        now = self._clock()
        try:
            atomic_write_text(path, value.strip() + "\n")
            os.utime(path, (now, now))
        except (FileOperationError, OSError) as exc:
            logger.warning("Could not write cache entry %s: %s", path, exc)

    def invalidate(self, key: str) -> None:
        """Remove an entry, if present."""
        path = self.path_for(key)
        try:
            path.unlink()
            logger.debug("Invalidated cache entry %s", key)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove cache entry %s: %s", path, exc)

    def resolve_latest(
        self,
        key: str,
        lookup: Callable[[], Optional[str]],
        ttl: float,
        *,
        force: bool = False,
    ) -> Optional[str]:
        """Return the latest version for ``key``, consulting the cache first.

        Args:
            key: Cache key (one per backend or channel).
            lookup: Expensive resolver; may raise a toolkeeper error.
            ttl: Maximum trusted age in seconds.
            force: Ignore a fresh entry and run the lookup.

        Returns:
            The fresh cached value, the newly resolved value, the stale value
            when the lookup fails, or ``None`` when nothing is known.

        Raises:
            OperationCancelledError: The run was cancelled during the lookup.
        """
        entry = self.peek(key)
        if entry is not None and not force and entry.is_fresh(ttl):
            logger.debug("Cache hit for %s: %s (age %.0fs)", key, entry.value, entry.age)
            return entry.value

        try:
            value = lookup()
        except OperationCancelledError:
            raise
        except ToolKeeperError as exc:
            logger.warning("Latest-version lookup for %s failed: %s", key, exc)
            value = None

        if value:
            self.store(key, value)
            return value

        if entry is not None:
            logger.info("Using stale cached value for %s: %s", key, entry.value)
            return entry.value
        return None


class InstallHints:
    """Remembers which install variant last worked, per backend.

    Stored as ``<cache_dir>/<backend>.hints.json`` mapping a subject (a
    version series or a tool name) to the variant that succeeded.
    """

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = Path(cache_dir)
        self._loaded: Dict[str, Dict[str, str]] = {}

    def _path(self, backend: str) -> Path:
        return self.cache_dir / f"{_check_key(backend)}{HINTS_FILE_SUFFIX}"

    def _load(self, backend: str) -> Dict[str, str]:
        if backend in self._loaded:
            return self._loaded[backend]

        hints: Dict[str, str] = {}
        try:
            raw = read_text(self._path(backend))
            if raw:
                data = json.loads(raw)
                if isinstance(data, dict):
                    hints = {str(k): str(v) for k, v in data.items()}
        except (FileOperationError, ValueError) as exc:
            logger.warning("Ignoring unreadable install hints for %s: %s", backend, exc)

        self._loaded[backend] = hints
        return hints

    def get(self, backend: str, subject: str) -> Optional[str]:
        return self._load(backend).get(subject)

    def remember(self, backend: str, subject: str, variant: str) -> None:
        hints = self._load(backend)
        if hints.get(subject) == variant:
            return
        hints[subject] = variant
        try:
            atomic_write_text(
                self._path(backend),
                json.dumps(hints, indent=2, sort_keys=True) + "\n",
            )
        except FileOperationError as exc:
            logger.warning("Could not save install hints for %s: %s", backend, exc)

    def order(self, backend: str, subject: str, variants: Iterable[str]) -> List[str]:
        """Return ``variants`` with the remembered one moved to the front."""
        ordered = list(variants)
        preferred = self.get(backend, subject)
        if preferred in ordered:
            ordered.remove(preferred)
            ordered.insert(0, preferred)
        return ordered
