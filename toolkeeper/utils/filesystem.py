"""
Filesystem utilities for toolkeeper.

Safe helpers for the little state toolkeeper persists (cache entries,
install hints, ``~/.ruby-version``) and for directory removal during
retention sweeps. All filesystem errors are normalized to
``FileOperationError``.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from toolkeeper.utils.logger import get_logger
from toolkeeper.exceptions import FileOperationError

logger = get_logger("filesystem")

PathLike = Union[str, Path]


def atomic_write_text(file_path: PathLike, content: str) -> None:
    """Atomically write text to a file using a temporary file + replace.

    Raises:
        FileOperationError: The directory or file could not be written.
    """
    target = Path(file_path)
    temp_path: Optional[Path] = None

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(target.parent),
            delete=False,
            prefix=f".{target.name}.",
            suffix=".tmp",
        ) as tmp:
            temp_path = Path(tmp.name)
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())

        temp_path.replace(target)

    except OSError as exc:
        if temp_path is not None and temp_path.exists():
            try:
                temp_path.unlink()
            except OSError as cleanup_exc:
                logger.warning(
                    "Failed to clean up temporary file %s: %s",
                    temp_path,
                    cleanup_exc,
                )

        raise FileOperationError(
            f"Atomic write failed: {exc}",
            file_path=str(target),
            operation="write",
            original_error=exc,
        ) from exc


def read_text(file_path: PathLike) -> Optional[str]:
    """Return the stripped content of a small text file, or ``None`` if absent.

    Raises:
        FileOperationError: The file exists but cannot be read.
    """
    path = Path(file_path)
    if not path.is_file():
        return None

    try:
        return path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as exc:
        raise FileOperationError(
            f"Failed to read file: {exc}",
            file_path=str(path),
            operation="read",
            original_error=exc,
        ) from exc


def real_path(path: PathLike) -> Path:
    """Expand ``~`` and resolve symlinks without requiring the path to exist."""
    return Path(path).expanduser().resolve(strict=False)


def is_within(path: PathLike, base_dir: PathLike) -> bool:
    """Return True if ``path`` equals or lies under ``base_dir``."""
    try:
        Path(path).relative_to(Path(base_dir))
    except ValueError:
        return False
    return True


def validate_path(
    path: PathLike,
    *,
    base_dir: Optional[PathLike] = None,
) -> Path:
    """Resolve ``path`` and, if ``base_dir`` is given, require it to stay inside.

    Raises:
        FileOperationError: The resolved path escapes ``base_dir``.
    """
    resolved = real_path(path)

    if base_dir is not None and not is_within(resolved, real_path(base_dir)):
        raise FileOperationError(
            f"Path outside allowed base directory: {resolved}",
            file_path=str(path),
            operation="validate",
        )

    return resolved


def remove_tree(path: PathLike, *, base_dir: PathLike) -> None:
    """Delete a directory tree that must live strictly under ``base_dir``.

    Symlinked entries are unlinked rather than followed.

    Raises:
        FileOperationError: The path escapes ``base_dir``, is ``base_dir``
            itself, or cannot be removed.
    """
    target = Path(path).expanduser()
    base = real_path(base_dir)

    validate_path(target.parent, base_dir=base)
    if real_path(target) == base:
        raise FileOperationError(
            "Refusing to remove the base directory itself",
            file_path=str(target),
            operation="delete",
        )

    try:
        if target.is_symlink():
            target.unlink()
        else:
            shutil.rmtree(target)
        logger.debug("Removed %s", target)
    except OSError as exc:
        raise FileOperationError(
            f"Failed to remove directory: {exc}",
            file_path=str(target),
            operation="delete",
            original_error=exc,
        ) from exc
