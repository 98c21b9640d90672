"""Configuration loader for toolkeeper.

Handles discovery, loading, parsing and validation of configuration files.
Supports two formats:

- ``toolkeeper.toml``: settings under the ``[toolkeeper]`` table
- ``pyproject.toml``: settings under the ``[tool.toolkeeper]`` table

Discovery order:

1. Explicit path from ``--config`` or ``TOOLKEEPER_CONFIG``
2. ``toolkeeper.toml`` in the current directory
3. ``pyproject.toml`` with a ``[tool.toolkeeper]`` section
4. ``$XDG_CONFIG_HOME/toolkeeper/toolkeeper.toml`` (``~/.config`` by default)

Configuration precedence: defaults < config file < environment < CLI args.

Example (``toolkeeper.toml``)::

    [toolkeeper]
    cache_ttl = 86400
    protected_paths = ["/opt/homebrew/Cellar"]

    [toolkeeper.backends.pyenv]
    keep = ["3.11.9"]

    [toolkeeper.backends.swiftly]
    snapshots = true

Environment variables (invalid values are ignored with a warning)::

    TOOLKEEPER_CLEAN_<BACKEND>=0        disable cleanup for a backend
    TOOLKEEPER_<BACKEND>_KEEP=a,b       keep-list for a backend
    TOOLKEEPER_<BACKEND>_CACHE_TTL=N    cache TTL (seconds) for a backend
    TOOLKEEPER_SWIFTLY_SNAPSHOTS=1      enable the Swift snapshot channel
    TOOLKEEPER_CACHE_DIR=/path          cache directory
    TOOLKEEPER_COMMAND_TIMEOUT=N        install timeout in seconds
"""

from __future__ import annotations

import os
import tomli as tomllib
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from toolkeeper.exceptions import ConfigError
from toolkeeper.utils.logger import get_logger
from toolkeeper.constants import (
    BACKEND_ORDER,
    CACHE_DIR_NAME,
    DEFAULT_CACHE_TTL,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_LOOKUP_TIMEOUT,
    DISABLED_VALUES,
    ENABLED_VALUES,
    ENV_PREFIX,
)

logger = get_logger("config")


def default_cache_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return ``$XDG_CACHE_HOME/toolkeeper`` or ``~/.cache/toolkeeper``."""
    env = os.environ if environ is None else environ
    base = env.get("XDG_CACHE_HOME") or str(Path.home() / ".cache")
    return Path(base).expanduser() / CACHE_DIR_NAME


@dataclass
class BackendSettings:
    """Per-backend options.

    Attributes:
        cleanup: Run the retention sweeper after a successful pass.
        keep: Versions the sweeper must never remove.
        cache_ttl: Override of the global cache TTL, in seconds.
        snapshots: Allow development snapshots as upgrade targets.
    """

    cleanup: bool = True
    keep: List[str] = field(default_factory=list)
    cache_ttl: Optional[int] = None
    snapshots: bool = False


@dataclass
class ToolKeeperConfig:
    """Parsed and validated toolkeeper configuration.

    All fields have defaults, so an empty or missing config file is valid.
    """

    cache_dir: Path = field(default_factory=default_cache_dir)
    cache_ttl: int = DEFAULT_CACHE_TTL
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT
    lookup_timeout: int = DEFAULT_LOOKUP_TIMEOUT
    protected_paths: List[str] = field(default_factory=list)
    refresh_tools: bool = True
    log_file: Optional[Path] = None
    backends: Dict[str, BackendSettings] = field(
        default_factory=lambda: {name: BackendSettings() for name in BACKEND_ORDER}
    )

    # Metadata (not a user-facing option)
    source_path: Optional[Path] = field(default=None, repr=False)

    def backend(self, name: str) -> BackendSettings:
        """Return the settings for ``name``, creating defaults on demand."""
        return self.backends.setdefault(name, BackendSettings())

    def ttl_for(self, name: str) -> int:
        override = self.backend(name).cache_ttl
        return self.cache_ttl if override is None else override

    def to_log_dict(self) -> Dict[str, Any]:
        """Return configuration as a dictionary for debug logging."""
        return {
            "cache_dir": str(self.cache_dir),
            "cache_ttl": self.cache_ttl,
            "command_timeout": self.command_timeout,
            "lookup_timeout": self.lookup_timeout,
            "protected_paths": list(self.protected_paths),
            "refresh_tools": self.refresh_tools,
            "log_file": str(self.log_file) if self.log_file else None,
            "backends": {
                name: {
                    "cleanup": s.cleanup,
                    "keep": list(s.keep),
                    "cache_ttl": s.cache_ttl,
                    "snapshots": s.snapshots,
                }
                for name, s in self.backends.items()
            },
        }


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _user_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base).expanduser() / CACHE_DIR_NAME / "toolkeeper.toml"


def discover_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file to load.

    Args:
        explicit_path: Explicit config path. If provided, must exist.

    Returns:
        Resolved path to config file, or ``None`` if not found.

    Raises:
        ConfigError: Explicit path provided but does not exist.
    """
    if explicit_path is not None:
        resolved = Path(explicit_path).expanduser().resolve()
        if not resolved.is_file():
            raise ConfigError(
                f"Configuration file not found: {explicit_path}",
                config_path=str(explicit_path),
            )
        logger.debug("Using explicit config: %s", resolved)
        return resolved

    cwd = Path.cwd()

    local_toml = cwd / "toolkeeper.toml"
    if local_toml.is_file():
        logger.debug("Found toolkeeper.toml: %s", local_toml)
        return local_toml

    pyproject_toml = cwd / "pyproject.toml"
    if pyproject_toml.is_file() and _pyproject_has_section(pyproject_toml):
        logger.debug("Found [tool.toolkeeper] in pyproject.toml: %s", pyproject_toml)
        return pyproject_toml

    user_toml = _user_config_path()
    if user_toml.is_file():
        logger.debug("Found user config: %s", user_toml)
        return user_toml

    logger.debug("No configuration file found")
    return None


def _pyproject_has_section(path: Path) -> bool:
    """Check if pyproject.toml contains a ``[tool.toolkeeper]`` section.

    Parse errors mean "no section" so an unrelated broken pyproject never
    stops a maintenance run.
    """
    try:
        raw = _read_toml(path)
    except ConfigError:
        return False
    tool = raw.get("tool", {})
    return isinstance(tool, dict) and "toolkeeper" in tool


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> ToolKeeperConfig:
    """Load configuration from file and environment.

    Args:
        config_path: Explicit path to a config file. If ``None``, uses
            auto-discovery (see :func:`discover_config_file`).
        environ: Environment to read overrides from (``os.environ`` by
            default).

    Returns:
        Validated :class:`ToolKeeperConfig`.

    Raises:
        ConfigError: File cannot be parsed, has unknown keys, or invalid values.
    """
    env = os.environ if environ is None else environ
    config = ToolKeeperConfig(cache_dir=default_cache_dir(env))

    resolved = discover_config_file(config_path)
    if resolved is not None:
        logger.info("Loading configuration from %s", resolved)
        raw = _read_toml(resolved)

        if resolved.name == "pyproject.toml":
            section = raw.get("tool", {}).get("toolkeeper", {})
        else:
            section = raw.get("toolkeeper", {})

        if section:
            _parse_section(section, config, config_path=str(resolved))
        else:
            logger.debug("Config file has no toolkeeper section, using defaults")
        config.source_path = resolved

    apply_environment(config, env)

    logger.debug("Loaded configuration: %s", config.to_log_dict())
    return config


def _read_toml(path: Path) -> Dict[str, Any]:
    """Read and parse a TOML file.

    Raises:
        ConfigError: File cannot be read or is not valid TOML.
    """
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Invalid TOML in {path.name}: {exc}",
            config_path=str(path),
        ) from exc
    except OSError as exc:
        raise ConfigError(
            f"Cannot read configuration file {path}: {exc}",
            config_path=str(path),
        ) from exc


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_KNOWN_TOP = {
    "cache_dir",
    "cache_ttl",
    "command_timeout",
    "lookup_timeout",
    "protected_paths",
    "refresh_tools",
    "log_file",
    "backends",
}

_KNOWN_BACKEND = {"cleanup", "keep", "cache_ttl", "snapshots"}


def _expect_bool(value: Any, option: str, config_path: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(
            f"{option} must be a boolean, got {type(value).__name__}",
            config_path=config_path,
            option=option,
        )
    return value


def _expect_seconds(value: Any, option: str, config_path: str) -> int:
    # bool is a subclass of int
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(
            f"{option} must be a non-negative integer (seconds), got {value!r}",
            config_path=config_path,
            option=option,
        )
    return value


def _expect_str_list(value: Any, option: str, config_path: str) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(
            f"{option} must be a list of strings",
            config_path=config_path,
            option=option,
        )
    return [v.strip() for v in value if v.strip()]


def _expect_path(value: Any, option: str, config_path: str) -> Path:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(
            f"{option} must be a non-empty path string",
            config_path=config_path,
            option=option,
        )
    return Path(value).expanduser()


def _parse_section(
    section: Dict[str, Any],
    config: ToolKeeperConfig,
    *,
    config_path: str,
) -> None:
    """Validate a ``[toolkeeper]`` table and apply it to ``config``.

    Raises:
        ConfigError: Unknown keys or incorrect types.
    """
    unknown_top = set(section.keys()) - _KNOWN_TOP
    if unknown_top:
        raise ConfigError(
            f"Unknown configuration keys: {', '.join(sorted(unknown_top))}",
            config_path=config_path,
        )

    if "cache_dir" in section:
        config.cache_dir = _expect_path(section["cache_dir"], "cache_dir", config_path)
    if "log_file" in section:
        config.log_file = _expect_path(section["log_file"], "log_file", config_path)
    for option in ("cache_ttl", "command_timeout", "lookup_timeout"):
        if option in section:
            setattr(config, option, _expect_seconds(section[option], option, config_path))
    if "protected_paths" in section:
        config.protected_paths = _expect_str_list(
            section["protected_paths"], "protected_paths", config_path
        )
    if "refresh_tools" in section:
        config.refresh_tools = _expect_bool(
            section["refresh_tools"], "refresh_tools", config_path
        )

    backends = section.get("backends", {})
    if not isinstance(backends, dict):
        raise ConfigError(
            "backends must be a table",
            config_path=config_path,
            option="backends",
        )

    unknown_backends = set(backends) - set(BACKEND_ORDER)
    if unknown_backends:
        raise ConfigError(
            f"Unknown backends: {', '.join(sorted(unknown_backends))}",
            config_path=config_path,
            option="backends",
        )

    for name, table in backends.items():
        _parse_backend(name, table, config.backend(name), config_path=config_path)


def _parse_backend(
    name: str,
    table: Any,
    settings: BackendSettings,
    *,
    config_path: str,
) -> None:
    prefix = f"backends.{name}"
    if not isinstance(table, dict):
        raise ConfigError(
            f"{prefix} must be a table",
            config_path=config_path,
            option=prefix,
        )

    unknown = set(table.keys()) - _KNOWN_BACKEND
    if unknown:
        raise ConfigError(
            f"Unknown keys in {prefix}: {', '.join(sorted(unknown))}",
            config_path=config_path,
            option=prefix,
        )

    if "cleanup" in table:
        settings.cleanup = _expect_bool(table["cleanup"], f"{prefix}.cleanup", config_path)
    if "keep" in table:
        settings.keep = _expect_str_list(table["keep"], f"{prefix}.keep", config_path)
    if "cache_ttl" in table:
        settings.cache_ttl = _expect_seconds(
            table["cache_ttl"], f"{prefix}.cache_ttl", config_path
        )
    if "snapshots" in table:
        settings.snapshots = _expect_bool(
            table["snapshots"], f"{prefix}.snapshots", config_path
        )


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def _env_name(backend: str) -> str:
    return backend.upper().replace("-", "_")


def parse_flag(value: str) -> Optional[bool]:
    """Interpret an on/off environment value; ``None`` if unrecognized."""
    lowered = value.strip().lower()
    if lowered in DISABLED_VALUES:
        return False
    if lowered in ENABLED_VALUES:
        return True
    return None


def _env_seconds(env: Mapping[str, str], name: str) -> Optional[int]:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        value = -1
    if value < 0:
        logger.warning("Ignoring %s=%r: expected a non-negative integer", name, raw)
        return None
    return value


def apply_environment(config: ToolKeeperConfig, env: Mapping[str, str]) -> None:
    """Overlay ``TOOLKEEPER_*`` environment variables onto ``config``.

    Invalid values keep the current setting and log a warning.
    """
    cache_dir = env.get(f"{ENV_PREFIX}CACHE_DIR", "").strip()
    if cache_dir:
        config.cache_dir = Path(cache_dir).expanduser()

    timeout = _env_seconds(env, f"{ENV_PREFIX}COMMAND_TIMEOUT")
    if timeout is not None:
        config.command_timeout = timeout

    for backend in BACKEND_ORDER:
        settings = config.backend(backend)
        upper = _env_name(backend)

        clean_var = f"{ENV_PREFIX}CLEAN_{upper}"
        if clean_var in env:
            flag = parse_flag(env[clean_var])
            if flag is None:
                logger.warning("Ignoring %s=%r: expected on/off", clean_var, env[clean_var])
            else:
                settings.cleanup = flag

        keep_var = f"{ENV_PREFIX}{upper}_KEEP"
        if keep_var in env:
            # merged with the file's list, never replacing it
            extra = [item.strip() for item in env[keep_var].split(",") if item.strip()]
            settings.keep = list(dict.fromkeys([*settings.keep, *extra]))

        ttl = _env_seconds(env, f"{ENV_PREFIX}{upper}_CACHE_TTL")
        if ttl is not None:
            settings.cache_ttl = ttl

        snapshot_var = f"{ENV_PREFIX}{upper}_SNAPSHOTS"
        if snapshot_var in env:
            flag = parse_flag(env[snapshot_var])
            if flag is None:
                logger.warning(
                    "Ignoring %s=%r: expected on/off", snapshot_var, env[snapshot_var]
                )
            else:
                settings.snapshots = flag
