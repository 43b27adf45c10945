"""Configuration file loader for versolver.

Handles discovery, loading, parsing, and validation of configuration files.
Supports two formats:

- ``versolver.toml``: settings under the ``[versolver]`` table
- ``pyproject.toml``: settings under the ``[tool.versolver]`` table

Discovery order:

1. Explicit path from ``--config`` or ``VERSOLVER_CONFIG``
2. ``versolver.toml`` in the current directory
3. ``pyproject.toml`` with a ``[tool.versolver]`` section

Configuration precedence: defaults < config file < CLI args.

Example (``versolver.toml``)::

    [versolver]
    default_registry = "https://registry.example"
    max_iterations = 5000
    timeout = 60
    allow_prereleases = false
    concurrent_limit = 8
"""

from __future__ import annotations

import tomli as tomllib
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple
from dataclasses import dataclass, field

from versolver.exceptions import ConfigError
from versolver.utils.logger import get_logger
from versolver.constants import (
    CONFIG_FILE,
    DEFAULT_ALLOW_PRERELEASES,
    DEFAULT_CONCURRENT_LIMIT,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_REGISTRY_URL,
    DEFAULT_SOLVE_TIMEOUT,
)

logger = get_logger("config")


@dataclass
class VersolverConfig:
    """Parsed and validated versolver configuration.

    All fields have defaults, so empty config files are valid.

    Attributes:
        default_registry: Registry used by dependencies that name none.
        max_iterations: Solver iteration ceiling.
        timeout: Solver wall-clock ceiling in seconds.
        allow_prereleases: Admit pre-releases for every constraint.
        concurrent_limit: Maximum concurrent source fetches.
        source_path: Path to the loaded config file, or ``None`` when
            using defaults.
    """

    default_registry: str = DEFAULT_REGISTRY_URL
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    timeout: float = DEFAULT_SOLVE_TIMEOUT
    allow_prereleases: bool = DEFAULT_ALLOW_PRERELEASES
    concurrent_limit: int = DEFAULT_CONCURRENT_LIMIT

    # Metadata (not a user-facing option)
    source_path: Optional[Path] = field(default=None, repr=False)

    def to_log_dict(self) -> Dict[str, Any]:
        """Return configuration as a dictionary for debug logging."""
        return {
            "default_registry": self.default_registry,
            "max_iterations": self.max_iterations,
            "timeout": self.timeout,
            "allow_prereleases": self.allow_prereleases,
            "concurrent_limit": self.concurrent_limit,
        }


def discover_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file to load.

    Args:
        explicit_path: Explicit config path. If provided, must exist.

    Returns:
        Resolved path to the config file, or ``None`` if not found.

    Raises:
        ConfigError: Explicit path provided but does not exist.
    """
    if explicit_path is not None:
        resolved = explicit_path.resolve()
        if not resolved.is_file():
            raise ConfigError(
                f"Configuration file not found: {explicit_path}",
                config_path=str(explicit_path),
            )
        logger.debug("Using explicit config: %s", resolved)
        return resolved

    cwd = Path.cwd()

    versolver_toml = cwd / CONFIG_FILE
    if versolver_toml.is_file():
        logger.debug("Found %s: %s", CONFIG_FILE, versolver_toml)
        return versolver_toml

    pyproject_toml = cwd / "pyproject.toml"
    if pyproject_toml.is_file() and _pyproject_has_versolver_section(pyproject_toml):
        logger.debug("Found [tool.versolver] in pyproject.toml: %s", pyproject_toml)
        return pyproject_toml

    logger.debug("No configuration file found")
    return None


def _pyproject_has_versolver_section(path: Path) -> bool:
    # An unreadable pyproject.toml is somebody else's problem; skip it.
    try:
        raw = _read_toml(path)
    except ConfigError:
        return False
    tool = raw.get("tool", {})
    return isinstance(tool, dict) and "versolver" in tool


def load_config(config_path: Optional[Path] = None) -> VersolverConfig:
    """Load and validate versolver configuration.

    Args:
        config_path: Explicit path to a config file. If ``None``, uses
            auto-discovery (see :func:`discover_config_file`).

    Returns:
        Validated :class:`VersolverConfig` with values from file or defaults.

    Raises:
        ConfigError: File cannot be parsed, has unknown keys, or invalid values.
    """
    resolved = discover_config_file(config_path)

    if resolved is None:
        logger.debug("No config file found, using defaults")
        return VersolverConfig()

    logger.info("Loading configuration from %s", resolved)
    raw = _read_toml(resolved)

    if resolved.name == "pyproject.toml":
        section = raw.get("tool", {}).get("versolver", {})
    else:
        section = raw.get("versolver", {})

    if not isinstance(section, dict):
        raise ConfigError(
            "versolver configuration must be a table", config_path=str(resolved)
        )
    if not section:
        logger.debug("Config file found but no versolver section, using defaults")
        return VersolverConfig(source_path=resolved)

    config = _parse_section(section, config_path=str(resolved))
    config.source_path = resolved

    logger.debug("Loaded configuration: %s", config.to_log_dict())
    return config


def _read_toml(path: Path) -> Dict[str, Any]:
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


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _is_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(("http://", "https://"))


# option -> (validator, expected description)
_OPTIONS: Dict[str, Tuple[Callable[[Any], bool], str]] = {
    "default_registry": (_is_url, "an http(s) URL"),
    "max_iterations": (_is_positive_int, "a positive integer"),
    "timeout": (_is_positive_number, "a positive number"),
    "allow_prereleases": (lambda v: isinstance(v, bool), "a boolean"),
    "concurrent_limit": (_is_positive_int, "a positive integer"),
}


def _parse_section(section: Dict[str, Any], *, config_path: str) -> VersolverConfig:
    """Validate a ``[versolver]`` or ``[tool.versolver]`` table.

    Raises:
        ConfigError: Unknown keys or values of the wrong type.
    """
    unknown = set(section) - set(_OPTIONS)
    if unknown:
        raise ConfigError(
            f"Unknown configuration keys: {', '.join(sorted(unknown))}",
            config_path=config_path,
        )

    config = VersolverConfig()
    for option, (is_valid, expected) in _OPTIONS.items():
        if option not in section:
            continue
        value = section[option]
        if not is_valid(value):
            raise ConfigError(
                f"{option} must be {expected}, got {value!r}",
                config_path=config_path,
                option=option,
            )
        if option == "timeout":
            value = float(value)
        elif option == "default_registry":
            value = value.rstrip("/")
        setattr(config, option, value)

    return config
