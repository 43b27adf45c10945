"""
Centralized constants for versolver.

This module defines immutable configuration values used across versolver,
including network settings, file names, solver limits, exit codes and
logging formats. All values are intended to be treated as read-only.
"""

from typing import Final

# ---------------------------------------------------------------------------
# Project metadata
# ---------------------------------------------------------------------------

#: HTTP User-Agent template used for outbound requests.
USER_AGENT_TEMPLATE: Final[str] = "versolver/{version}"

# ---------------------------------------------------------------------------
# Registry endpoints
# ---------------------------------------------------------------------------

#: Registry used when a dependency does not name one.
DEFAULT_REGISTRY_URL: Final[str] = "https://registry.versolver.dev"

#: Listing endpoint of a hosted registry, relative to its base URL.
REGISTRY_PACKAGE_API: Final[str] = "{registry}/api/packages/{package}"

# ---------------------------------------------------------------------------
# HTTP configuration
# ---------------------------------------------------------------------------

#: Default network timeout in seconds.
DEFAULT_TIMEOUT: Final[int] = 30

#: Maximum number of retries for failed HTTP requests.
DEFAULT_MAX_RETRIES: Final[int] = 3

# ---------------------------------------------------------------------------
# Project files
# ---------------------------------------------------------------------------

#: Name of the manifest file at the root of every package.
MANIFEST_FILE: Final[str] = "package.toml"

#: Name of the lockfile written next to the root manifest.
LOCKFILE_NAME: Final[str] = "package.lock"

#: Name of the dedicated configuration file.
CONFIG_FILE: Final[str] = "versolver.toml"

#: Maximum allowed file size (in bytes) when reading manifests and lockfiles.
MAX_FILE_SIZE: Final[int] = 10 * 1024 * 1024  # 10 MB

# ---------------------------------------------------------------------------
# Solver defaults
# ---------------------------------------------------------------------------

#: Upper bound on propagate/decide iterations in a single solve.
DEFAULT_MAX_ITERATIONS: Final[int] = 10_000

#: Wall-clock ceiling for a single solve, in seconds.
DEFAULT_SOLVE_TIMEOUT: Final[float] = 300.0

#: Whether pre-release versions are admitted without a pre-release bound.
DEFAULT_ALLOW_PRERELEASES: Final[bool] = False

#: Upper bound on concurrent source fetches.
DEFAULT_CONCURRENT_LIMIT: Final[int] = 10

#: Candidate counts used to rank undecided packages saturate at this value,
#: so ranking reads only a prefix of each version listing.
CANDIDATE_COUNT_LIMIT: Final[int] = 10

# ---------------------------------------------------------------------------
# Exit codes (sysexits-style)
# ---------------------------------------------------------------------------

EXIT_SUCCESS: Final[int] = 0
EXIT_FAILURE: Final[int] = 1
EXIT_USAGE: Final[int] = 64
EXIT_DATA: Final[int] = 65
EXIT_UNAVAILABLE: Final[int] = 69
EXIT_SOFTWARE: Final[int] = 70
EXIT_TEMPFAIL: Final[int] = 75
EXIT_INTERRUPTED: Final[int] = 130

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

#: Timestamp format for verbose logging.
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Default log format (non-verbose).
LOG_DEFAULT_FORMAT: Final[str] = "%(levelname)s: %(message)s"

#: Verbose log format including timestamp and logger name.
LOG_VERBOSE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
