"""
Custom exception hierarchy for versolver.

This module defines structured exception types used across versolver.
All exceptions inherit from :class:`VersolverError` and support optional
structured metadata via the ``details`` attribute to improve diagnostics
and logging.

Solver outcomes that are not a successful assignment are also modelled as
exceptions so that callers can handle each kind separately:

- :class:`ConstraintConflict`: a proof that no assignment exists
- :class:`SearchExhausted`: the iteration or time ceiling was hit
- :class:`SourceUnavailable` / :class:`ManifestNotFound`: source failures
- :class:`SolveCancelled`: the caller cancelled the solve
- :class:`InternalInconsistency`: a solver invariant was violated
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Mapping, MutableMapping, Optional, Sequence

from versolver.constants import (
    EXIT_DATA,
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_SOFTWARE,
    EXIT_TEMPFAIL,
    EXIT_UNAVAILABLE,
    EXIT_USAGE,
)

if TYPE_CHECKING:
    from versolver.models.incompatibility import Incompatibility


class VersolverError(Exception):
    """Base exception for all versolver errors.

    All versolver-specific exceptions should inherit from this class.
    It supports structured metadata via ``details`` for richer error
    reporting and debugging.

    Args:
        message: Human-readable error message.
        details: Optional structured metadata describing the error.
    """

    __slots__ = ("message", "details")

    def __init__(
        self,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.message: str = message
        # Internally normalize to a mutable dict
        self.details: MutableMapping[str, Any] = dict(details) if details else {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        formatted = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({formatted})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, details={dict(self.details)!r})"
        )


def _add_if(details: MutableMapping[str, Any], key: str, value: Any) -> None:
    """Add a key to ``details`` only if ``value`` is not ``None``."""
    if value is not None:
        details[key] = value


def _truncate(text: str, max_length: int = 200) -> str:
    """Truncate long text for safe logging or error reporting."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


# ---------------------------------------------------------------------------
# Input errors
# ---------------------------------------------------------------------------


class ParseError(VersolverError):
    """Raised when a manifest, constraint or lockfile cannot be parsed.

    Args:
        message: Error description.
        file_path: Path to the file being parsed.
        field: Manifest field (e.g. ``dependencies.foo``) that failed.
        value: Raw offending value.
    """

    __slots__ = ("file_path", "field", "value")

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        field: Optional[str] = None,
        value: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "file", file_path)
        _add_if(details, "field", field)
        _add_if(details, "value", _truncate(value) if value is not None else None)

        super().__init__(message, details)

        self.file_path = file_path
        self.field = field
        self.value = value


class ConfigError(VersolverError):
    """Raised when the configuration file is missing, malformed or invalid.

    Args:
        message: Error description.
        config_path: Path of the configuration file involved.
        option: Name of the offending option, if any.
    """

    __slots__ = ("config_path", "option")

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        option: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", config_path)
        _add_if(details, "option", option)

        super().__init__(message, details)

        self.config_path = config_path
        self.option = option


# ---------------------------------------------------------------------------
# Transport and filesystem errors
# ---------------------------------------------------------------------------


class NetworkError(VersolverError):
    """Raised when HTTP or network operations fail.

    Args:
        message: Error description.
        url: URL being accessed.
        status_code: HTTP status code, if available.
        response_body: Raw response body, truncated for safety.
    """

    __slots__ = ("url", "status_code", "response_body")

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "url", url)
        _add_if(details, "status_code", status_code)

        if response_body is not None:
            details["response"] = _truncate(response_body)

        super().__init__(message, details)

        self.url = url
        self.status_code = status_code
        self.response_body = response_body


class FileOperationError(VersolverError):
    """Raised when file system operations fail.

    Args:
        message: Error description.
        file_path: Path to the file involved.
        operation: Operation being performed (read/write).
        original_error: Original exception that triggered this error.
    """

    __slots__ = ("file_path", "operation", "original_error")

    def __init__(
        self,
        message: str,
        *,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "path", file_path)
        _add_if(details, "operation", operation)
        _add_if(
            details,
            "original_error",
            str(original_error) if original_error else None,
        )

        super().__init__(message, details)

        self.file_path = file_path
        self.operation = operation
        self.original_error = original_error


# ---------------------------------------------------------------------------
# Source errors
# ---------------------------------------------------------------------------


class SourceError(VersolverError):
    """Base class for failures reported by a package source.

    Source errors are fatal to the current solve and are never retried by
    the solver; retry policy belongs to the transport.

    Args:
        message: Error description.
        package_name: Name of the package being looked up.
        source: Human-readable description of the source.
    """

    __slots__ = ("package_name", "source")

    def __init__(
        self,
        message: str,
        *,
        package_name: Optional[str] = None,
        source: Optional[str] = None,
    ) -> None:
        details: MutableMapping[str, Any] = {}
        _add_if(details, "package", package_name)
        _add_if(details, "source", source)

        super().__init__(message, details)

        self.package_name = package_name
        self.source = source


class SourceUnavailable(SourceError):
    """Raised when a source cannot be reached (network, git, IO failure)."""


class ManifestNotFound(SourceError):
    """Raised when a package or its manifest does not exist in a source."""


# ---------------------------------------------------------------------------
# Solver outcomes
# ---------------------------------------------------------------------------


class ConstraintConflict(VersolverError):
    """Raised when version solving proves that no assignment exists.

    Args:
        incompatibility: The root incompatibility of the failed solve.
        explanation: Ordered explanation lines for display.
    """

    __slots__ = ("incompatibility", "explanation")

    def __init__(
        self,
        incompatibility: "Incompatibility",
        explanation: Sequence[str],
    ) -> None:
        super().__init__("Version solving failed.")
        self.incompatibility = incompatibility
        self.explanation: List[str] = list(explanation)

    def __str__(self) -> str:
        return "\n".join(self.explanation) or self.message


class SearchExhausted(VersolverError):
    """Raised when the solver hits its iteration or time ceiling.

    This is not a proof of unsatisfiability; the result is inconclusive.

    Args:
        message: Description of the ceiling that was hit.
        attempted_solutions: Number of solutions attempted so far.
        partial_explanation: Best-effort description of the search state.
    """

    __slots__ = ("attempted_solutions", "partial_explanation")

    def __init__(
        self,
        message: str,
        *,
        attempted_solutions: int = 0,
        partial_explanation: Sequence[str] = (),
    ) -> None:
        super().__init__(message, {"attempted_solutions": attempted_solutions})
        self.attempted_solutions = attempted_solutions
        self.partial_explanation: List[str] = list(partial_explanation)


class SolveCancelled(VersolverError):
    """Raised when the caller cancels a solve; no result is produced."""

    def __init__(self, message: str = "Version solving was cancelled.") -> None:
        super().__init__(message)


class InternalInconsistency(VersolverError):
    """Raised when a solver invariant is violated.

    This signals a programming error, never a problem with user input.
    """


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


def exit_code_for(error: BaseException) -> int:
    """Return the process exit code the CLI uses for *error*."""
    if isinstance(error, (SolveCancelled, KeyboardInterrupt)):
        return EXIT_INTERRUPTED
    if isinstance(error, ParseError):
        return EXIT_DATA
    if isinstance(error, ConfigError):
        return EXIT_USAGE
    if isinstance(error, (SourceError, NetworkError)):
        return EXIT_UNAVAILABLE
    if isinstance(error, InternalInconsistency):
        return EXIT_SOFTWARE
    if isinstance(error, SearchExhausted):
        return EXIT_TEMPFAIL
    return EXIT_FAILURE
