"""
Semantic version value type for versolver.

:class:`Version` wraps the ``semver`` library's parser and precedence rules
in an immutable, hashable value used throughout the constraint algebra and
the solver. Ordering follows SemVer 2.0.0 section 11:

- numeric fields compare numerically
- a pre-release sorts before the same release without one
- build metadata is ignored for ordering and equality
"""

from __future__ import annotations

from functools import total_ordering
from typing import Any, Optional

import semver


@total_ordering
class Version:
    """An immutable semantic version.

    Args:
        major: Major version number.
        minor: Minor version number.
        patch: Patch version number.
        prerelease: Dot-separated pre-release identifiers, if any.
        build: Dot-separated build metadata, if any.

    Example:
        >>> Version.parse("1.2.3-beta.1") < Version.parse("1.2.3")
        True
    """

    __slots__ = ("_info",)

    def __init__(
        self,
        major: int,
        minor: int = 0,
        patch: int = 0,
        prerelease: Optional[str] = None,
        build: Optional[str] = None,
    ) -> None:
        self._info = semver.Version(major, minor, patch, prerelease, build)

    @classmethod
    def parse(cls, text: str) -> "Version":
        """Parse a ``MAJOR.MINOR.PATCH[-PRE][+BUILD]`` string.

        Raises:
            ValueError: If *text* is not a valid semantic version.
        """
        info = semver.Version.parse(text.strip())
        return cls(info.major, info.minor, info.patch, info.prerelease, info.build)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def major(self) -> int:
        return self._info.major

    @property
    def minor(self) -> int:
        return self._info.minor

    @property
    def patch(self) -> int:
        return self._info.patch

    @property
    def prerelease(self) -> Optional[str]:
        return self._info.prerelease

    @property
    def build(self) -> Optional[str]:
        return self._info.build

    @property
    def is_prerelease(self) -> bool:
        return self._info.prerelease is not None

    # ------------------------------------------------------------------
    # Derived versions
    # ------------------------------------------------------------------

    @property
    def next_major(self) -> "Version":
        """The next major version; ``2.0.0-dev`` rounds up to ``2.0.0``."""
        if self.is_prerelease and self.minor == 0 and self.patch == 0:
            return Version(self.major, 0, 0)
        return Version(self.major + 1, 0, 0)

    @property
    def next_minor(self) -> "Version":
        """The next minor version; ``1.2.0-dev`` rounds up to ``1.2.0``."""
        if self.is_prerelease and self.patch == 0:
            return Version(self.major, self.minor, 0)
        return Version(self.major, self.minor + 1, 0)

    @property
    def next_patch(self) -> "Version":
        """The next patch version; ``1.2.3-dev`` rounds up to ``1.2.3``."""
        if self.is_prerelease:
            return Version(self.major, self.minor, self.patch)
        return Version(self.major, self.minor, self.patch + 1)

    @property
    def next_breaking(self) -> "Version":
        """Upper bound of a caret constraint starting at this version.

        The next major version, or the next minor version while the major
        version is ``0``. Pre-release identifiers do not round down, so
        ``1.0.0-beta`` breaks at ``2.0.0``.
        """
        if self.major == 0:
            return Version(0, self.minor + 1, 0)
        return Version(self.major + 1, 0, 0)

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def compare(self, other: "Version") -> int:
        """Return -1, 0 or 1 by SemVer precedence."""
        return self._info.compare(other._info)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) < 0

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.prerelease))

    def __str__(self) -> str:
        return str(self._info)

    def __repr__(self) -> str:
        return f"Version({str(self)!r})"
