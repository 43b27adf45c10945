"""
Version constraint algebra for versolver.

A constraint is a set of versions represented as a sorted list of
disjoint, non-adjacent ranges. Three concrete shapes exist:

- :class:`EmptyConstraint`: allows nothing
- :class:`VersionRange`: one interval, or anything when unbounded
- :class:`VersionUnion`: two or more intervals

Every operation is total: combining constraints never raises, and an empty
result is reported as :data:`EMPTY` rather than as an error. Results are
always normalized, so structural equality is set equality.

Typical usage::

    >>> caret = VersionRange.caret(Version.parse("1.2.0"))
    >>> str(caret)
    '^1.2.0'
    >>> caret.intersect(VersionRange(max=Version.parse("1.5.0"))).allows(
    ...     Version.parse("1.4.0"))
    True
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Tuple

from versolver.models.version import Version

__all__ = [
    "VersionConstraint",
    "EmptyConstraint",
    "VersionRange",
    "VersionUnion",
    "EMPTY",
    "ANY",
]


class VersionConstraint(ABC):
    """Base class of every version constraint."""

    __slots__ = ()

    @property
    @abstractmethod
    def ranges(self) -> Tuple["VersionRange", ...]:
        """Sorted, disjoint, non-adjacent ranges making up this constraint."""

    @property
    def is_empty(self) -> bool:
        return not self.ranges

    @property
    def is_any(self) -> bool:
        return False

    def allows(self, version: Version) -> bool:
        """Return ``True`` if *version* is a member of this constraint."""
        return any(r.allows(version) for r in self.ranges)

    def admits(self, version: Version, *, include_prereleases: bool = False) -> bool:
        """Like :meth:`allows`, with the pre-release policy applied.

        A pre-release version is admitted only when *include_prereleases*
        is set or one of this constraint's own bounds is a pre-release.
        """
        if not self.allows(version):
            return False
        if not version.is_prerelease or include_prereleases:
            return True
        return self.has_prerelease_bound

    @property
    def has_prerelease_bound(self) -> bool:
        for r in self.ranges:
            if r.min is not None and r.min.is_prerelease:
                return True
            if r.max is not None and r.max.is_prerelease:
                return True
        return False

    def allows_all(self, other: "VersionConstraint") -> bool:
        return other.difference(self).is_empty

    def allows_any(self, other: "VersionConstraint") -> bool:
        return not self.intersect(other).is_empty

    def intersect(self, other: "VersionConstraint") -> "VersionConstraint":
        """Return the tightest constraint satisfied by both operands."""
        left, right = self.ranges, other.ranges
        result: List[VersionRange] = []
        i = j = 0
        # Both lists are sorted; walk them like a merge.
        while i < len(left) and j < len(right):
            overlap = left[i]._intersect_range(right[j])
            if overlap is not None:
                result.append(overlap)
            if _upper_key(left[i]) < _upper_key(right[j]):
                i += 1
            else:
                j += 1
        return _from_ranges(result)

    def union(self, other: "VersionConstraint") -> "VersionConstraint":
        """Return the loosest constraint satisfied by either operand."""
        return _from_ranges(_merge(list(self.ranges) + list(other.ranges)))

    def difference(self, other: "VersionConstraint") -> "VersionConstraint":
        """Return the versions allowed by this constraint but not *other*."""
        return self.intersect(_complement(other.ranges))

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, VersionConstraint):
            return NotImplemented
        return self.ranges == other.ranges

    def __hash__(self) -> int:
        return hash(self.ranges)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({str(self)!r})"


class EmptyConstraint(VersionConstraint):
    """The constraint that allows no versions."""

    __slots__ = ()

    @property
    def ranges(self) -> Tuple["VersionRange", ...]:
        return ()

    def __str__(self) -> str:
        return "<empty>"


class VersionRange(VersionConstraint):
    """A single interval of versions.

    Args:
        min: Lower bound, or ``None`` for unbounded.
        max: Upper bound, or ``None`` for unbounded.
        include_min: Whether *min* itself is allowed.
        include_max: Whether *max* itself is allowed.
    """

    __slots__ = ("min", "max", "include_min", "include_max")

    def __init__(
        self,
        min: Optional[Version] = None,
        max: Optional[Version] = None,
        include_min: bool = False,
        include_max: bool = False,
    ) -> None:
        self.min = min
        self.max = max
        self.include_min = include_min and min is not None
        self.include_max = include_max and max is not None

    @classmethod
    def exact(cls, version: Version) -> "VersionRange":
        return cls(version, version, include_min=True, include_max=True)

    @classmethod
    def caret(cls, version: Version) -> "VersionRange":
        """``^version``: at least *version*, below its next breaking version."""
        return cls(version, version.next_breaking, include_min=True)

    @property
    def ranges(self) -> Tuple["VersionRange", ...]:
        return () if self._is_degenerate() else (self,)

    @property
    def is_any(self) -> bool:
        return self.min is None and self.max is None

    def allows(self, version: Version) -> bool:
        if self.min is not None:
            if version < self.min:
                return False
            if not self.include_min and version == self.min:
                return False
        if self.max is not None:
            if version > self.max:
                return False
            if not self.include_max and version == self.max:
                return False
        return True

    def _is_degenerate(self) -> bool:
        if self.min is None or self.max is None:
            return False
        if self.min > self.max:
            return True
        return self.min == self.max and not (self.include_min and self.include_max)

    def _intersect_range(self, other: "VersionRange") -> Optional["VersionRange"]:
        lower = self if _lower_key(self) >= _lower_key(other) else other
        upper = self if _upper_key(self) <= _upper_key(other) else other
        candidate = VersionRange(
            lower.min, upper.max, lower.include_min, upper.include_max
        )
        return None if candidate._is_degenerate() else candidate

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, VersionConstraint):
            return NotImplemented
        if not isinstance(other, VersionRange):
            return self.ranges == other.ranges
        if self._is_degenerate() or other._is_degenerate():
            return self._is_degenerate() and other._is_degenerate()
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(()) if self._is_degenerate() else hash(self._key())

    def _key(self) -> Tuple[Any, ...]:
        return (self.min, self.max, self.include_min, self.include_max)

    @property
    def is_exact(self) -> bool:
        return (
            self.min is not None
            and self.min == self.max
            and self.include_min
            and self.include_max
        )

    def __str__(self) -> str:
        if self._is_degenerate():
            return "<empty>"
        if self.is_any:
            return "any"
        if self.is_exact:
            return str(self.min)
        if (
            self.min is not None
            and self.max is not None
            and self.include_min
            and not self.include_max
            and not self.min.is_prerelease
            and self.max == self.min.next_breaking
        ):
            return f"^{self.min}"

        parts: List[str] = []
        if self.min is not None:
            parts.append(f"{'>=' if self.include_min else '>'}{self.min}")
        if self.max is not None:
            parts.append(f"{'<=' if self.include_max else '<'}{self.max}")
        return " ".join(parts)


class VersionUnion(VersionConstraint):
    """Two or more disjoint, non-adjacent ranges, sorted ascending.

    Instances are produced by the algebra; build them through
    :meth:`VersionConstraint.union` rather than directly.
    """

    __slots__ = ("_ranges",)

    def __init__(self, ranges: Iterable[VersionRange]) -> None:
        self._ranges: Tuple[VersionRange, ...] = tuple(ranges)

    @property
    def ranges(self) -> Tuple[VersionRange, ...]:
        return self._ranges

    def __str__(self) -> str:
        complement = _complement(self._ranges)
        if isinstance(complement, VersionRange) and complement.is_exact:
            return f"!={complement.min}"
        return " or ".join(str(r) for r in self._ranges)


EMPTY: VersionConstraint = EmptyConstraint()
ANY: VersionRange = VersionRange()


# ---------------------------------------------------------------------------
# Range helpers
# ---------------------------------------------------------------------------

# Bound keys order ranges so that a plain tuple comparison works:
# (is_bounded, version, tie_breaker).


def _lower_key(r: VersionRange) -> Tuple[Any, ...]:
    if r.min is None:
        return (0,)
    # An inclusive lower bound starts earlier than an exclusive one.
    return (1, r.min, 0 if r.include_min else 1)


def _upper_key(r: VersionRange) -> Tuple[Any, ...]:
    if r.max is None:
        return (2,)
    # An exclusive upper bound ends earlier than an inclusive one.
    return (1, r.max, 1 if r.include_max else 0)


def _touches(left: VersionRange, right: VersionRange) -> bool:
    """Whether *right* (starting no earlier than *left*) overlaps or abuts it."""
    if left.max is None or right.min is None:
        return True
    if left.max > right.min:
        return True
    if left.max == right.min:
        return left.include_max or right.include_min
    return False


def _merge(ranges: List[VersionRange]) -> List[VersionRange]:
    result: List[VersionRange] = []
    for current in sorted((r for r in ranges if r.ranges), key=_lower_key):
        if result and _touches(result[-1], current):
            last = result[-1]
            upper = last if _upper_key(last) >= _upper_key(current) else current
            result[-1] = VersionRange(
                last.min, upper.max, last.include_min, upper.include_max
            )
        else:
            result.append(current)
    return result


def _complement(ranges: Tuple[VersionRange, ...]) -> VersionConstraint:
    if not ranges:
        return ANY

    gaps: List[VersionRange] = []
    previous: Optional[VersionRange] = None
    for current in ranges:
        if previous is None:
            if current.min is not None:
                gaps.append(
                    VersionRange(max=current.min, include_max=not current.include_min)
                )
        else:
            gaps.append(
                VersionRange(
                    previous.max,
                    current.min,
                    include_min=not previous.include_max,
                    include_max=not current.include_min,
                )
            )
        previous = current

    last = ranges[-1]
    if last.max is not None:
        gaps.append(VersionRange(min=last.max, include_min=not last.include_max))

    return _from_ranges([g for g in gaps if g.ranges])


def _from_ranges(ranges: List[VersionRange]) -> VersionConstraint:
    if not ranges:
        return EMPTY
    if len(ranges) == 1:
        return ranges[0]
    return VersionUnion(ranges)
