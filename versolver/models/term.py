"""
Terms: the atomic facts the solver reasons about.

A :class:`Term` states that a package is (positive) or is not (negative)
selected within a version range from a given source. Terms support the set
operations the solver needs for unit propagation and conflict resolution.

Terms for the same name but different sources are handled specially: a
positive term for ``foo`` from one source excludes every version of
``foo`` from any other source.
"""

from __future__ import annotations

from enum import Enum
from dataclasses import dataclass
from typing import Optional

from versolver.models.package import PackageRange, PackageRef
from versolver.models.constraint import VersionConstraint

__all__ = ["SetRelation", "Term"]


class SetRelation(Enum):
    """How the versions allowed by one term relate to another's."""

    # The first term's versions are a subset of the second's.
    SUBSET = "subset"
    # The two terms share no versions.
    DISJOINT = "disjoint"
    # The terms share some versions, but neither contains the other.
    OVERLAPPING = "overlapping"


@dataclass(frozen=True)
class Term:
    """A positive or negative statement about a package range.

    Attributes:
        package: Name, source and constraint the term refers to.
        is_positive: ``True`` for "package is selected within range",
            ``False`` for "package is not selected within range".
    """

    package: PackageRange
    is_positive: bool = True

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def constraint(self) -> VersionConstraint:
        return self.package.constraint

    @property
    def ref(self) -> PackageRef:
        return self.package.ref

    @property
    def inverse(self) -> "Term":
        return Term(self.package, not self.is_positive)

    def _compatible(self, other: PackageRange) -> bool:
        if self.package.is_root and other.is_root:
            return True
        return self.package.ref == other.ref

    def satisfies(self, other: "Term") -> bool:
        """Whether every selection allowed by this term is allowed by *other*."""
        return (
            self.name == other.name
            and self.relation(other) is SetRelation.SUBSET
        )

    def relation(self, other: "Term") -> SetRelation:
        """Return how this term's selections relate to *other*'s."""
        if self.name != other.name:
            raise ValueError(f"{other} should refer to {self.name}")

        other_constraint = other.constraint
        compatible = self._compatible(other.package)

        if other.is_positive:
            if self.is_positive:
                if not compatible:
                    return SetRelation.DISJOINT
                if not self.constraint.allows_any(other_constraint):
                    return SetRelation.DISJOINT
                if other_constraint.allows_all(self.constraint):
                    return SetRelation.SUBSET
                return SetRelation.OVERLAPPING

            # not foo X vs foo Y
            if not compatible:
                return SetRelation.OVERLAPPING
            if self.constraint.allows_all(other_constraint):
                return SetRelation.DISJOINT
            return SetRelation.OVERLAPPING

        if self.is_positive:
            # foo X vs not foo Y
            if not compatible:
                return SetRelation.SUBSET
            if not other_constraint.allows_any(self.constraint):
                return SetRelation.SUBSET
            if other_constraint.allows_all(self.constraint):
                return SetRelation.DISJOINT
            return SetRelation.OVERLAPPING

        # not foo X vs not foo Y
        if not compatible:
            return SetRelation.OVERLAPPING
        if self.constraint.allows_all(other_constraint):
            return SetRelation.SUBSET
        return SetRelation.OVERLAPPING

    def intersect(self, other: "Term") -> Optional["Term"]:
        """Return a term allowing only what both terms allow.

        Returns ``None`` when the intersection allows nothing.
        """
        if self.name != other.name:
            raise ValueError(f"{other} should refer to {self.name}")

        if self._compatible(other.package):
            if self.is_positive != other.is_positive:
                positive = self if self.is_positive else other
                negative = other if self.is_positive else self
                return self._non_empty(
                    positive.package,
                    positive.constraint.difference(negative.constraint),
                    True,
                )
            if self.is_positive:
                # Keep the non-root package so its source survives.
                package = other.package if self.package.is_root else self.package
                return self._non_empty(
                    package, self.constraint.intersect(other.constraint), True
                )
            return self._non_empty(
                self.package, self.constraint.union(other.constraint), False
            )

        if self.is_positive != other.is_positive:
            # foo from one source already excludes foo from any other.
            return self if self.is_positive else other
        # Positives on different sources share nothing. Negatives on
        # different sources are kept apart by the partial solution.
        return None

    def difference(self, other: "Term") -> Optional["Term"]:
        """Return a term allowing what this term allows and *other* does not."""
        return self.intersect(other.inverse)

    @staticmethod
    def _non_empty(
        package: PackageRange,
        constraint: VersionConstraint,
        is_positive: bool,
    ) -> Optional["Term"]:
        if constraint.is_empty:
            return None
        return Term(package.with_constraint(constraint), is_positive)

    def __str__(self) -> str:
        return f"{'' if self.is_positive else 'not '}{self.package}"
