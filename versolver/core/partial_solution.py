"""Solver state: the decision trail and the accumulated terms per package.

A :class:`PartialSolution` is an ordered list of :class:`Assignment`
entries. Each entry is either a *decision* (a concrete version picked for
a package) or a *derivation* (a term forced by an incompatibility). The
decision level of an entry is the number of decisions made before it.
Backjumping truncates the list to a decision level and recomputes the
accumulated terms of the affected packages.

The state belongs to exactly one solve and is mutated only by
:meth:`PartialSolution.decide`, :meth:`PartialSolution.derive` and
:meth:`PartialSolution.backtrack`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from versolver.models.package import PackageId, PackageRange, PackageRef
from versolver.models.term import SetRelation, Term
from versolver.models.incompatibility import Incompatibility
from versolver.exceptions import InternalInconsistency

__all__ = ["Assignment", "PartialSolution"]


@dataclass(frozen=True)
class Assignment:
    """One entry of the decision trail.

    Attributes:
        term: The term this entry asserts.
        decision_level: Number of decisions made before this entry.
        index: Position of this entry in the trail.
        cause: Incompatibility that forced a derivation; ``None`` for
            decisions.
    """

    term: Term
    decision_level: int
    index: int
    cause: Optional[Incompatibility] = None

    @property
    def is_decision(self) -> bool:
        return self.cause is None

    @property
    def name(self) -> str:
        return self.term.name

    @property
    def package(self) -> PackageRange:
        return self.term.package

    def __str__(self) -> str:
        kind = "decision" if self.is_decision else "derivation"
        return f"{self.term} ({kind} at level {self.decision_level})"


class PartialSolution:
    """The decision trail plus the intersection of its terms per package.

    Positive terms are kept per name; negative terms are kept per name and
    source, because "not foo from git" says nothing about foo from a
    registry.
    """

    def __init__(self) -> None:
        self._assignments: List[Assignment] = []
        self._decisions: Dict[str, PackageId] = {}
        self._positive: Dict[str, Term] = {}
        self._negative: Dict[str, Dict[PackageRef, Term]] = {}
        self._attempted_solutions = 1
        self._backtracking = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def decisions(self) -> List[PackageId]:
        """Decided package ids, in decision order."""
        return list(self._decisions.values())

    @property
    def decision_level(self) -> int:
        return len(self._decisions)

    @property
    def attempted_solutions(self) -> int:
        """Number of distinct solutions tried; bumped by each fresh decision after a backjump."""
        return self._attempted_solutions

    @property
    def assignments(self) -> List[Assignment]:
        return list(self._assignments)

    def unsatisfied(self) -> Iterator[PackageRange]:
        """Yield packages required by a positive term but not yet decided."""
        for name, term in self._positive.items():
            if name not in self._decisions:
                yield term.package

    def decision_for(self, name: str) -> Optional[PackageId]:
        return self._decisions.get(name)

    def relation(self, term: Term) -> SetRelation:
        """Return how the accumulated terms for *term*'s package relate to it."""
        positive = self._positive.get(term.name)
        if positive is not None:
            return positive.relation(term)

        negative = self._negative.get(term.name, {}).get(term.ref)
        if negative is None:
            return SetRelation.OVERLAPPING
        return negative.relation(term)

    def satisfies(self, term: Term) -> bool:
        return self.relation(term) is SetRelation.SUBSET

    def satisfier(self, term: Term) -> Assignment:
        """Return the earliest assignment after which *term* is satisfied."""
        assigned: Optional[Term] = None
        for assignment in self._assignments:
            if assignment.name != term.name:
                continue

            if not assignment.package.is_root and assignment.term.ref != term.ref:
                # "not foo from git" has no bearing on foo from a registry.
                if not assignment.term.is_positive:
                    continue
                # "foo from git" satisfies "not foo from a registry".
                return assignment

            if assigned is None:
                assigned = assignment.term
            else:
                merged = assigned.intersect(assignment.term)
                if merged is None:
                    raise InternalInconsistency(
                        f"Assignments for {term.name} contradict each other"
                    )
                assigned = merged

            if assigned.satisfies(term):
                return assignment

        raise InternalInconsistency(f"{term} is not satisfied by the partial solution")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def decide(self, package_id: PackageId) -> None:
        """Add a decision selecting *package_id*, opening a new level."""
        if self._backtracking:
            self._attempted_solutions += 1
        self._backtracking = False
        self._decisions[package_id.name] = package_id
        self._assign(
            Assignment(
                Term(package_id.to_range(), True),
                self.decision_level,
                len(self._assignments),
            )
        )

    def derive(self, package: PackageRange, is_positive: bool, cause: Incompatibility) -> None:
        """Add a derivation at the current decision level."""
        self._assign(
            Assignment(
                Term(package, is_positive),
                self.decision_level,
                len(self._assignments),
                cause,
            )
        )

    def backtrack(self, decision_level: int) -> None:
        """Drop every assignment made above *decision_level*."""
        self._backtracking = True

        touched = set()
        while self._assignments and self._assignments[-1].decision_level > decision_level:
            removed = self._assignments.pop()
            touched.add(removed.name)
            if removed.is_decision:
                del self._decisions[removed.name]

        for name in touched:
            self._positive.pop(name, None)
            self._negative.pop(name, None)

        for assignment in self._assignments:
            if assignment.name in touched:
                self._register(assignment)

    def _assign(self, assignment: Assignment) -> None:
        self._assignments.append(assignment)
        self._register(assignment)

    def _register(self, assignment: Assignment) -> None:
        name = assignment.name
        term = assignment.term

        old_positive = self._positive.get(name)
        if old_positive is not None:
            merged = old_positive.intersect(term)
            if merged is None:
                raise InternalInconsistency(
                    f"{term} contradicts the accumulated {old_positive}"
                )
            self._positive[name] = merged
            return

        by_ref = self._negative.get(name, {})
        old_negative = by_ref.get(term.ref)
        if old_negative is not None:
            merged = term.intersect(old_negative)
            if merged is None:
                raise InternalInconsistency(
                    f"{term} contradicts the accumulated {old_negative}"
                )
            term = merged

        if term.is_positive:
            self._negative.pop(name, None)
            self._positive[name] = term
        else:
            self._negative.setdefault(name, {})[term.ref] = term
