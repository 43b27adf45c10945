"""
Incompatibilities: sets of terms that cannot all hold at once.

Every incompatibility records its cause. External causes come straight from
the problem (the root package, a declared dependency, a package with no
matching versions). :class:`ConflictCause` marks an incompatibility the
solver derived from two others during conflict resolution. Following those
causes from a failure back to external incompatibilities gives the proof
that :mod:`versolver.core.explain` renders for humans.

Incompatibilities compare by identity: two derivations with the same terms
are still distinct steps of a proof.
"""

from __future__ import annotations

from typing import AbstractSet, Callable, Dict, Iterator, List, Optional, Sequence

from versolver.models.package import PackageRef
from versolver.models.term import Term

__all__ = [
    "IncompatibilityCause",
    "RootCause",
    "DependencyCause",
    "NoVersionsCause",
    "ConflictCause",
    "Incompatibility",
]


# ---------------------------------------------------------------------------
# Causes
# ---------------------------------------------------------------------------


class IncompatibilityCause:
    """Base class of incompatibility causes."""

    __slots__ = ()

    @property
    def is_external(self) -> bool:
        return True


class RootCause(IncompatibilityCause):
    """The root package must be selected."""

    __slots__ = ()


class DependencyCause(IncompatibilityCause):
    """A package version declares a dependency."""

    __slots__ = ()


class NoVersionsCause(IncompatibilityCause):
    """No version of a package matches a constraint."""

    __slots__ = ()


class ConflictCause(IncompatibilityCause):
    """The incompatibility was derived from two others.

    Attributes:
        conflict: The incompatibility that was found to be violated.
        other: The cause of the satisfier it was resolved against.
    """

    __slots__ = ("conflict", "other")

    def __init__(self, conflict: "Incompatibility", other: "Incompatibility") -> None:
        self.conflict = conflict
        self.other = other

    @property
    def is_external(self) -> bool:
        return False


# ---------------------------------------------------------------------------
# Incompatibility
# ---------------------------------------------------------------------------


class Incompatibility:
    """A set of terms that are not all allowed to be true at once.

    Terms on the same package and source are merged on construction, and
    derived incompatibilities drop the always-true positive root term.

    Args:
        terms: Terms making up the incompatibility.
        cause: Why the incompatibility holds.
    """

    __slots__ = ("terms", "cause")

    def __init__(self, terms: Sequence[Term], cause: IncompatibilityCause) -> None:
        terms = list(terms)

        if (
            len(terms) != 1
            and isinstance(cause, ConflictCause)
            and any(t.is_positive and t.package.is_root for t in terms)
        ):
            terms = [t for t in terms if not (t.is_positive and t.package.is_root)]

        if len(terms) > 2 or (len(terms) == 2 and terms[0].name == terms[1].name):
            terms = _merge_terms(terms)

        self.terms: List[Term] = terms
        self.cause = cause

    @property
    def is_failure(self) -> bool:
        """Whether this incompatibility means version solving has failed."""
        return not self.terms or (
            len(self.terms) == 1
            and self.terms[0].is_positive
            and self.terms[0].package.is_root
        )

    def external_incompatibilities(self) -> Iterator["Incompatibility"]:
        """Yield the external incompatibilities this one was derived from."""
        cause = self.cause
        if isinstance(cause, ConflictCause):
            yield from cause.conflict.external_incompatibilities()
            yield from cause.other.external_incompatibilities()
        else:
            yield self

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def to_string(self, show_sources: AbstractSet[str] = frozenset()) -> str:
        """Render this incompatibility as a sentence fragment.

        Args:
            show_sources: Package names whose source must be spelled out
                because another clause mentions the same name from a
                different source.
        """
        cause = self.cause

        if isinstance(cause, DependencyCause):
            depender, dependee = self.terms
            return (
                f"{_terse(depender, show_sources, allow_every=True)} depends on "
                f"{_terse(dependee, show_sources)}"
            )
        if isinstance(cause, NoVersionsCause):
            term = self.terms[0]
            return (
                f"no versions of {_terse_ref(term, show_sources)} "
                f"match {term.constraint}"
            )
        if isinstance(cause, RootCause):
            term = self.terms[0]
            return f"{term.name} is {term.constraint}"
        if self.is_failure:
            return "version solving failed"

        if len(self.terms) == 1:
            term = self.terms[0]
            verb = "forbidden" if term.is_positive else "required"
            if term.constraint.is_any:
                return f"{_terse_ref(term, show_sources)} is {verb}"
            return f"{_terse(term, show_sources)} is {verb}"

        if len(self.terms) == 2:
            first, second = self.terms
            if first.is_positive == second.is_positive:
                if first.is_positive:
                    return (
                        f"{_terse_any(first, show_sources)} is incompatible with "
                        f"{_terse_any(second, show_sources)}"
                    )
                return (
                    f"either {_terse(first, show_sources)} "
                    f"or {_terse(second, show_sources)}"
                )

        positive = [_terse(t, show_sources) for t in self.terms if t.is_positive]
        negative = [_terse(t, show_sources) for t in self.terms if not t.is_positive]

        if positive and negative:
            if len(positive) == 1:
                single = next(t for t in self.terms if t.is_positive)
                return (
                    f"{_terse(single, show_sources, allow_every=True)} requires "
                    f"{' or '.join(negative)}"
                )
            return f"if {' and '.join(positive)} then {' or '.join(negative)}"
        if positive:
            return f"one of {' or '.join(positive)} must be false"
        return f"one of {' or '.join(negative)} must be true"

    def and_to_string(
        self,
        other: "Incompatibility",
        show_sources: AbstractSet[str] = frozenset(),
        this_line: Optional[int] = None,
        other_line: Optional[int] = None,
    ) -> str:
        """Render "this and *other*" as one clause, collapsing where possible."""
        for attempt in (
            self._try_requires_both,
            self._try_requires_through,
            self._try_requires_forbidden,
        ):
            collapsed = attempt(other, show_sources, this_line, other_line)
            if collapsed is not None:
                return collapsed

        text = self.to_string(show_sources)
        if this_line is not None:
            text += f" ({this_line})"
        text += f" and {other.to_string(show_sources)}"
        if other_line is not None:
            text += f" ({other_line})"
        return text

    def _try_requires_both(
        self,
        other: "Incompatibility",
        show_sources: AbstractSet[str],
        this_line: Optional[int],
        other_line: Optional[int],
    ) -> Optional[str]:
        if len(self.terms) == 1 or len(other.terms) == 1:
            return None

        this_positive = self._single_term_where(lambda t: t.is_positive)
        other_positive = other._single_term_where(lambda t: t.is_positive)
        if this_positive is None or other_positive is None:
            return None
        if this_positive.package != other_positive.package:
            return None

        this_negatives = " or ".join(
            _terse(t, show_sources) for t in self.terms if not t.is_positive
        )
        other_negatives = " or ".join(
            _terse(t, show_sources) for t in other.terms if not t.is_positive
        )

        is_dependency = isinstance(self.cause, DependencyCause) and isinstance(
            other.cause, DependencyCause
        )
        text = (
            f"{_terse(this_positive, show_sources, allow_every=True)} "
            f"{'depends on' if is_dependency else 'requires'} both {this_negatives}"
        )
        if this_line is not None:
            text += f" ({this_line})"
        text += f" and {other_negatives}"
        if other_line is not None:
            text += f" ({other_line})"
        return text

    def _try_requires_through(
        self,
        other: "Incompatibility",
        show_sources: AbstractSet[str],
        this_line: Optional[int],
        other_line: Optional[int],
    ) -> Optional[str]:
        if len(self.terms) == 1 or len(other.terms) == 1:
            return None

        this_negative = self._single_term_where(lambda t: not t.is_positive)
        other_negative = other._single_term_where(lambda t: not t.is_positive)
        if this_negative is None and other_negative is None:
            return None

        this_positive = self._single_term_where(lambda t: t.is_positive)
        other_positive = other._single_term_where(lambda t: t.is_positive)

        if (
            this_negative is not None
            and other_positive is not None
            and this_negative.name == other_positive.name
            and this_negative.inverse.satisfies(other_positive)
        ):
            prior, prior_negative, prior_line = self, this_negative, this_line
            latter, latter_line = other, other_line
        elif (
            other_negative is not None
            and this_positive is not None
            and other_negative.name == this_positive.name
            and other_negative.inverse.satisfies(this_positive)
        ):
            prior, prior_negative, prior_line = other, other_negative, other_line
            latter, latter_line = self, this_line
        else:
            return None

        prior_positives = [t for t in prior.terms if t.is_positive]
        if not prior_positives:
            return None

        if len(prior_positives) > 1:
            joined = " or ".join(_terse(t, show_sources) for t in prior_positives)
            text = f"if {joined} then "
        else:
            verb = "depends on" if isinstance(prior.cause, DependencyCause) else "requires"
            text = f"{_terse(prior_positives[0], show_sources, allow_every=True)} {verb} "

        text += _terse(prior_negative, show_sources)
        if prior_line is not None:
            text += f" ({prior_line})"
        text += " which "
        text += "depends on " if isinstance(latter.cause, DependencyCause) else "requires "
        text += " or ".join(
            _terse(t, show_sources) for t in latter.terms if not t.is_positive
        )
        if latter_line is not None:
            text += f" ({latter_line})"
        return text

    def _try_requires_forbidden(
        self,
        other: "Incompatibility",
        show_sources: AbstractSet[str],
        this_line: Optional[int],
        other_line: Optional[int],
    ) -> Optional[str]:
        if len(self.terms) != 1 and len(other.terms) != 1:
            return None

        if len(self.terms) == 1:
            prior, latter = other, self
            prior_line, latter_line = other_line, this_line
        else:
            prior, latter = self, other
            prior_line, latter_line = this_line, other_line

        negative = prior._single_term_where(lambda t: not t.is_positive)
        if negative is None:
            return None
        if not negative.inverse.satisfies(latter.terms[0]):
            return None

        positives = [t for t in prior.terms if t.is_positive]
        if not positives:
            return None

        if len(positives) > 1:
            joined = " or ".join(_terse(t, show_sources) for t in positives)
            text = f"if {joined} then "
        else:
            verb = "depends on" if isinstance(prior.cause, DependencyCause) else "requires"
            text = f"{_terse(positives[0], show_sources, allow_every=True)} {verb} "

        text += f"{_terse(latter.terms[0], show_sources)} "
        if prior_line is not None:
            text += f"({prior_line}) "

        if isinstance(latter.cause, NoVersionsCause):
            text += "which doesn't match any versions"
        else:
            text += "which is forbidden"
        if latter_line is not None:
            text += f" ({latter_line})"
        return text

    def _single_term_where(self, predicate: Callable[[Term], bool]) -> Optional[Term]:
        found: Optional[Term] = None
        for term in self.terms:
            if not predicate(term):
                continue
            if found is not None:
                return None
            found = term
        return found

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"Incompatibility({self.to_string()!r})"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _merge_terms(terms: List[Term]) -> List[Term]:
    """Intersect terms on the same package and source.

    Positive terms on a name win over negative ones on other sources of
    the same name, since a positive term already excludes those sources.
    """
    by_name: Dict[str, Dict[PackageRef, Term]] = {}
    for term in terms:
        by_ref = by_name.setdefault(term.name, {})
        ref = term.ref
        existing = by_ref.get(ref)
        if existing is None:
            by_ref[ref] = term
        else:
            merged = existing.intersect(term)
            if merged is not None:
                by_ref[ref] = merged
            else:
                del by_ref[ref]

    result: List[Term] = []
    for by_ref in by_name.values():
        positives = [t for t in by_ref.values() if t.is_positive]
        result.extend(positives if positives else by_ref.values())
    return result


def _describe(term: Term, show_sources: AbstractSet[str], *, with_constraint: bool) -> str:
    package = term.package
    if package.is_root:
        return package.name
    if term.name in show_sources and package.source is not None:
        text = package.name
        if with_constraint and not package.constraint.is_any:
            text += f" {package.constraint}"
        return f"{text} from {package.source.describe()}"
    if with_constraint:
        return str(package)
    return str(package.ref)


def _terse(
    term: Term,
    show_sources: AbstractSet[str],
    *,
    allow_every: bool = False,
) -> str:
    if allow_every and term.constraint.is_any and not term.package.is_root:
        return f"every version of {_terse_ref(term, show_sources)}"
    return _describe(term, show_sources, with_constraint=True)


def _terse_ref(term: Term, show_sources: AbstractSet[str]) -> str:
    return _describe(term, show_sources, with_constraint=False)


def _terse_any(term: Term, show_sources: AbstractSet[str]) -> str:
    if term.constraint.is_any:
        return _terse_ref(term, show_sources)
    return _terse(term, show_sources)
