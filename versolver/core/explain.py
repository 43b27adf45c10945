"""Render a failed solve as a human-readable proof.

The failure incompatibility is the root of a derivation graph: every
derived incompatibility has a :class:`ConflictCause` pointing at the two
incompatibilities it was resolved from, and the leaves are external facts
(root requirement, declared dependencies, missing versions). The writer
walks that graph depth first and emits one sentence per derivation:

    Because foo 1.2.0 depends on bar ^2.0.0 and no versions of foo match
    ..., foo ^1.0.0 requires bar ^2.0.0.
    So, because myapp depends on both foo ^1.0.0 and bar ^1.0.0, version
    solving failed.

Derivations that are referenced more than once get a line number so later
sentences can point back at them instead of repeating the argument.
"""

from __future__ import annotations

from typing import AbstractSet, Dict, FrozenSet, List, Optional, Tuple

from versolver.models.incompatibility import ConflictCause, Incompatibility

__all__ = ["FailureExplainer", "explain_failure"]


def explain_failure(incompatibility: Incompatibility) -> List[str]:
    """Return the explanation of *incompatibility* as a list of lines.

    Blank strings separate independent branches of the proof.
    """
    return FailureExplainer(incompatibility).lines()


class FailureExplainer:
    """Writes the derivation of one failure incompatibility.

    Instances are single-use; call :meth:`lines` once.
    """

    def __init__(self, root: Incompatibility) -> None:
        self._root = root
        # Incompatibilities hash by identity, so ids are not needed.
        self._derivations: Dict[Incompatibility, int] = {}
        self._lines: List[Tuple[str, Optional[int]]] = []
        self._line_numbers: Dict[Incompatibility, int] = {}
        self._count_derivations(root)

    def lines(self) -> List[str]:
        if isinstance(self._root.cause, ConflictCause):
            self._visit(self._root, frozenset())
        else:
            self._write(
                self._root, f"Because {self._root.to_string()}, version solving failed."
            )

        padding = 0
        if self._line_numbers:
            padding = len(f"({max(self._line_numbers.values())}) ")

        result: List[str] = []
        last_was_empty = False
        for message, number in self._lines:
            if not message:
                if not last_was_empty:
                    result.append("")
                last_was_empty = True
                continue
            last_was_empty = False

            if number is not None:
                result.append(f"({number})".ljust(padding) + message)
            else:
                result.append(" " * padding + message)
        return result

    # ------------------------------------------------------------------
    # Graph walk
    # ------------------------------------------------------------------

    def _count_derivations(self, incompatibility: Incompatibility) -> None:
        # Iterative so that deep proofs cannot hit the recursion limit.
        stack = [incompatibility]
        while stack:
            current = stack.pop()
            if current in self._derivations:
                self._derivations[current] += 1
                continue
            self._derivations[current] = 1
            cause = current.cause
            if isinstance(cause, ConflictCause):
                stack.append(cause.other)
                stack.append(cause.conflict)

    def _write(
        self, incompatibility: Incompatibility, message: str, *, numbered: bool = False
    ) -> None:
        if numbered:
            number = len(self._line_numbers) + 1
            self._line_numbers[incompatibility] = number
            self._lines.append((message, number))
        else:
            self._lines.append((message, None))

    def _visit(
        self,
        incompatibility: Incompatibility,
        show_sources: AbstractSet[str],
        *,
        conclusion: bool = False,
    ) -> None:
        numbered = conclusion or self._derivations[incompatibility] > 1
        conjunction = "So," if conclusion or incompatibility is self._root else "And"
        text = incompatibility.to_string(show_sources)

        cause = incompatibility.cause
        assert isinstance(cause, ConflictCause)
        cause_sources = _sources_to_show(cause)

        conflict_derived = isinstance(cause.conflict.cause, ConflictCause)
        other_derived = isinstance(cause.other.cause, ConflictCause)

        if conflict_derived and other_derived:
            conflict_line = self._line_numbers.get(cause.conflict)
            other_line = self._line_numbers.get(cause.other)
            if conflict_line is not None and other_line is not None:
                both = cause.conflict.and_to_string(
                    cause.other, cause_sources, conflict_line, other_line
                )
                self._write(incompatibility, f"Because {both}, {text}.", numbered=numbered)
            elif conflict_line is not None or other_line is not None:
                if conflict_line is not None:
                    with_line, without_line, line = cause.conflict, cause.other, conflict_line
                else:
                    with_line, without_line, line = cause.other, cause.conflict, other_line
                self._visit(without_line, cause_sources)
                self._write(
                    incompatibility,
                    f"{conjunction} because {with_line.to_string(cause_sources)} "
                    f"({line}), {text}.",
                    numbered=numbered,
                )
            else:
                single_conflict = _is_single_line(cause.conflict.cause)
                single_other = _is_single_line(cause.other.cause)
                if single_conflict or single_other:
                    first = cause.conflict if single_other else cause.other
                    second = cause.other if single_other else cause.conflict
                    self._visit(first, cause_sources)
                    self._visit(second, cause_sources)
                    self._write(incompatibility, f"Thus, {text}.", numbered=numbered)
                else:
                    self._visit(cause.conflict, cause_sources, conclusion=True)
                    self._lines.append(("", None))
                    self._visit(cause.other, cause_sources)
                    self._write(
                        incompatibility,
                        f"{conjunction} because {cause.conflict.to_string(cause_sources)} "
                        f"({self._line_numbers[cause.conflict]}), {text}.",
                        numbered=numbered,
                    )
        elif conflict_derived or other_derived:
            derived = cause.conflict if conflict_derived else cause.other
            external = cause.other if conflict_derived else cause.conflict

            derived_line = self._line_numbers.get(derived)
            if derived_line is not None:
                both = external.and_to_string(derived, cause_sources, None, derived_line)
                self._write(incompatibility, f"Because {both}, {text}.", numbered=numbered)
            elif self._is_collapsible(derived):
                derived_cause = derived.cause
                assert isinstance(derived_cause, ConflictCause)
                if isinstance(derived_cause.conflict.cause, ConflictCause):
                    collapsed_derived = derived_cause.conflict
                    collapsed_external = derived_cause.other
                else:
                    collapsed_derived = derived_cause.other
                    collapsed_external = derived_cause.conflict
                merged = cause_sources | _sources_to_show(derived_cause)
                self._visit(collapsed_derived, merged)
                both = collapsed_external.and_to_string(external, merged)
                self._write(
                    incompatibility,
                    f"{conjunction} because {both}, {text}.",
                    numbered=numbered,
                )
            else:
                self._visit(derived, cause_sources)
                self._write(
                    incompatibility,
                    f"{conjunction} because {external.to_string(cause_sources)}, {text}.",
                    numbered=numbered,
                )
        else:
            both = cause.conflict.and_to_string(cause.other, cause_sources)
            self._write(incompatibility, f"Because {both}, {text}.", numbered=numbered)

    def _is_collapsible(self, incompatibility: Incompatibility) -> bool:
        """Whether *incompatibility* can be folded into its parent's sentence.

        That is the case for a derivation used once, built from one
        external and one derived incompatibility, where the derived one has
        not been written yet.
        """
        if self._derivations[incompatibility] > 1:
            return False

        cause = incompatibility.cause
        assert isinstance(cause, ConflictCause)
        conflict_derived = isinstance(cause.conflict.cause, ConflictCause)
        other_derived = isinstance(cause.other.cause, ConflictCause)
        if conflict_derived == other_derived:
            return False

        complex_ = cause.conflict if conflict_derived else cause.other
        return complex_ not in self._line_numbers


def _is_single_line(cause: object) -> bool:
    assert isinstance(cause, ConflictCause)
    return not isinstance(cause.conflict.cause, ConflictCause) and not isinstance(
        cause.other.cause, ConflictCause
    )


def _sources_to_show(cause: ConflictCause) -> FrozenSet[str]:
    """Names mentioned by both sides of *cause* with different sources."""
    conflict_sources = {
        term.name: term.package.source
        for term in cause.conflict.terms
        if not term.package.is_root
    }
    return frozenset(
        term.name
        for term in cause.other.terms
        if not term.package.is_root
        and term.name in conflict_sources
        and conflict_sources[term.name] != term.package.source
    )
