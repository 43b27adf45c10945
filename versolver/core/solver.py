"""Conflict-driven version solver.

:class:`VersionSolver` runs three transitions over a
:class:`~versolver.core.partial_solution.PartialSolution`:

1. **Propagate**: for every incompatibility whose terms all hold except
   one, derive the negation of that remaining term. Repeat until nothing
   changes. An incompatibility whose terms all hold is a conflict.
2. **Resolve conflict**: combine the conflicting incompatibility with the
   causes of its satisfiers until it is satisfied up to one term at an
   earlier decision level, learn it, and backjump to that level. If the
   learned incompatibility says that the root package itself cannot be
   selected, solving has failed.
3. **Decide**: pick the undecided package with the fewest candidate
   versions (ties broken by name), add its dependencies as
   incompatibilities and select a version according to the resolution
   mode.

Each transition is a plain loop over an explicit trail, so backjumping is
a truncation of that trail rather than stack unwinding.

Typical usage::

    solver = VersionSolver(root_manifest, sources, mode=ResolutionMode.GET,
                           locked=lockfile.to_preferences())
    result = await solver.solve()
    if isinstance(result, Unsolvable):
        print("\\n".join(result.explanation))
"""

from __future__ import annotations

import time
import asyncio
from enum import Enum
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Union,
)

from versolver.models.package import (
    Dependency,
    GitSource,
    PackageId,
    PackageManifest,
    PackageRange,
    PackageRef,
)
from versolver.models.term import SetRelation, Term
from versolver.models.incompatibility import (
    ConflictCause,
    DependencyCause,
    Incompatibility,
    NoVersionsCause,
    RootCause,
)
from versolver.core.data_store import PackageDataStore
from versolver.core.explain import explain_failure
from versolver.core.partial_solution import PartialSolution
from versolver.core.sources import SourceRegistry
from versolver.utils.logger import get_logger
from versolver.exceptions import (
    ConstraintConflict,
    SearchExhausted,
    SolveCancelled,
)
from versolver.constants import (
    CANDIDATE_COUNT_LIMIT,
    DEFAULT_ALLOW_PRERELEASES,
    DEFAULT_CONCURRENT_LIMIT,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_SOLVE_TIMEOUT,
)

logger = get_logger("solver")

__all__ = [
    "ResolutionMode",
    "Solved",
    "Unsolvable",
    "SolveResult",
    "VersionSolver",
    "resolve_versions",
]


class ResolutionMode(str, Enum):
    """How the solver orders candidate versions."""

    #: Prefer locked versions, then the newest.
    GET = "get"
    #: Prefer the newest; locks hold only for packages not named in ``unlock``.
    UPGRADE = "upgrade"
    #: Prefer the oldest; locks hold only for packages not named in ``unlock``.
    DOWNGRADE = "downgrade"


@dataclass(frozen=True)
class Solved:
    """A successful solve.

    Attributes:
        root: Id of the root package.
        packages: Selected package per name, ordered by name. The root
            package is not included.
        manifests: Manifest of every selected package, keyed by name,
            including the root.
        attempted_solutions: Number of solutions the solver tried.
        overrides: Overrides that were in effect, keyed by name.
    """

    root: PackageId
    packages: Dict[str, PackageId]
    manifests: Dict[str, PackageManifest] = field(repr=False)
    attempted_solutions: int = 1
    overrides: Dict[str, Dependency] = field(default_factory=dict, repr=False)


@dataclass(frozen=True)
class Unsolvable:
    """A proof that no solution exists.

    Attributes:
        incompatibility: The root of the derivation; a failure.
        explanation: Human-readable derivation, one line per entry.
    """

    incompatibility: Incompatibility
    explanation: List[str]


SolveResult = Union[Solved, Unsolvable]


class _SolveFailure(Exception):
    def __init__(self, incompatibility: Incompatibility) -> None:
        super().__init__(str(incompatibility))
        self.incompatibility = incompatibility


# Marker returned by propagation when an incompatibility is satisfied.
_CONFLICT = object()


class VersionSolver:
    """Solves one root manifest against a set of sources.

    Each instance runs a single solve and owns its state; create a new
    solver per solve.

    Args:
        root: The root package manifest.
        sources: Backends for hosted, git and path packages.
        mode: Candidate ordering; see :class:`ResolutionMode`.
        locked: Prior lockfile as name to id, preferred in ``get`` mode.
        unlock: Names whose locked versions are ignored. In ``upgrade`` and
            ``downgrade`` modes an empty set unlocks every package.
        overrides: Dependencies replacing every dependency on their name.
            Merged over the root manifest's own overrides.
        allow_prereleases: Admit pre-release versions for every constraint.
        max_iterations: Ceiling on loop iterations.
        timeout: Ceiling on wall-clock seconds; ``None`` disables it.
        cancel_event: When set, the solve stops at the next transition.
        concurrent_limit: Maximum number of concurrent source calls.
        prefetch: Speculatively fetch listings of new dependencies.
        clock: Monotonic clock, replaceable in tests.
    """

    def __init__(
        self,
        root: PackageManifest,
        sources: SourceRegistry,
        *,
        mode: ResolutionMode = ResolutionMode.GET,
        locked: Optional[Mapping[str, PackageId]] = None,
        unlock: Iterable[str] = (),
        overrides: Optional[Mapping[str, Dependency]] = None,
        allow_prereleases: bool = DEFAULT_ALLOW_PRERELEASES,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        timeout: Optional[float] = DEFAULT_SOLVE_TIMEOUT,
        cancel_event: Optional[asyncio.Event] = None,
        concurrent_limit: int = DEFAULT_CONCURRENT_LIMIT,
        prefetch: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._root = root
        self._root_id = PackageId(root.name, root.version, None)
        self._mode = mode
        self._locked: Dict[str, PackageId] = {}
        unlocked = set(unlock)
        if locked and (mode is ResolutionMode.GET or unlocked):
            self._locked = {
                name: package_id
                for name, package_id in locked.items()
                if name not in unlocked
            }
        self._overrides: Dict[str, Dependency] = dict(root.overrides)
        self._overrides.update(overrides or {})
        self._allow_prereleases = allow_prereleases
        self._max_iterations = max_iterations
        self._timeout = timeout
        self._cancel_event = cancel_event
        self._prefetch = prefetch
        self._clock = clock

        self._store = PackageDataStore(sources, concurrent_limit)
        self._solution = PartialSolution()
        self._incompatibilities: Dict[str, List[Incompatibility]] = {}
        self._prefetch_tasks: Set["asyncio.Future[None]"] = set()
        self._iterations = 0
        self._started = 0.0
        self._last_learned: Optional[Incompatibility] = None
        self._solved = False

    @property
    def store(self) -> PackageDataStore:
        return self._store

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def solve(self) -> SolveResult:
        """Run the solve.

        Returns:
            :class:`Solved` or :class:`Unsolvable`.

        Raises:
            SearchExhausted: The iteration or time ceiling was hit.
            SolveCancelled: The cancel event was set.
            SourceError: A source failed; the solve is abandoned.
        """
        if self._solved:
            raise RuntimeError("A VersionSolver can only solve once")
        self._solved = True
        self._started = self._clock()

        self._add_incompatibility(
            Incompatibility(
                [Term(self._root_id.to_range(), False)],
                RootCause(),
            )
        )

        try:
            next_name: Optional[str] = self._root.name
            while next_name is not None:
                self._checkpoint(count=True)
                self._propagate(next_name)
                self._checkpoint()
                next_name = await self._choose_package_version()
            result: SolveResult = await self._result()
        except _SolveFailure as failure:
            result = Unsolvable(
                failure.incompatibility, explain_failure(failure.incompatibility)
            )
        finally:
            self._stop_prefetching()

        logger.info(
            "Version solving took %.3f seconds. Tried %d solution(s).",
            self._clock() - self._started,
            self._solution.attempted_solutions,
        )
        return result

    # ------------------------------------------------------------------
    # Ceilings and cancellation
    # ------------------------------------------------------------------

    def _checkpoint(self, *, count: bool = False) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            logger.debug("Solve cancelled after %d iteration(s)", self._iterations)
            raise SolveCancelled()

        if count:
            self._iterations += 1
            if self._iterations > self._max_iterations:
                raise self._exhausted(
                    f"Version solving gave up after {self._max_iterations} iterations."
                )

        if self._timeout is not None:
            elapsed = self._clock() - self._started
            if elapsed > self._timeout:
                raise self._exhausted(
                    f"Version solving gave up after {self._timeout:g} seconds."
                )

    def _exhausted(self, message: str) -> SearchExhausted:
        attempted = self._solution.attempted_solutions
        lines = [
            f"Tried {attempted} solution(s) in {self._iterations} iteration(s); "
            "the search is inconclusive."
        ]
        selected = [str(p) for p in self._solution.decisions if not p.is_root]
        if selected:
            lines.append(f"Selected so far: {', '.join(selected)}.")
        if self._last_learned is not None:
            lines.append(f"Most recently learned: {self._last_learned}.")
        return SearchExhausted(
            message, attempted_solutions=attempted, partial_explanation=lines
        )

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    def _propagate(self, package: str) -> None:
        # A dict keeps insertion order, so propagation order is deterministic.
        changed: Dict[str, None] = {package: None}
        while changed:
            name = next(iter(changed))
            del changed[name]

            # Newer incompatibilities are more general; look at them first.
            for incompatibility in reversed(list(self._incompatibilities.get(name, ()))):
                result = self._propagate_incompatibility(incompatibility)
                if result is _CONFLICT:
                    root_cause = self._resolve_conflict(incompatibility)
                    # Backjumping dropped everything derived above, so start
                    # over from what the learned incompatibility derives.
                    changed.clear()
                    derived = self._propagate_incompatibility(root_cause)
                    if isinstance(derived, str):
                        changed[derived] = None
                    break
                if isinstance(result, str):
                    changed[result] = None

    def _propagate_incompatibility(self, incompatibility: Incompatibility) -> object:
        """Derive from *incompatibility* if all but one of its terms hold.

        Returns the derived package name, :data:`_CONFLICT` when every term
        holds, or ``None`` when nothing can be derived.
        """
        unsatisfied: Optional[Term] = None
        for term in incompatibility.terms:
            relation = self._solution.relation(term)
            if relation is SetRelation.DISJOINT:
                return None
            if relation is SetRelation.OVERLAPPING:
                if unsatisfied is not None:
                    return None
                unsatisfied = term

        if unsatisfied is None:
            return _CONFLICT

        logger.debug(
            "derived: %s%s", "not " if unsatisfied.is_positive else "", unsatisfied.package
        )
        self._solution.derive(
            unsatisfied.package, not unsatisfied.is_positive, incompatibility
        )
        return unsatisfied.name

    def _resolve_conflict(self, incompatibility: Incompatibility) -> Incompatibility:
        """Learn the root cause of a conflict and backjump.

        Raises:
            _SolveFailure: If the root cause shows the root package cannot be
                selected.
        """
        logger.debug("conflict: %s", incompatibility)

        new_incompatibility = False
        while not incompatibility.is_failure:
            most_recent_term: Optional[Term] = None
            most_recent_satisfier = None
            difference: Optional[Term] = None

            # The decision level before which the incompatibility was already
            # satisfied except for the most recent term.
            previous_satisfier_level = 1

            for term in incompatibility.terms:
                satisfier = self._solution.satisfier(term)
                if most_recent_satisfier is None:
                    most_recent_term = term
                    most_recent_satisfier = satisfier
                elif most_recent_satisfier.index < satisfier.index:
                    previous_satisfier_level = max(
                        previous_satisfier_level, most_recent_satisfier.decision_level
                    )
                    most_recent_term = term
                    most_recent_satisfier = satisfier
                    difference = None
                else:
                    previous_satisfier_level = max(
                        previous_satisfier_level, satisfier.decision_level
                    )

                if most_recent_term == term:
                    # The satisfier may allow more than the term; if so the
                    # rest must be excluded by some earlier assignment.
                    difference = most_recent_satisfier.term.difference(most_recent_term)
                    if difference is not None:
                        previous_satisfier_level = max(
                            previous_satisfier_level,
                            self._solution.satisfier(difference.inverse).decision_level,
                        )

            assert most_recent_satisfier is not None and most_recent_term is not None

            if (
                previous_satisfier_level < most_recent_satisfier.decision_level
                or most_recent_satisfier.cause is None
            ):
                self._solution.backtrack(previous_satisfier_level)
                if new_incompatibility:
                    self._add_incompatibility(incompatibility)
                    self._last_learned = incompatibility
                return incompatibility

            cause = most_recent_satisfier.cause
            new_terms = [t for t in incompatibility.terms if t != most_recent_term]
            new_terms.extend(
                t for t in cause.terms if t.package != most_recent_satisfier.package
            )
            if difference is not None:
                new_terms.append(difference.inverse)

            incompatibility = Incompatibility(
                new_terms, ConflictCause(incompatibility, cause)
            )
            new_incompatibility = True

            logger.debug(
                "! %s is%s satisfied by %s",
                most_recent_term,
                " partially" if difference is not None else "",
                most_recent_satisfier,
            )
            logger.debug('! which is caused by "%s"', cause)
            logger.debug("! thus: %s", incompatibility)

        raise _SolveFailure(incompatibility)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def _choose_package_version(self) -> Optional[str]:
        """Decide on the next package; return its name, or ``None`` if done."""
        unsatisfied = list(self._solution.unsatisfied())
        if not unsatisfied:
            return None

        # Most constrained first: conflicts surface sooner.
        ranked = []
        for package in unsatisfied:
            ranked.append((await self._count_versions(package), package.name, package))
        _, _, package = min(ranked, key=lambda item: (item[0], item[1]))

        package_id = await self._best_version(package)
        if package_id is None:
            self._add_incompatibility(
                Incompatibility([Term(package, True)], NoVersionsCause())
            )
            return package.name

        conflict = False
        for incompatibility in await self._incompatibilities_for(package_id):
            self._add_incompatibility(incompatibility)
            # If a dependency is already ruled out, selecting this version
            # would conflict; let propagation exclude it instead.
            conflict = conflict or all(
                term.name == package.name or self._solution.satisfies(term)
                for term in incompatibility.terms
            )

        if not conflict:
            self._solution.decide(package_id)
            logger.debug("selecting %s", package_id)

        return package.name

    async def _locked_for(self, package: PackageRange) -> Optional[PackageId]:
        """Return the usable lock for *package*, if any.

        A lock is usable when it names the same source, its version is
        still allowed and the source still offers that version. A git lock
        carries its commit, which pins the manifest.
        """
        locked = self._locked.get(package.name)
        if locked is None or locked.ref != package.ref:
            return None
        if not package.constraint.allows(locked.version):
            return None
        if isinstance(locked.source, GitSource):
            return locked

        listing = await self._store.get_listing(package.ref)
        if not await listing.contains(locked.version):
            logger.debug("locked %s is no longer available", locked)
            return None
        return locked

    async def _count_versions(self, package: PackageRange) -> int:
        if package.is_root:
            return 1
        if await self._locked_for(package) is not None:
            return 1
        listing = await self._store.get_listing(package.ref)
        return await listing.count(
            package.constraint,
            include_prereleases=self._allow_prereleases,
            limit=CANDIDATE_COUNT_LIMIT,
        )

    async def _best_version(self, package: PackageRange) -> Optional[PackageId]:
        if package.is_root:
            return self._root_id

        locked = await self._locked_for(package)
        if locked is not None:
            return locked

        listing = await self._store.get_listing(package.ref)
        if self._mode is ResolutionMode.DOWNGRADE:
            version = await listing.oldest(
                package.constraint, include_prereleases=self._allow_prereleases
            )
        else:
            version = await listing.newest(
                package.constraint, include_prereleases=self._allow_prereleases
            )
        if version is None:
            return None
        return PackageId(package.name, version, package.source)

    async def _incompatibilities_for(self, package_id: PackageId) -> List[Incompatibility]:
        """Return one dependency incompatibility per dependency of *package_id*."""
        if package_id.is_root:
            dependencies = list(self._root.dependencies) + list(self._root.dev_dependencies)
        else:
            manifest = await self._store.get_manifest(package_id)
            dependencies = list(manifest.dependencies)

        effective = [self._overrides.get(d.name, d) for d in dependencies]
        depender = package_id.to_range()
        result = [
            Incompatibility(
                [Term(depender, True), Term(dependency.to_range(), False)],
                DependencyCause(),
            )
            for dependency in effective
        ]

        self._start_prefetch(PackageRef(d.name, d.source) for d in effective)
        return result

    def _add_incompatibility(self, incompatibility: Incompatibility) -> None:
        logger.debug("fact: %s", incompatibility)
        for term in incompatibility.terms:
            self._incompatibilities.setdefault(term.name, []).append(incompatibility)

    # ------------------------------------------------------------------
    # Prefetching
    # ------------------------------------------------------------------

    def _start_prefetch(self, refs: Iterable[PackageRef]) -> None:
        if not self._prefetch:
            return
        wanted = [ref for ref in refs if self._store.cached_listing(ref) is None]
        if not wanted:
            return
        task = asyncio.ensure_future(self._store.prefetch_listings(wanted))
        self._prefetch_tasks.add(task)
        task.add_done_callback(self._prefetch_tasks.discard)

    def _stop_prefetching(self) -> None:
        for task in list(self._prefetch_tasks):
            task.cancel()
        self._prefetch_tasks.clear()
        self._store.cancel_pending()

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    async def _result(self) -> Solved:
        packages: Dict[str, PackageId] = {}
        manifests: Dict[str, PackageManifest] = {self._root.name: self._root}
        for package_id in sorted(self._solution.decisions, key=lambda p: p.name):
            if package_id.is_root:
                continue
            packages[package_id.name] = package_id
            manifests[package_id.name] = await self._store.get_manifest(package_id)

        logger.debug(
            "solution: %s", ", ".join(str(p) for p in packages.values()) or "(empty)"
        )
        return Solved(
            root=self._root_id,
            packages=packages,
            manifests=manifests,
            attempted_solutions=self._solution.attempted_solutions,
            overrides=dict(self._overrides),
        )


async def resolve_versions(
    root: PackageManifest,
    sources: SourceRegistry,
    **options: Any,
) -> Solved:
    """Solve *root* and return the solution.

    Keyword options are passed to :class:`VersionSolver`.

    Raises:
        ConstraintConflict: No solution exists; carries the explanation.
        SearchExhausted: The iteration or time ceiling was hit.
        SolveCancelled: The cancel event was set.
        SourceError: A source failed.
    """
    result = await VersionSolver(root, sources, **options).solve()
    if isinstance(result, Unsolvable):
        raise ConstraintConflict(result.incompatibility, result.explanation)
    return result
