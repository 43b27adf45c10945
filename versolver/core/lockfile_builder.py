"""Project a successful solve onto a :class:`~versolver.models.lockfile.Lockfile`."""

from __future__ import annotations

import asyncio
from typing import Iterator, List

from versolver.models.package import Dependency, PackageManifest
from versolver.models.lockfile import LockEntry, Lockfile
from versolver.core.solver import Solved
from versolver.core.sources import SourceRegistry
from versolver.utils.logger import get_logger
from versolver.exceptions import InternalInconsistency

logger = get_logger("lockfile")

__all__ = ["build_lockfile"]


async def build_lockfile(solved: Solved, sources: SourceRegistry) -> Lockfile:
    """Build the lockfile for *solved*.

    Every selected package gets one entry carrying its fully resolved
    reference (the commit for git, the absolute path for path, the exact
    version for hosted).

    Raises:
        InternalInconsistency: If the selection names a package twice,
            contains the root, or picked a source that contradicts an
            explicitly pinned dependency.
    """
    for name, package_id in solved.packages.items():
        if package_id.name != name:
            raise InternalInconsistency(
                f"Selection for {name} is keyed under the wrong name: {package_id}"
            )
        if package_id.is_root or name == solved.root.name:
            raise InternalInconsistency(f"Root package {name} is part of the selection")

    _check_pins(solved)

    ids = list(solved.packages.values())
    references = await asyncio.gather(*(sources.resolved_reference(i) for i in ids))

    entries: List[LockEntry] = []
    for package_id, resolved in zip(ids, references):
        entries.append(
            LockEntry(package_id.name, package_id.version, package_id.source, resolved)
        )

    logger.debug("Built lockfile with %d entries", len(entries))
    return Lockfile(tuple(entries))


def _check_pins(solved: Solved) -> None:
    overrides = solved.overrides

    for manifest in solved.manifests.values():
        is_root = manifest.name == solved.root.name
        for dependency in _declared(manifest, is_root=is_root):
            if dependency.name == solved.root.name:
                continue
            selected = solved.packages.get(dependency.name)
            if selected is None:
                raise InternalInconsistency(
                    f"{manifest.name} depends on {dependency.name}, "
                    "which was not selected"
                )

            expected = overrides.get(dependency.name, dependency)
            if expected.pinned and expected.source != selected.source:
                raise InternalInconsistency(
                    f"{dependency.name} is pinned to {expected.source.describe()} "
                    f"but {selected} was selected"
                )


def _declared(manifest: PackageManifest, *, is_root: bool) -> Iterator[Dependency]:
    yield from manifest.dependencies
    if is_root:
        yield from manifest.dev_dependencies
