"""
Core functionality exports for versolver.

Importing from here keeps user-facing imports short::

    from versolver.core import VersionSolver, SourceRegistry, build_lockfile
"""

from __future__ import annotations

from versolver.core.parser import (
    build_manifest,
    load_manifest,
    parse_constraint,
    parse_dependency,
    parse_manifest,
)
from versolver.core.sources import (
    GitBackend,
    GitCli,
    GitClient,
    HostedBackend,
    HttpRegistryClient,
    Page,
    PathBackend,
    RegistryClient,
    SourceBackend,
    SourceRegistry,
    VersionListing,
)
from versolver.core.data_store import PackageDataStore
from versolver.core.partial_solution import Assignment, PartialSolution
from versolver.core.explain import FailureExplainer, explain_failure
from versolver.core.solver import (
    ResolutionMode,
    Solved,
    SolveResult,
    Unsolvable,
    VersionSolver,
    resolve_versions,
)
from versolver.core.lockfile_builder import build_lockfile

__all__ = [
    # Manifests
    "parse_constraint",
    "parse_dependency",
    "parse_manifest",
    "build_manifest",
    "load_manifest",
    # Sources
    "Page",
    "VersionListing",
    "SourceBackend",
    "RegistryClient",
    "HttpRegistryClient",
    "HostedBackend",
    "GitClient",
    "GitCli",
    "GitBackend",
    "PathBackend",
    "SourceRegistry",
    "PackageDataStore",
    # Solving
    "Assignment",
    "PartialSolution",
    "ResolutionMode",
    "Solved",
    "Unsolvable",
    "SolveResult",
    "VersionSolver",
    "resolve_versions",
    "FailureExplainer",
    "explain_failure",
    "build_lockfile",
]
