"""
Unified data model exports for versolver.

Re-exports the value types the solver and its callers share, so users can
write ``from versolver.models import Version, VersionRange`` instead of
importing individual submodules.
"""

from __future__ import annotations

from versolver.models.version import Version
from versolver.models.constraint import (
    ANY,
    EMPTY,
    EmptyConstraint,
    VersionConstraint,
    VersionRange,
    VersionUnion,
)
from versolver.models.package import (
    Dependency,
    GitSource,
    HostedSource,
    PackageId,
    PackageManifest,
    PackageRange,
    PackageRef,
    PackageSource,
    PathSource,
    source_from_json,
)
from versolver.models.term import SetRelation, Term
from versolver.models.incompatibility import (
    ConflictCause,
    DependencyCause,
    Incompatibility,
    IncompatibilityCause,
    NoVersionsCause,
    RootCause,
)
from versolver.models.lockfile import LockEntry, Lockfile

__all__ = [
    "Version",
    "VersionConstraint",
    "EmptyConstraint",
    "VersionRange",
    "VersionUnion",
    "EMPTY",
    "ANY",
    "HostedSource",
    "GitSource",
    "PathSource",
    "PackageSource",
    "PackageRef",
    "PackageId",
    "PackageRange",
    "Dependency",
    "PackageManifest",
    "source_from_json",
    "SetRelation",
    "Term",
    "Incompatibility",
    "IncompatibilityCause",
    "RootCause",
    "DependencyCause",
    "NoVersionsCause",
    "ConflictCause",
    "LockEntry",
    "Lockfile",
]
