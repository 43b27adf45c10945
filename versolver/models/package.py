"""
Package identity data models for versolver.

This module defines the closed set of package sources and the value types
that combine a package name with a source, a version or a constraint:

- :class:`HostedSource`, :class:`GitSource`, :class:`PathSource`
- :class:`PackageRef`: ``(name, source)``
- :class:`PackageId`: ``(name, version, source)``, the unit a decision assigns
- :class:`PackageRange`: ``(name, source, constraint)``
- :class:`Dependency` and :class:`PackageManifest`

The root package is the only package without a source (``source is None``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from versolver.models.version import Version
from versolver.models.constraint import ANY, VersionConstraint, VersionRange

__all__ = [
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
]


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HostedSource:
    """A package served by a hosted registry.

    Attributes:
        url: Base URL of the registry (no trailing slash).
    """

    url: str

    kind: ClassVar[str] = "hosted"

    def __post_init__(self) -> None:
        object.__setattr__(self, "url", self.url.rstrip("/"))

    def describe(self) -> str:
        return f"hosted {self.url}"

    def to_json(self) -> Dict[str, str]:
        return {"url": self.url}


@dataclass(frozen=True)
class GitSource:
    """A package checked out from a git repository.

    Attributes:
        url: Repository URL.
        ref: Branch, tag or commit to check out.
        commit: Commit the ref resolved to, once known. Not part of the
            source identity.
    """

    url: str
    ref: str = "HEAD"
    commit: Optional[str] = field(default=None, compare=False)

    kind: ClassVar[str] = "git"

    def describe(self) -> str:
        if self.ref == "HEAD":
            return f"git {self.url}"
        return f"git {self.url} at {self.ref}"

    def to_json(self) -> Dict[str, str]:
        return {"url": self.url, "ref": self.ref}


@dataclass(frozen=True)
class PathSource:
    """A package read from a local directory.

    Attributes:
        path: Absolute, normalized directory path.
    """

    path: str

    kind: ClassVar[str] = "path"

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", os.path.normpath(os.path.abspath(self.path)))

    def describe(self) -> str:
        return f"path {self.path}"

    def to_json(self) -> Dict[str, str]:
        return {"path": self.path}


PackageSource = Union[HostedSource, GitSource, PathSource]


def source_from_json(kind: str, description: Dict[str, Any]) -> PackageSource:
    """Rebuild a source from its ``kind`` and :meth:`to_json` description.

    Raises:
        ValueError: If *kind* is unknown or the description is incomplete.
    """
    try:
        if kind == HostedSource.kind:
            return HostedSource(str(description["url"]))
        if kind == GitSource.kind:
            return GitSource(
                str(description["url"]),
                str(description.get("ref", "HEAD")),
                description.get("resolved"),
            )
        if kind == PathSource.kind:
            return PathSource(str(description["path"]))
    except KeyError as exc:
        raise ValueError(f"Missing {exc.args[0]!r} in {kind} source") from exc
    raise ValueError(f"Unknown source kind: {kind!r}")


def _suffix(source: Optional[PackageSource]) -> str:
    if source is None or isinstance(source, HostedSource):
        return ""
    return f" from {source.describe()}"


# ---------------------------------------------------------------------------
# References, ids and ranges
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PackageRef:
    """A package name bound to the source it comes from."""

    name: str
    source: Optional[PackageSource]

    @property
    def is_root(self) -> bool:
        return self.source is None

    def __str__(self) -> str:
        return f"{self.name}{_suffix(self.source)}"


@dataclass(frozen=True)
class PackageId:
    """One concrete version of a package from one source."""

    name: str
    version: Version
    source: Optional[PackageSource]

    @property
    def ref(self) -> PackageRef:
        return PackageRef(self.name, self.source)

    @property
    def is_root(self) -> bool:
        return self.source is None

    def to_range(self) -> "PackageRange":
        return PackageRange(self.name, self.source, VersionRange.exact(self.version))

    def __str__(self) -> str:
        return f"{self.name} {self.version}{_suffix(self.source)}"


@dataclass(frozen=True)
class PackageRange:
    """A package name and source restricted to a set of versions."""

    name: str
    source: Optional[PackageSource]
    constraint: VersionConstraint = ANY

    @property
    def ref(self) -> PackageRef:
        return PackageRef(self.name, self.source)

    @property
    def is_root(self) -> bool:
        return self.source is None

    def with_constraint(self, constraint: VersionConstraint) -> "PackageRange":
        return PackageRange(self.name, self.source, constraint)

    def allows(self, package_id: PackageId) -> bool:
        return (
            package_id.ref == self.ref
            and self.constraint.allows(package_id.version)
        )

    def __str__(self) -> str:
        if self.is_root:
            return self.name
        return f"{self.name} {self.constraint}{_suffix(self.source)}"


# ---------------------------------------------------------------------------
# Manifests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Dependency:
    """A declared dependency of a manifest.

    Attributes:
        name: Target package name.
        constraint: Allowed versions of the target.
        source: Source the target is fetched from.
        pinned: ``True`` when the manifest named the source explicitly.
    """

    name: str
    constraint: VersionConstraint
    source: PackageSource
    pinned: bool = False

    def to_range(self) -> PackageRange:
        return PackageRange(self.name, self.source, self.constraint)

    def __str__(self) -> str:
        return str(self.to_range())


@dataclass(frozen=True)
class PackageManifest:
    """A package's declared identity and dependencies.

    ``dev_dependencies`` and ``overrides`` are honoured only on the root
    manifest; they are ignored for every other package.
    """

    id: PackageId
    dependencies: Tuple[Dependency, ...] = ()
    dev_dependencies: Tuple[Dependency, ...] = ()
    overrides: Dict[str, Dependency] = field(default_factory=dict, hash=False)

    @property
    def name(self) -> str:
        return self.id.name

    @property
    def version(self) -> Version:
        return self.id.version
