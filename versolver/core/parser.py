"""Manifest and constraint parsing.

Manifests are TOML documents named ``package.toml``::

    [package]
    name = "myapp"
    version = "1.0.0"

    [dependencies]
    foo = "^1.0.0"
    bar = { version = ">=1.0.0 <2.0.0", hosted = "https://registry.example" }
    baz = { path = "../baz" }
    qux = { git = "https://example.com/qux.git", ref = "main" }

    [dev-dependencies]
    test-kit = "any"

    [dependency-overrides]
    foo = { path = "../foo" }

Constraint text accepts ``any``, an exact version (``1.2.3``), a caret
range (``^1.2.3``) or comparison atoms joined by whitespace
(``>=1.0.0 <2.0.0``), all of which must hold.

Hosted registries serve the same dependency tables as JSON, so
:func:`build_manifest` works from an already-decoded mapping and
:func:`parse_manifest` adds only the TOML decoding and ``[package]`` table.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import tomli

from versolver.models.version import Version
from versolver.models.constraint import ANY, VersionConstraint, VersionRange
from versolver.models.package import (
    Dependency,
    GitSource,
    HostedSource,
    PackageId,
    PackageManifest,
    PackageSource,
    PathSource,
)
from versolver.utils.logger import get_logger
from versolver.utils.filesystem import safe_read_file
from versolver.exceptions import ManifestNotFound, ParseError
from versolver.constants import DEFAULT_REGISTRY_URL, MANIFEST_FILE

logger = get_logger("parser")

__all__ = [
    "parse_constraint",
    "parse_dependency",
    "build_manifest",
    "parse_manifest",
    "load_manifest",
]

_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")

# One comparison atom: optional operator, optional spaces, a version token.
_ATOM_PATTERN = re.compile(r"\s*(>=|<=|>|<|\^)?\s*([^\s<>=^]+)")

_DEPENDENCY_KEYS = frozenset({"version", "hosted", "path", "git", "ref"})
_SOURCE_KEYS = ("hosted", "path", "git")

_SECTIONS = {
    "dependencies": "dependencies",
    "dev-dependencies": "dev_dependencies",
}


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


def parse_constraint(text: str) -> VersionConstraint:
    """Parse constraint text into a :class:`VersionConstraint`.

    Raises:
        ParseError: If *text* is not valid constraint syntax.

    Example::

        >>> str(parse_constraint(">=1.0.0 <2.0.0"))
        '^1.0.0'
    """
    stripped = text.strip()
    if stripped == "any":
        return ANY
    if not stripped:
        raise ParseError("Empty version constraint", value=text)

    atoms: List[Tuple[Optional[str], Version]] = []
    position = 0
    while position < len(stripped):
        match = _ATOM_PATTERN.match(stripped, position)
        if match is None or match.end() == position:
            raise ParseError(
                f'Could not parse version constraint "{text}"', value=text
            )
        operator, raw_version = match.groups()
        try:
            atoms.append((operator, Version.parse(raw_version)))
        except ValueError as exc:
            raise ParseError(
                f'Invalid version "{raw_version}" in constraint "{text}"',
                value=text,
            ) from exc
        position = match.end()
        while position < len(stripped) and stripped[position].isspace():
            position += 1

    if len(atoms) > 1 and any(op in (None, "^") for op, _ in atoms):
        raise ParseError(
            f'Exact versions and caret ranges cannot be combined in "{text}"',
            value=text,
        )

    constraint: VersionConstraint = ANY
    for operator, version in atoms:
        constraint = constraint.intersect(_atom_constraint(operator, version))
    return constraint


def _atom_constraint(operator: Optional[str], version: Version) -> VersionConstraint:
    if operator is None:
        return VersionRange.exact(version)
    if operator == "^":
        return VersionRange.caret(version)
    if operator == ">=":
        return VersionRange(min=version, include_min=True)
    if operator == ">":
        return VersionRange(min=version)
    if operator == "<=":
        return VersionRange(max=version, include_max=True)
    return VersionRange(max=version)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def parse_dependency(
    name: str,
    raw: Union[str, Mapping[str, Any]],
    *,
    base_dir: Optional[Path] = None,
    default_registry: str = DEFAULT_REGISTRY_URL,
    file_path: Optional[str] = None,
    field: Optional[str] = None,
) -> Dependency:
    """Parse one dependency declaration.

    A bare string is a constraint on the default hosted registry. A table
    may name exactly one source (``hosted``, ``path`` or ``git``), which
    pins the dependency to that source.

    Args:
        name: Dependency name.
        raw: String constraint or table.
        base_dir: Directory relative ``path`` entries resolve against.
            ``None`` for manifests that do not live on local disk, which
            then may only use absolute paths.
        default_registry: Registry for dependencies without a source.
        file_path: Manifest path, for error messages.
        field: Dotted manifest field, for error messages.

    Raises:
        ParseError: If the declaration is malformed.
    """
    field = field or f"dependencies.{name}"
    _validate_name(name, file_path=file_path, field=field)

    if isinstance(raw, str):
        return Dependency(
            name,
            _constraint_at(raw, file_path=file_path, field=field),
            HostedSource(default_registry),
        )

    if not isinstance(raw, Mapping):
        raise ParseError(
            "A dependency must be a version string or a table",
            file_path=file_path,
            field=field,
            value=repr(raw),
        )

    unknown = sorted(set(raw) - _DEPENDENCY_KEYS)
    if unknown:
        raise ParseError(
            f"Unknown dependency key(s): {', '.join(unknown)}",
            file_path=file_path,
            field=field,
        )

    present = [key for key in _SOURCE_KEYS if key in raw]
    if len(present) > 1:
        raise ParseError(
            f"A dependency may only have one source, found {' and '.join(present)}",
            file_path=file_path,
            field=field,
        )
    if "ref" in raw and present != ["git"]:
        raise ParseError(
            '"ref" is only allowed for git dependencies',
            file_path=file_path,
            field=field,
        )

    constraint: VersionConstraint = ANY
    if "version" in raw:
        constraint = _constraint_at(
            _string_at(raw["version"], file_path, f"{field}.version"),
            file_path=file_path,
            field=f"{field}.version",
        )

    source: PackageSource
    if not present:
        return Dependency(name, constraint, HostedSource(default_registry))

    kind = present[0]
    value = _string_at(raw[kind], file_path, f"{field}.{kind}")
    if kind == "hosted":
        source = HostedSource(value)
    elif kind == "git":
        ref = _string_at(raw.get("ref", "HEAD"), file_path, f"{field}.ref")
        source = GitSource(value, ref)
    else:
        source = PathSource(_resolve_path(value, base_dir, file_path, field))

    return Dependency(name, constraint, source, pinned=True)


def _resolve_path(
    value: str,
    base_dir: Optional[Path],
    file_path: Optional[str],
    field: str,
) -> str:
    path = Path(os.path.expanduser(value))
    if path.is_absolute():
        return str(path)
    if base_dir is None:
        raise ParseError(
            "Relative path dependencies are only allowed in local manifests",
            file_path=file_path,
            field=f"{field}.path",
            value=value,
        )
    return str(base_dir / path)


def _constraint_at(text: str, *, file_path: Optional[str], field: str) -> VersionConstraint:
    try:
        return parse_constraint(text)
    except ParseError as exc:
        raise ParseError(exc.message, file_path=file_path, field=field, value=text) from exc


def _string_at(value: Any, file_path: Optional[str], field: str) -> str:
    if not isinstance(value, str):
        raise ParseError(
            "Expected a string",
            file_path=file_path,
            field=field,
            value=repr(value),
        )
    return value


def _validate_name(name: str, *, file_path: Optional[str], field: str) -> None:
    if not _NAME_PATTERN.match(name):
        raise ParseError(
            f'Invalid package name "{name}"',
            file_path=file_path,
            field=field,
            value=name,
        )


# ---------------------------------------------------------------------------
# Manifests
# ---------------------------------------------------------------------------


def build_manifest(
    package_id: PackageId,
    data: Mapping[str, Any],
    *,
    base_dir: Optional[Path] = None,
    default_registry: str = DEFAULT_REGISTRY_URL,
    file_path: Optional[str] = None,
) -> PackageManifest:
    """Build a manifest for *package_id* from decoded dependency tables.

    Raises:
        ParseError: If a section or dependency is malformed, or the package
            depends on itself.
    """
    sections: Dict[str, Tuple[Dependency, ...]] = {}
    for key, attribute in _SECTIONS.items():
        table = _table_at(data, key, file_path)
        sections[attribute] = tuple(
            parse_dependency(
                name,
                raw,
                base_dir=base_dir,
                default_registry=default_registry,
                file_path=file_path,
                field=f"{key}.{name}",
            )
            for name, raw in table.items()
        )

    for dependency in sections["dependencies"] + sections["dev_dependencies"]:
        if dependency.name == package_id.name:
            raise ParseError(
                f'A package may not list itself as a dependency: "{package_id.name}"',
                file_path=file_path,
                field=dependency.name,
            )

    overrides = {
        name: parse_dependency(
            name,
            raw,
            base_dir=base_dir,
            default_registry=default_registry,
            file_path=file_path,
            field=f"dependency-overrides.{name}",
        )
        for name, raw in _table_at(data, "dependency-overrides", file_path).items()
    }

    return PackageManifest(
        package_id,
        dependencies=sections["dependencies"],
        dev_dependencies=sections["dev_dependencies"],
        overrides=overrides,
    )


def _table_at(data: Mapping[str, Any], key: str, file_path: Optional[str]) -> Mapping[str, Any]:
    table = data.get(key) or {}
    if not isinstance(table, Mapping):
        raise ParseError(
            f'"{key}" must be a table', file_path=file_path, field=key
        )
    return table


def parse_manifest(
    text: str,
    *,
    source: Optional[PackageSource] = None,
    base_dir: Optional[Path] = None,
    default_registry: str = DEFAULT_REGISTRY_URL,
    file_path: Optional[str] = None,
) -> PackageManifest:
    """Parse ``package.toml`` text.

    Args:
        text: TOML document.
        source: Source the package was read from; ``None`` for the root.
        base_dir: Directory relative path dependencies resolve against.
        default_registry: Registry for dependencies without a source.
        file_path: Manifest path, for error messages.

    Raises:
        ParseError: If the document is not valid TOML or not a valid
            manifest.
    """
    try:
        data = tomli.loads(text)
    except tomli.TOMLDecodeError as exc:
        raise ParseError(f"Invalid TOML: {exc}", file_path=file_path) from exc

    package = data.get("package")
    if not isinstance(package, Mapping):
        raise ParseError(
            'Missing "[package]" table', file_path=file_path, field="package"
        )

    name = package.get("name")
    if not isinstance(name, str):
        raise ParseError(
            'Missing "name" field', file_path=file_path, field="package.name"
        )
    _validate_name(name, file_path=file_path, field="package.name")

    raw_version = _string_at(
        package.get("version", "0.0.0"), file_path, "package.version"
    )
    try:
        version = Version.parse(raw_version)
    except ValueError as exc:
        raise ParseError(
            f'Invalid version "{raw_version}"',
            file_path=file_path,
            field="package.version",
            value=raw_version,
        ) from exc

    return build_manifest(
        PackageId(name, version, source),
        data,
        base_dir=base_dir,
        default_registry=default_registry,
        file_path=file_path,
    )


def load_manifest(
    directory: Union[str, Path],
    *,
    source: Optional[PackageSource] = None,
    default_registry: str = DEFAULT_REGISTRY_URL,
) -> PackageManifest:
    """Read and parse ``<directory>/package.toml``.

    Raises:
        ManifestNotFound: If the directory has no manifest file.
        ParseError: If the manifest is invalid.
    """
    directory = Path(os.path.abspath(directory))
    manifest_path = directory / MANIFEST_FILE
    if not manifest_path.is_file():
        raise ManifestNotFound(
            f'Could not find a file named "{MANIFEST_FILE}" in "{directory}".',
            source=f"path {directory}",
        )

    logger.debug("Reading manifest %s", manifest_path)
    return parse_manifest(
        safe_read_file(manifest_path),
        source=source,
        base_dir=directory,
        default_registry=default_registry,
        file_path=str(manifest_path),
    )
