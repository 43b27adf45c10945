"""
Lockfile data models for versolver.

A :class:`Lockfile` is the serializable projection of a successful solve:
one :class:`LockEntry` per package, ordered by name. Its JSON form is
stable, so identical solves produce byte-identical files::

    {
      "packages": {
        "foo": {
          "description": {"url": "https://registry.versolver.dev"},
          "resolved": "1.2.0",
          "source": "hosted",
          "version": "1.2.0"
        }
      }
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from versolver.exceptions import ParseError
from versolver.models.package import PackageId, PackageSource, source_from_json
from versolver.models.version import Version

__all__ = ["LockEntry", "Lockfile"]


@dataclass(frozen=True)
class LockEntry:
    """One resolved package.

    Attributes:
        name: Package name.
        version: Exact selected version.
        source: Source the version comes from.
        resolved_ref: Fully resolved reference: the commit for git sources,
            the absolute path for path sources, the exact version for
            hosted sources.
    """

    name: str
    version: Version
    source: PackageSource
    resolved_ref: str

    @property
    def package_id(self) -> PackageId:
        return PackageId(self.name, self.version, self.source)

    def to_json(self) -> Dict[str, Any]:
        return {
            "version": str(self.version),
            "source": self.source.kind,
            "description": self.source.to_json(),
            "resolved": self.resolved_ref,
        }


@dataclass(frozen=True)
class Lockfile:
    """An ordered, immutable set of lock entries."""

    entries: Tuple[LockEntry, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "entries", tuple(sorted(self.entries, key=lambda e: e.name))
        )

    def __iter__(self) -> Iterator[LockEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, name: str) -> Optional[LockEntry]:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def to_preferences(self) -> Dict[str, PackageId]:
        """Return the name to :class:`PackageId` mapping used as a lock hint."""
        return {entry.name: entry.package_id for entry in self.entries}

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def dumps(self) -> str:
        """Serialize to JSON with sorted keys and a trailing newline."""
        document = {"packages": {e.name: e.to_json() for e in self.entries}}
        return json.dumps(document, indent=2, sort_keys=True) + "\n"

    @classmethod
    def loads(cls, text: str, *, file_path: Optional[str] = None) -> "Lockfile":
        """Parse a lockfile produced by :meth:`dumps`.

        Raises:
            ParseError: If *text* is not a valid lockfile.
        """
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParseError(
                f"Invalid lockfile JSON: {exc.msg}", file_path=file_path
            ) from exc

        packages = document.get("packages") if isinstance(document, dict) else None
        if not isinstance(packages, Mapping):
            raise ParseError(
                'Lockfile must contain a "packages" table', file_path=file_path
            )

        entries = [
            _entry_from_json(name, raw, file_path)
            for name, raw in packages.items()
        ]
        return cls(tuple(entries))


def _entry_from_json(name: str, raw: Any, file_path: Optional[str]) -> LockEntry:
    field_name = f"packages.{name}"
    if not isinstance(raw, Mapping):
        raise ParseError(
            "Lock entry must be a table", file_path=file_path, field=field_name
        )

    try:
        version = Version.parse(str(raw["version"]))
        resolved = str(raw["resolved"])
        description = dict(raw.get("description") or {})
        if raw["source"] == "git":
            description["resolved"] = resolved
        source = source_from_json(str(raw["source"]), description)
    except KeyError as exc:
        raise ParseError(
            f"Lock entry is missing {exc.args[0]!r}",
            file_path=file_path,
            field=field_name,
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ParseError(
            f"Invalid lock entry: {exc}",
            file_path=file_path,
            field=field_name,
            value=json.dumps(raw, sort_keys=True, default=str),
        ) from exc

    return LockEntry(name, version, source, resolved)
