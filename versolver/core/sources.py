"""Package source abstraction.

The solver needs two things from a package source: the versions available
for a package (:meth:`SourceBackend.list_versions`) and the manifest of
one version (:meth:`SourceBackend.fetch_manifest`). Each variant of
:data:`~versolver.models.package.PackageSource` has one backend:

- :class:`HostedBackend` pages through a registry via a
  :class:`RegistryClient` (default: :class:`HttpRegistryClient`).
- :class:`GitBackend` resolves a ref to a commit and reads the manifest at
  that commit via a :class:`GitClient` (default: :class:`GitCli`).
- :class:`PathBackend` reads ``package.toml`` from a local directory.

:class:`SourceRegistry` dispatches on the source type. Backends never
retry; transport failures surface as :class:`SourceUnavailable` and
missing packages as :class:`ManifestNotFound`.

Typical usage::

    async with HTTPClient() as http:
        sources = SourceRegistry.create(http)
        listing = await sources.list_versions(PackageRef("foo", hosted))
        async for version in listing:
            ...
"""

from __future__ import annotations

import re
import asyncio
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from versolver.models.version import Version
from versolver.models.constraint import VersionConstraint
from versolver.models.package import (
    GitSource,
    HostedSource,
    PackageId,
    PackageManifest,
    PackageRef,
    PackageSource,
    PathSource,
)
from versolver.core.parser import build_manifest, load_manifest, parse_manifest
from versolver.utils.http import HTTPClient
from versolver.utils.logger import get_logger
from versolver.exceptions import (
    ManifestNotFound,
    NetworkError,
    SourceError,
    SourceUnavailable,
)
from versolver.constants import (
    DEFAULT_REGISTRY_URL,
    MANIFEST_FILE,
    REGISTRY_PACKAGE_API,
)

logger = get_logger("sources")

__all__ = [
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
]


# ---------------------------------------------------------------------------
# Lazy version listing
# ---------------------------------------------------------------------------


@dataclass
class Page:
    """One page of a version listing.

    Attributes:
        versions: Versions on this page, newest first.
        next_cursor: Opaque cursor of the following page, or ``None``.
    """

    versions: List[Version]
    next_cursor: Optional[str] = None


PageFetcher = Callable[[Optional[str]], Awaitable[Page]]


class VersionListing:
    """A lazy, restartable, finite sequence of versions, newest first.

    Pages are fetched only when iteration reaches them and are kept, so a
    second iteration replays fetched pages before fetching more. A page
    whose fetch failed is never requested again; every later read raises
    the same error.

    Args:
        fetch_page: Coroutine returning the page for a cursor; the first
            page is requested with ``None``.
    """

    def __init__(self, fetch_page: PageFetcher) -> None:
        self._fetch_page = fetch_page
        self._pages: List[List[Version]] = []
        self._cursor: Optional[str] = None
        self._exhausted = False
        self._error: Optional[Exception] = None
        self._lock = asyncio.Lock()

    @classmethod
    def of(cls, versions: Sequence[Version]) -> "VersionListing":
        """Build an already-exhausted listing from known versions."""
        listing = cls(_no_more_pages)
        listing._pages.append(sorted(versions, reverse=True))
        listing._exhausted = True
        return listing

    @property
    def is_exhausted(self) -> bool:
        return self._exhausted

    async def _page(self, index: int) -> Optional[List[Version]]:
        if index < len(self._pages):
            return self._pages[index]
        async with self._lock:
            while index >= len(self._pages) and not self._exhausted:
                # A failed page stays failed for the life of the listing.
                if self._error is not None:
                    raise self._error
                try:
                    page = await self._fetch_page(self._cursor)
                except Exception as exc:
                    self._error = exc
                    raise
                self._pages.append(sorted(page.versions, reverse=True))
                self._cursor = page.next_cursor
                self._exhausted = page.next_cursor is None
        return self._pages[index] if index < len(self._pages) else None

    async def _iterate(self) -> AsyncIterator[Version]:
        index = 0
        while True:
            page = await self._page(index)
            if page is None:
                return
            for version in page:
                yield version
            index += 1

    def __aiter__(self) -> AsyncIterator[Version]:
        return self._iterate()

    async def prime(self) -> None:
        """Fetch the first page, if it has not been fetched yet."""
        await self._page(0)

    async def all(self) -> List[Version]:
        """Materialize every version, newest first."""
        return [version async for version in self]

    async def newest(
        self, constraint: VersionConstraint, *, include_prereleases: bool = False
    ) -> Optional[Version]:
        """Return the newest admitted version, fetching as few pages as possible.

        A release always wins over a pre-release; a pre-release is returned
        only when no release is admitted.
        """
        best_prerelease: Optional[Version] = None
        async for version in self:
            if not constraint.admits(version, include_prereleases=include_prereleases):
                continue
            if not version.is_prerelease:
                return version
            if best_prerelease is None:
                best_prerelease = version
        return best_prerelease

    async def oldest(
        self, constraint: VersionConstraint, *, include_prereleases: bool = False
    ) -> Optional[Version]:
        """Return the oldest admitted version, preferring releases."""
        admitted = [
            v
            for v in await self.all()
            if constraint.admits(v, include_prereleases=include_prereleases)
        ]
        releases = [v for v in admitted if not v.is_prerelease]
        if releases:
            return min(releases)
        return min(admitted) if admitted else None

    async def contains(self, version: Version) -> bool:
        """Return whether *version* is listed, reading pages only down to it."""
        async for listed in self:
            if listed == version:
                return True
            if listed < version:
                return False
        return False

    async def count(
        self,
        constraint: VersionConstraint,
        *,
        include_prereleases: bool = False,
        limit: Optional[int] = None,
    ) -> int:
        """Return how many listed versions *constraint* admits.

        With *limit*, counting stops once that many are found, so only a
        prefix of the listing is read.
        """
        found = 0
        async for version in self:
            if constraint.admits(version, include_prereleases=include_prereleases):
                found += 1
                if limit is not None and found >= limit:
                    break
        return found


async def _no_more_pages(cursor: Optional[str]) -> Page:
    return Page([])


# ---------------------------------------------------------------------------
# Backend interface
# ---------------------------------------------------------------------------


class SourceBackend(ABC):
    """Lookup of versions and manifests for one source variant."""

    @abstractmethod
    async def list_versions(self, ref: PackageRef) -> VersionListing:
        """Return the versions of *ref*, newest first."""

    @abstractmethod
    async def fetch_manifest(self, package_id: PackageId) -> PackageManifest:
        """Return the manifest of *package_id*."""

    @abstractmethod
    async def resolved_reference(self, package_id: PackageId) -> str:
        """Return the fully resolved reference recorded in the lockfile."""


def _check_name(manifest: PackageManifest, ref: PackageRef) -> None:
    if manifest.name != ref.name:
        raise ManifestNotFound(
            f'Expected to find package "{ref.name}", found package '
            f'"{manifest.name}" instead.',
            package_name=ref.name,
            source=ref.source.describe() if ref.source else None,
        )


# ---------------------------------------------------------------------------
# Hosted registries
# ---------------------------------------------------------------------------


class RegistryClient(ABC):
    """Transport for hosted registries.

    A registry answers, for a package name, pages shaped like::

        {
          "name": "foo",
          "versions": [
            {"version": "1.2.0", "manifest": {"dependencies": {"bar": "^2.0.0"}}},
            ...
          ],
          "next_url": "https://registry.example/api/packages/foo?page=2"
        }
    """

    @abstractmethod
    async def fetch_page(
        self, registry: str, name: str, cursor: Optional[str]
    ) -> Mapping[str, Any]:
        """Return one page of the package document.

        Raises:
            ManifestNotFound: The registry does not know the package.
            SourceUnavailable: The registry could not be reached.
        """


class HttpRegistryClient(RegistryClient):
    """:class:`RegistryClient` over :class:`~versolver.utils.http.HTTPClient`.

    ``next_url`` is used as the cursor, so pagination follows whatever
    links the registry hands out.
    """

    def __init__(self, http_client: HTTPClient) -> None:
        self.http_client = http_client

    async def fetch_page(
        self, registry: str, name: str, cursor: Optional[str]
    ) -> Mapping[str, Any]:
        url = cursor or REGISTRY_PACKAGE_API.format(registry=registry, package=name)
        try:
            return await self.http_client.get_json(url)
        except NetworkError as exc:
            if exc.status_code == 404:
                raise ManifestNotFound(
                    f'Package "{name}" was not found on {registry}.',
                    package_name=name,
                    source=f"hosted {registry}",
                ) from exc
            raise SourceUnavailable(
                f'Could not reach {registry} while looking up "{name}": {exc.message}',
                package_name=name,
                source=f"hosted {registry}",
            ) from exc


class HostedBackend(SourceBackend):
    """Backend for :class:`HostedSource` packages.

    Manifests arrive with the listing pages, so fetching the manifest of a
    listed version costs no extra request. Dependencies without an
    explicit source default to the same registry as the depender.
    """

    def __init__(self, client: RegistryClient) -> None:
        self.client = client
        self._manifest_data: Dict[Tuple[str, str], Dict[Version, Mapping[str, Any]]] = {}

    async def list_versions(self, ref: PackageRef) -> VersionListing:
        source = _expect(ref.source, HostedSource)
        known = self._manifest_data.setdefault((source.url, ref.name), {})

        async def fetch_page(cursor: Optional[str]) -> Page:
            logger.debug("Fetching %s page %s", ref, cursor or "1")
            document = await self.client.fetch_page(source.url, ref.name, cursor)
            versions = []
            for entry in _entries(document, ref):
                version = _entry_version(entry, ref)
                manifest = entry.get("manifest") or {}
                if not isinstance(manifest, Mapping):
                    raise SourceUnavailable(
                        f"Malformed manifest for {ref.name} {version}",
                        package_name=ref.name,
                        source=source.describe(),
                    )
                known[version] = manifest
                versions.append(version)
            next_url = document.get("next_url")
            return Page(versions, next_url if isinstance(next_url, str) else None)

        return VersionListing(fetch_page)

    async def fetch_manifest(self, package_id: PackageId) -> PackageManifest:
        source = _expect(package_id.source, HostedSource)
        known = self._manifest_data.get((source.url, package_id.name), {})
        if package_id.version not in known:
            # Walk the listing until the page carrying this version arrives.
            listing = await self.list_versions(package_id.ref)
            async for version in listing:
                if version == package_id.version:
                    break
            known = self._manifest_data.get((source.url, package_id.name), {})
        data = known.get(package_id.version)
        if data is None:
            raise ManifestNotFound(
                f"Package {package_id} was not found on {source.url}.",
                package_name=package_id.name,
                source=source.describe(),
            )
        return build_manifest(package_id, data, default_registry=source.url)

    async def resolved_reference(self, package_id: PackageId) -> str:
        return str(package_id.version)


def _entries(document: Mapping[str, Any], ref: PackageRef) -> List[Mapping[str, Any]]:
    entries = document.get("versions")
    if not isinstance(entries, list) or not all(isinstance(e, Mapping) for e in entries):
        raise SourceUnavailable(
            f'Malformed registry response for "{ref.name}"',
            package_name=ref.name,
            source=ref.source.describe() if ref.source else None,
        )
    return entries


def _entry_version(entry: Mapping[str, Any], ref: PackageRef) -> Version:
    try:
        return Version.parse(str(entry["version"]))
    except (KeyError, ValueError) as exc:
        raise SourceUnavailable(
            f'Malformed version entry for "{ref.name}": {entry.get("version")!r}',
            package_name=ref.name,
            source=ref.source.describe() if ref.source else None,
        ) from exc


# ---------------------------------------------------------------------------
# Git repositories
# ---------------------------------------------------------------------------


class GitClient(ABC):
    """Git operations the git backend needs."""

    @abstractmethod
    async def resolve_commit(self, url: str, ref: str) -> str:
        """Return the commit *ref* points at in the repository at *url*."""

    @abstractmethod
    async def read_manifest(self, url: str, commit: str) -> str:
        """Return the text of ``package.toml`` at *commit*.

        Raises:
            ManifestNotFound: The commit has no manifest.
        """


_COMMIT_PATTERN = re.compile(r"^[0-9a-f]{40}$")


class GitCli(GitClient):
    """:class:`GitClient` that runs the ``git`` executable.

    Repositories are cloned once per instance into *cache_dir* (a temporary
    directory by default) and read with ``git show``.
    """

    def __init__(self, cache_dir: Optional[Path] = None, executable: str = "git") -> None:
        self.executable = executable
        self._cache_dir = cache_dir
        self._clones: Dict[str, Path] = {}
        self._clone_lock = asyncio.Lock()

    async def _run(self, *args: str, url: str) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SourceUnavailable(
                f"Could not run git: {exc}", source=f"git {url}"
            ) from exc

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise SourceUnavailable(
                f"git {args[0]} failed: {stderr.decode(errors='replace').strip()}",
                source=f"git {url}",
            )
        return stdout.decode()

    async def resolve_commit(self, url: str, ref: str) -> str:
        if _COMMIT_PATTERN.match(ref):
            return ref
        output = await self._run("ls-remote", url, ref, url=url)
        for line in output.splitlines():
            commit, _, _name = line.partition("\t")
            if commit:
                return commit
        raise ManifestNotFound(
            f'Could not find git ref "{ref}" in {url}.', source=f"git {url}"
        )

    async def _clone(self, url: str) -> Path:
        async with self._clone_lock:
            if url in self._clones:
                return self._clones[url]
            if self._cache_dir is None:
                self._cache_dir = Path(tempfile.mkdtemp(prefix="versolver-git-"))
            target = self._cache_dir / f"repo{len(self._clones)}"
            await self._run(
                "clone", "--quiet", "--no-checkout", url, str(target), url=url
            )
            self._clones[url] = target
            return target

    async def read_manifest(self, url: str, commit: str) -> str:
        clone = await self._clone(url)
        try:
            return await self._run(
                "-C", str(clone), "show", f"{commit}:{MANIFEST_FILE}", url=url
            )
        except SourceUnavailable as exc:
            raise ManifestNotFound(
                f'Could not find a file named "{MANIFEST_FILE}" in {url} at {commit}.',
                source=f"git {url}",
            ) from exc


class GitBackend(SourceBackend):
    """Backend for :class:`GitSource` packages.

    A git source provides exactly one version: the one declared by the
    manifest at the commit the ref resolves to.
    """

    def __init__(
        self, client: GitClient, default_registry: str = DEFAULT_REGISTRY_URL
    ) -> None:
        self.client = client
        self.default_registry = default_registry
        self._commits: Dict[Tuple[str, str], str] = {}

    async def _commit(self, source: GitSource) -> str:
        if source.commit is not None:
            return source.commit
        key = (source.url, source.ref)
        if key not in self._commits:
            self._commits[key] = await self.client.resolve_commit(source.url, source.ref)
        return self._commits[key]

    async def _manifest(self, ref: PackageRef) -> PackageManifest:
        source = _expect(ref.source, GitSource)
        commit = await self._commit(source)
        text = await self.client.read_manifest(source.url, commit)
        manifest = parse_manifest(
            text,
            source=source,
            default_registry=self.default_registry,
            file_path=f"{source.url}@{commit}/{MANIFEST_FILE}",
        )
        _check_name(manifest, ref)
        return manifest

    async def list_versions(self, ref: PackageRef) -> VersionListing:
        manifest = await self._manifest(ref)
        return VersionListing.of([manifest.version])

    async def fetch_manifest(self, package_id: PackageId) -> PackageManifest:
        manifest = await self._manifest(package_id.ref)
        if manifest.version != package_id.version:
            raise ManifestNotFound(
                f"Package {package_id} was not found; the repository "
                f"declares version {manifest.version}.",
                package_name=package_id.name,
                source=manifest.id.source.describe() if manifest.id.source else None,
            )
        return manifest

    async def resolved_reference(self, package_id: PackageId) -> str:
        return await self._commit(_expect(package_id.source, GitSource))


# ---------------------------------------------------------------------------
# Local paths
# ---------------------------------------------------------------------------


class PathBackend(SourceBackend):
    """Backend for :class:`PathSource` packages.

    The manifest is re-read on every call; caching within one solve is the
    data store's job.
    """

    def __init__(self, default_registry: str = DEFAULT_REGISTRY_URL) -> None:
        self.default_registry = default_registry

    async def _manifest(self, ref: PackageRef) -> PackageManifest:
        source = _expect(ref.source, PathSource)
        manifest = load_manifest(
            source.path, source=source, default_registry=self.default_registry
        )
        _check_name(manifest, ref)
        return manifest

    async def list_versions(self, ref: PackageRef) -> VersionListing:
        manifest = await self._manifest(ref)
        return VersionListing.of([manifest.version])

    async def fetch_manifest(self, package_id: PackageId) -> PackageManifest:
        manifest = await self._manifest(package_id.ref)
        if manifest.version != package_id.version:
            raise ManifestNotFound(
                f"Package {package_id} was not found; the directory "
                f"declares version {manifest.version}.",
                package_name=package_id.name,
                source=_expect(package_id.source, PathSource).describe(),
            )
        return manifest

    async def resolved_reference(self, package_id: PackageId) -> str:
        return _expect(package_id.source, PathSource).path


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def _expect(source: Optional[PackageSource], kind: type) -> Any:
    if not isinstance(source, kind):
        raise SourceError(f"Expected a {kind.__name__}, got {source!r}")
    return source


@dataclass
class SourceRegistry:
    """Dispatches source operations to the backend for each source type."""

    hosted: SourceBackend
    git: SourceBackend
    path: SourceBackend = field(default_factory=PathBackend)

    @classmethod
    def create(
        cls,
        http_client: HTTPClient,
        *,
        git_client: Optional[GitClient] = None,
        default_registry: str = DEFAULT_REGISTRY_URL,
    ) -> "SourceRegistry":
        """Wire the default backends around a shared HTTP client.

        *default_registry* is used by git and path manifests whose
        dependencies name no registry.
        """
        return cls(
            hosted=HostedBackend(HttpRegistryClient(http_client)),
            git=GitBackend(git_client or GitCli(), default_registry),
            path=PathBackend(default_registry),
        )

    def backend_for(self, source: Optional[PackageSource]) -> SourceBackend:
        if isinstance(source, HostedSource):
            return self.hosted
        if isinstance(source, GitSource):
            return self.git
        if isinstance(source, PathSource):
            return self.path
        raise SourceError(f"No backend for source {source!r}")

    async def list_versions(self, ref: PackageRef) -> VersionListing:
        return await self.backend_for(ref.source).list_versions(ref)

    async def fetch_manifest(self, package_id: PackageId) -> PackageManifest:
        return await self.backend_for(package_id.source).fetch_manifest(package_id)

    async def resolved_reference(self, package_id: PackageId) -> str:
        return await self.backend_for(package_id.source).resolved_reference(package_id)
