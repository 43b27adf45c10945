"""Tests for versolver.core.sources."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from versolver.core.sources import (
    GitBackend,
    GitCli,
    HostedBackend,
    HttpRegistryClient,
    Page,
    PathBackend,
    SourceRegistry,
    VersionListing,
)
from versolver.exceptions import (
    ManifestNotFound,
    NetworkError,
    SourceError,
    SourceUnavailable,
)
from versolver.models import (
    GitSource,
    HostedSource,
    PackageId,
    PackageRef,
    PathSource,
    Version,
    VersionRange,
)
from versolver.utils.http import HTTPClient

from fakes import REGISTRY, FakeGitClient, FakeRegistry, write_package

HOSTED = HostedSource(REGISTRY)


def v(text: str) -> Version:
    return Version.parse(text)


def paged_listing(pages: List[List[str]]) -> Tuple[VersionListing, List[Optional[str]]]:
    """Build a listing over fixed pages, recording every cursor requested."""
    requested: List[Optional[str]] = []

    async def fetch(cursor: Optional[str]) -> Page:
        requested.append(cursor)
        index = int(cursor or 0)
        next_cursor = str(index + 1) if index + 1 < len(pages) else None
        return Page([v(t) for t in pages[index]], next_cursor)

    return VersionListing(fetch), requested


# ============================================================================
# VersionListing
# ============================================================================


@pytest.mark.unit
class TestVersionListing:
    """Tests for the lazy, paginated version listing."""

    @pytest.mark.asyncio
    async def test_newest_stops_at_first_match(self) -> None:
        """newest() fetches only the pages it needs."""
        listing, requested = paged_listing([["3.0.0", "2.0.0"], ["1.5.0", "1.0.0"]])

        newest = await listing.newest(VersionRange.caret(v("2.0.0")))

        assert newest == v("2.0.0")
        assert requested == [None]
        assert not listing.is_exhausted

    @pytest.mark.asyncio
    async def test_all_fetches_every_page_once(self) -> None:
        """all() walks every page; a second walk replays cached pages."""
        listing, requested = paged_listing([["3.0.0"], ["2.0.0"], ["1.0.0"]])

        first = await listing.all()
        second = await listing.all()

        assert first == second == [v("3.0.0"), v("2.0.0"), v("1.0.0")]
        assert requested == [None, "1", "2"]
        assert listing.is_exhausted

    @pytest.mark.asyncio
    async def test_newest_prefers_release(self) -> None:
        """A release wins over a newer pre-release when both are admitted."""
        listing = VersionListing.of([v("2.0.0-beta"), v("1.5.0")])

        assert await listing.newest(
            VersionRange(min=v("1.0.0"), include_min=True), include_prereleases=True
        ) == v("1.5.0")

    @pytest.mark.asyncio
    async def test_newest_falls_back_to_prerelease(self) -> None:
        """A pre-release is chosen only when no release is admitted."""
        listing = VersionListing.of([v("2.0.0-beta"), v("1.5.0")])
        constraint = VersionRange(min=v("2.0.0-alpha"), include_min=True)

        assert await listing.newest(constraint) == v("2.0.0-beta")

    @pytest.mark.asyncio
    async def test_oldest_and_count(self) -> None:
        """oldest() and count() respect the constraint."""
        listing = VersionListing.of([v("1.0.0"), v("1.2.0"), v("2.0.0")])
        caret = VersionRange.caret(v("1.0.0"))

        assert await listing.oldest(caret) == v("1.0.0")
        assert await listing.count(caret) == 2
        assert await listing.oldest(VersionRange.caret(v("5.0.0"))) is None

    @pytest.mark.asyncio
    async def test_count_limit_reads_prefix(self) -> None:
        """count() with a limit stops paging once enough versions are found."""
        listing, requested = paged_listing([["3.0.0", "2.0.0"], ["1.5.0", "1.0.0"]])

        assert await listing.count(VersionRange(), limit=2) == 2
        assert requested == [None]
        assert await listing.count(VersionRange()) == 4

    @pytest.mark.asyncio
    async def test_contains_stops_below_version(self) -> None:
        """contains() reads pages only down to the version asked for."""
        listing, requested = paged_listing([["3.0.0", "2.0.0"], ["1.5.0", "1.0.0"]])

        assert await listing.contains(v("2.0.0")) is True
        assert await listing.contains(v("2.5.0")) is False
        assert requested == [None]
        assert await listing.contains(v("1.2.0")) is False
        assert await listing.contains(v("0.1.0")) is False
        assert requested == [None, "1"]

    @pytest.mark.asyncio
    async def test_failed_page_is_not_refetched(self) -> None:
        """A page whose fetch failed raises the same error on every read."""
        calls: List[Optional[str]] = []

        async def fetch(cursor: Optional[str]) -> Page:
            calls.append(cursor)
            raise SourceUnavailable("registry down")

        listing = VersionListing(fetch)

        with pytest.raises(SourceUnavailable):
            await listing.prime()
        with pytest.raises(SourceUnavailable, match="registry down"):
            await listing.all()

        assert calls == [None]

    @pytest.mark.asyncio
    async def test_of_sorts_newest_first(self) -> None:
        """Known versions are listed newest first."""
        listing = VersionListing.of([v("1.0.0"), v("3.0.0"), v("2.0.0")])

        assert await listing.all() == [v("3.0.0"), v("2.0.0"), v("1.0.0")]


# ============================================================================
# Hosted
# ============================================================================


@pytest.mark.unit
class TestHostedBackend:
    """Tests for HostedBackend over the in-memory registry."""

    @pytest.mark.asyncio
    async def test_list_versions_is_lazy(self) -> None:
        """Only the first page is fetched to find the newest match."""
        registry = FakeRegistry(page_size=2)
        for version in ["1.0.0", "1.1.0", "1.2.0", "2.0.0", "2.1.0"]:
            registry.add("foo", version)
        backend = HostedBackend(registry)

        listing = await backend.list_versions(PackageRef("foo", HOSTED))
        newest = await listing.newest(VersionRange.caret(v("2.0.0")))

        assert newest == v("2.1.0")
        assert registry.calls_for("foo") == 1

        assert len(await listing.all()) == 5
        assert registry.calls_for("foo") == 3

    @pytest.mark.asyncio
    async def test_fetch_manifest_uses_listing_data(self) -> None:
        """Manifests come from the listing pages."""
        registry = FakeRegistry().add("foo", "1.0.0", {"bar": "^2.0.0"})
        backend = HostedBackend(registry)

        manifest = await backend.fetch_manifest(PackageId("foo", v("1.0.0"), HOSTED))

        assert manifest.id == PackageId("foo", v("1.0.0"), HOSTED)
        assert [str(d) for d in manifest.dependencies] == ["bar ^2.0.0"]
        assert manifest.dependencies[0].source == HOSTED

    @pytest.mark.asyncio
    async def test_fetch_manifest_walks_pages(self) -> None:
        """An old version is found on a later page."""
        registry = FakeRegistry(page_size=1)
        registry.add("foo", "1.0.0", {"bar": "any"}).add("foo", "2.0.0")
        backend = HostedBackend(registry)

        manifest = await backend.fetch_manifest(PackageId("foo", v("1.0.0"), HOSTED))

        assert [d.name for d in manifest.dependencies] == ["bar"]
        assert registry.calls_for("foo") == 2

    @pytest.mark.asyncio
    async def test_fetch_manifest_unknown_version(self) -> None:
        """A version the registry does not list is ManifestNotFound."""
        backend = HostedBackend(FakeRegistry().add("foo", "1.0.0"))

        with pytest.raises(ManifestNotFound):
            await backend.fetch_manifest(PackageId("foo", v("9.0.0"), HOSTED))

    @pytest.mark.asyncio
    async def test_unknown_package(self) -> None:
        """The registry's ManifestNotFound propagates when the listing is read."""
        backend = HostedBackend(FakeRegistry())

        listing = await backend.list_versions(PackageRef("nope", HOSTED))
        with pytest.raises(ManifestNotFound):
            await listing.all()

    @pytest.mark.asyncio
    async def test_malformed_response(self) -> None:
        """A document without a versions list is SourceUnavailable."""
        client = MagicMock()
        client.fetch_page = AsyncMock(return_value={"name": "foo"})
        backend = HostedBackend(client)

        listing = await backend.list_versions(PackageRef("foo", HOSTED))
        with pytest.raises(SourceUnavailable, match="Malformed"):
            await listing.all()

    @pytest.mark.asyncio
    async def test_resolved_reference_is_version(self) -> None:
        """Hosted packages lock to their exact version."""
        backend = HostedBackend(FakeRegistry())

        assert (
            await backend.resolved_reference(PackageId("foo", v("1.2.0"), HOSTED))
            == "1.2.0"
        )


@pytest.mark.unit
class TestHttpRegistryClient:
    """Tests for the HTTP registry transport."""

    @pytest.mark.asyncio
    async def test_first_page_url(self) -> None:
        """The first page is requested from the package API endpoint."""
        http = MagicMock(spec=HTTPClient)
        http.get_json = AsyncMock(return_value={"versions": []})
        client = HttpRegistryClient(http)

        await client.fetch_page(REGISTRY, "foo", None)

        http.get_json.assert_awaited_once_with(f"{REGISTRY}/api/packages/foo")

    @pytest.mark.asyncio
    async def test_cursor_is_next_url(self) -> None:
        """Later pages follow the registry's next_url."""
        http = MagicMock(spec=HTTPClient)
        http.get_json = AsyncMock(return_value={"versions": []})
        client = HttpRegistryClient(http)

        await client.fetch_page(REGISTRY, "foo", f"{REGISTRY}/page/2")

        http.get_json.assert_awaited_once_with(f"{REGISTRY}/page/2")

    @pytest.mark.asyncio
    async def test_404_is_manifest_not_found(self) -> None:
        """A 404 means the package does not exist."""
        http = MagicMock(spec=HTTPClient)
        http.get_json = AsyncMock(side_effect=NetworkError("Not found", status_code=404))

        with pytest.raises(ManifestNotFound, match='"foo" was not found'):
            await HttpRegistryClient(http).fetch_page(REGISTRY, "foo", None)

    @pytest.mark.asyncio
    async def test_other_errors_are_unavailable(self) -> None:
        """Any other transport failure is SourceUnavailable."""
        http = MagicMock(spec=HTTPClient)
        http.get_json = AsyncMock(side_effect=NetworkError("Boom", status_code=503))

        with pytest.raises(SourceUnavailable) as exc_info:
            await HttpRegistryClient(http).fetch_page(REGISTRY, "foo", None)

        assert exc_info.value.package_name == "foo"
        assert isinstance(exc_info.value.__cause__, NetworkError)


# ============================================================================
# Git
# ============================================================================

GIT_URL = "https://git.test/foo"


@pytest.mark.unit
class TestGitBackend:
    """Tests for GitBackend over the fake git client."""

    @pytest.mark.asyncio
    async def test_single_version_from_manifest(self, git_client: FakeGitClient) -> None:
        """A git source lists exactly the version its manifest declares."""
        git_client.add(GIT_URL, "main", "c0ffee", '[package]\nname = "foo"\nversion = "1.4.0"\n')
        backend = GitBackend(git_client, REGISTRY)

        listing = await backend.list_versions(PackageRef("foo", GitSource(GIT_URL, "main")))

        assert await listing.all() == [v("1.4.0")]

    @pytest.mark.asyncio
    async def test_commit_is_resolved_once(self, git_client: FakeGitClient) -> None:
        """The ref is resolved once and reported as the resolved reference."""
        git_client.add(GIT_URL, "main", "c0ffee", '[package]\nname = "foo"\nversion = "1.4.0"\n')
        backend = GitBackend(git_client, REGISTRY)
        package_id = PackageId("foo", v("1.4.0"), GitSource(GIT_URL, "main"))

        await backend.fetch_manifest(package_id)
        reference = await backend.resolved_reference(package_id)

        assert reference == "c0ffee"
        assert git_client.resolve_calls == 1

    @pytest.mark.asyncio
    async def test_locked_commit_skips_resolution(self, git_client: FakeGitClient) -> None:
        """A source that already carries a commit is not re-resolved."""
        backend = GitBackend(git_client, REGISTRY)
        package_id = PackageId("foo", v("1.0.0"), GitSource(GIT_URL, "main", "abc"))

        assert await backend.resolved_reference(package_id) == "abc"
        assert git_client.resolve_calls == 0

    @pytest.mark.asyncio
    async def test_name_mismatch(self, git_client: FakeGitClient) -> None:
        """A repository declaring another package is ManifestNotFound."""
        git_client.add(GIT_URL, "HEAD", "c0ffee", '[package]\nname = "bar"\n')
        backend = GitBackend(git_client, REGISTRY)

        with pytest.raises(ManifestNotFound, match='found package "bar"'):
            await backend.list_versions(PackageRef("foo", GitSource(GIT_URL)))

    @pytest.mark.asyncio
    async def test_version_mismatch(self, git_client: FakeGitClient) -> None:
        """Asking for a version the repository does not declare fails."""
        git_client.add(GIT_URL, "HEAD", "c0ffee", '[package]\nname = "foo"\nversion = "2.0.0"\n')
        backend = GitBackend(git_client, REGISTRY)

        with pytest.raises(ManifestNotFound, match="declares version 2.0.0"):
            await backend.fetch_manifest(PackageId("foo", v("1.0.0"), GitSource(GIT_URL)))

    @pytest.mark.asyncio
    async def test_dependencies_use_default_registry(self, git_client: FakeGitClient) -> None:
        """Unsourced dependencies of a git package use the default registry."""
        git_client.add(
            GIT_URL,
            "HEAD",
            "c0ffee",
            '[package]\nname = "foo"\nversion = "1.0.0"\n[dependencies]\nbar = "^1.0.0"\n',
        )
        backend = GitBackend(git_client, REGISTRY)

        manifest = await backend.fetch_manifest(
            PackageId("foo", v("1.0.0"), GitSource(GIT_URL))
        )

        assert manifest.dependencies[0].source == HOSTED


@pytest.mark.unit
class TestGitCli:
    """Tests for the git executable wrapper."""

    @pytest.mark.asyncio
    async def test_full_commit_is_not_resolved(self) -> None:
        """A 40-character hex ref is already a commit."""
        commit = "a" * 40
        cli = GitCli()

        with patch.object(GitCli, "_run", new=AsyncMock()) as run:
            assert await cli.resolve_commit(GIT_URL, commit) == commit

        run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resolve_commit_parses_ls_remote(self) -> None:
        """The first ls-remote line gives the commit."""
        cli = GitCli()

        with patch.object(
            GitCli, "_run", new=AsyncMock(return_value="deadbeef\trefs/heads/main\n")
        ):
            assert await cli.resolve_commit(GIT_URL, "main") == "deadbeef"

    @pytest.mark.asyncio
    async def test_unknown_ref(self) -> None:
        """Empty ls-remote output means the ref does not exist."""
        cli = GitCli()

        with patch.object(GitCli, "_run", new=AsyncMock(return_value="")):
            with pytest.raises(ManifestNotFound, match='git ref "nope"'):
                await cli.resolve_commit(GIT_URL, "nope")

    @pytest.mark.asyncio
    async def test_missing_executable(self) -> None:
        """A git executable that cannot be started is SourceUnavailable."""
        cli = GitCli(executable="definitely-not-git")

        with patch(
            "asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError("no git")),
        ):
            with pytest.raises(SourceUnavailable, match="Could not run git"):
                await cli.resolve_commit(GIT_URL, "main")


# ============================================================================
# Path and dispatch
# ============================================================================


@pytest.mark.integration
class TestPathBackend:
    """Tests for PathBackend against real directories."""

    @pytest.mark.asyncio
    async def test_reads_local_manifest(self, tmp_path: Path) -> None:
        """The directory's manifest gives the only version."""
        write_package(tmp_path, "foo", "0.2.0")
        backend = PathBackend(REGISTRY)
        source = PathSource(str(tmp_path))

        listing = await backend.list_versions(PackageRef("foo", source))
        manifest = await backend.fetch_manifest(PackageId("foo", v("0.2.0"), source))

        assert await listing.all() == [v("0.2.0")]
        assert manifest.id.source == source
        assert await backend.resolved_reference(manifest.id) == source.path

    @pytest.mark.asyncio
    async def test_missing_manifest(self, tmp_path: Path) -> None:
        """A directory without package.toml is ManifestNotFound."""
        backend = PathBackend(REGISTRY)

        with pytest.raises(ManifestNotFound, match="package.toml"):
            await backend.list_versions(PackageRef("foo", PathSource(str(tmp_path))))


@pytest.mark.unit
class TestSourceRegistry:
    """Tests for dispatch by source type."""

    def test_backend_for_each_kind(self, sources: SourceRegistry) -> None:
        """Each source kind maps to its backend."""
        assert sources.backend_for(HOSTED) is sources.hosted
        assert sources.backend_for(GitSource(GIT_URL)) is sources.git
        assert sources.backend_for(PathSource("/tmp/x")) is sources.path

    def test_root_has_no_backend(self, sources: SourceRegistry) -> None:
        """The root package has no source to dispatch to."""
        with pytest.raises(SourceError):
            sources.backend_for(None)

    def test_create_wires_http_client(self) -> None:
        """create() shares one HTTP client through the hosted backend."""
        http = MagicMock(spec=HTTPClient)

        registry = SourceRegistry.create(http, default_registry=REGISTRY)

        assert isinstance(registry.hosted, HostedBackend)
        assert isinstance(registry.hosted.client, HttpRegistryClient)
        assert registry.hosted.client.http_client is http
        assert isinstance(registry.git, GitBackend)
        assert isinstance(registry.path, PathBackend)
        assert registry.path.default_registry == REGISTRY
