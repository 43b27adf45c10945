"""Per-solve package data store.

Provides an async-safe cache in front of a :class:`SourceRegistry` so that
one solve session fetches each version listing (per :class:`PackageRef`)
and each manifest (per :class:`PackageId`) at most once, successful or
not. The store lives exactly as long as one
:class:`~versolver.core.solver.VersionSolver`; nothing is shared between
solves.

Typical usage::

    store = PackageDataStore(sources, concurrent_limit=5)

    # warm the cache while the solver does other work
    await store.prefetch_listings([PackageRef("foo", hosted)])

    listing = await store.get_listing(PackageRef("foo", hosted))
    manifest = await store.get_manifest(PackageId("foo", version, hosted))
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, Optional

from versolver.models.package import PackageId, PackageManifest, PackageRef
from versolver.core.sources import SourceRegistry, VersionListing
from versolver.utils.logger import get_logger
from versolver.constants import DEFAULT_CONCURRENT_LIMIT

logger = get_logger("data_store")

__all__ = ["PackageDataStore"]


class PackageDataStore:
    """Async-safe, per-solve cache for listings and manifests.

    Each key triggers **at most one** source call. A second request for a
    key that is still in flight awaits the same task instead of starting
    another fetch, and an :class:`asyncio.Semaphore` limits how many
    fetches run at once. Failures are kept too: the error reaches every
    waiter, and a later request for the key raises it again without
    calling the source.

    Args:
        sources: Source dispatcher to fetch from.
        concurrent_limit: Maximum number of in-flight source calls.
    """

    def __init__(
        self,
        sources: SourceRegistry,
        concurrent_limit: int = DEFAULT_CONCURRENT_LIMIT,
    ) -> None:
        self.sources = sources
        self._semaphore = asyncio.Semaphore(concurrent_limit)

        self._listings: Dict[PackageRef, VersionListing] = {}
        self._manifests: Dict[PackageId, PackageManifest] = {}
        self._pending: Dict[Hashable, "asyncio.Future[Any]"] = {}
        self._failures: Dict[Hashable, Exception] = {}

        # Number of source calls actually made, per kind.
        self.fetch_counts: Dict[str, int] = {"listing": 0, "manifest": 0}

    # ------------------------------------------------------------------
    # Public async accessors
    # ------------------------------------------------------------------

    async def get_listing(self, ref: PackageRef) -> VersionListing:
        """Return the (cached) version listing for *ref*."""
        return await self._load(
            self._listings, ref, "listing", lambda: self.sources.list_versions(ref)
        )

    async def get_manifest(self, package_id: PackageId) -> PackageManifest:
        """Return the (cached) manifest for *package_id*."""
        return await self._load(
            self._manifests,
            package_id,
            "manifest",
            lambda: self.sources.fetch_manifest(package_id),
        )

    async def prefetch_listings(self, refs: Iterable[PackageRef]) -> None:
        """Concurrently warm listings and their first page.

        Errors are ignored here; the solver's own request for the same ref
        raises them.
        """
        await asyncio.gather(
            *(self._prime(ref) for ref in refs),
            return_exceptions=True,
        )

    async def prefetch_manifests(self, ids: Iterable[PackageId]) -> None:
        """Concurrently warm manifests; errors are deferred as above."""
        await asyncio.gather(
            *(self.get_manifest(package_id) for package_id in ids),
            return_exceptions=True,
        )

    # ------------------------------------------------------------------
    # Public synchronous accessors (cache-only, no I/O)
    # ------------------------------------------------------------------

    def cached_listing(self, ref: PackageRef) -> Optional[VersionListing]:
        return self._listings.get(ref)

    def cached_manifest(self, package_id: PackageId) -> Optional[PackageManifest]:
        return self._manifests.get(package_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _prime(self, ref: PackageRef) -> None:
        listing = await self.get_listing(ref)
        await listing.prime()

    async def _load(
        self,
        cache: Dict[Any, Any],
        key: Hashable,
        kind: str,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        # Fast path: already cached.
        if key in cache:
            return cache[key]

        pending_key = (kind, key)
        if pending_key in self._failures:
            raise self._failures[pending_key]

        task = self._pending.get(pending_key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(cache, key, kind, fetch))
            self._pending[pending_key] = task
            task.add_done_callback(lambda done: self._forget(pending_key, done))
        return await asyncio.shield(task)

    async def _fetch(
        self,
        cache: Dict[Any, Any],
        key: Hashable,
        kind: str,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        async with self._semaphore:
            # Second check: a previous task may have filled the cache.
            if key in cache:
                return cache[key]
            self.fetch_counts[kind] += 1
            logger.debug("Fetching %s for %s", kind, key)
            try:
                value = await fetch()
            except Exception as exc:
                self._failures[(kind, key)] = exc
                raise
            cache[key] = value
            return value

    def cancel_pending(self) -> None:
        """Cancel fetches still in flight, e.g. speculative prefetches."""
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()

    def _forget(self, pending_key: Hashable, task: "asyncio.Future[Any]") -> None:
        if self._pending.get(pending_key) is task:
            del self._pending[pending_key]
        # Waiters re-raise the error themselves; mark it retrieved for
        # tasks whose waiters went away.
        if not task.cancelled():
            task.exception()
