"""Shared fixtures for the versolver test suite."""

from __future__ import annotations

import pytest

from versolver.core.sources import (
    GitBackend,
    HostedBackend,
    PathBackend,
    SourceRegistry,
)

from fakes import REGISTRY, FakeGitClient, FakeRegistry


@pytest.fixture
def registry() -> FakeRegistry:
    """An empty in-memory registry."""
    return FakeRegistry()


@pytest.fixture
def git_client() -> FakeGitClient:
    return FakeGitClient()


@pytest.fixture
def sources(registry: FakeRegistry, git_client: FakeGitClient) -> SourceRegistry:
    """Source registry wired to the in-memory registry and git client."""
    return SourceRegistry(
        hosted=HostedBackend(registry),
        git=GitBackend(git_client, REGISTRY),
        path=PathBackend(REGISTRY),
    )
