"""
versolver: conflict-driven dependency version solving.

versolver reads a root ``package.toml``, finds one version of every
transitively required package that satisfies all declared constraints,
and writes the result to ``package.lock``. When no such selection exists
it explains why, step by step.

Library use::

    from versolver.core import SourceRegistry, load_manifest, resolve_versions

    root = load_manifest("path/to/project")
    async with HTTPClient() as http:
        solved = await resolve_versions(root, SourceRegistry.create(http))
"""

from __future__ import annotations

from versolver.__version__ import __version__

# ---------------------------------------------------------------------------
# Package Metadata
# ---------------------------------------------------------------------------

__author__ = "versolver Contributors"
__license__ = "Apache-2.0"
__description__ = "Conflict-driven dependency version solver for package.toml projects."

__all__ = [
    "__version__",
]
