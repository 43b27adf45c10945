"""CLI subcommands for versolver."""

from __future__ import annotations

from versolver.commands.solve import downgrade, get, upgrade

__all__ = ["get", "upgrade", "downgrade"]
