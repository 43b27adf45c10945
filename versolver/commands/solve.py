"""Solve commands for versolver: ``get``, ``upgrade`` and ``downgrade``.

All three commands read ``package.toml`` from the project directory, solve
its dependency graph and write ``package.lock`` next to it. They differ
only in how candidate versions are ordered:

- ``get`` keeps the versions already in the lockfile where possible
- ``upgrade`` prefers the newest versions
- ``downgrade`` prefers the oldest versions

Naming packages limits ``upgrade`` and ``downgrade`` to those packages;
every other package keeps its locked version. For ``get``, named packages
are unlocked and re-resolved to the newest allowed version.

Typical usage::

    $ versolver get
    $ versolver upgrade foo bar
    $ versolver downgrade --dry-run
    $ versolver -vv get --max-iterations 500 --timeout 30
"""

from __future__ import annotations

import signal
import asyncio
import contextlib
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import click

from versolver.context import VersolverContext, pass_context
from versolver.models import Lockfile, PackageManifest
from versolver.core import (
    ResolutionMode,
    SourceRegistry,
    build_lockfile,
    load_manifest,
    resolve_versions,
)
from versolver.exceptions import (
    ConstraintConflict,
    SearchExhausted,
    VersolverError,
    exit_code_for,
)
from versolver.constants import LOCKFILE_NAME
from versolver.utils import (
    HTTPClient,
    colorize_change,
    find_project_root,
    get_logger,
    print_error,
    print_lines,
    print_success,
    print_table,
    print_warning,
    safe_read_file,
    safe_write_file,
)

logger = get_logger("commands.solve")


def _solve_options(func: Any) -> Any:
    """Attach the arguments and options shared by every solve command."""
    decorators = [
        click.argument("packages", nargs=-1),
        click.option(
            "--directory",
            "-C",
            type=click.Path(exists=True, file_okay=False, path_type=Path),
            default=None,
            help="Project directory (default: nearest directory with package.toml).",
        ),
        click.option(
            "--dry-run",
            is_flag=True,
            help="Report what would change without writing the lockfile.",
        ),
        click.option(
            "--max-iterations",
            type=click.IntRange(min=1),
            default=None,
            help="Give up after this many solver iterations.",
        ),
        click.option(
            "--timeout",
            type=click.FloatRange(min=0, min_open=True),
            default=None,
            help="Give up after this many seconds.",
        ),
        click.option(
            "--prereleases/--no-prereleases",
            default=None,
            help="Allow pre-release versions for every dependency.",
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


@click.command()
@_solve_options
@pass_context
def get(ctx: VersolverContext, packages: Tuple[str, ...], **options: Any) -> None:
    """Resolve dependencies, keeping locked versions where possible."""
    _run(ctx, ResolutionMode.GET, packages, **options)


@click.command()
@_solve_options
@pass_context
def upgrade(ctx: VersolverContext, packages: Tuple[str, ...], **options: Any) -> None:
    """Resolve dependencies to their newest allowed versions."""
    _run(ctx, ResolutionMode.UPGRADE, packages, **options)


@click.command()
@_solve_options
@pass_context
def downgrade(ctx: VersolverContext, packages: Tuple[str, ...], **options: Any) -> None:
    """Resolve dependencies to their oldest allowed versions."""
    _run(ctx, ResolutionMode.DOWNGRADE, packages, **options)


def _run(
    ctx: VersolverContext,
    mode: ResolutionMode,
    packages: Tuple[str, ...],
    *,
    directory: Optional[Path],
    dry_run: bool,
    max_iterations: Optional[int],
    timeout: Optional[float],
    prereleases: Optional[bool],
) -> None:
    """Run one solve command and exit with the matching status.

    Exits:
        0 on success, 1 when no solution exists, and the sysexits code of
        the failure otherwise (see :func:`versolver.exceptions.exit_code_for`).
    """
    try:
        asyncio.run(
            _solve_async(
                ctx,
                mode,
                list(packages),
                directory=directory,
                dry_run=dry_run,
                max_iterations=max_iterations,
                timeout=timeout,
                prereleases=prereleases,
            )
        )
    except ConstraintConflict as exc:
        print_lines(exc.explanation)
        raise SystemExit(exit_code_for(exc)) from exc
    except SearchExhausted as exc:
        print_error(f"{exc.message} The result is inconclusive.")
        print_lines(exc.partial_explanation, style="dim")
        raise SystemExit(exit_code_for(exc)) from exc
    except VersolverError as exc:
        print_error(str(exc))
        logger.debug("Solve failed", exc_info=True)
        raise SystemExit(exit_code_for(exc)) from exc
    except KeyboardInterrupt as exc:
        print_warning("Operation cancelled by user")
        raise SystemExit(exit_code_for(exc)) from exc


# ---------------------------------------------------------------------------
# Async orchestration
# ---------------------------------------------------------------------------


async def _solve_async(
    ctx: VersolverContext,
    mode: ResolutionMode,
    packages: List[str],
    *,
    directory: Optional[Path],
    dry_run: bool,
    max_iterations: Optional[int],
    timeout: Optional[float],
    prereleases: Optional[bool],
) -> None:
    """Async implementation shared by the solve commands.

    1. Load the root manifest and the previous lockfile, if any.
    2. Solve with the configured limits.
    3. Show what changed and write the new lockfile atomically.

    Nothing is written unless the solve succeeds.
    """
    config = ctx.config
    project = directory or find_project_root() or Path.cwd()
    root = load_manifest(project, default_registry=config.default_registry)
    logger.info("Resolving %s %s in %s mode", root.name, root.version, mode.value)

    _check_named_packages(root, packages)

    lock_path = project / LOCKFILE_NAME
    previous = _read_lockfile(lock_path)

    cancel_event = asyncio.Event()
    async with HTTPClient(max_concurrency=config.concurrent_limit) as http:
        sources = SourceRegistry.create(http, default_registry=config.default_registry)
        with _cancel_on_interrupt(cancel_event):
            solved = await resolve_versions(
                root,
                sources,
                mode=mode,
                locked=previous.to_preferences() if previous else None,
                unlock=packages,
                allow_prereleases=(
                    config.allow_prereleases if prereleases is None else prereleases
                ),
                max_iterations=max_iterations or config.max_iterations,
                timeout=timeout or config.timeout,
                cancel_event=cancel_event,
                concurrent_limit=config.concurrent_limit,
            )
        lockfile = await build_lockfile(solved, sources)

    logger.info(
        "Solved %d package(s) after %d attempt(s)",
        len(solved.packages),
        solved.attempted_solutions,
    )

    changes = _diff(previous, lockfile)
    _display_changes(changes, dry_run)

    if dry_run:
        print_warning("Dry run mode - lockfile not written")
        return

    safe_write_file(lock_path, lockfile.dumps())
    print_success(f"Resolved {len(lockfile)} package(s); wrote {LOCKFILE_NAME}")


@contextlib.contextmanager
def _cancel_on_interrupt(event: asyncio.Event) -> Iterator[None]:
    """Turn Ctrl+C into a cooperative solver cancellation."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, event.set)
        installed = True
    except (NotImplementedError, RuntimeError, ValueError):
        # No signal support here (e.g. Windows or a worker thread).
        installed = False
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


def _check_named_packages(root: PackageManifest, packages: List[str]) -> None:
    known = {d.name for d in (*root.dependencies, *root.dev_dependencies)}
    unknown = [name for name in packages if name not in known]
    if unknown:
        print_warning(
            f"Not a direct dependency of {root.name}: {', '.join(sorted(unknown))}"
        )


def _read_lockfile(path: Path) -> Optional[Lockfile]:
    if not path.is_file():
        logger.debug("No lockfile at %s", path)
        return None
    return Lockfile.loads(safe_read_file(path), file_path=str(path))


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def _diff(previous: Optional[Lockfile], current: Lockfile) -> List[Dict[str, str]]:
    """Compare two lockfiles, returning one row per changed package.

    Example::

        >>> _diff(old, new)
        [{'Package': 'foo', 'Previous': '1.0.0', 'Selected': '1.2.0',
          'Source': 'hosted', 'Change': 'upgraded'}]
    """
    before = {e.name: e for e in previous} if previous else {}
    after = {e.name: e for e in current}

    rows: List[Dict[str, str]] = []
    for name in sorted(set(before) | set(after)):
        old = before.get(name)
        new = after.get(name)

        if old is None:
            change = "new"
        elif new is None:
            change = "removed"
        elif new.version > old.version:
            change = "upgraded"
        elif new.version < old.version:
            change = "downgraded"
        elif new.source != old.source or new.resolved_ref != old.resolved_ref:
            change = "changed"
        else:
            continue

        rows.append(
            {
                "Package": name,
                "Previous": str(old.version) if old else "-",
                "Selected": str(new.version) if new else "-",
                "Source": new.source.kind if new else "-",
                "Change": change,
            }
        )
    return rows


def _display_changes(changes: List[Dict[str, str]], dry_run: bool) -> None:
    if not changes:
        print_success("No dependency changes")
        return

    data = [dict(row, Change=colorize_change(row["Change"])) for row in changes]
    column_styles: Dict[str, Dict[str, Any]] = {
        "Package": {"style": "bold cyan", "no_wrap": True},
        "Previous": {"justify": "center", "style": "dim"},
        "Selected": {"justify": "center", "style": "bold green"},
        "Source": {"justify": "center"},
        "Change": {"justify": "center"},
    }
    print_table(
        data,
        title="Dependency Changes (Dry Run)" if dry_run else "Dependency Changes",
        column_styles=column_styles,
    )
