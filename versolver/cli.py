"""
Command-line interface for versolver.

This module provides the main CLI entry point and handles global options,
configuration loading, and command registration.
"""

from __future__ import annotations

import os
import sys
import logging
from pathlib import Path
from typing import Optional

import click

from versolver.config import load_config
from versolver.__version__ import __version__
from versolver.context import VersolverContext
from versolver.constants import EXIT_FAILURE, EXIT_SUCCESS, EXIT_USAGE
from versolver.exceptions import ConfigError, VersolverError, exit_code_for
from versolver.utils.logger import get_logger, level_for_verbosity, setup_logging
from versolver.utils.console import print_error, print_warning, reconfigure_console
from versolver.commands.solve import downgrade, get, upgrade

logger = get_logger("cli")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file.",
    envvar="VERSOLVER_CONFIG",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (can be repeated: -v, -vv).",
)
@click.option(
    "--color/--no-color",
    default=True,
    help="Enable or disable colored output.",
    envvar="VERSOLVER_COLOR",
)
@click.version_option(
    version=__version__,
    prog_name="versolver",
    message="%(prog)s %(version)s",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: int,
    color: bool,
) -> None:
    """versolver: dependency version solving for package.toml projects.

    \b
    Available commands:
      versolver get                Resolve, keeping locked versions
      versolver upgrade [PKG...]   Resolve to the newest versions
      versolver downgrade [PKG...] Resolve to the oldest versions

    \b
    Examples:
      versolver get
      versolver upgrade foo
      versolver -vv get --dry-run

    Use ``versolver COMMAND --help`` for command-specific options.
    """
    # Respect NO_COLOR for downstream libraries
    if color:
        os.environ.pop("NO_COLOR", None)
    else:
        os.environ["NO_COLOR"] = "1"
    reconfigure_console(color=None if color else False)

    _configure_logging(verbose, color)

    try:
        loaded_config = load_config(config)
    except ConfigError as exc:
        print_error(str(exc))
        raise SystemExit(exit_code_for(exc)) from exc

    versolver_ctx = VersolverContext()
    versolver_ctx.config_path = config or loaded_config.source_path
    versolver_ctx.color = color
    versolver_ctx.verbose = verbose
    versolver_ctx.config = loaded_config
    ctx.obj = versolver_ctx

    logger.debug("versolver v%s", __version__)
    logger.debug("Config path: %s", versolver_ctx.config_path)
    if loaded_config.source_path:
        logger.debug("Loaded configuration: %s", loaded_config.to_log_dict())
    logger.debug("Verbosity: %s | Color: %s", verbose, color)


def _configure_logging(verbose: int, color: bool) -> None:
    """Configure logging level based on verbosity flags."""
    level = level_for_verbosity(verbose)
    setup_logging(level=level, verbose=verbose >= 2, use_color=None if color else False)
    logger.debug("Logging initialized at %s level", logging.getLevelName(level))


cli.add_command(get)
cli.add_command(upgrade)
cli.add_command(downgrade)


def main() -> int:
    """Main entry point for the versolver CLI.

    Returns:
        Exit code:
            0   Success
            1   No solution exists, or an unexpected error
            64  Usage or configuration error
            65  Malformed manifest or lockfile
            69  A package source is unavailable
            70  Internal solver error
            75  Solver gave up (iteration or time limit)
            130 Interrupted by user (Ctrl+C)
    """
    try:
        cli(standalone_mode=False)
        return EXIT_SUCCESS

    except click.exceptions.UsageError as exc:
        exc.show()
        return EXIT_USAGE

    except click.ClickException as exc:
        exc.show()
        return exc.exit_code

    except click.exceptions.Abort:
        print_warning("Operation cancelled by user")
        return exit_code_for(KeyboardInterrupt())

    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_FAILURE

    except VersolverError as exc:
        print_error(str(exc))
        logger.debug(
            "VersolverError details: %s",
            exc.details or "<none>",
            exc_info=True,
        )
        return exit_code_for(exc)

    except KeyboardInterrupt as exc:
        print_warning("\nOperation cancelled by user")
        return exit_code_for(exc)

    except Exception as exc:
        print_error(f"Unexpected error: {exc}")
        logger.exception("Unhandled exception in CLI")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
