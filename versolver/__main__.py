"""
Executable module for versolver.

Running:
    python -m versolver

is equivalent to:
    versolver
"""

from __future__ import annotations

import sys


def _print_startup_error(exc: BaseException) -> None:
    """Report a CLI that failed to import, with enough context to file a bug."""
    sys.stderr.write(f"Python version : {sys.version}\n")
    try:
        from versolver.__version__ import __version__

        sys.stderr.write(f"versolver version: {__version__}\n")
    except ImportError:
        sys.stderr.write("versolver version: <unknown>\n")
    sys.stderr.write("\n")
    sys.stderr.write(f"{type(exc).__name__}: {exc}\n")


def main() -> int:
    """Entry point for ``python -m versolver``.

    Returns:
        Exit code returned by the CLI, or 1 if the CLI cannot be imported.
    """
    try:
        # Import lazily so a broken install still produces a readable error
        from versolver.cli import main as cli_main
    except ImportError as exc:
        _print_startup_error(exc)
        return 1

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
