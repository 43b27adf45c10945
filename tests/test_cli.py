"""End-to-end tests for the versolver command line.

Test Coverage:
- ``get``, ``upgrade`` and ``downgrade`` against an in-memory registry
- Lockfile writing, ``--dry-run`` and change reporting
- Exit codes for unsolvable graphs, malformed manifests, bad configuration
  and exhausted searches
- The ``main()`` wrapper used by the console script
"""

from __future__ import annotations

import json
import sys
import logging
from pathlib import Path
from typing import Generator, List
from unittest.mock import patch

import pytest
from click.testing import CliRunner, Result

from versolver.cli import cli, main
from versolver.core.sources import SourceRegistry
from versolver.utils.logger import ROOT_LOGGER_NAME

from fakes import REGISTRY, FakeRegistry, write_package


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Detach the CLI's log handler from the runner's closed streams."""
    yield
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.handlers.clear()
    root_logger.setLevel(logging.NOTSET)


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A project directory pointed at the in-memory registry."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "versolver.toml").write_text(
        f'[versolver]\ndefault_registry = "{REGISTRY}"\n', encoding="utf-8"
    )
    return tmp_path


@pytest.fixture
def use_sources(sources: SourceRegistry) -> Generator[SourceRegistry, None, None]:
    """Make the commands resolve against the in-memory sources."""
    with patch.object(SourceRegistry, "create", return_value=sources):
        yield sources


def write_root(project: Path, dependencies: str) -> None:
    write_package(project, "myapp", body=f"\n[dependencies]\n{dependencies}")


def invoke(*args: str) -> Result:
    return CliRunner().invoke(cli, ["--no-color", *args])


def locked_versions(project: Path) -> dict:
    document = json.loads((project / "package.lock").read_text(encoding="utf-8"))
    return {name: entry["version"] for name, entry in document["packages"].items()}


# ============================================================================
# Successful solves
# ============================================================================


@pytest.mark.integration
@pytest.mark.usefixtures("use_sources")
class TestSolveCommands:
    """Tests for the solve commands writing package.lock."""

    def test_get_writes_lockfile(self, project: Path, registry: FakeRegistry) -> None:
        """get resolves the graph and writes every selected package."""
        registry.add("foo", "1.0.0", {"bar": "^2.0.0"}).add("bar", "2.1.0")
        write_root(project, 'foo = "^1.0.0"\n')

        result = invoke("get")

        assert result.exit_code == 0, result.output
        assert "Resolved 2 package(s); wrote package.lock" in result.output
        assert locked_versions(project) == {"bar": "2.1.0", "foo": "1.0.0"}

    def test_dry_run_writes_nothing(self, project: Path, registry: FakeRegistry) -> None:
        """--dry-run reports changes but leaves the lockfile alone."""
        registry.add("foo", "1.0.0")
        write_root(project, 'foo = "^1.0.0"\n')

        result = invoke("get", "--dry-run")

        assert result.exit_code == 0, result.output
        assert "Dry run mode - lockfile not written" in result.output
        assert "foo" in result.output
        assert not (project / "package.lock").exists()

    def test_get_keeps_locked_versions(self, project: Path, registry: FakeRegistry) -> None:
        """A second get keeps the locked version even when a newer one appears."""
        registry.add("foo", "1.0.0")
        write_root(project, 'foo = "^1.0.0"\n')
        assert invoke("get").exit_code == 0

        registry.add("foo", "1.1.0")
        result = invoke("get")

        assert result.exit_code == 0, result.output
        assert "No dependency changes" in result.output
        assert locked_versions(project) == {"foo": "1.0.0"}

    def test_upgrade_moves_to_newest(self, project: Path, registry: FakeRegistry) -> None:
        """upgrade ignores the lockfile and reports the upgrade."""
        registry.add("foo", "1.0.0")
        write_root(project, 'foo = "^1.0.0"\n')
        assert invoke("get").exit_code == 0

        registry.add("foo", "1.1.0")
        result = invoke("upgrade")

        assert result.exit_code == 0, result.output
        assert "upgraded" in result.output
        assert locked_versions(project) == {"foo": "1.1.0"}

    def test_downgrade_moves_to_oldest(self, project: Path, registry: FakeRegistry) -> None:
        """downgrade selects the oldest allowed versions."""
        registry.add("foo", "1.0.0").add("foo", "1.4.0")
        write_root(project, 'foo = "^1.0.0"\n')

        result = invoke("downgrade")

        assert result.exit_code == 0, result.output
        assert locked_versions(project) == {"foo": "1.0.0"}

    def test_directory_option(
        self, project: Path, registry: FakeRegistry, tmp_path_factory: pytest.TempPathFactory
    ) -> None:
        """-C points the command at another project directory."""
        registry.add("foo", "1.0.0")
        other = write_package(
            tmp_path_factory.mktemp("other"),
            "otherapp",
            body=f'\n[dependencies]\nfoo = {{ version = "^1.0.0", hosted = "{REGISTRY}" }}\n',
        )

        result = invoke("get", "-C", str(other))

        assert result.exit_code == 0, result.output
        assert (other / "package.lock").is_file()
        assert not (project / "package.lock").exists()

    def test_unknown_package_name_warns(self, project: Path, registry: FakeRegistry) -> None:
        """Naming a package that is not a direct dependency prints a warning."""
        registry.add("foo", "1.0.0")
        write_root(project, 'foo = "^1.0.0"\n')

        result = invoke("upgrade", "nope")

        assert result.exit_code == 0, result.output
        assert "Not a direct dependency of myapp: nope" in result.output

    def test_dropped_dependency_reported_removed(
        self, project: Path, registry: FakeRegistry
    ) -> None:
        """A package no longer needed leaves the lockfile and shows as removed."""
        registry.add("foo", "1.0.0").add("bar", "1.0.0")
        write_root(project, 'foo = "^1.0.0"\nbar = "^1.0.0"\n')
        assert invoke("get").exit_code == 0

        write_root(project, 'foo = "^1.0.0"\n')
        result = invoke("get")

        assert result.exit_code == 0, result.output
        assert "removed" in result.output
        assert locked_versions(project) == {"foo": "1.0.0"}


# ============================================================================
# Failures and exit codes
# ============================================================================


@pytest.mark.integration
@pytest.mark.usefixtures("use_sources")
class TestExitCodes:
    """Tests for failure reporting."""

    def test_unsolvable(self, project: Path, registry: FakeRegistry) -> None:
        """An impossible graph prints the explanation and exits 1."""
        registry.add("foo", "1.0.0")
        write_root(project, 'foo = "^2.0.0"\n')

        result = invoke("get")

        assert result.exit_code == 1
        assert "version solving failed" in result.output
        assert not (project / "package.lock").exists()

    def test_malformed_manifest(self, project: Path) -> None:
        """Invalid TOML in package.toml exits 65."""
        (project / "package.toml").write_text("[package\n", encoding="utf-8")

        result = invoke("get")

        assert result.exit_code == 65
        assert "Invalid TOML" in result.output

    def test_unknown_package(self, project: Path) -> None:
        """A package missing from its source exits 69."""
        write_root(project, 'ghost = "^1.0.0"\n')

        result = invoke("get")

        assert result.exit_code == 69
        assert "ghost" in result.output

    def test_iteration_limit(self, project: Path, registry: FakeRegistry) -> None:
        """Hitting --max-iterations exits 75 and says the result is inconclusive."""
        registry.add("foo", "1.0.0")
        write_root(project, 'foo = "any"\n')

        result = invoke("get", "--max-iterations", "1")

        assert result.exit_code == 75
        assert "inconclusive" in result.output

    def test_invalid_config(self, project: Path) -> None:
        """A bad configuration file exits 64 before any command runs."""
        (project / "versolver.toml").write_text("[versolver]\njobs = 3\n", encoding="utf-8")
        write_root(project, "")

        result = invoke("get")

        assert result.exit_code == 64
        assert "Unknown configuration keys: jobs" in result.output


# ============================================================================
# main()
# ============================================================================


@pytest.mark.unit
class TestMain:
    """Tests for the console script wrapper."""

    def _run(self, argv: List[str]) -> int:
        with patch.object(sys, "argv", ["versolver", *argv]):
            return main()

    def test_version(self, capsys: pytest.CaptureFixture) -> None:
        """--version prints the version and returns 0."""
        assert self._run(["--version"]) == 0
        assert capsys.readouterr().out.startswith("versolver ")

    def test_usage_error(self) -> None:
        """An unknown command is a usage error."""
        assert self._run(["frobnicate"]) == 64

    @pytest.mark.usefixtures("use_sources")
    def test_command_exit_code_is_returned(
        self, project: Path, registry: FakeRegistry
    ) -> None:
        """Exit codes raised by commands become main's return value."""
        registry.add("foo", "1.0.0")
        write_root(project, 'foo = "^2.0.0"\n')

        assert self._run(["--no-color", "get"]) == 1

    def test_keyboard_interrupt(self) -> None:
        """Ctrl+C outside the solver returns 130."""
        with patch("versolver.cli.cli", side_effect=KeyboardInterrupt):
            assert main() == 130
