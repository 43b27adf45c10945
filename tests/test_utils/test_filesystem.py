from __future__ import annotations

import os
import pytest
from pathlib import Path
from unittest.mock import patch

from versolver.utils.filesystem import (
    _atomic_write,
    _validated_file,
    find_project_root,
    safe_read_file,
    safe_write_file,
)
from versolver.exceptions import FileOperationError


@pytest.fixture
def temp_file(tmp_path: Path) -> Path:
    """Create a temporary file with sample content.

    Returns:
        Path: Temporary file with "test content" written to it.
    """
    file_path = tmp_path / "test.txt"
    file_path.write_text("test content", encoding="utf-8")
    return file_path


# ============================================================================
# _validated_file
# ============================================================================


@pytest.mark.unit
class TestValidatedFile:
    """Tests for the existence and type check shared by the readers."""

    def test_existing_file(self, temp_file: Path) -> None:
        """An existing file is returned resolved."""
        assert _validated_file(temp_file) == temp_file.resolve()

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file raises with the read operation recorded."""
        with pytest.raises(FileOperationError, match="File not found") as exc_info:
            _validated_file(tmp_path / "missing.txt")

        assert exc_info.value.operation == "read"
        assert exc_info.value.file_path == str(tmp_path / "missing.txt")

    def test_directory(self, tmp_path: Path) -> None:
        """A directory is not a file."""
        with pytest.raises(FileOperationError, match="Not a file"):
            _validated_file(tmp_path)


# ============================================================================
# safe_read_file
# ============================================================================


@pytest.mark.unit
class TestSafeReadFile:
    """Tests for size-limited text reads."""

    def test_reads_content(self, temp_file: Path) -> None:
        """Contents are returned as text."""
        assert safe_read_file(temp_file) == "test content"

    def test_accepts_string_path(self, temp_file: Path) -> None:
        """String paths work as well as Path objects."""
        assert safe_read_file(str(temp_file)) == "test content"

    def test_unicode(self, tmp_path: Path) -> None:
        """UTF-8 content round-trips."""
        path = tmp_path / "unicode.txt"
        path.write_text('name = "café"', encoding="utf-8")

        assert safe_read_file(path) == 'name = "café"'

    def test_too_large(self, temp_file: Path) -> None:
        """Files over the limit are refused."""
        with pytest.raises(FileOperationError, match="File too large"):
            safe_read_file(temp_file, max_size=4)

    def test_limit_disabled(self, temp_file: Path) -> None:
        """max_size=None reads files of any size."""
        assert safe_read_file(temp_file, max_size=None) == "test content"

    def test_invalid_encoding(self, tmp_path: Path) -> None:
        """Undecodable bytes become a FileOperationError."""
        path = tmp_path / "binary.txt"
        path.write_bytes(b"\xff\xfe\xfa")

        with pytest.raises(FileOperationError, match="Failed to read file") as exc_info:
            safe_read_file(path)

        assert isinstance(exc_info.value.original_error, UnicodeDecodeError)


# ============================================================================
# safe_write_file / _atomic_write
# ============================================================================


@pytest.mark.unit
class TestSafeWriteFile:
    """Tests for atomic writes."""

    def test_creates_file(self, tmp_path: Path) -> None:
        """A new file is created with the given content."""
        target = tmp_path / "package.lock"

        result = safe_write_file(target, '{"packages": {}}\n')

        assert result == target.resolve()
        assert target.read_text(encoding="utf-8") == '{"packages": {}}\n'

    def test_replaces_existing(self, temp_file: Path) -> None:
        """Existing content is replaced entirely."""
        safe_write_file(temp_file, "new")

        assert temp_file.read_text(encoding="utf-8") == "new"

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        """Missing parent directories are created."""
        target = tmp_path / "a" / "b" / "file.txt"

        safe_write_file(target, "nested")

        assert target.read_text(encoding="utf-8") == "nested"

    def test_no_temporary_files_left(self, tmp_path: Path) -> None:
        """Only the target remains after a successful write."""
        safe_write_file(tmp_path / "package.lock", "content")

        assert sorted(p.name for p in tmp_path.iterdir()) == ["package.lock"]

    def test_failed_replace_cleans_up(self, temp_file: Path) -> None:
        """A failed rename keeps the old content and removes the temp file."""
        with patch.object(Path, "replace", side_effect=OSError("disk full")):
            with pytest.raises(FileOperationError, match="Atomic write failed") as exc_info:
                _atomic_write(temp_file, "new content")

        assert exc_info.value.operation == "write"
        assert temp_file.read_text(encoding="utf-8") == "test content"
        assert [p.name for p in temp_file.parent.iterdir()] == [temp_file.name]

    def test_failed_fsync(self, tmp_path: Path) -> None:
        """Errors before the rename are wrapped as well."""
        with patch.object(os, "fsync", side_effect=OSError("io error")):
            with pytest.raises(FileOperationError):
                _atomic_write(tmp_path / "out.txt", "content")

        assert not (tmp_path / "out.txt").exists()


# ============================================================================
# find_project_root
# ============================================================================


@pytest.mark.unit
class TestFindProjectRoot:
    """Tests for locating the directory holding package.toml."""

    def test_manifest_in_start_directory(self, tmp_path: Path) -> None:
        """The start directory itself is checked first."""
        (tmp_path / "package.toml").write_text("", encoding="utf-8")

        assert find_project_root(tmp_path) == tmp_path.resolve()

    def test_walks_up(self, tmp_path: Path) -> None:
        """Parents are searched until a manifest is found."""
        (tmp_path / "package.toml").write_text("", encoding="utf-8")
        nested = tmp_path / "src" / "deep"
        nested.mkdir(parents=True)

        assert find_project_root(nested) == tmp_path.resolve()

    def test_nearest_wins(self, tmp_path: Path) -> None:
        """A nested project shadows its parent."""
        (tmp_path / "package.toml").write_text("", encoding="utf-8")
        inner = tmp_path / "inner"
        inner.mkdir()
        (inner / "package.toml").write_text("", encoding="utf-8")

        assert find_project_root(inner) == inner.resolve()

    def test_directory_named_like_manifest_is_ignored(self, tmp_path: Path) -> None:
        """Only a regular file counts as a manifest."""
        (tmp_path / "package.toml").mkdir()

        result = find_project_root(tmp_path)

        assert result != tmp_path.resolve()
