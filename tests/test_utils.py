"""Tests for remote path, quoting and formatting helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from sitedeploy.exceptions import DeployValidationError
from sitedeploy.utils import (
    chunked,
    ensure_safe_depth,
    escape_double_quoted,
    format_size,
    is_release_name,
    join_remote,
    normalize_preserve_files,
    normalize_remote,
    quote_remote,
    release_timestamp,
    remote_basename,
    remote_depth,
    remote_dirname,
    validate_relative_path,
)


class TestRemotePaths:
    """Tests for remote POSIX path helpers."""

    def test_normalize_strips_trailing_slash(self):
        assert normalize_remote("/var/www/site/") == "/var/www/site"

    def test_normalize_converts_backslashes(self):
        assert normalize_remote("deploy\\site") == "deploy/site"

    def test_normalize_keeps_root(self):
        assert normalize_remote("/") == "/"

    def test_join(self):
        assert join_remote("/var/www", "releases", "20240101000000") == (
            "/var/www/releases/20240101000000"
        )

    def test_basename_and_dirname(self):
        assert remote_basename("/var/www/site/") == "site"
        assert remote_dirname("/var/www/site/") == "/var/www"

    def test_depth(self):
        assert remote_depth("/var/www/site") == 3
        assert remote_depth("/var") == 1
        assert remote_depth("/") == 0


class TestEnsureSafeDepth:
    """Tests for the destructive-operation depth guard."""

    def test_deep_path_passes(self):
        ensure_safe_depth("/var/www/site", 2, "clean")

    def test_shallow_path_rejected(self):
        with pytest.raises(DeployValidationError, match="Refusing to clean"):
            ensure_safe_depth("/var", 2, "clean")

    def test_root_rejected(self):
        with pytest.raises(DeployValidationError):
            ensure_safe_depth("/", 1, "remove release")


class TestReleaseNames:
    """Tests for release timestamps."""

    def test_timestamp_format(self):
        now = datetime(2024, 1, 4, 12, 30, 5, tzinfo=timezone.utc)
        assert release_timestamp(now) == "20240104123005"

    def test_timestamp_converts_to_utc(self):
        now = datetime(2024, 1, 4, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert release_timestamp(now) == "20240104120000"

    def test_default_timestamp_is_release_name(self):
        assert is_release_name(release_timestamp())

    def test_is_release_name(self):
        assert is_release_name("20240101000000")
        assert not is_release_name("2024010100000")
        assert not is_release_name("current")
        assert not is_release_name("20240101000000-old")


class TestShellQuoting:
    """Tests for double-quote escaping."""

    def test_escapes_special_characters(self):
        assert escape_double_quoted('a"b$c`d\\e') == 'a\\"b\\$c\\`d\\\\e'

    def test_plain_value_unchanged(self):
        assert escape_double_quoted("/var/www/site") == "/var/www/site"

    def test_quote_remote(self):
        assert quote_remote("/srv/my site") == '"/srv/my site"'
        assert quote_remote("$HOME") == '"\\$HOME"'


class TestValidateRelativePath:
    """Tests for operator-supplied relative paths."""

    def test_valid_path(self):
        assert validate_relative_path("data/app.db") == "data/app.db"

    def test_backslashes_normalized(self):
        assert validate_relative_path("data\\app.db") == "data/app.db"

    def test_whitespace_trimmed(self):
        assert validate_relative_path("  data.db ") == "data.db"

    def test_absolute_rejected(self):
        with pytest.raises(DeployValidationError, match="relative"):
            validate_relative_path("/etc/passwd")

    def test_parent_segment_rejected(self):
        with pytest.raises(DeployValidationError, match=r"\.\."):
            validate_relative_path("../secrets")

    def test_nested_parent_segment_rejected(self):
        with pytest.raises(DeployValidationError):
            validate_relative_path("data/../../etc")

    @pytest.mark.parametrize("entry", ["data\n.db", "data\r.db", "data\0.db"])
    def test_control_characters_rejected(self, entry):
        with pytest.raises(DeployValidationError, match="invalid characters"):
            validate_relative_path(entry)

    def test_normalize_list_skips_blank_entries(self):
        assert normalize_preserve_files(["a.db", "", "  ", "b/c.txt"]) == [
            "a.db",
            "b/c.txt",
        ]

    def test_normalize_list_raises_on_first_unsafe(self):
        with pytest.raises(DeployValidationError):
            normalize_preserve_files(["ok.db", "/abs"])


class TestChunked:
    """Tests for list chunking."""

    def test_chunks(self):
        assert list(chunked(list(range(5)), 2)) == [[0, 1], [2, 3], [4]]

    def test_empty(self):
        assert list(chunked([], 50)) == []


class TestFormatSize:
    """Tests for human-readable sizes."""

    def test_bytes(self):
        assert format_size(256) == "256 B"

    def test_kilobytes(self):
        assert format_size(1536) == "1.5 KB"

    def test_megabytes(self):
        assert format_size(1024 * 1024) == "1.0 MB"

    def test_gigabytes(self):
        assert format_size(3 * 1024**3) == "3.0 GB"
