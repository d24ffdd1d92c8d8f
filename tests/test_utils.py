"""Unit tests for path, pattern and timestamp utilities."""

from datetime import datetime, timedelta, timezone

import pytest

from pycloudreve.exceptions import PatternCompileError
from pycloudreve.utils import (
    PatternMatcher,
    compile_glob,
    format_size,
    glob_match,
    is_glob_pattern,
    is_timestamp_expired,
    join_remote_path,
    mask_token,
    normalize_remote_path,
    parse_iso_timestamp,
    remote_basename,
    remote_parent,
    split_remote_pattern,
    to_v4_uri,
)


class TestIsGlobPattern:
    """Tests for is_glob_pattern."""

    def test_star_and_question_mark(self):
        """Test that * and ? mark a pattern."""
        assert is_glob_pattern("*.txt")
        assert is_glob_pattern("/docs/file?.log")

    def test_plain_path(self):
        """Test that plain paths are not patterns."""
        assert not is_glob_pattern("/docs/report.pdf")
        assert not is_glob_pattern("")


class TestGlobMatch:
    """Tests for glob_match and PatternMatcher."""

    def test_star_matches_suffix(self):
        """Test simple extension matching."""
        assert glob_match("*.txt", "notes.txt")
        assert not glob_match("*.txt", "notes.md")
        assert not glob_match("*.txt", "notes.txt.bak")

    def test_star_matches_empty_run(self):
        """Test that * also matches nothing."""
        assert glob_match("foo*", "foo")

    def test_question_mark_matches_one_character(self):
        """Test that ? matches exactly one character."""
        assert glob_match("file?.log", "file1.log")
        assert not glob_match("file?.log", "file10.log")
        assert not glob_match("file?.log", "file.log")

    def test_matching_is_case_sensitive(self):
        """Test that matching distinguishes case."""
        assert not glob_match("*.TXT", "notes.txt")

    def test_character_class(self):
        """Test [abc] and [a-z] character sets."""
        assert glob_match("[ab]*", "apple")
        assert glob_match("[ab]*", "banana")
        assert not glob_match("[ab]*", "cherry")
        assert glob_match("v[0-9].txt", "v7.txt")

    def test_negated_character_class(self):
        """Test [!abc] negated sets."""
        assert glob_match("[!a]*", "banana")
        assert not glob_match("[!a]*", "apple")

    def test_regex_metacharacters_are_literal(self):
        """Test that regex syntax in a name is not interpreted."""
        assert glob_match("a+b(1).txt", "a+b(1).txt")
        assert not glob_match("a.b", "axb")

    def test_star_does_not_cross_separator(self):
        """Test that * stays within one path component."""
        assert not glob_match("*", "docs/a.txt")

    def test_double_star_component(self):
        """Test that ** as a whole component matches across separators."""
        assert glob_match("**", "docs/a.txt")

    def test_wildcards_match_per_component(self):
        """Test that patterns with separators match component by component."""
        assert glob_match("*/b.txt", "x/b.txt")
        assert not glob_match("*/b.txt", "x/y/b.txt")
        assert not glob_match("a?b", "a/b")
        assert glob_match("docs/**/*.txt", "docs/c.txt")
        assert glob_match("docs/**/*.txt", "docs/a/b/c.txt")
        assert not glob_match("docs/**/*.txt", "other/c.txt")

    def test_leading_bracket_is_class_member(self):
        """Test that ']' right after '[' or '[!' is part of the set."""
        assert glob_match("[]a]*", "]x")
        assert glob_match("[!]]*", "x")
        assert not glob_match("[!]]*", "]x")

    def test_double_star_compiles_to_placeholder(self):
        """Test that a ** component is kept apart from compiled components."""
        parts = compile_glob("docs/**/*.txt")
        assert parts[1] is None
        assert parts[2].match("c.txt")

    def test_pattern_matcher(self):
        """Test the compiled matcher object."""
        matcher = PatternMatcher("*.txt")
        assert matcher.matches("a.txt")
        assert not matcher.matches("a.pdf")
        assert "*.txt" in repr(matcher)


class TestGlobToRegexErrors:
    """Tests for malformed patterns."""

    @pytest.mark.parametrize(
        "pattern",
        ["[abc", "abc]", "***", "a**", "**b"],
    )
    def test_malformed_pattern_raises(self, pattern):
        """Test that malformed patterns raise PatternCompileError."""
        with pytest.raises(PatternCompileError) as exc_info:
            compile_glob(pattern)
        assert exc_info.value.pattern == pattern

    def test_error_message_names_pattern(self):
        """Test that the error message includes the pattern and reason."""
        with pytest.raises(PatternCompileError, match="unclosed character class"):
            PatternMatcher("[abc")


class TestRemotePaths:
    """Tests for remote path helpers."""

    def test_normalize_adds_leading_slash(self):
        """Test that relative paths become absolute."""
        assert normalize_remote_path("docs/a.txt") == "/docs/a.txt"

    def test_normalize_strips_uri_prefix(self):
        """Test that cloudreve:// URIs are converted to plain paths."""
        assert normalize_remote_path("cloudreve://my/docs/a.txt") == "/docs/a.txt"
        assert normalize_remote_path("cloudreve://docs/a.txt") == "/docs/a.txt"
        assert normalize_remote_path("cloudreve://my") == "/"

    def test_normalize_collapses_double_slashes(self):
        """Test that repeated separators are collapsed."""
        assert normalize_remote_path("//docs//a.txt") == "/docs/a.txt"

    def test_split_pattern_without_directory(self):
        """Test that a bare glob refers to the root directory."""
        assert split_remote_pattern("*.txt") == ("/", "*.txt")

    def test_split_pattern_with_directory(self):
        """Test that the directory is cut at the last slash."""
        assert split_remote_pattern("/docs/foo*.txt") == ("/docs/", "foo*.txt")
        assert split_remote_pattern("/*") == ("/", "*")

    def test_split_pattern_with_uri(self):
        """Test splitting a cloudreve:// pattern."""
        assert split_remote_pattern("cloudreve://my/docs/*") == ("/docs/", "*")

    def test_join(self):
        """Test joining directories and names."""
        assert join_remote_path("/", "a.txt") == "/a.txt"
        assert join_remote_path("/docs/", "a.txt") == "/docs/a.txt"
        assert join_remote_path("docs", "a.txt") == "/docs/a.txt"

    def test_parent_and_basename(self):
        """Test parent and basename extraction."""
        assert remote_parent("/docs/a.txt") == "/docs"
        assert remote_parent("/a.txt") == "/"
        assert remote_basename("/docs/sub/") == "sub"
        assert remote_basename("/docs/a.txt") == "a.txt"

    def test_to_v4_uri(self):
        """Test conversion to cloudreve://my URIs."""
        assert to_v4_uri("/") == "cloudreve://my/"
        assert to_v4_uri("/docs/") == "cloudreve://my/docs"
        assert to_v4_uri("docs/a.txt") == "cloudreve://my/docs/a.txt"


class TestTimestamps:
    """Tests for timestamp parsing and expiry checks."""

    def test_parse_zulu(self):
        """Test parsing a UTC timestamp with Z suffix."""
        result = parse_iso_timestamp("2025-01-15T10:30:00Z")
        assert result == datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_parse_offset(self):
        """Test parsing a timestamp with an explicit offset."""
        result = parse_iso_timestamp("2025-01-15T12:30:00+02:00")
        assert result == datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_parse_nanoseconds(self):
        """Test that nine fractional digits are accepted."""
        result = parse_iso_timestamp("2025-01-15T10:30:00.123456789Z")
        assert result is not None
        assert result.microsecond == 123456

    def test_parse_naive_is_utc(self):
        """Test that timestamps without offset are taken as UTC."""
        result = parse_iso_timestamp("2025-01-15T10:30:00")
        assert result is not None
        assert result.tzinfo is not None
        assert result.utcoffset() == timedelta(0)

    @pytest.mark.parametrize("value", [None, "", "not a date", "2025-13-45T99:00:00Z"])
    def test_parse_invalid(self, value):
        """Test that invalid input yields None."""
        assert parse_iso_timestamp(value) is None

    def test_expiry(self):
        """Test expiry relative to now."""
        now = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert is_timestamp_expired("2025-01-15T10:29:59Z", now)
        assert not is_timestamp_expired("2025-01-15T10:30:01Z", now)
        assert not is_timestamp_expired("2025-01-15T10:30:00Z", now)

    @pytest.mark.parametrize("value", [None, "", "garbage"])
    def test_unparsable_counts_as_expired(self, value):
        """Test that missing or bad timestamps are expired."""
        now = datetime(2025, 1, 15, tzinfo=timezone.utc)
        assert is_timestamp_expired(value, now)


class TestFormatting:
    """Tests for size formatting and token masking."""

    def test_format_size(self):
        """Test human-readable sizes."""
        assert format_size(0) == "0 B"
        assert format_size(1023) == "1023 B"
        assert format_size(1536) == "1.5 KB"
        assert format_size(1024 * 1024) == "1.0 MB"
        assert format_size(5 * 1024**3) == "5.0 GB"
        assert format_size(2 * 1024**4) == "2.0 TB"

    def test_mask_token(self):
        """Test that tokens are shortened for logs."""
        assert mask_token("short") == "***"
        assert mask_token("abcdefghijkl") == "abcd...ijkl"
