"""Utility functions for Cloudreve paths, patterns and timestamps."""

import fnmatch
import re
from datetime import datetime, timezone
from typing import Optional

from .exceptions import PatternCompileError

# =============================================================================
# Constants for file operations
# =============================================================================

# Default number of concurrent batch operations
DEFAULT_WORKERS: int = 5

# Page size used when listing a directory in full
DEFAULT_PAGE_SIZE: int = 200

# Retry configuration for generic API requests
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

CLOUDREVE_URI_PREFIX = "cloudreve://"
V4_ROOT_URI = "cloudreve://my"


# =============================================================================
# Timestamp parsing utilities
# =============================================================================


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 / ISO 8601 timestamp from the Cloudreve API.

    Args:
        timestamp_str: Timestamp string (e.g., "2025-01-15T10:30:00.123456Z")

    Returns:
        Timezone-aware datetime (naive input is taken as UTC) or None if the
        value is empty or cannot be parsed
    """
    if not timestamp_str or not isinstance(timestamp_str, str):
        return None

    value = timestamp_str.strip()
    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        # Go emits up to nine fractional digits, fromisoformat wants six
        match = re.match(r"^(.*T\d{2}:\d{2}:\d{2})\.(\d+)(.*)$", value)
        if not match:
            return None
        head, fraction, tail = match.groups()
        try:
            dt = datetime.fromisoformat(f"{head}.{fraction[:6].ljust(6, '0')}{tail}")
        except ValueError:
            return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_timestamp_expired(timestamp_str: Optional[str], now: datetime) -> bool:
    """Check whether an expiry timestamp lies strictly before ``now``.

    Empty or unparsable timestamps count as expired.
    """
    expires = parse_iso_timestamp(timestamp_str)
    if expires is None:
        return True
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return expires < now


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    elif size_bytes < 1024 * 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024 / 1024:.1f} TB"


def mask_token(token: str) -> str:
    """Shorten a secret for log output."""
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"


# =============================================================================
# Glob pattern utilities
# =============================================================================


def is_glob_pattern(path: str) -> bool:
    """Check whether a path contains a wildcard (``*`` or ``?``).

    Examples:
        >>> is_glob_pattern("*.txt")
        True
        >>> is_glob_pattern("/docs/report.pdf")
        False
    """
    return "*" in path or "?" in path


def _check_glob_syntax(pattern: str) -> None:
    """Reject patterns ``fnmatch`` would silently read as literals."""
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            run = i
            while run < n and pattern[run] == "*":
                run += 1
            if run - i > 2:
                raise PatternCompileError(pattern, "too many consecutive wildcards")
            if run - i == 2:
                before_ok = i == 0 or pattern[i - 1] == "/"
                after_ok = run == n or pattern[run] == "/"
                if not (before_ok and after_ok):
                    raise PatternCompileError(
                        pattern, "recursive wildcards must form a single path component"
                    )
            i = run
        elif c == "[":
            # Same bracket scan as fnmatch: optional '!', then a leading ']' is literal
            j = i + 1
            if j < n and pattern[j] == "!":
                j += 1
            if j < n and pattern[j] == "]":
                j += 1
            j = pattern.find("]", j)
            if j == -1:
                raise PatternCompileError(pattern, "unclosed character class")
            i = j + 1
        elif c == "]":
            raise PatternCompileError(pattern, "unmatched ']'")
        else:
            i += 1


def compile_glob(pattern: str) -> list[Optional["re.Pattern[str]"]]:
    """Compile a glob pattern into one regular expression per path component.

    Supported syntax is that of :func:`fnmatch.translate`: ``*``, ``?``,
    ``[abc]`` / ``[a-z]`` and ``[!abc]``. Wildcards never cross a ``/``.
    ``**`` is only accepted as a whole component and is returned as ``None``.

    Raises:
        PatternCompileError: If the pattern is malformed
    """
    _check_glob_syntax(pattern)
    compiled: list[Optional["re.Pattern[str]"]] = []
    for component in pattern.split("/"):
        if component == "**":
            compiled.append(None)
            continue
        try:
            compiled.append(re.compile(fnmatch.translate(component)))
        except re.error as e:
            raise PatternCompileError(pattern, str(e)) from e
    return compiled


def _match_components(
    parts: list[Optional["re.Pattern[str]"]], names: list[str]
) -> bool:
    if not parts:
        return not names
    head, rest = parts[0], parts[1:]
    if head is None:
        return any(_match_components(rest, names[k:]) for k in range(len(names) + 1))
    return (
        bool(names)
        and head.match(names[0]) is not None
        and _match_components(rest, names[1:])
    )


def glob_match(pattern: str, name: str) -> bool:
    """Test a name against a glob pattern (case-sensitive)."""
    return _match_components(compile_glob(pattern), name.split("/"))


class PatternMatcher:
    """A compiled glob pattern.

    Examples:
        >>> matcher = PatternMatcher("*.txt")
        >>> matcher.matches("notes.txt")
        True
    """

    def __init__(self, pattern: str):
        self.pattern = pattern
        self._parts = compile_glob(pattern)

    def matches(self, name: str) -> bool:
        return _match_components(self._parts, name.split("/"))

    def __repr__(self) -> str:
        return f"PatternMatcher({self.pattern!r})"


# =============================================================================
# Remote path utilities
# =============================================================================


def normalize_remote_path(path: str) -> str:
    """Normalize a remote path to an absolute, slash-separated form.

    Accepts plain paths (``docs/a.txt``, ``/docs/a.txt``) and Cloudreve URIs
    (``cloudreve://my/docs/a.txt``). A trailing slash is kept.
    """
    if path.startswith(V4_ROOT_URI):
        path = path[len(V4_ROOT_URI) :]
    elif path.startswith(CLOUDREVE_URI_PREFIX):
        path = path[len(CLOUDREVE_URI_PREFIX) :]
    path = path.replace("\\", "/")
    if not path.startswith("/"):
        path = "/" + path
    while "//" in path:
        path = path.replace("//", "/")
    return path


def split_remote_pattern(pattern: str) -> tuple[str, str]:
    """Split a remote pattern into its directory and file glob.

    The directory is everything up to and including the last ``/``.

    Examples:
        >>> split_remote_pattern("*.txt")
        ('/', '*.txt')
        >>> split_remote_pattern("/docs/foo*.txt")
        ('/docs/', 'foo*.txt')
        >>> split_remote_pattern("/*")
        ('/', '*')
    """
    normalized = normalize_remote_path(pattern)
    pos = normalized.rfind("/")
    return normalized[: pos + 1], normalized[pos + 1 :]


def join_remote_path(directory: str, name: str) -> str:
    """Join a remote directory and an entry name into an absolute path."""
    directory = normalize_remote_path(directory)
    if directory == "/":
        return f"/{name}"
    return f"{directory.rstrip('/')}/{name}"


def remote_parent(path: str) -> str:
    """Return the parent directory of a remote path ("/" for top-level)."""
    normalized = normalize_remote_path(path).rstrip("/")
    pos = normalized.rfind("/")
    if pos <= 0:
        return "/"
    return normalized[:pos]


def remote_basename(path: str) -> str:
    """Return the last component of a remote path."""
    return normalize_remote_path(path).rstrip("/").rsplit("/", 1)[-1]


def to_v4_uri(path: str) -> str:
    """Convert a remote path to a ``cloudreve://my/...`` URI."""
    normalized = normalize_remote_path(path)
    if normalized != "/":
        normalized = normalized.rstrip("/")
    return f"{V4_ROOT_URI}{normalized}"
