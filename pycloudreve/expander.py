"""Resolve wildcard arguments against remote directory listings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .exceptions import PatternCompileError
from .file_entries_manager import RemoteEntriesManager
from .utils import (
    PatternMatcher,
    is_glob_pattern,
    join_remote_path,
    normalize_remote_path,
    split_remote_pattern,
)

logger = logging.getLogger(__name__)


@dataclass
class ExpansionResult:
    """Concrete paths produced by :meth:`RemoteExpander.expand`."""

    paths: list[str] = field(default_factory=list)
    """Sorted, deduplicated absolute remote paths"""

    folders: set[str] = field(default_factory=set)
    """Subset of ``paths`` known to be folders from the listing"""

    errors: list[tuple[str, PatternCompileError]] = field(default_factory=list)
    """(pattern, error) for every pattern that could not be compiled"""


class RemoteExpander:
    """Expands ``*``/``?`` patterns one directory level deep.

    Examples:
        >>> expander = RemoteExpander(RemoteEntriesManager(api))
        >>> expander.expand(["/docs/*.txt", "/notes.md"]).paths
        ['/docs/a.txt', '/docs/b.txt', '/notes.md']
    """

    def __init__(self, entries_manager: RemoteEntriesManager):
        self.entries_manager = entries_manager

    def expand(self, patterns: list[str], include_folders: bool = False) -> ExpansionResult:
        """Resolve patterns into concrete remote paths.

        Plain paths pass through. Each wildcard pattern lists its directory
        in full and keeps the entries whose name matches; folders are kept
        only when ``include_folders`` is set, and matched folders are not
        descended into. A malformed pattern is reported in ``errors`` and
        does not stop the other patterns.

        Raises:
            CloudreveAPIError: If a directory listing fails
        """
        matched: set[str] = set()
        folders: set[str] = set()
        errors: list[tuple[str, PatternCompileError]] = []

        for pattern in patterns:
            if not is_glob_pattern(pattern):
                matched.add(normalize_remote_path(pattern))
                continue

            directory, file_glob = split_remote_pattern(pattern)
            try:
                matcher = PatternMatcher(file_glob)
            except PatternCompileError as e:
                logger.error("Skipping pattern %s: %s", pattern, e)
                errors.append((pattern, e))
                continue

            entries = self.entries_manager.get_all_in_folder(directory)
            count = 0
            for entry in entries:
                if entry.is_folder and not include_folders:
                    continue
                if matcher.matches(entry.name):
                    full_path = join_remote_path(directory, entry.name)
                    matched.add(full_path)
                    if entry.is_folder:
                        folders.add(full_path)
                    count += 1
            logger.debug("Pattern %s matched %d entr(y/ies) in %s", pattern, count, directory)

        return ExpansionResult(paths=sorted(matched), folders=folders, errors=errors)
