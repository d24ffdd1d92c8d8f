"""Manager for listing remote directories with automatic pagination."""

import logging
from collections.abc import Iterator
from typing import Optional

from .api import CloudreveAPI
from .models import RemoteEntry
from .utils import DEFAULT_PAGE_SIZE, join_remote_path, normalize_remote_path

logger = logging.getLogger(__name__)


class RemoteEntriesManager:
    """Lists remote directories across all result pages."""

    def __init__(self, api: CloudreveAPI):
        """Initialize the entries manager.

        Args:
            api: Cloudreve API client
        """
        self.api = api
        self._cache: dict[str, list[RemoteEntry]] = {}

    def get_all_in_folder(
        self,
        path: str = "/",
        use_cache: bool = True,
        per_page: int = DEFAULT_PAGE_SIZE,
    ) -> list[RemoteEntry]:
        """Get every entry of a remote directory.

        Args:
            path: Remote directory path
            use_cache: Whether to reuse a previous listing of the same path
            per_page: Number of entries requested per page

        Returns:
            All entries of the directory, in server order

        Raises:
            CloudreveAPIError: If any page cannot be fetched
        """
        directory = normalize_remote_path(path)
        if use_cache and directory in self._cache:
            return self._cache[directory]

        all_entries: list[RemoteEntry] = []
        page_token: Optional[str] = None
        seen_tokens: set[str] = set()

        while True:
            page = self.api.list_directory(
                directory, page_token=page_token, page_size=per_page
            )
            all_entries.extend(page.entries)

            if not page.next_page_token:
                break
            # Stop on a repeating cursor instead of looping forever
            if page.next_page_token in seen_tokens:
                logger.warning(
                    "Server repeated page token while listing %s, stopping", directory
                )
                break
            seen_tokens.add(page.next_page_token)
            page_token = page.next_page_token

        logger.debug("Listed %d entries in %s", len(all_entries), directory)
        if use_cache:
            self._cache[directory] = all_entries
        return all_entries

    def iter_walk(
        self, path: str = "/", per_page: int = DEFAULT_PAGE_SIZE
    ) -> Iterator[tuple[RemoteEntry, str]]:
        """Walk a remote tree and yield every file below ``path``.

        Directories are processed from an explicit worklist rather than by
        recursion.

        Yields:
            (entry, absolute remote path) for each file
        """
        pending = [normalize_remote_path(path)]
        visited: set[str] = set()

        while pending:
            directory = pending.pop()
            if directory in visited:
                continue
            visited.add(directory)

            for entry in self.get_all_in_folder(directory, use_cache=False, per_page=per_page):
                entry_path = join_remote_path(directory, entry.name)
                if entry.is_folder:
                    pending.append(entry_path)
                else:
                    yield entry, entry_path

    def clear_cache(self) -> None:
        self._cache.clear()
