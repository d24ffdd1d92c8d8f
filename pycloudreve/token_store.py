"""Persistent cache of login credentials.

All credentials live in a single JSON document::

    {"version": 1, "credentials": [{...}, {...}]}

Every update rewrites the whole document through a temporary file, so a
reader never sees a half-written cache. Two processes saving at the same
time can still lose one update (last writer wins).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .exceptions import TokenStoreError
from .models import Credential, normalize_url
from .utils import is_timestamp_expired

logger = logging.getLogger(__name__)

STORE_VERSION = 1


class TokenStore:
    """Reads and writes cached credentials keyed by (instance URL, email)."""

    def __init__(self, path: Path):
        """Initialize the store.

        Args:
            path: Location of the JSON cache file (created on first save)
        """
        self.path = Path(path)

    def load_all(self) -> list[Credential]:
        """Load every cached credential.

        Returns:
            Credentials in file order (empty if the file does not exist)

        Raises:
            TokenStoreError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            return []

        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise TokenStoreError(f"Cannot read token cache {self.path}: {e}") from e

        if not content.strip():
            return []

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise TokenStoreError(f"Failed to parse token cache {self.path}: {e}") from e

        records = self._extract_records(data)
        return [Credential.from_dict(r) for r in records if isinstance(r, dict)]

    def _extract_records(self, data: Any) -> list[Any]:
        # Files written before the version tag existed hold a bare array
        if isinstance(data, list):
            logger.debug("Reading unversioned token cache %s", self.path)
            return data
        if isinstance(data, dict):
            version = data.get("version")
            if version != STORE_VERSION:
                raise TokenStoreError(
                    f"Unsupported token cache version {version!r} in {self.path}"
                )
            records = data.get("credentials", [])
            if isinstance(records, list):
                return records
        raise TokenStoreError(f"Unexpected token cache layout in {self.path}")

    def save_all(self, credentials: list[Credential]) -> None:
        """Replace the whole cache with ``credentials``."""
        document = {
            "version": STORE_VERSION,
            "credentials": [c.to_dict() for c in credentials],
        }
        text = json.dumps(document, indent=2)

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=".tokens-", suffix=".json"
            )
        except OSError as e:
            raise TokenStoreError(f"Cannot write token cache {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.chmod(temp_path, 0o600)
            os.replace(temp_path, self.path)
        except OSError as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise TokenStoreError(f"Cannot write token cache {self.path}: {e}") from e

    def load(
        self, url: Optional[str] = None, email: Optional[str] = None
    ) -> Optional[Credential]:
        """Find a credential.

        Args:
            url: Instance URL to match (optional)
            email: Account email to match (optional)

        Returns:
            The first credential matching every given field, the first
            cached credential when neither is given, or None
        """
        target_url = normalize_url(url) if url else None
        for credential in self.load_all():
            if target_url and credential.instance_url != target_url:
                continue
            if email and credential.email != email:
                continue
            return credential
        return None

    def save(self, credential: Credential) -> None:
        """Insert or replace the credential for its (instance URL, email)."""
        credentials = self.load_all()
        for i, existing in enumerate(credentials):
            if (
                existing.email == credential.email
                and existing.instance_url == credential.instance_url
            ):
                credentials[i] = credential
                break
        else:
            credentials.append(credential)

        self.save_all(credentials)
        logger.debug(
            "Saved credential for %s at %s", credential.email, credential.instance_url
        )

    def remove(self, url: Optional[str] = None, email: Optional[str] = None) -> int:
        """Remove matching credentials.

        Returns:
            Number of removed records
        """
        target_url = normalize_url(url) if url else None
        credentials = self.load_all()
        kept = [
            c
            for c in credentials
            if not (
                (target_url is None or c.instance_url == target_url)
                and (email is None or c.email == email)
            )
        ]
        removed = len(credentials) - len(kept)
        if removed:
            self.save_all(kept)
        return removed

    @staticmethod
    def is_access_expired(credential: Credential, now: datetime) -> bool:
        """True if ``access_expires`` is empty, unparsable or before ``now``."""
        return is_timestamp_expired(credential.access_expires, now)

    @staticmethod
    def is_refresh_expired(credential: Credential, now: datetime) -> bool:
        """True if ``refresh_expires`` is empty, unparsable or before ``now``."""
        return is_timestamp_expired(credential.refresh_expires, now)
