"""Data models for Cloudreve API responses and cached credentials."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Optional

AuthScheme = Literal["bearer", "session_cookie"]

AUTH_BEARER: AuthScheme = "bearer"
AUTH_SESSION_COOKIE: AuthScheme = "session_cookie"


@dataclass
class TokenPair:
    """Access/refresh tokens with their expiry timestamps (RFC 3339 strings)."""

    access_token: str
    refresh_token: str = ""
    access_expires: str = ""
    refresh_expires: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "TokenPair":
        return cls(
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", ""),
            access_expires=data.get("access_expires", "") or "",
            refresh_expires=data.get("refresh_expires", "") or "",
        )


@dataclass
class LoginResult:
    """Outcome of a successful login call."""

    account_id: str
    email: str
    display_name: str
    tokens: TokenPair


@dataclass
class Credential:
    """Cached authentication material for one (instance, account) pair."""

    account_id: str
    email: str
    display_name: str
    access_token: str
    refresh_token: str
    access_expires: str
    refresh_expires: str
    instance_url: str
    auth_scheme: AuthScheme = AUTH_BEARER

    @classmethod
    def from_login(cls, login: LoginResult, instance_url: str, auth_scheme: AuthScheme) -> "Credential":
        """Build a credential from a login response."""
        return cls(
            account_id=login.account_id,
            email=login.email,
            display_name=login.display_name,
            access_token=login.tokens.access_token,
            refresh_token=login.tokens.refresh_token,
            access_expires=login.tokens.access_expires,
            refresh_expires=login.tokens.refresh_expires,
            instance_url=normalize_url(instance_url),
            auth_scheme=auth_scheme,
        )

    def with_tokens(self, tokens: TokenPair) -> "Credential":
        """Return a copy with token and expiry fields replaced.

        Identity fields (account id, email, display name, instance URL and
        auth scheme) are preserved.
        """
        return Credential(
            account_id=self.account_id,
            email=self.email,
            display_name=self.display_name,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            access_expires=tokens.access_expires,
            refresh_expires=tokens.refresh_expires,
            instance_url=self.instance_url,
            auth_scheme=self.auth_scheme,
        )

    @property
    def api_version(self) -> str:
        return "v3" if self.auth_scheme == AUTH_SESSION_COOKIE else "v4"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Credential":
        scheme = data.get("auth_scheme") or AUTH_BEARER
        if scheme not in (AUTH_BEARER, AUTH_SESSION_COOKIE):
            scheme = AUTH_BEARER
        return cls(
            account_id=str(data.get("account_id", "")),
            email=data.get("email", ""),
            display_name=data.get("display_name", ""),
            access_token=data.get("access_token", ""),
            refresh_token=data.get("refresh_token", ""),
            access_expires=data.get("access_expires", "") or "",
            refresh_expires=data.get("refresh_expires", "") or "",
            instance_url=normalize_url(data.get("instance_url", "")),
            auth_scheme=scheme,
        )


@dataclass
class RemoteEntry:
    """A file or folder in a remote directory listing."""

    name: str
    is_folder: bool
    size: int = 0
    id: str = ""
    path: str = ""
    updated_at: Optional[str] = None

    @classmethod
    def from_v4(cls, data: dict[str, Any]) -> "RemoteEntry":
        # type 0 is a file, type 1 is a folder
        return cls(
            name=data.get("name", ""),
            is_folder=data.get("type") == 1,
            size=int(data.get("size") or 0),
            id=str(data.get("id", "")),
            path=data.get("path", ""),
            updated_at=data.get("updated_at"),
        )

    @classmethod
    def from_v3(cls, data: dict[str, Any]) -> "RemoteEntry":
        return cls(
            name=data.get("name", ""),
            is_folder=data.get("type") == "dir",
            size=int(data.get("size") or 0),
            id=str(data.get("id", "")),
            path=data.get("path", ""),
            updated_at=data.get("date"),
        )


@dataclass
class StoragePolicy:
    """A storage policy the account may upload to."""

    id: str
    name: str = ""
    type: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "StoragePolicy":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            type=data.get("type", ""),
        )


@dataclass
class DirectoryPage:
    """One page of a directory listing."""

    entries: list[RemoteEntry] = field(default_factory=list)
    next_page_token: Optional[str] = None
    storage_policy: Optional[StoragePolicy] = None


@dataclass
class UploadSession:
    """Server-side context grouping the chunk uploads of one file.

    A ``chunk_size`` of zero means the whole file goes up as one chunk.
    """

    session_id: str
    target_path: str
    total_size: int
    chunk_size: int

    @property
    def effective_chunk_size(self) -> int:
        if self.chunk_size <= 0:
            return self.total_size
        return self.chunk_size

    @property
    def chunks_total(self) -> int:
        if self.chunk_size <= 0:
            return 1
        return math.ceil(self.total_size / self.chunk_size)


@dataclass
class DownloadUrl:
    """A temporary URL a file can be fetched from."""

    url: str
    display_name: Optional[str] = None


def normalize_url(url: str) -> str:
    """Strip whitespace and trailing slashes from an instance URL."""
    return url.strip().rstrip("/")
