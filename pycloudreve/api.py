"""API clients for Cloudreve.

Two server generations are supported behind one interface:

* :class:`V4Client` talks to Cloudreve 4 (JWT bearer + refresh token,
  ``cloudreve://my/...`` URIs, cursor pagination).
* :class:`V3Client` talks to Cloudreve 3 (legacy session cookie, plain paths,
  no token refresh).

The implementation is picked once by :func:`create_api`; callers only use
the :class:`CloudreveAPI` methods.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx

from .exceptions import (
    CloudreveAPIError,
    CloudreveAuthenticationError,
    CloudreveDownloadError,
    CloudreveInvalidResponseError,
    CloudreveNetworkError,
    CloudreveNotFoundError,
    CloudrevePermissionError,
    CloudreveRateLimitError,
    CloudreveUnsupportedError,
)
from .models import (
    AUTH_BEARER,
    AUTH_SESSION_COOKIE,
    AuthScheme,
    DirectoryPage,
    DownloadUrl,
    LoginResult,
    RemoteEntry,
    StoragePolicy,
    TokenPair,
    UploadSession,
    normalize_url,
)
from .retry import RetryPolicy, retry_call
from .utils import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_RETRY_DELAY,
    mask_token,
    normalize_remote_path,
    remote_basename,
    remote_parent,
    to_v4_uri,
)

logger = logging.getLogger(__name__)

API_VERSIONS = ("v3", "v4")

# Cloudreve envelope codes
CODE_OK = 0
CODE_LOGIN_REQUIRED = 401
CODE_NO_PERMISSION = 403
CODE_NOT_FOUND = 404
CODE_CREDENTIAL_INVALID = 40020
CODE_OBJECT_NOT_EXIST = 40016
CODE_PARENT_NOT_EXIST = 40049

V3_SESSION_COOKIE = "cloudreve-session"


def _is_retryable(error: BaseException) -> bool:
    """Network failures, throttling and 5xx responses are transient."""
    if isinstance(error, (CloudreveNetworkError, CloudreveRateLimitError)):
        return True
    if isinstance(error, CloudreveAPIError) and error.status_code is not None:
        return 500 <= error.status_code < 600
    return False


def _retry_after(error: BaseException) -> Optional[float]:
    if isinstance(error, CloudreveRateLimitError):
        return error.retry_after
    return None


class CloudreveAPI(ABC):
    """Capability interface shared by all Cloudreve API versions."""

    api_version: str = ""
    api_prefix: str = ""
    auth_scheme: AuthScheme = AUTH_BEARER

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the API client.

        Args:
            url: Instance URL (e.g. ``https://cloud.example.com``)
            token: Optional access token or session cookie to attach
            max_retries: Retries after the first attempt for transient errors
            retry_delay: Initial delay between retries in seconds
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.url = normalize_url(url)
        self.api_url = f"{self.url}{self.api_prefix}"
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._token: Optional[str] = token
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retries + 1,
            delay=self.retry_delay,
            backoff="exponential",
        )

    @property
    def token(self) -> Optional[str]:
        return self._token

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(
                    timeout=httpx.Timeout(self.timeout),
                    follow_redirects=True,
                    transport=self._transport,
                )
                self._apply_auth(self._client)
            return self._client

    def set_token(self, token: str) -> None:
        """Attach an access token (or session cookie) to subsequent calls."""
        logger.debug("Attaching %s token %s", self.api_version, mask_token(token))
        self._token = token
        if self._client is not None and not self._client.is_closed:
            self._apply_auth(self._client)

    @abstractmethod
    def _apply_auth(self, client: httpx.Client) -> None:
        """Put the current token on the httpx client."""

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> "CloudreveAPI":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================
    # Request plumbing
    # =========================

    def _handle_http_error(self, e: httpx.HTTPStatusError) -> CloudreveAPIError:
        """Translate an HTTP error status into a Cloudreve exception."""
        status_code = e.response.status_code

        if status_code == 401:
            return CloudreveAuthenticationError(
                "Unauthorized - the session is invalid or has expired",
                status_code=401,
            )
        elif status_code == 403:
            return CloudrevePermissionError(
                "Access forbidden - check your permissions", status_code=403
            )
        elif status_code == 404:
            return CloudreveNotFoundError("Resource not found", status_code=404)
        elif status_code == 429:
            retry_after = e.response.headers.get("Retry-After")
            delay = float(retry_after) if retry_after and retry_after.isdigit() else None
            return CloudreveRateLimitError(
                "Rate limit exceeded - please try again later", retry_after=delay
            )

        error_msg = f"API request failed with status {status_code}"
        try:
            if e.response.content:
                error_data = e.response.json()
                if isinstance(error_data, dict):
                    msg = error_data.get("msg") or error_data.get("error")
                    if msg:
                        error_msg = f"{error_msg}: {msg}"
        except ValueError:
            # Body is not JSON, keep the status-based message
            pass
        return CloudreveAPIError(error_msg, status_code=status_code)

    def _unwrap(self, payload: Any) -> Any:
        """Return the ``data`` of a Cloudreve envelope or raise its error."""
        if not isinstance(payload, dict) or "code" not in payload:
            raise CloudreveInvalidResponseError("Unexpected response format from server")

        code = payload.get("code")
        if code == CODE_OK:
            return payload.get("data")

        msg = payload.get("msg") or f"error code {code}"
        if code in (CODE_LOGIN_REQUIRED, CODE_CREDENTIAL_INVALID):
            raise CloudreveAuthenticationError(msg, code=code)
        if code == CODE_NO_PERMISSION:
            raise CloudrevePermissionError(msg, code=code)
        if code in (CODE_NOT_FOUND, CODE_OBJECT_NOT_EXIST, CODE_PARENT_NOT_EXIST):
            raise CloudreveNotFoundError(msg, code=code)
        raise CloudreveAPIError(msg, code=code)

    def _send(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Perform a single request and return the envelope data."""
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        client = self._get_client()

        try:
            response = client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._handle_http_error(e) from e
        except httpx.RequestError as e:
            raise CloudreveNetworkError(f"Network error: {e}") from e

        content_type = response.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            raise CloudreveInvalidResponseError(
                f"Unexpected response type: {content_type or 'none'}"
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise CloudreveInvalidResponseError(
                "Invalid JSON response from server"
            ) from e
        return self._unwrap(payload)

    def _request(
        self, method: str, endpoint: str, retry: bool = True, **kwargs: Any
    ) -> Any:
        """Make an API request, retrying transient failures.

        Args:
            method: HTTP method
            endpoint: Endpoint path below the versioned API prefix
            retry: Whether to retry network errors, 429 and 5xx responses
            **kwargs: Additional arguments passed to httpx

        Returns:
            The ``data`` member of the response envelope

        Raises:
            CloudreveAPIError: If the request fails after all retries
        """
        if not retry:
            return self._send(method, endpoint, **kwargs)
        return retry_call(
            lambda: self._send(method, endpoint, **kwargs),
            self.retry_policy,
            retry_on=(CloudreveAPIError,),
            should_retry=_is_retryable,
            delay_override=_retry_after,
        )

    # =========================
    # Capabilities
    # =========================

    @abstractmethod
    def login(self, email: str, password: str) -> LoginResult:
        """Log in and attach the resulting token to this client."""

    @abstractmethod
    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new token pair."""

    @abstractmethod
    def list_directory(
        self,
        path: str,
        page_token: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> DirectoryPage:
        """List one page of a remote directory."""

    @abstractmethod
    def get_storage_policies(self) -> list[StoragePolicy]:
        """Return the storage policies available to the account."""

    @abstractmethod
    def create_upload_session(
        self, path: str, size: int, policy_id: str, overwrite: bool = False
    ) -> UploadSession:
        """Open an upload session for a file of ``size`` bytes at ``path``."""

    @abstractmethod
    def upload_chunk(self, session_id: str, index: int, data: bytes) -> Any:
        """Upload one chunk (0-based index). Not retried internally."""

    @abstractmethod
    def delete_upload_session(self, path: str, session_id: str) -> Any:
        """Discard an upload session and any chunks already sent."""

    def create_download_url(self, path: str) -> DownloadUrl:
        raise CloudreveUnsupportedError(
            f"Download not available in {self.api_version.upper()} API"
        )

    def delete(self, path: str) -> Any:
        raise CloudreveUnsupportedError(
            f"Delete not available in {self.api_version.upper()} API"
        )

    def copy(self, path: str, destination: str) -> Any:
        raise CloudreveUnsupportedError(
            f"Copy not available in {self.api_version.upper()} API"
        )

    def move(self, path: str, destination: str) -> Any:
        raise CloudreveUnsupportedError(
            f"Move not available in {self.api_version.upper()} API"
        )

    # =========================
    # Download Operations
    # =========================

    def download_to(
        self,
        download_url: str,
        output_path: Path,
        progress_callback: Optional[Callable[[int, int], None]] = None,
        timeout: float = 60.0,
    ) -> int:
        """Stream a download URL into a local file.

        The request goes out without the API credentials since the URL is
        already signed and may point at a third-party storage backend.

        Args:
            download_url: URL returned by :meth:`create_download_url`
            output_path: Local file to write
            progress_callback: Optional callback function(bytes_downloaded, total_bytes)
            timeout: Request timeout in seconds

        Returns:
            Number of bytes written

        Raises:
            CloudreveDownloadError: If the download or the local write fails
        """
        if download_url.startswith("/"):
            download_url = f"{self.url}{download_url}"

        bytes_downloaded = 0
        try:
            with httpx.Client(
                timeout=httpx.Timeout(timeout),
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                with client.stream("GET", download_url) as response:
                    response.raise_for_status()
                    total_size = int(response.headers.get("Content-Length", 0))
                    with open(output_path, "wb") as f:
                        for chunk in response.iter_bytes(chunk_size=65536):
                            if chunk:
                                f.write(chunk)
                                bytes_downloaded += len(chunk)
                                if progress_callback:
                                    progress_callback(bytes_downloaded, total_size)
        except httpx.HTTPStatusError as e:
            output_path.unlink(missing_ok=True)
            raise CloudreveDownloadError(f"Download failed: {e}") from e
        except httpx.RequestError as e:
            output_path.unlink(missing_ok=True)
            raise CloudreveDownloadError(f"Network error during download: {e}") from e
        except OSError as e:
            raise CloudreveDownloadError(f"Failed to write file: {e}") from e

        return bytes_downloaded


class V4Client(CloudreveAPI):
    """Client for the Cloudreve 4 API (bearer + refresh tokens)."""

    api_version = "v4"
    api_prefix = "/api/v4"
    auth_scheme = AUTH_BEARER

    def _apply_auth(self, client: httpx.Client) -> None:
        if self._token:
            client.headers["Authorization"] = f"Bearer {self._token}"
        else:
            client.headers.pop("Authorization", None)

    def login(self, email: str, password: str) -> LoginResult:
        data = self._request(
            "POST", "/session/token", json={"email": email, "password": password}
        )
        if not isinstance(data, dict):
            raise CloudreveInvalidResponseError("Login response is not an object")
        user = data.get("user") or {}
        token = data.get("token") or {}
        result = LoginResult(
            account_id=str(user.get("id", "")),
            email=user.get("email", email),
            display_name=user.get("nickname", ""),
            tokens=TokenPair.from_api_response(token),
        )
        if not result.tokens.access_token:
            raise CloudreveInvalidResponseError("Login response contains no access token")
        self.set_token(result.tokens.access_token)
        return result

    def refresh(self, refresh_token: str) -> TokenPair:
        data = self._request(
            "POST", "/session/token/refresh", json={"refresh_token": refresh_token}
        )
        if not isinstance(data, dict):
            raise CloudreveInvalidResponseError("Refresh response is not an object")
        tokens = TokenPair.from_api_response(data)
        if not tokens.access_token:
            raise CloudreveInvalidResponseError("Refresh response contains no access token")
        return tokens

    def list_directory(
        self,
        path: str,
        page_token: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> DirectoryPage:
        params: dict[str, Any] = {"uri": to_v4_uri(path), "page_size": page_size}
        if page_token:
            params["next_page_token"] = page_token
        else:
            params["page"] = 0
        data = self._request("GET", "/file", params=params) or {}

        pagination = data.get("pagination") or {}
        policy_data = data.get("storage_policy")
        return DirectoryPage(
            entries=[RemoteEntry.from_v4(f) for f in data.get("files") or []],
            next_page_token=pagination.get("next_token") or None,
            storage_policy=(
                StoragePolicy.from_api_response(policy_data) if policy_data else None
            ),
        )

    def get_storage_policies(self) -> list[StoragePolicy]:
        data = self._request("GET", "/user/setting/policies") or []
        return [StoragePolicy.from_api_response(p) for p in data]

    def create_upload_session(
        self, path: str, size: int, policy_id: str, overwrite: bool = False
    ) -> UploadSession:
        payload: dict[str, Any] = {
            "uri": to_v4_uri(path),
            "size": size,
            "policy_id": policy_id,
        }
        if overwrite:
            payload["entity_type"] = "version"
        data = self._request("PUT", "/file/upload", json=payload) or {}
        session_id = data.get("session_id")
        if not session_id:
            raise CloudreveInvalidResponseError("Upload session response has no session id")
        return UploadSession(
            session_id=session_id,
            target_path=normalize_remote_path(path),
            total_size=size,
            chunk_size=int(data.get("chunk_size") or 0),
        )

    def upload_chunk(self, session_id: str, index: int, data: bytes) -> Any:
        return self._request(
            "POST",
            f"/file/upload/{session_id}/{index}",
            retry=False,
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )

    def delete_upload_session(self, path: str, session_id: str) -> Any:
        return self._request(
            "DELETE",
            "/file/upload",
            json={"id": session_id, "uri": to_v4_uri(path)},
        )

    def create_download_url(self, path: str) -> DownloadUrl:
        data = self._request(
            "POST", "/file/url", json={"uris": [to_v4_uri(path)], "download": True}
        ) or {}
        urls = data.get("urls") or []
        if not urls:
            raise CloudreveDownloadError(f"No download URL returned for {path}")
        first = urls[0]
        return DownloadUrl(
            url=first.get("url", ""),
            display_name=first.get("stream_saver_display_name"),
        )

    def delete(self, path: str) -> Any:
        return self._request("DELETE", "/file", json={"uris": [to_v4_uri(path)]})

    def _relocate(self, path: str, destination: str, copy: bool) -> Any:
        return self._request(
            "POST",
            "/file/move",
            json={
                "uris": [to_v4_uri(path)],
                "dst": to_v4_uri(destination),
                "copy": copy,
            },
        )

    def copy(self, path: str, destination: str) -> Any:
        return self._relocate(path, destination, copy=True)

    def move(self, path: str, destination: str) -> Any:
        return self._relocate(path, destination, copy=False)


class V3Client(CloudreveAPI):
    """Client for the legacy Cloudreve 3 API (session cookie)."""

    api_version = "v3"
    api_prefix = "/api/v3"
    auth_scheme = AUTH_SESSION_COOKIE

    def _apply_auth(self, client: httpx.Client) -> None:
        if self._token:
            client.cookies.set(V3_SESSION_COOKIE, self._token)

    def login(self, email: str, password: str) -> LoginResult:
        data = self._request(
            "POST",
            "/user/session",
            json={"userName": email, "Password": password, "captchaCode": ""},
        ) or {}
        cookie = self._get_client().cookies.get(V3_SESSION_COOKIE)
        if not cookie:
            raise CloudreveAuthenticationError("Login response set no session cookie")
        self._token = cookie
        return LoginResult(
            account_id=str(data.get("id", "")),
            email=data.get("user_name", email),
            display_name=data.get("nickname", ""),
            tokens=TokenPair(access_token=cookie),
        )

    def refresh(self, refresh_token: str) -> TokenPair:
        raise CloudreveUnsupportedError("Token refresh not supported for V3 API")

    def list_directory(
        self,
        path: str,
        page_token: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> DirectoryPage:
        # V3 returns whole directories, there is no pagination
        normalized = normalize_remote_path(path)
        if normalized != "/":
            normalized = normalized.rstrip("/")
        data = self._request("GET", f"/directory{quote(normalized)}") or {}
        policy_data = data.get("policy")
        return DirectoryPage(
            entries=[RemoteEntry.from_v3(o) for o in data.get("objects") or []],
            next_page_token=None,
            storage_policy=(
                StoragePolicy.from_api_response(policy_data) if policy_data else None
            ),
        )

    def get_storage_policies(self) -> list[StoragePolicy]:
        data = self._request("GET", "/user/setting/policies") or {}
        options = data.get("options", []) if isinstance(data, dict) else data
        return [StoragePolicy.from_api_response(p) for p in options]

    def create_upload_session(
        self, path: str, size: int, policy_id: str, overwrite: bool = False
    ) -> UploadSession:
        data = self._request(
            "PUT",
            "/file/upload",
            json={
                "path": remote_parent(path),
                "size": size,
                "name": remote_basename(path),
                "policy_id": policy_id,
            },
        ) or {}
        session_id = data.get("sessionID")
        if not session_id:
            raise CloudreveInvalidResponseError("Upload session response has no session id")
        return UploadSession(
            session_id=session_id,
            target_path=normalize_remote_path(path),
            total_size=size,
            chunk_size=int(data.get("chunkSize") or 0),
        )

    def upload_chunk(self, session_id: str, index: int, data: bytes) -> Any:
        return self._request(
            "POST",
            f"/file/upload/{session_id}/{index}",
            retry=False,
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )

    def delete_upload_session(self, path: str, session_id: str) -> Any:
        return self._request("DELETE", f"/file/upload/{session_id}")


_CLIENTS: dict[str, type[CloudreveAPI]] = {"v3": V3Client, "v4": V4Client}


def create_api(url: str, api_version: str = "v4", **kwargs: Any) -> CloudreveAPI:
    """Build the client matching ``api_version`` ("v3" or "v4")."""
    try:
        client_class = _CLIENTS[api_version.lower()]
    except KeyError:
        raise CloudreveUnsupportedError(f"Unknown API version: {api_version}") from None
    return client_class(url, **kwargs)


def detect_api_version(
    url: str,
    timeout: float = 10.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    """Detect which API generation an instance speaks.

    Returns:
        "v4" or "v3"

    Raises:
        CloudreveAPIError: If neither ping endpoint answers
    """
    base = normalize_url(url)
    network_error: Optional[httpx.RequestError] = None
    with httpx.Client(
        timeout=httpx.Timeout(timeout), follow_redirects=True, transport=transport
    ) as client:
        for version in ("v4", "v3"):
            try:
                response = client.get(f"{base}/api/{version}/site/ping")
                if response.status_code == 200:
                    payload = response.json()
                    if isinstance(payload, dict) and payload.get("code") == CODE_OK:
                        logger.info("Detected Cloudreve %s API at %s", version, base)
                        return version
            except httpx.RequestError as e:
                logger.debug("Ping of %s API failed: %s", version, e)
                network_error = e
            except ValueError:
                logger.debug("Non-JSON ping response from %s API", version)
    if network_error is not None:
        raise CloudreveNetworkError(f"Network error: {network_error}") from network_error
    raise CloudreveAPIError(f"Could not detect a Cloudreve API at {base}")
