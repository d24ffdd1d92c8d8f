"""Exceptions raised by the Cloudreve client."""

from __future__ import annotations


class CloudreveError(Exception):
    """Base exception for everything raised by pycloudreve."""


class CloudreveConfigError(CloudreveError):
    """Raised when the configuration is missing or malformed."""


class CloudreveAPIError(CloudreveError):
    """Raised when the Cloudreve API returns an error."""

    def __init__(
        self,
        message: str,
        code: int | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class CloudreveAuthenticationError(CloudreveAPIError):
    """Raised when the server rejects the credentials."""


class CloudrevePermissionError(CloudreveAPIError):
    """Raised when access to a resource is forbidden."""


class CloudreveNotFoundError(CloudreveAPIError):
    """Raised when a remote resource does not exist."""


class CloudreveRateLimitError(CloudreveAPIError):
    """Raised when the server throttles requests."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class CloudreveNetworkError(CloudreveAPIError):
    """Raised on transport level failures (DNS, connection reset, timeout)."""


class CloudreveInvalidResponseError(CloudreveAPIError):
    """Raised when a response is not the JSON envelope we expect."""


class CloudreveUnsupportedError(CloudreveAPIError):
    """Raised when an operation is not available on the selected API version."""


class CloudreveDownloadError(CloudreveError):
    """Raised when a file could not be downloaded or written locally."""


class TokenStoreError(CloudreveError):
    """Raised when the credential cache file cannot be read or written."""


# =========================
# Session errors
# =========================


class SessionError(CloudreveError):
    """Base class for errors that require the user to log in again."""


class NoCachedCredentialError(SessionError):
    """No cached credential matches the requested account."""

    def __init__(self, url: str | None = None, email: str | None = None):
        target = " ".join(part for part in (email, url) if part) or "default account"
        super().__init__(f"No cached credential for {target}")
        self.url = url
        self.email = email


class NeedsReauthenticationError(SessionError):
    """Both the access token and the refresh token have expired."""

    def __init__(self, email: str):
        super().__init__(f"Session for {email} has expired")
        self.email = email


class RefreshFailedError(SessionError):
    """The refresh endpoint rejected the refresh token or was unreachable."""

    def __init__(self, email: str, cause: Exception):
        super().__init__(f"Failed to refresh session for {email}: {cause}")
        self.email = email
        self.cause = cause


# =========================
# Transfer errors
# =========================


class UploadPreconditionError(CloudreveError):
    """An upload cannot start (missing file, unreadable file, no policy)."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ChunkUploadFailedError(CloudreveError):
    """A chunk could not be uploaded after all retry attempts."""

    def __init__(self, index: int, cause: Exception):
        super().__init__(f"Failed to upload chunk {index}: {cause}")
        self.index = index
        self.cause = cause


class PatternCompileError(CloudreveError):
    """A glob pattern is malformed."""

    def __init__(self, pattern: str, reason: str = "invalid glob pattern"):
        super().__init__(f"Invalid glob pattern '{pattern}': {reason}")
        self.pattern = pattern
        self.reason = reason
