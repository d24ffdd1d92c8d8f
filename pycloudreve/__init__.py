"""Cloudreve CLI - command line client for Cloudreve cloud storage."""

from .api import CloudreveAPI, V3Client, V4Client, create_api
from .auth import Session, SessionManager
from .batch import BatchOrchestrator, BatchReport
from .exceptions import (
    ChunkUploadFailedError,
    CloudreveAPIError,
    CloudreveAuthenticationError,
    CloudreveConfigError,
    CloudreveDownloadError,
    CloudreveError,
    CloudreveInvalidResponseError,
    CloudreveNetworkError,
    CloudreveNotFoundError,
    CloudrevePermissionError,
    CloudreveRateLimitError,
    CloudreveUnsupportedError,
    NeedsReauthenticationError,
    NoCachedCredentialError,
    PatternCompileError,
    RefreshFailedError,
    SessionError,
    TokenStoreError,
    UploadPreconditionError,
)
from .token_store import TokenStore
from .uploader import ChunkedUploader

__version__ = "0.1.0"

__all__ = [
    "CloudreveAPI",
    "V3Client",
    "V4Client",
    "create_api",
    "Session",
    "SessionManager",
    "BatchOrchestrator",
    "BatchReport",
    "TokenStore",
    "ChunkedUploader",
    "ChunkUploadFailedError",
    "CloudreveAPIError",
    "CloudreveAuthenticationError",
    "CloudreveConfigError",
    "CloudreveDownloadError",
    "CloudreveError",
    "CloudreveInvalidResponseError",
    "CloudreveNetworkError",
    "CloudreveNotFoundError",
    "CloudrevePermissionError",
    "CloudreveRateLimitError",
    "CloudreveUnsupportedError",
    "NeedsReauthenticationError",
    "NoCachedCredentialError",
    "PatternCompileError",
    "RefreshFailedError",
    "SessionError",
    "TokenStoreError",
    "UploadPreconditionError",
]
