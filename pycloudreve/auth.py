"""Session handling: cached credentials, token refresh and client setup."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from .api import CloudreveAPI, create_api, detect_api_version
from .exceptions import (
    CloudreveConfigError,
    CloudreveError,
    NeedsReauthenticationError,
    NoCachedCredentialError,
    RefreshFailedError,
)
from .models import AUTH_SESSION_COOKIE, Credential
from .token_store import TokenStore

logger = logging.getLogger(__name__)

ApiFactory = Callable[[str, str], CloudreveAPI]


@dataclass
class Session:
    """An API client with a usable token attached."""

    api: CloudreveAPI
    credential: Optional[Credential] = None
    refreshed: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Turns cached credentials into ready-to-use API clients.

    Expired access tokens are refreshed once and the new tokens are written
    to the store before the client is handed back.
    """

    def __init__(
        self,
        store: TokenStore,
        api_factory: ApiFactory = create_api,
        version_detector: Callable[[str], str] = detect_api_version,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the session manager.

        Args:
            store: Credential cache
            api_factory: Builds an API client from (url, api_version)
            version_detector: Detects the API version of an instance URL
            clock: Returns the current time (timezone-aware)
        """
        self.store = store
        self.api_factory = api_factory
        self.version_detector = version_detector
        self.clock = clock

    def resolve_session(
        self,
        url: Optional[str] = None,
        email: Optional[str] = None,
        token: Optional[str] = None,
        api_version: str = "v4",
        now: Optional[datetime] = None,
    ) -> Session:
        """Return an API client carrying a valid token.

        Args:
            url: Instance URL selecting the cached account (optional)
            email: Account email selecting the cached account (optional)
            token: Explicit access token; bypasses the cache (needs ``url``)
            api_version: API version used with an explicit token
            now: Current time (defaults to the manager's clock)

        Returns:
            Session with the API client and the credential in use

        Raises:
            NoCachedCredentialError: No cached credential matches
            NeedsReauthenticationError: Access and refresh tokens are expired
            RefreshFailedError: The refresh call failed
            TokenStoreError: The refreshed credential could not be saved
        """
        if token:
            if not url:
                raise CloudreveConfigError("An instance URL is required with --token")
            api = self.api_factory(url, api_version)
            api.set_token(token)
            return Session(api=api)

        now = now or self.clock()
        logger.info("Checking for cached token...")
        credential = self.store.load(url=url, email=email)
        if credential is None:
            raise NoCachedCredentialError(url=url, email=email)

        logger.info(
            "Found cached token for %s (%s API)",
            credential.email,
            credential.api_version,
        )
        api = self.api_factory(credential.instance_url, credential.api_version)

        # Session cookies carry no expiry information
        if credential.auth_scheme == AUTH_SESSION_COOKIE:
            api.set_token(credential.access_token)
            return Session(api=api, credential=credential)

        if not self.store.is_access_expired(credential, now):
            api.set_token(credential.access_token)
            return Session(api=api, credential=credential)

        logger.info("Access token expired, attempting to refresh...")
        if self.store.is_refresh_expired(credential, now):
            api.close()
            logger.warning("Refresh token also expired for %s", credential.email)
            raise NeedsReauthenticationError(credential.email)

        try:
            tokens = api.refresh(credential.refresh_token)
        except CloudreveError as e:
            api.close()
            logger.warning("Failed to refresh token for %s: %s", credential.email, e)
            raise RefreshFailedError(credential.email, e) from e

        refreshed = credential.with_tokens(tokens)
        try:
            self.store.save(refreshed)
        except CloudreveError:
            api.close()
            raise
        api.set_token(refreshed.access_token)
        logger.info("Token refreshed successfully for %s", refreshed.email)
        return Session(api=api, credential=refreshed, refreshed=True)

    def login(
        self,
        url: str,
        email: str,
        password: str,
        api_version: Optional[str] = None,
    ) -> Session:
        """Log in with email and password and cache the credential.

        Args:
            url: Instance URL
            email: Account email
            password: Account password
            api_version: "v3" or "v4"; detected from the server when omitted

        Returns:
            Session for the new credential
        """
        version = api_version or self.version_detector(url)
        api = self.api_factory(url, version)
        try:
            result = api.login(email, password)
            credential = Credential.from_login(result, url, api.auth_scheme)
            self.store.save(credential)
        except CloudreveError:
            api.close()
            raise
        logger.info(
            "Token saved to cache for user: %s (%s)",
            credential.display_name,
            credential.email,
        )
        return Session(api=api, credential=credential)

    def logout(self, url: Optional[str] = None, email: Optional[str] = None) -> int:
        """Forget cached credentials matching the selector."""
        return self.store.remove(url=url, email=email)
