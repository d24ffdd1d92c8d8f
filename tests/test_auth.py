"""Unit tests for SessionManager."""

from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from pycloudreve.auth import SessionManager
from pycloudreve.exceptions import (
    CloudreveAuthenticationError,
    CloudreveConfigError,
    CloudreveNetworkError,
    NeedsReauthenticationError,
    NoCachedCredentialError,
    RefreshFailedError,
    TokenStoreError,
)
from pycloudreve.models import (
    AUTH_BEARER,
    AUTH_SESSION_COOKIE,
    Credential,
    LoginResult,
    TokenPair,
)
from pycloudreve.token_store import TokenStore

NOW = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)
URL = "https://cloud.example.com"


def make_credential(**overrides):
    values = {
        "account_id": "u1",
        "email": "alice@example.com",
        "display_name": "Alice",
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "access_expires": "2025-01-15T11:00:00Z",
        "refresh_expires": "2025-02-15T10:00:00Z",
        "instance_url": URL,
    }
    values.update(overrides)
    return Credential(**values)


NEW_TOKENS = TokenPair(
    access_token="access-2",
    refresh_token="refresh-2",
    access_expires="2025-01-15T12:00:00Z",
    refresh_expires="2025-03-15T10:00:00Z",
)


@pytest.fixture
def store(tmp_path):
    return TokenStore(tmp_path / "tokens.json")


@pytest.fixture
def api():
    mock_api = Mock()
    mock_api.refresh.return_value = NEW_TOKENS
    return mock_api


@pytest.fixture
def factory(api):
    return Mock(return_value=api)


@pytest.fixture
def manager(store, factory):
    return SessionManager(store, api_factory=factory, clock=lambda: NOW)


class TestResolveSession:
    """Tests for resolve_session."""

    def test_no_cached_credential(self, manager):
        """Test that an empty cache raises NoCachedCredentialError."""
        with pytest.raises(NoCachedCredentialError):
            manager.resolve_session()

    def test_unknown_account(self, manager, store):
        """Test that an unmatched email raises NoCachedCredentialError."""
        store.save(make_credential())
        with pytest.raises(NoCachedCredentialError, match="bob@example.com"):
            manager.resolve_session(email="bob@example.com")

    def test_valid_access_token_is_used(self, manager, store, api, factory):
        """Test that a valid access token is attached without refreshing."""
        store.save(make_credential())

        session = manager.resolve_session()

        factory.assert_called_once_with(URL, "v4")
        api.set_token.assert_called_once_with("access-1")
        api.refresh.assert_not_called()
        assert session.api is api
        assert not session.refreshed

    def test_expired_access_token_is_refreshed(self, manager, store, api):
        """Test that an expired access token triggers one refresh."""
        store.save(make_credential(access_expires="2025-01-15T10:00:00Z"))

        session = manager.resolve_session()

        api.refresh.assert_called_once_with("refresh-1")
        api.set_token.assert_called_once_with("access-2")
        assert session.refreshed
        assert session.credential.access_token == "access-2"

        cached = store.load()
        assert cached.access_token == "access-2"
        assert cached.refresh_token == "refresh-2"
        assert cached.email == "alice@example.com"
        assert cached.display_name == "Alice"
        assert cached.instance_url == URL

    def test_refresh_is_idempotent(self, manager, store, api):
        """Test that a second resolve after refreshing does not refresh again."""
        store.save(make_credential(access_expires="2025-01-15T10:00:00Z"))

        manager.resolve_session(now=NOW)
        manager.resolve_session(now=NOW)

        assert api.refresh.call_count == 1

    def test_both_tokens_expired(self, manager, store, api):
        """Test that expired refresh tokens require a new login."""
        store.save(
            make_credential(
                access_expires="2025-01-15T10:00:00Z",
                refresh_expires="2025-01-14T10:00:00Z",
            )
        )

        with pytest.raises(NeedsReauthenticationError, match="alice@example.com"):
            manager.resolve_session()

        api.refresh.assert_not_called()
        api.close.assert_called_once()

    def test_refresh_failure(self, manager, store, api):
        """Test that a rejected refresh raises RefreshFailedError."""
        original = make_credential(access_expires="2025-01-15T10:00:00Z")
        store.save(original)
        api.refresh.side_effect = CloudreveAuthenticationError("invalid refresh token")

        with pytest.raises(RefreshFailedError) as exc_info:
            manager.resolve_session()

        assert isinstance(exc_info.value.cause, CloudreveAuthenticationError)
        api.set_token.assert_not_called()
        api.close.assert_called_once()
        assert store.load() == original

    def test_refresh_network_failure(self, manager, store, api):
        """Test that a network error during refresh is also a RefreshFailedError."""
        store.save(make_credential(access_expires="2025-01-15T10:00:00Z"))
        api.refresh.side_effect = CloudreveNetworkError("connection reset")

        with pytest.raises(RefreshFailedError):
            manager.resolve_session()

    def test_save_failure_after_refresh(self, manager, store, api):
        """Test that a failed cache write is reported, not ignored."""
        store.save(make_credential(access_expires="2025-01-15T10:00:00Z"))

        with patch.object(store, "save", side_effect=TokenStoreError("disk full")):
            with pytest.raises(TokenStoreError, match="disk full"):
                manager.resolve_session()

        api.set_token.assert_not_called()
        api.close.assert_called_once()

    def test_session_cookie_skips_expiry(self, manager, store, api, factory):
        """Test that V3 session cookies are used without expiry checks."""
        store.save(
            make_credential(
                access_token="cookie",
                refresh_token="",
                access_expires="",
                refresh_expires="",
                auth_scheme=AUTH_SESSION_COOKIE,
            )
        )

        session = manager.resolve_session()

        factory.assert_called_once_with(URL, "v3")
        api.set_token.assert_called_once_with("cookie")
        api.refresh.assert_not_called()
        assert not session.refreshed

    def test_explicit_token(self, manager, api, factory):
        """Test that an explicit token bypasses the cache."""
        session = manager.resolve_session(url=URL, token="override")

        factory.assert_called_once_with(URL, "v4")
        api.set_token.assert_called_once_with("override")
        assert session.credential is None

    def test_explicit_token_requires_url(self, manager):
        """Test that --token without an instance URL is rejected."""
        with pytest.raises(CloudreveConfigError):
            manager.resolve_session(token="override")


class TestLogin:
    """Tests for login and logout."""

    def test_login_saves_credential(self, store, api, factory):
        """Test that a successful login is cached."""
        api.auth_scheme = AUTH_BEARER
        api.login.return_value = LoginResult(
            account_id="u1",
            email="alice@example.com",
            display_name="Alice",
            tokens=NEW_TOKENS,
        )
        detector = Mock(return_value="v4")
        manager = SessionManager(store, api_factory=factory, version_detector=detector)

        session = manager.login(URL + "/", "alice@example.com", "secret")

        detector.assert_called_once_with(URL + "/")
        api.login.assert_called_once_with("alice@example.com", "secret")
        assert session.credential.instance_url == URL
        cached = store.load(email="alice@example.com")
        assert cached.access_token == "access-2"
        assert cached.auth_scheme == AUTH_BEARER

    def test_login_with_explicit_version_skips_detection(self, store, api, factory):
        """Test that a given API version is not detected."""
        api.auth_scheme = AUTH_SESSION_COOKIE
        api.login.return_value = LoginResult(
            account_id="7",
            email="alice@example.com",
            display_name="Alice",
            tokens=TokenPair(access_token="cookie"),
        )
        detector = Mock()
        manager = SessionManager(store, api_factory=factory, version_detector=detector)

        manager.login(URL, "alice@example.com", "secret", api_version="v3")

        detector.assert_not_called()
        factory.assert_called_once_with(URL, "v3")
        assert store.load().api_version == "v3"

    def test_login_failure_saves_nothing(self, store, api, factory):
        """Test that a rejected login leaves the cache untouched."""
        api.login.side_effect = CloudreveAuthenticationError("wrong password")
        manager = SessionManager(
            store, api_factory=factory, version_detector=Mock(return_value="v4")
        )

        with pytest.raises(CloudreveAuthenticationError):
            manager.login(URL, "alice@example.com", "bad")

        api.close.assert_called_once()
        assert store.load_all() == []

    def test_logout(self, manager, store):
        """Test that logout removes the matching credential."""
        store.save(make_credential())
        assert manager.logout(email="alice@example.com") == 1
        assert store.load_all() == []
