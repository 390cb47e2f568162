"""Tests for token refresh and OAuth configuration helpers."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
import requests
from google.auth.exceptions import TransportError

from newsletter_importer import auth, constants
from newsletter_importer.auth import TokenGrant, TokenManager
from newsletter_importer.errors import OAuthConfigError, TokenRefreshFailure, UnsupportedProvider

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return NOW


class RecordingRefresher:
    def __init__(self, grant: TokenGrant | None = None, error: Exception | None = None) -> None:
        self.grant = grant or TokenGrant("access-2", NOW + timedelta(hours=1), None)
        self.error = error
        self.calls = 0

    def __call__(self, account):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.grant


def _manager(store, refresher) -> TokenManager:
    return TokenManager(store, refreshers={"gmail": refresher}, clock=_clock)


def test_fresh_token_is_left_alone(store, account):
    account.token_expires_at = NOW + timedelta(minutes=30)
    refresher = RecordingRefresher()
    _manager(store, refresher).ensure_fresh_token(account)
    assert refresher.calls == 0
    assert account.access_token == "access-1"


def test_token_inside_skew_window_is_refreshed_and_persisted(store, account):
    account.token_expires_at = NOW + timedelta(minutes=4)
    refresher = RecordingRefresher()

    refreshed = _manager(store, refresher).ensure_fresh_token(account)

    assert refresher.calls == 1
    assert refreshed.access_token == "access-2"
    saved = store.get_account(account.id)
    assert saved.access_token == "access-2"
    assert saved.token_expires_at == NOW + timedelta(hours=1)
    assert saved.refresh_token == "refresh-1"


def test_rotated_refresh_token_is_saved(store, account):
    account.token_expires_at = NOW - timedelta(minutes=1)
    refresher = RecordingRefresher(TokenGrant("access-3", NOW + timedelta(hours=1), "refresh-2"))
    _manager(store, refresher).ensure_fresh_token(account)
    assert store.get_account(account.id).refresh_token == "refresh-2"
    assert account.refresh_token == "refresh-2"


def test_missing_expiry_forces_refresh(store, account):
    account.token_expires_at = None
    refresher = RecordingRefresher()
    _manager(store, refresher).ensure_fresh_token(account)
    assert refresher.calls == 1


def test_refresh_failure_propagates_and_keeps_tokens(store, account):
    account.token_expires_at = NOW - timedelta(minutes=1)
    refresher = RecordingRefresher(error=TokenRefreshFailure(account.id, "invalid_grant"))

    with pytest.raises(TokenRefreshFailure, match="invalid_grant"):
        _manager(store, refresher).ensure_fresh_token(account)
    assert store.get_account(account.id).access_token == "access-1"


def test_missing_refresh_token(store, account):
    account.token_expires_at = NOW - timedelta(minutes=1)
    account.refresh_token = ""
    with pytest.raises(TokenRefreshFailure, match="no refresh token"):
        _manager(store, RecordingRefresher()).ensure_fresh_token(account)


def test_unknown_provider(store, account):
    account.token_expires_at = NOW - timedelta(minutes=1)
    account.provider = "yahoo"
    with pytest.raises(UnsupportedProvider):
        _manager(store, RecordingRefresher()).ensure_fresh_token(account)


def test_naive_expiry_is_treated_as_utc(store, account):
    account.token_expires_at = (NOW + timedelta(hours=2)).replace(tzinfo=None)
    assert not _manager(store, RecordingRefresher()).needs_refresh(account)


@pytest.fixture
def outlook_env(monkeypatch):
    monkeypatch.setenv("OUTLOOK_CLIENT_ID", "client-123")
    monkeypatch.setenv("OUTLOOK_CLIENT_SECRET", "s3cret")
    monkeypatch.setenv("OUTLOOK_REDIRECT_URI", "http://localhost:8080/callback")


def test_outlook_authorize_url(outlook_env):
    url = auth.build_authorize_url("outlook", state="xyz")
    parsed = urlparse(url)
    params = parse_qs(parsed.query)
    assert parsed.path.endswith("/oauth2/v2.0/authorize")
    assert params["client_id"] == ["client-123"]
    assert params["state"] == ["xyz"]
    assert "offline_access" in params["scope"][0]


def test_outlook_config_missing(monkeypatch):
    monkeypatch.delenv("OUTLOOK_CLIENT_ID", raising=False)
    monkeypatch.delenv("OUTLOOK_CLIENT_SECRET", raising=False)
    with pytest.raises(OAuthConfigError):
        auth.load_outlook_client_config()


def test_google_config_from_credentials_file(tmp_path, monkeypatch):
    path = tmp_path / "credentials.json"
    path.write_text(
        json.dumps(
            {"installed": {"client_id": "gid", "client_secret": "gsecret", "redirect_uris": ["http://localhost"]}}
        )
    )
    monkeypatch.setattr(constants, "CREDENTIALS_PATH", path)
    monkeypatch.delenv("GOOGLE_REDIRECT_URI", raising=False)

    client = auth.load_google_client_config()
    assert (client.client_id, client.client_secret, client.redirect_uri) == ("gid", "gsecret", "http://localhost")


def test_google_config_missing(tmp_path, monkeypatch):
    monkeypatch.setattr(constants, "CREDENTIALS_PATH", tmp_path / "missing.json")
    monkeypatch.delenv("GOOGLE_CLIENT_ID", raising=False)
    monkeypatch.delenv("GOOGLE_CLIENT_SECRET", raising=False)
    with pytest.raises(OAuthConfigError):
        auth.load_google_client_config()


def test_unsupported_provider_authorize_url():
    with pytest.raises(UnsupportedProvider):
        auth.build_authorize_url("yahoo")


class _TokenResponse:
    def __init__(self, status: int, payload: dict) -> None:
        self.status_code = status
        self.payload = payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}", response=self)

    def json(self):
        return self.payload


def test_refresh_outlook_token(outlook_env, monkeypatch, account):
    posted = {}

    def fake_post(url, data, timeout):
        posted.update(url=url, data=data)
        return _TokenResponse(200, {"access_token": "ms-access", "expires_in": 3600, "refresh_token": "ms-refresh"})

    monkeypatch.setattr(auth.requests, "post", fake_post)
    grant = auth.refresh_outlook_token(account)

    assert posted["data"]["grant_type"] == "refresh_token"
    assert posted["data"]["refresh_token"] == "refresh-1"
    assert grant.access_token == "ms-access"
    assert grant.refresh_token == "ms-refresh"
    assert grant.expires_at > datetime.now(timezone.utc)


def test_refresh_outlook_token_rejected(outlook_env, monkeypatch, account):
    monkeypatch.setattr(
        auth.requests, "post", lambda url, data, timeout: _TokenResponse(400, {"error": "invalid_grant"})
    )
    with pytest.raises(TokenRefreshFailure):
        auth.refresh_outlook_token(account)


@pytest.fixture
def google_env(tmp_path, monkeypatch):
    monkeypatch.setattr(constants, "CREDENTIALS_PATH", tmp_path / "credentials.json")
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "gid")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "gsecret")
    return tmp_path


def test_refresh_gmail_token_network_error(google_env, monkeypatch, account):
    def unreachable(self, request):
        raise TransportError("connection reset")

    monkeypatch.setattr(auth.Credentials, "refresh", unreachable)
    with pytest.raises(TokenRefreshFailure, match="connection reset"):
        auth.refresh_gmail_token(account)


def test_refresh_gmail_token_broken_credentials_file(google_env, account):
    (google_env / "credentials.json").write_text("{not json")
    with pytest.raises(TokenRefreshFailure, match="not valid JSON"):
        auth.refresh_gmail_token(account)
