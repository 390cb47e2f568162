"""OAuth helpers and the TokenManager that keeps account credentials fresh."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow, InstalledAppFlow
from googleapiclient.discovery import Resource, build

from . import constants
from .errors import OAuthConfigError, TokenRefreshFailure, UnsupportedProvider
from .models import EmailAccount, utcnow

logger = logging.getLogger(__name__)


@dataclass
class OAuthClientConfig:
    client_id: str
    client_secret: str
    redirect_uri: str = ""


@dataclass
class TokenGrant:
    """Tokens returned by a code exchange or a refresh."""

    access_token: str
    expires_at: datetime | None
    refresh_token: str | None = None


def load_google_client_config() -> OAuthClientConfig:
    """Read the Google OAuth client from CREDENTIALS_PATH or GOOGLE_* variables."""
    if constants.CREDENTIALS_PATH.exists():
        try:
            data = json.loads(constants.CREDENTIALS_PATH.read_text())
        except json.JSONDecodeError as exc:
            raise OAuthConfigError(f"Credentials file {constants.CREDENTIALS_PATH} is not valid JSON: {exc}") from exc
        section = data.get("installed") or data.get("web") or {}
        redirect_uris = section.get("redirect_uris") or [""]
        return OAuthClientConfig(
            client_id=section.get("client_id", ""),
            client_secret=section.get("client_secret", ""),
            redirect_uri=os.environ.get("GOOGLE_REDIRECT_URI", redirect_uris[0]),
        )
    client_id = os.environ.get("GOOGLE_CLIENT_ID")
    client_secret = os.environ.get("GOOGLE_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise OAuthConfigError(
            f"Credentials file not found at {constants.CREDENTIALS_PATH}.\n"
            "Download your OAuth client credentials from the Google Cloud Console "
            "and save them there, or set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET."
        )
    return OAuthClientConfig(client_id, client_secret, os.environ.get("GOOGLE_REDIRECT_URI", ""))


def load_outlook_client_config() -> OAuthClientConfig:
    """Read the Microsoft identity client from OUTLOOK_* variables."""
    client_id = os.environ.get("OUTLOOK_CLIENT_ID")
    client_secret = os.environ.get("OUTLOOK_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise OAuthConfigError(
            "Outlook OAuth is not configured. Set OUTLOOK_CLIENT_ID, OUTLOOK_CLIENT_SECRET "
            f"and OUTLOOK_REDIRECT_URI (for example in {constants.ENV_PATH})."
        )
    return OAuthClientConfig(client_id, client_secret, os.environ.get("OUTLOOK_REDIRECT_URI", ""))


def _google_client_dict(client: OAuthClientConfig) -> dict:
    return {
        "installed": {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "auth_uri": constants.GOOGLE_AUTH_URL,
            "token_uri": constants.GOOGLE_TOKEN_URL,
            "redirect_uris": [client.redirect_uri] if client.redirect_uri else [],
        }
    }


def _microsoft_url(endpoint: str) -> str:
    return f"{constants.MICROSOFT_LOGIN_URL}/{constants.OUTLOOK_TENANT}/oauth2/v2.0/{endpoint}"


def _aware(value: datetime | None) -> datetime | None:
    # google-auth reports expiry as naive UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def build_authorize_url(provider: str, state: str | None = None) -> str:
    """Return the provider consent URL for the authorization-code flow."""
    if provider == constants.PROVIDER_GMAIL:
        client = load_google_client_config()
        flow = Flow.from_client_config(
            _google_client_dict(client), scopes=constants.GMAIL_SCOPES, redirect_uri=client.redirect_uri
        )
        url, _state = flow.authorization_url(access_type="offline", prompt="consent", state=state)
        return url
    if provider == constants.PROVIDER_OUTLOOK:
        client = load_outlook_client_config()
        params = {
            "client_id": client.client_id,
            "response_type": "code",
            "redirect_uri": client.redirect_uri,
            "response_mode": "query",
            "scope": " ".join(constants.OUTLOOK_SCOPES),
        }
        if state:
            params["state"] = state
        return f"{_microsoft_url('authorize')}?{urlencode(params)}"
    raise UnsupportedProvider(provider)


def exchange_code(provider: str, code: str) -> TokenGrant:
    """Exchange an authorization code for access and refresh tokens."""
    if provider == constants.PROVIDER_GMAIL:
        client = load_google_client_config()
        flow = Flow.from_client_config(
            _google_client_dict(client), scopes=constants.GMAIL_SCOPES, redirect_uri=client.redirect_uri
        )
        flow.fetch_token(code=code)
        creds = flow.credentials
        return TokenGrant(creds.token, _aware(creds.expiry), creds.refresh_token)
    if provider == constants.PROVIDER_OUTLOOK:
        client = load_outlook_client_config()
        resp = requests.post(
            _microsoft_url("token"),
            data={
                "client_id": client.client_id,
                "client_secret": client.client_secret,
                "code": code,
                "redirect_uri": client.redirect_uri,
                "grant_type": "authorization_code",
                "scope": " ".join(constants.OUTLOOK_SCOPES),
            },
            timeout=constants.HTTP_TIMEOUT,
        )
        resp.raise_for_status()
        return _grant_from_token_response(resp.json())
    raise UnsupportedProvider(provider)


def run_gmail_local_flow() -> TokenGrant:
    """Run the installed-app browser flow against CREDENTIALS_PATH."""
    client = load_google_client_config()
    flow = InstalledAppFlow.from_client_config(_google_client_dict(client), constants.GMAIL_SCOPES)
    creds = flow.run_local_server(port=0, access_type="offline", prompt="consent")
    return TokenGrant(creds.token, _aware(creds.expiry), creds.refresh_token)


def _grant_from_token_response(tokens: dict) -> TokenGrant:
    expires_in = tokens.get("expires_in")
    expires_at = utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
    return TokenGrant(tokens["access_token"], expires_at, tokens.get("refresh_token"))


def _gmail_credentials(account: EmailAccount, client: OAuthClientConfig) -> Credentials:
    expiry = account.token_expires_at
    if expiry is not None and expiry.tzinfo is not None:
        expiry = expiry.astimezone(timezone.utc).replace(tzinfo=None)
    return Credentials(
        token=account.access_token,
        refresh_token=account.refresh_token,
        token_uri=constants.GOOGLE_TOKEN_URL,
        client_id=client.client_id,
        client_secret=client.client_secret,
        scopes=constants.GMAIL_SCOPES,
        expiry=expiry,
    )


def build_gmail_service(account: EmailAccount) -> Resource:
    """Return a Gmail API service bound to the account's current access token."""
    creds = _gmail_credentials(account, load_google_client_config())
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def refresh_gmail_token(account: EmailAccount) -> TokenGrant:
    try:
        creds = _gmail_credentials(account, load_google_client_config())
        creds.refresh(Request())
    except (GoogleAuthError, OAuthConfigError, ValueError) as exc:
        raise TokenRefreshFailure(account.id, str(exc)) from exc
    return TokenGrant(creds.token, _aware(creds.expiry), creds.refresh_token)


def refresh_outlook_token(account: EmailAccount) -> TokenGrant:
    try:
        client = load_outlook_client_config()
        resp = requests.post(
            _microsoft_url("token"),
            data={
                "client_id": client.client_id,
                "client_secret": client.client_secret,
                "refresh_token": account.refresh_token,
                "grant_type": "refresh_token",
                "scope": " ".join(constants.OUTLOOK_SCOPES),
            },
            timeout=constants.HTTP_TIMEOUT,
        )
        resp.raise_for_status()
        return _grant_from_token_response(resp.json())
    except (requests.RequestException, ValueError, KeyError, OAuthConfigError) as exc:
        raise TokenRefreshFailure(account.id, str(exc)) from exc


def fetch_account_email(provider: str, access_token: str) -> str:
    """Return the mailbox address the access token belongs to."""
    if provider == constants.PROVIDER_GMAIL:
        service = build("gmail", "v1", credentials=Credentials(token=access_token), cache_discovery=False)
        profile = service.users().getProfile(userId="me").execute()
        return profile["emailAddress"]
    if provider == constants.PROVIDER_OUTLOOK:
        resp = requests.get(
            f"{constants.GRAPH_URL}/me",
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=constants.HTTP_TIMEOUT,
        )
        resp.raise_for_status()
        user = resp.json()
        return user.get("mail") or user["userPrincipalName"]
    raise UnsupportedProvider(provider)


Refresher = Callable[[EmailAccount], TokenGrant]

DEFAULT_REFRESHERS: dict[str, Refresher] = {
    constants.PROVIDER_GMAIL: refresh_gmail_token,
    constants.PROVIDER_OUTLOOK: refresh_outlook_token,
}


class TokenManager:
    """Owns the access/refresh token lifecycle of every account.

    Sync code calls ensure_fresh_token() before talking to a provider and
    never writes credentials itself.
    """

    def __init__(
        self,
        store,
        refreshers: dict[str, Refresher] | None = None,
        skew: timedelta = timedelta(minutes=constants.TOKEN_REFRESH_SKEW_MINUTES),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.refreshers = dict(DEFAULT_REFRESHERS if refreshers is None else refreshers)
        self.skew = skew
        self.clock = clock

    def needs_refresh(self, account: EmailAccount) -> bool:
        if not account.access_token or account.token_expires_at is None:
            return True
        return _aware(account.token_expires_at) <= self.clock() + self.skew

    def ensure_fresh_token(self, account: EmailAccount) -> EmailAccount:
        """Refresh and persist the account's token when expired or about to expire.

        Raises TokenRefreshFailure when the provider rejects the refresh.
        """
        if not self.needs_refresh(account):
            return account

        refresher = self.refreshers.get(account.provider)
        if refresher is None:
            raise UnsupportedProvider(account.provider)
        if not account.refresh_token:
            raise TokenRefreshFailure(account.id, "account has no refresh token")

        logger.info("Refreshing %s access token for account %s", account.provider, account.id)
        grant = refresher(account)

        self.store.update_tokens(account.id, grant.access_token, grant.expires_at, grant.refresh_token)
        account.access_token = grant.access_token
        account.token_expires_at = grant.expires_at
        if grant.refresh_token:
            account.refresh_token = grant.refresh_token
        return account
