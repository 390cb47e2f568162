"""Error kinds raised by the import engine."""

from __future__ import annotations


class NewsletterImporterError(Exception):
    """Base class for all errors raised by this package."""


class ProviderSearchFailure(NewsletterImporterError):
    """A single provider search query failed. Non-fatal."""

    def __init__(self, query: str, reason: str) -> None:
        super().__init__(f"search failed for query {query!r}: {reason}")
        self.query = query
        self.reason = reason


class ProviderFetchFailure(NewsletterImporterError):
    """A single message could not be fetched or normalized. Non-fatal."""

    def __init__(self, message_id: str, reason: str) -> None:
        super().__init__(f"fetch failed for message {message_id}: {reason}")
        self.message_id = message_id
        self.reason = reason


class ProviderRelabelFailure(NewsletterImporterError):
    """Moving or labelling a message at the provider failed. Non-fatal."""

    def __init__(self, message_id: str, reason: str) -> None:
        super().__init__(f"relabel failed for message {message_id}: {reason}")
        self.message_id = message_id
        self.reason = reason


class TokenRefreshFailure(NewsletterImporterError):
    """OAuth token refresh failed. Fatal for the current sync call."""

    def __init__(self, account_id: int | None, reason: str) -> None:
        super().__init__(f"token refresh failed for account {account_id}: {reason}")
        self.account_id = account_id
        self.reason = reason


class PersistenceFailure(NewsletterImporterError):
    """Storing one newsletter failed. Fatal for that message only."""

    def __init__(self, message_id: str, reason: str) -> None:
        super().__init__(f"could not store message {message_id}: {reason}")
        self.message_id = message_id
        self.reason = reason


class AccountNotFound(NewsletterImporterError):
    def __init__(self, account_id: int) -> None:
        super().__init__(f"email account {account_id} not found")
        self.account_id = account_id


class UnsupportedProvider(NewsletterImporterError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"unsupported email provider: {provider!r}")
        self.provider = provider


class RuleConfigError(NewsletterImporterError):
    """The rule tables file is missing a key or holds an invalid pattern."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"invalid rule configuration {path}: {reason}")
        self.path = path
        self.reason = reason


class AccountInUse(NewsletterImporterError):
    """An account still has imported newsletters referencing it."""

    def __init__(self, account_id: int, newsletter_count: int) -> None:
        super().__init__(
            f"email account {account_id} still has {newsletter_count} imported newsletters; "
            "reassign or delete them first"
        )
        self.account_id = account_id
        self.newsletter_count = newsletter_count


class OAuthConfigError(NewsletterImporterError):
    """OAuth client id/secret for a provider are not configured."""
