"""Provider adapter interface shared by the Gmail and Outlook clients."""

from __future__ import annotations

import abc
import logging
from collections.abc import Iterable

from .errors import ProviderFetchFailure, UnsupportedProvider
from .models import CandidateMessage, EmailAccount

logger = logging.getLogger(__name__)


class ProviderAdapter(abc.ABC):
    """Capability set every mailbox provider implements.

    The orchestrator and classifier only ever talk to this interface, never
    to a provider SDK.
    """

    name: str = ""

    @abc.abstractmethod
    def default_queries(self) -> list[str]:
        """Provider-native queries used to discover newsletter candidates."""

    @abc.abstractmethod
    def recent_query(self, days: int) -> str:
        """A query matching everything received in the last *days* days."""

    @abc.abstractmethod
    def search(self, queries: Iterable[str]) -> set[str]:
        """Run each query and return the union of matching message ids.

        A failing query is logged and skipped; the others still run.
        """

    @abc.abstractmethod
    def fetch(self, message_id: str) -> CandidateMessage:
        """Fetch and normalize one message.  Raises ProviderFetchFailure."""

    def fetch_chunk(self, message_ids: list[str]) -> dict[str, CandidateMessage | ProviderFetchFailure]:
        """Fetch several messages, capturing per-message failures.

        Providers with a batch endpoint override this to fetch the whole
        chunk in one round trip.
        """
        results: dict[str, CandidateMessage | ProviderFetchFailure] = {}
        for msg_id in message_ids:
            try:
                results[msg_id] = self.fetch(msg_id)
            except ProviderFetchFailure as exc:
                results[msg_id] = exc
        return results

    @abc.abstractmethod
    def relabel(self, message_id: str) -> None:
        """Move or label the message as a newsletter.  Raises ProviderRelabelFailure."""


def get_adapter(account: EmailAccount) -> ProviderAdapter:
    """Return the adapter for the account's provider."""
    if account.provider == "gmail":
        from .gmail_client import GmailAdapter

        return GmailAdapter.for_account(account)
    if account.provider == "outlook":
        from .outlook_client import OutlookAdapter

        return OutlookAdapter.for_account(account)
    raise UnsupportedProvider(account.provider)
