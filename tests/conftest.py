"""Shared fixtures for tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from newsletter_importer.auth import TokenManager
from newsletter_importer.errors import ProviderFetchFailure, ProviderRelabelFailure
from newsletter_importer.models import CandidateMessage, EmailAccount, HeaderMap
from newsletter_importer.providers import ProviderAdapter
from newsletter_importer.store import NewsletterStore
from newsletter_importer.sync import SyncOrchestrator

DIGEST_TEXT = (
    "This week in tech: the stories you should read.\n"
    + "\n".join(f"https://digest.example.com/story/{i}" for i in range(7))
    + "\nYou are receiving this because you signed up. Unsubscribe at any time."
)


def make_message(
    message_id: str = "msg_001",
    from_address: str = "hello@digest.example.com",
    subject: str = "Weekly Digest #42",
    text_body: str = DIGEST_TEXT,
    html_body: str = "",
    headers: dict | None = None,
    display_name: str = "",
    date: datetime | None = None,
) -> CandidateMessage:
    return CandidateMessage(
        provider_message_id=message_id,
        from_address=from_address,
        from_display_name=display_name,
        from_header=f"{display_name} <{from_address}>" if display_name else from_address,
        subject=subject,
        text_body=text_body,
        html_body=html_body,
        headers=HeaderMap(headers or {}),
        date=date or datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def newsletter_message() -> CandidateMessage:
    return make_message(
        display_name="Example Digest",
        headers={"List-Unsubscribe": "<mailto:unsubscribe@digest.example.com>"},
    )


@pytest.fixture
def personal_message() -> CandidateMessage:
    return make_message(
        message_id="msg_ps_001",
        from_address="jane@gmail.com",
        display_name="Jane",
        subject="Let's catch up",
        text_body="Are you free for coffee later this week?",
    )


class FakeAdapter(ProviderAdapter):
    """In-memory provider used to drive the orchestrator deterministically."""

    name = "fake"

    def __init__(
        self,
        messages: list[CandidateMessage],
        queries: dict[str, list[str]] | None = None,
        failing_queries: set[str] | None = None,
        failing_fetches: set[str] | None = None,
        relabel_fails: bool = False,
    ) -> None:
        self.messages = {m.provider_message_id: m for m in messages}
        self.queries = queries or {"all": list(self.messages)}
        self.failing_queries = failing_queries or set()
        self.failing_fetches = failing_fetches or set()
        self.relabel_fails = relabel_fails
        self.searched: list[str] = []
        self.fetched_chunks: list[list[str]] = []
        self.relabeled: list[str] = []

    def default_queries(self) -> list[str]:
        return list(self.queries)

    def recent_query(self, days: int) -> str:
        return f"recent:{days}"

    def search(self, queries) -> set[str]:
        found: set[str] = set()
        for query in queries:
            self.searched.append(query)
            if query in self.failing_queries:
                continue
            found.update(self.queries.get(query, []))
        return found

    def fetch(self, message_id: str) -> CandidateMessage:
        if message_id in self.failing_fetches or message_id not in self.messages:
            raise ProviderFetchFailure(message_id, "boom")
        return self.messages[message_id]

    def fetch_chunk(self, message_ids):
        self.fetched_chunks.append(list(message_ids))
        return super().fetch_chunk(message_ids)

    def relabel(self, message_id: str) -> None:
        if self.relabel_fails:
            raise ProviderRelabelFailure(message_id, "label quota exceeded")
        self.relabeled.append(message_id)


@pytest.fixture
def store(tmp_path) -> NewsletterStore:
    with NewsletterStore(db_path=tmp_path / "newsletters.db") as s:
        yield s


@pytest.fixture
def account(store: NewsletterStore) -> EmailAccount:
    return store.add_account(
        EmailAccount(
            id=None,
            user_id=7,
            provider="gmail",
            email="reader@example.org",
            access_token="access-1",
            refresh_token="refresh-1",
            token_expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )
    )


@pytest.fixture
def make_orchestrator(store: NewsletterStore):
    """Build an orchestrator wired to a given FakeAdapter with no real sleeping."""

    def _make(adapter: FakeAdapter, **kwargs) -> SyncOrchestrator:
        sleeps: list[float] = []
        orchestrator = SyncOrchestrator(
            store,
            TokenManager(store, refreshers={}),
            adapter_factory=lambda account: adapter,
            sleep=sleeps.append,
            **kwargs,
        )
        orchestrator.sleeps = sleeps
        return orchestrator

    return _make
