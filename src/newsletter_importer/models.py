"""Data models for Newsletter Importer."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HeaderMap:
    """Case-insensitive, read-only view over message headers.

    Accepts a mapping or an iterable of (name, value) pairs.  When a header
    appears more than once, the first value wins.
    """

    def __init__(self, headers: Mapping[str, str] | Iterable[tuple[str, str]] | None = None) -> None:
        self._headers: dict[str, str] = {}
        if headers is None:
            return
        items = headers.items() if isinstance(headers, Mapping) else headers
        for name, value in items:
            if not name:
                continue
            self._headers.setdefault(name.strip().lower(), value if value is not None else "")

    def get(self, name: str, default: str | None = None) -> str | None:
        return self._headers.get(name.lower(), default)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._headers

    def __len__(self) -> int:
        return len(self._headers)

    def names(self) -> list[str]:
        return list(self._headers)

    def __repr__(self) -> str:
        return f"HeaderMap({self._headers!r})"


@dataclass
class EmailAccount:
    """A connected mailbox and its OAuth credentials."""

    id: int | None
    user_id: int
    provider: str  # "gmail" or "outlook"
    email: str
    access_token: str
    refresh_token: str
    token_expires_at: datetime | None = None
    last_synced_at: datetime | None = None
    sync_enabled: bool = True
    newsletter_mode: bool = False  # relabel imported messages at the provider


@dataclass
class CandidateMessage:
    """A provider message normalized for the classifier. Never persisted."""

    provider_message_id: str
    from_address: str  # Extracted email address, lowercased
    from_display_name: str = ""
    from_header: str = ""  # Full From header value
    subject: str = ""
    text_body: str = ""
    html_body: str = ""
    headers: HeaderMap = field(default_factory=HeaderMap)
    date: datetime | None = None


@dataclass(frozen=True)
class ClassificationResult:
    score: int
    confidence: str  # "low", "medium" or "high"
    reasons: tuple[str, ...] = ()


@dataclass
class ClassifiedCandidate:
    message: CandidateMessage
    result: ClassificationResult


@dataclass
class Newsletter:
    """An imported newsletter row."""

    user_id: int
    email_account_id: int
    message_id: str
    sender: str
    sender_email: str
    subject: str
    content: str
    html_content: str = ""
    received_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None


@dataclass
class PreviewSample:
    subject: str
    sender: str
    sender_email: str
    date: datetime | None
    confidence: str
    score: int


@dataclass
class DomainPreview:
    """One sender domain observed during a preview run."""

    domain: str
    sample: PreviewSample
    message_count: int = 1


@dataclass
class SyncResult:
    """Outcome of a commit sync for one account."""

    account_id: int
    candidates: int = 0
    classified: int = 0
    accepted: int = 0
    imported: int = 0
    skipped_existing: int = 0
    failed: int = 0
    relabeled: int = 0
    finished_at: datetime | None = None
