"""Sync orchestration - search, fetch in chunks, classify, then preview or import."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator

from .auth import TokenManager
from .classifier import classify, is_newsletter
from .constants import CHUNK_DELAY, CHUNK_SIZE, COMMIT_THRESHOLD, PREVIEW_THRESHOLD, RECENT_DAYS
from .domains import extract_domain
from .errors import (
    AccountNotFound,
    NewsletterImporterError,
    PersistenceFailure,
    ProviderFetchFailure,
    ProviderRelabelFailure,
)
from .models import (
    CandidateMessage,
    ClassificationResult,
    ClassifiedCandidate,
    DomainPreview,
    EmailAccount,
    Newsletter,
    SyncResult,
    utcnow,
)
from .preview import build_domain_previews
from .providers import ProviderAdapter, get_adapter
from .rules import RuleSet

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def _normalize(values: Iterable[str] | None) -> set[str] | None:
    if values is None:
        return None
    return {v.strip().lower() for v in values if v and v.strip()}


class SyncOrchestrator:
    """Drives preview and commit syncs for one account at a time."""

    def __init__(
        self,
        store,
        token_manager: TokenManager | None = None,
        adapter_factory: Callable[[EmailAccount], ProviderAdapter] = get_adapter,
        rules: RuleSet | None = None,
        chunk_size: int = CHUNK_SIZE,
        chunk_delay: float = CHUNK_DELAY,
        preview_threshold: int = PREVIEW_THRESHOLD,
        commit_threshold: int = COMMIT_THRESHOLD,
        recent_days: int = RECENT_DAYS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.store = store
        self.token_manager = token_manager or TokenManager(store)
        self.adapter_factory = adapter_factory
        self.rules = rules
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.preview_threshold = preview_threshold
        self.commit_threshold = commit_threshold
        self.recent_days = recent_days
        self.sleep = sleep

    # --- helpers ---

    def classify(self, message: CandidateMessage) -> ClassificationResult:
        return classify(message, self.rules)

    def _connect(self, account_id: int) -> tuple[EmailAccount, ProviderAdapter]:
        account = self.store.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        account = self.token_manager.ensure_fresh_token(account)
        return account, self.adapter_factory(account)

    def _candidate_ids(self, adapter: ProviderAdapter, queries: list[str]) -> list[str]:
        ids = sorted(adapter.search(queries))
        logger.info("Found %d potential newsletter messages across %d queries", len(ids), len(queries))
        return ids

    def _classified(
        self,
        adapter: ProviderAdapter,
        message_ids: list[str],
        stats: SyncResult,
        progress: ProgressCallback | None = None,
    ) -> Iterator[ClassifiedCandidate]:
        """Fetch and classify candidates chunk by chunk.

        Fetch failures are logged and counted, never raised.
        """
        total_chunks = (len(message_ids) + self.chunk_size - 1) // self.chunk_size

        for chunk_num in range(total_chunks):
            if chunk_num:
                self.sleep(self.chunk_delay)

            start = chunk_num * self.chunk_size
            chunk = message_ids[start : start + self.chunk_size]
            fetched = adapter.fetch_chunk(chunk)

            for msg_id in chunk:
                item = fetched.get(msg_id) or ProviderFetchFailure(msg_id, "missing from fetch results")
                if isinstance(item, ProviderFetchFailure):
                    stats.failed += 1
                    logger.warning("Skipping message %s: %s", msg_id, item.reason)
                    continue
                stats.classified += 1
                yield ClassifiedCandidate(message=item, result=self.classify(item))

            if progress:
                progress(chunk_num + 1, total_chunks)

    # --- preview ---

    def preview_newsletters(
        self,
        account_id: int,
        threshold: int | None = None,
        queries: list[str] | None = None,
        progress: ProgressCallback | None = None,
    ) -> list[DomainPreview]:
        """Classify candidates and group those above the threshold by sender domain.

        Nothing is written to the newsletter table.
        """
        threshold = self.preview_threshold if threshold is None else threshold
        account, adapter = self._connect(account_id)
        ids = self._candidate_ids(adapter, queries or adapter.default_queries())

        stats = SyncResult(account_id=account.id, candidates=len(ids))
        accepted = [
            c for c in self._classified(adapter, ids, stats, progress) if is_newsletter(c.result, threshold)
        ]
        previews = build_domain_previews(accepted)
        logger.info(
            "Preview for account %s: %d of %d candidates above %d, %d domains (%d fetch failures)",
            account.id,
            len(accepted),
            stats.classified,
            threshold,
            len(previews),
            stats.failed,
        )
        return previews

    # --- commit ---

    def _allowed(self, message: CandidateMessage, domains: set[str] | None, senders: set[str] | None) -> bool:
        if domains is None and senders is None:
            return True
        if domains and extract_domain(message.from_address) in domains:
            return True
        return bool(senders) and message.from_address.lower() in senders

    def _store(self, account: EmailAccount, message: CandidateMessage) -> bool:
        newsletter = Newsletter(
            user_id=account.user_id,
            email_account_id=account.id,
            message_id=message.provider_message_id,
            sender=message.from_header or message.from_address,
            sender_email=message.from_address,
            subject=message.subject,
            content=message.text_body,
            html_content=message.html_body,
            received_at=message.date or utcnow(),
        )
        return self.store.insert_newsletter(newsletter)

    def sync_newsletters(
        self,
        account_id: int,
        accepted_domains: Iterable[str] | None = None,
        accepted_senders: Iterable[str] | None = None,
        threshold: int | None = None,
        queries: list[str] | None = None,
        progress: ProgressCallback | None = None,
    ) -> SyncResult:
        """Import every candidate at or above the threshold, exactly once.

        When allow-lists are given, a candidate must also match one of them
        (sender domain or exact sender address).  ``last_synced_at`` is
        updated on completion even when nothing was imported.
        """
        threshold = self.commit_threshold if threshold is None else threshold
        domains = _normalize(accepted_domains)
        senders = _normalize(accepted_senders)

        account, adapter = self._connect(account_id)
        stats = SyncResult(account_id=account.id)

        if (domains is not None or senders is not None) and not domains and not senders:
            logger.info("Empty allow-list for account %s, nothing to import", account.id)
            stats.finished_at = self.store.mark_synced(account.id)
            return stats

        if queries is None:
            queries = adapter.default_queries()
            if domains or senders:
                queries.append(adapter.recent_query(self.recent_days))

        ids = self._candidate_ids(adapter, queries)
        stats.candidates = len(ids)

        for candidate in self._classified(adapter, ids, stats, progress):
            msg, result = candidate.message, candidate.result
            if not is_newsletter(result, threshold):
                logger.debug("Rejected %s (score %d): %s", msg.provider_message_id, result.score, result.reasons)
                continue
            if not self._allowed(msg, domains, senders):
                logger.debug("Skipping %s from non-whitelisted sender %s", msg.provider_message_id, msg.from_address)
                continue

            stats.accepted += 1
            try:
                inserted = self._store(account, msg)
            except PersistenceFailure as exc:
                stats.failed += 1
                logger.error("%s", exc)
                continue

            if not inserted:
                stats.skipped_existing += 1
                logger.debug("Newsletter already imported: %s", msg.provider_message_id)
                continue

            stats.imported += 1
            logger.info(
                "Imported newsletter %r from %s (score %d, %s confidence)",
                msg.subject,
                msg.from_address,
                result.score,
                result.confidence,
            )

            if account.newsletter_mode:
                try:
                    adapter.relabel(msg.provider_message_id)
                    stats.relabeled += 1
                except ProviderRelabelFailure as exc:
                    logger.warning("%s", exc)

        stats.finished_at = self.store.mark_synced(account.id)
        logger.info(
            "Sync for account %s: %d candidates, %d accepted, %d imported, %d already present, %d failed",
            account.id,
            stats.candidates,
            stats.accepted,
            stats.imported,
            stats.skipped_existing,
            stats.failed,
        )
        return stats

    def sync_all(self) -> dict[int, SyncResult | NewsletterImporterError]:
        """Commit-sync every account with sync enabled.

        One account failing does not stop the others; its error is returned
        in place of a result.
        """
        results: dict[int, SyncResult | NewsletterImporterError] = {}
        for account in self.store.list_accounts(enabled_only=True):
            try:
                results[account.id] = self.sync_newsletters(account.id)
            except NewsletterImporterError as exc:
                logger.error("Sync failed for account %s (%s): %s", account.id, account.email, exc)
                results[account.id] = exc
        return results
