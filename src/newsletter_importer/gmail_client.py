"""Gmail API adapter: candidate search, full message fetch, newsletter labelling."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone

import httplib2
from googleapiclient.errors import HttpError
from googleapiclient.http import BatchHttpRequest
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .constants import GMAIL_NEWSLETTER_LABEL, GMAIL_SEARCH_PAGE_SIZE, GMAIL_SEARCH_QUERIES
from .domains import parse_from_header
from .errors import ProviderFetchFailure, ProviderRelabelFailure, ProviderSearchFailure
from .mime import parse_date, walk_gmail_parts
from .models import CandidateMessage, EmailAccount, HeaderMap
from .providers import ProviderAdapter

logger = logging.getLogger(__name__)

# Errors a single API call can raise besides a well-formed HTTP error response
_TRANSPORT_ERRORS = (HttpError, httplib2.HttpLib2Error, OSError)


def _is_retryable_http_error(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.resp.status in (429, 500, 503)


_retry_transient = retry(
    retry=retry_if_exception(_is_retryable_http_error),
    wait=wait_exponential(multiplier=1, min=1, max=60),
    stop=stop_after_attempt(5),
    reraise=True,
)


@_retry_transient
def _execute(request):
    return request.execute()


@_retry_transient
def _execute_batch(batch: BatchHttpRequest) -> None:
    batch.execute()


def list_message_ids(
    service,
    query: str | None = None,
    max_results: int | None = GMAIL_SEARCH_PAGE_SIZE,
) -> list[str]:
    """List message IDs matching the query, handling pagination up to max_results."""
    ids: list[str] = []
    page_token: str | None = None

    while True:
        page_size = min(max_results - len(ids), 500) if max_results else 500
        kwargs: dict = {"userId": "me", "maxResults": page_size, "fields": "messages/id,nextPageToken"}
        if query:
            kwargs["q"] = query
        if page_token:
            kwargs["pageToken"] = page_token

        resp = _execute(service.users().messages().list(**kwargs))
        for msg in resp.get("messages", []):
            ids.append(msg["id"])
            if max_results and len(ids) >= max_results:
                return ids[:max_results]

        page_token = resp.get("nextPageToken")
        if not page_token:
            break

    return ids


def extract_gmail_message(response: dict) -> CandidateMessage:
    """Normalize a Gmail ``format=full`` message into a CandidateMessage."""
    msg_id = response.get("id", "")
    payload = response.get("payload")
    if not payload:
        raise ProviderFetchFailure(msg_id, "message has no payload")

    headers = HeaderMap((h.get("name", ""), h.get("value", "")) for h in payload.get("headers", []))
    from_value = headers.get("From", "") or ""
    name, address = parse_from_header(from_value)
    if not address:
        raise ProviderFetchFailure(msg_id, "message has no sender address")

    try:
        text, html = walk_gmail_parts(payload)
    except ValueError as exc:
        raise ProviderFetchFailure(msg_id, f"undecodable message body ({exc})") from exc

    received: datetime | None = None
    internal_date = response.get("internalDate")
    if internal_date:
        try:
            received = datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
        except (TypeError, ValueError):
            received = None
    if received is None:
        received = parse_date(headers.get("Date"))

    return CandidateMessage(
        provider_message_id=msg_id,
        from_address=address.lower(),
        from_display_name=name,
        from_header=from_value,
        subject=headers.get("Subject", "") or "",
        text_body=text,
        html_body=html,
        headers=headers,
        date=received,
    )


class GmailAdapter(ProviderAdapter):
    """Gmail implementation of the provider capability set."""

    name = "gmail"

    def __init__(self, service, search_page_size: int = GMAIL_SEARCH_PAGE_SIZE) -> None:
        self.service = service
        self.search_page_size = search_page_size
        self._label_id: str | None = None

    @classmethod
    def for_account(cls, account: EmailAccount) -> GmailAdapter:
        from .auth import build_gmail_service

        return cls(build_gmail_service(account))

    def default_queries(self) -> list[str]:
        return list(GMAIL_SEARCH_QUERIES)

    def recent_query(self, days: int) -> str:
        since = date.today() - timedelta(days=days)
        return f"after:{since.strftime('%Y/%m/%d')}"

    def search(self, queries: Iterable[str]) -> set[str]:
        found: set[str] = set()
        for query in queries:
            try:
                ids = list_message_ids(self.service, query=query, max_results=self.search_page_size)
            except Exception as exc:  # noqa: BLE001
                failure = ProviderSearchFailure(query, str(exc))
                logger.warning("%s", failure)
                continue
            logger.debug("Gmail query %r matched %d messages", query, len(ids))
            found.update(ids)
        return found

    def _get_request(self, message_id: str):
        return self.service.users().messages().get(userId="me", id=message_id, format="full")

    def fetch(self, message_id: str) -> CandidateMessage:
        try:
            response = _execute(self._get_request(message_id))
        except _TRANSPORT_ERRORS as exc:
            raise ProviderFetchFailure(message_id, str(exc)) from exc
        return extract_gmail_message(response)

    def fetch_chunk(self, message_ids: list[str]) -> dict[str, CandidateMessage | ProviderFetchFailure]:
        """Fetch a chunk of full messages with one BatchHttpRequest."""
        results: dict[str, CandidateMessage | ProviderFetchFailure] = {}
        if not message_ids:
            return results

        batch = self.service.new_batch_http_request()

        def _make_callback(msg_id: str):
            def _cb(request_id, response, exception):
                if exception is not None:
                    results[msg_id] = ProviderFetchFailure(msg_id, str(exception))
                    return
                try:
                    results[msg_id] = extract_gmail_message(response)
                except ProviderFetchFailure as exc:
                    results[msg_id] = exc

            return _cb

        for msg_id in message_ids:
            batch.add(self._get_request(msg_id), callback=_make_callback(msg_id))

        try:
            _execute_batch(batch)
        except _TRANSPORT_ERRORS as exc:
            for msg_id in message_ids:
                results.setdefault(msg_id, ProviderFetchFailure(msg_id, f"batch request failed: {exc}"))

        for msg_id in message_ids:
            results.setdefault(msg_id, ProviderFetchFailure(msg_id, "no response in batch"))
        return results

    def _newsletter_label_id(self) -> str:
        if self._label_id:
            return self._label_id
        resp = _execute(self.service.users().labels().list(userId="me"))
        for label in resp.get("labels", []):
            if label.get("name", "").lower() == GMAIL_NEWSLETTER_LABEL.lower():
                self._label_id = label["id"]
                return self._label_id
        created = _execute(
            self.service.users().labels().create(
                userId="me",
                body={
                    "name": GMAIL_NEWSLETTER_LABEL,
                    "labelListVisibility": "labelShow",
                    "messageListVisibility": "show",
                },
            )
        )
        self._label_id = created["id"]
        return self._label_id

    def relabel(self, message_id: str) -> None:
        try:
            label_id = self._newsletter_label_id()
            _execute(
                self.service.users().messages().modify(
                    userId="me",
                    id=message_id,
                    body={"addLabelIds": [label_id], "removeLabelIds": ["INBOX"]},
                )
            )
        except (*_TRANSPORT_ERRORS, KeyError) as exc:
            raise ProviderRelabelFailure(message_id, str(exc)) from exc
