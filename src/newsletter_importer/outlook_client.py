"""Microsoft Graph adapter for Outlook / Microsoft 365 mailboxes."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .constants import (
    GRAPH_BATCH_LIMIT,
    GRAPH_SEARCH_PAGE_SIZE,
    GRAPH_URL,
    HTTP_TIMEOUT,
    OUTLOOK_NEWSLETTER_FOLDER,
    OUTLOOK_SEARCH_FILTERS,
)
from .errors import ProviderFetchFailure, ProviderRelabelFailure, ProviderSearchFailure
from .mime import html_to_text, parse_date
from .models import CandidateMessage, EmailAccount, HeaderMap
from .providers import ProviderAdapter

logger = logging.getLogger(__name__)

MESSAGE_FIELDS = "id,subject,from,body,receivedDateTime,internetMessageHeaders"


def _is_retryable_http_error(exc: BaseException) -> bool:
    return (
        isinstance(exc, requests.HTTPError)
        and exc.response is not None
        and exc.response.status_code in (429, 500, 503)
    )


def extract_graph_message(message: dict) -> CandidateMessage:
    """Normalize a Graph message resource into a CandidateMessage."""
    msg_id = message.get("id", "")
    sender = (message.get("from") or {}).get("emailAddress") or {}
    address = (sender.get("address") or "").strip()
    if not address:
        raise ProviderFetchFailure(msg_id, "message has no sender address")
    name = (sender.get("name") or "").strip()

    body = message.get("body") or {}
    content = body.get("content") or ""
    if (body.get("contentType") or "").lower() == "html":
        html, text = content, html_to_text(content)
    else:
        html, text = "", content

    headers = HeaderMap(
        (h.get("name", ""), h.get("value", "")) for h in message.get("internetMessageHeaders") or []
    )

    return CandidateMessage(
        provider_message_id=msg_id,
        from_address=address.lower(),
        from_display_name=name,
        from_header=f"{name} <{address}>" if name else address,
        subject=message.get("subject") or "",
        text_body=text,
        html_body=html,
        headers=headers,
        date=parse_date(message.get("receivedDateTime")),
    )


class OutlookAdapter(ProviderAdapter):
    """Outlook implementation of the provider capability set, over Graph REST."""

    name = "outlook"

    def __init__(
        self,
        session: requests.Session,
        base_url: str = GRAPH_URL,
        search_page_size: int = GRAPH_SEARCH_PAGE_SIZE,
    ) -> None:
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.search_page_size = search_page_size
        self._folder_id: str | None = None

    @classmethod
    def for_account(cls, account: EmailAccount) -> OutlookAdapter:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {account.access_token}",
                "Accept": "application/json",
            }
        )
        return cls(session)

    @retry(
        retry=retry_if_exception(_is_retryable_http_error),
        wait=wait_exponential(multiplier=1, min=1, max=60),
        stop=stop_after_attempt(5),
        reraise=True,
    )
    def _request(self, method: str, url: str, **kwargs) -> dict:
        if not url.startswith("http"):
            url = f"{self.base_url}{url}"
        resp = self.session.request(method, url, timeout=HTTP_TIMEOUT, **kwargs)
        resp.raise_for_status()
        if not resp.content:
            return {}
        return resp.json()

    def default_queries(self) -> list[str]:
        return list(OUTLOOK_SEARCH_FILTERS)

    def recent_query(self, days: int) -> str:
        since = datetime.now(timezone.utc) - timedelta(days=days)
        return f"receivedDateTime ge {since.strftime('%Y-%m-%dT%H:%M:%SZ')}"

    def _list_ids(self, odata_filter: str) -> list[str]:
        ids: list[str] = []
        url = "/me/messages"
        params: dict | None = {
            "$filter": odata_filter,
            "$top": min(self.search_page_size, 1000),
            "$select": "id",
        }
        while url:
            resp = self._request("GET", url, params=params)
            for msg in resp.get("value", []):
                ids.append(msg["id"])
                if len(ids) >= self.search_page_size:
                    return ids
            url = resp.get("@odata.nextLink")
            params = None  # nextLink already carries the query
        return ids

    def search(self, queries: Iterable[str]) -> set[str]:
        found: set[str] = set()
        for query in queries:
            try:
                ids = self._list_ids(query)
            except (requests.RequestException, ValueError, KeyError) as exc:
                failure = ProviderSearchFailure(query, str(exc))
                logger.warning("%s", failure)
                continue
            logger.debug("Graph filter %r matched %d messages", query, len(ids))
            found.update(ids)
        return found

    def fetch(self, message_id: str) -> CandidateMessage:
        try:
            message = self._request("GET", f"/me/messages/{message_id}", params={"$select": MESSAGE_FIELDS})
        except (requests.RequestException, ValueError) as exc:
            raise ProviderFetchFailure(message_id, str(exc)) from exc
        return extract_graph_message(message)

    def fetch_chunk(self, message_ids: list[str]) -> dict[str, CandidateMessage | ProviderFetchFailure]:
        """Fetch messages through Graph JSON batching, GRAPH_BATCH_LIMIT at a time."""
        results: dict[str, CandidateMessage | ProviderFetchFailure] = {}

        for start in range(0, len(message_ids), GRAPH_BATCH_LIMIT):
            chunk = message_ids[start : start + GRAPH_BATCH_LIMIT]
            body = {
                "requests": [
                    {
                        "id": str(idx),
                        "method": "GET",
                        "url": f"/me/messages/{msg_id}?$select={MESSAGE_FIELDS}",
                    }
                    for idx, msg_id in enumerate(chunk)
                ]
            }
            try:
                resp = self._request("POST", "/$batch", json=body)
            except (requests.RequestException, ValueError) as exc:
                for msg_id in chunk:
                    results[msg_id] = ProviderFetchFailure(msg_id, f"batch request failed: {exc}")
                continue

            for item in resp.get("responses", []):
                try:
                    msg_id = chunk[int(item.get("id"))]
                except (TypeError, ValueError, IndexError):
                    logger.warning("Ignoring unexpected Graph batch response id %r", item.get("id"))
                    continue
                status = item.get("status", 0)
                if status >= 400:
                    error = (item.get("body") or {}).get("error") or {}
                    reason = error.get("message") or f"HTTP {status}"
                    results[msg_id] = ProviderFetchFailure(msg_id, reason)
                    continue
                try:
                    results[msg_id] = extract_graph_message(item.get("body") or {})
                except ProviderFetchFailure as exc:
                    results[msg_id] = exc

            for msg_id in chunk:
                results.setdefault(msg_id, ProviderFetchFailure(msg_id, "no response in batch"))

        return results

    def _newsletter_folder_id(self) -> str:
        if self._folder_id:
            return self._folder_id
        resp = self._request(
            "GET",
            "/me/mailFolders",
            params={"$filter": f"displayName eq '{OUTLOOK_NEWSLETTER_FOLDER}'"},
        )
        folders = resp.get("value", [])
        if folders:
            self._folder_id = folders[0]["id"]
        else:
            created = self._request("POST", "/me/mailFolders", json={"displayName": OUTLOOK_NEWSLETTER_FOLDER})
            self._folder_id = created["id"]
        return self._folder_id

    def relabel(self, message_id: str) -> None:
        try:
            folder_id = self._newsletter_folder_id()
            self._request("POST", f"/me/messages/{message_id}/move", json={"destinationId": folder_id})
        except (requests.RequestException, ValueError, KeyError) as exc:
            raise ProviderRelabelFailure(message_id, str(exc)) from exc
