"""Tests for the Gmail adapter, using an in-memory stand-in for the API service."""

from __future__ import annotations

import base64
from datetime import datetime, timezone

import httplib2
import pytest

from newsletter_importer.errors import ProviderFetchFailure, ProviderRelabelFailure
from newsletter_importer.gmail_client import GmailAdapter, extract_gmail_message, list_message_ids


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_message(msg_id: str, sender: str = "Example Digest <hello@digest.example.com>") -> dict:
    return {
        "id": msg_id,
        "internalDate": "1705309200000",
        "labelIds": ["INBOX", "CATEGORY_UPDATES"],
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "From", "value": sender},
                {"name": "Subject", "value": "Weekly Digest #42"},
                {"name": "list-unsubscribe", "value": "<mailto:u@digest.example.com>"},
            ],
            "body": {"size": 0},
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "body": {"size": 0},
                    "parts": [
                        {"mimeType": "text/plain", "body": {"data": _b64("Plain body. Unsubscribe any time.")}},
                        {"mimeType": "text/html", "body": {"data": _b64("<p>HTML body</p>")}},
                    ],
                },
                {"mimeType": "application/pdf", "filename": "a.pdf", "body": {"attachmentId": "x"}},
            ],
        },
    }


class FakeRequest:
    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error

    def execute(self):
        if self.error is not None:
            raise self.error
        return self.result


class FakeBatch:
    def __init__(self) -> None:
        self.requests = []

    def add(self, request, callback):
        self.requests.append((request, callback))

    def execute(self):
        for idx, (request, callback) in enumerate(self.requests):
            try:
                response = request.execute()
            except Exception as exc:  # noqa: BLE001
                callback(str(idx), None, exc)
            else:
                callback(str(idx), response, None)


class FakeMessages:
    def __init__(self, service: FakeService) -> None:
        self.service = service

    def list(self, **kwargs):
        self.service.list_calls.append(kwargs)
        query = kwargs.get("q")
        if query in self.service.failing_queries:
            return FakeRequest(error=RuntimeError("invalid query"))
        ids = self.service.query_results.get(query, [])
        token = kwargs.get("pageToken")
        page = ids[int(token) :] if token else ids
        page = page[: min(kwargs["maxResults"], self.service.page_cap)]
        resp = {"messages": [{"id": i} for i in page]}
        consumed = (int(token) if token else 0) + len(page)
        if consumed < len(ids):
            resp["nextPageToken"] = str(consumed)
        return FakeRequest(resp)

    def get(self, userId, id, format):
        if id in self.service.messages:
            found = self.service.messages[id]
            if isinstance(found, Exception):
                return FakeRequest(error=found)
            return FakeRequest(found)
        return FakeRequest(error=RuntimeError("404 not found"))

    def modify(self, userId, id, body):
        if self.service.modify_error is not None:
            return FakeRequest(error=self.service.modify_error)
        self.service.modified.append((id, body))
        return FakeRequest({"id": id})


class FakeLabels:
    def __init__(self, service: FakeService) -> None:
        self.service = service

    def list(self, userId):
        return FakeRequest({"labels": list(self.service.labels)})

    def create(self, userId, body):
        label = {"id": "Label_99", "name": body["name"]}
        self.service.labels.append(label)
        self.service.created_labels.append(body["name"])
        return FakeRequest(label)


class FakeUsers:
    def __init__(self, service: FakeService) -> None:
        self.service = service

    def messages(self):
        return FakeMessages(self.service)

    def labels(self):
        return FakeLabels(self.service)


class FakeService:
    def __init__(self, messages=None, query_results=None, failing_queries=None, labels=None) -> None:
        self.messages = messages or {}
        self.query_results = query_results or {}
        self.failing_queries = failing_queries or set()
        self.labels = labels or [{"id": "INBOX", "name": "INBOX"}]
        self.page_cap = 3
        self.list_calls: list[dict] = []
        self.modified: list = []
        self.created_labels: list[str] = []
        self.modify_error: Exception | None = None

    def users(self):
        return FakeUsers(self)

    def new_batch_http_request(self):
        return FakeBatch()


def test_extract_gmail_message_walks_nested_parts():
    msg = extract_gmail_message(gmail_message("m1"))
    assert msg.provider_message_id == "m1"
    assert msg.from_address == "hello@digest.example.com"
    assert msg.from_display_name == "Example Digest"
    assert msg.subject == "Weekly Digest #42"
    assert msg.text_body == "Plain body. Unsubscribe any time."
    assert msg.html_body == "<p>HTML body</p>"
    assert msg.headers.get("List-Unsubscribe") == "<mailto:u@digest.example.com>"
    assert msg.date == datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


def test_extract_gmail_message_single_part_body():
    raw = gmail_message("m2")
    raw["payload"] = {
        "mimeType": "text/html",
        "headers": [{"name": "From", "value": "news@example.com"}],
        "body": {"data": _b64("<b>only html</b>")},
    }
    msg = extract_gmail_message(raw)
    assert msg.html_body == "<b>only html</b>"
    assert msg.text_body == ""
    assert msg.subject == ""


def test_extract_gmail_message_requires_payload_and_sender():
    with pytest.raises(ProviderFetchFailure):
        extract_gmail_message({"id": "m3"})
    raw = gmail_message("m4")
    raw["payload"]["headers"] = []
    with pytest.raises(ProviderFetchFailure, match="no sender"):
        extract_gmail_message(raw)


def test_list_message_ids_paginates_up_to_limit():
    service = FakeService(query_results={"q": [f"id{i}" for i in range(7)]})
    assert list_message_ids(service, query="q", max_results=5) == [f"id{i}" for i in range(5)]
    assert service.list_calls[0]["q"] == "q"
    assert service.list_calls[1]["pageToken"] == "3"
    assert service.list_calls[1]["maxResults"] == 2


def test_list_message_ids_follows_page_tokens():
    service = FakeService(query_results={"q": [f"id{i}" for i in range(7)]})
    ids = list_message_ids(service, query="q", max_results=None)
    assert ids == [f"id{i}" for i in range(7)]
    assert len(service.list_calls) == 3


def test_search_unions_and_skips_failed_queries():
    service = FakeService(
        query_results={"a": ["1", "2"], "b": ["2", "3"]},
        failing_queries={"broken"},
    )
    adapter = GmailAdapter(service)
    assert adapter.search(["a", "broken", "b"]) == {"1", "2", "3"}


def test_fetch_chunk_isolates_failures():
    service = FakeService(messages={"m1": gmail_message("m1"), "m2": gmail_message("m2", sender="")})
    adapter = GmailAdapter(service)

    results = adapter.fetch_chunk(["m1", "m2", "missing"])

    assert results["m1"].subject == "Weekly Digest #42"
    assert isinstance(results["m2"], ProviderFetchFailure)
    assert isinstance(results["missing"], ProviderFetchFailure)


def test_fetch_single_message():
    adapter = GmailAdapter(FakeService(messages={"m1": gmail_message("m1")}))
    assert adapter.fetch("m1").from_address == "hello@digest.example.com"


def test_relabel_creates_label_once():
    service = FakeService()
    adapter = GmailAdapter(service)

    adapter.relabel("m1")
    adapter.relabel("m2")

    assert service.created_labels == ["Newsletters"]
    assert service.modified == [
        ("m1", {"addLabelIds": ["Label_99"], "removeLabelIds": ["INBOX"]}),
        ("m2", {"addLabelIds": ["Label_99"], "removeLabelIds": ["INBOX"]}),
    ]


def test_relabel_reuses_existing_label():
    service = FakeService(labels=[{"id": "Label_7", "name": "newsletters"}])
    GmailAdapter(service).relabel("m1")
    assert service.created_labels == []
    assert service.modified[0][1]["addLabelIds"] == ["Label_7"]


def test_relabel_failure_is_wrapped():
    service = FakeService(labels=[{"name": "Newsletters"}])  # no id
    with pytest.raises(ProviderRelabelFailure):
        GmailAdapter(service).relabel("m1")


def test_recent_query_format():
    assert GmailAdapter(FakeService()).recent_query(30).startswith("after:")


def _undecodable(msg_id: str) -> dict:
    raw = gmail_message(msg_id)
    raw["payload"]["parts"][0]["parts"][0]["body"]["data"] = "A"
    return raw


def test_fetch_chunk_isolates_undecodable_body():
    service = FakeService(messages={"ok": gmail_message("ok"), "bad": _undecodable("bad")})

    results = GmailAdapter(service).fetch_chunk(["ok", "bad"])

    assert results["ok"].subject == "Weekly Digest #42"
    assert isinstance(results["bad"], ProviderFetchFailure)
    assert "undecodable" in results["bad"].reason


def test_fetch_wraps_undecodable_body():
    adapter = GmailAdapter(FakeService(messages={"bad": _undecodable("bad")}))
    with pytest.raises(ProviderFetchFailure):
        adapter.fetch("bad")


def test_fetch_wraps_socket_timeout():
    adapter = GmailAdapter(FakeService(messages={"m1": TimeoutError("timed out")}))
    with pytest.raises(ProviderFetchFailure, match="timed out"):
        adapter.fetch("m1")


class UnreachableBatch(FakeBatch):
    def execute(self):
        raise httplib2.ServerNotFoundError("Unable to find the server at gmail.googleapis.com")


def test_fetch_chunk_transport_failure_marks_chunk_failed():
    service = FakeService(messages={"m1": gmail_message("m1"), "m2": gmail_message("m2")})
    service.new_batch_http_request = UnreachableBatch

    results = GmailAdapter(service).fetch_chunk(["m1", "m2"])

    assert set(results) == {"m1", "m2"}
    assert all(isinstance(r, ProviderFetchFailure) for r in results.values())


def test_relabel_wraps_connection_error():
    service = FakeService()
    service.modify_error = ConnectionResetError("connection reset by peer")
    with pytest.raises(ProviderRelabelFailure, match="connection reset"):
        GmailAdapter(service).relabel("m1")
