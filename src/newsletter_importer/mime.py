"""Helpers that turn provider payloads and raw RFC 822 bytes into CandidateMessages."""

from __future__ import annotations

import base64
import email
import html as html_lib
import re
from email import policy
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone

from .domains import parse_from_header
from .models import CandidateMessage, HeaderMap

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_RE = re.compile(r"<(script|style)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_WS_RE = re.compile(r"[ \t\r\f\v]+")


def decode_base64url(data: str) -> str:
    """Decode a Gmail URL-safe base64 body (padding is optional)."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def walk_gmail_parts(part: dict) -> tuple[str, str]:
    """Collect (text, html) bodies from a nested Gmail message payload."""
    text_chunks: list[str] = []
    html_chunks: list[str] = []

    stack = [part]
    while stack:
        node = stack.pop(0)
        data = (node.get("body") or {}).get("data")
        mime_type = node.get("mimeType", "")
        if data:
            if mime_type == "text/plain":
                text_chunks.append(decode_base64url(data))
            elif mime_type == "text/html":
                html_chunks.append(decode_base64url(data))
        stack[0:0] = node.get("parts") or []

    return ("".join(text_chunks), "".join(html_chunks))


def html_to_text(markup: str) -> str:
    """Very small HTML-to-text conversion used when a provider only returns HTML."""
    if not markup:
        return ""
    stripped = _BLOCK_RE.sub(" ", markup)
    stripped = _TAG_RE.sub(" ", stripped)
    stripped = html_lib.unescape(stripped)
    lines = (_WS_RE.sub(" ", line).strip() for line in stripped.splitlines())
    return "\n".join(line for line in lines if line)


def parse_date(value: str | None) -> datetime | None:
    """Parse an RFC 2822 or ISO 8601 date into an aware datetime."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def candidate_from_bytes(raw: bytes, message_id: str | None = None) -> CandidateMessage:
    """Build a CandidateMessage from a raw RFC 822 message (e.g. an .eml file)."""
    msg = email.message_from_bytes(raw, policy=policy.default)

    text_chunks: list[str] = []
    html_chunks: list[str] = []
    for part in msg.walk():
        if part.is_multipart() or part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type not in ("text/plain", "text/html"):
            continue
        try:
            content = part.get_content()
        except (LookupError, UnicodeDecodeError):
            payload = part.get_payload(decode=True) or b""
            content = payload.decode("utf-8", errors="replace")
        (text_chunks if content_type == "text/plain" else html_chunks).append(content)

    from_header = str(msg.get("From", ""))
    name, address = parse_from_header(from_header)

    return CandidateMessage(
        provider_message_id=message_id or str(msg.get("Message-ID", "")).strip("<>"),
        from_address=address.lower(),
        from_display_name=name,
        from_header=from_header,
        subject=str(msg.get("Subject", "")),
        text_body="".join(text_chunks),
        html_body="".join(html_chunks),
        headers=HeaderMap((k, str(v)) for k, v in msg.items()),
        date=parse_date(msg.get("Date")),
    )
