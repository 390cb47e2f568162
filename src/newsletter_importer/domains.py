"""Sender address parsing and domain extraction."""

from __future__ import annotations

import re

_FROM_RE = re.compile(r"^(.*?)\s*<([^>]*)>\s*$")
_BRACKETED_RE = re.compile(r"<([^<>]*@[^<>]*)>")


def parse_from_header(from_value: str | None) -> tuple[str, str]:
    """Parse a From header into (display name, email address).

    Handles formats like:
      "John Doe <john@example.com>" -> ("John Doe", "john@example.com")
      "<john@example.com>"          -> ("", "john@example.com")
      "john@example.com"            -> ("", "john@example.com")
    """
    if not from_value:
        return ("", "")
    m = _FROM_RE.match(from_value.strip())
    if m:
        name = m.group(1).strip().strip('"').strip("'")
        return (name, m.group(2).strip())
    email = from_value.strip().strip("<>")
    return ("", email)


def extract_domain(value: str | None) -> str | None:
    """Return the lowercase domain of a From header or bare address.

    The address inside angle brackets is preferred when present.  The domain
    is whatever follows the last "@".  Returns None when there is no "@".
    """
    if not value:
        return None
    bracketed = _BRACKETED_RE.findall(value)
    candidate = bracketed[-1] if bracketed else value
    if "@" not in candidate:
        return None
    domain = candidate.rsplit("@", 1)[1]
    domain = domain.strip().strip(">").strip().strip('"').strip("'").rstrip(".").lower()
    return domain or None


def local_part(address: str | None) -> str:
    """Return the part of an address before the last "@" (lowercased)."""
    if not address or "@" not in address:
        return ""
    return address.rsplit("@", 1)[0].strip().lower()


def domain_matches(domain: str | None, known: str) -> bool:
    """True when *domain* equals *known* or is a subdomain of it."""
    if not domain:
        return False
    return domain == known or domain.endswith("." + known)
