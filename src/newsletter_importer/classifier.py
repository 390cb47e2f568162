"""Scoring and classification of candidate messages."""

from __future__ import annotations

import logging
import re

from .constants import CONFIDENCE_HIGH, CONFIDENCE_MEDIUM
from .domains import domain_matches, extract_domain, local_part
from .models import CandidateMessage, ClassificationResult
from .rules import RuleSet, default_rules

logger = logging.getLogger(__name__)

DISQUALIFIED = "disqualified"

_URL_RE = re.compile(r"https?://[^\s]+", re.IGNORECASE)
_ANCHOR_RE = re.compile(r"<a\s+[^>]*href", re.IGNORECASE)


def confidence_for(score: int) -> str:
    """Map a score onto a confidence band."""
    if score >= CONFIDENCE_HIGH:
        return "high"
    if score >= CONFIDENCE_MEDIUM:
        return "medium"
    return "low"


def is_newsletter(result: ClassificationResult, threshold: int) -> bool:
    return result.score >= threshold


def _any(patterns, *texts: str) -> bool:
    return any(p.search(t) for p in patterns for t in texts if t)


def _count_links(text: str, html: str) -> int:
    return max(len(_URL_RE.findall(text)), len(_ANCHOR_RE.findall(html)))


def _score(message: CandidateMessage, rules: RuleSet) -> ClassificationResult:
    weights = rules.weights
    limits = rules.limits

    text = (message.text_body or "").lower()
    html = (message.html_body or "").lower()
    subject = (message.subject or "").lower()
    sender = (message.from_address or "").lower()
    domain = extract_domain(sender)
    headers = message.headers

    if _any(rules.non_newsletter, subject, text):
        return ClassificationResult(score=0, confidence="low", reasons=(DISQUALIFIED,))

    score = 0
    reasons: list[str] = []

    if any(domain_matches(domain, d) for d in rules.modern_platforms):
        score += weights["modern_platform"]
        reasons.append("Modern newsletter platform detected")

    if _any(rules.subject_numbering, subject):
        score += weights["subject_numbering"]
        reasons.append("Newsletter subject pattern detected")

    if local_part(sender) in rules.broadcast_senders:
        score += weights["broadcast_sender"]
        reasons.append("Newsletter sender pattern")

    if _any(rules.strong_indicators, text, html, subject):
        score += weights["strong_indicator"]
        reasons.append("Contains strong newsletter indicator")

    if headers.get("List-Unsubscribe"):
        score += weights["list_unsubscribe"]
        reasons.append("Has List-Unsubscribe header")

    header_points = sum(weights["secondary_header"] for h in rules.secondary_headers if headers.get(h))
    if header_points > 0:
        header_points = min(header_points, weights["secondary_header_cap"])
        score += header_points
        reasons.append(f"Newsletter headers detected (+{header_points} points)")

    if any(domain_matches(domain, d) for d in rules.bulk_services):
        score += weights["bulk_service_domain"]
        reasons.append("Sent from known newsletter service")

    structure_points = sum(
        weights["structure"] for _label, pattern in rules.structure if _any((pattern,), html, text)
    )
    if structure_points > 0:
        structure_points = min(structure_points, weights["structure_cap"])
        score += structure_points
        reasons.append(f"Newsletter structure detected (+{structure_points} points)")

    if _any(rules.marketing, subject, text):
        score += weights["marketing"]
        reasons.append("Contains marketing language")

    if _any(rules.automated_sender, sender):
        score += weights["automated_sender"]
        reasons.append("Automated sender address")

    links = _count_links(text, html)
    if links > limits["link_count"]:
        score += weights["link_density"]
        reasons.append(f"High link density ({links} links)")

    if html and len(html) > len(text) * limits["html_ratio"]:
        score += weights["html_heavy"]
        reasons.append("HTML-heavy content")

    if any(domain_matches(domain, d) for d in rules.personal_domains):
        score += weights["personal_domain"]
        reasons.append("Sent from personal email domain")

    total_length = len(text) + len(html)
    if total_length < limits["short_content_chars"]:
        score += weights["short_content"]
        reasons.append(f"Very short content ({total_length} chars)")

    return ClassificationResult(score=score, confidence=confidence_for(score), reasons=tuple(reasons))


def classify(message: CandidateMessage, rules: RuleSet | None = None) -> ClassificationResult:
    """Score a message as a potential newsletter.

    Never raises: an unexpected error while scoring is logged and reported
    as a zero score so a single odd message cannot abort a sync.
    """
    rules = rules or default_rules()
    try:
        return _score(message, rules)
    except Exception:  # noqa: BLE001
        logger.exception("Classification failed for message %s", message.provider_message_id)
        return ClassificationResult(score=0, confidence="low", reasons=("classification error",))
