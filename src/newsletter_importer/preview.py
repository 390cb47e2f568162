"""Group classified candidates by sender domain for the whitelist step."""

from __future__ import annotations

import logging

from .domains import extract_domain
from .models import ClassifiedCandidate, DomainPreview, PreviewSample

logger = logging.getLogger(__name__)


def build_domain_previews(candidates: list[ClassifiedCandidate]) -> list[DomainPreview]:
    """Return one DomainPreview per distinct sender domain.

    The highest-scoring candidate of each domain becomes its sample.
    Candidates without a usable domain are skipped.
    """
    ordered = sorted(
        candidates,
        key=lambda c: (-c.result.score, c.message.provider_message_id),
    )

    previews: dict[str, DomainPreview] = {}
    for candidate in ordered:
        msg = candidate.message
        domain = extract_domain(msg.from_address)
        if not domain:
            logger.debug("No domain for message %s (from %r)", msg.provider_message_id, msg.from_header)
            continue

        if domain in previews:
            previews[domain].message_count += 1
            continue

        previews[domain] = DomainPreview(
            domain=domain,
            sample=PreviewSample(
                subject=msg.subject,
                sender=msg.from_header or msg.from_address,
                sender_email=msg.from_address,
                date=msg.date,
                confidence=candidate.result.confidence,
                score=candidate.result.score,
            ),
        )

    return sorted(previews.values(), key=lambda p: (-p.message_count, p.domain))
