"""Weighted rule tables used by the classifier.

The tables live in ``rules.json`` next to this module.  A user copy can be
dropped at ``RULES_PATH`` (or any path) to tune weights and patterns without
touching code.  The weights are heuristic starting points, not calibrated
values.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from pathlib import Path

from .errors import RuleConfigError

_WEIGHT_KEYS = (
    "modern_platform",
    "subject_numbering",
    "broadcast_sender",
    "strong_indicator",
    "list_unsubscribe",
    "secondary_header",
    "secondary_header_cap",
    "bulk_service_domain",
    "structure",
    "structure_cap",
    "marketing",
    "automated_sender",
    "link_density",
    "html_heavy",
    "personal_domain",
    "short_content",
)
_LIMIT_KEYS = ("link_count", "html_ratio", "short_content_chars")
_PATTERN_LIST_KEYS = (
    "non_newsletter",
    "subject_numbering",
    "strong_indicators",
    "marketing",
    "automated_sender",
)
_DOMAIN_KEYS = ("modern_platforms", "bulk_services", "personal")


@dataclass(frozen=True)
class RuleSet:
    """Compiled, immutable rule tables."""

    weights: dict[str, int]
    limits: dict[str, int]
    non_newsletter: tuple[re.Pattern, ...]
    subject_numbering: tuple[re.Pattern, ...]
    strong_indicators: tuple[re.Pattern, ...]
    structure: tuple[tuple[str, re.Pattern], ...]
    marketing: tuple[re.Pattern, ...]
    automated_sender: tuple[re.Pattern, ...]
    broadcast_senders: frozenset[str]
    secondary_headers: tuple[str, ...]
    modern_platforms: tuple[str, ...]
    bulk_services: tuple[str, ...]
    personal_domains: tuple[str, ...]
    source: str = "<packaged>"


def _compile(patterns: list[str], source: str, key: str) -> tuple[re.Pattern, ...]:
    if not isinstance(patterns, list):
        raise RuleConfigError(source, f"patterns.{key} must be a list")
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as exc:
            raise RuleConfigError(source, f"bad pattern in {key}: {pattern!r} ({exc})") from exc
    return tuple(compiled)


def parse_rules(data: dict, source: str = "<memory>") -> RuleSet:
    """Validate a decoded rules document and compile it into a RuleSet."""
    try:
        weights = {k: int(data["weights"][k]) for k in _WEIGHT_KEYS}
        limits = {k: int(data["limits"][k]) for k in _LIMIT_KEYS}
        patterns = data["patterns"]
        raw_structure = patterns["structure"]
        domains = data["domains"]
        pattern_lists = {k: patterns[k] for k in _PATTERN_LIST_KEYS}
        domain_lists = {k: domains[k] for k in _DOMAIN_KEYS}
        broadcast = data["broadcast_senders"]
        secondary = data["secondary_headers"]
    except KeyError as exc:
        raise RuleConfigError(source, f"missing key {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise RuleConfigError(source, str(exc)) from exc

    if not isinstance(raw_structure, dict):
        raise RuleConfigError(source, "patterns.structure must map a label to a pattern")

    structure = []
    for label, pattern in raw_structure.items():
        try:
            structure.append((label, re.compile(pattern, re.IGNORECASE)))
        except re.error as exc:
            raise RuleConfigError(source, f"bad structure pattern {label!r} ({exc})") from exc

    compiled = {k: _compile(v, source, k) for k, v in pattern_lists.items()}

    return RuleSet(
        weights=weights,
        limits=limits,
        structure=tuple(structure),
        broadcast_senders=frozenset(s.lower() for s in broadcast),
        secondary_headers=tuple(secondary),
        modern_platforms=tuple(d.lower() for d in domain_lists["modern_platforms"]),
        bulk_services=tuple(d.lower() for d in domain_lists["bulk_services"]),
        personal_domains=tuple(d.lower() for d in domain_lists["personal"]),
        source=source,
        **compiled,
    )


def load_rules(path: Path | str | None = None) -> RuleSet:
    """Load rule tables from *path*, or the packaged defaults when None."""
    if path is None:
        return default_rules()
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise RuleConfigError(str(path), "file not found") from exc
    except json.JSONDecodeError as exc:
        raise RuleConfigError(str(path), f"invalid JSON ({exc})") from exc
    return parse_rules(data, source=str(path))


@lru_cache(maxsize=1)
def default_rules() -> RuleSet:
    text = resources.files("newsletter_importer").joinpath("rules.json").read_text(encoding="utf-8")
    return parse_rules(json.loads(text), source="<packaged>")
