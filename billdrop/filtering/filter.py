"""Heuristic candidate filter — scores raw messages for subscription likelihood."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from billdrop.filtering.names import company_from_sender, extract_dynamic_service_name
from billdrop.filtering.patterns import PatternTables
from billdrop.mail.types import RawMessage

logger = logging.getLogger(__name__)

# Confidence increments in hundredths. Integer points keep the sum exact, so
# the order in which signals are discovered cannot change the final score.
KEYWORD_POINTS = 10
KNOWN_SERVICE_POINTS = 30
DYNAMIC_NAME_POINTS = 25
DOMAIN_NAME_POINTS = 15
AMOUNT_POINTS = 20
_MAX_POINTS = 100


@dataclass(frozen=True)
class FilteredEmail:
    """A raw message that passed the filter, with the signals that got it there."""

    id: str
    subject: str
    sender: str
    body: str
    date: str | None = None
    matched_keywords: frozenset[str] = field(default_factory=frozenset)
    confidence: float = 0.0
    extracted_service_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form used by the two-phase scan interface."""
        return {
            "id": self.id,
            "subject": self.subject,
            "from": self.sender,
            "date": self.date,
            "body": self.body,
            "matched_keywords": sorted(self.matched_keywords),
            "confidence": self.confidence,
            "extracted_service_name": self.extracted_service_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FilteredEmail:
        return cls(
            id=str(data["id"]),
            subject=str(data.get("subject", "")),
            sender=str(data.get("from", data.get("sender", ""))),
            body=str(data.get("body", "")),
            date=str(data["date"]) if data.get("date") else None,
            matched_keywords=frozenset(str(k) for k in data.get("matched_keywords", [])),
            confidence=float(data.get("confidence", 0.0)),
            extracted_service_name=(
                str(data["extracted_service_name"]) if data.get("extracted_service_name") else None
            ),
        )


class CandidateFilter:
    """Scores messages against the pattern tables.

    Pure and side-effect free: the same input always yields the same scores
    and ordering. Nothing here raises; a message matching nothing is dropped.

    Usage::

        candidates = CandidateFilter().filter(messages)
    """

    def __init__(self, tables: PatternTables | None = None) -> None:
        self._tables = tables or PatternTables.default()

    def filter(self, messages: Iterable[RawMessage]) -> list[FilteredEmail]:
        """Return retained messages ordered by descending confidence."""
        filtered = [f for f in (self.score(m) for m in messages) if f is not None]
        filtered.sort(key=lambda f: f.confidence, reverse=True)
        logger.debug("Filter kept %d message(s)", len(filtered))
        return filtered

    def is_excluded(self, content: str) -> bool:
        """True if lowercased ``content`` carries a strong non-subscription signal."""
        t = self._tables
        if any(phrase in content for phrase in t.exclusion_phrases):
            return True
        return any(
            any(a in content for a in first) and any(b in content for b in second)
            for first, second in t.exclusion_combinations
        )

    def score(self, message: RawMessage) -> FilteredEmail | None:
        """Score one message; None when it is excluded or not retained."""
        t = self._tables
        content = f"{message.subject} {message.sender} {message.body}".lower()

        if self.is_excluded(content):
            logger.debug("Excluded %s: %r", message.id, message.subject)
            return None

        points = 0
        matched: set[str] = set()
        categories: set[str] = set()

        for keyword, category in t.keywords.items():
            if keyword in content:
                matched.add(keyword)
                categories.add(category)
                points += KEYWORD_POINTS

        service_name: str | None = None
        known_service = False
        for name, patterns in t.compiled_services:
            if any(p.search(content) for p in patterns):
                service_name = name
                known_service = True
                matched.add(f"service:{name}")
                points += KNOWN_SERVICE_POINTS
                break

        if not known_service:
            dynamic = extract_dynamic_service_name(message.subject, message.sender, t)
            if dynamic:
                service_name = dynamic
                matched.add(f"dynamic:{dynamic}")
                points += DYNAMIC_NAME_POINTS
            else:
                domain_name = company_from_sender(message.sender, t)
                if domain_name:
                    service_name = domain_name
                    matched.add(f"domain:{domain_name}")
                    points += DOMAIN_NAME_POINTS

        has_amount = any(p.search(content) for p in t.compiled_amounts)
        if has_amount:
            points += AMOUNT_POINTS

        keyword_hits = matched & set(t.keywords)
        is_payment_provider = bool(t.compiled_payment_provider.search(message.sender))
        has_strong = bool(keyword_hits & t.strong_keywords)
        has_medium = bool(keyword_hits & t.medium_keywords)
        strong_categories = categories - t.weak_categories

        include = (
            known_service
            or service_name is not None
            or (has_strong and (has_amount or is_payment_provider))
            or (has_medium and is_payment_provider)
            or (has_medium and has_amount and len(keyword_hits) >= 2)
            or len(strong_categories) >= 2
        )
        if not include:
            return None

        return FilteredEmail(
            id=message.id,
            subject=message.subject,
            sender=message.sender,
            body=message.body,
            date=message.date,
            matched_keywords=frozenset(matched),
            confidence=min(points, _MAX_POINTS) / 100,
            extracted_service_name=service_name,
        )


def filter_subscription_emails(
    messages: Sequence[RawMessage], tables: PatternTables | None = None
) -> list[FilteredEmail]:
    """Convenience wrapper: ``CandidateFilter(tables).filter(messages)``."""
    return CandidateFilter(tables).filter(messages)
