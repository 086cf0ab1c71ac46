"""Deterministic regex extraction — the last stage, used when no model answers."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime

from billdrop.filtering.names import company_from_sender
from billdrop.processing.types import (
    CURRENCY_SYMBOLS,
    DEFAULT_CURRENCY,
    BillingCycle,
    ParsedSubscription,
)

logger = logging.getLogger(__name__)

UNKNOWN_SERVICE = "Unknown Service"
AMOUNT_FOUND_CONFIDENCE = 0.5
NO_AMOUNT_CONFIDENCE = 0.3

_SYMBOLS = "".join(re.escape(s) for s in CURRENCY_SYMBOLS)
_CODES = "|".join(sorted({*CURRENCY_SYMBOLS.values(), "CAD", "AUD"}))
_CURRENCY_WORDS = {"naira": "NGN", "dollar": "USD", "dollars": "USD"}
_NUMBER = r"(?P<amount>\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)"
_PERIOD = r"(?P<period>month|mo|year|yr|annum|week|wk)\b"

# Tried in order; the first pattern yielding a non-zero amount wins, so
# period-tagged prices beat one-off totals and labelled amounts beat loose ones.
_AMOUNT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"(?P<symbol>[{_SYMBOLS}])\s?{_NUMBER}\s*(?:/|per\s+|a\s+|every\s+)\s*{_PERIOD}", re.I),
    re.compile(rf"(?P<code>{_CODES})\s?{_NUMBER}\s*(?:/|per\s+|a\s+)\s*{_PERIOD}", re.I),
    re.compile(
        rf"(?:total|amount(?:\s+(?:charged|due|paid))?|price|charged|payment\s+of|billed)\s*:?\s*"
        rf"(?P<symbol>[{_SYMBOLS}])\s?{_NUMBER}",
        re.I,
    ),
    re.compile(rf"(?P<symbol>[{_SYMBOLS}])\s?{_NUMBER}"),
    re.compile(rf"\b(?P<code>{_CODES})\s?{_NUMBER}", re.I),
    re.compile(rf"{_NUMBER}\s?(?P<code>{_CODES})\b", re.I),
    re.compile(rf"\b(?P<word>naira)\s?{_NUMBER}", re.I),
    re.compile(rf"{_NUMBER}\s*(?P<word>dollars?)\b", re.I),
)

_PERIOD_TO_CYCLE = {
    "month": BillingCycle.MONTHLY,
    "mo": BillingCycle.MONTHLY,
    "year": BillingCycle.YEARLY,
    "yr": BillingCycle.YEARLY,
    "annum": BillingCycle.YEARLY,
    "week": BillingCycle.WEEKLY,
    "wk": BillingCycle.WEEKLY,
}

_YEARLY_LANGUAGE = re.compile(r"\b(?:annual(?:ly)?|yearly|years?|yr|annum)\b", re.I)
_WEEKLY_LANGUAGE = re.compile(r"\b(?:weekly|weeks?|wk)\b", re.I)

_DATE_PHRASE = re.compile(
    r"(?:next\s+billing\s+date|next\s+payment(?:\s+date)?|next\s+charge(?:\s+date)?|"
    r"renewal\s+date|(?:auto-)?renews(?:\s+on)?|will\s+renew\s+on|billed\s+again\s+on)"
    r"\s*:?\s*(?:on\s+)?(?P<date>[A-Za-z0-9,/\- ]{6,24})",
    re.I,
)
_DATE_FORMATS = (
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y-%m-%d",
    "%m/%d/%Y",
)

_URL = re.compile(r"https?://[^\s<>\"')\]]+")
_CANCEL_HINTS = ("cancel", "manage", "subscription", "account")


def fallback_extract(
    subject: str,
    sender: str,
    body: str,
    hinted_service_name: str | None = None,
) -> ParsedSubscription:
    """Best-effort extraction with regular expressions only.

    Always returns a result. The service name comes from the hint, then the
    sender's domain, then ``"Unknown Service"``. Confidence is 0.5 when a
    non-zero amount was found and 0.3 otherwise.
    """
    text = f"{subject}\n{body}"
    service_name = hinted_service_name or company_from_sender(sender) or UNKNOWN_SERVICE
    amount, currency, cycle = _find_amount(text)

    parsed = ParsedSubscription(
        service_name=service_name,
        description=_describe(text),
        amount=amount,
        currency=currency,
        billing_cycle=cycle or _cycle_from_language(text),
        next_billing_date=find_next_billing_date(text),
        cancellation_url=find_cancellation_url(body),
        confidence=AMOUNT_FOUND_CONFIDENCE if amount > 0 else NO_AMOUNT_CONFIDENCE,
    )
    logger.debug(
        "Regex extraction: service=%r amount=%s %s cycle=%s",
        parsed.service_name,
        parsed.amount,
        parsed.currency,
        parsed.billing_cycle.value,
    )
    return parsed


def _find_amount(text: str) -> tuple[float, str, BillingCycle | None]:
    """First non-zero amount from the ordered battery, with currency and tagged cycle."""
    for pattern in _AMOUNT_PATTERNS:
        for match in pattern.finditer(text):
            value = float(match.group("amount").replace(",", ""))
            if value <= 0:
                continue
            groups = match.groupdict()
            if groups.get("symbol"):
                currency = CURRENCY_SYMBOLS[groups["symbol"]]
            elif groups.get("code"):
                currency = groups["code"].upper()
            elif groups.get("word"):
                currency = _CURRENCY_WORDS[groups["word"].lower()]
            else:
                currency = DEFAULT_CURRENCY
            period = (groups.get("period") or "").lower()
            return round(value, 2), currency, _PERIOD_TO_CYCLE.get(period)
    return 0.0, DEFAULT_CURRENCY, None


def _cycle_from_language(text: str) -> BillingCycle:
    if _YEARLY_LANGUAGE.search(text):
        return BillingCycle.YEARLY
    if _WEEKLY_LANGUAGE.search(text):
        return BillingCycle.WEEKLY
    return BillingCycle.MONTHLY


def _describe(text: str) -> str | None:
    lowered = text.lower()
    if "free trial" in lowered:
        return "Free trial"
    if "trial" in lowered:
        return "Trial"
    return None


def find_next_billing_date(text: str) -> date | None:
    """Date following phrases like "Next billing date:" or "renews on"."""
    for match in _DATE_PHRASE.finditer(text):
        parsed = _parse_date(match.group("date"))
        if parsed is not None:
            return parsed
    return None


def _parse_date(fragment: str) -> date | None:
    # The capture is greedy; trim words from the right until a format fits.
    words = fragment.replace(",", ", ").split()
    while words:
        candidate = " ".join(words).replace(" ,", ",").rstrip(",.")
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(candidate, fmt).date()
            except ValueError:
                continue
        words.pop()
    return None


def find_cancellation_url(text: str) -> str | None:
    """First link that looks like a cancel or manage-subscription page."""
    for match in _URL.finditer(text):
        url = match.group(0).rstrip(".,;:!")
        if any(hint in url.lower() for hint in _CANCEL_HINTS):
            return url
    return None
