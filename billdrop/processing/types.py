"""Types for the subscription extraction pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any


class BillingCycle(str, Enum):
    """Recurring charge period. No other value leaves any extraction stage."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @classmethod
    def coerce(cls, value: object) -> BillingCycle:
        """Map free-form cycle text onto the enum; unknown text means monthly."""
        text = str(value or "").strip().lower()
        if re.search(r"year|annual|\byr\b", text):
            return cls.YEARLY
        if re.search(r"week|\bwk\b", text):
            return cls.WEEKLY
        return cls.MONTHLY


#: Currency symbol → ISO-4217 code.
CURRENCY_SYMBOLS: dict[str, str] = {
    "$": "USD",
    "£": "GBP",
    "€": "EUR",
    "₦": "NGN",
    "¥": "JPY",
    "₹": "INR",
}

DEFAULT_CURRENCY = "USD"
DEFAULT_AI_CONFIDENCE = 0.8


class ValidationError(ValueError):
    """An otherwise successful parse is missing or has unusable required fields."""


@dataclass(frozen=True)
class ParsedSubscription:
    """Billing facts extracted from one email.

    Produced by every extraction stage and consumed by reconciliation.
    ``amount`` is never negative; zero only survives downstream for trials.
    """

    service_name: str
    amount: float
    currency: str = DEFAULT_CURRENCY
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    description: str | None = None
    next_billing_date: date | None = None
    cancellation_url: str | None = None
    confidence: float = DEFAULT_AI_CONFIDENCE

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_name": self.service_name,
            "description": self.description,
            "amount": self.amount,
            "currency": self.currency,
            "billing_cycle": self.billing_cycle.value,
            "next_billing_date": self.next_billing_date.isoformat() if self.next_billing_date else None,
            "cancellation_url": self.cancellation_url,
            "confidence": self.confidence,
        }


# ── Normalisers ────────────────────────────────────────────────────────────────


def normalize_currency(value: object) -> str:
    """'$' → 'USD', 'gbp' → 'GBP'; anything unrecognisable → USD."""
    text = str(value or "").strip()
    if text in CURRENCY_SYMBOLS:
        return CURRENCY_SYMBOLS[text]
    if re.fullmatch(r"[A-Za-z]{3}", text):
        return text.upper()
    return DEFAULT_CURRENCY


def parse_amount(value: object) -> float:
    """Parse 9.99, '9.99', '$1,299.00' → float. Raises ValidationError."""
    if isinstance(value, bool):
        raise ValidationError(f"amount must be numeric, got {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^\d.\-]", "", str(value))
    try:
        return float(cleaned)
    except ValueError as exc:
        raise ValidationError(f"amount is not a number: {value!r}") from exc


def parse_iso_date(value: object) -> date | None:
    """'2026-02-23' (optionally with a time part) → date; otherwise None."""
    if not value:
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def normalize_url(value: object) -> str | None:
    """Link with a scheme, or None for placeholders like "N/A" that have no dotted host."""
    text = str(value or "").strip()
    if not text or " " in text:
        return None
    host = text.split("://", 1)[-1].split("/", 1)[0]
    if "." not in host:
        return None
    if not text.startswith(("http://", "https://")):
        text = f"https://{text}"
    return text


def clamp_confidence(value: object, default: float = DEFAULT_AI_CONFIDENCE) -> float:
    try:
        score = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return min(max(score, 0.0), 1.0)


def parse_subscription(data: dict[str, Any]) -> ParsedSubscription:
    """Validate one model result dict into a ParsedSubscription.

    Raises:
        ValidationError: service name or amount missing, or amount negative.
    """
    service_name = str(data.get("service_name") or "").strip()
    if not service_name:
        raise ValidationError("service_name missing")
    if data.get("amount") is None:
        raise ValidationError(f"amount missing for {service_name!r}")

    amount = parse_amount(data["amount"])
    if amount < 0:
        raise ValidationError(f"negative amount {amount} for {service_name!r}")

    description = data.get("description")
    return ParsedSubscription(
        service_name=service_name,
        amount=round(amount, 2),
        currency=normalize_currency(data.get("currency")),
        billing_cycle=BillingCycle.coerce(data.get("billing_cycle")),
        description=str(description).strip() or None if description else None,
        next_billing_date=parse_iso_date(data.get("next_billing_date")),
        cancellation_url=normalize_url(data.get("cancellation_url")),
        confidence=clamp_confidence(data.get("confidence")),
    )
