"""Tests for ParsedSubscription validation and normalisation."""

from datetime import date

import pytest

from billdrop.processing.types import (
    BillingCycle,
    ParsedSubscription,
    ValidationError,
    normalize_currency,
    parse_amount,
    parse_subscription,
)

VALID_DATA: dict[str, object] = {
    "is_subscription": True,
    "service_name": "Netflix",
    "description": "Standard plan",
    "amount": 15.99,
    "currency": "USD",
    "billing_cycle": "monthly",
    "next_billing_date": "2026-02-23",
    "cancellation_url": "https://www.netflix.com/account",
    "confidence": 0.95,
}


class TestBillingCycle:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("monthly", BillingCycle.MONTHLY),
            ("Annual", BillingCycle.YEARLY),
            ("year", BillingCycle.YEARLY),
            ("yearly", BillingCycle.YEARLY),
            ("weekly", BillingCycle.WEEKLY),
            ("every week", BillingCycle.WEEKLY),
            ("quarterly", BillingCycle.MONTHLY),
            (None, BillingCycle.MONTHLY),
        ],
    )
    def test_coerce(self, raw: object, expected: BillingCycle) -> None:
        assert BillingCycle.coerce(raw) is expected


class TestNormalizers:
    @pytest.mark.parametrize(
        "raw, code",
        [("$", "USD"), ("£", "GBP"), ("€", "EUR"), ("₦", "NGN"), ("¥", "JPY"), ("₹", "INR"),
         ("cad", "CAD"), ("", "USD"), (None, "USD"), ("dollars", "USD")],
    )
    def test_currency(self, raw: object, code: str) -> None:
        assert normalize_currency(raw) == code

    def test_amount_from_string(self) -> None:
        assert parse_amount("$1,299.00") == 1299.0

    def test_amount_rejects_garbage(self) -> None:
        with pytest.raises(ValidationError):
            parse_amount("free")

    def test_amount_rejects_bool(self) -> None:
        with pytest.raises(ValidationError):
            parse_amount(True)


class TestParseSubscription:
    def test_valid(self) -> None:
        parsed = parse_subscription(VALID_DATA)
        assert parsed == ParsedSubscription(
            service_name="Netflix",
            description="Standard plan",
            amount=15.99,
            currency="USD",
            billing_cycle=BillingCycle.MONTHLY,
            next_billing_date=date(2026, 2, 23),
            cancellation_url="https://www.netflix.com/account",
            confidence=0.95,
        )

    def test_missing_service_name(self) -> None:
        with pytest.raises(ValidationError):
            parse_subscription({**VALID_DATA, "service_name": "  "})

    def test_missing_amount(self) -> None:
        with pytest.raises(ValidationError):
            parse_subscription({**VALID_DATA, "amount": None})

    def test_negative_amount(self) -> None:
        with pytest.raises(ValidationError):
            parse_subscription({**VALID_DATA, "amount": -5})

    def test_zero_amount_allowed(self) -> None:
        assert parse_subscription({**VALID_DATA, "amount": 0}).amount == 0.0

    def test_symbol_currency_and_cycle_coerced(self) -> None:
        parsed = parse_subscription({**VALID_DATA, "currency": "£", "billing_cycle": "annual"})
        assert parsed.currency == "GBP"
        assert parsed.billing_cycle is BillingCycle.YEARLY

    def test_bad_date_dropped(self) -> None:
        assert parse_subscription({**VALID_DATA, "next_billing_date": "soon"}).next_billing_date is None

    def test_scheme_added_to_bare_url(self) -> None:
        parsed = parse_subscription({**VALID_DATA, "cancellation_url": "netflix.com/cancel"})
        assert parsed.cancellation_url == "https://netflix.com/cancel"

    @pytest.mark.parametrize("placeholder", ["N/A", "none", "null", "-", "https://none"])
    def test_placeholder_url_dropped(self, placeholder: str) -> None:
        assert parse_subscription({**VALID_DATA, "cancellation_url": placeholder}).cancellation_url is None

    def test_confidence_clamped(self) -> None:
        assert parse_subscription({**VALID_DATA, "confidence": 7}).confidence == 1.0
        assert parse_subscription({**VALID_DATA, "confidence": "n/a"}).confidence == 0.8

    def test_to_dict(self) -> None:
        data = parse_subscription(VALID_DATA).to_dict()
        assert data["billing_cycle"] == "monthly"
        assert data["next_billing_date"] == "2026-02-23"
