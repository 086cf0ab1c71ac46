"""Shared pytest fixtures."""

import pytest

from billdrop.config import ScanConfig
from billdrop.mail.types import RawMessage


@pytest.fixture
def netflix_message() -> RawMessage:
    """A plain known-service receipt."""
    return RawMessage(
        id="msg_netflix",
        thread_id="thread_netflix",
        subject="Your Netflix subscription receipt",
        sender="Netflix <info@mailer.netflix.com>",
        body="Amount charged: $15.99. Next billing date: February 23, 2026.",
        date="2026-01-23T10:00:00+00:00",
    )


@pytest.fixture
def acme_message() -> RawMessage:
    """An invoice from a company that is in no service table."""
    return RawMessage(
        id="msg_acme",
        subject="Your invoice is ready",
        sender="billing@acmewidgets.io",
        body="Total: $12.00/month",
    )


@pytest.fixture
def shipping_message() -> RawMessage:
    return RawMessage(
        id="msg_ship",
        subject="Your package has shipped",
        sender="Shop <orders@shop-example.com>",
        body="Good news! Tracking number: 1Z999AA10123456784",
    )


@pytest.fixture
def scan_config() -> ScanConfig:
    """Config with no API key and no waiting, for fast offline runs."""
    return ScanConfig(api_key="", min_request_interval=0.0, retry_delays=(0.0, 0.0, 0.0))
