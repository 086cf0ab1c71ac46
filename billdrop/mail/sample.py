"""Offline mailbox with fixed billing messages, for demos and end-to-end tests."""

import logging
from datetime import datetime, timedelta, timezone

from billdrop.mail.text import normalize_body
from billdrop.mail.types import RawMessage

logger = logging.getLogger(__name__)

# (id, days ago, sender, subject, snippet, body)
_SAMPLES: list[tuple[str, int, str, str, str, str]] = [
    (
        "sample-1", 5,
        "Netflix <info@mailer.netflix.com>",
        "Your Netflix subscription receipt",
        "Thank you for your Netflix subscription payment of $15.99",
        "Thank you for being a Netflix member!\n\nYour subscription has been renewed.\n\n"
        "Plan: Standard\nAmount charged: $15.99\nNext billing date: February 23, 2026\n\n"
        "You can manage your subscription at https://www.netflix.com/account",
    ),
    (
        "sample-2", 3,
        "Spotify <no-reply@spotify.com>",
        "Spotify Premium - Payment Receipt",
        "Your Spotify Premium payment of $9.99 was successful",
        "Your Spotify Premium payment was processed successfully.\n\n"
        "Plan: Spotify Premium Individual\nAmount: $9.99 USD\n"
        "Payment date: January 15, 2026\nNext payment: February 15, 2026",
    ),
    (
        "sample-3", 7,
        "Adobe <mail@email.adobe.com>",
        "Adobe Creative Cloud - Invoice",
        "Your monthly subscription invoice for Adobe Creative Cloud",
        "Thank you for your subscription to Adobe Creative Cloud.\n\n"
        "Product: Creative Cloud All Apps\nBilling period: Monthly\nAmount: $54.99 USD\n\n"
        "Next billing date: February 10, 2026\nManage your plan: https://account.adobe.com/plans",
    ),
    (
        "sample-4", 2,
        "OpenAI <noreply@openai.com>",
        "Your ChatGPT Plus subscription is active",
        "Thank you for subscribing to ChatGPT Plus at $20/month",
        "Your ChatGPT Plus subscription is now active!\n\n"
        "Plan: ChatGPT Plus\nPrice: $20.00/month\nStarted: January 5, 2026\n"
        "Auto-renews: February 5, 2026",
    ),
    (
        "sample-5", 4,
        "Acme Widgets <billing@acmewidgets.io>",
        "Your invoice is ready",
        "",
        "Hello,\n\nTotal: $12.00/month\nThanks for choosing Acme Widgets.",
    ),
    (
        "sample-6", 1,
        "Shop <orders@shop-example.com>",
        "Your package has shipped",
        "Your order is on its way",
        "Good news! Your order is on its way.\nTracking number: 1Z999AA10123456784",
    ),
]


class SampleMailbox:
    """MailboxProvider that serves a fixed set of messages.

    The same fixtures every run; dates are relative to now so the lookback
    window always includes them.
    """

    def __init__(self, messages: list[RawMessage] | None = None) -> None:
        self._messages = messages if messages is not None else _build_samples()

    async def fetch_recent_messages(
        self, credential: str, since_days: int, max_count: int
    ) -> list[RawMessage]:
        logger.info("Serving %d sample message(s)", min(len(self._messages), max_count))
        return self._messages[:max_count]


def _build_samples() -> list[RawMessage]:
    now = datetime.now(timezone.utc)
    return [
        RawMessage(
            id=msg_id,
            thread_id=f"thread-{msg_id}",
            subject=subject,
            sender=sender,
            date=(now - timedelta(days=days_ago)).isoformat(),
            snippet=snippet,
            body=normalize_body(body, snippet),
        )
        for msg_id, days_ago, sender, subject, snippet, body in _SAMPLES
    ]
