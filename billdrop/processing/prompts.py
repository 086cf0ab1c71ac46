"""Anthropic tool definitions and prompt builders for subscription extraction."""

from collections.abc import Sequence
from typing import Any

from billdrop.filtering.filter import FilteredEmail

# Per-email body characters sent to the model. Batch calls carry five emails,
# so each gets a smaller slice to keep the request size flat.
SINGLE_BODY_CHAR_LIMIT = 3_000
BATCH_BODY_CHAR_LIMIT = 2_000

SINGLE_TOOL_NAME = "record_subscription"
BATCH_TOOL_NAME = "record_subscriptions"

SYSTEM_PROMPT = """\
You extract recurring-subscription billing details from emails.

Rules:
- Report a subscription for receipts, invoices, renewals, trial notices and \
plan confirmations of any recurring service, including small or unfamiliar \
companies. Be lenient: if a recurring charge is plausible, report it.
- service_name is the product or company being paid, not the payment processor \
(e.g. a Stripe or PayPal receipt for "Acme" is Acme).
- amount is a plain number, no currency symbol. If several amounts appear, \
prefer the one tagged with a period (/month, per year) over one-off totals.
- currency is an ISO-4217 code: $ → USD, £ → GBP, € → EUR, ₦ → NGN, ¥ → JPY, \
₹ → INR. Default USD.
- billing_cycle is weekly, monthly or yearly. Annual plans are yearly.
- next_billing_date (YYYY-MM-DD) only when the email states one, e.g. \
"next billing date", "renews on", "next payment". Otherwise null.
- cancellation_url: the link behind text such as "cancel", "manage \
subscription" or "account settings", when present. Otherwise null.
- Set is_subscription false for shipping notices, bank statements, one-off \
purchases, marketing and anything that is not a recurring charge.
"""


# ── Tool definitions ───────────────────────────────────────────────────────────

_SUBSCRIPTION_PROPERTIES: dict[str, Any] = {
    "is_subscription": {
        "type": "boolean",
        "description": "True if the email documents a recurring subscription charge.",
    },
    "service_name": {
        "type": ["string", "null"],
        "description": "Name of the subscribed product or company.",
    },
    "description": {
        "type": ["string", "null"],
        "description": "Plan or tier, e.g. 'Standard plan' or 'Free trial'.",
    },
    "amount": {
        "type": ["number", "null"],
        "description": "Recurring charge amount, no currency symbol.",
    },
    "currency": {
        "type": ["string", "null"],
        "description": "ISO-4217 currency code.",
    },
    "billing_cycle": {
        "type": ["string", "null"],
        "enum": ["weekly", "monthly", "yearly", None],
    },
    "next_billing_date": {
        "type": ["string", "null"],
        "description": "YYYY-MM-DD, only if stated in the email.",
    },
    "cancellation_url": {
        "type": ["string", "null"],
        "description": "Cancel or manage-subscription link, if present.",
    },
    "confidence": {
        "type": "number",
        "description": "0.0–1.0 certainty that this is a recurring subscription.",
    },
}

#: Forced tool for one email per call.
SUBSCRIPTION_TOOL: dict[str, Any] = {
    "name": SINGLE_TOOL_NAME,
    "description": "Record the subscription details found in an email.",
    "input_schema": {
        "type": "object",
        "properties": _SUBSCRIPTION_PROPERTIES,
        "required": ["is_subscription", "service_name", "amount", "billing_cycle", "confidence"],
    },
}

#: Forced tool for a sub-batch; one result per input email, keyed by id.
BATCH_TOOL: dict[str, Any] = {
    "name": BATCH_TOOL_NAME,
    "description": "Record subscription details for every email in the batch.",
    "input_schema": {
        "type": "object",
        "properties": {
            "results": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string", "description": "The email id, copied exactly."},
                        **_SUBSCRIPTION_PROPERTIES,
                    },
                    "required": [
                        "id", "is_subscription", "service_name", "amount",
                        "billing_cycle", "confidence",
                    ],
                },
            },
        },
        "required": ["results"],
    },
}


# ── Prompt builders ────────────────────────────────────────────────────────────


def _render_email(email: FilteredEmail, limit: int) -> str:
    body = email.body[:limit]
    lines = [
        f"From: {email.sender}",
        f"Subject: {email.subject}",
    ]
    if email.date:
        lines.append(f"Date: {email.date}")
    if email.extracted_service_name:
        lines.append(f"Likely service: {email.extracted_service_name}")
    lines.append("")
    lines.append(body)
    if len(email.body) > limit:
        lines.append("[… email truncated …]")
    return "\n".join(lines)


def build_single_messages(email: FilteredEmail) -> list[dict[str, str]]:
    """Messages list asking for one ``record_subscription`` call."""
    return [
        {
            "role": "user",
            "content": (
                f"Extract subscription details from this email and call {SINGLE_TOOL_NAME}.\n\n"
                + _render_email(email, SINGLE_BODY_CHAR_LIMIT)
            ),
        }
    ]


def build_batch_messages(emails: Sequence[FilteredEmail]) -> list[dict[str, str]]:
    """Messages list asking for one ``record_subscriptions`` call covering all emails.

    Each email is fenced with its id so results can be matched back; the model
    is told to copy ids verbatim and return one entry per email.
    """
    sections = [
        f"=== EMAIL id={email.id} ===\n{_render_email(email, BATCH_BODY_CHAR_LIMIT)}"
        for email in emails
    ]
    return [
        {
            "role": "user",
            "content": (
                f"Extract subscription details from each of the {len(emails)} emails below "
                f"and call {BATCH_TOOL_NAME} with exactly one result per email, "
                "copying each id exactly.\n\n" + "\n\n".join(sections)
            ),
        }
    ]
