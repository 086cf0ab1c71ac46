"""Pattern tables driving the candidate filter.

The tables are data, not logic: ``PatternTables.default()`` returns the
built-in set and ``load_pattern_tables()`` overlays a JSON file on top of it,
so the vocabulary can grow without touching the filter.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, fields, replace
from functools import lru_cache
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


# ── Known services ─────────────────────────────────────────────────────────────

#: Canonical display name → regexes. Order matters: first match wins.
DEFAULT_SERVICES: dict[str, tuple[str, ...]] = {
    # Streaming & entertainment
    "Netflix": (r"netflix", r"\bnflx\b"),
    "Spotify": (r"spotify",),
    "YouTube Premium": (r"youtube premium", r"youtube music", r"youtube tv"),
    "Apple": (r"apple music", r"icloud", r"apple tv\+", r"apple one", r"apple\.com/bill"),
    "Disney+": (r"disney\+", r"disney plus"),
    "HBO Max": (r"hbo max", r"\bmax\.com\b"),
    "Hulu": (r"\bhulu\b",),
    "Amazon Prime": (r"amazon prime", r"prime video", r"prime membership"),
    "Audible": (r"\baudible\b",),
    "Kindle Unlimited": (r"kindle unlimited",),
    # Developer & tech tools
    "GitHub": (r"github",),
    "Namecheap": (r"namecheap",),
    "GoDaddy": (r"godaddy",),
    "Cloudflare": (r"cloudflare",),
    "DigitalOcean": (r"digitalocean",),
    "Heroku": (r"heroku",),
    "Vercel": (r"\bvercel\b",),
    "Netlify": (r"netlify",),
    "MongoDB": (r"mongodb",),
    "AWS": (r"amazon web services", r"aws\.amazon"),
    # AI & creative tools
    "OpenAI": (r"openai", r"chatgpt"),
    "Suno": (r"\bsuno\b",),
    "Midjourney": (r"midjourney",),
    "Runway": (r"runwayml", r"\brunway\b"),
    "ElevenLabs": (r"elevenlabs", r"eleven labs"),
    "Anthropic": (r"anthropic", r"\bclaude\b"),
    "Adobe": (r"\badobe\b", r"creative cloud"),
    "Figma": (r"\bfigma\b",),
    "Canva": (r"\bcanva\b",),
    # Productivity & work
    "Notion": (r"\bnotion\b",),
    "Slack": (r"\bslack\b",),
    "Zoom": (r"\bzoom\b",),
    "Microsoft 365": (r"microsoft 365", r"office 365", r"onedrive", r"xbox game pass"),
    "Google One": (
        r"google one", r"google workspace", r"google play",
        r"payments-noreply@google", r"googleplay-noreply@google",
    ),
    "Dropbox": (r"dropbox",),
    "Evernote": (r"evernote",),
    "Todoist": (r"todoist",),
    "Calendly": (r"calendly",),
    # Communication
    "LinkedIn Premium": (r"linkedin premium",),
    "X Premium": (r"\bx premium\b", r"twitter blue"),
    "Discord Nitro": (r"discord nitro",),
    "Telegram Premium": (r"telegram premium",),
    # Finance & business
    "QuickBooks": (r"quickbooks", r"\bintuit\b"),
    "FreshBooks": (r"freshbooks",),
    "Esusu": (r"\besusu\b",),
    # Fitness & health
    "Planet Fitness": (r"planet fitness",),
    "Gym Membership": (r"24 hour fitness", r"anytime fitness", r"\bgym\b"),
    "Peloton": (r"peloton",),
    "Headspace": (r"headspace",),
    "Calm": (r"\bcalm\.com\b", r"calm premium"),
    "Luminis Health": (r"\bluminis\b",),
    # VPN & security
    "NordVPN": (r"nordvpn",),
    "ExpressVPN": (r"expressvpn",),
    "LastPass": (r"lastpass",),
    "1Password": (r"1password",),
    # News & learning
    "Medium": (r"\bmedium\.com\b", r"medium membership"),
    "Substack": (r"substack",),
    "Coursera": (r"coursera",),
    "Udemy": (r"\budemy\b",),
    "Skillshare": (r"skillshare",),
    "MasterClass": (r"masterclass",),
    # Telecom & utilities
    "Xfinity": (r"xfinity", r"comcast"),
    "AT&T": (r"\bat&t\b", r"\batt\.com\b"),
    "Verizon": (r"verizon",),
    "T-Mobile": (r"t-mobile", r"\btmobile\b"),
}


# ── Keywords ───────────────────────────────────────────────────────────────────

#: Billing vocabulary → category. Each hit adds a fixed increment.
DEFAULT_KEYWORDS: dict[str, str] = {
    "subscription": "subscription",
    "recurring": "subscription",
    "renewal": "subscription",
    "membership": "subscription",
    "premium": "subscription",
    "plan": "subscription",
    "auto-renew": "subscription",
    "renews on": "subscription",
    "pro plan": "subscription",
    "plus plan": "subscription",
    "starter plan": "subscription",
    "business plan": "subscription",
    "thanks for subscribing": "subscription",
    "billing": "billing",
    "invoice": "billing",
    "receipt": "billing",
    "payment": "billing",
    "charged": "billing",
    "charge": "billing",
    "next billing": "billing",
    "payment received": "billing",
    "payment successful": "billing",
    "will be charged": "billing",
    "credit card": "billing",
    "debit card": "billing",
    "transaction": "billing",
    "statement": "billing",
    "monthly": "cadence",
    "yearly": "cadence",
    "annual": "cadence",
    "your order": "order",
    "order confirmation": "order",
    "thank you for your purchase": "order",
    "thank you for your order": "order",
    "confirmation": "order",
    "trial": "trial",
    "free trial": "trial",
    "started": "trial",
    "signed up": "trial",
    "activated": "trial",
    "welcome to": "trial",
    "your account": "generic",
    "total": "generic",
    "amount": "generic",
    "price": "generic",
}

DEFAULT_STRONG_KEYWORDS = frozenset(
    {"subscription", "recurring", "renewal", "membership", "plan", "billing", "trial"}
)
DEFAULT_MEDIUM_KEYWORDS = frozenset({"receipt", "invoice", "your order", "payment", "transaction"})

#: Categories too common on their own to count toward the "two categories" rule.
DEFAULT_WEAK_CATEGORIES = frozenset({"generic"})


# ── Exclusions ─────────────────────────────────────────────────────────────────

DEFAULT_EXCLUSION_PHRASES: tuple[str, ...] = (
    # Shipping / physical goods
    "shipped", "shipping", "tracking number", "track your package", "out for delivery",
    "arriving", "delivered", "shipment",
    # Security
    "verification code", "password reset", "login alert", "security alert",
    # Refunds / returns
    "refund issued", "refund processed", "refund sent",
    "return started", "return label", "return processed",
    # Jobs
    "job alert", "job recommendation", "new position", "opportunities", "apply now",
    # Newsletters / content
    "daily digest", "weekly digest", "monthly digest", "new post", "published",
    "read online", "view in browser", "story from",
)

#: (any of A) and (any of B) together exclude a message.
DEFAULT_EXCLUSION_COMBINATIONS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (
        ("account statement", "bank statement", "monthly statement"),
        ("account balance", "available balance", "closing balance", "checking account", "savings account"),
    ),
)


# ── Amounts, senders, names ────────────────────────────────────────────────────

_NUMBER = r"\d[\d,]*(?:\.\d+)?"

DEFAULT_AMOUNT_PATTERNS: tuple[str, ...] = (
    rf"[$£€₦¥₹]\s?{_NUMBER}",
    rf"\b(?:usd|gbp|eur|ngn|jpy|inr|cad|aud)\s?{_NUMBER}",
    rf"{_NUMBER}\s?(?:usd|gbp|eur|ngn|jpy|inr|cad|aud)\b",
    rf"\bnaira\s?{_NUMBER}",
    rf"{_NUMBER}\s*dollars?\b",
    rf"{_NUMBER}\s*(?:per month|/month|/mo\b)",
)

DEFAULT_PAYMENT_PROVIDER_PATTERN = r"apple|google|paypal|stripe|amazon|prime|klarna"

_WORD = r"[a-z0-9][a-z0-9&+.'-]*"
_NAME = rf"{_WORD}(?:\s+{_WORD}){{0,2}}"

#: Each pattern captures a probable service name in the ``name`` group.
DEFAULT_DYNAMIC_NAME_PATTERNS: tuple[str, ...] = (
    rf"receipt\s+from\s+(?P<name>{_NAME})",
    rf"your\s+(?P<name>{_NAME}?)\s+(?:receipt|invoice|payment|subscription|order)\b",
    rf"(?:payment|charge)\s+(?:to|from)\s+(?P<name>{_NAME})",
    rf"thanks\s+for\s+your\s+(?P<name>{_NAME}?)\s+payment",
    rf"(?P<name>{_NAME}?)\s+(?:subscription|membership|plan|premium)\b",
)

DEFAULT_GENERIC_DOMAINS = frozenset({
    "gmail", "googlemail", "yahoo", "outlook", "hotmail", "live", "msn", "icloud",
    "me", "aol", "proton", "protonmail", "mail", "email", "gmx", "zoho", "yandex",
})

DEFAULT_NAME_STOPWORDS = frozenset({
    "your", "our", "the", "a", "an", "of", "for", "to", "from", "my", "this", "new",
    "and", "is", "has", "was", "been", "welcome", "thanks", "thank", "you", "with",
    "monthly", "annual", "yearly", "free", "trial", "payment", "order", "receipt",
    "invoice", "subscription", "membership", "plan", "account", "billing", "re", "fwd",
})


@dataclass(frozen=True)
class PatternTables:
    """All tunable data used by the candidate filter, with compiled regexes."""

    services: dict[str, tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_SERVICES))
    keywords: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_KEYWORDS))
    strong_keywords: frozenset[str] = DEFAULT_STRONG_KEYWORDS
    medium_keywords: frozenset[str] = DEFAULT_MEDIUM_KEYWORDS
    weak_categories: frozenset[str] = DEFAULT_WEAK_CATEGORIES
    exclusion_phrases: tuple[str, ...] = DEFAULT_EXCLUSION_PHRASES
    exclusion_combinations: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
        DEFAULT_EXCLUSION_COMBINATIONS
    )
    amount_patterns: tuple[str, ...] = DEFAULT_AMOUNT_PATTERNS
    payment_provider_pattern: str = DEFAULT_PAYMENT_PROVIDER_PATTERN
    dynamic_name_patterns: tuple[str, ...] = DEFAULT_DYNAMIC_NAME_PATTERNS
    generic_domains: frozenset[str] = DEFAULT_GENERIC_DOMAINS
    name_stopwords: frozenset[str] = DEFAULT_NAME_STOPWORDS

    compiled_services: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = field(
        init=False, repr=False, compare=False
    )
    compiled_amounts: tuple[re.Pattern[str], ...] = field(init=False, repr=False, compare=False)
    compiled_payment_provider: re.Pattern[str] = field(init=False, repr=False, compare=False)
    compiled_dynamic_names: tuple[re.Pattern[str], ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "compiled_services", tuple(
            (name, tuple(re.compile(p, re.IGNORECASE) for p in patterns))
            for name, patterns in self.services.items()
        ))
        object.__setattr__(self, "compiled_amounts", tuple(
            re.compile(p, re.IGNORECASE) for p in self.amount_patterns
        ))
        object.__setattr__(
            self, "compiled_payment_provider",
            re.compile(self.payment_provider_pattern, re.IGNORECASE),
        )
        object.__setattr__(self, "compiled_dynamic_names", tuple(
            re.compile(p, re.IGNORECASE) for p in self.dynamic_name_patterns
        ))

    @classmethod
    def default(cls) -> PatternTables:
        """Built-in tables, compiled once per process."""
        return _default_tables()


@lru_cache(maxsize=1)
def _default_tables() -> PatternTables:
    return PatternTables()


_FROZENSET_FIELDS = {
    "strong_keywords", "medium_keywords", "weak_categories", "generic_domains", "name_stopwords",
}
_TUPLE_FIELDS = {"exclusion_phrases", "amount_patterns", "dynamic_name_patterns"}


def load_pattern_tables(path: str | Path) -> PatternTables:
    """Overlay the JSON object at ``path`` onto the default tables.

    Keys are PatternTables field names; lists become tuples/frozensets.
    Raises ValueError for unknown keys or a non-object document.
    """
    data: Any = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Pattern file {path} must contain a JSON object")

    allowed = {f.name for f in fields(PatternTables) if f.init}
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown pattern table key(s) in {path}: {sorted(unknown)}")

    overrides: dict[str, Any] = {}
    for key, value in data.items():
        if key == "services":
            overrides[key] = {str(name): tuple(pats) for name, pats in value.items()}
        elif key == "keywords":
            overrides[key] = {str(k): str(cat) for k, cat in value.items()}
        elif key == "exclusion_combinations":
            overrides[key] = tuple((tuple(a), tuple(b)) for a, b in value)
        elif key in _FROZENSET_FIELDS:
            overrides[key] = frozenset(value)
        elif key in _TUPLE_FIELDS:
            overrides[key] = tuple(value)
        else:
            overrides[key] = value

    logger.info("Loaded pattern overrides from %s: %s", path, ", ".join(sorted(overrides)))
    return replace(PatternTables.default(), **overrides)
