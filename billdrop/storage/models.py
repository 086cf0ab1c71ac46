"""SQLite table schemas and typed row types for the storage layer."""

from dataclasses import dataclass
from datetime import date


# ── DDL ────────────────────────────────────────────────────────────────────────

_CREATE_SUBSCRIPTIONS = """
CREATE TABLE IF NOT EXISTS subscriptions (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id           TEXT NOT NULL,
    service_name      TEXT NOT NULL,
    service_slug      TEXT NOT NULL,
    description       TEXT,
    amount            REAL NOT NULL,
    currency          TEXT NOT NULL DEFAULT 'USD',
    billing_cycle     TEXT NOT NULL DEFAULT 'monthly',
    next_billing_date TEXT,
    cancellation_url  TEXT,
    confidence        REAL NOT NULL DEFAULT 0.0,
    source_email_id   TEXT,
    confirmed         INTEGER NOT NULL DEFAULT 0,
    dismissed         INTEGER NOT NULL DEFAULT 0,
    tracked           INTEGER NOT NULL DEFAULT 1,
    created_at        TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (user_id, service_slug)
)
"""

_CREATE_SCANS = """
CREATE TABLE IF NOT EXISTS scans (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id          TEXT NOT NULL,
    total_fetched    INTEGER NOT NULL DEFAULT 0,
    total_filtered   INTEGER NOT NULL DEFAULT 0,
    total_accepted   INTEGER NOT NULL DEFAULT 0,
    total_duplicates INTEGER NOT NULL DEFAULT 0,
    error_count      INTEGER NOT NULL DEFAULT 0,
    cancelled        INTEGER NOT NULL DEFAULT 0,
    scanned_at       TEXT NOT NULL DEFAULT (datetime('now'))
)
"""

#: All DDL statements in creation order.
ALL_TABLES: list[str] = [
    _CREATE_SUBSCRIPTIONS,
    _CREATE_SCANS,
]


# ── Row types ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class NewSubscription:
    """Fields for a subscription about to be created. Never auto-confirmed."""

    user_id: str
    service_name: str
    service_slug: str
    amount: float
    currency: str
    billing_cycle: str
    next_billing_date: date | None
    description: str | None = None
    cancellation_url: str | None = None
    confidence: float = 0.0
    source_email_id: str | None = None
    confirmed: bool = False


@dataclass(frozen=True)
class Subscription:
    """A row from the subscriptions table."""

    id: int
    user_id: str
    service_name: str
    service_slug: str
    description: str | None
    amount: float
    currency: str
    billing_cycle: str
    next_billing_date: str | None
    cancellation_url: str | None
    confidence: float
    source_email_id: str | None
    confirmed: bool
    dismissed: bool
    tracked: bool
    created_at: str


@dataclass(frozen=True)
class ScanRecord:
    """A row from the scans table."""

    id: int
    user_id: str
    total_fetched: int
    total_filtered: int
    total_accepted: int
    total_duplicates: int
    error_count: int
    cancelled: bool
    scanned_at: str
