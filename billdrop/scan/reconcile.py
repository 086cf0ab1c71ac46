"""Dedup and business rules applied to parsed candidates. All pure functions."""

from __future__ import annotations

import calendar
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum

from billdrop.processing.types import BillingCycle, ParsedSubscription
from billdrop.storage.models import NewSubscription, Subscription

_WHITESPACE = re.compile(r"\s+")

Known = Subscription | NewSubscription


class ReconcileKind(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class Reconciliation:
    kind: ReconcileKind
    match: Known | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.kind == ReconcileKind.DUPLICATE


def dedup_key(name: str) -> str:
    """'  Disney  Plus ' → 'disney-plus'."""
    return _WHITESPACE.sub("-", name.strip().lower())


def _cents(amount: float) -> int:
    return round(amount * 100)


def reconcile(candidate: ParsedSubscription, existing: Iterable[Known]) -> Reconciliation:
    """Classify ``candidate`` against known subscriptions.

    Duplicate when a known record has the same dedup key, or its name contains
    the candidate's name (case-insensitive) and the amounts match to the cent.
    """
    key = dedup_key(candidate.service_name)
    name = candidate.service_name.strip().lower()
    for known in existing:
        if known.service_slug == key or dedup_key(known.service_name) == key:
            return Reconciliation(ReconcileKind.DUPLICATE, known)
        if name and name in known.service_name.lower() and _cents(known.amount) == _cents(candidate.amount):
            return Reconciliation(ReconcileKind.DUPLICATE, known)
    return Reconciliation(ReconcileKind.NEW)


def is_trial(parsed: ParsedSubscription) -> bool:
    """True if the description or service name mentions a trial."""
    return "trial" in (parsed.description or "").lower() or "trial" in parsed.service_name.lower()


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic, clamping the day (Jan 31 + 1 → Feb 28/29)."""
    index = start.month - 1 + months
    year, month = start.year + index // 12, index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def default_next_billing_date(cycle: BillingCycle, today: date) -> date:
    """``today`` plus one billing cycle."""
    if cycle == BillingCycle.WEEKLY:
        return today + timedelta(weeks=1)
    if cycle == BillingCycle.YEARLY:
        return add_months(today, 12)
    return add_months(today, 1)


def resolve_next_billing_date(parsed: ParsedSubscription, today: date) -> date:
    """The stated next billing date, or one cycle from ``today`` when none was found."""
    return parsed.next_billing_date or default_next_billing_date(parsed.billing_cycle, today)
