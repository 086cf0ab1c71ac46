"""Types shared by the scan orchestrator and its progress events."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from billdrop.processing.types import ParsedSubscription
from billdrop.storage.models import NewSubscription, Subscription


class ScanState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING = "filtering"
    EXTRACTING = "extracting"
    COMPLETE = "complete"
    ERROR = "error"


class Decision(str, Enum):
    """What the orchestrator did with a parsed candidate."""

    CREATE = "create"
    SKIP_DUPLICATE = "skip_duplicate"
    SKIP_ZERO_AMOUNT = "skip_zero_amount"


@dataclass(frozen=True)
class AcceptedCandidate:
    """A parsed candidate paired with its decision.

    ``existing`` is the known subscription it duplicates (skip_duplicate only).
    ``subscription`` is the created record; for a create without a store
    (dry runs) it is the unsaved ``NewSubscription``.
    """

    email_id: str
    parsed: ParsedSubscription
    decision: Decision
    existing: Subscription | NewSubscription | None = None
    subscription: Subscription | NewSubscription | None = None


@dataclass
class ScanSummary:
    """Totals for one run. Always produced, possibly empty."""

    total_fetched: int = 0
    total_filtered: int = 0
    total_accepted: int = 0
    total_duplicates: int = 0
    total_skipped_zero: int = 0
    errors: list[str] = field(default_factory=list)
    cancelled: bool = False
    candidates: list[AcceptedCandidate] = field(default_factory=list)

    @property
    def accepted(self) -> list[AcceptedCandidate]:
        return [c for c in self.candidates if c.decision == Decision.CREATE]
