"""Progress events pushed to an optional observer while a scan runs."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from billdrop.scan.types import AcceptedCandidate


@dataclass(frozen=True)
class StatusEvent:
    message: str
    percent: int

    def to_dict(self) -> dict[str, Any]:
        return {"type": "status", "message": self.message, "percent": self.percent}


@dataclass(frozen=True)
class CandidateFoundEvent:
    """A candidate was created, or matched an existing record (``existing=True``)."""

    candidate: AcceptedCandidate
    count: int
    existing: bool = False

    def to_dict(self) -> dict[str, Any]:
        parsed = self.candidate.parsed
        return {
            "type": "candidate",
            "candidate": {
                "email_id": self.candidate.email_id,
                "decision": self.candidate.decision.value,
                **parsed.to_dict(),
            },
            "count": self.count,
            "existing": self.existing,
        }


@dataclass(frozen=True)
class CompleteEvent:
    total_found: int
    total_scanned: int
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "complete",
            "total_found": self.total_found,
            "total_scanned": self.total_scanned,
            "message": self.message,
        }


@dataclass(frozen=True)
class ErrorEvent:
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "error", "message": self.message}


ScanEvent = StatusEvent | CandidateFoundEvent | CompleteEvent | ErrorEvent
EventCallback = Callable[[ScanEvent], None]
