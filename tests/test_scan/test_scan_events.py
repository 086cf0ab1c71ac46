"""Tests for the progress event payloads."""

from billdrop.processing.types import ParsedSubscription
from billdrop.scan.events import CandidateFoundEvent, CompleteEvent, ErrorEvent, StatusEvent
from billdrop.scan.types import AcceptedCandidate, Decision, ScanSummary


def test_status() -> None:
    assert StatusEvent("Fetching emails…", 5).to_dict() == {
        "type": "status", "message": "Fetching emails…", "percent": 5,
    }


def test_candidate() -> None:
    candidate = AcceptedCandidate("e1", ParsedSubscription(service_name="Netflix", amount=15.99), Decision.CREATE)
    data = CandidateFoundEvent(candidate, count=3).to_dict()
    assert data["type"] == "candidate"
    assert data["count"] == 3
    assert data["existing"] is False
    assert data["candidate"]["email_id"] == "e1"
    assert data["candidate"]["decision"] == "create"
    assert data["candidate"]["service_name"] == "Netflix"
    assert data["candidate"]["amount"] == 15.99


def test_complete_and_error() -> None:
    assert CompleteEvent(2, 10, "done").to_dict()["type"] == "complete"
    assert ErrorEvent("nope").to_dict() == {"type": "error", "message": "nope"}


def test_summary_accepted_only_lists_creates() -> None:
    parsed = ParsedSubscription(service_name="A", amount=1.0)
    summary = ScanSummary(candidates=[
        AcceptedCandidate("e1", parsed, Decision.CREATE),
        AcceptedCandidate("e2", parsed, Decision.SKIP_DUPLICATE),
        AcceptedCandidate("e3", parsed, Decision.SKIP_ZERO_AMOUNT),
    ])
    assert [c.email_id for c in summary.accepted] == ["e1"]
