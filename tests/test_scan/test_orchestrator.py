"""Tests for ScanOrchestrator — mailbox and cascade are faked."""

import dataclasses
from datetime import date
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from billdrop.config import ScanConfig
from billdrop.filtering.filter import FilteredEmail
from billdrop.mail.sample import SampleMailbox
from billdrop.mail.types import AuthError, FetchError, RawMessage
from billdrop.processing.cascade import ExtractionOutcome, build_cascade
from billdrop.processing.types import BillingCycle, ParsedSubscription
from billdrop.scan.events import CandidateFoundEvent, CompleteEvent, ErrorEvent, ScanEvent, StatusEvent
from billdrop.scan.orchestrator import CANDIDATE_BODY_CHAR_LIMIT, ScanOrchestrator, SubscriptionStore
from billdrop.scan.types import Decision, ScanState
from billdrop.storage.db import SubscriptionDatabase
from billdrop.storage.models import NewSubscription


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_email(id: str, hint: str | None = None) -> FilteredEmail:
    return FilteredEmail(
        id=id,
        subject=f"Receipt {id}",
        sender="billing@example.com",
        body="Thanks for your payment.",
        extracted_service_name=hint,
        confidence=0.5,
    )


def parsed(name: str, amount: float = 9.99, **kwargs: object) -> ParsedSubscription:
    return ParsedSubscription(service_name=name, amount=amount, **kwargs)  # type: ignore[arg-type]


class ScriptedCascade:
    """Stands in for ExtractionCascade: answers from a fixed id → result map."""

    def __init__(self, results: dict[str, ParsedSubscription | Exception] | None = None) -> None:
        self.results = results or {}
        self.calls: list[list[str]] = []
        self.fail_calls: set[int] = set()

    async def extract(self, emails: list[FilteredEmail]) -> list[ExtractionOutcome]:
        self.calls.append([e.id for e in emails])
        if len(self.calls) in self.fail_calls:
            raise RuntimeError("cascade exploded")
        outcomes = []
        for email in emails:
            result = self.results.get(email.id)
            if isinstance(result, Exception):
                outcomes.append(ExtractionOutcome(email_id=email.id, error=str(result)))
            else:
                outcomes.append(ExtractionOutcome(email_id=email.id, parsed=result, stage="single"))
        return outcomes


def make_mailbox(*results: object) -> MagicMock:
    mailbox = MagicMock()
    mailbox.fetch_recent_messages = AsyncMock(side_effect=list(results))
    return mailbox


def netflix_raw(id: str = "m1") -> RawMessage:
    return RawMessage(
        id=id,
        subject="Your Netflix subscription receipt",
        sender="Netflix <info@netflix.com>",
        body="Amount charged: $15.99",
    )


@pytest.fixture
def events() -> list[ScanEvent]:
    return []


def make_orchestrator(
    config: ScanConfig,
    cascade: object,
    events: list[ScanEvent] | None = None,
    **kwargs: object,
) -> ScanOrchestrator:
    return ScanOrchestrator(
        config,
        cascade,  # type: ignore[arg-type]
        on_event=events.append if events is not None else None,
        sleep=AsyncMock(),
        **kwargs,  # type: ignore[arg-type]
    )


# ── End to end ─────────────────────────────────────────────────────────────────


class TestRunScan:
    async def test_sample_mailbox_regex_only(self, scan_config: ScanConfig, events: list[ScanEvent]) -> None:
        orchestrator = make_orchestrator(scan_config, build_cascade(scan_config), events)
        summary = await orchestrator.run_scan(SampleMailbox(), credential="")

        assert summary.total_fetched == 6
        assert summary.total_filtered == 5
        assert summary.total_accepted == 5
        assert summary.errors == []
        assert {c.parsed.service_name for c in summary.accepted} == {
            "Netflix", "Spotify", "Adobe", "OpenAI", "Acmewidgets",
        }
        assert orchestrator.state == ScanState.COMPLETE

    async def test_created_records_never_confirmed(self, scan_config: ScanConfig) -> None:
        orchestrator = make_orchestrator(scan_config, build_cascade(scan_config))
        summary = await orchestrator.run_scan(SampleMailbox(), credential="")
        assert summary.accepted
        for candidate in summary.accepted:
            assert isinstance(candidate.subscription, NewSubscription)
            assert candidate.subscription.confirmed is False

    async def test_event_order(self, scan_config: ScanConfig, events: list[ScanEvent]) -> None:
        orchestrator = make_orchestrator(scan_config, build_cascade(scan_config), events)
        await orchestrator.run_scan(SampleMailbox(), credential="")

        assert isinstance(events[0], StatusEvent) and events[0].percent == 5
        assert isinstance(events[-1], CompleteEvent)
        assert events[-1].total_found == 5
        percents = [e.percent for e in events if isinstance(e, StatusEvent)]
        assert percents == sorted(percents)
        assert sum(isinstance(e, CandidateFoundEvent) for e in events) == 5

    async def test_max_process_caps_extraction(self, scan_config: ScanConfig) -> None:
        config = dataclasses.replace(scan_config, max_process=2)
        cascade = ScriptedCascade()
        summary = await make_orchestrator(config, cascade).run_scan(SampleMailbox(), credential="")
        assert summary.total_filtered == 5
        assert sum(len(call) for call in cascade.calls) == 2

    async def test_callback_failure_ignored(self, scan_config: ScanConfig) -> None:
        def explode(event: ScanEvent) -> None:
            raise RuntimeError("observer broke")

        orchestrator = ScanOrchestrator(scan_config, build_cascade(scan_config), on_event=explode)
        summary = await orchestrator.run_scan(SampleMailbox(), credential="")
        assert summary.total_accepted == 5


# ── Mailbox failures ───────────────────────────────────────────────────────────


class TestFetch:
    async def test_transient_failure_retried_once(self, scan_config: ScanConfig) -> None:
        sleep = AsyncMock()
        mailbox = make_mailbox(FetchError("timeout"), [netflix_raw()])
        orchestrator = ScanOrchestrator(scan_config, build_cascade(scan_config), sleep=sleep)

        summary = await orchestrator.run_scan(mailbox, credential="token")
        assert summary.total_fetched == 1
        assert summary.total_accepted == 1
        assert mailbox.fetch_recent_messages.await_count == 2
        sleep.assert_awaited_once_with(1.0)

    async def test_passes_window_to_mailbox(self, scan_config: ScanConfig) -> None:
        mailbox = make_mailbox([])
        await make_orchestrator(scan_config, ScriptedCascade()).run_scan(mailbox, credential="token")
        mailbox.fetch_recent_messages.assert_awaited_once_with(
            "token", scan_config.lookback_days, scan_config.max_fetch
        )

    async def test_second_failure_gives_empty_summary(
        self, scan_config: ScanConfig, events: list[ScanEvent]
    ) -> None:
        mailbox = make_mailbox(FetchError("timeout"), FetchError("timeout"))
        orchestrator = make_orchestrator(scan_config, ScriptedCascade(), events)

        summary = await orchestrator.run_scan(mailbox, credential="token")
        assert summary.total_fetched == 0
        assert summary.candidates == []
        assert orchestrator.state == ScanState.ERROR
        assert isinstance(events[-1], ErrorEvent)

    async def test_auth_error_propagates(self, scan_config: ScanConfig, events: list[ScanEvent]) -> None:
        mailbox = make_mailbox(AuthError("token expired"))
        orchestrator = make_orchestrator(scan_config, ScriptedCascade(), events)

        with pytest.raises(AuthError):
            await orchestrator.run_scan(mailbox, credential="token")
        assert orchestrator.state == ScanState.ERROR
        assert mailbox.fetch_recent_messages.await_count == 1
        [error] = [e for e in events if isinstance(e, ErrorEvent)]
        assert "Please reconnect your account" in error.message


# ── Decisions ──────────────────────────────────────────────────────────────────


class TestDecisions:
    async def test_zero_amount_skipped_unless_trial(self, scan_config: ScanConfig) -> None:
        cascade = ScriptedCascade({
            "e1": parsed("SomeApp", 0.0),
            "e2": parsed("TrialApp", 0.0, description="Free trial"),
        })
        summary = await make_orchestrator(scan_config, cascade).process_selected(
            [make_email("e1"), make_email("e2")]
        )
        decisions = {c.parsed.service_name: c.decision for c in summary.candidates}
        assert decisions == {"SomeApp": Decision.SKIP_ZERO_AMOUNT, "TrialApp": Decision.CREATE}
        assert summary.total_skipped_zero == 1
        assert summary.total_accepted == 1

    async def test_duplicate_of_existing(self, scan_config: ScanConfig, events: list[ScanEvent]) -> None:
        existing = NewSubscription(
            user_id="u1", service_name="Netflix", service_slug="netflix",
            amount=15.99, currency="USD", billing_cycle="monthly", next_billing_date=None,
        )
        cascade = ScriptedCascade({"e1": parsed("Netflix", 15.99)})
        summary = await make_orchestrator(scan_config, cascade, events).process_selected(
            [make_email("e1")], existing=[existing]
        )
        [candidate] = summary.candidates
        assert candidate.decision == Decision.SKIP_DUPLICATE
        assert candidate.existing is existing
        assert summary.total_duplicates == 1
        [found] = [e for e in events if isinstance(e, CandidateFoundEvent)]
        assert found.existing is True

    async def test_duplicates_within_one_run(self, scan_config: ScanConfig) -> None:
        cascade = ScriptedCascade({"e1": parsed("Netflix"), "e2": parsed("netflix")})
        summary = await make_orchestrator(scan_config, cascade).process_selected(
            [make_email("e1"), make_email("e2")]
        )
        assert summary.total_accepted == 1
        assert summary.total_duplicates == 1

    async def test_default_next_billing_date(self, scan_config: ScanConfig) -> None:
        cascade = ScriptedCascade({"e1": parsed("Gym", 30.0)})
        orchestrator = make_orchestrator(scan_config, cascade, today=lambda: date(2026, 1, 31))
        [candidate] = (await orchestrator.process_selected([make_email("e1")])).accepted
        assert candidate.subscription is not None
        assert candidate.subscription.next_billing_date == date(2026, 2, 28)

    async def test_stated_next_billing_date_kept(self, scan_config: ScanConfig) -> None:
        cascade = ScriptedCascade({
            "e1": parsed("Gym", 30.0, billing_cycle=BillingCycle.YEARLY, next_billing_date=date(2026, 6, 1)),
        })
        [candidate] = (await make_orchestrator(scan_config, cascade).process_selected([make_email("e1")])).accepted
        assert candidate.subscription is not None
        assert candidate.subscription.next_billing_date == date(2026, 6, 1)

    async def test_nothing_found_is_not_an_error(self, scan_config: ScanConfig) -> None:
        summary = await make_orchestrator(scan_config, ScriptedCascade()).process_selected([make_email("e1")])
        assert summary.candidates == []
        assert summary.errors == []


# ── Sub-batches, stop and budget ───────────────────────────────────────────────


class TestSubBatches:
    async def test_sub_batches_sequential(self, scan_config: ScanConfig) -> None:
        config = dataclasses.replace(scan_config, sub_batch_size=2)
        cascade = ScriptedCascade()
        await make_orchestrator(config, cascade).process_selected([make_email(f"e{i}") for i in range(5)])
        assert cascade.calls == [["e0", "e1"], ["e2", "e3"], ["e4"]]

    async def test_failed_sub_batch_contained(self, scan_config: ScanConfig) -> None:
        config = dataclasses.replace(scan_config, sub_batch_size=1)
        cascade = ScriptedCascade({"e0": parsed("First"), "e1": parsed("Second")})
        cascade.fail_calls = {1}
        summary = await make_orchestrator(config, cascade).process_selected([make_email("e0"), make_email("e1")])

        assert [c.parsed.service_name for c in summary.accepted] == ["Second"]
        assert len(summary.errors) == 1
        assert "cascade exploded" in summary.errors[0]

    async def test_email_error_recorded(self, scan_config: ScanConfig) -> None:
        cascade = ScriptedCascade({"e0": RuntimeError("boom"), "e1": parsed("Fine")})
        summary = await make_orchestrator(scan_config, cascade).process_selected([make_email("e0"), make_email("e1")])
        assert summary.errors == ["e0: boom"]
        assert summary.total_accepted == 1

    async def test_stop_at_boundary(self, scan_config: ScanConfig) -> None:
        config = dataclasses.replace(scan_config, sub_batch_size=1)
        cascade = ScriptedCascade({f"e{i}": parsed(f"Service {i}") for i in range(3)})
        orchestrator = make_orchestrator(config, cascade)

        def stop_on_first(event: ScanEvent) -> None:
            if isinstance(event, CandidateFoundEvent):
                orchestrator.stop()

        orchestrator._on_event = stop_on_first
        summary = await orchestrator.process_selected([make_email(f"e{i}") for i in range(3)])

        assert summary.cancelled is True
        assert summary.total_accepted == 1
        assert cascade.calls == [["e0"]]

    async def test_time_budget(self, scan_config: ScanConfig, events: list[ScanEvent]) -> None:
        config = dataclasses.replace(scan_config, sub_batch_size=1, time_budget_seconds=55.0)
        ticks = iter([0.0, 0.0, 60.0, 60.0])
        cascade = ScriptedCascade({"e0": parsed("A"), "e1": parsed("B")})
        orchestrator = make_orchestrator(config, cascade, events, clock=lambda: next(ticks))

        summary = await orchestrator.process_selected([make_email("e0"), make_email("e1")])
        assert summary.cancelled is True
        assert cascade.calls == [["e0"]]
        assert summary.total_accepted == 1
        assert isinstance(events[-1], CompleteEvent)
        assert "stopped early" in events[-1].message


# ── Two-phase mode ─────────────────────────────────────────────────────────────


class TestTwoPhase:
    async def test_list_candidates_trims_bodies(self, scan_config: ScanConfig) -> None:
        raw = dataclasses.replace(netflix_raw(), body="Amount charged: $15.99 " + "x" * 10_000)
        orchestrator = make_orchestrator(scan_config, ScriptedCascade())

        [candidate] = await orchestrator.list_candidates(make_mailbox([raw]), credential="")
        assert len(candidate.body) == CANDIDATE_BODY_CHAR_LIMIT
        assert candidate.extracted_service_name == "Netflix"

    async def test_list_candidates_does_not_extract(self, scan_config: ScanConfig) -> None:
        cascade = ScriptedCascade()
        candidates = await make_orchestrator(scan_config, cascade).list_candidates(SampleMailbox(), credential="")
        assert len(candidates) == 5
        assert cascade.calls == []

    async def test_process_selected_cap(self, scan_config: ScanConfig) -> None:
        config = dataclasses.replace(scan_config, max_selected_per_request=2)
        cascade = ScriptedCascade()
        summary = await make_orchestrator(config, cascade).process_selected(
            [make_email(f"e{i}") for i in range(4)]
        )
        assert summary.total_filtered == 4
        assert [i for call in cascade.calls for i in call] == ["e0", "e1"]


# ── Persistence ────────────────────────────────────────────────────────────────


class TestWithStore:
    def test_database_satisfies_store_protocol(self, tmp_path: Path) -> None:
        db = SubscriptionDatabase(tmp_path / "t.db")
        assert isinstance(db, SubscriptionStore)
        db.close()

    async def test_second_run_finds_duplicates(self, scan_config: ScanConfig, tmp_path: Path) -> None:
        db = SubscriptionDatabase(tmp_path / "t.db")
        cascade = build_cascade(scan_config)

        first = await make_orchestrator(scan_config, cascade, store=db, user_id="me").run_scan(
            SampleMailbox(), credential=""
        )
        second = await make_orchestrator(scan_config, cascade, store=db, user_id="me").run_scan(
            SampleMailbox(), credential=""
        )

        assert first.total_accepted == 5
        assert second.total_accepted == 0
        assert second.total_duplicates == 5
        stored = db.list_subscriptions("me")
        assert len(stored) == 5
        assert not any(s.confirmed for s in stored)
        db.close()

    async def test_store_lookup_used_when_not_listed(self, scan_config: ScanConfig) -> None:
        store = MagicMock()
        store.list_subscriptions.return_value = []
        store.find_existing.return_value = MagicMock(service_name="Netflix")
        cascade = ScriptedCascade({"e1": parsed("Netflix")})

        summary = await make_orchestrator(scan_config, cascade, store=store, user_id="me").process_selected(
            [make_email("e1")]
        )
        store.find_existing.assert_called_once_with("me", "netflix")
        store.create_subscription.assert_not_called()
        assert summary.total_duplicates == 1
