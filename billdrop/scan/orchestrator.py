"""Scan orchestration — fetch, filter, extract in sub-batches, reconcile."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import date
from typing import Protocol, runtime_checkable

from billdrop.config import ScanConfig
from billdrop.filtering.filter import CandidateFilter, FilteredEmail
from billdrop.mail.types import AuthError, FetchError, MailboxProvider, RawMessage
from billdrop.processing.cascade import ExtractionCascade
from billdrop.processing.types import ParsedSubscription
from billdrop.scan.events import (
    CandidateFoundEvent,
    CompleteEvent,
    ErrorEvent,
    EventCallback,
    ScanEvent,
    StatusEvent,
)
from billdrop.scan.reconcile import Known, dedup_key, is_trial, reconcile, resolve_next_billing_date
from billdrop.scan.types import AcceptedCandidate, Decision, ScanState, ScanSummary
from billdrop.storage.models import NewSubscription, Subscription

logger = logging.getLogger(__name__)

#: Body length kept on candidates handed out for manual selection.
CANDIDATE_BODY_CHAR_LIMIT = 3_000
_FETCH_RETRY_DELAY_SECONDS = 1.0

# Progress percentages reported along the way.
_PCT_FETCHING = 5
_PCT_FETCHED = 10
_PCT_FILTERED = 25
_PCT_EXTRACT_START = 30
_PCT_EXTRACT_END = 95
_PCT_DONE = 100


# ── Store interface ────────────────────────────────────────────────────────────


@runtime_checkable
class SubscriptionStore(Protocol):
    """Persistence the orchestrator writes accepted candidates to."""

    def find_existing(self, user_id: str, dedup_key: str) -> Subscription | None: ...

    def list_subscriptions(self, user_id: str) -> list[Subscription]: ...

    def create_subscription(self, fields: NewSubscription) -> Subscription: ...


# ── Orchestrator ───────────────────────────────────────────────────────────────


class ScanOrchestrator:
    """Drives one scan: mailbox → filter → extraction cascade → reconciliation.

    Only mailbox failures end a run early: AuthError is re-raised after an
    error event, and a FetchError that survives one retry yields an empty
    summary. Everything past the fetch is contained per email or per
    sub-batch, so a run always returns a ScanSummary.

    Sub-batches run one after another. ``stop()`` and the time budget are
    checked between them; work already done is kept.

    Usage::

        orchestrator = ScanOrchestrator(config, build_cascade(config), store=db, user_id=email)
        summary = await orchestrator.run_scan(mailbox, credential)
    """

    def __init__(
        self,
        config: ScanConfig,
        cascade: ExtractionCascade,
        store: SubscriptionStore | None = None,
        user_id: str = "",
        candidate_filter: CandidateFilter | None = None,
        on_event: EventCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
        today: Callable[[], date] = date.today,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._cascade = cascade
        self._store = store
        self._user_id = user_id
        self._filter = candidate_filter or CandidateFilter()
        self._on_event = on_event
        self._clock = clock
        self._today = today
        self._sleep = sleep
        self._stop_event = asyncio.Event()
        self._state = ScanState.IDLE

    @property
    def state(self) -> ScanState:
        return self._state

    def stop(self) -> None:
        """Ask the run to stop at the next sub-batch boundary."""
        logger.info("Stop requested; finishing current sub-batch")
        self._stop_event.set()

    # ── Full run ───────────────────────────────────────────────────────────────

    async def run_scan(
        self,
        mailbox: MailboxProvider,
        credential: str,
        existing: Sequence[Known] | None = None,
    ) -> ScanSummary:
        """Run fetch → filter → extract → reconcile and return the summary.

        Raises:
            AuthError: the mailbox rejected the credential.
        """
        self._stop_event.clear()
        messages = await self._fetch(mailbox, credential)
        if messages is None:
            return ScanSummary()

        self._set_state(ScanState.FILTERING)
        filtered = self._filter.filter(messages)
        self._emit(StatusEvent(f"Found {len(filtered)} potential subscription emails", _PCT_FILTERED))

        selected = filtered[: self._config.max_process]
        if len(filtered) > len(selected):
            logger.info("Processing %d of %d filtered emails", len(selected), len(filtered))

        summary = ScanSummary(total_fetched=len(messages), total_filtered=len(filtered))
        await self._extract_and_reconcile(selected, existing, summary)
        self._finish(summary, scanned=len(selected))
        return summary

    # ── Two-phase mode ─────────────────────────────────────────────────────────

    async def list_candidates(self, mailbox: MailboxProvider, credential: str) -> list[FilteredEmail]:
        """Phase 1: fetch and filter only; bodies trimmed for transport.

        Raises:
            AuthError: the mailbox rejected the credential.
        """
        messages = await self._fetch(mailbox, credential)
        if messages is None:
            return []
        self._set_state(ScanState.FILTERING)
        filtered = self._filter.filter(messages)
        self._emit(StatusEvent(f"Found {len(filtered)} potential subscription emails", _PCT_DONE))
        self._set_state(ScanState.COMPLETE)
        return [
            dataclasses.replace(email, body=email.body[:CANDIDATE_BODY_CHAR_LIMIT])
            for email in filtered
        ]

    async def process_selected(
        self,
        emails: Sequence[FilteredEmail],
        existing: Sequence[Known] | None = None,
    ) -> ScanSummary:
        """Phase 2: extract and reconcile caller-chosen candidates."""
        self._stop_event.clear()
        limit = self._config.max_selected_per_request
        if len(emails) > limit:
            logger.warning("Received %d selected emails; processing the first %d", len(emails), limit)
        selected = list(emails[:limit])

        summary = ScanSummary(total_filtered=len(emails))
        await self._extract_and_reconcile(selected, existing, summary)
        self._finish(summary, scanned=len(selected))
        return summary

    # ── Steps ──────────────────────────────────────────────────────────────────

    async def _fetch(self, mailbox: MailboxProvider, credential: str) -> list[RawMessage] | None:
        """Fetch the lookback window; None when the mailbox stays unreachable."""
        self._set_state(ScanState.FETCHING)
        self._emit(StatusEvent("Fetching emails…", _PCT_FETCHING))
        for attempt in (1, 2):
            try:
                messages = await mailbox.fetch_recent_messages(
                    credential, self._config.lookback_days, self._config.max_fetch
                )
                break
            except AuthError as exc:
                logger.error("Mailbox authentication failed: %s", exc)
                self._set_state(ScanState.ERROR)
                self._emit(ErrorEvent(f"Mailbox access failed: {exc}. Please reconnect your account."))
                raise
            except FetchError as exc:
                if attempt == 2:
                    logger.error("Fetch failed after retry: %s", exc)
                    self._set_state(ScanState.ERROR)
                    self._emit(ErrorEvent(f"Could not fetch emails: {exc}"))
                    return None
                logger.warning("Fetch failed (%s); retrying once", exc)
                await self._sleep(_FETCH_RETRY_DELAY_SECONDS)

        self._emit(StatusEvent(f"Fetched {len(messages)} emails", _PCT_FETCHED))
        return messages

    async def _extract_and_reconcile(
        self,
        emails: Sequence[FilteredEmail],
        existing: Sequence[Known] | None,
        summary: ScanSummary,
    ) -> None:
        known = self._known_subscriptions(existing, summary)
        size = max(self._config.sub_batch_size, 1)
        batches = [list(emails[i : i + size]) for i in range(0, len(emails), size)]
        started = self._clock()

        for index, batch in enumerate(batches):
            if self._stop_event.is_set():
                logger.info("Scan stopped before sub-batch %d of %d", index + 1, len(batches))
                summary.cancelled = True
                break
            if self._clock() - started >= self._config.time_budget_seconds:
                logger.warning(
                    "Time budget of %.0fs spent; skipping %d remaining sub-batch(es)",
                    self._config.time_budget_seconds,
                    len(batches) - index,
                )
                summary.cancelled = True
                break

            self._set_state(ScanState.EXTRACTING)
            first = index * size + 1
            percent = _PCT_EXTRACT_START + (_PCT_EXTRACT_END - _PCT_EXTRACT_START) * index // len(batches)
            self._emit(
                StatusEvent(f"Analyzing emails {first}-{first + len(batch) - 1} of {len(emails)}", percent)
            )

            try:
                outcomes = await self._cascade.extract(batch)
            except Exception as exc:  # noqa: BLE001
                logger.error("Sub-batch %d failed: %s", index + 1, exc, exc_info=True)
                summary.errors.append(f"sub-batch {index + 1}: {exc}")
                continue

            for outcome in outcomes:
                if outcome.error:
                    summary.errors.append(f"{outcome.email_id}: {outcome.error}")
                    continue
                if outcome.parsed is None:
                    continue
                try:
                    self._accept(outcome.email_id, outcome.parsed, known, summary)
                except Exception as exc:  # noqa: BLE001
                    logger.error("Failed to record candidate from email %s: %s", outcome.email_id, exc, exc_info=True)
                    summary.errors.append(f"{outcome.email_id}: {exc}")

    def _known_subscriptions(self, existing: Sequence[Known] | None, summary: ScanSummary) -> list[Known]:
        if existing is not None:
            return list(existing)
        if self._store is None:
            return []
        try:
            return list(self._store.list_subscriptions(self._user_id))
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not load existing subscriptions: %s", exc, exc_info=True)
            summary.errors.append(f"existing subscriptions: {exc}")
            return []

    def _accept(
        self,
        email_id: str,
        parsed: ParsedSubscription,
        known: list[Known],
        summary: ScanSummary,
    ) -> None:
        """Decide what happens to one parsed candidate and record it."""
        key = dedup_key(parsed.service_name)
        match = reconcile(parsed, known).match
        if match is None and self._store is not None:
            match = self._store.find_existing(self._user_id, key)

        if match is not None:
            candidate = AcceptedCandidate(email_id, parsed, Decision.SKIP_DUPLICATE, existing=match)
            summary.total_duplicates += 1
            summary.candidates.append(candidate)
            logger.info("Skipping %r from email %s: already known", parsed.service_name, email_id)
            self._emit(CandidateFoundEvent(candidate, count=summary.total_accepted, existing=True))
            return

        if parsed.amount == 0 and not is_trial(parsed):
            summary.total_skipped_zero += 1
            summary.candidates.append(AcceptedCandidate(email_id, parsed, Decision.SKIP_ZERO_AMOUNT))
            logger.info("Skipping %r from email %s: zero amount", parsed.service_name, email_id)
            return

        fields = NewSubscription(
            user_id=self._user_id,
            service_name=parsed.service_name,
            service_slug=key,
            description=parsed.description,
            amount=parsed.amount,
            currency=parsed.currency,
            billing_cycle=parsed.billing_cycle.value,
            next_billing_date=resolve_next_billing_date(parsed, self._today()),
            cancellation_url=parsed.cancellation_url,
            confidence=parsed.confidence,
            source_email_id=email_id,
            confirmed=False,
        )
        record: Known = self._store.create_subscription(fields) if self._store is not None else fields
        known.append(record)

        candidate = AcceptedCandidate(email_id, parsed, Decision.CREATE, subscription=record)
        summary.total_accepted += 1
        summary.candidates.append(candidate)
        logger.info(
            "Accepted %r %.2f %s/%s from email %s",
            parsed.service_name,
            parsed.amount,
            parsed.currency,
            parsed.billing_cycle.value,
            email_id,
        )
        self._emit(CandidateFoundEvent(candidate, count=summary.total_accepted))

    def _finish(self, summary: ScanSummary, scanned: int) -> None:
        self._set_state(ScanState.COMPLETE)
        message = f"Found {summary.total_accepted} new subscription(s)"
        if summary.cancelled:
            message += " (stopped early)"
        self._emit(CompleteEvent(total_found=summary.total_accepted, total_scanned=scanned, message=message))
        logger.info(
            "Scan complete: fetched=%d filtered=%d accepted=%d duplicates=%d zero=%d errors=%d",
            summary.total_fetched,
            summary.total_filtered,
            summary.total_accepted,
            summary.total_duplicates,
            summary.total_skipped_zero,
            len(summary.errors),
        )

    # ── Helpers ────────────────────────────────────────────────────────────────

    def _set_state(self, state: ScanState) -> None:
        if state != self._state:
            logger.debug("Scan state %s → %s", self._state.value, state.value)
        self._state = state

    def _emit(self, event: ScanEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception as exc:  # noqa: BLE001
            logger.error("Event callback failed: %s", exc)
