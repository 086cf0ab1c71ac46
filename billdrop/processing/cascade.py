"""Extraction cascade — batched model call, then single-email model call, then regex."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from billdrop.filtering.filter import FilteredEmail
from billdrop.processing.extractor import SubscriptionExtractor
from billdrop.processing.fallback import fallback_extract
from billdrop.processing.ratelimit import RateLimiter
from billdrop.processing.types import ParsedSubscription

if TYPE_CHECKING:
    from billdrop.config import ScanConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionOutcome:
    """Result of running the cascade on one email.

    ``parsed`` is set on success together with the ``stage`` that produced it;
    ``error`` carries the message when the email's extraction blew up.
    A None ``parsed`` with no error simply means nothing was found.
    """

    email_id: str
    parsed: ParsedSubscription | None = None
    stage: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.parsed is not None


class ExtractionStrategy(Protocol):
    """One per-email stage of the cascade."""

    name: str
    ai_backed: bool

    async def try_extract(self, email: FilteredEmail) -> ParsedSubscription | None: ...


# ── Strategies ─────────────────────────────────────────────────────────────────


class BatchAIStrategy:
    """Stage A: one model call for a whole sub-batch."""

    name = "batch"
    ai_backed = True

    def __init__(self, extractor: SubscriptionExtractor) -> None:
        self._extractor = extractor

    async def extract_batch(
        self, emails: Sequence[FilteredEmail]
    ) -> dict[str, ParsedSubscription | None] | None:
        return await self._extractor.extract_batch(emails)


class SingleAIStrategy:
    """Stage B: one model call per email."""

    name = "single"
    ai_backed = True

    def __init__(self, extractor: SubscriptionExtractor) -> None:
        self._extractor = extractor

    async def try_extract(self, email: FilteredEmail) -> ParsedSubscription | None:
        return await self._extractor.extract_one(email)


class RegexStrategy:
    """Stage C: regex extraction, only for emails the filter could name."""

    name = "regex"
    ai_backed = False

    async def try_extract(self, email: FilteredEmail) -> ParsedSubscription | None:
        if not email.extracted_service_name:
            return None
        return fallback_extract(
            email.subject, email.sender, email.body, hinted_service_name=email.extracted_service_name
        )


# ── Cascade ────────────────────────────────────────────────────────────────────


class ExtractionCascade:
    """Runs the strategies in order until one produces a ParsedSubscription.

    The batch strategy, if present, runs once per call over every email.
    Emails it answered (with or without a subscription) skip the remaining
    AI-backed strategies; when the batch is unavailable as a whole, every
    email goes through the full per-email chain. Per-email work runs
    concurrently and one email's failure never affects its siblings.

    Usage::

        cascade = build_cascade(config)
        outcomes = await cascade.extract(sub_batch)
    """

    def __init__(
        self,
        strategies: Sequence[ExtractionStrategy],
        batch: BatchAIStrategy | None = None,
    ) -> None:
        self._strategies = list(strategies)
        self._batch = batch

    @property
    def stages(self) -> list[str]:
        names = [self._batch.name] if self._batch else []
        return names + [s.name for s in self._strategies]

    async def extract(self, emails: Sequence[FilteredEmail]) -> list[ExtractionOutcome]:
        """Return exactly one outcome per input email, in input order."""
        if not emails:
            return []

        answered: dict[str, ParsedSubscription | None] = {}
        if self._batch is not None:
            try:
                answered = await self._batch.extract_batch(emails) or {}
            except Exception as exc:  # noqa: BLE001
                logger.error("Batch stage failed for %d email(s): %s", len(emails), exc, exc_info=True)

        results = await asyncio.gather(
            *(self._extract_email(email, answered) for email in emails),
            return_exceptions=True,
        )

        outcomes: list[ExtractionOutcome] = []
        for email, result in zip(emails, results):
            if isinstance(result, BaseException):
                logger.error("Extraction failed for email %s: %s", email.id, result)
                outcomes.append(ExtractionOutcome(email_id=email.id, error=str(result) or type(result).__name__))
            else:
                outcomes.append(result)
        return outcomes

    async def _extract_email(
        self, email: FilteredEmail, answered: dict[str, ParsedSubscription | None]
    ) -> ExtractionOutcome:
        batch_parsed = answered.get(email.id)
        if batch_parsed is not None:
            return ExtractionOutcome(email_id=email.id, parsed=batch_parsed, stage=BatchAIStrategy.name)

        for strategy in self._strategies:
            if strategy.ai_backed and email.id in answered:
                continue
            try:
                parsed = await strategy.try_extract(email)
            except Exception as exc:  # noqa: BLE001
                logger.error("%s stage failed for email %s: %s", strategy.name, email.id, exc, exc_info=True)
                continue
            if parsed is not None:
                return ExtractionOutcome(email_id=email.id, parsed=parsed, stage=strategy.name)

        logger.info("No subscription extracted from email %s", email.id)
        return ExtractionOutcome(email_id=email.id)


def build_cascade(
    config: ScanConfig, extractor: SubscriptionExtractor | None = None
) -> ExtractionCascade:
    """Cascade for ``config``: batch → single → regex, or regex only without an API key."""
    if extractor is None and not config.api_key:
        logger.warning("ANTHROPIC_API_KEY is not set; extracting with regex only")
        return ExtractionCascade([RegexStrategy()])

    if extractor is None:
        extractor = SubscriptionExtractor(
            api_key=config.api_key,
            model=config.model,
            rate_limiter=RateLimiter(config.min_request_interval),
            retry_delays=config.retry_delays,
        )
    return ExtractionCascade(
        [SingleAIStrategy(extractor), RegexStrategy()],
        batch=BatchAIStrategy(extractor),
    )
