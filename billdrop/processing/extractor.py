"""Model-backed subscription extraction — forced tool calls against Claude."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import anthropic
from anthropic import AsyncAnthropic
from anthropic.types import ToolUseBlock

from billdrop.config import DEFAULT_MODEL, DEFAULT_RETRY_DELAYS
from billdrop.filtering.filter import FilteredEmail
from billdrop.processing.prompts import (
    BATCH_TOOL,
    SUBSCRIPTION_TOOL,
    SYSTEM_PROMPT,
    build_batch_messages,
    build_single_messages,
)
from billdrop.processing.ratelimit import RateLimiter
from billdrop.processing.types import ParsedSubscription, ValidationError, parse_subscription

logger = logging.getLogger(__name__)

_SINGLE_MAX_TOKENS = 1024
_BATCH_MAX_TOKENS = 4096


class ExtractionError(Exception):
    """Base class for model extraction failures."""


class ExtractionTransientError(ExtractionError):
    """Rate-limited on every attempt; the retry schedule is exhausted."""


class ExtractionMalformedResponse(ExtractionError):
    """The model answered without the expected tool call or result shape."""


class SubscriptionExtractor:
    """Sends filtered emails to Claude and returns ParsedSubscriptions.

    Uses a forced tool_choice so every response is machine-readable. Every
    request passes through the shared RateLimiter first; rate-limit responses
    are retried on ``retry_delays``, anything else fails the call at once.

    Neither public method raises: failures come back as ``None`` so the
    caller can fall through to the next extraction stage.

    Usage::

        extractor = SubscriptionExtractor(api_key)
        parsed = await extractor.extract_one(email)
        by_id = await extractor.extract_batch(emails)
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        rate_limiter: RateLimiter | None = None,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        client: AsyncAnthropic | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client or AsyncAnthropic(
            api_key=api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        )
        self._model = model
        self._limiter = rate_limiter or RateLimiter()
        self._retry_delays = tuple(retry_delays)
        self._sleep = sleep

    async def extract_one(self, email: FilteredEmail) -> ParsedSubscription | None:
        """Extract one email with ``record_subscription``; None on any failure."""
        try:
            data = await self._call_tool(
                SUBSCRIPTION_TOOL, build_single_messages(email), _SINGLE_MAX_TOKENS
            )
        except ExtractionError as exc:
            logger.warning("Single extraction unavailable for email %s: %s", email.id, exc)
            return None
        except Exception as exc:  # noqa: BLE001
            logger.error("Single extraction failed for email %s: %s", email.id, exc)
            return None
        return _to_parsed(email.id, data)

    async def extract_batch(
        self, emails: Sequence[FilteredEmail]
    ) -> dict[str, ParsedSubscription | None] | None:
        """Extract up to a sub-batch of emails in one ``record_subscriptions`` call.

        Returns a mapping with an entry for every input id, or None when the
        whole batch is unavailable and every email needs another stage.
        """
        if not emails:
            return {}
        try:
            data = await self._call_tool(BATCH_TOOL, build_batch_messages(emails), _BATCH_MAX_TOKENS)
            results = data.get("results")
            if not isinstance(results, list):
                raise ExtractionMalformedResponse(f"'results' is {type(results).__name__}, not a list")
        except ExtractionError as exc:
            logger.warning("Batch extraction unavailable for %d email(s): %s", len(emails), exc)
            return None
        except Exception as exc:  # noqa: BLE001
            logger.error("Batch extraction failed for %d email(s): %s", len(emails), exc)
            return None

        wanted = {email.id for email in emails}
        matched: dict[str, ParsedSubscription | None] = {}
        for item in results:
            if not isinstance(item, dict):
                continue
            email_id = str(item.get("id", ""))
            if email_id not in wanted:
                logger.debug("Ignoring batch result for unknown id %r", email_id)
                continue
            if email_id in matched:
                continue
            matched[email_id] = _to_parsed(email_id, item)
        return {email.id: matched.get(email.id) for email in emails}

    async def _call_tool(
        self, tool: dict[str, Any], messages: list[dict[str, str]], max_tokens: int
    ) -> dict[str, Any]:
        """Run one forced tool call and return its input dict.

        Raises:
            ExtractionTransientError: rate-limited on every attempt.
            ExtractionMalformedResponse: no matching tool_use block.
        """
        response = await self._create_with_retry(
            model=self._model,
            max_tokens=max_tokens,
            system=SYSTEM_PROMPT,
            tools=[tool],
            tool_choice={"type": "tool", "name": tool["name"]},
            messages=messages,
        )
        for block in response.content:
            if isinstance(block, ToolUseBlock) and block.name == tool["name"]:
                if not isinstance(block.input, dict):
                    break
                return block.input  # type: ignore[return-value]
        raise ExtractionMalformedResponse(
            f"Model did not return a {tool['name']} tool call "
            f"(stop_reason={getattr(response, 'stop_reason', None)!r})"
        )

    async def _create_with_retry(self, **kwargs: Any) -> Any:
        attempts = len(self._retry_delays) + 1
        for attempt in range(attempts):
            await self._limiter.wait_if_needed()
            try:
                return await self._client.messages.create(**kwargs)
            except anthropic.RateLimitError as exc:
                if attempt == attempts - 1:
                    raise ExtractionTransientError(
                        f"rate limited after {attempts} attempt(s)"
                    ) from exc
                delay = self._retry_delays[attempt]
                logger.info("Rate limited; retrying in %.0fs (attempt %d/%d)", delay, attempt + 1, attempts)
                await self._sleep(delay)
        raise ExtractionTransientError("no attempts made")  # pragma: no cover


def _to_parsed(email_id: str, data: dict[str, Any]) -> ParsedSubscription | None:
    """Tool input dict → ParsedSubscription, or None for non-subscriptions."""
    if not data.get("is_subscription"):
        logger.debug("Email %s is not a subscription", email_id)
        return None
    try:
        return parse_subscription(data)
    except ValidationError as exc:
        logger.info("Discarding model result for email %s: %s", email_id, exc)
        return None

