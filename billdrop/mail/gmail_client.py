"""Gmail mailbox adapter — reads billing candidates through the workspace-mcp server."""

import asyncio
import json
import logging
import os
import re
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.types import TextContent

from billdrop.mail.text import normalize_body
from billdrop.mail.types import AuthError, FetchError, RawMessage

logger = logging.getLogger(__name__)

# Gmail search page size and the safety cap on pages walked per fetch
# (20 pages x 100 = 2000 ids at most).
_PAGE_SIZE = 100
_MAX_PAGES = 20

# Message bodies are requested in chunks to stay under Gmail's batch quota.
_CONTENT_CHUNK_SIZE = 25

_AUTH_ERROR_PATTERN = re.compile(
    r"authenticat|unauthori[sz]ed|invalid_grant|credential|"
    r"token (?:has been )?(?:expired|revoked)|re-?auth",
    re.IGNORECASE,
)

_INCLUDE_SUBJECTS = (
    "receipt OR subscription OR billing OR invoice OR payment OR charged OR renew "
    "OR renewal OR membership OR statement OR trial OR plan OR order"
)
_INCLUDE_SENDERS = (
    "noreply OR billing OR receipt OR invoice OR orders OR amazon OR prime OR netflix "
    "OR hbo OR spotify OR apple OR google OR adobe"
)
_EXCLUDE_SUBJECTS = (
    'newsletter OR shipping OR shipped OR delivered OR tracking OR "verification code" '
    'OR "security alert" OR "password reset" OR refund OR return OR "job alert" '
    'OR "job recommendation" OR digest OR "new post" OR published'
)

# JSON-decoded value from an MCP tool response
_JsonValue = dict[str, Any] | list[Any] | str | None


def build_search_query(since_days: int) -> str:
    """Gmail search narrowing the window to likely billing mail."""
    return (
        f"newer_than:{since_days}d "
        f"(subject:({_INCLUDE_SUBJECTS}) OR from:({_INCLUDE_SENDERS})) "
        f"-subject:({_EXCLUDE_SUBJECTS}) "
        "-category:(social OR promotions)"
    )


class GmailMailbox:
    """MailboxProvider backed by the workspace-mcp Gmail tools.

    workspace-mcp owns the OAuth flow and token refresh; this class only maps
    its tool responses to RawMessage and its failures to AuthError/FetchError.
    Use the `gmail_mailbox()` context manager to construct and tear down.
    """

    def __init__(self, session: ClientSession, user_email: str) -> None:
        self._session = session
        self._user_email = user_email

    # ── Public API ─────────────────────────────────────────────────────────────

    async def fetch_recent_messages(
        self, credential: str, since_days: int, max_count: int
    ) -> list[RawMessage]:
        """Return up to ``max_count`` messages from the last ``since_days`` days.

        ``credential`` is the Google account address the MCP server holds a
        token for; falls back to the address this mailbox was opened with.
        """
        account = credential or self._user_email
        if not account:
            raise AuthError("No Google account configured for the mailbox")

        ids = await self._search_ids(account, build_search_query(since_days), max_count)
        if not ids:
            return []

        messages: list[RawMessage] = []
        failed: list[FetchError] = []
        chunks = [ids[start:start + _CONTENT_CHUNK_SIZE] for start in range(0, len(ids), _CONTENT_CHUNK_SIZE)]
        for number, chunk in enumerate(chunks, 1):
            try:
                raw = await self._call(
                    "get_gmail_messages_content_batch",
                    {"message_ids": chunk, "user_google_email": account},
                )
            except FetchError as exc:
                # One failed chunk should not lose the rest of the window.
                logger.error("Content chunk %d failed: %s", number, exc)
                failed.append(exc)
                continue
            messages.extend(self._parse_messages(raw))

        if len(failed) == len(chunks):
            raise FetchError(f"All {len(chunks)} content request(s) failed: {failed[-1]}") from failed[-1]

        recent = [m for m in messages if _within_window(m.date, since_days)]
        if len(recent) < len(messages):
            logger.debug("Dropped %d message(s) older than %d days", len(messages) - len(recent), since_days)
        logger.info("Fetched %d message(s) from Gmail (%d ids)", len(recent), len(ids))
        return recent

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _search_ids(self, account: str, query: str, max_count: int) -> list[str]:
        """Walk search result pages until ``max_count`` ids or no next page."""
        ids: list[str] = []
        page_token: str | None = None
        for _ in range(_MAX_PAGES):
            arguments: dict[str, Any] = {
                "query": query,
                "page_size": min(_PAGE_SIZE, max_count),
                "user_google_email": account,
            }
            if page_token:
                arguments["page_token"] = page_token
            raw = await self._call("search_gmail_messages", arguments)
            page_ids, page_token = self._parse_search_page(raw)
            ids.extend(page_ids)
            if len(ids) >= max_count or not page_token:
                break
        return ids[:max_count]

    async def _call(self, tool_name: str, arguments: dict[str, Any]) -> _JsonValue:
        """Call a workspace-mcp tool and return the parsed JSON result.

        Raises AuthError when the tool reports an authentication problem and
        FetchError for any other tool or transport failure.
        """
        logger.debug("MCP → %s %s", tool_name, arguments)
        try:
            result = await self._session.call_tool(tool_name, arguments)
        except Exception as exc:  # noqa: BLE001
            raise FetchError(f"Tool {tool_name!r} call failed: {exc}") from exc

        text = _first_text(result.content or [])

        if result.isError:
            message = f"Tool {tool_name!r} returned error: {text or result.content}"
            if text and _AUTH_ERROR_PATTERN.search(text):
                raise AuthError(message)
            raise FetchError(message)

        if text is None:
            return None
        try:
            parsed: _JsonValue = json.loads(text)
            return parsed
        except json.JSONDecodeError:
            return text

    @staticmethod
    def _parse_search_page(raw: _JsonValue) -> tuple[list[str], str | None]:
        """Extract message ids and the next page token from a search response."""
        if isinstance(raw, dict):
            items = raw.get("messages") or []
            token = raw.get("next_page_token") or raw.get("nextPageToken")
            ids = [
                str(m.get("message_id") or m.get("id"))
                for m in items
                if isinstance(m, dict) and (m.get("message_id") or m.get("id"))
            ]
            return ids, str(token) if token else None
        if isinstance(raw, list):
            return [
                str(m.get("message_id", ""))
                for m in raw
                if isinstance(m, dict) and m.get("message_id")
            ], None
        if isinstance(raw, str):
            token_match = re.search(r"next\s*page\s*token:\s*(\S+)", raw, re.IGNORECASE)
            return (
                re.findall(r"Message ID:\s*(\S+)", raw),
                token_match.group(1) if token_match else None,
            )
        return [], None

    @staticmethod
    def _parse_messages(raw: _JsonValue) -> list[RawMessage]:
        """Parse one or more messages from a batch content response.

        workspace-mcp returns text blocks like::

            Message ID: abc123
            Subject: Your receipt
            From: Netflix <info@mailer.netflix.com>
            Date: Mon, 1 Jan 2026 12:00:00 +0000

            Body text follows after a blank line...
        """
        if isinstance(raw, list):
            return [GmailMailbox._parse_message_dict(m) for m in raw if isinstance(m, dict)]
        if not isinstance(raw, str):
            return []

        messages: list[RawMessage] = []
        for block in re.split(r"(?=^Message ID:)", raw, flags=re.MULTILINE):
            block = block.strip()
            if not block.startswith("Message ID:"):
                continue

            def _header(name: str) -> str:
                m = re.search(rf"^{name}:\s*(.+)$", block, re.MULTILINE)
                return m.group(1).strip() if m else ""

            body = ""
            header_end = re.search(r"\n\s*\n", block)
            if header_end:
                body = block[header_end.end():].strip()

            snippet = _header("Snippet")
            messages.append(RawMessage(
                id=_header("Message ID"),
                thread_id=_header("Thread ID"),
                subject=_header("Subject") or "(no subject)",
                sender=_header("From"),
                date=_header("Date") or None,
                snippet=snippet,
                body=normalize_body(body, snippet),
            ))
        return messages

    @staticmethod
    def _parse_message_dict(data: dict[str, Any]) -> RawMessage:
        """Map a JSON message dict to a RawMessage."""
        snippet = str(data.get("snippet") or "")
        date_raw = data.get("date")
        return RawMessage(
            id=str(data.get("message_id", data.get("id", ""))),
            thread_id=str(data.get("thread_id", "")),
            subject=str(data.get("subject") or "(no subject)"),
            sender=str(data.get("from", "")),
            date=str(date_raw) if date_raw else None,
            snippet=snippet,
            body=normalize_body(str(data.get("body") or ""), snippet),
        )


def _first_text(content: list[Any]) -> str | None:
    for item in content:
        if isinstance(item, TextContent):
            return item.text
    return None


def _within_window(date_header: str | None, since_days: int) -> bool:
    """Safety net behind the search query; unparseable dates are kept."""
    if not date_header:
        return True
    try:
        sent = parsedate_to_datetime(date_header)
    except (TypeError, ValueError):
        try:
            sent = datetime.fromisoformat(date_header.replace("Z", "+00:00"))
        except ValueError:
            return True
    if sent.tzinfo is None:
        sent = sent.replace(tzinfo=timezone.utc)
    return sent >= datetime.now(timezone.utc) - timedelta(days=since_days)


_MCP_CONNECT_RETRIES = 3
_MCP_RETRY_DELAY_SECONDS = 3


@asynccontextmanager
async def gmail_mailbox(
    *,
    user_email: str | None = None,
    server_command: str | None = None,
) -> AsyncIterator[GmailMailbox]:
    """Async context manager that yields a connected GmailMailbox.

    Spawns `workspace-mcp` over the MCP stdio transport and tears it down on
    exit. Connection attempts are retried because the server's internal OAuth
    listener can still be bound by a previous process.

    Raises:
        AuthError: no Google account is configured.
        FetchError: the MCP server could not be started.
    """
    email = user_email or os.environ.get("USER_GOOGLE_EMAIL", "")
    if not email:
        raise AuthError("user_email must be provided or USER_GOOGLE_EMAIL env var must be set")

    cmd = server_command or os.environ.get("GMAIL_MCP_SERVER_PATH", "uvx")
    _cmd_basename = os.path.basename(cmd).lower().replace(".exe", "")
    args = ["workspace-mcp", "--tools", "gmail"] if _cmd_basename == "uvx" else []

    server_params = StdioServerParameters(
        command=cmd,
        args=args,
        env={
            **os.environ,
            "USER_GOOGLE_EMAIL": email,
            "MCP_SINGLE_USER_MODE": "1",
            "WORKSPACE_MCP_PORT": os.environ.get("WORKSPACE_MCP_PORT", "18741"),
            "PYTHONUTF8": "1",
        },
    )

    last_err: Exception | None = None
    for attempt in range(1, _MCP_CONNECT_RETRIES + 1):
        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(server_params))
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
        except Exception as exc:  # noqa: BLE001
            last_err = exc
            await stack.aclose()
            if attempt < _MCP_CONNECT_RETRIES:
                logger.warning(
                    "MCP server connection failed (attempt %d/%d) — retrying in %ds",
                    attempt,
                    _MCP_CONNECT_RETRIES,
                    _MCP_RETRY_DELAY_SECONDS,
                )
                await asyncio.sleep(_MCP_RETRY_DELAY_SECONDS)
            continue

        async with stack:
            logger.info("Gmail MCP mailbox connected (%s)", email)
            yield GmailMailbox(session, email)
        return

    raise FetchError(f"Failed to connect after {_MCP_CONNECT_RETRIES} attempts") from last_err
