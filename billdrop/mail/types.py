"""Data types and error taxonomy shared by mailbox adapters."""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class RawMessage:
    """A message as fetched from the mailbox, before any filtering.

    ``body`` is already normalised by the adapter: HTML stripped, the
    provider snippet prefixed as a fallback signal, and truncated.
    """

    id: str
    subject: str
    sender: str
    body: str
    date: str | None = None
    thread_id: str = ""
    snippet: str = ""


# ── Errors ─────────────────────────────────────────────────────────────────────


class MailboxError(Exception):
    """Base class for mailbox provider failures."""


class AuthError(MailboxError):
    """The mailbox credential is missing, invalid or expired.

    Fatal to a scan run: the caller must re-authenticate.
    """


class FetchError(MailboxError):
    """Transient transport failure while talking to the mailbox provider."""


# ── Provider interface ─────────────────────────────────────────────────────────


@runtime_checkable
class MailboxProvider(Protocol):
    """Interface every mailbox adapter implements."""

    async def fetch_recent_messages(
        self, credential: str, since_days: int, max_count: int
    ) -> list[RawMessage]:
        """Return up to ``max_count`` messages received in the last ``since_days``.

        Raises:
            AuthError: the credential cannot be used.
            FetchError: the provider could not be reached.
        """
        ...
