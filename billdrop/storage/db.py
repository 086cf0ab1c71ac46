"""SQLite storage for subscriptions and scan records."""

import logging
import sqlite3
from pathlib import Path

from billdrop.storage.models import (
    ALL_TABLES,
    NewSubscription,
    ScanRecord,
    Subscription,
)

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("data/billdrop.db")

_SUBSCRIPTION_COLUMNS = """id, user_id, service_name, service_slug, description, amount,
       currency, billing_cycle, next_billing_date, cancellation_url,
       confidence, source_email_id, confirmed, dismissed, tracked, created_at"""


class SubscriptionDatabase:
    """Wraps SQLite for subscription records and scan history.

    Implements the SubscriptionStore protocol the scan orchestrator writes
    through, plus the review actions used by the CLI. All calls are
    synchronous; volumes are a handful of rows per scan.

    Usage::

        db = SubscriptionDatabase("data/billdrop.db")
        created = db.create_subscription(fields)
        db.confirm(created.id)
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def close(self) -> None:
        """Close the underlying database connection."""
        self._conn.close()

    # ── SubscriptionStore ───────────────────────────────────────────────────────

    def find_existing(self, user_id: str, dedup_key: str) -> Subscription | None:
        """Return the user's subscription with this slug, or None."""
        row = self._conn.execute(
            f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE user_id = ? AND service_slug = ?",
            (user_id, dedup_key),
        ).fetchone()
        return _to_subscription(row) if row else None

    def list_subscriptions(self, user_id: str, pending_only: bool = False) -> list[Subscription]:
        """Return the user's non-dismissed subscriptions, oldest first."""
        query = f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE user_id = ? AND dismissed = 0"
        if pending_only:
            query += " AND confirmed = 0"
        rows = self._conn.execute(query + " ORDER BY id", (user_id,)).fetchall()
        return [_to_subscription(r) for r in rows]

    def create_subscription(self, fields: NewSubscription) -> Subscription:
        """Insert a subscription and return the stored row.

        Raises:
            sqlite3.IntegrityError: the user already has this service slug.
        """
        with self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO subscriptions
                    (user_id, service_name, service_slug, description, amount,
                     currency, billing_cycle, next_billing_date, cancellation_url,
                     confidence, source_email_id, confirmed)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    fields.user_id,
                    fields.service_name,
                    fields.service_slug,
                    fields.description,
                    fields.amount,
                    fields.currency,
                    fields.billing_cycle,
                    fields.next_billing_date.isoformat() if fields.next_billing_date else None,
                    fields.cancellation_url,
                    fields.confidence,
                    fields.source_email_id,
                    int(fields.confirmed),
                ),
            )
        created = self.get_subscription(cursor.lastrowid or 0)
        if created is None:  # pragma: no cover
            raise sqlite3.DatabaseError(f"subscription {cursor.lastrowid} vanished after insert")
        logger.debug("Stored subscription %d %r", created.id, created.service_name)
        return created

    # ── Review actions ──────────────────────────────────────────────────────────

    def get_subscription(self, subscription_id: int) -> Subscription | None:
        row = self._conn.execute(
            f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE id = ?",
            (subscription_id,),
        ).fetchone()
        return _to_subscription(row) if row else None

    def confirm(self, subscription_id: int) -> bool:
        """Mark a pending subscription as confirmed. False if no such row."""
        return self._update(subscription_id, "confirmed = 1, dismissed = 0")

    def dismiss(self, subscription_id: int) -> bool:
        """Hide a subscription from listings. False if no such row."""
        return self._update(subscription_id, "dismissed = 1")

    def set_tracked(self, subscription_id: int, tracked: bool) -> bool:
        """Toggle renewal tracking. False if no such row."""
        return self._update(subscription_id, f"tracked = {int(tracked)}")

    # ── Scan records ────────────────────────────────────────────────────────────

    def record_scan(
        self,
        user_id: str,
        total_fetched: int,
        total_filtered: int,
        total_accepted: int,
        total_duplicates: int,
        error_count: int = 0,
        cancelled: bool = False,
    ) -> int:
        """Append a scan row and return its id."""
        with self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO scans
                    (user_id, total_fetched, total_filtered, total_accepted,
                     total_duplicates, error_count, cancelled)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    total_fetched,
                    total_filtered,
                    total_accepted,
                    total_duplicates,
                    error_count,
                    int(cancelled),
                ),
            )
        return cursor.lastrowid or 0

    def latest_scan(self, user_id: str) -> ScanRecord | None:
        """Return the user's most recent scan row, or None."""
        row = self._conn.execute(
            """SELECT id, user_id, total_fetched, total_filtered, total_accepted,
                      total_duplicates, error_count, cancelled, scanned_at
               FROM scans WHERE user_id = ? ORDER BY id DESC LIMIT 1""",
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        d = dict(row)
        d["cancelled"] = bool(d["cancelled"])
        return ScanRecord(**d)

    # ── Private ─────────────────────────────────────────────────────────────────

    def _create_tables(self) -> None:
        with self._conn:
            for ddl in ALL_TABLES:
                self._conn.execute(ddl)

    def _update(self, subscription_id: int, assignments: str) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                f"UPDATE subscriptions SET {assignments} WHERE id = ?",
                (subscription_id,),
            )
        return cursor.rowcount > 0


def _to_subscription(row: sqlite3.Row) -> Subscription:
    d = dict(row)
    for flag in ("confirmed", "dismissed", "tracked"):
        d[flag] = bool(d[flag])
    return Subscription(**d)
