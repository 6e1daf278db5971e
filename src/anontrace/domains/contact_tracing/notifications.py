"""Exposure notification table and dispatch-run ledger.

Idempotency lives in the schema: ``dispatch_runs.report_id`` is a primary
key and ``exposure_notifications`` is unique on
(recipient_kind, recipient_id, source_report_id). Inserts that lose a race
simply report that the row already existed.

An in-progress run holds a lease (``claimed_at``). Other dispatchers wait
for it to complete; only a run whose lease has expired may be taken over.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from anontrace.core.storage.repository import SQLiteRepository, to_utc_iso
from anontrace.domains.contact_tracing.models import (
    Channel,
    DispatchResult,
    ExposureNotification,
    ManualPartner,
    PlatformPartner,
)

logger = logging.getLogger(__name__)


@dataclass
class DispatchRun:
    report_id: str
    reporter_id: str
    status: str  # 'in_progress' | 'completed'
    result: DispatchResult | None
    created_at: str
    completed_at: str | None = None
    claimed_at: str | None = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"


class NotificationStore(SQLiteRepository):
    """Persistence for dispatch runs and the notifications they create."""

    # ------------------------------------------------------------------
    # Dispatch runs
    # ------------------------------------------------------------------

    def get_run(self, report_id: str) -> DispatchRun | None:
        row = self._conn.execute(
            "SELECT * FROM dispatch_runs WHERE report_id = ?", (report_id,)
        ).fetchone()
        if row is None:
            return None
        stored = self._enc.decrypt(row["result_enc"])
        return DispatchRun(
            report_id=row["report_id"],
            reporter_id=row["reporter_id"],
            status=row["status"],
            result=DispatchResult.from_dict(stored, replayed=True) if stored else None,
            created_at=row["created_at"],
            completed_at=row["completed_at"],
            claimed_at=row["claimed_at"],
        )

    def claim_run(self, report_id: str, reporter_id: str) -> bool:
        """Atomically claim ``report_id`` for dispatch.

        Returns:
            True if this call created the run, False if it already existed.
        """
        try:
            with self._transaction() as conn:
                now = self._now_iso()
                conn.execute(
                    """INSERT INTO dispatch_runs
                       (report_id, reporter_id, status, created_at, claimed_at)
                       VALUES (?, ?, 'in_progress', ?, ?)""",
                    (report_id, reporter_id, now, now),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def take_over_stale_run(self, report_id: str, lease_s: float) -> bool:
        """Renew the lease on an in-progress run whose lease has expired.

        Returns:
            True if this call took the run over. At most one caller wins
            per expired lease.
        """
        cutoff = to_utc_iso(datetime.now(timezone.utc) - timedelta(seconds=lease_s))
        with self._transaction() as conn:
            cursor = conn.execute(
                """UPDATE dispatch_runs SET claimed_at = ?
                   WHERE report_id = ? AND status = 'in_progress'
                     AND COALESCE(claimed_at, created_at) <= ?""",
                (self._now_iso(), report_id, cutoff),
            )
        return cursor.rowcount == 1

    def complete_run(self, result: DispatchResult) -> bool:
        """Store the result of an in-progress run.

        Returns:
            False if the run was already completed; the stored result is
            left untouched.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """UPDATE dispatch_runs
                   SET status = 'completed', result_enc = ?, completed_at = ?
                   WHERE report_id = ? AND status = 'in_progress'""",
                (self._enc.encrypt(result.to_dict()), self._now_iso(), result.report_id),
            )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def insert_notification(
        self,
        *,
        recipient: PlatformPartner | ManualPartner,
        source_report_id: str,
        sti_types: list[str],
        channel: Channel,
        time_ago_text: str,
    ) -> ExposureNotification | None:
        """Create a notification row unless one exists for (recipient, report).

        Returns:
            The new notification, or None if the pair was already recorded.
        """
        notification_id = self._new_id()
        now = self._now_iso()
        kind, recipient_id = recipient.identity
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO exposure_notifications
                   (id, recipient_kind, recipient_id, source_report_id,
                    sti_types_json, channel, delivered, time_ago_text, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?)""",
                (
                    notification_id,
                    kind,
                    recipient_id,
                    source_report_id,
                    json.dumps(sorted(sti_types)),
                    channel.value,
                    time_ago_text,
                    now,
                ),
            )
        if cursor.rowcount == 0:
            return None
        return ExposureNotification(
            id=notification_id,
            recipient=recipient,
            sti_types=sorted(sti_types),
            source_report_id=source_report_id,
            channel=channel,
            delivered=False,
            time_ago_text=time_ago_text,
            created_at=now,
        )

    def get_for_recipient(
        self, recipient: PlatformPartner | ManualPartner, source_report_id: str
    ) -> ExposureNotification | None:
        kind, recipient_id = recipient.identity
        row = self._conn.execute(
            """SELECT * FROM exposure_notifications
               WHERE recipient_kind = ? AND recipient_id = ? AND source_report_id = ?""",
            (kind, recipient_id, source_report_id),
        ).fetchone()
        return self._row_to_notification(row) if row is not None else None

    def mark_delivered(self, notification_id: str, delivered: bool) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE exposure_notifications SET delivered = ? WHERE id = ?",
                (int(delivered), notification_id),
            )

    def list_for_report(self, source_report_id: str) -> list[ExposureNotification]:
        rows = self._conn.execute(
            "SELECT * FROM exposure_notifications WHERE source_report_id = ? ORDER BY created_at",
            (source_report_id,),
        ).fetchall()
        return [self._row_to_notification(row) for row in rows]

    def count_notifications(self, *, source_report_id: str | None = None) -> int:
        if source_report_id is None:
            row = self._conn.execute("SELECT COUNT(*) FROM exposure_notifications").fetchone()
        else:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM exposure_notifications WHERE source_report_id = ?",
                (source_report_id,),
            ).fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Inbox queries (app channel, platform recipients only)
    # ------------------------------------------------------------------

    def list_app_notifications(
        self, user_id: str, *, unread_only: bool = False, limit: int = 100
    ) -> list[ExposureNotification]:
        query = """SELECT * FROM exposure_notifications
                   WHERE recipient_kind = 'platform' AND recipient_id = ?
                     AND channel = 'app' AND delivered = 1"""
        if unread_only:
            query += " AND read_at IS NULL"
        query += " ORDER BY created_at DESC LIMIT ?"
        rows = self._conn.execute(query, (user_id, limit)).fetchall()
        return [self._row_to_notification(row) for row in rows]

    def count_unread(self, user_id: str) -> int:
        row = self._conn.execute(
            """SELECT COUNT(*) FROM exposure_notifications
               WHERE recipient_kind = 'platform' AND recipient_id = ?
                 AND channel = 'app' AND delivered = 1 AND read_at IS NULL""",
            (user_id,),
        ).fetchone()
        return row[0]

    def mark_read(self, user_id: str, notification_ids: list[str] | None) -> int:
        """Set ``read_at`` on the user's delivered, unread app notifications.

        Args:
            notification_ids: Ids to mark, or None for all unread.

        Returns:
            Number of rows that changed from unread to read.
        """
        query = """UPDATE exposure_notifications SET read_at = ?
                   WHERE recipient_kind = 'platform' AND recipient_id = ?
                     AND channel = 'app' AND delivered = 1 AND read_at IS NULL"""
        params: list[Any] = [self._now_iso(), user_id]
        if notification_ids is not None:
            if not notification_ids:
                return 0
            placeholders = ",".join("?" for _ in notification_ids)
            query += f" AND id IN ({placeholders})"
            params.extend(notification_ids)
        with self._transaction() as conn:
            cursor = conn.execute(query, params)
        return cursor.rowcount

    def _row_to_notification(self, row: Any) -> ExposureNotification:
        recipient: PlatformPartner | ManualPartner
        if row["recipient_kind"] == "platform":
            recipient = PlatformPartner(row["recipient_id"])
        else:
            recipient = ManualPartner(row["recipient_id"])
        return ExposureNotification(
            id=row["id"],
            recipient=recipient,
            sti_types=json.loads(row["sti_types_json"]),
            source_report_id=row["source_report_id"],
            channel=Channel(row["channel"]),
            delivered=bool(row["delivered"]),
            read_at=row["read_at"],
            time_ago_text=row["time_ago_text"],
            created_at=row["created_at"],
        )
