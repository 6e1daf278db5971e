"""Health screen store.

Screens are never hard-deleted: the previous screen's test date bounds the
exposure window of the next positive report.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any, Mapping

from anontrace.core.storage.database import TracingDatabase
from anontrace.core.storage.encryption import FieldEncryptor
from anontrace.core.storage.repository import SQLiteRepository
from anontrace.domains.contact_tracing.errors import NotFoundError
from anontrace.domains.contact_tracing.models import HealthScreenRecord
from anontrace.domains.contact_tracing.sti import (
    OverallStatus,
    ScreenResult,
    derive_overall_status,
    normalize_results,
)

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class HealthScreenStore(SQLiteRepository):
    """Versioned health screen records with a cached derived status."""

    def __init__(
        self,
        database: TracingDatabase,
        encryptor: FieldEncryptor,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(database, encryptor)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create_screen(
        self,
        owner_id: str,
        test_date: date,
        results: Mapping[str, str | ScreenResult],
        notes: str | None = None,
    ) -> HealthScreenRecord:
        """Persist a new screen.

        Raises:
            IncompleteResultsError: If ``results`` is not a complete, valid map.
        """
        normalized = normalize_results(results)
        status = derive_overall_status(normalized)
        screen_id = self._new_id()
        now = self._now_iso()

        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO health_screens
                   (id, owner_id, test_date, results_enc, overall_status,
                    notes_enc, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    screen_id,
                    owner_id,
                    test_date.isoformat(),
                    self._enc.encrypt({k: v.value for k, v in normalized.items()}),
                    status.value,
                    self._enc.encrypt(notes) or None,
                    now,
                    now,
                ),
            )
        logger.info("Saved health screen %s (status=%s)", screen_id, status.value)
        return HealthScreenRecord(
            id=screen_id,
            owner_id=owner_id,
            test_date=test_date,
            results=normalized,
            overall_status=status,
            notes=notes,
            created_at=now,
            updated_at=now,
        )

    def edit_screen(
        self,
        owner_id: str,
        screen_id: str,
        *,
        test_date: date | None = None,
        results: Mapping[str, str | ScreenResult] | None = None,
        notes: str | None = _UNSET,
    ) -> HealthScreenRecord:
        """Edit a screen, re-deriving its overall status.

        Editing never triggers dispatch; notifications only go out when a
        screen is first submitted.

        Raises:
            NotFoundError: If the screen does not exist for this owner.
            IncompleteResultsError: If new ``results`` are incomplete.
        """
        current = self.get_screen(owner_id, screen_id)
        if current is None:
            raise NotFoundError(f"Health screen {screen_id} not found")

        if results is not None:
            current.results = normalize_results(results)
        current.overall_status = derive_overall_status(current.results)
        if test_date is not None:
            current.test_date = test_date
        if notes is not _UNSET:
            current.notes = notes
        current.updated_at = self._now_iso()

        with self._transaction() as conn:
            conn.execute(
                """UPDATE health_screens SET
                       test_date = ?, results_enc = ?, overall_status = ?,
                       notes_enc = ?, updated_at = ?
                   WHERE id = ? AND owner_id = ?""",
                (
                    current.test_date.isoformat(),
                    self._enc.encrypt({k: v.value for k, v in current.results.items()}),
                    current.overall_status.value,
                    self._enc.encrypt(current.notes) or None,
                    current.updated_at,
                    screen_id,
                    owner_id,
                ),
            )
        logger.info("Edited health screen %s (status=%s)", screen_id, current.overall_status.value)
        return current

    def get_screen(self, owner_id: str, screen_id: str) -> HealthScreenRecord | None:
        row = self._conn.execute(
            "SELECT * FROM health_screens WHERE id = ? AND owner_id = ?",
            (screen_id, owner_id),
        ).fetchone()
        return self._row_to_screen(row) if row is not None else None

    def list_screens(self, owner_id: str, *, limit: int = 50) -> list[HealthScreenRecord]:
        """The owner's screens, most recent test date first."""
        rows = self._conn.execute(
            """SELECT * FROM health_screens WHERE owner_id = ?
               ORDER BY test_date DESC, created_at DESC LIMIT ?""",
            (owner_id, limit),
        ).fetchall()
        return [self._row_to_screen(row) for row in rows]

    def latest_screen(self, owner_id: str) -> HealthScreenRecord | None:
        screens = self.list_screens(owner_id, limit=1)
        return screens[0] if screens else None

    def previous_screen(
        self, owner_id: str, screen: HealthScreenRecord
    ) -> HealthScreenRecord | None:
        """The owner's screen immediately preceding ``screen``.

        Ordered by (test_date, created_at); a screen logged earlier on the
        same test date counts as preceding.
        """
        row = self._conn.execute(
            """SELECT * FROM health_screens
               WHERE owner_id = ? AND id != ?
                 AND (test_date < ? OR (test_date = ? AND created_at < ?))
               ORDER BY test_date DESC, created_at DESC LIMIT 1""",
            (
                owner_id,
                screen.id,
                screen.test_date.isoformat(),
                screen.test_date.isoformat(),
                screen.created_at,
            ),
        ).fetchone()
        return self._row_to_screen(row) if row is not None else None

    def days_since_last_test(self, owner_id: str) -> int | None:
        latest = self.latest_screen(owner_id)
        if latest is None:
            return None
        return (self._clock().date() - latest.test_date).days

    def count_by_status(self, owner_id: str) -> dict[str, int]:
        rows = self._conn.execute(
            """SELECT overall_status, COUNT(*) FROM health_screens
               WHERE owner_id = ? GROUP BY overall_status""",
            (owner_id,),
        ).fetchall()
        counts = {s.value: 0 for s in OverallStatus}
        counts.update({row[0]: row[1] for row in rows})
        return counts

    def _row_to_screen(self, row: Any) -> HealthScreenRecord:
        results = self._enc.decrypt(row["results_enc"]) or {}
        return HealthScreenRecord(
            id=row["id"],
            owner_id=row["owner_id"],
            test_date=date.fromisoformat(row["test_date"]),
            results={k: ScreenResult(v) for k, v in results.items()},
            overall_status=OverallStatus(row["overall_status"]),
            notes=self._enc.decrypt(row["notes_enc"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
