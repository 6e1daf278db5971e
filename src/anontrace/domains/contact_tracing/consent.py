"""Opt-in and consent gate.

``is_opted_in`` is the single predicate for both sides of tracing: a user
only triggers dispatch as a reporter, and only receives in-app exposure
notifications, while opted in. Toggling is never retroactive.
"""

from __future__ import annotations

import logging
from typing import Any

from anontrace.core.storage.repository import RepositoryError, SQLiteRepository
from anontrace.domains.contact_tracing.models import ContactTracingSettings

logger = logging.getLogger(__name__)


class ConsentGate(SQLiteRepository):
    """Per-user contact-tracing settings with defaults materialised on first read."""

    def is_opted_in(self, user_id: str) -> bool:
        row = self._conn.execute(
            "SELECT opted_in FROM tracing_settings WHERE user_id = ?", (user_id,)
        ).fetchone()
        return bool(row and row[0])

    def opted_in_among(self, user_ids: list[str]) -> set[str]:
        """Subset of ``user_ids`` that are opted in (batch form of is_opted_in)."""
        if not user_ids:
            return set()
        placeholders = ",".join("?" for _ in user_ids)
        rows = self._conn.execute(
            f"SELECT user_id FROM tracing_settings WHERE opted_in = 1 AND user_id IN ({placeholders})",
            user_ids,
        ).fetchall()
        return {row[0] for row in rows}

    def get_settings(self, user_id: str) -> ContactTracingSettings:
        row = self._conn.execute(
            "SELECT * FROM tracing_settings WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            defaults = ContactTracingSettings(user_id=user_id, updated_at=self._now_iso())
            self._write(defaults)
            return defaults
        return ContactTracingSettings(
            user_id=row["user_id"],
            opted_in=bool(row["opted_in"]),
            screen_reminder_days=row["screen_reminder_days"],
            screen_reminder_partner_count=row["screen_reminder_partner_count"],
            updated_at=row["updated_at"],
        )

    def set_opted_in(self, user_id: str, opted_in: bool) -> ContactTracingSettings:
        settings = self.update_settings(user_id, opted_in=opted_in)
        logger.info("Contact tracing opt-in changed (opted_in=%s)", opted_in)
        return settings

    def update_settings(self, user_id: str, **changes: Any) -> ContactTracingSettings:
        """Apply partial changes to a user's settings.

        Raises:
            RepositoryError: On unknown fields or non-positive reminder values.
        """
        allowed = {"opted_in", "screen_reminder_days", "screen_reminder_partner_count"}
        unknown = set(changes) - allowed
        if unknown:
            raise RepositoryError(f"Unknown settings: {sorted(unknown)}")
        for key in ("screen_reminder_days", "screen_reminder_partner_count"):
            if key in changes and int(changes[key]) < 1:
                raise RepositoryError(f"{key} must be at least 1")

        settings = self.get_settings(user_id)
        for key, value in changes.items():
            setattr(settings, key, bool(value) if key == "opted_in" else int(value))
        settings.updated_at = self._now_iso()
        self._write(settings)
        return settings

    def _write(self, settings: ContactTracingSettings) -> None:
        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO tracing_settings
                   (user_id, opted_in, screen_reminder_days,
                    screen_reminder_partner_count, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       opted_in = excluded.opted_in,
                       screen_reminder_days = excluded.screen_reminder_days,
                       screen_reminder_partner_count = excluded.screen_reminder_partner_count,
                       updated_at = excluded.updated_at""",
                (
                    settings.user_id,
                    int(settings.opted_in),
                    settings.screen_reminder_days,
                    settings.screen_reminder_partner_count,
                    settings.updated_at,
                ),
            )
