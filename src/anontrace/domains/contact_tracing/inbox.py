"""Recipient-facing inbox of exposure alerts.

Entries carry the STI types and a coarse time phrase. The source report id
and anything about the reporter stay in the notification table.
"""

from __future__ import annotations

import logging

from anontrace.domains.contact_tracing.models import ExposureNotification, InboxEntry
from anontrace.domains.contact_tracing.notifications import NotificationStore

logger = logging.getLogger(__name__)


def _to_entry(notification: ExposureNotification) -> InboxEntry:
    return InboxEntry(
        id=notification.id,
        sti_types=list(notification.sti_types),
        time_ago_text=notification.time_ago_text,
        read_at=notification.read_at,
        created_at=notification.created_at,
    )


class NotificationInbox:
    """Read access to a platform member's delivered app notifications."""

    def __init__(self, store: NotificationStore) -> None:
        self._store = store

    def list_unread(self, user_id: str, *, limit: int = 100) -> list[InboxEntry]:
        """Unread alerts for ``user_id``, newest first."""
        notifications = self._store.list_app_notifications(user_id, unread_only=True, limit=limit)
        return [_to_entry(n) for n in notifications]

    def list_all(self, user_id: str, *, limit: int = 100) -> list[InboxEntry]:
        notifications = self._store.list_app_notifications(user_id, limit=limit)
        return [_to_entry(n) for n in notifications]

    def unread_count(self, user_id: str) -> int:
        return self._store.count_unread(user_id)

    def mark_read(self, user_id: str, notification_ids: list[str]) -> int:
        """Mark the given alerts read. Ids belonging to others are ignored.

        Returns:
            Number of alerts that changed from unread to read.
        """
        changed = self._store.mark_read(user_id, list(notification_ids))
        logger.debug("Marked %d inbox entries read", changed)
        return changed

    def mark_all_read(self, user_id: str) -> int:
        return self._store.mark_read(user_id, None)
