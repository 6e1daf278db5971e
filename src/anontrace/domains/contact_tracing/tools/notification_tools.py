"""MCP tools for contact-tracing consent and the exposure alert inbox."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from anontrace.domains.contact_tracing.tools.responses import CALLER_ERRORS, ToolCall

if TYPE_CHECKING:
    from anontrace.core.audit.logger import AuditLogger
    from anontrace.domains.contact_tracing.consent import ConsentGate
    from anontrace.domains.contact_tracing.inbox import NotificationInbox

logger = logging.getLogger(__name__)


def register_notification_tools(
    mcp: FastMCP,
    consent: ConsentGate,
    inbox: NotificationInbox,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register consent and inbox tools on the MCP server."""

    @mcp.tool
    async def get_contact_tracing_settings(ctx: Context, user_id: str) -> str:
        """Show whether contact tracing is on, plus screening reminder preferences.

        Args:
            user_id: The user whose settings to read.
        """
        settings = consent.get_settings(user_id)
        return ToolCall(audit_logger, "get_contact_tracing_settings", subject_id=user_id).ok(
            {"status": "ok", **asdict(settings)}
        )

    @mcp.tool
    async def set_contact_tracing_opt_in(
        ctx: Context,
        user_id: str,
        opted_in: bool,
        screen_reminder_days: int | None = None,
        screen_reminder_partner_count: int | None = None,
    ) -> str:
        """Turn anonymous contact tracing on or off.

        While on, your positive results alert your partners, and you receive
        alerts from theirs. Turning it off never deletes past alerts and
        turning it on never sends alerts for earlier results.

        Args:
            user_id: The user changing their settings.
            opted_in: True to participate, False to stop.
            screen_reminder_days: Optional: remind me to test after this many days.
            screen_reminder_partner_count: Optional: remind me after this many partners.
        """
        call = ToolCall(
            audit_logger, "set_contact_tracing_opt_in", {"opted_in": opted_in}, subject_id=user_id
        )
        changes: dict = {"opted_in": opted_in}
        if screen_reminder_days is not None:
            changes["screen_reminder_days"] = screen_reminder_days
        if screen_reminder_partner_count is not None:
            changes["screen_reminder_partner_count"] = screen_reminder_partner_count
        try:
            settings = consent.update_settings(user_id, **changes)
        except CALLER_ERRORS as exc:
            return call.error(exc)
        return call.ok({"status": "updated", **asdict(settings)}, opted_in=settings.opted_in)

    @mcp.tool
    async def list_exposure_notifications(
        ctx: Context,
        user_id: str,
        unread_only: bool = True,
        limit: int = 50,
    ) -> str:
        """List anonymous exposure alerts you have received.

        Alerts say which STIs and roughly when; they never say who.

        Args:
            user_id: The recipient.
            unread_only: Only show alerts not yet marked read (default: True).
            limit: Maximum number of alerts (default: 50).
        """
        limit = max(1, limit)
        if unread_only:
            entries = inbox.list_unread(user_id, limit=limit)
        else:
            entries = inbox.list_all(user_id, limit=limit)
        return ToolCall(audit_logger, "list_exposure_notifications", subject_id=user_id).ok(
            {
                "status": "ok",
                "unread_count": inbox.unread_count(user_id),
                "notifications": [e.to_dict() for e in entries],
            },
            count=len(entries),
        )

    @mcp.tool
    async def mark_exposure_notifications_read(
        ctx: Context,
        user_id: str,
        notification_ids: list[str] | None = None,
    ) -> str:
        """Mark exposure alerts as read.

        Args:
            user_id: The recipient.
            notification_ids: Alerts to mark. Omit to mark every unread alert.
        """
        if notification_ids is None:
            changed = inbox.mark_all_read(user_id)
        else:
            changed = inbox.mark_read(user_id, notification_ids)
        return ToolCall(audit_logger, "mark_exposure_notifications_read", subject_id=user_id).ok(
            {
                "status": "ok",
                "marked_read": changed,
                "unread_count": inbox.unread_count(user_id),
            },
            count=changed,
        )
