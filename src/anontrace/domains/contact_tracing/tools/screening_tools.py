"""MCP tools for health screen submission and history.

Submitting a screen with a positive result is what triggers anonymous
exposure notifications, so the response carries the dispatch summary:
how many partners were alerted in-app or by SMS, and who the reporter
should reach out to personally.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from anontrace.domains.contact_tracing.sti import complete_results
from anontrace.domains.contact_tracing.tools.responses import (
    CALLER_ERRORS,
    ToolCall,
    parse_date,
)

if TYPE_CHECKING:
    from anontrace.core.audit.logger import AuditLogger
    from anontrace.domains.contact_tracing.screens import HealthScreenStore
    from anontrace.domains.contact_tracing.service import ContactTracingService

logger = logging.getLogger(__name__)


def register_screening_tools(
    mcp: FastMCP,
    service: ContactTracingService,
    screens: HealthScreenStore,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register health screen tools on the MCP server."""

    @mcp.tool
    async def submit_health_screen(
        ctx: Context,
        user_id: str,
        results: dict[str, str],
        test_date: str = "",
        notes: str = "",
        fill_untested: bool = False,
        username: str = "",
    ) -> str:
        """Log an STI screening result and notify exposed partners if positive.

        Partners are never told who reported. Opted-in platform members get
        an in-app alert, manual contacts with a phone number get an SMS, and
        everyone else is returned as someone to contact personally.

        Args:
            user_id: The reporting user.
            results: Map of STI type to 'negative', 'positive', 'pending' or
                'not_tested'. Every type (chlamydia, gonorrhea, syphilis, hiv,
                herpes, hpv, mpox, other) must be present unless fill_untested is set.
            test_date: Date of the test (ISO 8601). Defaults to today.
            notes: Optional private notes.
            fill_untested: Treat missing STI types as 'not_tested'.
            username: The reporter's public name, kept out of every alert.
        """
        call = ToolCall(
            audit_logger, "submit_health_screen", {"user_id": user_id, "results": results},
            subject_id=user_id,
        )
        try:
            screen_results = complete_results(results) if fill_untested else results
            submission = await service.submit_health_screen(
                user_id,
                parse_date(test_date),
                screen_results,
                notes or None,
                reporter_aliases=[username] if username else (),
            )
        except CALLER_ERRORS as exc:
            return call.error(exc)
        except Exception as exc:
            call.crashed(exc)
            raise

        record = submission.record
        payload: dict = {
            "status": "saved",
            "screen_id": record.id,
            "test_date": record.test_date.isoformat(),
            "overall_status": record.overall_status.value,
            "positive_sti_types": record.positive_sti_types(),
            "dispatch": None,
        }
        dispatch = submission.dispatch_result
        if dispatch is not None:
            payload["dispatch"] = dispatch.to_dict()
            payload["dispatch"]["replayed"] = dispatch.replayed
        if submission.dispatch_error:
            payload["dispatch_error"] = submission.dispatch_error
        return call.ok(
            payload,
            overall_status=record.overall_status.value,
            dispatched=dispatch is not None,
        )

    @mcp.tool
    async def dispatch_health_screen(
        ctx: Context,
        user_id: str,
        screen_id: str,
        username: str = "",
    ) -> str:
        """Send exposure alerts for a positive screen that was saved earlier.

        Use this after ``submit_health_screen`` returned a ``dispatch_error``,
        or when the reporter opted in after logging the screen. A screen that
        was already dispatched returns its original summary with
        ``replayed`` set; no partner is alerted twice.

        Args:
            user_id: The reporting user.
            screen_id: The positive screen to dispatch.
            username: The reporter's public name, kept out of every alert.
        """
        call = ToolCall(
            audit_logger, "dispatch_health_screen",
            {"user_id": user_id, "screen_id": screen_id}, subject_id=user_id,
        )
        try:
            result = await service.dispatch_report(
                user_id, screen_id, reporter_aliases=[username] if username else ()
            )
        except CALLER_ERRORS as exc:
            return call.error(exc)
        except Exception as exc:
            call.crashed(exc)
            raise

        dispatch = result.to_dict()
        dispatch["replayed"] = result.replayed
        return call.ok(
            {"status": "dispatched", "screen_id": screen_id, "dispatch": dispatch},
            replayed=result.replayed,
        )

    @mcp.tool
    async def list_health_screens(
        ctx: Context,
        user_id: str,
        limit: int = 20,
    ) -> str:
        """List a user's logged screens, most recent test first.

        Args:
            user_id: Owner of the screens.
            limit: Maximum number of screens to return (default: 20).
        """
        call = ToolCall(audit_logger, "list_health_screens", {"user_id": user_id}, subject_id=user_id)
        records = screens.list_screens(user_id, limit=max(1, limit))
        return call.ok({
            "status": "ok",
            "days_since_last_test": screens.days_since_last_test(user_id),
            "status_counts": screens.count_by_status(user_id),
            "screens": [
                {
                    "screen_id": r.id,
                    "test_date": r.test_date.isoformat(),
                    "overall_status": r.overall_status.value,
                    "results": {k: v.value for k, v in r.results.items()},
                    "notes": r.notes,
                }
                for r in records
            ],
        }, count=len(records))
