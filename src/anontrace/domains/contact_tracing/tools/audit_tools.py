"""MCP tool for reviewing the audit trail.

The trail holds tool names, hashed inputs and counts. It cannot be used to
work out who notified whom.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from anontrace.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)


def register_audit_tools(mcp: FastMCP, audit_logger: AuditLogger) -> None:
    """Register audit trail tools on the MCP server."""

    @mcp.tool
    async def audit_summary(ctx: Context, days: int = 30) -> str:
        """Summarise recent tool usage and dispatch activity.

        Args:
            days: Number of days to look back (default: 30).
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        recent = audit_logger.get_events(since=since, limit=20)
        return json.dumps({
            "status": "ok",
            "period_days": days,
            "total_events": audit_logger.count_events(since=since),
            "dispatches": audit_logger.count_events(action="dispatch", since=since),
            "deletions": audit_logger.count_events(action="data_delete", since=since),
            "recent_events": [
                {
                    "timestamp": event.get("timestamp"),
                    "action": event.get("action"),
                    "tool_name": event.get("tool_name"),
                    "status": event.get("status"),
                    "duration_ms": event.get("duration_ms"),
                }
                for event in recent
            ],
        }, indent=2)
