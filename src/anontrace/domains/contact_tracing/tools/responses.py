"""Shared JSON responses and audit bookkeeping for the MCP tools."""

from __future__ import annotations

import json
import logging
import time
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any

from anontrace.core.storage.repository import RepositoryError
from anontrace.domains.contact_tracing.errors import ContactTracingError

if TYPE_CHECKING:
    from anontrace.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

# Errors a caller can fix; reported as JSON instead of raised.
CALLER_ERRORS = (ContactTracingError, RepositoryError, ValueError)


class ToolCall:
    """Times one tool invocation and writes its audit entry.

    Usage::

        call = ToolCall(audit_logger, "log_encounter", {"user_id": user_id}, subject_id=user_id)
        try:
            encounter = ledger.log_encounter(...)
        except CALLER_ERRORS as exc:
            return call.error(exc)
        return call.ok({"status": "saved", "encounter_id": encounter.id})
    """

    def __init__(
        self,
        audit_logger: AuditLogger | None,
        tool_name: str,
        tool_input: Any = None,
        *,
        subject_id: str | None = None,
    ) -> None:
        self._audit = audit_logger
        self._tool_name = tool_name
        self._tool_input = tool_input
        self._subject_id = subject_id
        self._start = time.monotonic()

    def ok(self, payload: dict[str, Any], **metadata: Any) -> str:
        self._log("success", None, metadata)
        return json.dumps(payload)

    def error(self, exc: Exception) -> str:
        error_type = type(exc).__name__
        self._log("failure", error_type, {})
        logger.info("%s rejected: %s", self._tool_name, error_type)
        return json.dumps({
            "status": "error",
            "error_type": error_type,
            "message": str(exc),
        })

    def crashed(self, exc: Exception) -> None:
        """Record an unexpected failure; the caller re-raises."""
        self._log("failure", type(exc).__name__, {})

    def _log(self, status: str, error_type: str | None, metadata: dict[str, Any]) -> None:
        if self._audit is None:
            return
        self._audit.log_tool_call(
            self._tool_name,
            self._tool_input,
            subject_id=self._subject_id,
            duration_ms=(time.monotonic() - self._start) * 1000,
            status=status,
            error_type=error_type,
            metadata=metadata,
        )


def parse_date(value: str) -> date:
    """ISO date ('2026-01-15'); empty means today (UTC)."""
    if not value:
        return datetime.now(timezone.utc).date()
    return date.fromisoformat(value)


def parse_datetime(value: str) -> datetime:
    """ISO datetime; a bare date or a naive time is read as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
