"""Audit logger: PHI-free trail of tool calls, dispatches and deletions.

Nothing in ``audit_log`` can link a reporter to a recipient:

* ``tool_input_hash``: SHA-256 of canonical JSON (raw inputs never stored).
* ``subject_hash``: SHA-256 of the subject id (report, user), for
  correlating events without storing the id itself.
* ``metadata``: counts and enum values only.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from anontrace.core.storage.database import TracingDatabase

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON.

    Returns:
        Hex-encoded SHA-256 digest, or empty string if not serializable.
    """
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


def _hash_subject(subject_id: str | None) -> str | None:
    if not subject_id:
        return None
    return hashlib.sha256(subject_id.encode()).hexdigest()


# ---------------------------------------------------------------------------
# AuditEvent dataclass
# ---------------------------------------------------------------------------

@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'dispatch' | 'inbox_read' | 'data_delete'
    tool_name: str = ""
    tool_input_hash: str = ""
    subject_hash: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# AuditLogger
# ---------------------------------------------------------------------------

class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    All writes are committed immediately so no audit entry is lost on crash.

    Usage::

        audit = AuditLogger(tracing_db)
        audit.log_dispatch(report_id=screen.id, app_notified=1, sms_sent=0,
                           manual_required=2, replayed=False)
    """

    def __init__(self, database: TracingDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID (empty string on failure)."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"))
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, tool_name, tool_input_hash,
                    subject_hash, duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.tool_name or None,
                    event.tool_input_hash or None,
                    event.subject_hash,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write audit event; event lost")
            return ""

        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        subject_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log an MCP tool invocation.

        Args:
            tool_name: Name of the MCP tool.
            tool_input: Tool input data (hashed, never stored raw).
            subject_id: Id the call acted on (hashed).
            duration_ms: Tool execution duration in milliseconds.
            status: 'success' or 'failure'.
            error_type: Exception class name on failure.
            metadata: Additional PHI-free metadata.
        """
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            subject_hash=_hash_subject(subject_id),
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_dispatch(
        self,
        *,
        report_id: str,
        app_notified: int,
        sms_sent: int,
        manual_required: int,
        replayed: bool,
        duration_ms: float | None = None,
    ) -> str:
        """Log the outcome of a dispatch. Counts only; no recipients."""
        return self.log_event(AuditEvent(
            action="dispatch",
            subject_hash=_hash_subject(report_id),
            duration_ms=duration_ms,
            metadata={
                "app_notified": app_notified,
                "sms_sent": sms_sent,
                "manual_required": manual_required,
                "replayed": replayed,
            },
        ))

    def log_data_delete(
        self,
        *,
        tool_name: str = "",
        subject_id: str | None = None,
        record_type: str = "",
        count: int = 0,
    ) -> str:
        """Log a deletion (encounter, manual contact)."""
        return self.log_event(AuditEvent(
            action="data_delete",
            tool_name=tool_name,
            subject_hash=_hash_subject(subject_id),
            metadata={"record_type": record_type, "records_deleted": count},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, action: str | None = None, since: str | None = None) -> int:
        conditions: list[str] = []
        params: list[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log{where}", params
        ).fetchone()
        return row[0]
