"""SQLite database management for the contact-tracing store.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 3

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
-- Health screens. Raw per-STI results are encrypted; the derived status is
-- kept in the clear for dispatch-trigger and history queries.
CREATE TABLE IF NOT EXISTS health_screens (
    id              TEXT PRIMARY KEY,
    owner_id        TEXT NOT NULL,
    test_date       TEXT NOT NULL,
    results_enc     TEXT NOT NULL,
    overall_status  TEXT NOT NULL
                    CHECK (overall_status IN ('all_clear', 'needs_followup', 'pending')),
    notes_enc       TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

-- People the owner logged by hand (not platform members)
CREATE TABLE IF NOT EXISTS manual_contacts (
    id                TEXT PRIMARY KEY,
    owner_id          TEXT NOT NULL,
    display_name_enc  TEXT NOT NULL,
    phone_number_enc  TEXT,
    social_handle_enc TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

-- Encounter ledger. Exactly one partner reference column is populated,
-- selected by partner_kind.
CREATE TABLE IF NOT EXISTS encounters (
    id                  TEXT PRIMARY KEY,
    reporter_id         TEXT NOT NULL,
    partner_kind        TEXT NOT NULL
                        CHECK (partner_kind IN ('platform', 'manual', 'anonymous')),
    partner_user_id     TEXT,
    contact_id          TEXT REFERENCES manual_contacts(id),
    anonymous_label_enc TEXT,
    met_at              TEXT NOT NULL,
    metadata_enc        TEXT,
    created_at          TEXT NOT NULL,
    CHECK (
        (partner_kind = 'platform'  AND partner_user_id IS NOT NULL
                                    AND contact_id IS NULL AND anonymous_label_enc IS NULL)
     OR (partner_kind = 'manual'    AND contact_id IS NOT NULL
                                    AND partner_user_id IS NULL AND anonymous_label_enc IS NULL)
     OR (partner_kind = 'anonymous' AND partner_user_id IS NULL AND contact_id IS NULL)
    )
);

CREATE TABLE IF NOT EXISTS tracing_settings (
    user_id                       TEXT PRIMARY KEY,
    opted_in                      INTEGER NOT NULL DEFAULT 0,
    screen_reminder_days          INTEGER NOT NULL DEFAULT 90,
    screen_reminder_partner_count INTEGER NOT NULL DEFAULT 10,
    updated_at                    TEXT NOT NULL
);

-- One row per report that entered dispatch; the primary key is the
-- idempotency claim.
CREATE TABLE IF NOT EXISTS dispatch_runs (
    report_id    TEXT PRIMARY KEY,
    reporter_id  TEXT NOT NULL,
    status       TEXT NOT NULL CHECK (status IN ('in_progress', 'completed')),
    result_enc   TEXT,
    created_at   TEXT NOT NULL,
    completed_at TEXT
);

-- Anonymous exposure notifications. Nothing here identifies the reporter
-- beyond the opaque source report id, which is never shown to recipients.
CREATE TABLE IF NOT EXISTS exposure_notifications (
    id               TEXT PRIMARY KEY,
    recipient_kind   TEXT NOT NULL CHECK (recipient_kind IN ('platform', 'manual')),
    recipient_id     TEXT NOT NULL,
    source_report_id TEXT NOT NULL REFERENCES dispatch_runs(report_id),
    sti_types_json   TEXT NOT NULL,
    channel          TEXT NOT NULL CHECK (channel IN ('app', 'sms', 'manual_required')),
    delivered        INTEGER NOT NULL DEFAULT 0,
    read_at          TEXT,
    time_ago_text    TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    UNIQUE (recipient_kind, recipient_id, source_report_id)
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Indexes for common query patterns
CREATE INDEX IF NOT EXISTS idx_screens_owner_date   ON health_screens(owner_id, test_date);
CREATE INDEX IF NOT EXISTS idx_contacts_owner       ON manual_contacts(owner_id);
CREATE INDEX IF NOT EXISTS idx_encounters_reporter  ON encounters(reporter_id, met_at);
CREATE INDEX IF NOT EXISTS idx_encounters_contact   ON encounters(contact_id);
CREATE INDEX IF NOT EXISTS idx_notifications_report ON exposure_notifications(source_report_id);
CREATE INDEX IF NOT EXISTS idx_notifications_inbox  ON exposure_notifications(recipient_kind, recipient_id, read_at);
"""

# ---------------------------------------------------------------------------
# V2: Audit log table (PHI-free access and dispatch logging)
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    tool_name       TEXT,
    tool_input_hash TEXT,
    subject_hash    TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_tool      ON audit_log(tool_name);
"""

# V3: lease on in-progress dispatch runs. A run whose claim is older than the
# lease may be taken over by another dispatcher.
_SCHEMA_V3 = """
ALTER TABLE dispatch_runs ADD COLUMN claimed_at TEXT;
"""


class DatabaseError(Exception):
    """Raised when database operations fail."""


class TracingDatabase:
    """SQLite database manager for the contact-tracing store.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing.

    Usage::

        db = TracingDatabase(":memory:")
        db.initialize()
        conn = db.connection
        # ... use connection ...
        db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        """Initialize database manager.

        Args:
            db_path: Path to SQLite file, or ":memory:" for in-memory DB.
        """
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Create the database connection and ensure schema exists.

        For file-based databases, creates parent directories if needed.
        Idempotent: safe to call multiple times.
        """
        if self._conn is not None:
            return  # Already initialized

        if self._db_path != ":memory:":
            db_file = Path(self._db_path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_file))
        else:
            self._conn = sqlite3.connect(":memory:")

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Tracing database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        """Create tables if they don't exist and apply migrations."""
        conn = self.connection

        # V1: Core tables (CREATE IF NOT EXISTS is idempotent)
        conn.executescript(_SCHEMA_V1)

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        current_version = row[0] if row[0] is not None else 0

        # V2: Audit log table
        if current_version < 2:
            conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: audit_log table")

        if current_version < 3:
            conn.executescript(_SCHEMA_V3)
            logger.info("Applied schema migration V3: dispatch run leases")

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        """Return the current schema version."""
        cursor = self.connection.execute("SELECT MAX(version) FROM schema_version")
        row = cursor.fetchone()
        return row[0] if row[0] is not None else 0

    def table_names(self) -> set[str]:
        """Return the names of all user tables."""
        rows = self.connection.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        ).fetchall()
        return {row[0] for row in rows}

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Tracing database closed")

    def __enter__(self) -> TracingDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
