"""Shared plumbing for the SQLite-backed repositories.

Each domain store (ledger, screens, settings, notifications) subclasses
``SQLiteRepository`` for id generation, timestamp normalisation, and
transaction handling over a single ``TracingDatabase`` connection.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, time, timezone

from anontrace.core.storage.database import TracingDatabase
from anontrace.core.storage.encryption import FieldEncryptor

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


def to_utc_iso(value: datetime) -> str:
    """Normalise an aware datetime to a fixed-width UTC ISO 8601 string.

    Fixed width (always microseconds) keeps lexicographic order equal to
    chronological order for SQL range filters.
    """
    if value.tzinfo is None:
        raise RepositoryError("Naive datetimes are not accepted; attach a timezone")
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_utc_iso(value: str) -> datetime:
    return datetime.fromisoformat(value).astimezone(timezone.utc)


def start_of_day(day: date) -> datetime:
    """Midnight UTC at the start of ``day``."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class SQLiteRepository:
    """Base class for repositories sharing a database and an encryptor."""

    def __init__(self, database: TracingDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return to_utc_iso(datetime.now(timezone.utc))

    @property
    def _conn(self) -> sqlite3.Connection:
        return self._db.connection

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on any error."""
        conn = self._db.connection
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()
