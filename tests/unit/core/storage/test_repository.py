"""Tests for the shared repository helpers."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from anontrace.core.storage.repository import (
    RepositoryError,
    SQLiteRepository,
    from_utc_iso,
    start_of_day,
    to_utc_iso,
)


class TestTimestamps:
    def test_naive_datetime_rejected(self):
        with pytest.raises(RepositoryError, match="Naive"):
            to_utc_iso(datetime(2026, 1, 1, 12, 0))

    def test_converts_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        assert to_utc_iso(datetime(2026, 1, 1, 12, 0, tzinfo=plus_two)).startswith(
            "2026-01-01T10:00:00.000000"
        )

    def test_fixed_width_sorts_chronologically(self):
        a = to_utc_iso(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))
        b = to_utc_iso(datetime(2026, 1, 1, 12, 0, 0, 1, tzinfo=timezone.utc))
        assert a < b

    def test_round_trip(self):
        dt = datetime(2026, 2, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
        assert from_utc_iso(to_utc_iso(dt)) == dt

    def test_start_of_day_is_midnight_utc(self):
        assert start_of_day(date(2026, 2, 1)) == datetime(2026, 2, 1, tzinfo=timezone.utc)


class TestTransaction:
    def test_rolls_back_on_error(self, tracing_db, field_encryptor):
        repo = SQLiteRepository(tracing_db, field_encryptor)
        with pytest.raises(RuntimeError):
            with repo._transaction() as conn:
                conn.execute(
                    "INSERT INTO tracing_settings (user_id, updated_at) VALUES ('u1', 'x')"
                )
                raise RuntimeError("boom")
        count = tracing_db.connection.execute("SELECT COUNT(*) FROM tracing_settings").fetchone()[0]
        assert count == 0

    def test_commits_on_success(self, tracing_db, field_encryptor):
        repo = SQLiteRepository(tracing_db, field_encryptor)
        with repo._transaction() as conn:
            conn.execute("INSERT INTO tracing_settings (user_id, updated_at) VALUES ('u1', 'x')")
        count = tracing_db.connection.execute("SELECT COUNT(*) FROM tracing_settings").fetchone()[0]
        assert count == 1

    def test_new_ids_are_uuids(self):
        assert len(SQLiteRepository._new_id()) == 36
