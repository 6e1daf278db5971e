"""Tests for HealthScreenStore."""

from __future__ import annotations

import time
from datetime import date

import pytest

from anontrace.domains.contact_tracing.errors import IncompleteResultsError, NotFoundError
from anontrace.domains.contact_tracing.sti import (
    TRACKABLE_STI_IDS,
    OverallStatus,
    ScreenResult,
)


def _results(**overrides: str) -> dict[str, str]:
    results = {sti_id: "negative" for sti_id in TRACKABLE_STI_IDS}
    results.update(overrides)
    return results


class TestCreate:
    def test_status_derived_on_create(self, screens):
        record = screens.create_screen("usr-ada", date(2026, 2, 20), _results(hiv="positive"))
        assert record.overall_status is OverallStatus.NEEDS_FOLLOWUP
        assert record.positive_sti_types() == ["hiv"]

    def test_round_trip(self, screens):
        record = screens.create_screen(
            "usr-ada", date(2026, 2, 20), _results(hpv="pending"), notes="clinic visit"
        )
        loaded = screens.get_screen("usr-ada", record.id)
        assert loaded.results["hpv"] is ScreenResult.PENDING
        assert loaded.overall_status is OverallStatus.PENDING
        assert loaded.notes == "clinic visit"
        assert loaded.test_date == date(2026, 2, 20)

    def test_results_and_notes_encrypted(self, screens, tracing_db):
        screens.create_screen("usr-ada", date(2026, 2, 20), _results(), notes="clinic visit")
        raw = dict(tracing_db.connection.execute("SELECT * FROM health_screens").fetchone())
        assert "chlamydia" not in str(raw)
        assert "clinic visit" not in str(raw)
        assert raw["overall_status"] == "all_clear"

    def test_incomplete_results_not_persisted(self, screens):
        results = _results()
        del results["herpes"]
        with pytest.raises(IncompleteResultsError):
            screens.create_screen("usr-ada", date(2026, 2, 20), results)
        assert screens.list_screens("usr-ada") == []


class TestEdit:
    def test_edit_rederives_status(self, screens):
        record = screens.create_screen("usr-ada", date(2026, 2, 20), _results(hiv="pending"))
        edited = screens.edit_screen("usr-ada", record.id, results=_results(hiv="negative"))
        assert edited.overall_status is OverallStatus.ALL_CLEAR
        assert screens.get_screen("usr-ada", record.id).overall_status is OverallStatus.ALL_CLEAR

    def test_edit_notes_only(self, screens):
        record = screens.create_screen("usr-ada", date(2026, 2, 20), _results(), notes="a")
        edited = screens.edit_screen("usr-ada", record.id, notes=None)
        assert edited.notes is None
        assert edited.overall_status is OverallStatus.ALL_CLEAR

    def test_edit_other_users_screen_not_found(self, screens):
        record = screens.create_screen("usr-ada", date(2026, 2, 20), _results())
        with pytest.raises(NotFoundError):
            screens.edit_screen("usr-eve", record.id, notes="x")

    def test_edit_with_incomplete_results_rejected(self, screens):
        record = screens.create_screen("usr-ada", date(2026, 2, 20), _results())
        with pytest.raises(IncompleteResultsError):
            screens.edit_screen("usr-ada", record.id, results={"hiv": "positive"})


class TestHistory:
    def test_list_newest_test_date_first(self, screens):
        screens.create_screen("usr-ada", date(2026, 1, 5), _results())
        screens.create_screen("usr-ada", date(2026, 2, 5), _results())
        screens.create_screen("usr-ada", date(2025, 12, 5), _results())
        dates = [s.test_date for s in screens.list_screens("usr-ada")]
        assert dates == [date(2026, 2, 5), date(2026, 1, 5), date(2025, 12, 5)]

    def test_latest_screen(self, screens):
        assert screens.latest_screen("usr-ada") is None
        screens.create_screen("usr-ada", date(2026, 1, 5), _results())
        latest = screens.create_screen("usr-ada", date(2026, 2, 5), _results())
        assert screens.latest_screen("usr-ada").id == latest.id

    def test_previous_screen(self, screens):
        first = screens.create_screen("usr-ada", date(2026, 1, 5), _results())
        second = screens.create_screen("usr-ada", date(2026, 2, 5), _results(hiv="positive"))
        assert screens.previous_screen("usr-ada", second).id == first.id
        assert screens.previous_screen("usr-ada", first) is None

    def test_previous_screen_same_day_uses_creation_order(self, screens):
        first = screens.create_screen("usr-ada", date(2026, 2, 5), _results())
        time.sleep(0.002)
        second = screens.create_screen("usr-ada", date(2026, 2, 5), _results(hiv="positive"))
        assert screens.previous_screen("usr-ada", second).id == first.id

    def test_previous_screen_ignores_other_users(self, screens):
        screens.create_screen("usr-eve", date(2026, 1, 5), _results())
        mine = screens.create_screen("usr-ada", date(2026, 2, 5), _results())
        assert screens.previous_screen("usr-ada", mine) is None

    def test_days_since_last_test(self, screens):
        # Clock is frozen at 2026-03-01
        assert screens.days_since_last_test("usr-ada") is None
        screens.create_screen("usr-ada", date(2026, 2, 20), _results())
        assert screens.days_since_last_test("usr-ada") == 9

    def test_count_by_status(self, screens):
        screens.create_screen("usr-ada", date(2026, 1, 5), _results())
        screens.create_screen("usr-ada", date(2026, 2, 5), _results(hiv="positive"))
        counts = screens.count_by_status("usr-ada")
        assert counts == {"all_clear": 1, "needs_followup": 1, "pending": 0}
