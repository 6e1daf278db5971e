"""Tests for the exposure window resolver."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from anontrace.domains.contact_tracing.models import (
    AnonymousPartner,
    ManualPartner,
    PlatformPartner,
)
from anontrace.domains.contact_tracing.resolver import ExposureWindowResolver
from anontrace.domains.contact_tracing.sti import TRACKABLE_STI_IDS


def _results(**overrides: str) -> dict[str, str]:
    results = {sti_id: "negative" for sti_id in TRACKABLE_STI_IDS}
    results.update(overrides)
    return results


class TestResolveExposedPartners:
    def test_deduplicates_by_partner_keeping_latest(self, ledger, resolver, now):
        ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now - timedelta(days=20))
        ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now - timedelta(days=3))
        ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now - timedelta(days=9))

        resolved = resolver.resolve_exposed_partners("usr-ada", now - timedelta(days=30))

        assert len(resolved) == 1
        exposed = resolved.exposed[0]
        assert exposed.partner == PlatformPartner("usr-ben")
        assert exposed.last_met_at == now - timedelta(days=3)
        assert exposed.encounter_count == 3

    def test_window_is_inclusive(self, ledger, resolver, now):
        since = now - timedelta(days=10)
        ledger.log_encounter("usr-ada", PlatformPartner("usr-on-edge"), since)
        ledger.log_encounter(
            "usr-ada", PlatformPartner("usr-just-before"), since - timedelta(microseconds=1)
        )

        resolved = resolver.resolve_exposed_partners("usr-ada", since)

        assert {p.partner.user_id for p in resolved.exposed} == {"usr-on-edge"}

    def test_none_means_all_time(self, ledger, resolver, now):
        ledger.log_encounter("usr-ada", PlatformPartner("usr-old"), now - timedelta(days=900))
        assert len(resolver.resolve_exposed_partners("usr-ada", None)) == 1

    def test_platform_and_manual_are_distinct_identities(self, ledger, resolver, now):
        contact = ledger.add_contact("usr-ada", "Sam")
        ledger.log_encounter("usr-ada", PlatformPartner(contact.id), now - timedelta(days=1))
        ledger.log_encounter("usr-ada", ManualPartner(contact.id), now - timedelta(days=1))
        assert len(resolver.resolve_exposed_partners("usr-ada", None)) == 2

    def test_anonymous_entries_are_unlinkable(self, ledger, resolver, now):
        ledger.log_encounter("usr-ada", AnonymousPartner("Tall guy"), now - timedelta(days=5))
        ledger.log_encounter("usr-ada", AnonymousPartner("tall guy "), now - timedelta(days=2))
        ledger.log_encounter("usr-ada", AnonymousPartner(""), now - timedelta(days=2))
        ledger.log_encounter("usr-ada", AnonymousPartner(""), now - timedelta(days=4))

        resolved = resolver.resolve_exposed_partners("usr-ada", None)

        assert resolved.exposed == []
        # Same label collapses; unlabelled entries stay separate.
        assert len(resolved.unlinkable) == 3
        labelled = [u for u in resolved.unlinkable if u.label]
        assert labelled[0].last_met_at == now - timedelta(days=2)

    def test_future_rows_skipped(self, ledger, screens, now):
        ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now - timedelta(days=1))
        # A resolver whose clock is a day behind sees that encounter as future-dated.
        lagging = ExposureWindowResolver(
            ledger, screens, clock=lambda: now - timedelta(days=2)
        )
        assert len(lagging.resolve_exposed_partners("usr-ada", None)) == 0

    def test_other_reporters_ignored(self, ledger, resolver, now):
        ledger.log_encounter("usr-eve", PlatformPartner("usr-ben"), now - timedelta(days=1))
        assert len(resolver.resolve_exposed_partners("usr-ada", None)) == 0


class TestWindowStart:
    def test_previous_screen_bounds_window(self, screens, resolver):
        screens.create_screen("usr-ada", date(2026, 1, 10), _results())
        report = screens.create_screen("usr-ada", date(2026, 2, 20), _results(hiv="positive"))
        assert resolver.window_start("usr-ada", report, ["hiv"]) == datetime(
            2026, 1, 10, tzinfo=timezone.utc
        )

    def test_per_sti_first_screen(self, screens, resolver):
        report = screens.create_screen(
            "usr-ada", date(2026, 2, 20), _results(chlamydia="positive", mpox="positive")
        )
        # max(chlamydia 30, mpox 21) = 30 days
        assert resolver.window_start("usr-ada", report, ["chlamydia", "mpox"]) == datetime(
            2026, 1, 21, tzinfo=timezone.utc
        )

    def test_all_time_first_screen(self, ledger, screens, clock):
        resolver = ExposureWindowResolver(ledger, screens, first_screen_lookback="all_time", clock=clock)
        report = screens.create_screen("usr-ada", date(2026, 2, 20), _results(hiv="positive"))
        assert resolver.window_start("usr-ada", report, ["hiv"]) is None

    def test_fixed_first_screen(self, ledger, screens, clock):
        resolver = ExposureWindowResolver(
            ledger, screens, first_screen_lookback="fixed", first_screen_lookback_days=14, clock=clock
        )
        report = screens.create_screen("usr-ada", date(2026, 2, 20), _results(hiv="positive"))
        assert resolver.window_start("usr-ada", report, ["hiv"]) == datetime(
            2026, 2, 6, tzinfo=timezone.utc
        )

    def test_later_screen_does_not_bound_earlier_report(self, screens, resolver):
        report = screens.create_screen("usr-ada", date(2026, 1, 10), _results(hiv="positive"))
        screens.create_screen("usr-ada", date(2026, 2, 20), _results())
        # No screen before the report: per-STI lookback (hiv 90 days)
        assert resolver.window_start("usr-ada", report, ["hiv"]) == datetime(
            2025, 10, 12, tzinfo=timezone.utc
        )

    def test_unknown_policy_rejected(self, ledger, screens):
        with pytest.raises(ValueError):
            ExposureWindowResolver(ledger, screens, first_screen_lookback="forever")
