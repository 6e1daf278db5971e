"""Tests for EncounterLedger: encounters and manual contacts."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from anontrace.core.storage.repository import RepositoryError
from anontrace.domains.contact_tracing.errors import InvalidEncounterDateError, NotFoundError
from anontrace.domains.contact_tracing.models import (
    AnonymousPartner,
    ManualPartner,
    PlatformPartner,
)


class TestLogEncounter:
    def test_platform_partner(self, ledger, now):
        enc = ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now - timedelta(days=2))
        loaded = ledger.get_encounter("usr-ada", enc.id)
        assert loaded.partner == PlatformPartner("usr-ben")
        assert loaded.met_at == now - timedelta(days=2)

    def test_manual_partner(self, ledger, now):
        contact = ledger.add_contact("usr-ada", "Sam", phone_number="+15550100")
        enc = ledger.log_encounter("usr-ada", ManualPartner(contact.id), now)
        assert ledger.get_encounter("usr-ada", enc.id).partner == ManualPartner(contact.id)

    def test_anonymous_label_encrypted(self, ledger, tracing_db, now):
        ledger.log_encounter("usr-ada", AnonymousPartner("guy from the party"), now)
        raw = tracing_db.connection.execute("SELECT anonymous_label_enc FROM encounters").fetchone()[0]
        assert "party" not in raw
        assert ledger.list_encounters("usr-ada")[0].partner == AnonymousPartner("guy from the party")

    def test_metadata_round_trip(self, ledger, now):
        enc = ledger.log_encounter("usr-ada", AnonymousPartner(), now, {"location": "home"})
        assert ledger.get_encounter("usr-ada", enc.id).metadata == {"location": "home"}

    def test_future_met_at_rejected(self, ledger, now):
        with pytest.raises(InvalidEncounterDateError):
            ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now + timedelta(minutes=1))
        assert ledger.count_encounters("usr-ada") == 0

    def test_naive_met_at_rejected(self, ledger):
        with pytest.raises(InvalidEncounterDateError):
            ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), datetime(2026, 1, 1))

    def test_non_utc_offset_normalised(self, ledger, now):
        plus_five = timezone(timedelta(hours=5))
        enc = ledger.log_encounter(
            "usr-ada", PlatformPartner("usr-ben"), datetime(2026, 2, 1, 10, 0, tzinfo=plus_five)
        )
        assert enc.met_at == datetime(2026, 2, 1, 5, 0, tzinfo=timezone.utc)

    def test_self_encounter_rejected(self, ledger, now):
        with pytest.raises(RepositoryError):
            ledger.log_encounter("usr-ada", PlatformPartner("usr-ada"), now)

    def test_foreign_contact_rejected(self, ledger, now):
        contact = ledger.add_contact("usr-other", "Sam")
        with pytest.raises(NotFoundError):
            ledger.log_encounter("usr-ada", ManualPartner(contact.id), now)


class TestQueries:
    def test_list_newest_first_and_since_inclusive(self, ledger, now):
        since = now - timedelta(days=10)
        ledger.log_encounter("usr-ada", PlatformPartner("usr-a"), since)
        ledger.log_encounter("usr-ada", PlatformPartner("usr-b"), since - timedelta(microseconds=1))
        ledger.log_encounter("usr-ada", PlatformPartner("usr-c"), now - timedelta(days=1))

        encounters = ledger.list_encounters("usr-ada", since=since)
        assert [e.partner.user_id for e in encounters] == ["usr-c", "usr-a"]
        assert ledger.count_encounters("usr-ada", since=since) == 2
        assert ledger.count_encounters("usr-ada") == 3

    def test_scoped_to_reporter(self, ledger, now):
        enc = ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now)
        assert ledger.get_encounter("usr-eve", enc.id) is None
        assert ledger.list_encounters("usr-eve") == []


class TestUpdateAndDelete:
    def test_update_met_at(self, ledger, now):
        enc = ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now - timedelta(days=5))
        updated = ledger.update_encounter("usr-ada", enc.id, met_at=now - timedelta(days=3))
        assert updated.met_at == now - timedelta(days=3)
        assert updated.partner == PlatformPartner("usr-ben")

    def test_update_partner_kind(self, ledger, now):
        enc = ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now)
        ledger.update_encounter("usr-ada", enc.id, partner=AnonymousPartner("someone"))
        assert ledger.get_encounter("usr-ada", enc.id).partner == AnonymousPartner("someone")

    def test_update_future_rejected(self, ledger, now):
        enc = ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now)
        with pytest.raises(InvalidEncounterDateError):
            ledger.update_encounter("usr-ada", enc.id, met_at=now + timedelta(days=1))

    def test_update_by_other_user_is_not_found(self, ledger, now):
        enc = ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now)
        with pytest.raises(NotFoundError):
            ledger.update_encounter("usr-eve", enc.id, met_at=now)

    def test_delete(self, ledger, now):
        enc = ledger.log_encounter("usr-ada", PlatformPartner("usr-ben"), now)
        assert ledger.delete_encounter("usr-eve", enc.id) is False
        assert ledger.delete_encounter("usr-ada", enc.id) is True
        assert ledger.get_encounter("usr-ada", enc.id) is None


class TestManualContacts:
    def test_add_strips_and_encrypts(self, ledger, tracing_db):
        contact = ledger.add_contact("usr-ada", "  Samantha  ", phone_number=" +15550100 ", social_handle="")
        assert contact.display_name == "Samantha"
        assert contact.phone_number == "+15550100"
        assert contact.social_handle is None
        raw = dict(tracing_db.connection.execute("SELECT * FROM manual_contacts").fetchone())
        assert "Samantha" not in str(raw)
        assert "5550100" not in str(raw)

    def test_empty_name_rejected(self, ledger):
        with pytest.raises(RepositoryError):
            ledger.add_contact("usr-ada", "   ")

    def test_update_clears_phone(self, ledger):
        contact = ledger.add_contact("usr-ada", "Sam", phone_number="+15550100")
        updated = ledger.update_contact("usr-ada", contact.id, phone_number=None)
        assert updated.phone_number is None
        assert ledger.get_contact("usr-ada", contact.id).phone_number is None

    def test_update_keeps_unspecified_fields(self, ledger):
        contact = ledger.add_contact("usr-ada", "Sam", phone_number="+15550100", social_handle="@sam")
        updated = ledger.update_contact("usr-ada", contact.id, display_name="Samantha")
        assert updated.display_name == "Samantha"
        assert updated.phone_number == "+15550100"
        assert updated.social_handle == "@sam"

    def test_update_foreign_contact_not_found(self, ledger):
        contact = ledger.add_contact("usr-ada", "Sam")
        with pytest.raises(NotFoundError):
            ledger.update_contact("usr-eve", contact.id, display_name="X")

    def test_get_contacts_batch_is_owner_scoped(self, ledger):
        mine = ledger.add_contact("usr-ada", "Sam")
        theirs = ledger.add_contact("usr-eve", "Kim")
        found = ledger.get_contacts("usr-ada", [mine.id, theirs.id])
        assert set(found) == {mine.id}

    def test_delete_contact_keeps_encounters_as_anonymous(self, ledger, now):
        contact = ledger.add_contact("usr-ada", "Sam", phone_number="+15550100")
        enc = ledger.log_encounter("usr-ada", ManualPartner(contact.id), now - timedelta(days=1))

        assert ledger.delete_contact("usr-ada", contact.id) is True

        assert ledger.get_contact("usr-ada", contact.id) is None
        kept = ledger.get_encounter("usr-ada", enc.id)
        assert kept.partner == AnonymousPartner("Sam")
        assert kept.met_at == now - timedelta(days=1)

    def test_delete_foreign_contact(self, ledger):
        contact = ledger.add_contact("usr-ada", "Sam")
        assert ledger.delete_contact("usr-eve", contact.id) is False
        assert ledger.get_contact("usr-ada", contact.id) is not None

    def test_list_contacts(self, ledger):
        ledger.add_contact("usr-ada", "Sam")
        ledger.add_contact("usr-ada", "Kim")
        ledger.add_contact("usr-eve", "Lee")
        assert {c.display_name for c in ledger.list_contacts("usr-ada")} == {"Sam", "Kim"}
