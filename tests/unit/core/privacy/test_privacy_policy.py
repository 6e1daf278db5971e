"""Unit tests for the anonymity policy: payload builders and enforcement."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from anontrace.core.privacy.policy import (
    ALLOWED_PAYLOAD_KEYS,
    AnonymityViolationError,
    assert_anonymous,
    build_app_payload,
    build_sms_text,
    time_ago_text,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestTimeAgoText:
    @pytest.mark.parametrize(
        ("days", "expected"),
        [
            (0, "in the past week"),
            (7, "in the past week"),
            (8, "about 2 weeks ago"),
            (14, "about 2 weeks ago"),
            (31, "about a month ago"),
            (45, "several weeks ago"),
            (61, "a few months ago"),
        ],
    )
    def test_buckets(self, days, expected):
        assert time_ago_text(NOW - timedelta(days=days), NOW) == expected

    def test_future_clamps_to_past_week(self):
        assert time_ago_text(NOW + timedelta(days=3), NOW) == "in the past week"


class TestBuilders:
    def test_app_payload_uses_allowed_keys_only(self):
        payload = build_app_payload(
            sti_types=["hiv"], sti_labels=["HIV"], time_ago="in the past week"
        )
        assert set(payload) <= ALLOWED_PAYLOAD_KEYS
        assert payload["kind"] == "exposure_alert"
        assert "HIV" in payload["message"]

    def test_multiple_labels_joined(self):
        payload = build_app_payload(
            sti_types=["chlamydia", "gonorrhea", "syphilis"],
            sti_labels=["Chlamydia", "Gonorrhea", "Syphilis"],
            time_ago="about a month ago",
        )
        assert "Chlamydia, Gonorrhea and Syphilis" in payload["message"]

    def test_sms_text(self):
        text = build_sms_text(sti_labels=["Syphilis"], time_ago="about 2 weeks ago", brand="Clinic")
        assert text.startswith("Clinic: Someone you were with about 2 weeks ago")
        assert "tested positive for Syphilis" in text
        assert text.endswith("Reply STOP to opt out.")


class TestAssertAnonymous:
    def test_clean_payload_passes(self):
        payload = build_app_payload(sti_types=["hiv"], sti_labels=["HIV"], time_ago="in the past week")
        assert_anonymous(payload, ["usr-8f2a91", "jordan_k", "f4c1d2e0-report"])

    def test_extra_key_rejected(self):
        payload = build_app_payload(sti_types=["hiv"], sti_labels=["HIV"], time_ago="in the past week")
        payload["reporter"] = "someone"
        with pytest.raises(AnonymityViolationError, match="Unexpected payload fields"):
            assert_anonymous(payload, [])

    def test_identifier_in_message_rejected(self):
        payload = build_app_payload(sti_types=["hiv"], sti_labels=["HIV"], time_ago="in the past week")
        payload["message"] += " From Jordan_K."
        with pytest.raises(AnonymityViolationError):
            assert_anonymous(payload, ["jordan_k"])

    def test_identifier_in_sms_rejected_without_echo(self):
        text = build_sms_text(sti_labels=["HIV"], time_ago="in the past week", brand="usr-8f2a91")
        with pytest.raises(AnonymityViolationError) as excinfo:
            assert_anonymous(text, ["usr-8f2a91"])
        assert "usr-8f2a91" not in str(excinfo.value)

    def test_short_or_empty_identifiers_ignored(self):
        text = build_sms_text(sti_labels=["HIV"], time_ago="in the past week", brand="Health Alert")
        assert_anonymous(text, ["", None, "ab"])

    @pytest.mark.parametrize("alias", ["Art", "Tes", "Rec", "Con", "partner", "week"])
    def test_aliases_inside_fixed_copy_pass(self, alias):
        payload = build_app_payload(
            sti_types=["hiv"], sti_labels=["HIV"], time_ago="in the past week"
        )
        text = build_sms_text(sti_labels=["HIV"], time_ago="about 2 weeks ago", brand="Health Alert")
        assert_anonymous(payload, [alias])
        assert_anonymous(text, [alias])

    def test_alias_matched_as_whole_word_in_brand(self):
        text = build_sms_text(sti_labels=["HIV"], time_ago="in the past week", brand="Art's Clinic")
        with pytest.raises(AnonymityViolationError):
            assert_anonymous(text, ["art"])
        assert_anonymous(
            build_sms_text(sti_labels=["HIV"], time_ago="in the past week", brand="Artisan Clinic"),
            ["art"],
        )

    def test_payload_keys_are_not_searched(self):
        payload = build_app_payload(sti_types=["hiv"], sti_labels=["HIV"], time_ago="in the past week")
        assert_anonymous(payload, ["message", "sti_labels"])
