"""Privacy policy for what an exposure notification may carry.

Recipients learn three things and nothing more:
- that a recent partner tested positive,
- for which STI type(s),
- roughly when the encounter was (a coarse relative phrase).

Every payload handed to a delivery channel is built here and checked by
``assert_anonymous`` against the reporter's identifiers first. The check
runs for every channel, including ones added later.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from typing import Any

# Keys an app payload may contain. Anything else is a leak waiting to happen.
ALLOWED_PAYLOAD_KEYS = frozenset({"kind", "sti_types", "sti_labels", "time_ago_text", "message"})

# Identifiers shorter than this are too likely to occur inside ordinary copy.
_MIN_IDENTIFIER_LENGTH = 3


class AnonymityViolationError(Exception):
    """A payload would reveal something about the reporting user."""


# Fixed copy. Everything a payload says apart from STI labels, the time
# phrase and the SMS brand comes from these strings.
_TIME_PHRASES = (
    "in the past week",
    "about 2 weeks ago",
    "about a month ago",
    "several weeks ago",
    "a few months ago",
)
_APP_LEAD = "A recent partner has tested positive for"
_APP_EXPOSURE = "Based on an encounter"
_APP_EXPOSED = ", you may have been exposed."
_APP_TAIL = (
    "Consider getting tested. This notification is anonymous - no identifying "
    "information about the other person has been shared."
)
_SMS_LEAD = ": Someone you were with"
_SMS_POSITIVE = "has tested positive for"
_SMS_TAIL = (
    "We recommend getting tested. This message is anonymous - no identifying "
    "information has been shared. Reply STOP to opt out."
)
_FIXED_COPY = sorted(
    (
        *_TIME_PHRASES,
        _APP_LEAD, _APP_EXPOSURE, _APP_EXPOSED, _APP_TAIL,
        _SMS_LEAD, _SMS_POSITIVE, _SMS_TAIL,
        "exposure_alert",
    ),
    key=len,
    reverse=True,
)


def time_ago_text(met_at: datetime, now: datetime) -> str:
    """Coarse, deliberately vague phrase for when an encounter happened."""
    days = max(0, (now - met_at).days)
    if days <= 7:
        return _TIME_PHRASES[0]
    if days <= 14:
        return _TIME_PHRASES[1]
    if days <= 31:
        return _TIME_PHRASES[2]
    if days <= 60:
        return _TIME_PHRASES[3]
    return _TIME_PHRASES[4]


def _join_labels(labels: list[str]) -> str:
    if len(labels) == 1:
        return labels[0]
    return ", ".join(labels[:-1]) + " and " + labels[-1]


def build_app_payload(
    *, sti_types: list[str], sti_labels: list[str], time_ago: str
) -> dict[str, Any]:
    """In-app exposure payload."""
    return {
        "kind": "exposure_alert",
        "sti_types": list(sti_types),
        "sti_labels": list(sti_labels),
        "time_ago_text": time_ago,
        "message": (
            f"{_APP_LEAD} {_join_labels(sti_labels)}. "
            f"{_APP_EXPOSURE} {time_ago}{_APP_EXPOSED} {_APP_TAIL}"
        ),
    }


def build_sms_text(*, sti_labels: list[str], time_ago: str, brand: str) -> str:
    """SMS body for manual contacts with a phone number."""
    return (
        f"{brand}{_SMS_LEAD} {time_ago} {_SMS_POSITIVE} "
        f"{_join_labels(sti_labels)}. {_SMS_TAIL}"
    )


def _payload_text(payload: str | dict[str, Any]) -> str:
    """Every string value in the payload, one per line. Keys are ours."""
    if isinstance(payload, str):
        return payload
    parts: list[str] = []
    for value in payload.values():
        if isinstance(value, (list, tuple)):
            parts.extend(str(item) for item in value)
        else:
            parts.append(str(value))
    return "\n".join(parts)


def _variable_text(text: str) -> str:
    """Blank out the fixed copy so only inserted values remain."""
    folded = text.casefold()
    for phrase in _FIXED_COPY:
        folded = folded.replace(phrase.casefold(), "\n")
    return folded


def assert_anonymous(payload: str | dict[str, Any], forbidden: Iterable[str | None]) -> None:
    """Raise if ``payload`` could identify the reporter.

    Identifiers are matched as whole words against what the payload adds
    to the fixed copy (STI labels, time phrase, brand, anything appended).
    A username such as "Art" therefore does not trip on "partner".

    Args:
        payload: SMS text or app payload dict.
        forbidden: Reporter identifiers (user id, username, display name,
            report id). Empty values are ignored.

    Raises:
        AnonymityViolationError: On an unexpected payload key or a forbidden
            identifier appearing in the payload.
    """
    if isinstance(payload, dict):
        extra = set(payload) - ALLOWED_PAYLOAD_KEYS
        if extra:
            raise AnonymityViolationError(f"Unexpected payload fields: {sorted(extra)}")

    haystack = _variable_text(_payload_text(payload))
    for identifier in forbidden:
        if not identifier or len(identifier.strip()) < _MIN_IDENTIFIER_LENGTH:
            continue
        pattern = r"(?<!\w)" + re.escape(identifier.strip().casefold()) + r"(?!\w)"
        if re.search(pattern, haystack):
            # Do not echo the identifier back into logs or error messages.
            raise AnonymityViolationError("Payload contains a reporter identifier")
