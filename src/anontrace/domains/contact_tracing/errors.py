"""Error taxonomy for the contact-tracing domain.

Precondition errors (incomplete results, future encounter dates, missing
consent) abort the whole operation. ``ChannelSendError`` is raised per
partner and always contained by the dispatcher.
"""

from __future__ import annotations

# Raised by the privacy policy when a payload would identify the reporter.
from anontrace.core.privacy.policy import AnonymityViolationError  # noqa: F401


class ContactTracingError(Exception):
    """Base exception for contact-tracing errors."""


class IncompleteResultsError(ContactTracingError):
    """A results map is missing a trackable STI type or holds an invalid value."""

    def __init__(self, message: str, *, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class NotOptedInError(ContactTracingError):
    """Dispatch was requested for a reporter who has not opted in."""


class InvalidEncounterDateError(ContactTracingError):
    """An encounter was logged with a meeting time in the future."""


class ChannelSendError(ContactTracingError):
    """A single SMS or app delivery failed or timed out."""

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(f"{channel} send failed: {reason}")
        self.channel = channel
        self.reason = reason


class NotFoundError(ContactTracingError):
    """An owner-scoped record does not exist (or belongs to someone else)."""
