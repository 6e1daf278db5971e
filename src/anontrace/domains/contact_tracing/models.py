"""Data models for the contact-tracing domain."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Union

from anontrace.domains.contact_tracing.sti import OverallStatus, ScreenResult

# ---------------------------------------------------------------------------
# Partner references (tagged union)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlatformPartner:
    """A partner who is a platform member."""

    user_id: str
    kind: str = field(default="platform", init=False)

    @property
    def identity(self) -> tuple[str, str]:
        return (self.kind, self.user_id)


@dataclass(frozen=True)
class ManualPartner:
    """A partner the reporter logged as a manual contact."""

    contact_id: str
    kind: str = field(default="manual", init=False)

    @property
    def identity(self) -> tuple[str, str]:
        return (self.kind, self.contact_id)


@dataclass(frozen=True)
class AnonymousPartner:
    """A partner known only by a free-text label; cannot be notified."""

    label: str = ""
    kind: str = field(default="anonymous", init=False)

    @property
    def identity(self) -> None:
        return None


Partner = Union[PlatformPartner, ManualPartner, AnonymousPartner]


# ---------------------------------------------------------------------------
# Ledger, screens, settings
# ---------------------------------------------------------------------------


@dataclass
class Encounter:
    """One entry in a reporter's encounter ledger. Never shown to the partner."""

    id: str
    reporter_id: str
    partner: Partner
    met_at: datetime  # timezone-aware, UTC
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""


@dataclass
class ManualContact:
    """Someone the owner logged by hand."""

    id: str
    owner_id: str
    display_name: str
    phone_number: str | None = None
    social_handle: str | None = None
    created_at: str = ""
    updated_at: str = ""


@dataclass
class HealthScreenRecord:
    """A logged health screen.

    ``overall_status`` is a cached projection of ``results``; only the
    screen store sets it, always via ``derive_overall_status``.
    """

    id: str
    owner_id: str
    test_date: date
    results: dict[str, ScreenResult]
    overall_status: OverallStatus
    notes: str | None = None
    created_at: str = ""
    updated_at: str = ""

    def positive_sti_types(self) -> list[str]:
        return [k for k, v in self.results.items() if v is ScreenResult.POSITIVE]


@dataclass
class ContactTracingSettings:
    """Per-user contact-tracing preferences."""

    user_id: str
    opted_in: bool = False
    screen_reminder_days: int = 90
    screen_reminder_partner_count: int = 10
    updated_at: str = ""


# ---------------------------------------------------------------------------
# Notifications and dispatch results
# ---------------------------------------------------------------------------


class Channel(str, Enum):
    APP = "app"
    SMS = "sms"
    MANUAL_REQUIRED = "manual_required"


@dataclass
class ExposureNotification:
    """Stored notification row. ``source_report_id`` stays server-side."""

    id: str
    recipient: PlatformPartner | ManualPartner
    sti_types: list[str]
    source_report_id: str
    channel: Channel
    delivered: bool = False
    read_at: str | None = None
    time_ago_text: str = ""
    created_at: str = ""


@dataclass
class InboxEntry:
    """What a recipient sees: exposure facts only, no source reference."""

    id: str
    sti_types: list[str]
    time_ago_text: str
    read_at: str | None
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sti_types": list(self.sti_types),
            "time_ago_text": self.time_ago_text,
            "read_at": self.read_at,
            "created_at": self.created_at,
        }


@dataclass
class ManualRequiredContact:
    """A partner the reporter should reach out to personally."""

    partner_kind: str               # 'platform' | 'manual' | 'anonymous'
    reason: str                     # 'no_channel' | 'send_failed' | 'no_identity'
    display_name: str | None = None
    social_handle: str | None = None
    time_ago_text: str = ""
    contact_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "partner_kind": self.partner_kind,
            "reason": self.reason,
            "display_name": self.display_name,
            "social_handle": self.social_handle,
            "time_ago_text": self.time_ago_text,
            "contact_id": self.contact_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManualRequiredContact:
        return cls(
            partner_kind=data.get("partner_kind", "manual"),
            reason=data.get("reason", "no_channel"),
            display_name=data.get("display_name"),
            social_handle=data.get("social_handle"),
            time_ago_text=data.get("time_ago_text", ""),
            contact_id=data.get("contact_id"),
        )


@dataclass
class DispatchResult:
    """Aggregate outcome of one dispatch, returned to the reporter."""

    report_id: str
    app_notified: int = 0
    sms_sent: int = 0
    manual_required: list[ManualRequiredContact] = field(default_factory=list)
    unlinkable_count: int = 0
    replayed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_id": self.report_id,
            "app_notified": self.app_notified,
            "sms_sent": self.sms_sent,
            "manual_required": [c.to_dict() for c in self.manual_required],
            "unlinkable_count": self.unlinkable_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, replayed: bool = False) -> DispatchResult:
        return cls(
            report_id=data["report_id"],
            app_notified=data.get("app_notified", 0),
            sms_sent=data.get("sms_sent", 0),
            manual_required=[
                ManualRequiredContact.from_dict(c) for c in data.get("manual_required", [])
            ],
            unlinkable_count=data.get("unlinkable_count", 0),
            replayed=replayed,
        )


@dataclass
class SubmissionResult:
    """Result of submitting a health screen.

    ``dispatch_error`` is set when the record was saved but its dispatch
    raised; the dispatch can be retried with the record id.
    """

    record: HealthScreenRecord
    dispatch_result: DispatchResult | None = None
    dispatch_error: str | None = None
