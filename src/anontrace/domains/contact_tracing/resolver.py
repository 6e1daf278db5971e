"""Exposure window resolver.

Turns a reporter's encounter ledger into the set of distinct partners met
inside the exposure window. Read-only: never mutates the ledger or the
screen store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from anontrace.core.config.settings import LookbackPolicy
from anontrace.core.storage.repository import start_of_day
from anontrace.domains.contact_tracing.ledger import EncounterLedger
from anontrace.domains.contact_tracing.models import (
    AnonymousPartner,
    HealthScreenRecord,
    ManualPartner,
    PlatformPartner,
)
from anontrace.domains.contact_tracing.screens import HealthScreenStore
from anontrace.domains.contact_tracing.sti import max_lookback_days

logger = logging.getLogger(__name__)


@dataclass
class ExposedPartner:
    """A distinct linkable partner and their most recent in-window encounter."""

    partner: PlatformPartner | ManualPartner
    last_met_at: datetime
    encounter_count: int = 1


@dataclass
class UnlinkablePartner:
    """An anonymous-label entry: in window, but nobody to notify."""

    label: str
    last_met_at: datetime


@dataclass
class ResolvedPartners:
    """Resolver output. Treat ``exposed`` as a set; order is not meaningful."""

    exposed: list[ExposedPartner] = field(default_factory=list)
    unlinkable: list[UnlinkablePartner] = field(default_factory=list)
    window_start: datetime | None = None

    def __len__(self) -> int:
        return len(self.exposed)


class ExposureWindowResolver:
    """Computes exposed partners for a reporter.

    Args:
        ledger: The encounter ledger to scan.
        screens: Screen store, for the previous-screen window bound.
        first_screen_lookback: Policy when no earlier screen exists.
        first_screen_lookback_days: Window length for the ``fixed`` policy.
    """

    def __init__(
        self,
        ledger: EncounterLedger,
        screens: HealthScreenStore,
        *,
        first_screen_lookback: LookbackPolicy = "per_sti",
        first_screen_lookback_days: int = 90,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if first_screen_lookback not in ("all_time", "per_sti", "fixed"):
            raise ValueError(f"Unknown lookback policy: {first_screen_lookback!r}")
        self._ledger = ledger
        self._screens = screens
        self._policy = first_screen_lookback
        self._fixed_days = first_screen_lookback_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def window_start(
        self,
        reporter_id: str,
        report: HealthScreenRecord,
        sti_types: list[str],
    ) -> datetime | None:
        """Start of the exposure window for ``report`` (``None`` = all time)."""
        previous = self._screens.previous_screen(reporter_id, report)
        if previous is not None:
            return start_of_day(previous.test_date)

        report_start = start_of_day(report.test_date)
        if self._policy == "all_time":
            return None
        if self._policy == "per_sti":
            return report_start - timedelta(days=max_lookback_days(sti_types))
        return report_start - timedelta(days=self._fixed_days)

    def resolve_exposed_partners(
        self, reporter_id: str, since: datetime | None
    ) -> ResolvedPartners:
        """Distinct partners with an encounter at or after ``since``.

        Multiple encounters with the same partner collapse into one entry.
        Anonymous-label encounters are reported separately as unlinkable.
        """
        now = self._clock()
        by_identity: dict[tuple[str, str], ExposedPartner] = {}
        unlinkable: dict[str, UnlinkablePartner] = {}

        for encounter in self._ledger.list_encounters(reporter_id, since=since):
            if encounter.met_at > now:
                # The ledger rejects these on write; skip anything that slipped in.
                logger.warning("Skipping future-dated encounter %s", encounter.id)
                continue

            partner = encounter.partner
            if isinstance(partner, AnonymousPartner):
                # Same label is the same person as far as anyone can tell.
                key = partner.label.strip().lower() or encounter.id
                seen = unlinkable.get(key)
                if seen is None:
                    unlinkable[key] = UnlinkablePartner(partner.label, encounter.met_at)
                elif encounter.met_at > seen.last_met_at:
                    seen.last_met_at = encounter.met_at
                continue

            existing = by_identity.get(partner.identity)
            if existing is None:
                by_identity[partner.identity] = ExposedPartner(partner, encounter.met_at)
            else:
                existing.encounter_count += 1
                if encounter.met_at > existing.last_met_at:
                    existing.last_met_at = encounter.met_at

        resolved = ResolvedPartners(
            exposed=list(by_identity.values()),
            unlinkable=list(unlinkable.values()),
            window_start=since,
        )
        logger.info(
            "Resolved %d exposed partners (%d unlinkable entries)",
            len(resolved.exposed),
            len(resolved.unlinkable),
        )
        return resolved
