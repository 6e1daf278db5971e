"""Notification dispatcher.

For one positive report: resolve the exposed partners, pick a channel for
each, send concurrently, and return the aggregate once every send has
finished or failed.

Channel selection per partner:

    platform member, opted in   -> app
    platform member, not opted  -> skipped (no row, not counted)
    manual contact with phone   -> sms
    manual contact, no phone    -> manual_required
    anonymous label             -> manual_required (no row: nobody to key it on)

A failed or timed-out app/SMS send keeps its row (delivered = 0) and the
partner is folded into ``manual_required``. Nothing is dropped silently.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from anontrace.core.privacy.policy import (
    AnonymityViolationError,
    assert_anonymous,
    build_app_payload,
    build_sms_text,
    time_ago_text,
)
from anontrace.domains.contact_tracing.channels import AppNotifier, ChannelResult, SmsGateway
from anontrace.domains.contact_tracing.errors import (
    ChannelSendError,
    NotFoundError,
    NotOptedInError,
)
from anontrace.domains.contact_tracing.models import (
    Channel,
    DispatchResult,
    ExposureNotification,
    ManualContact,
    ManualPartner,
    ManualRequiredContact,
    PlatformPartner,
)
from anontrace.domains.contact_tracing.resolver import ExposedPartner, ResolvedPartners
from anontrace.domains.contact_tracing.sti import STI_TYPES, TRACKABLE_STI_IDS, sti_label

if TYPE_CHECKING:
    from anontrace.core.audit.logger import AuditLogger
    from anontrace.domains.contact_tracing.consent import ConsentGate
    from anontrace.domains.contact_tracing.ledger import EncounterLedger
    from anontrace.domains.contact_tracing.notifications import NotificationStore
    from anontrace.domains.contact_tracing.resolver import ExposureWindowResolver
    from anontrace.domains.contact_tracing.screens import HealthScreenStore

logger = logging.getLogger(__name__)


@dataclass
class _PartnerOutcome:
    """What happened to one partner during a dispatch."""

    partner: PlatformPartner | ManualPartner
    channel: Channel | None          # None = skipped (not opted in)
    delivered: bool
    time_ago: str
    contact: ManualContact | None = None


class NotificationDispatcher:
    """Dispatches anonymous exposure notifications for a positive report.

    Args:
        consent: Opt-in gate (sender and receiver checks).
        screens: Screen store, to load the report and its predecessor.
        ledger: Encounter ledger, for manual contact details.
        resolver: Exposure window resolver.
        store: Notification and dispatch-run persistence.
        app_notifier: In-app delivery capability.
        sms_gateway: SMS delivery capability.
        sms_brand: Prefix for SMS copy.
        max_concurrency: Upper bound on in-flight sends per dispatch.
        send_timeout_s: Per-send timeout; exceeding it counts as a failure.
        run_lease_s: How long a claimed, unfinished run blocks other
            dispatchers before it may be taken over.
        run_poll_interval_s: Poll interval while waiting on another
            dispatcher's run.
        audit_logger: Optional PHI-free audit trail.
    """

    def __init__(
        self,
        *,
        consent: ConsentGate,
        screens: HealthScreenStore,
        ledger: EncounterLedger,
        resolver: ExposureWindowResolver,
        store: NotificationStore,
        app_notifier: AppNotifier,
        sms_gateway: SmsGateway,
        sms_brand: str = "Health Alert",
        max_concurrency: int = 8,
        send_timeout_s: float = 10.0,
        run_lease_s: float = 300.0,
        run_poll_interval_s: float = 0.1,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._consent = consent
        self._screens = screens
        self._ledger = ledger
        self._resolver = resolver
        self._store = store
        self._app = app_notifier
        self._sms = sms_gateway
        self._sms_brand = sms_brand
        self._max_concurrency = max_concurrency
        self._send_timeout_s = send_timeout_s
        self._run_lease_s = run_lease_s
        self._run_poll_interval_s = run_poll_interval_s
        self._audit = audit_logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._report_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        reporter_id: str,
        sti_types: Iterable[str],
        report_id: str,
        *,
        reporter_aliases: Iterable[str] = (),
    ) -> DispatchResult:
        """Notify everyone exposed by ``report_id``.

        Re-dispatching a report returns the original result without sending
        anything again.

        Args:
            reporter_id: Owner of the report.
            sti_types: Positive STI ids to notify about.
            report_id: The health screen that triggered the dispatch.
            reporter_aliases: Extra reporter identifiers (username, display
                name) that must never appear in a payload.

        Raises:
            NotOptedInError: If the reporter has not opted in.
            NotFoundError: If the report does not belong to the reporter.
            ValueError: If ``sti_types`` is empty or holds unknown ids.
        """
        if not self._consent.is_opted_in(reporter_id):
            raise NotOptedInError("Reporter has not opted into contact tracing")

        positive = _ordered_sti_types(sti_types)
        start = time.monotonic()

        lock = self._report_locks.get(report_id)
        if lock is None:
            lock = asyncio.Lock()
            self._report_locks[report_id] = lock

        async with lock:
            previous = self._existing_result(reporter_id, report_id)
            if previous is not None:
                logger.info("Report %s already dispatched; returning stored result", report_id)
                self._log_audit(previous, start)
                return previous

            report = self._screens.get_screen(reporter_id, report_id)
            if report is None:
                raise NotFoundError(f"Health screen {report_id} not found")

            if not self._store.claim_run(report_id, reporter_id):
                # Another dispatcher owns the run; wait for its result.
                previous = await self._await_run(reporter_id, report_id)
                if previous is not None:
                    self._log_audit(previous, start)
                    return previous

            since = self._resolver.window_start(reporter_id, report, positive)
            resolved = self._resolver.resolve_exposed_partners(reporter_id, since)
            forbidden = [reporter_id, report_id, *reporter_aliases]

            outcomes = await self._fan_out(
                reporter_id, report_id, positive, resolved, forbidden
            )
            result = self._aggregate(report_id, outcomes, resolved)
            if not self._store.complete_run(result):
                # A stale owner finished after all; its result stands.
                previous = self._existing_result(reporter_id, report_id)
                if previous is not None:
                    self._log_audit(previous, start)
                    return previous

        logger.info(
            "Dispatch complete for report %s: app=%d sms=%d manual=%d",
            report_id,
            result.app_notified,
            result.sms_sent,
            len(result.manual_required),
        )
        self._log_audit(result, start)
        return result

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _fan_out(
        self,
        reporter_id: str,
        report_id: str,
        sti_types: list[str],
        resolved: ResolvedPartners,
        forbidden: list[str],
    ) -> list[_PartnerOutcome]:
        """Run one task per partner and wait for all of them."""
        manual_ids = [
            p.partner.contact_id for p in resolved.exposed if isinstance(p.partner, ManualPartner)
        ]
        platform_ids = [
            p.partner.user_id for p in resolved.exposed if isinstance(p.partner, PlatformPartner)
        ]
        contacts = self._ledger.get_contacts(reporter_id, manual_ids)
        opted_in = self._consent.opted_in_among(platform_ids)

        semaphore = asyncio.Semaphore(self._max_concurrency)
        now = self._clock()
        tasks = [
            self._deliver(
                exposed,
                report_id=report_id,
                sti_types=sti_types,
                time_ago=time_ago_text(exposed.last_met_at, now),
                contacts=contacts,
                opted_in=opted_in,
                forbidden=forbidden,
                semaphore=semaphore,
            )
            for exposed in resolved.exposed
        ]
        return list(await asyncio.gather(*tasks))

    async def _deliver(
        self,
        exposed: ExposedPartner,
        *,
        report_id: str,
        sti_types: list[str],
        time_ago: str,
        contacts: dict[str, ManualContact],
        opted_in: set[str],
        forbidden: list[str],
        semaphore: asyncio.Semaphore,
    ) -> _PartnerOutcome:
        partner = exposed.partner
        contact: ManualContact | None = None

        if isinstance(partner, PlatformPartner):
            if partner.user_id not in opted_in:
                return _PartnerOutcome(partner, None, False, time_ago)
            channel = Channel.APP
        else:
            contact = contacts.get(partner.contact_id)
            channel = Channel.SMS if contact and contact.phone_number else Channel.MANUAL_REQUIRED

        notification = self._store.insert_notification(
            recipient=partner,
            source_report_id=report_id,
            sti_types=sti_types,
            channel=channel,
            time_ago_text=time_ago,
        )
        if notification is None:
            # Recorded by an earlier attempt at this report; never resend.
            existing = self._store.get_for_recipient(partner, report_id)
            return _PartnerOutcome(
                partner,
                existing.channel if existing else channel,
                bool(existing and existing.delivered),
                existing.time_ago_text if existing else time_ago,
                contact,
            )

        if channel is Channel.MANUAL_REQUIRED:
            return _PartnerOutcome(partner, channel, False, time_ago, contact)

        labels = [sti_label(s) for s in sti_types]
        try:
            async with semaphore:
                await self._send(notification, contact, labels, time_ago, forbidden)
        except ChannelSendError as exc:
            logger.warning("Notification %s not delivered: %s", notification.id, exc.reason)
            self._store.mark_delivered(notification.id, False)
            return _PartnerOutcome(partner, channel, False, time_ago, contact)

        self._store.mark_delivered(notification.id, True)
        return _PartnerOutcome(partner, channel, True, time_ago, contact)

    async def _send(
        self,
        notification: ExposureNotification,
        contact: ManualContact | None,
        labels: list[str],
        time_ago: str,
        forbidden: list[str],
    ) -> None:
        """Build, check and send one payload.

        Raises:
            ChannelSendError: On anonymity violation, timeout, gateway error
                or a negative result.
        """
        channel = notification.channel
        try:
            if channel is Channel.APP:
                payload: Any = build_app_payload(
                    sti_types=notification.sti_types, sti_labels=labels, time_ago=time_ago
                )
                assert_anonymous(payload, forbidden)
                recipient = notification.recipient
                assert isinstance(recipient, PlatformPartner)
                call = self._app.send(recipient.user_id, payload)
            else:
                assert contact is not None and contact.phone_number
                payload = build_sms_text(
                    sti_labels=labels, time_ago=time_ago, brand=self._sms_brand
                )
                assert_anonymous(payload, forbidden)
                call = self._sms.send_sms(contact.phone_number, payload)
        except AnonymityViolationError as exc:
            logger.error("Blocked %s payload for notification %s: %s", channel.value, notification.id, exc)
            raise ChannelSendError(channel.value, "anonymity check failed") from exc

        try:
            result: ChannelResult = await asyncio.wait_for(call, timeout=self._send_timeout_s)
        except asyncio.TimeoutError:
            raise ChannelSendError(channel.value, f"timed out after {self._send_timeout_s}s") from None
        except Exception as exc:
            raise ChannelSendError(channel.value, type(exc).__name__) from exc

        if not result.ok:
            raise ChannelSendError(channel.value, result.error or "rejected")

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def _aggregate(
        self,
        report_id: str,
        outcomes: list[_PartnerOutcome],
        resolved: ResolvedPartners,
    ) -> DispatchResult:
        result = DispatchResult(report_id=report_id)
        now = self._clock()

        for outcome in outcomes:
            if outcome.channel is None:
                continue
            if outcome.channel is Channel.APP and outcome.delivered:
                result.app_notified += 1
            elif outcome.channel is Channel.SMS and outcome.delivered:
                result.sms_sent += 1
            else:
                result.manual_required.append(_manual_entry(outcome))

        for entry in resolved.unlinkable:
            result.manual_required.append(ManualRequiredContact(
                partner_kind="anonymous",
                reason="no_identity",
                display_name=entry.label or None,
                time_ago_text=time_ago_text(entry.last_met_at, now),
            ))
        result.unlinkable_count = len(resolved.unlinkable)
        return result

    def _existing_result(self, reporter_id: str, report_id: str) -> DispatchResult | None:
        run = self._store.get_run(report_id)
        if run is None:
            return None
        if run.reporter_id != reporter_id:
            raise NotFoundError(f"Health screen {report_id} not found")
        return run.result if run.completed else None

    async def _await_run(self, reporter_id: str, report_id: str) -> DispatchResult | None:
        """Wait for another dispatcher's run of ``report_id`` to finish.

        Returns:
            The stored result, or None once the run's lease expired and this
            dispatcher took it over.
        """
        while True:
            previous = self._existing_result(reporter_id, report_id)
            if previous is not None:
                return previous
            if self._store.take_over_stale_run(report_id, self._run_lease_s):
                logger.warning("Taking over stale dispatch for report %s", report_id)
                return None
            await asyncio.sleep(self._run_poll_interval_s)

    def _log_audit(self, result: DispatchResult, start: float) -> None:
        if self._audit is None:
            return
        self._audit.log_dispatch(
            report_id=result.report_id,
            app_notified=result.app_notified,
            sms_sent=result.sms_sent,
            manual_required=len(result.manual_required),
            replayed=result.replayed,
            duration_ms=(time.monotonic() - start) * 1000,
        )


def _manual_entry(outcome: _PartnerOutcome) -> ManualRequiredContact:
    reason = "no_channel" if outcome.channel is Channel.MANUAL_REQUIRED else "send_failed"
    contact = outcome.contact
    if isinstance(outcome.partner, ManualPartner):
        return ManualRequiredContact(
            partner_kind="manual",
            reason=reason,
            display_name=contact.display_name if contact else None,
            social_handle=contact.social_handle if contact else None,
            time_ago_text=outcome.time_ago,
            contact_id=outcome.partner.contact_id,
        )
    return ManualRequiredContact(
        partner_kind="platform",
        reason=reason,
        time_ago_text=outcome.time_ago,
    )


def _ordered_sti_types(sti_types: Iterable[str]) -> list[str]:
    """Validate STI ids and return them de-duplicated in catalog order."""
    requested = set(sti_types)
    if not requested:
        raise ValueError("At least one positive STI type is required")
    unknown = requested - TRACKABLE_STI_IDS
    if unknown:
        raise ValueError(f"Unknown STI types: {sorted(unknown)}")
    return [sti.id for sti in STI_TYPES if sti.id in requested]
