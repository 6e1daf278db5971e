"""Caller-facing contact-tracing operations.

``submit_health_screen`` is the entry point that ties the pieces together:
validate, persist, and (when the reporter is opted in and something came
back positive) dispatch exposure notifications.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date

from anontrace.domains.contact_tracing.consent import ConsentGate
from anontrace.domains.contact_tracing.dispatcher import NotificationDispatcher
from anontrace.domains.contact_tracing.errors import NotFoundError
from anontrace.domains.contact_tracing.models import DispatchResult, SubmissionResult
from anontrace.domains.contact_tracing.screens import HealthScreenStore
from anontrace.domains.contact_tracing.sti import ScreenResult, normalize_results

logger = logging.getLogger(__name__)


class ContactTracingService:
    """Submission workflow on top of the screen store, consent gate and dispatcher."""

    def __init__(
        self,
        *,
        screens: HealthScreenStore,
        consent: ConsentGate,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._screens = screens
        self._consent = consent
        self._dispatcher = dispatcher

    async def submit_health_screen(
        self,
        reporter_id: str,
        test_date: date,
        results: Mapping[str, str | ScreenResult],
        notes: str | None = None,
        *,
        reporter_aliases: Iterable[str] = (),
    ) -> SubmissionResult:
        """Save a health screen and notify exposed partners if it is positive.

        The record is written before any dispatch starts, so a dispatch
        failure never loses it; ``dispatch_error`` is set instead and
        ``dispatch_report`` can retry later.

        Raises:
            IncompleteResultsError: If ``results`` is incomplete or invalid.
                Nothing is persisted in that case.
        """
        normalize_results(results)
        record = self._screens.create_screen(reporter_id, test_date, results, notes)

        positive = record.positive_sti_types()
        if not positive:
            return SubmissionResult(record=record)
        if not self._consent.is_opted_in(reporter_id):
            logger.info("Positive screen %s saved; reporter not opted in, no dispatch", record.id)
            return SubmissionResult(record=record)

        try:
            dispatch_result = await self._dispatcher.dispatch(
                reporter_id, positive, record.id, reporter_aliases=reporter_aliases
            )
        except Exception as exc:
            logger.exception("Dispatch for screen %s failed; record kept", record.id)
            return SubmissionResult(record=record, dispatch_error=type(exc).__name__)
        return SubmissionResult(record=record, dispatch_result=dispatch_result)

    async def dispatch_report(
        self,
        reporter_id: str,
        report_id: str,
        *,
        reporter_aliases: Iterable[str] = (),
    ) -> DispatchResult:
        """(Re)dispatch an existing positive screen.

        Completed dispatches return their stored result; nothing is resent.

        Raises:
            NotFoundError: If the screen is not the reporter's, or has no
                positive result.
            NotOptedInError: If the reporter is not opted in.
        """
        record = self._screens.get_screen(reporter_id, report_id)
        if record is None:
            raise NotFoundError(f"Health screen {report_id} not found")
        positive = record.positive_sti_types()
        if not positive:
            raise NotFoundError(f"Health screen {report_id} has no positive result")
        return await self._dispatcher.dispatch(
            reporter_id, positive, report_id, reporter_aliases=reporter_aliases
        )
