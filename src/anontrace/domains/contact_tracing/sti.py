"""Trackable STI catalog and overall-status derivation.

``derive_overall_status`` is the only place a screen's overall status is
computed. Both the submission preview and the dispatch trigger use it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from anontrace.domains.contact_tracing.errors import IncompleteResultsError


class ScreenResult(str, Enum):
    """Result for a single STI within a screen."""

    NEGATIVE = "negative"
    POSITIVE = "positive"
    PENDING = "pending"
    NOT_TESTED = "not_tested"


class OverallStatus(str, Enum):
    """Derived status of a whole screen."""

    ALL_CLEAR = "all_clear"
    NEEDS_FOLLOWUP = "needs_followup"
    PENDING = "pending"


@dataclass(frozen=True)
class StiType:
    id: str
    label: str
    lookback_days: int


# Recipient-facing labels double as SMS copy, hence "an STI" for "other".
STI_TYPES: tuple[StiType, ...] = (
    StiType("chlamydia", "Chlamydia", 30),
    StiType("gonorrhea", "Gonorrhea", 30),
    StiType("syphilis", "Syphilis", 90),
    StiType("hiv", "HIV", 90),
    StiType("herpes", "Herpes", 30),
    StiType("hpv", "HPV", 90),
    StiType("mpox", "Mpox", 21),
    StiType("other", "an STI", 30),
)

STI_BY_ID: dict[str, StiType] = {sti.id: sti for sti in STI_TYPES}
TRACKABLE_STI_IDS: frozenset[str] = frozenset(STI_BY_ID)


def sti_label(sti_id: str) -> str:
    """Human-readable label for an STI id (falls back to the id itself)."""
    sti = STI_BY_ID.get(sti_id)
    return sti.label if sti else sti_id


def max_lookback_days(sti_ids: list[str] | set[str] | frozenset[str]) -> int:
    """Longest lookback among the given STI types."""
    if not sti_ids:
        raise ValueError("At least one STI type is required")
    return max(STI_BY_ID[s].lookback_days for s in sti_ids)


def normalize_results(results: Mapping[str, str | ScreenResult]) -> dict[str, ScreenResult]:
    """Validate a results map and coerce its values to ``ScreenResult``.

    Raises:
        IncompleteResultsError: If any trackable STI is missing, an unknown
            STI id is present, or a value is not a valid result.
    """
    missing = sorted(TRACKABLE_STI_IDS - set(results))
    if missing:
        raise IncompleteResultsError(
            f"Results missing for: {', '.join(missing)}", missing=missing
        )

    unknown = sorted(set(results) - TRACKABLE_STI_IDS)
    if unknown:
        raise IncompleteResultsError(f"Unknown STI types: {', '.join(unknown)}")

    normalized: dict[str, ScreenResult] = {}
    for sti_id, value in results.items():
        try:
            normalized[sti_id] = ScreenResult(value)
        except ValueError:
            raise IncompleteResultsError(
                f"Invalid result {value!r} for {sti_id}"
            ) from None
    return normalized


def derive_overall_status(results: Mapping[str, str | ScreenResult]) -> OverallStatus:
    """Derive a screen's overall status from its complete per-STI results.

    Any positive -> needs_followup; otherwise any pending -> pending;
    otherwise all_clear.
    """
    values = set(normalize_results(results).values())
    if ScreenResult.POSITIVE in values:
        return OverallStatus.NEEDS_FOLLOWUP
    if ScreenResult.PENDING in values:
        return OverallStatus.PENDING
    return OverallStatus.ALL_CLEAR


def positive_sti_types(results: Mapping[str, str | ScreenResult]) -> list[str]:
    """STI ids with a positive result, in catalog order."""
    normalized = normalize_results(results)
    return [
        sti.id for sti in STI_TYPES
        if normalized[sti.id] is ScreenResult.POSITIVE
    ]


def complete_results(
    overrides: Mapping[str, str] | None = None,
    *,
    default: ScreenResult = ScreenResult.NOT_TESTED,
) -> dict[str, str]:
    """Build a full results map from a partial one, filling ``default``.

    Intended for callers (UI, tools) that explicitly choose a fill value;
    ``derive_overall_status`` itself never fills gaps.
    """
    results = {sti.id: default.value for sti in STI_TYPES}
    results.update(overrides or {})
    return results
