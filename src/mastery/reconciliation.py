"""
Reconciliation Engine (pure part).

Decides, per standard, what to write when a freshly classified suggestion
meets the persisted status. No storage or UI here: the merge is a pure
function of (persisted, suggestion).

Rules:
- no row                      -> insert suggestion
- row differs, row != above   -> overwrite with suggestion
- row equals suggestion       -> nothing
- row is above                -> nothing (sticky teacher judgment)

Reconciliation only upserts; clearing back to not_started is done by the
manual cycle.

A pass is recorded as a fingerprint of the suggestion set it reconciled.
The next pass for the same (class, grade) only runs once that fingerprint
changes, i.e. after evidence or thresholds moved a percentage or band.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from src.mastery.models import (
    SYSTEM_ACTOR,
    InterventionStatus,
    MasteryStatus,
    StatusRecord,
)


class ReconcileAction(str, Enum):
    """Outcome of reconciling one standard."""

    INSERT = "insert"
    OVERWRITE = "overwrite"
    UNCHANGED = "unchanged"
    STICKY = "sticky"
    NO_SUGGESTION = "no_suggestion"

    @property
    def requires_write(self) -> bool:
        return self in (ReconcileAction.INSERT, ReconcileAction.OVERWRITE)


@dataclass(frozen=True)
class ReconcileDecision:
    """Decision for one standard."""

    standard_code: str
    action: ReconcileAction
    persisted: MasteryStatus | None
    suggested: MasteryStatus

    @property
    def new_status(self) -> MasteryStatus | None:
        """Status after reconciliation (None = still no row)."""
        return self.suggested if self.action.requires_write else self.persisted


def reconcile_status(
    persisted: MasteryStatus | None,
    suggestion: MasteryStatus,
) -> tuple[ReconcileAction, MasteryStatus | None]:
    """
    Merge one persisted status with one suggestion.

    Args:
        persisted: Stored status, None when no row exists
        suggestion: Classified suggestion (NOT_STARTED when there is no evidence)

    Returns:
        (action, resulting persisted status)
    """
    if not suggestion.is_persistable:
        return ReconcileAction.NO_SUGGESTION, persisted
    if persisted is None or persisted is MasteryStatus.NOT_STARTED:
        return ReconcileAction.INSERT, suggestion
    if persisted is MasteryStatus.ABOVE:
        if suggestion is MasteryStatus.ABOVE:
            return ReconcileAction.UNCHANGED, persisted
        return ReconcileAction.STICKY, persisted
    if persisted is suggestion:
        return ReconcileAction.UNCHANGED, persisted
    return ReconcileAction.OVERWRITE, suggestion


def plan_reconciliation(
    persisted: Mapping[str, StatusRecord],
    suggestions: Mapping[str, MasteryStatus],
) -> list[ReconcileDecision]:
    """Reconcile every suggested standard against the persisted rows."""
    decisions = []
    for code in sorted(suggestions):
        row = persisted.get(code)
        current = row.status if row is not None else None
        action, _ = reconcile_status(current, suggestions[code])
        decisions.append(
            ReconcileDecision(
                standard_code=code,
                action=action,
                persisted=current,
                suggested=suggestions[code],
            )
        )
    return decisions


def build_writes(
    decisions: list[ReconcileDecision],
    persisted: Mapping[str, StatusRecord],
    class_name: str,
    grade: int,
    now: datetime | None = None,
) -> list[StatusRecord]:
    """
    Turn write-requiring decisions into full status rows.

    The existing intervention status is carried over so an upsert never
    clears it.
    """
    moment = now or datetime.now(UTC)
    writes = []
    for decision in decisions:
        if not decision.action.requires_write:
            continue
        row = persisted.get(decision.standard_code)
        writes.append(
            StatusRecord(
                class_name=class_name,
                grade=grade,
                standard_code=decision.standard_code,
                status=decision.suggested,
                intervention_status=row.intervention_status if row else InterventionStatus.NONE,
                updated_by=SYSTEM_ACTOR,
                updated_at=moment,
            )
        )
    return writes


def suggestion_fingerprint(
    percentages: Mapping[str, float],
    suggestions: Mapping[str, MasteryStatus],
) -> str:
    """Stable digest of (code, percentage, suggested band) for every standard."""
    payload = [
        [code, percentages.get(code), MasteryStatus(suggestions[code]).value]
        for code in sorted(suggestions)
    ]
    return hashlib.sha256(json.dumps(payload).encode("utf-8")).hexdigest()
