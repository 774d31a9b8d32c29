"""
Intervention Workflow.

A remediation status attached to a standard, independent of the mastery
cycle. It can only be edited while the effective status is below or
approaching. A stored value is left in place when the standard later
moves to on/above; it is simply not surfaced.
"""

from __future__ import annotations

from datetime import UTC, datetime

from loguru import logger

from src.mastery.exceptions import InterventionNotEditableError
from src.mastery.interfaces import IMasteryStatusStore
from src.mastery.models import SYSTEM_ACTOR, InterventionStatus, MasteryStatus, StatusRecord

INTERVENTION_EDITABLE_STATUSES = frozenset({MasteryStatus.BELOW, MasteryStatus.APPROACHING})


def is_intervention_editable(effective_status: MasteryStatus) -> bool:
    return effective_status in INTERVENTION_EDITABLE_STATUSES


def surfaced_intervention(
    effective_status: MasteryStatus,
    stored: InterventionStatus | None,
) -> InterventionStatus:
    """The intervention value shown to callers for a given effective status."""
    if stored is None or not is_intervention_editable(effective_status):
        return InterventionStatus.NONE
    return stored


class InterventionWorkflow:
    """Persist intervention changes for one standard at a time."""

    def __init__(self, store: IMasteryStatusStore):
        self.store = store

    async def set_status(
        self,
        current: StatusRecord | None,
        effective_status: MasteryStatus,
        class_name: str,
        grade: int,
        standard_code: str,
        intervention: InterventionStatus,
        actor: str,
    ) -> StatusRecord:
        """
        Set the intervention status.

        When no row exists yet (the effective status comes from a computed
        suggestion), a row is created holding that effective status.

        Raises:
            InterventionNotEditableError: Effective status is not below/approaching
        """
        if not is_intervention_editable(effective_status):
            raise InterventionNotEditableError(
                f"{standard_code} is {effective_status.value}; interventions apply only "
                f"to below or approaching standards"
            )

        record = StatusRecord(
            class_name=class_name,
            grade=grade,
            standard_code=standard_code,
            status=current.status if current else effective_status,
            intervention_status=intervention,
            updated_by=current.updated_by if current else SYSTEM_ACTOR,
            updated_at=datetime.now(UTC),
        )
        await self.store.upsert_status(record)
        logger.info(
            f"Intervention for {standard_code} ({class_name}/G{grade}) -> {intervention.value} "
            f"(by {actor})"
        )
        return record
