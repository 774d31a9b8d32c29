"""
Manual Status Cycle.

A five-state ring a teacher advances one click at a time:

    not_started -> below -> approaching -> on -> above -> not_started

Entering a persisted state upserts the row; wrapping back to not_started
deletes it. Nothing here runs on a timer.
"""

from __future__ import annotations

from datetime import UTC, datetime

from loguru import logger

from src.mastery.interfaces import IMasteryStatusStore
from src.mastery.models import InterventionStatus, MasteryStatus, StatusRecord

CYCLE_ORDER: tuple[MasteryStatus, ...] = (
    MasteryStatus.NOT_STARTED,
    MasteryStatus.BELOW,
    MasteryStatus.APPROACHING,
    MasteryStatus.ON,
    MasteryStatus.ABOVE,
)


def next_status(current: MasteryStatus | None) -> MasteryStatus:
    """Next state on the ring (None counts as not_started)."""
    current = current or MasteryStatus.NOT_STARTED
    return CYCLE_ORDER[(CYCLE_ORDER.index(current) + 1) % len(CYCLE_ORDER)]


class ManualStatusCycle:
    """Apply cycle clicks to the status store."""

    def __init__(self, store: IMasteryStatusStore):
        self.store = store

    async def advance(
        self,
        current: StatusRecord | None,
        class_name: str,
        grade: int,
        standard_code: str,
        actor: str,
    ) -> StatusRecord | None:
        """
        Advance one standard by one step.

        Args:
            current: The persisted row, None if the standard is not started
            class_name: Class of the selection
            grade: Grade of the selection
            standard_code: Standard being clicked
            actor: Teacher performing the click

        Returns:
            The new row, or None when the standard wrapped to not_started
        """
        target = next_status(current.status if current else None)

        if not target.is_persistable:
            await self.store.delete_status(class_name, grade, standard_code)
            logger.info(f"Cleared {standard_code} for {class_name}/G{grade} (by {actor})")
            return None

        record = StatusRecord(
            class_name=class_name,
            grade=grade,
            standard_code=standard_code,
            status=target,
            intervention_status=current.intervention_status if current else InterventionStatus.NONE,
            updated_by=actor,
            updated_at=datetime.now(UTC),
        )
        await self.store.upsert_status(record)
        logger.info(f"Set {standard_code} for {class_name}/G{grade} to {target.value} (by {actor})")
        return record
