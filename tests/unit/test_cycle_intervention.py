"""Tests for the manual status cycle and the intervention workflow."""

import pytest

from src.mastery.cycle import CYCLE_ORDER, ManualStatusCycle, next_status
from src.mastery.exceptions import InterventionNotEditableError
from src.mastery.intervention import (
    InterventionWorkflow,
    is_intervention_editable,
    surfaced_intervention,
)
from src.mastery.models import SYSTEM_ACTOR, InterventionStatus, MasteryStatus, StatusRecord

S = MasteryStatus


class TestNextStatus:
    def test_ring_order(self):
        assert [next_status(s) for s in CYCLE_ORDER] == [
            S.BELOW,
            S.APPROACHING,
            S.ON,
            S.ABOVE,
            S.NOT_STARTED,
        ]

    def test_none_counts_as_not_started(self):
        assert next_status(None) is S.BELOW


class TestManualStatusCycle:
    @pytest.mark.asyncio
    async def test_five_clicks_return_to_not_started_without_row(self, make_stores):
        stores = make_stores()
        cycle = ManualStatusCycle(stores.statuses)

        current = None
        seen = []
        for _ in range(5):
            current = await cycle.advance(current, "Lily", 3, "RL.3.1", "teacher")
            seen.append(current.status if current else S.NOT_STARTED)

        assert seen == [S.BELOW, S.APPROACHING, S.ON, S.ABOVE, S.NOT_STARTED]
        assert stores.statuses.get("Lily", 3, "RL.3.1") is None
        assert stores.statuses.deletes == [("Lily", 3, "RL.3.1")]

    @pytest.mark.asyncio
    async def test_click_records_actor_and_keeps_intervention(self, make_stores):
        existing = StatusRecord(
            "Lily", 3, "RL.3.1", S.BELOW, InterventionStatus.RETEACHING, updated_by=SYSTEM_ACTOR
        )
        stores = make_stores(rows=[existing])

        record = await ManualStatusCycle(stores.statuses).advance(
            existing, "Lily", 3, "RL.3.1", "ms.rivera"
        )

        assert record.status is S.APPROACHING
        assert record.intervention_status is InterventionStatus.RETEACHING
        assert record.updated_by == "ms.rivera"
        assert record.is_manual
        assert stores.statuses.get("Lily", 3, "RL.3.1") == record


class TestIntervention:
    @pytest.mark.parametrize(
        "status,editable",
        [
            (S.NOT_STARTED, False),
            (S.BELOW, True),
            (S.APPROACHING, True),
            (S.ON, False),
            (S.ABOVE, False),
        ],
    )
    def test_editable_only_below_or_approaching(self, status, editable):
        assert is_intervention_editable(status) is editable

    def test_stored_value_hidden_once_on_or_above(self):
        stored = InterventionStatus.REASSESSING
        assert surfaced_intervention(S.BELOW, stored) is stored
        assert surfaced_intervention(S.ON, stored) is InterventionStatus.NONE
        assert surfaced_intervention(S.APPROACHING, None) is InterventionStatus.NONE

    @pytest.mark.asyncio
    async def test_rejected_when_not_editable(self, make_stores):
        stores = make_stores()
        workflow = InterventionWorkflow(stores.statuses)

        with pytest.raises(InterventionNotEditableError):
            await workflow.set_status(
                None, S.ON, "Lily", 3, "RL.3.1", InterventionStatus.RETEACHING, "teacher"
            )
        assert stores.statuses.write_count == 0

    @pytest.mark.asyncio
    async def test_creates_row_from_suggestion_without_marking_manual(self, make_stores):
        stores = make_stores()
        workflow = InterventionWorkflow(stores.statuses)

        record = await workflow.set_status(
            None, S.BELOW, "Lily", 3, "RL.3.1", InterventionStatus.NOT_YET_TAUGHT, "teacher"
        )

        assert record.status is S.BELOW
        assert record.intervention_status is InterventionStatus.NOT_YET_TAUGHT
        assert record.updated_by == SYSTEM_ACTOR
        assert not record.is_manual

    @pytest.mark.asyncio
    async def test_keeps_existing_status_and_author(self, make_stores):
        existing = StatusRecord("Lily", 3, "RL.3.1", S.APPROACHING, updated_by="ms.rivera")
        stores = make_stores(rows=[existing])

        record = await InterventionWorkflow(stores.statuses).set_status(
            existing, S.APPROACHING, "Lily", 3, "RL.3.1", InterventionStatus.RETEACHING, "aide"
        )

        assert record.status is S.APPROACHING
        assert record.updated_by == "ms.rivera"
        assert stores.statuses.get("Lily", 3, "RL.3.1").intervention_status is (
            InterventionStatus.RETEACHING
        )
