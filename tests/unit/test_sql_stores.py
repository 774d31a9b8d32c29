from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from src.db.stores import (
    THRESHOLDS_SETTING_KEY,
    SqlAssessmentStore,
    SqlMasteryStatusStore,
    SqlQuickCheckStore,
    SqlReconciliationMarkerStore,
    SqlStandardsReference,
    SqlThresholdConfigStore,
    build_sql_stores,
)
from src.curriculum.standards import Standard
from src.mastery.exceptions import StorageError
from src.mastery.models import (
    SYSTEM_ACTOR,
    InterventionStatus,
    MasteryStatus,
    QuickCheck,
    QuickCheckMark,
    StatusRecord,
)


class FakeResult:
    def __init__(self, rows=None):
        self._rows = rows or []

    def fetchall(self):
        return self._rows


def _row(**mapping):
    return SimpleNamespace(_mapping=mapping)


def _sql(session, call_index=0):
    return str(session.execute.call_args_list[call_index].args[0])


def _params(session, call_index=0):
    return session.execute.call_args_list[call_index].args[1]


@pytest.mark.asyncio
async def test_list_standards_maps_rows():
    session = AsyncMock()
    session.execute.return_value = FakeResult(
        rows=[
            _row(code="RL.3.1", domain="Reading Literature", grade=3, cluster=None, text="Ask", dok=2),
        ]
    )

    standards = await SqlStandardsReference(session).list_standards(3)

    assert standards[0].code == "RL.3.1"
    assert standards[0].cluster == ""
    assert standards[0].dok == 2
    assert "grade = :grade" in _sql(session)
    assert _params(session) == {"grade": 3}


@pytest.mark.asyncio
async def test_list_standards_without_grade_has_no_filter():
    session = AsyncMock()
    session.execute.return_value = FakeResult()

    await SqlStandardsReference(session).list_standards()

    assert "WHERE" not in _sql(session)
    assert _params(session) == {}


@pytest.mark.asyncio
async def test_load_assessments_maps_sections_and_entries():
    session = AsyncMock()
    session.execute.side_effect = [
        FakeResult(
            rows=[
                _row(
                    id="a1",
                    name="Unit 1",
                    grade=3,
                    class_name=None,
                    semester="S1",
                    domain="RL",
                    max_score=None,
                    standards="[]",
                    sections='[{"label": "A", "standard": "RL.3.1", "max_points": 5}, {"label": "B"}]',
                ),
                _row(
                    id="a2",
                    name="Quiz",
                    grade=3,
                    class_name="Lily",
                    semester="S1",
                    domain=None,
                    max_score=20,
                    standards=[{"code": "RI.3.1", "dok": 2}, "RI.3.2"],
                    sections=None,
                ),
            ]
        ),
        FakeResult(
            rows=[
                _row(
                    assessment_id="a1",
                    student_id=7,
                    score=None,
                    section_scores={"0": 4, "1": None},
                    is_absent=False,
                    is_exempt=None,
                ),
            ]
        ),
    ]

    assessments, entries = await SqlAssessmentStore(session).load_assessments("Lily", 3, "S1")

    sectioned, whole = assessments
    assert sectioned.is_section_tagged
    assert sectioned.sections[0].standard_code == "RL.3.1"
    assert sectioned.sections[1].standard_code is None
    assert sectioned.max_score == 0.0
    assert whole.standard_codes == ["RI.3.1", "RI.3.2"]
    assert whole.sections is None
    assert entries[0].student_id == "7"
    assert entries[0].section_scores == {0: 4.0, 1: None}
    assert entries[0].is_exempt is False
    assert "a.semester = :semester" in _sql(session, 0)
    assert _params(session, 1)["semester"] == "S1"


@pytest.mark.asyncio
async def test_load_assessments_without_semester():
    session = AsyncMock()
    session.execute.side_effect = [FakeResult(), FakeResult()]

    await SqlAssessmentStore(session).load_assessments("Lily", 3)

    assert ":semester" not in _sql(session, 0)
    assert "semester" not in _params(session, 0)


@pytest.mark.asyncio
async def test_read_failure_raises_storage_error():
    session = AsyncMock()
    session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

    with pytest.raises(StorageError) as exc_info:
        await SqlAssessmentStore(session).load_assessments("Lily", 3)

    assert exc_info.value.operation == "load_assessments"


@pytest.mark.asyncio
async def test_append_quick_check_commits():
    session = AsyncMock()
    mark = QuickCheck("s-01", "RL.3.1", "Lily", 3, QuickCheckMark.ALMOST, datetime(2026, 3, 1, tzinfo=UTC))

    await SqlQuickCheckStore(session).append(mark)

    assert _params(session)["mark"] == "almost"
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_list_marks_optional_code_filter():
    session = AsyncMock()
    session.execute.return_value = FakeResult(
        rows=[
            _row(
                student_id="s-01",
                standard_code="RL.3.1",
                class_name="Lily",
                grade=3,
                mark="got_it",
                created_at=datetime(2026, 3, 1, tzinfo=UTC),
            )
        ]
    )
    store = SqlQuickCheckStore(session)

    marks = await store.list_marks("Lily", 3, "RL.3.1")
    await store.list_marks("Lily", 3)

    assert marks[0].mark is QuickCheckMark.GOT_IT
    assert _params(session, 0)["standard_code"] == "RL.3.1"
    assert ":standard_code" not in _sql(session, 1)


@pytest.mark.asyncio
async def test_list_statuses_maps_rows():
    session = AsyncMock()
    session.execute.return_value = FakeResult(
        rows=[
            _row(
                class_name="Lily",
                grade=3,
                standard_code="RL.3.1",
                status="above",
                intervention_status=None,
                updated_by="ms.rivera",
                updated_at=None,
            )
        ]
    )

    rows = await SqlMasteryStatusStore(session).list_statuses("Lily", 3)

    assert rows[0].status is MasteryStatus.ABOVE
    assert rows[0].intervention_status is InterventionStatus.NONE
    assert rows[0].is_manual


@pytest.mark.asyncio
async def test_upsert_batch_single_commit():
    session = AsyncMock()
    records = [
        StatusRecord("Lily", 3, "RL.3.1", MasteryStatus.ON, updated_by=SYSTEM_ACTOR),
        StatusRecord("Lily", 3, "RI.3.1", MasteryStatus.BELOW, InterventionStatus.RETEACHING),
    ]

    await SqlMasteryStatusStore(session).upsert_statuses(records)

    assert session.execute.await_count == 2
    assert "ON CONFLICT" in _sql(session)
    assert _params(session, 1)["intervention_status"] == "reteaching"
    assert _params(session, 1)["updated_at"] is not None
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_upsert_empty_batch_is_noop():
    session = AsyncMock()
    await SqlMasteryStatusStore(session).upsert_statuses([])
    session.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_upsert_refuses_not_started():
    session = AsyncMock()
    record = StatusRecord("Lily", 3, "RL.3.1", MasteryStatus.NOT_STARTED)

    with pytest.raises(ValueError):
        await SqlMasteryStatusStore(session).upsert_status(record)


@pytest.mark.asyncio
async def test_write_failure_rolls_back():
    session = AsyncMock()
    session.execute.side_effect = OperationalError("INSERT", {}, Exception("down"))

    with pytest.raises(StorageError):
        await SqlMasteryStatusStore(session).delete_status("Lily", 3, "RL.3.1")

    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_thresholds_read_and_replace():
    session = AsyncMock()
    session.execute.return_value = FakeResult(
        rows=[_row(value='{"Lily": {"above": 90, "on": 75, "approaching": 60}}')]
    )
    store = SqlThresholdConfigStore(session)

    configs = await store.read_all()
    await store.replace_all({"Rose": {"above": 88, "on": 72, "approaching": 50}})

    assert configs == {"Lily": {"above": 90, "on": 75, "approaching": 60}}
    params = _params(session, 1)
    assert params["key"] == THRESHOLDS_SETTING_KEY
    assert '"Rose"' in params["value"]


@pytest.mark.asyncio
async def test_thresholds_missing_record_is_empty():
    session = AsyncMock()
    session.execute.return_value = FakeResult()

    assert await SqlThresholdConfigStore(session).read_all() == {}


def test_build_sql_stores_shares_session():
    session = AsyncMock()
    stores = build_sql_stores(session)
    assert stores.statuses.session is session
    assert stores.thresholds.session is session
    assert stores.reconciliations.session is session


@pytest.mark.asyncio
async def test_upsert_standards_keeps_order():
    session = AsyncMock()
    standards = [
        Standard(code="W.3.1", domain="Writing", grade=3),
        Standard(code="RL.3.1", domain="Reading Literature", grade=3, dok=2),
    ]

    await SqlStandardsReference(session).upsert_standards(standards)

    assert "ON CONFLICT (code)" in _sql(session)
    assert _params(session, 0)["sort_order"] == 0
    assert _params(session, 1) == {
        "code": "RL.3.1",
        "domain": "Reading Literature",
        "grade": 3,
        "cluster": "",
        "text": "",
        "dok": 2,
        "sort_order": 1,
    }
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_unknown_status_value_raises_storage_error():
    session = AsyncMock()
    session.execute.return_value = FakeResult(
        rows=[
            _row(
                class_name="Lily",
                grade=3,
                standard_code="RL.3.1",
                status="mastered",
                intervention_status=None,
                updated_by="ms.rivera",
                updated_at=None,
            )
        ]
    )

    with pytest.raises(StorageError) as exc_info:
        await SqlMasteryStatusStore(session).list_statuses("Lily", 3)

    assert exc_info.value.operation == "list_statuses"


@pytest.mark.asyncio
async def test_unknown_mark_value_raises_storage_error():
    session = AsyncMock()
    session.execute.return_value = FakeResult(
        rows=[
            _row(
                student_id="s-01",
                standard_code="RL.3.1",
                class_name="Lily",
                grade=3,
                mark="maybe",
                created_at=None,
            )
        ]
    )

    with pytest.raises(StorageError):
        await SqlQuickCheckStore(session).list_marks("Lily", 3)


@pytest.mark.asyncio
async def test_thresholds_unreadable_json_raises_storage_error():
    session = AsyncMock()
    session.execute.return_value = FakeResult(rows=[_row(value="{not json")])

    with pytest.raises(StorageError):
        await SqlThresholdConfigStore(session).read_all()


@pytest.mark.asyncio
async def test_thresholds_non_object_record_is_empty():
    session = AsyncMock()
    session.execute.return_value = FakeResult(rows=[_row(value="[1, 2]")])

    assert await SqlThresholdConfigStore(session).read_all() == {}


@pytest.mark.asyncio
async def test_reconciliation_marker_round_trip():
    session = AsyncMock()
    session.execute.return_value = FakeResult(rows=[_row(value={"fingerprint": "abc123"})])
    store = SqlReconciliationMarkerStore(session)

    marker = await store.read_marker("Lily", 3)
    await store.write_marker("Lily", 3, "def456")

    assert marker == "abc123"
    assert _params(session, 0) == {"key": "mastery_reconciled:Lily:3"}
    written = _params(session, 1)
    assert written["key"] == "mastery_reconciled:Lily:3"
    assert '"def456"' in written["value"]
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_reconciliation_marker_is_none():
    session = AsyncMock()
    session.execute.return_value = FakeResult()

    assert await SqlReconciliationMarkerStore(session).read_marker("Lily", 3) is None
