"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests,
including in-memory async stores that stand in for the SQL stores.
"""
import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings
from src.curriculum.standards import Standard, StandardsCatalog
from src.mastery.exceptions import StorageError
from src.mastery.interfaces import MasteryStores
from src.mastery.models import (
    AssessmentRecord,
    AssessmentSection,
    GradeEntry,
    QuickCheck,
    QuickCheckMark,
    StatusRecord,
)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (API with in-memory stores)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


# ========================================
# In-memory stores
# ========================================


class InMemoryAssessmentStore:
    def __init__(self, assessments=(), entries=()):
        self.assessments = list(assessments)
        self.entries = list(entries)
        self.load_calls = 0
        self.fail = False
        self.gate: asyncio.Event | None = None

    async def load_assessments(self, class_name, grade, semester=None):
        self.load_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise StorageError("load_assessments", (class_name, grade, semester))
        selected = [
            a
            for a in self.assessments
            if a.grade == grade
            and (a.class_name is None or a.class_name == class_name)
            and (semester is None or a.semester == semester)
        ]
        ids = {a.id for a in selected}
        return selected, [e for e in self.entries if e.assessment_id in ids]


class InMemoryQuickCheckStore:
    def __init__(self, marks=()):
        self.marks = list(marks)

    async def append(self, mark):
        self.marks.append(mark)

    async def list_marks(self, class_name, grade, standard_code=None):
        return [
            m
            for m in self.marks
            if m.class_name == class_name
            and m.grade == grade
            and (standard_code is None or m.standard_code == standard_code)
        ]


class InMemoryStatusStore:
    """Rows keyed by (class, grade, code); fail_writes counts down failing batches."""

    def __init__(self, rows=()):
        self.rows = {(r.class_name, r.grade, r.standard_code): r for r in rows}
        self.upsert_batches: list[list[StatusRecord]] = []
        self.deletes: list[tuple[str, int, str]] = []
        self.fail_writes = 0

    async def list_statuses(self, class_name, grade):
        return [r for (c, g, _), r in self.rows.items() if c == class_name and g == grade]

    async def upsert_status(self, record):
        await self.upsert_statuses([record])

    async def upsert_statuses(self, records):
        if self.fail_writes:
            self.fail_writes -= 1
            raise StorageError("upsert_statuses", len(records))
        self.upsert_batches.append(list(records))
        for r in records:
            self.rows[(r.class_name, r.grade, r.standard_code)] = r

    async def delete_status(self, class_name, grade, standard_code):
        self.deletes.append((class_name, grade, standard_code))
        self.rows.pop((class_name, grade, standard_code), None)

    @property
    def write_count(self):
        return sum(len(batch) for batch in self.upsert_batches)

    def get(self, class_name, grade, standard_code):
        return self.rows.get((class_name, grade, standard_code))


class InMemoryThresholdStore:
    def __init__(self, configs=None):
        self.configs = dict(configs or {})
        self.replace_calls = 0

    async def read_all(self):
        return {name: dict(cfg) for name, cfg in self.configs.items()}

    async def replace_all(self, configs):
        self.replace_calls += 1
        self.configs = {name: dict(cfg) for name, cfg in configs.items()}


class InMemoryReconciliationMarkerStore:
    def __init__(self, markers=None):
        self.markers = dict(markers or {})
        self.write_calls = 0

    async def read_marker(self, class_name, grade):
        return self.markers.get((class_name, grade))

    async def write_marker(self, class_name, grade, fingerprint):
        self.write_calls += 1
        self.markers[(class_name, grade)] = fingerprint


# ========================================
# Fixtures
# ========================================


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def settings():
    """Settings with defaults only (no .env)."""
    return Settings(_env_file=None, log_file=None)


@pytest.fixture
def grade3_standards():
    return [
        Standard(code="RL.3.1", domain="Reading Literature", grade=3, text="Ask and answer questions"),
        Standard(code="RL.3.2", domain="Reading Literature", grade=3, text="Recount stories"),
        Standard(code="RI.3.1", domain="Reading Informational", grade=3, text="Ask and answer questions"),
        Standard(code="L.3.1", domain="Language", grade=3, text="Conventions of grammar"),
    ]


@pytest.fixture
def make_stores(grade3_standards):
    """
    Build a MasteryStores bundle from plain lists.

    Example:
        stores = make_stores(assessments=[...], entries=[...])
        stores.statuses.fail_writes = 1
    """

    def _make(
        assessments=(),
        entries=(),
        marks=(),
        rows=(),
        thresholds=None,
        standards=None,
    ) -> MasteryStores:
        return MasteryStores(
            standards=StandardsCatalog(grade3_standards if standards is None else standards),
            assessments=InMemoryAssessmentStore(assessments, entries),
            quick_checks=InMemoryQuickCheckStore(marks),
            statuses=InMemoryStatusStore(rows),
            thresholds=InMemoryThresholdStore(thresholds),
            reconciliations=InMemoryReconciliationMarkerStore(),
        )

    return _make


@pytest.fixture
def lily_evidence():
    """
    Grade 3 evidence for class Lily.

    RL.3.1: two section samples averaging 78% plus one got_it quick check.
    RI.3.1: whole-tagged assessment, class average 50%.
    """
    assessments = [
        AssessmentRecord(
            id="a-sections",
            name="Unit 1 Reading",
            grade=3,
            class_name="Lily",
            semester="S1",
            sections=[AssessmentSection(label="A", standard_code="RL.3.1", max_points=10)],
        ),
        AssessmentRecord(
            id="a-whole",
            name="Informational Quiz",
            grade=3,
            class_name="Lily",
            semester="S1",
            max_score=20,
            standard_codes=["RI.3.1"],
        ),
    ]
    entries = [
        GradeEntry(student_id="s-01", assessment_id="a-sections", section_scores={0: 7.0}),
        GradeEntry(student_id="s-02", assessment_id="a-sections", section_scores={0: 8.6}),
        GradeEntry(student_id="s-01", assessment_id="a-whole", score=8),
        GradeEntry(student_id="s-02", assessment_id="a-whole", score=12),
    ]
    marks = [
        QuickCheck(
            student_id="s-01",
            standard_code="RL.3.1",
            class_name="Lily",
            grade=3,
            mark=QuickCheckMark.GOT_IT,
        )
    ]
    return {"assessments": assessments, "entries": entries, "marks": marks}
