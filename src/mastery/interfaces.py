"""
Interfaces for the engine's external collaborators.

Every store call is async and may raise StorageError.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from src.curriculum.standards import Standard
from src.mastery.models import AssessmentRecord, GradeEntry, QuickCheck, StatusRecord


class IStandardsReference(Protocol):
    """Curriculum definitions; the engine only reads, seeding writes."""

    async def list_standards(self, grade: int | None = None) -> list[Standard]:
        ...

    async def upsert_standards(self, standards: Sequence[Standard]) -> None:
        ...


class IAssessmentStore(Protocol):
    """Assessments and grade entries filtered by (class, grade, semester)."""

    async def load_assessments(
        self,
        class_name: str,
        grade: int,
        semester: str | None = None,
    ) -> tuple[list[AssessmentRecord], list[GradeEntry]]:
        ...


class IQuickCheckStore(Protocol):
    """Append-only quick-check marks."""

    async def append(self, mark: QuickCheck) -> None:
        ...

    async def list_marks(
        self,
        class_name: str,
        grade: int,
        standard_code: str | None = None,
    ) -> list[QuickCheck]:
        ...


class IMasteryStatusStore(Protocol):
    """Persisted status rows keyed by (class, grade, standard_code)."""

    async def list_statuses(self, class_name: str, grade: int) -> list[StatusRecord]:
        ...

    async def upsert_status(self, record: StatusRecord) -> None:
        ...

    async def upsert_statuses(self, records: Sequence[StatusRecord]) -> None:
        ...

    async def delete_status(self, class_name: str, grade: int, standard_code: str) -> None:
        ...


class IThresholdConfigStore(Protocol):
    """Single record mapping class name -> {above, on, approaching}."""

    async def read_all(self) -> dict[str, dict[str, Any]]:
        ...

    async def replace_all(self, configs: dict[str, dict[str, Any]]) -> None:
        ...


class IReconciliationMarkerStore(Protocol):
    """Fingerprint of the last reconciled suggestion set per (class, grade)."""

    async def read_marker(self, class_name: str, grade: int) -> str | None:
        ...

    async def write_marker(self, class_name: str, grade: int, fingerprint: str) -> None:
        ...


@dataclass
class MasteryStores:
    """Bundle of every collaborator the engine talks to."""

    standards: IStandardsReference
    assessments: IAssessmentStore
    quick_checks: IQuickCheckStore
    statuses: IMasteryStatusStore
    thresholds: IThresholdConfigStore
    reconciliations: IReconciliationMarkerStore
