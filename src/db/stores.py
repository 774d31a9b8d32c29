"""
SQL-backed stores for the mastery engine.

Each store wraps an AsyncSession and talks SQL through text() statements.
Every write commits its own transaction; SQLAlchemy failures are rolled
back and re-raised as StorageError so the engine can keep its in-memory
results and retry.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.curriculum.standards import Standard
from src.mastery.exceptions import StorageError
from src.mastery.interfaces import MasteryStores
from src.mastery.models import (
    AssessmentRecord,
    AssessmentSection,
    GradeEntry,
    InterventionStatus,
    MasteryStatus,
    QuickCheck,
    QuickCheckMark,
    StatusRecord,
)

THRESHOLDS_SETTING_KEY = "standards_thresholds"
RECONCILED_SETTING_PREFIX = "mastery_reconciled"

T = TypeVar("T")


def _json_value(value: Any) -> Any:
    """JSON columns come back as str from some drivers and as objects from others."""
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _row_mapping(row: Any) -> dict[str, Any]:
    return dict(row._mapping)


class _SqlStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _fetch(self, operation: str, key: object, query: Any, params: dict) -> list[dict]:
        try:
            result = await self.session.execute(query, params)
            return [_row_mapping(row) for row in result.fetchall()]
        except SQLAlchemyError as e:
            logger.warning(f"{operation} failed for {key}: {e}")
            raise StorageError(operation, key, e) from e

    async def _write(self, operation: str, key: object, statements: list[tuple[Any, dict]]) -> None:
        try:
            for query, params in statements:
                await self.session.execute(query, params)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.warning(f"{operation} failed for {key}: {e}")
            raise StorageError(operation, key, e) from e

    @staticmethod
    def _map_rows(operation: str, key: object, rows: list[dict], mapper: Callable[[dict], T]) -> list[T]:
        """Map rows to domain objects; an unreadable stored value is a storage failure."""
        try:
            return [mapper(row) for row in rows]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"{operation} returned an unreadable row for {key}: {e!r}")
            raise StorageError(operation, key, e) from e


class SqlStandardsReference(_SqlStore):
    """Standards reference read from the standards table."""

    async def list_standards(self, grade: int | None = None) -> list[Standard]:
        where = "WHERE grade = :grade" if grade is not None else ""
        query = text(
            f"""
            SELECT code, domain, grade, cluster, text, dok
            FROM standards
            {where}
            ORDER BY grade, sort_order, code
            """
        )
        rows = await self._fetch("list_standards", grade, query, {"grade": grade} if grade is not None else {})
        return self._map_rows("list_standards", grade, rows, self._to_standard)

    async def upsert_standards(self, standards: Sequence[Standard]) -> None:
        """Insert or update curriculum rows in one transaction; list order becomes sort_order."""
        if not standards:
            return
        query = text(
            """
            INSERT INTO standards (code, domain, grade, cluster, text, dok, sort_order)
            VALUES (:code, :domain, :grade, :cluster, :text, :dok, :sort_order)
            ON CONFLICT (code) DO UPDATE SET
                domain = EXCLUDED.domain,
                grade = EXCLUDED.grade,
                cluster = EXCLUDED.cluster,
                text = EXCLUDED.text,
                dok = EXCLUDED.dok,
                sort_order = EXCLUDED.sort_order
            """
        )
        await self._write(
            "upsert_standards",
            len(standards),
            [(query, {**s.to_dict(), "sort_order": index}) for index, s in enumerate(standards)],
        )
        logger.info(f"Upserted {len(standards)} standards")

    @staticmethod
    def _to_standard(row: dict[str, Any]) -> Standard:
        return Standard(
            code=row["code"],
            domain=row["domain"],
            grade=row["grade"],
            cluster=row["cluster"] or "",
            text=row["text"] or "",
            dok=row["dok"],
        )


class SqlAssessmentStore(_SqlStore):
    """Assessments + grade entries for (class, grade, optional semester)."""

    async def load_assessments(
        self,
        class_name: str,
        grade: int,
        semester: str | None = None,
    ) -> tuple[list[AssessmentRecord], list[GradeEntry]]:
        scope: dict[str, Any] = {"class_name": class_name, "grade": grade}
        semester_clause = ""
        if semester is not None:
            scope["semester"] = semester
            semester_clause = "AND a.semester = :semester"
        key = (class_name, grade, semester)

        assessment_rows = await self._fetch(
            "load_assessments",
            key,
            text(
                f"""
                SELECT a.id, a.name, a.grade, a.class_name, a.semester, a.domain,
                       a.max_score, a.standards, a.sections
                FROM assessments a
                WHERE a.grade = :grade
                  AND (a.class_name IS NULL OR a.class_name = :class_name)
                  {semester_clause}
                """
            ),
            scope,
        )
        entry_rows = await self._fetch(
            "load_grade_entries",
            key,
            text(
                f"""
                SELECT ge.assessment_id, ge.student_id, ge.score, ge.section_scores,
                       ge.is_absent, ge.is_exempt
                FROM grade_entries ge
                JOIN assessments a ON a.id = ge.assessment_id
                WHERE a.grade = :grade
                  AND (a.class_name IS NULL OR a.class_name = :class_name)
                  {semester_clause}
                """
            ),
            scope,
        )

        assessments = self._map_rows("load_assessments", key, assessment_rows, self._to_assessment)
        entries = self._map_rows("load_grade_entries", key, entry_rows, self._to_entry)
        logger.debug(
            f"Loaded {len(assessments)} assessments / {len(entries)} entries for {class_name}/G{grade}"
        )
        return assessments, entries

    @staticmethod
    def _to_assessment(row: dict[str, Any]) -> AssessmentRecord:
        tags = _json_value(row["standards"]) or []
        sections = _json_value(row["sections"])
        return AssessmentRecord(
            id=str(row["id"]),
            name=row["name"],
            grade=row["grade"],
            class_name=row["class_name"],
            semester=row["semester"],
            domain=row["domain"],
            max_score=float(row["max_score"] or 0),
            standard_codes=[t["code"] if isinstance(t, dict) else str(t) for t in tags],
            sections=[
                AssessmentSection(
                    label=s.get("label", ""),
                    standard_code=s.get("standard") or None,
                    max_points=float(s.get("max_points") or 0),
                )
                for s in sections
            ]
            if sections
            else None,
        )

    @staticmethod
    def _to_entry(row: dict[str, Any]) -> GradeEntry:
        section_scores = _json_value(row["section_scores"]) or {}
        return GradeEntry(
            student_id=str(row["student_id"]),
            assessment_id=str(row["assessment_id"]),
            score=row["score"],
            section_scores={
                int(index): (float(value) if value is not None else None)
                for index, value in section_scores.items()
            },
            is_absent=bool(row["is_absent"]),
            is_exempt=bool(row["is_exempt"]),
        )


class SqlQuickCheckStore(_SqlStore):
    """Append-only quick-check marks."""

    async def append(self, mark: QuickCheck) -> None:
        query = text(
            """
            INSERT INTO quick_checks (student_id, standard_code, class_name, grade, mark, created_at)
            VALUES (:student_id, :standard_code, :class_name, :grade, :mark, :created_at)
            """
        )
        await self._write(
            "append_quick_check",
            (mark.class_name, mark.grade, mark.standard_code),
            [
                (
                    query,
                    {
                        "student_id": mark.student_id,
                        "standard_code": mark.standard_code,
                        "class_name": mark.class_name,
                        "grade": mark.grade,
                        "mark": QuickCheckMark(mark.mark).value,
                        "created_at": mark.created_at,
                    },
                )
            ],
        )

    async def list_marks(
        self,
        class_name: str,
        grade: int,
        standard_code: str | None = None,
    ) -> list[QuickCheck]:
        params: dict[str, Any] = {"class_name": class_name, "grade": grade}
        code_clause = ""
        if standard_code is not None:
            params["standard_code"] = standard_code
            code_clause = "AND standard_code = :standard_code"
        query = text(
            f"""
            SELECT student_id, standard_code, class_name, grade, mark, created_at
            FROM quick_checks
            WHERE class_name = :class_name AND grade = :grade
              {code_clause}
            ORDER BY created_at
            """
        )
        key = (class_name, grade, standard_code)
        rows = await self._fetch("list_quick_checks", key, query, params)
        return self._map_rows("list_quick_checks", key, rows, self._to_quick_check)

    @staticmethod
    def _to_quick_check(row: dict[str, Any]) -> QuickCheck:
        return QuickCheck(
            student_id=str(row["student_id"]),
            standard_code=row["standard_code"],
            class_name=row["class_name"],
            grade=row["grade"],
            mark=QuickCheckMark(row["mark"]),
            created_at=row["created_at"],
        )


class SqlMasteryStatusStore(_SqlStore):
    """Persisted status rows; upserts resolve last-write-wins on the unique key."""

    _UPSERT = text(
        """
        INSERT INTO class_standard_status (
            class_name, grade, standard_code, status, intervention_status, updated_by, updated_at
        ) VALUES (
            :class_name, :grade, :standard_code, :status, :intervention_status, :updated_by, :updated_at
        )
        ON CONFLICT (class_name, grade, standard_code) DO UPDATE SET
            status = EXCLUDED.status,
            intervention_status = EXCLUDED.intervention_status,
            updated_by = EXCLUDED.updated_by,
            updated_at = EXCLUDED.updated_at
        """
    )

    async def list_statuses(self, class_name: str, grade: int) -> list[StatusRecord]:
        query = text(
            """
            SELECT class_name, grade, standard_code, status, intervention_status,
                   updated_by, updated_at
            FROM class_standard_status
            WHERE class_name = :class_name AND grade = :grade
            """
        )
        rows = await self._fetch(
            "list_statuses", (class_name, grade), query, {"class_name": class_name, "grade": grade}
        )
        return self._map_rows("list_statuses", (class_name, grade), rows, self._to_record)

    @staticmethod
    def _to_record(row: dict[str, Any]) -> StatusRecord:
        return StatusRecord(
            class_name=row["class_name"],
            grade=row["grade"],
            standard_code=row["standard_code"],
            status=MasteryStatus(row["status"]),
            intervention_status=InterventionStatus(row["intervention_status"] or "none"),
            updated_by=row["updated_by"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _params(record: StatusRecord) -> dict[str, Any]:
        if not record.status.is_persistable:
            raise ValueError(f"{record.status.value} is represented by the absence of a row")
        return {
            "class_name": record.class_name,
            "grade": record.grade,
            "standard_code": record.standard_code,
            "status": record.status.value,
            "intervention_status": record.intervention_status.value,
            "updated_by": record.updated_by,
            "updated_at": record.updated_at or datetime.now(UTC),
        }

    async def upsert_status(self, record: StatusRecord) -> None:
        await self.upsert_statuses([record])

    async def upsert_statuses(self, records: Sequence[StatusRecord]) -> None:
        """Write a batch in one transaction."""
        if not records:
            return
        first = records[0]
        await self._write(
            "upsert_statuses",
            (first.class_name, first.grade, len(records)),
            [(self._UPSERT, self._params(r)) for r in records],
        )

    async def delete_status(self, class_name: str, grade: int, standard_code: str) -> None:
        query = text(
            """
            DELETE FROM class_standard_status
            WHERE class_name = :class_name AND grade = :grade AND standard_code = :standard_code
            """
        )
        await self._write(
            "delete_status",
            (class_name, grade, standard_code),
            [(query, {"class_name": class_name, "grade": grade, "standard_code": standard_code})],
        )


class _AppSettingsStore(_SqlStore):
    """Keyed JSON records in app_settings."""

    _UPSERT = text(
        """
        INSERT INTO app_settings (key, value, updated_at)
        VALUES (:key, :value, :updated_at)
        ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
        """
    )

    async def _read_setting(self, operation: str, key: str) -> Any:
        query = text("SELECT value FROM app_settings WHERE key = :key")
        rows = await self._fetch(operation, key, query, {"key": key})
        if not rows:
            return None
        values = self._map_rows(operation, key, rows, lambda row: _json_value(row["value"]))
        return values[0]

    async def _write_setting(self, operation: str, key: str, value: Any) -> None:
        await self._write(
            operation,
            key,
            [(self._UPSERT, {"key": key, "value": json.dumps(value), "updated_at": datetime.now(UTC)})],
        )


class SqlThresholdConfigStore(_AppSettingsStore):
    """The single thresholds record in app_settings."""

    async def read_all(self) -> dict[str, dict[str, Any]]:
        value = await self._read_setting("read_thresholds", THRESHOLDS_SETTING_KEY)
        if value is None:
            return {}
        if not isinstance(value, dict):
            logger.warning(f"Ignoring thresholds record that is not an object: {value!r}")
            return {}
        return dict(value)

    async def replace_all(self, configs: dict[str, dict[str, Any]]) -> None:
        await self._write_setting("replace_thresholds", THRESHOLDS_SETTING_KEY, configs)


class SqlReconciliationMarkerStore(_AppSettingsStore):
    """Last reconciled suggestion fingerprint, one app_settings record per (class, grade)."""

    @staticmethod
    def setting_key(class_name: str, grade: int) -> str:
        return f"{RECONCILED_SETTING_PREFIX}:{class_name}:{grade}"

    async def read_marker(self, class_name: str, grade: int) -> str | None:
        value = await self._read_setting("read_reconciled_marker", self.setting_key(class_name, grade))
        if not isinstance(value, dict):
            return None
        return value.get("fingerprint")

    async def write_marker(self, class_name: str, grade: int, fingerprint: str) -> None:
        await self._write_setting(
            "write_reconciled_marker",
            self.setting_key(class_name, grade),
            {"fingerprint": fingerprint, "reconciled_at": datetime.now(UTC).isoformat()},
        )


def build_sql_stores(session: AsyncSession) -> MasteryStores:
    """Wire every SQL store to one session."""
    return MasteryStores(
        standards=SqlStandardsReference(session),
        assessments=SqlAssessmentStore(session),
        quick_checks=SqlQuickCheckStore(session),
        statuses=SqlMasteryStatusStore(session),
        thresholds=SqlThresholdConfigStore(session),
        reconciliations=SqlReconciliationMarkerStore(session),
    )
