"""
Standards Mastery Models.

SQLAlchemy tables backing the mastery engine's stores:
- Curriculum standards (reference data)
- Assessments and grade entries (formal evidence)
- Quick checks (informal, append-only evidence)
- Class standard status (persisted mastery + intervention)
- App settings (threshold config record)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class CurriculumStandard(Base):
    """One curriculum standard (e.g. RL.3.1)."""

    __tablename__ = "standards"

    code: Mapped[str] = mapped_column(Text, primary_key=True)
    domain: Mapped[str] = mapped_column(Text, nullable=False)
    grade: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    cluster: Mapped[str] = mapped_column(Text, default="")
    text: Mapped[str] = mapped_column(Text, default="")
    dok: Mapped[int | None] = mapped_column(Integer)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        return f"<CurriculumStandard {self.code} grade={self.grade}>"


class Assessment(Base):
    """
    Formal assessment.

    standards: whole-assessment tags, [{"code": "RL.3.1", "dok": 2}, ...]
    sections:  section tags, [{"label": "A", "standard": "RL.3.1", "max_points": 5}, ...]
    """

    __tablename__ = "assessments"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    semester: Mapped[str | None] = mapped_column(Text)
    grade: Mapped[int] = mapped_column(Integer, nullable=False)
    class_name: Mapped[str | None] = mapped_column(Text)  # NULL = every class of the grade
    domain: Mapped[str | None] = mapped_column(Text)
    max_score: Mapped[float] = mapped_column(Float, default=0)
    standards: Mapped[list | None] = mapped_column(JSON, default=list)
    sections: Mapped[list | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    grade_entries: Mapped[list[GradeEntryRow]] = relationship(
        back_populates="assessment", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("idx_assessments_scope", "grade", "class_name", "semester"),)

    def __repr__(self) -> str:
        return f"<Assessment {self.name} grade={self.grade} class={self.class_name}>"


class GradeEntryRow(Base):
    """A student's score (whole) or section scores on one assessment."""

    __tablename__ = "grade_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assessment_id: Mapped[str] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[str] = mapped_column(Text, nullable=False)
    score: Mapped[float | None] = mapped_column(Float)
    section_scores: Mapped[dict | None] = mapped_column(JSON)  # {"0": 4, "1": null}
    is_absent: Mapped[bool] = mapped_column(Boolean, default=False)
    is_exempt: Mapped[bool] = mapped_column(Boolean, default=False)
    entered_at: Mapped[datetime] = mapped_column(default=func.now())

    assessment: Mapped[Assessment] = relationship(back_populates="grade_entries")

    __table_args__ = (
        UniqueConstraint("assessment_id", "student_id", name="uq_grade_entry_student"),
    )


class QuickCheckRow(Base):
    """Append-only quick-check observation."""

    __tablename__ = "quick_checks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(Text, nullable=False)
    standard_code: Mapped[str] = mapped_column(Text, nullable=False)
    class_name: Mapped[str] = mapped_column(Text, nullable=False)
    grade: Mapped[int] = mapped_column(Integer, nullable=False)
    mark: Mapped[str] = mapped_column(Text, nullable=False)  # 'got_it', 'almost', 'not_yet'
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    __table_args__ = (Index("idx_quick_checks_scope", "class_name", "grade", "standard_code"),)


class ClassStandardStatus(Base):
    """
    Persisted mastery status per (class, grade, standard).

    No row means not_started. Concurrent writers resolve by last write wins
    on the unique key.
    """

    __tablename__ = "class_standard_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    class_name: Mapped[str] = mapped_column(Text, nullable=False)
    grade: Mapped[int] = mapped_column(Integer, nullable=False)
    standard_code: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)  # 'below', 'approaching', 'on', 'above'
    intervention_status: Mapped[str] = mapped_column(Text, default="none")
    updated_by: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("class_name", "grade", "standard_code", name="uq_class_grade_standard"),
    )

    def __repr__(self) -> str:
        return (
            f"<ClassStandardStatus {self.class_name}/G{self.grade} "
            f"{self.standard_code}={self.status}>"
        )


class AppSetting(Base):
    """Key/value settings record; 'standards_thresholds' holds per-class cutoffs."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[dict | None] = mapped_column(JSON)
    updated_at: Mapped[datetime] = mapped_column(default=func.now(), onupdate=func.now())
