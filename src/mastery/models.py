"""
Standards Mastery Models.

Enums and dataclasses shared by every stage of the mastery pipeline:

- MasteryStatus: ordinal band (plus not_started) for one standard
- InterventionStatus: remediation workflow state for not-yet-mastered standards
- QuickCheckMark: informal got_it / almost / not_yet observation
- Evidence records: AssessmentRecord, GradeEntry, QuickCheck
- ThresholdConfig: per-class percentage cutoffs
- StatusRecord: one persisted (class, grade, standard) status row
- StandardMasteryView: engine output for one standard
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

# Actor recorded on rows written by reconciliation rather than by a teacher.
SYSTEM_ACTOR = "system:reconcile"


class MasteryStatus(str, Enum):
    """
    Mastery band for a class on one standard.

    NOT_STARTED is never persisted: absence of a row means not started.
    """

    NOT_STARTED = "not_started"
    BELOW = "below"
    APPROACHING = "approaching"
    ON = "on"
    ABOVE = "above"

    @property
    def rank(self) -> int:
        """Ordinal position (0 = not_started, 4 = above)."""
        return _STATUS_ORDER.index(self)

    @property
    def is_persistable(self) -> bool:
        """Whether this status is stored as a row."""
        return self is not MasteryStatus.NOT_STARTED

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return self.value.replace("_", " ").title()

    @property
    def emoji(self) -> str:
        """Status glyph for CLI display."""
        return {
            MasteryStatus.NOT_STARTED: "○",
            MasteryStatus.BELOW: "◔",
            MasteryStatus.APPROACHING: "◑",
            MasteryStatus.ON: "◕",
            MasteryStatus.ABOVE: "●",
        }[self]

    @property
    def color(self) -> str:
        """Rich color for CLI display."""
        return {
            MasteryStatus.NOT_STARTED: "dim",
            MasteryStatus.BELOW: "red",
            MasteryStatus.APPROACHING: "yellow",
            MasteryStatus.ON: "cyan",
            MasteryStatus.ABOVE: "green",
        }[self]


_STATUS_ORDER = (
    MasteryStatus.NOT_STARTED,
    MasteryStatus.BELOW,
    MasteryStatus.APPROACHING,
    MasteryStatus.ON,
    MasteryStatus.ABOVE,
)


class InterventionStatus(str, Enum):
    """Remediation workflow state attached to a standard."""

    NONE = "none"
    NOT_YET_TAUGHT = "not_yet_taught"
    TAUGHT_NEEDS_RETEACH = "taught_needs_reteach"
    RETEACHING = "reteaching"
    REASSESSING = "reassessing"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").capitalize()


class QuickCheckMark(str, Enum):
    """Informal formative observation."""

    GOT_IT = "got_it"
    ALMOST = "almost"
    NOT_YET = "not_yet"


# ============================================================================
# Evidence
# ============================================================================


@dataclass(frozen=True)
class AssessmentSection:
    """One sub-part of a section-tagged assessment."""

    label: str
    standard_code: str | None
    max_points: float


@dataclass
class AssessmentRecord:
    """
    A formal assessment for a (class, grade, semester).

    Either section-tagged (sections carry their own standard) or
    whole-tagged (standard_codes apply to the whole assessment, scored
    out of max_score). class_name None means every class of the grade.
    """

    id: str
    name: str
    grade: int
    class_name: str | None = None
    semester: str | None = None
    domain: str | None = None
    max_score: float = 0.0
    standard_codes: list[str] = field(default_factory=list)
    sections: list[AssessmentSection] | None = None

    @property
    def is_section_tagged(self) -> bool:
        """True when at least one section carries a standard tag."""
        return bool(self.sections) and any(s.standard_code for s in self.sections)


@dataclass
class GradeEntry:
    """A student's score on one assessment."""

    student_id: str
    assessment_id: str
    score: float | None = None
    section_scores: dict[int, float | None] = field(default_factory=dict)
    is_absent: bool = False
    is_exempt: bool = False

    @property
    def counts(self) -> bool:
        """Absent and exempt entries never contribute samples."""
        return not (self.is_absent or self.is_exempt)


@dataclass(frozen=True)
class QuickCheck:
    """Append-only quick-check observation."""

    student_id: str
    standard_code: str
    class_name: str
    grade: int
    mark: QuickCheckMark
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class EvidenceBundle:
    """All evidence loaded for one (class, grade, semester) selection."""

    assessments: list[AssessmentRecord] = field(default_factory=list)
    grade_entries: list[GradeEntry] = field(default_factory=list)
    quick_checks: list[QuickCheck] = field(default_factory=list)


# ============================================================================
# Aggregation / Classification
# ============================================================================


@dataclass
class StandardAccumulator:
    """Running percentage sum and sample weight for one standard."""

    sum_pct: float = 0.0
    count: float = 0.0

    def add(self, pct: float, weight: float = 1.0) -> None:
        self.sum_pct += pct * weight
        self.count += weight

    @property
    def percentage(self) -> float | None:
        """Blended percentage rounded to one decimal, None without samples."""
        if self.count <= 0:
            return None
        return round(self.sum_pct / self.count, 1)


@dataclass(frozen=True)
class ThresholdConfig:
    """Per-class percentage cutoffs; valid when above > on > approaching >= 0."""

    above: float
    on: float
    approaching: float

    @property
    def is_valid(self) -> bool:
        return (
            self.above > self.on > self.approaching >= 0
            and self.above <= 100
        )

    def to_dict(self) -> dict[str, float]:
        return {"above": self.above, "on": self.on, "approaching": self.approaching}


# ============================================================================
# Persisted State / Output
# ============================================================================


@dataclass
class StatusRecord:
    """Persisted mastery status row keyed by (class_name, grade, standard_code)."""

    class_name: str
    grade: int
    standard_code: str
    status: MasteryStatus
    intervention_status: InterventionStatus = InterventionStatus.NONE
    updated_by: str | None = None
    updated_at: datetime | None = None

    @property
    def is_manual(self) -> bool:
        """Written by a teacher rather than by reconciliation."""
        return self.updated_by != SYSTEM_ACTOR


@dataclass
class StandardMasteryView:
    """Engine output for one standard."""

    standard_code: str
    effective_status: MasteryStatus
    computed_percentage: float | None
    suggested_status: MasteryStatus
    intervention_status: InterventionStatus
    has_manual_override: bool
    intervention_editable: bool = False
    domain: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "standard_code": self.standard_code,
            "effective_status": self.effective_status.value,
            "computed_percentage": self.computed_percentage,
            "suggested_status": self.suggested_status.value,
            "intervention_status": self.intervention_status.value,
            "has_manual_override": self.has_manual_override,
            "intervention_editable": self.intervention_editable,
            "domain": self.domain,
        }
