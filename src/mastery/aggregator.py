"""
Score Aggregator.

Turns assessment records and grade entries into a per-standard running
percentage sum and sample count.

Sample weighting rules:

- Section-tagged assessments: one sample per student per tagged section
  (SECTION_SAMPLES_PER_STUDENT).
- Whole-tagged assessments: the class average is added once to every
  tagged standard, regardless of roster size
  (WHOLE_ASSESSMENT_SAMPLES_PER_CLASS).

Whether the asymmetry is intended pedagogy is an open product question;
both rules are named constants so it stays visible.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping

from loguru import logger

from src.mastery.models import AssessmentRecord, GradeEntry, StandardAccumulator

SECTION_SAMPLES_PER_STUDENT = 1.0
WHOLE_ASSESSMENT_SAMPLES_PER_CLASS = 1.0


def percent_of(score: float, max_points: float | None) -> float:
    """Score as a percentage; a zero or missing denominator yields 0."""
    if not max_points or max_points <= 0:
        return 0.0
    return score / max_points * 100


class ScoreAggregator:
    """Accumulate assessment evidence per standard code."""

    def aggregate(
        self,
        assessments: Iterable[AssessmentRecord],
        grade_entries: Iterable[GradeEntry],
    ) -> dict[str, StandardAccumulator]:
        """
        Build the standard_code -> {sum_pct, count} map.

        Args:
            assessments: Assessments already filtered to the selection
            grade_entries: Entries for those assessments (others are ignored)

        Returns:
            Mapping of standard code to accumulator
        """
        entries_by_assessment: dict[str, list[GradeEntry]] = defaultdict(list)
        for entry in grade_entries:
            entries_by_assessment[entry.assessment_id].append(entry)

        totals: dict[str, StandardAccumulator] = defaultdict(StandardAccumulator)
        for assessment in assessments:
            entries = entries_by_assessment.get(assessment.id, [])
            if assessment.is_section_tagged:
                self._add_section_samples(totals, assessment, entries)
            else:
                self._add_whole_assessment_sample(totals, assessment, entries)

        logger.debug(f"Aggregated assessment evidence for {len(totals)} standards")
        return dict(totals)

    def _add_section_samples(
        self,
        totals: Mapping[str, StandardAccumulator],
        assessment: AssessmentRecord,
        entries: list[GradeEntry],
    ) -> None:
        for index, section in enumerate(assessment.sections or []):
            if not section.standard_code:
                continue
            for entry in entries:
                if not entry.counts:
                    continue
                section_score = entry.section_scores.get(index)
                if section_score is None:
                    continue
                totals[section.standard_code].add(
                    percent_of(section_score, section.max_points),
                    SECTION_SAMPLES_PER_STUDENT,
                )

    def _add_whole_assessment_sample(
        self,
        totals: Mapping[str, StandardAccumulator],
        assessment: AssessmentRecord,
        entries: list[GradeEntry],
    ) -> None:
        if not assessment.standard_codes:
            return

        scored = [e.score for e in entries if e.counts and e.score is not None]
        if not scored:
            return

        class_avg = sum(percent_of(s, assessment.max_score) for s in scored) / len(scored)
        for code in assessment.standard_codes:
            totals[code].add(class_avg, WHOLE_ASSESSMENT_SAMPLES_PER_CLASS)
