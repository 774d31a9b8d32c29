"""Tests for the score aggregator."""

import pytest

from src.mastery.aggregator import ScoreAggregator, percent_of
from src.mastery.models import AssessmentRecord, AssessmentSection, GradeEntry


def _section_assessment(sections, assessment_id="a1"):
    return AssessmentRecord(id=assessment_id, name="Sections", grade=3, sections=sections)


def _whole_assessment(codes, max_score=10, assessment_id="w1"):
    return AssessmentRecord(
        id=assessment_id, name="Whole", grade=3, max_score=max_score, standard_codes=codes
    )


class TestPercentOf:
    def test_regular(self):
        assert percent_of(7, 10) == pytest.approx(70.0)

    @pytest.mark.parametrize("max_points", [0, None, -5])
    def test_zero_or_missing_denominator_is_zero(self, max_points):
        assert percent_of(7, max_points) == 0.0


class TestSectionTagged:
    def test_one_sample_per_student(self):
        assessment = _section_assessment(
            [
                AssessmentSection("A", "RL.3.1", 10),
                AssessmentSection("B", "RL.3.2", 5),
            ]
        )
        entries = [
            GradeEntry("s1", "a1", section_scores={0: 8.0, 1: 5.0}),
            GradeEntry("s2", "a1", section_scores={0: 6.0, 1: 2.5}),
            GradeEntry("s3", "a1", section_scores={0: 10.0, 1: None}),
        ]

        totals = ScoreAggregator().aggregate([assessment], entries)

        assert totals["RL.3.1"].count == 3
        assert totals["RL.3.1"].percentage == 80.0
        assert totals["RL.3.2"].count == 2
        assert totals["RL.3.2"].percentage == 75.0

    def test_untagged_section_ignored(self):
        assessment = _section_assessment(
            [AssessmentSection("A", "RL.3.1", 10), AssessmentSection("B", None, 10)]
        )
        entries = [GradeEntry("s1", "a1", section_scores={0: 5.0, 1: 10.0})]

        totals = ScoreAggregator().aggregate([assessment], entries)

        assert set(totals) == {"RL.3.1"}

    def test_zero_max_points_contributes_zero_percent(self):
        assessment = _section_assessment([AssessmentSection("A", "RL.3.1", 0)])
        entries = [GradeEntry("s1", "a1", section_scores={0: 4.0})]

        totals = ScoreAggregator().aggregate([assessment], entries)

        assert totals["RL.3.1"].count == 1
        assert totals["RL.3.1"].percentage == 0.0


class TestWholeTagged:
    def test_class_average_added_once_per_standard(self):
        assessment = _whole_assessment(["RI.3.1", "RI.3.2"], max_score=20)
        entries = [
            GradeEntry("s1", "w1", score=10),
            GradeEntry("s2", "w1", score=15),
            GradeEntry("s3", "w1", score=20),
            GradeEntry("s4", "w1", score=None),
        ]

        totals = ScoreAggregator().aggregate([assessment], entries)

        for code in ("RI.3.1", "RI.3.2"):
            assert totals[code].count == 1
            assert totals[code].percentage == 75.0

    def test_no_scores_adds_no_sample(self):
        assessment = _whole_assessment(["RI.3.1"])
        totals = ScoreAggregator().aggregate([assessment], [GradeEntry("s1", "w1", score=None)])
        assert "RI.3.1" not in totals

    def test_zero_max_score(self):
        assessment = _whole_assessment(["RI.3.1"], max_score=0)
        totals = ScoreAggregator().aggregate([assessment], [GradeEntry("s1", "w1", score=5)])
        assert totals["RI.3.1"].percentage == 0.0


class TestWeightingAsymmetry:
    def test_roster_size_only_affects_section_samples(self):
        section = _section_assessment([AssessmentSection("A", "RL.3.1", 10)])
        whole = _whole_assessment(["RI.3.1"])
        entries = []
        for i in range(25):
            entries.append(GradeEntry(f"s{i}", "a1", section_scores={0: 9.0}))
            entries.append(GradeEntry(f"s{i}", "w1", score=9))

        totals = ScoreAggregator().aggregate([section, whole], entries)

        assert totals["RL.3.1"].count == 25
        assert totals["RI.3.1"].count == 1


class TestAbsentExempt:
    def test_absent_and_exempt_entries_skipped(self):
        section = _section_assessment([AssessmentSection("A", "RL.3.1", 10)])
        whole = _whole_assessment(["RI.3.1"])
        entries = [
            GradeEntry("s1", "a1", section_scores={0: 10.0}),
            GradeEntry("s2", "a1", section_scores={0: 0.0}, is_absent=True),
            GradeEntry("s1", "w1", score=8),
            GradeEntry("s2", "w1", score=0, is_exempt=True),
        ]

        totals = ScoreAggregator().aggregate([section, whole], entries)

        assert totals["RL.3.1"].count == 1
        assert totals["RL.3.1"].percentage == 100.0
        assert totals["RI.3.1"].percentage == 80.0

    def test_entries_for_other_assessments_ignored(self):
        whole = _whole_assessment(["RI.3.1"])
        entries = [GradeEntry("s1", "w1", score=5), GradeEntry("s1", "elsewhere", score=0)]

        totals = ScoreAggregator().aggregate([whole], entries)

        assert totals["RI.3.1"].percentage == 50.0
