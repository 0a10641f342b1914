import math

import pytest

from report_card.backend_logic import (
    DEFAULT_GRADE_BANDS,
    compute_total_and_grade,
    format_term_for_api,
    format_term_for_display,
    grade_for_total,
    grade_rubric,
    missing_competencies,
    normalise_continuous_score,
    rank_students,
    report_card_summary,
    round_1dp_half_up,
    subject_report_row,
    validate_competency_definitions,
    validate_grade_bands,
)
from report_card.exceptions import ConfigurationError
from report_card.promotion import minimum_passes
from report_card.schemas import CompetencyDefinition, GradeBand, SubjectAssessment


def test_round_1dp_half_up_rounds_halves_up():
    assert round_1dp_half_up(16.25) == 16.3
    assert round_1dp_half_up(0.05) == 0.1


def test_continuous_score_scales_competences_and_project_to_20(three_competences):
    scores = {"C1": 8, "C2": 7, "C3": 9}
    assert normalise_continuous_score(scores, three_competences, 8) == 16.0


def test_continuous_score_is_zero_when_nothing_is_configured():
    assert normalise_continuous_score({}, [], 0, project_max=0) == 0


def test_continuous_score_caps_at_20_for_marks_above_their_maxima():
    definitions = [CompetencyDefinition(id="C1", name="Reading", max_score=10)]
    assert normalise_continuous_score({"C1": 30}, definitions, 10) == 20


def test_continuous_score_zero_fills_missing_competences(three_competences):
    scores = {"C1": 8, "C2": 6}
    assert normalise_continuous_score(scores, three_competences, 6) == pytest.approx(10.0)
    assert missing_competencies(scores, three_competences) == ["C3"]


def test_continuous_score_handles_any_number_of_competences():
    definitions = [CompetencyDefinition(id=f"C{i}", name=f"Skill {i}", max_score=5) for i in range(1, 7)]
    scores = {comp.id: 5 for comp in definitions}
    assert normalise_continuous_score(scores, definitions, 10) == 20


def test_continuous_score_stays_in_range_and_never_drops_when_a_mark_rises(three_competences):
    previous = -1.0
    for c2 in range(0, 11):
        score = normalise_continuous_score({"C1": 4, "C2": c2, "C3": 6}, three_competences, 5)
        assert 0 <= score <= 20
        assert score >= previous
        previous = score


def test_continuous_score_is_repeatable(three_competences):
    scores = {"C1": 3, "C2": 9, "C3": 1}
    first = normalise_continuous_score(scores, three_competences, 7)
    assert normalise_continuous_score(scores, three_competences, 7) == first


@pytest.mark.parametrize(
    "continuous, eot, total, grade",
    [
        (16.0, 70, 86.0, "A"),
        (20, 80, 100, "A*"),
        (10, 50, 60, "C"),
        (0, 0, 0, "F"),
    ],
)
def test_compute_total_and_grade(continuous, eot, total, grade):
    result = compute_total_and_grade(continuous, eot)
    assert result["total"] == total
    assert result["grade"] == grade


def test_total_is_not_clamped_and_out_of_range_totals_are_unclassified():
    result = compute_total_and_grade(20, 95)
    assert result["total"] == 115
    assert result["grade"] == "U"
    assert result["descriptor"] == "Unclassified"


def test_fractional_totals_between_bands_take_the_lower_band():
    assert grade_for_total(89.5)[0] == "A"
    assert grade_for_total(49.9)[0] == "F"
    assert grade_for_total(50)[0] == "D"


def test_negative_and_missing_totals_are_unclassified():
    assert grade_for_total(-1) == ("U", "Unclassified")
    assert grade_for_total(float("nan")) == ("U", "Unclassified")


def test_custom_bands_are_used_highest_minimum_first():
    bands = [
        GradeBand(min_score=0, max_score=59, letter="Not yet", descriptor="Keep going"),
        GradeBand(min_score=60, max_score=100, letter="Met", descriptor="Standard met"),
    ]
    assert compute_total_and_grade(15, 50, bands)["grade"] == "Met"
    assert compute_total_and_grade(5, 50, bands)["descriptor"] == "Keep going"


def test_default_grade_bands_are_valid():
    ordered = validate_grade_bands(DEFAULT_GRADE_BANDS)
    assert [band.letter for band in ordered] == ["A*", "A", "B", "C", "D", "F"]


def test_grade_bands_without_a_bottom_band_are_rejected():
    with pytest.raises(ConfigurationError) as exc:
        validate_grade_bands([band for band in DEFAULT_GRADE_BANDS if band.letter != "F"])
    assert "no band below 50" in exc.value.message


def test_overlapping_and_gapped_grade_bands_are_rejected():
    bands = [
        GradeBand(min_score=0, max_score=69, letter="B", descriptor=""),
        GradeBand(min_score=80, max_score=90, letter="A", descriptor=""),
        GradeBand(min_score=90, max_score=100, letter="A*", descriptor=""),
    ]
    with pytest.raises(ConfigurationError) as exc:
        validate_grade_bands(bands)
    assert exc.value.details["problems"] == ["gap between B and A", "A overlaps A*"]


def test_grade_band_min_above_max_is_rejected():
    with pytest.raises(ValueError):
        GradeBand(min_score=90, max_score=80, letter="A", descriptor="")


def test_grade_rubric_lists_bands_from_the_top():
    rubric = grade_rubric()
    assert rubric[0] == {"grade": "A*", "score_range": "90 - 100", "descriptor": "Exceptional"}
    assert rubric[-1]["score_range"] == "0 - 49"


def test_valid_competency_definitions_pass(three_competences):
    validate_competency_definitions(three_competences)


def test_invalid_competency_definitions_report_every_problem():
    definitions = [
        CompetencyDefinition(id="C1", name="", max_score=10),
        CompetencyDefinition(id="C1", name="Geometry", max_score=0),
        CompetencyDefinition(id="C3", name="Data", max_score=101),
    ]
    with pytest.raises(ConfigurationError) as exc:
        validate_competency_definitions(definitions)
    assert exc.value.error_code == "INVALID_COMPETENCES"
    assert exc.value.details["problems"] == [
        "competence C1 has no name",
        "competence C1 is defined twice",
        "competence C1 max score must be between 1 and 100",
        "competence C3 max score must be between 1 and 100",
    ]


def test_subject_report_row(three_competences):
    assessment = SubjectAssessment(
        subject_name="Mathematics",
        competency_scores={"C1": 8, "C2": 7, "C3": 9},
        project_score=8,
        eot_score=70,
    )
    row = subject_report_row(assessment, three_competences)
    assert row["subject"] == "Mathematics"
    assert row["score_out_of_20"] == 16.0
    assert row["total"] == 86.0
    assert row["grade"] == "A"
    assert row["descriptor"] == "Outstanding"
    assert row["passed"] is True
    assert row["is_complete"] is True


def test_subject_report_row_flags_ungraded_competences(three_competences):
    assessment = SubjectAssessment(competency_scores={"C1": 8}, project_score=2, eot_score=30)
    row = subject_report_row(assessment, three_competences)
    assert row["competencies"] == {"C1": 8, "C2": None, "C3": None}
    assert row["is_complete"] is False
    assert row["missing_competencies"] == ["C2", "C3"]
    assert row["score_out_of_20"] == 5.0
    assert row["passed"] is False


def test_report_card_summary():
    rows = [
        {"subject": "Mathematics", "total": 86.0},
        {"subject": "English", "total": 45.0},
    ]
    summary = report_card_summary(rows)
    assert summary["total"] == 131.0
    assert summary["average"] == 65.5
    assert summary["overall_grade"] == "C"
    assert summary["overall_achievement"] == "Good"
    assert summary["passed_subjects"] == 1
    assert summary["failed_subjects"] == 1
    assert summary["pass_status"] == "FAIL"


def test_report_card_summary_with_a_lenient_policy():
    rows = [
        {"subject": "Mathematics", "total": 86.0},
        {"subject": "English", "total": 45.0},
    ]
    assert report_card_summary(rows, policy=minimum_passes(1))["pass_status"] == "PASS"


def test_report_card_summary_without_subjects():
    summary = report_card_summary([])
    assert math.isnan(summary["average"])
    assert summary["overall_grade"] == "U"
    assert summary["pass_status"] == "FAIL"


def test_rank_students_shares_positions_on_ties():
    ranked = rank_students({"a": 80.0, "b": 90.0, "c": 80.0, "d": 70.0})
    ranks = {item["student_id"]: item["rank"] for item in ranked}
    assert ranks == {"b": 1, "a": 2, "c": 2, "d": 4}
    assert ranked[0]["student_id"] == "b"
    assert ranked[-1]["student_id"] == "d"
    assert all(item["number_of_students"] == 4 for item in ranked)


def test_rank_students_puts_ungraded_students_last():
    ranked = rank_students({"a": float("nan"), "b": 50.0})
    assert ranked[0] == {"student_id": "b", "average": 50.0, "rank": 1, "number_of_students": 2}
    assert ranked[1]["rank"] is None
    assert ranked[1]["average"] is None


def test_rank_students_empty_class():
    assert rank_students({}) == []


@pytest.mark.parametrize("term, expected", [("term2", "T2"), ("2", "T2"), ("T3", "T3"), ("Q4", "Q4")])
def test_format_term_for_api(term, expected):
    assert format_term_for_api(term) == expected


def test_format_term_for_display():
    assert format_term_for_display("T1") == "Term 1"
    assert format_term_for_display("Summer") == "Summer"


def test_totals_in_a_gap_of_a_custom_table_are_unclassified():
    bands = [
        GradeBand(min_score=90, max_score=100, letter="A*", descriptor="Exceptional"),
        GradeBand(min_score=50, max_score=59, letter="D", descriptor="Satisfactory"),
    ]
    assert compute_total_and_grade(15, 60, bands) == {
        "total": 75, "grade": "U", "descriptor": "Unclassified",
    }
    assert grade_for_total(59.5, bands)[0] == "D"
    assert grade_for_total(60, bands)[0] == "U"
    assert grade_for_total(100, bands)[0] == "A*"
