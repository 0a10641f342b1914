import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
import numpy as np
import pandas as pd
from decimal import Decimal, ROUND_HALF_UP

from report_card.config import settings
from report_card.exceptions import ConfigurationError
from report_card.promotion import EligibilityPolicy, all_subjects_passed
from report_card.schemas import CompetencyDefinition, GradeBand, SubjectAssessment, SubjectTotal

logger = logging.getLogger(__name__)

# ------------------------
# Core logic
# ------------------------
def round_1dp_half_up(x: float) -> float:
    return float(Decimal(str(x)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def missing_competencies(
    competency_scores: Mapping[str, Optional[float]],
    competency_definitions: Sequence[CompetencyDefinition],
) -> List[str]:
    """Ids of configured competencies that have no mark yet, in definition order."""
    return [
        comp.id for comp in competency_definitions
        if competency_scores.get(comp.id) is None
    ]


def normalise_continuous_score(
    competency_scores: Mapping[str, Optional[float]],
    competency_definitions: Sequence[CompetencyDefinition],
    project_score: Optional[float],
    project_max: Optional[float] = None,
) -> float:
    """
    Continuous assessment score (competences + project) scaled to /20.

    Parameters
    ----------
    competency_scores : mapping of competency id -> mark
        Every entry is summed. Competencies without a mark count as 0.
    competency_definitions : sequence of CompetencyDefinition
        Any number of competencies; their max scores form the denominator.
    project_score : float
        Project mark, 0 when absent.
    project_max : float, optional
        Defaults to the configured project maximum (10).

    Returns
    -------
    float
        A score in [0, 20] for in-range input. Only the aggregate is capped,
        individual marks are not checked against their maxima here.
    """
    if project_max is None:
        project_max = settings.PROJECT_MAX_SCORE
    scale = settings.CONTINUOUS_SCALE

    competence_total = sum(score for score in competency_scores.values() if score is not None)
    raw_total = competence_total + (project_score or 0)

    max_competence_score = sum(comp.max_score for comp in competency_definitions)
    max_possible = max_competence_score + project_max

    if max_possible == 0:
        logger.warning("No competences or project marks configured; continuous score defaults to 0")
        return 0.0

    scaled = (raw_total / max_possible) * scale
    logger.debug("Continuous score %s/%s scaled to %.3f", raw_total, max_possible, scaled)
    return float(min(scaled, scale))


def compute_total(continuous_score: float, eot_score: float) -> float:
    # Not clamped: an EOT mark above 80 yields a total above 100.
    return continuous_score + eot_score


# ------------------------
# Grade bands
# ------------------------
DEFAULT_GRADE_BANDS: List[GradeBand] = [
    GradeBand(min_score=90, max_score=100, letter="A*", descriptor="Exceptional"),
    GradeBand(min_score=80, max_score=89, letter="A", descriptor="Outstanding"),
    GradeBand(min_score=70, max_score=79, letter="B", descriptor="Very Good"),
    GradeBand(min_score=60, max_score=69, letter="C", descriptor="Good"),
    GradeBand(min_score=50, max_score=59, letter="D", descriptor="Satisfactory"),
    GradeBand(min_score=0, max_score=49, letter="F", descriptor="Fail"),
]

UNCLASSIFIED_GRADE = "U"
UNCLASSIFIED_DESCRIPTOR = "Unclassified"


def validate_grade_bands(grade_bands: Sequence[GradeBand]) -> List[GradeBand]:
    """
    Check a band table is contiguous, non-overlapping and spans 0-100.

    Integer band edges such as 80-89 / 90-100 count as contiguous.
    Returns the bands ordered from the highest minimum down.
    """
    if not grade_bands:
        raise ConfigurationError("At least one grade band is required", error_code="EMPTY_GRADE_BANDS")

    ordered = sorted(grade_bands, key=lambda band: band.min_score)
    problems = []
    for lower, upper in zip(ordered, ordered[1:]):
        gap = upper.min_score - lower.max_score
        if gap <= 0:
            problems.append(f"{lower.letter} overlaps {upper.letter}")
        elif gap > 1:
            problems.append(f"gap between {lower.letter} and {upper.letter}")

    if ordered[0].min_score > 0:
        problems.append(f"no band below {ordered[0].min_score:g}")
    if ordered[-1].max_score < 100:
        problems.append(f"no band above {ordered[-1].max_score:g}")

    if problems:
        raise ConfigurationError(
            "Invalid grade bands: " + "; ".join(problems),
            error_code="INVALID_GRADE_BANDS",
            details={"problems": problems},
        )
    return list(reversed(ordered))


def grade_for_total(total: float, grade_bands: Sequence[GradeBand] = DEFAULT_GRADE_BANDS) -> Tuple[str, str]:
    """Return (grade, descriptor); totals outside every band are unclassified."""
    if not grade_bands or total is None or np.isnan(total):
        return UNCLASSIFIED_GRADE, UNCLASSIFIED_DESCRIPTOR

    ordered = sorted(grade_bands, key=lambda band: band.min_score, reverse=True)
    if total > ordered[0].max_score or total < ordered[-1].min_score:
        logger.warning("Total %s falls outside all grade bands", total)
        return UNCLASSIFIED_GRADE, UNCLASSIFIED_DESCRIPTOR

    # Integer band edges: 80-89 covers [80, 90) so 89.5 is still an A.
    # The top band is closed at its maximum.
    for index, band in enumerate(ordered):
        if total < band.min_score:
            continue
        if (index == 0 and total <= band.max_score) or total < band.max_score + 1:
            return band.letter, band.descriptor
        break

    logger.warning("Total %s falls in a gap between grade bands", total)
    return UNCLASSIFIED_GRADE, UNCLASSIFIED_DESCRIPTOR


def compute_total_and_grade(
    continuous_score: float,
    eot_score: float,
    grade_bands: Sequence[GradeBand] = DEFAULT_GRADE_BANDS,
) -> Dict[str, object]:
    total = compute_total(continuous_score, eot_score)
    grade, descriptor = grade_for_total(total, grade_bands)
    return {"total": total, "grade": grade, "descriptor": descriptor}


def grade_rubric(grade_bands: Sequence[GradeBand] = DEFAULT_GRADE_BANDS) -> List[Dict[str, str]]:
    ordered = sorted(grade_bands, key=lambda band: band.min_score, reverse=True)
    return [
        {
            "grade": band.letter,
            "score_range": f"{band.min_score:g} - {band.max_score:g}",
            "descriptor": band.descriptor,
        }
        for band in ordered
    ]


# ------------------------
# Subject configuration
# ------------------------
def validate_competency_definitions(competency_definitions: Sequence[CompetencyDefinition]) -> None:
    problems = []
    seen = set()
    for index, comp in enumerate(competency_definitions, start=1):
        label = comp.id or f"#{index}"
        if not comp.id or not comp.id.strip():
            problems.append(f"competence {label} has no id")
        elif comp.id in seen:
            problems.append(f"competence {label} is defined twice")
        seen.add(comp.id)

        if not comp.name.strip():
            problems.append(f"competence {label} has no name")
        if comp.max_score <= 0 or comp.max_score > 100:
            problems.append(f"competence {label} max score must be between 1 and 100")

    if problems:
        raise ConfigurationError(
            "Invalid competence settings: " + "; ".join(problems),
            error_code="INVALID_COMPETENCES",
            details={"problems": problems},
        )


# ------------------------
# Report card
# ------------------------
def subject_report_row(
    assessment: SubjectAssessment,
    competency_definitions: Sequence[CompetencyDefinition],
    grade_bands: Sequence[GradeBand] = DEFAULT_GRADE_BANDS,
    pass_threshold: Optional[float] = None,
) -> Dict[str, object]:
    """
    One line of the academic performance table.

    The continuous score is rounded to 1dp before it is added to EOT so the
    printed /20, total and grade always agree.
    """
    if pass_threshold is None:
        pass_threshold = settings.PASS_THRESHOLD

    continuous = normalise_continuous_score(
        assessment.competency_scores,
        competency_definitions,
        assessment.project_score,
    )
    score_out_of_20 = round_1dp_half_up(continuous)
    result = compute_total_and_grade(score_out_of_20, assessment.eot_score, grade_bands)
    total = round_1dp_half_up(result["total"])
    missing = missing_competencies(assessment.competency_scores, competency_definitions)

    return {
        "subject": assessment.subject_name,
        "competencies": {comp.id: assessment.competency_scores.get(comp.id) for comp in competency_definitions},
        "project": assessment.project_score,
        "score_out_of_20": score_out_of_20,
        "eot": assessment.eot_score,
        "total": total,
        "grade": result["grade"],
        "descriptor": result["descriptor"],
        "passed": total >= pass_threshold,
        "is_complete": not missing,
        "missing_competencies": missing,
    }


def report_card_summary(
    subject_rows: Sequence[Dict[str, object]],
    grade_bands: Sequence[GradeBand] = DEFAULT_GRADE_BANDS,
    pass_threshold: Optional[float] = None,
    policy: EligibilityPolicy = all_subjects_passed,
) -> Dict[str, object]:
    """
    Overall performance for one student from their subject rows.

    returns: total, average, overall grade/achievement, pass counts and
    PASS/FAIL under the eligibility policy. The average is NaN when no
    subject has been graded.
    """
    if pass_threshold is None:
        pass_threshold = settings.PASS_THRESHOLD

    totals = np.array([float(row["total"]) for row in subject_rows], dtype=float)
    if totals.size == 0:
        total, average = 0.0, np.nan
    else:
        total = round_1dp_half_up(float(totals.sum()))
        average = round_1dp_half_up(float(totals.mean()))

    overall_grade, overall_achievement = grade_for_total(average, grade_bands)
    subject_totals = [
        SubjectTotal(subject_name=str(row["subject"]), total=float(row["total"]), pass_threshold=pass_threshold)
        for row in subject_rows
    ]
    passed = sum(1 for st in subject_totals if st.passed)

    return {
        "total": total,
        "average": average,
        "overall_grade": overall_grade,
        "overall_achievement": overall_achievement,
        "subject_count": len(subject_totals),
        "passed_subjects": passed,
        "failed_subjects": len(subject_totals) - passed,
        "pass_status": "PASS" if policy(subject_totals) else "FAIL",
    }


def rank_students(averages: Mapping[str, float]) -> List[Dict[str, object]]:
    """
    Class positions by average, best first.

    Ties share the better position (1, 2, 2, 4). Students without an
    average are listed last with no rank.
    """
    if not averages:
        return []

    series = pd.Series(averages, dtype=float)
    ranks = series.rank(method="min", ascending=False, na_option="keep")
    ordered = series.sort_values(ascending=False, kind="mergesort", na_position="last")

    number_of_students = len(series)
    return [
        {
            "student_id": student_id,
            "average": None if np.isnan(average) else float(average),
            "rank": None if np.isnan(ranks[student_id]) else int(ranks[student_id]),
            "number_of_students": number_of_students,
        }
        for student_id, average in ordered.items()
    ]


# ------------------------
# Term labels
# ------------------------
TERM_DISPLAY = {
    "T1": "Term 1",
    "T2": "Term 2",
    "T3": "Term 3",
}

TERM_API = {
    "term1": "T1",
    "term2": "T2",
    "term3": "T3",
    "t1": "T1",
    "t2": "T2",
    "t3": "T3",
    "1": "T1",
    "2": "T2",
    "3": "T3",
}


def format_term_for_display(term: str) -> str:
    return TERM_DISPLAY.get(term, term)


def format_term_for_api(term: str) -> str:
    return TERM_API.get(term.strip().lower(), term)
