import pandas as pd
from typing import Dict, List, Optional, Sequence, Tuple
from pydantic import ValidationError as PydanticValidationError

from report_card.config import settings
from report_card.exceptions import ValidationError
from report_card.schemas import CompetencyDefinition, SubjectAssessment

# ------------------------
# CSV helpers (UI-side)
# ------------------------

COLUMN_ALIASES = {
    "student": "student_id",
    "studentid": "student_id",
    "student id": "student_id",
    "student_number": "student_id",
    "project_score": "project",
    "eot_score": "eot",
}


def _normalise_cols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [str(c).strip().lower() for c in df.columns]
    # allow project_score / eot_score etc.
    renames = {c: COLUMN_ALIASES[c] for c in df.columns if c in COLUMN_ALIASES and COLUMN_ALIASES[c] not in df.columns}
    if renames:
        df = df.rename(columns=renames)
    return df


def read_csv_upload(uploaded_file) -> pd.DataFrame:
    df = pd.read_csv(uploaded_file)
    return _normalise_cols(df)


def marks_columns(competency_definitions: Sequence[CompetencyDefinition]) -> List[str]:
    return ["student_id", "name"] + [comp.id.lower() for comp in competency_definitions] + ["project", "eot"]


def blank_marks_sheet(student_ids: Sequence[str], competency_definitions: Sequence[CompetencyDefinition]) -> pd.DataFrame:
    return pd.DataFrame(
        {"student_id": list(student_ids), "name": ""},
        columns=marks_columns(competency_definitions),
    )


def validate_marks_csv(df: pd.DataFrame, competency_definitions: Sequence[CompetencyDefinition]) -> pd.DataFrame:
    df = _normalise_cols(df)
    if "name" not in df.columns:
        df["name"] = ""
    required = set(marks_columns(competency_definitions))
    missing = required - set(df.columns)
    if missing:
        raise ValidationError(
            f"Missing columns: {sorted(missing)}. Expected: {', '.join(marks_columns(competency_definitions))}.",
            error_code="MISSING_COLUMNS",
            details={"missing": sorted(missing)},
        )
    return df[marks_columns(competency_definitions)].copy()


def _score(value) -> Optional[float]:
    if pd.isna(value) or value == "":
        return None
    return float(value)


def _marks_above_maximum(
    assessment: SubjectAssessment,
    competency_definitions: Sequence[CompetencyDefinition],
) -> List[str]:
    above = [
        f"{comp.id} > {comp.max_score:g}"
        for comp in competency_definitions
        if assessment.competency_scores.get(comp.id, 0) > comp.max_score
    ]
    if assessment.project_score > settings.PROJECT_MAX_SCORE:
        above.append(f"project > {settings.PROJECT_MAX_SCORE:g}")
    if assessment.eot_score > settings.EOT_MAX_SCORE:
        above.append(f"eot > {settings.EOT_MAX_SCORE:g}")
    return above


def parse_marks(
    df: pd.DataFrame,
    competency_definitions: Sequence[CompetencyDefinition],
    subject_name: str = "",
) -> List[Tuple[str, str, SubjectAssessment]]:
    """
    Rows of (student_id, name, SubjectAssessment).

    Blank competence cells are left out of the score set, blank project
    and EOT cells count as 0. Rows without a student id are skipped.
    Negative marks and marks above their maximum are rejected.
    """
    rows = []
    for index, row in df.iterrows():
        student_id = row.get("student_id")
        if pd.isna(student_id) or str(student_id).strip() == "":
            continue
        name = row.get("name")
        name = "" if pd.isna(name) else str(name)

        try:
            competency_scores = {}
            for comp in competency_definitions:
                score = _score(row.get(comp.id.lower()))
                if score is not None:
                    competency_scores[comp.id] = score
            assessment = SubjectAssessment(
                subject_name=subject_name,
                competency_scores=competency_scores,
                project_score=_score(row.get("project")) or 0.0,
                eot_score=_score(row.get("eot")) or 0.0,
            )
        except (ValueError, PydanticValidationError) as e:
            raise ValidationError(
                f"Invalid marks for student {student_id}: {e}",
                error_code="INVALID_MARKS",
                details={"row": int(index), "student_id": str(student_id)},
            ) from e

        above = _marks_above_maximum(assessment, competency_definitions)
        if above:
            raise ValidationError(
                f"Marks above their maximum for student {student_id}: " + ", ".join(above),
                error_code="MARK_ABOVE_MAXIMUM",
                details={"row": int(index), "student_id": str(student_id), "columns": above},
            )

        rows.append((str(student_id).strip(), name, assessment))
    return rows


def results_frame(
    results: Sequence[Tuple[str, str, Dict[str, object]]],
    competency_definitions: Sequence[CompetencyDefinition],
) -> pd.DataFrame:
    """Flatten (student_id, name, subject_report_row) triples for display and export."""
    records = []
    for student_id, name, row in results:
        record = {"Student ID": student_id, "Name": name}
        for comp in competency_definitions:
            record[comp.id] = row["competencies"].get(comp.id)
        record.update({
            "Project": row["project"],
            "Continuous /20": row["score_out_of_20"],
            "EOT /80": row["eot"],
            "Total": row["total"],
            "Grade": row["grade"],
            "Descriptor": row["descriptor"],
            "Complete": row["is_complete"],
        })
        records.append(record)
    columns = ["Student ID", "Name"] + [comp.id for comp in competency_definitions] + [
        "Project", "Continuous /20", "EOT /80", "Total", "Grade", "Descriptor", "Complete",
    ]
    return pd.DataFrame(records, columns=columns)


def results_to_csv(df: pd.DataFrame) -> bytes:
    return df.to_csv(index=False).encode("utf-8")
